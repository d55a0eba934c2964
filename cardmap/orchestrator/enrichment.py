"""Sequential, rate-limited geocoding queue for items lacking coordinates."""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Iterable, List, Optional, Set

import httpx
import structlog

from cardmap.domain.models import Coordinates, Item
from cardmap.geocode.extractor import AddressExtractor
from cardmap.geocode.resolver import CoordinateResolver
from cardmap.observability.metrics import MetricsRegistry
from cardmap.observability.tracing import clear_item_context, log_progress, set_context
from cardmap.source.location_writer import LocationWriteError, LocationWriter

LOGGER = structlog.get_logger(__name__)

DEFAULT_DELAY_SECONDS = 1.1

ItemLookup = Callable[[str], Optional[Item]]
ResolvedCallback = Callable[[Item], None]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class RunSummary:
    """Outcome counters for a single queue run."""

    processed: int = 0
    resolved: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False
    item_ids: List[str] = field(default_factory=list)


class EnrichmentQueue:
    """FIFO backlog of item ids drained one at a time, Idle -> Processing -> Idle."""

    def __init__(
        self,
        *,
        lookup: ItemLookup,
        resolver: CoordinateResolver,
        writer: LocationWriter,
        extractor: Optional[AddressExtractor] = None,
        on_resolved: Optional[ResolvedCallback] = None,
        on_unconfirmed: Optional[ResolvedCallback] = None,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        metrics: Optional[MetricsRegistry] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._lookup = lookup
        self._resolver = resolver
        self._writer = writer
        self._extractor = extractor or AddressExtractor()
        self._on_resolved = on_resolved
        self._on_unconfirmed = on_unconfirmed
        self._delay = delay_seconds
        self._metrics = metrics or MetricsRegistry()
        self._sleep = sleep
        self._backlog: Deque[str] = deque()
        self._members: Set[str] = set()
        self._processing = False
        self._stop = asyncio.Event()

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def pending(self) -> list:
        return list(self._backlog)

    def __len__(self) -> int:
        return len(self._backlog)

    @staticmethod
    def needs_coordinates(item: Item) -> bool:
        return item.coordinates is None and item.has_description()

    def enqueue(self, items: Iterable[Item]) -> int:
        """Append items that lack coordinates and have a description; returns the count added."""
        added = 0
        for item in items:
            if not self.needs_coordinates(item) or item.id in self._members:
                continue
            self._backlog.append(item.id)
            self._members.add(item.id)
            added += 1
        if added:
            self._metrics.incr("items_enqueued", added)
            LOGGER.info("backlog_extended", added=added, pending=len(self._backlog))
        return added

    def cancel(self) -> None:
        """Stop the active run before its next dequeue; the remaining backlog is kept."""
        self._stop.set()

    def _dequeue(self) -> str:
        item_id = self._backlog.popleft()
        self._members.discard(item_id)
        return item_id

    async def run(self) -> RunSummary:
        """Drain the backlog; a no-op when already processing or empty.

        The delay follows attempted entries only, and only while another entry
        is waiting.
        """
        summary = RunSummary()
        if self._processing or not self._backlog:
            LOGGER.debug("queue_run_skipped", processing=self._processing, pending=len(self._backlog))
            return summary

        self._processing = True
        self._stop.clear()
        total = len(self._backlog)
        LOGGER.info("queue_run_started", pending=total)
        try:
            while self._backlog:
                if self._stop.is_set():
                    summary.cancelled = True
                    LOGGER.info("queue_run_cancelled", pending=len(self._backlog))
                    break
                item_id = self._dequeue()
                set_context(item_id=item_id)
                try:
                    attempted = await self._process(item_id, summary)
                finally:
                    clear_item_context()
                summary.processed += 1
                summary.item_ids.append(item_id)
                log_progress(processed=summary.processed, total=total)
                if attempted and self._backlog:
                    await self._sleep(self._delay)
        finally:
            self._processing = False
            self._stop.clear()
        LOGGER.info(
            "queue_run_finished",
            processed=summary.processed,
            resolved=summary.resolved,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    async def _process(self, item_id: str, summary: RunSummary) -> bool:
        """Handle one entry; returns True when a resolution was attempted."""
        item = self._lookup(item_id)
        if item is None or not item.has_description():
            LOGGER.debug("entry_skipped", reason="missing_item_or_description")
            self._skip(summary)
            return False

        try:
            candidate = self._extractor.extract(item.description)
        except Exception as exc:  # pragma: no cover
            LOGGER.warning("extract_failed", reason=str(exc))
            self._skip(summary, failed=True)
            return False
        if not candidate:
            LOGGER.debug("entry_skipped", reason="no_candidate")
            self._skip(summary)
            return False

        try:
            coordinates = await self._resolver.resolve(candidate)
            if coordinates is None:
                LOGGER.debug("entry_skipped", reason="unresolved", candidate=candidate)
                self._skip(summary)
                return True
            await self._apply(item, coordinates)
        except (httpx.HTTPError, LocationWriteError) as exc:
            self._metrics.incr("persist_failures")
            LOGGER.warning("coordinates_not_persisted", candidate=candidate, reason=str(exc))
            self._skip(summary, failed=True)
            if item.coordinates is not None:
                self._notify(self._on_unconfirmed, item)
            return True
        except Exception as exc:
            LOGGER.error("entry_failed", candidate=candidate, reason=str(exc), exc_info=True)
            self._skip(summary, failed=True)
            return True

        summary.resolved += 1
        self._notify(self._on_resolved, item)
        return True

    @staticmethod
    def _notify(callback: Optional[ResolvedCallback], item: Item) -> None:
        if callback is None:
            return
        try:
            callback(item)
        except Exception as exc:
            LOGGER.error("item_callback_failed", reason=str(exc), exc_info=True)

    async def _apply(self, item: Item, coordinates: Coordinates) -> None:
        item.coordinates = coordinates
        self._metrics.incr("coordinates_resolved")
        LOGGER.info("coordinates_resolved", lat=coordinates.lat, lng=coordinates.lng)
        await self._writer.write(item.id, coordinates)

    def _skip(self, summary: RunSummary, *, failed: bool = False) -> None:
        self._metrics.incr("entries_skipped")
        if failed:
            summary.failed += 1
        else:
            summary.skipped += 1
