"""Board context ownership and wiring of the enrichment pipeline."""
from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import httpx
import structlog

from cardmap.domain.models import Group, Item
from cardmap.domain.visibility import VisibilityFilter, VisibilityState
from cardmap.geocode.client import NominatimClient
from cardmap.geocode.resolver import CoordinateResolver
from cardmap.markers.layer import MarkerLayer
from cardmap.markers.reconciler import MarkerReconciler
from cardmap.observability.metrics import MetricsRegistry
from cardmap.observability.tracing import set_context
from cardmap.orchestrator.board_loader import (
    BoardConfig,
    ConfigurationError,
    load_board_config,
    load_credentials,
)
from cardmap.orchestrator.enrichment import DEFAULT_DELAY_SECONDS, EnrichmentQueue, RunSummary, Sleeper
from cardmap.source.location_writer import (
    EndpointLocationWriter,
    LocationWriteError,
    LocationWriter,
    TrelloLocationWriter,
)
from cardmap.source.trello import DEFAULT_FIELD_HINTS, TrelloBoardSource
from cardmap.storage.pending import PendingLocationStore
from cardmap.storage.preferences import PreferenceStore

LOGGER = structlog.get_logger(__name__)


@dataclass
class BoardContext:
    """All mutable state for one board, owned by a single controller."""

    board_id: str
    groups: List[Group]
    visibility: VisibilityState
    items: Dict[str, Item] = field(default_factory=dict)
    list_names: Dict[str, str] = field(default_factory=dict)
    layer: MarkerLayer = field(default_factory=MarkerLayer)

    def replace_items(self, fetched: Iterable[Item]) -> None:
        """Swap in freshly fetched items, keeping coordinates resolved earlier in this process."""
        previous = dict(self.items)
        self.items.clear()
        for item in fetched:
            known = previous.get(item.id)
            if item.coordinates is None and known is not None and known.coordinates is not None:
                if known.description == item.description:
                    item.coordinates = known.coordinates
            self.items[item.id] = item


class ItemSnapshots:
    """Fingerprints of attempted items so unchanged cards are not geocoded again."""

    def __init__(self) -> None:
        self._seen: Dict[str, str] = {}

    @staticmethod
    def fingerprint(item: Item) -> str:
        parts = [item.name, item.description, item.list_id, ",".join(sorted(item.label_keys))]
        return hashlib.sha1("\x1f".join(parts).encode("utf-8")).hexdigest()

    def changed(self, item: Item) -> bool:
        return self._seen.get(item.id) != self.fingerprint(item)

    def record(self, item: Item) -> None:
        self._seen[item.id] = self.fingerprint(item)


class MapController:
    """Coordinates loading, enrichment, marker sync and visibility changes."""

    def __init__(
        self,
        *,
        context: BoardContext,
        source: TrelloBoardSource,
        resolver: CoordinateResolver,
        writer: LocationWriter,
        preferences: PreferenceStore,
        pending: PendingLocationStore,
        metrics: Optional[MetricsRegistry] = None,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.context = context
        self.metrics = metrics or MetricsRegistry()
        self._source = source
        self._preferences = preferences
        self._pending = pending
        self._writer = writer
        self.filter = VisibilityFilter(context.groups, context.visibility)
        self.reconciler = MarkerReconciler(
            context.layer,
            self.filter,
            list_names=context.list_names,
            metrics=self.metrics,
        )
        self.queue = EnrichmentQueue(
            lookup=context.items.get,
            resolver=resolver,
            writer=writer,
            on_resolved=self._on_resolved,
            on_unconfirmed=self._on_unconfirmed,
            delay_seconds=delay_seconds,
            metrics=self.metrics,
            sleep=sleep,
        )
        self.snapshots = ItemSnapshots()

    @staticmethod
    def build_context(board: BoardConfig, preferences: PreferenceStore) -> BoardContext:
        """Apply stored group defaults and restore (or derive) the visibility state."""
        groups = []
        for group in board.groups:
            stored = preferences.group_default(group.id)
            groups.append(group.model_copy(update={"include_on_map": stored}) if stored is not None else group)
        visibility = preferences.load_visibility(board.id) or VisibilityState.from_groups(groups)
        return BoardContext(board_id=board.id, groups=groups, visibility=visibility)

    def _on_resolved(self, item: Item) -> None:
        self._pending.discard(self.context.board_id, item.id)
        self.sync()

    def _on_unconfirmed(self, item: Item) -> None:
        self._pending.record(self.context.board_id, item.id, item.coordinates, item.description)

    def _restore_unconfirmed(self) -> None:
        """Put back coordinates whose write never succeeded, dropping stale entries."""
        for item_id, entry in self._pending.for_board(self.context.board_id).items():
            item = self.context.items.get(item_id)
            if item is None or not entry.matches(item.description):
                self._pending.discard(self.context.board_id, item_id)
            elif item.coordinates is None:
                item.coordinates = entry.coordinates
            elif item.coordinates != entry.coordinates:
                # the board already carries other coordinates for this card
                self._pending.discard(self.context.board_id, item_id)

    async def retry_unconfirmed(self) -> int:
        """Re-send unconfirmed coordinates; returns how many writes succeeded."""
        confirmed = 0
        for item_id, entry in self._pending.for_board(self.context.board_id).items():
            self.metrics.incr("persist_retries")
            try:
                await self._writer.write(item_id, entry.coordinates)
            except (httpx.HTTPError, LocationWriteError) as exc:
                LOGGER.warning("coordinates_still_unconfirmed", item_id=item_id, reason=str(exc))
                continue
            self._pending.discard(self.context.board_id, item_id)
            confirmed += 1
        if confirmed:
            LOGGER.info("unconfirmed_coordinates_persisted", confirmed=confirmed)
        return confirmed

    def sync(self) -> int:
        return self.reconciler.sync(self.context.items.values())

    async def load(self) -> List[Item]:
        """Fetch items and list names for the board, then rebuild markers."""
        set_context(board_id=self.context.board_id)
        items = await self._source.fetch_items(self.context.board_id)
        self.context.replace_items(items)
        self._restore_unconfirmed()
        try:
            names = await self._source.fetch_lists(self.context.board_id)
        except httpx.HTTPError as exc:
            LOGGER.warning("list_names_unavailable", reason=str(exc))
        else:
            self.context.list_names.clear()
            self.context.list_names.update(names)
        self.metrics.set("items_loaded", len(self.context.items))
        self.sync()
        return list(self.context.items.values())

    def pending_items(self, *, only_changed: bool = False) -> List[Item]:
        items = [item for item in self.context.items.values() if EnrichmentQueue.needs_coordinates(item)]
        if only_changed:
            items = [item for item in items if self.snapshots.changed(item)]
        return items

    async def enrich(self, *, only_changed: bool = False) -> RunSummary:
        """Retry unconfirmed writes, enqueue items lacking coordinates, drain the queue and re-sync."""
        await self.retry_unconfirmed()
        self.queue.enqueue(self.pending_items(only_changed=only_changed))
        summary = await self.queue.run()
        for item_id in summary.item_ids:
            item = self.context.items.get(item_id)
            if item is not None:
                self.snapshots.record(item)
        self.sync()
        return summary

    async def refresh_once(self) -> RunSummary:
        """Reload the board and geocode only items whose content changed."""
        try:
            await self.load()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("refresh_failed", board_id=self.context.board_id, reason=str(exc))
            return RunSummary()
        return await self.enrich(only_changed=True)

    def cancel(self) -> None:
        self.queue.cancel()

    def _persist_visibility(self) -> None:
        self._preferences.save_visibility(self.context.board_id, self.context.visibility)
        self.sync()

    def set_group_visible(self, group_id: str, visible: bool) -> None:
        if group_id not in {group.id for group in self.context.groups}:
            raise KeyError(f"Unknown group {group_id!r}")
        self.context.visibility.set_group(group_id, visible)
        self._persist_visibility()

    def toggle_group(self, group_id: str) -> bool:
        visible = group_id not in self.context.visibility.visible_groups
        self.set_group_visible(group_id, visible)
        return visible

    def set_include_completed(self, value: bool) -> None:
        self.context.visibility.include_completed = value
        self._persist_visibility()

    def set_include_templates(self, value: bool) -> None:
        self.context.visibility.include_templates = value
        self._persist_visibility()

    def set_group_default(self, group_id: str, include_on_map: bool) -> None:
        self._preferences.set_group_default(group_id, include_on_map)


def build_writer(
    settings: Mapping[str, object],
    client: httpx.AsyncClient,
    *,
    write_key: Optional[str],
    write_token: Optional[str],
) -> LocationWriter:
    persistence = settings.get("persistence") or {}
    api_base = str((settings.get("trello") or {}).get("api_base", "https://api.trello.com/1"))
    mode = str(persistence.get("mode", "endpoint"))
    if mode == "trello":
        return TrelloLocationWriter(client, api_key=write_key or "", token=write_token or "", api_base=api_base)
    if mode == "endpoint" and persistence.get("endpoint_url"):
        return EndpointLocationWriter(client, endpoint_url=str(persistence["endpoint_url"]))
    raise ConfigurationError(f"Unsupported persistence configuration: mode={mode!r}")


def build_controller(
    settings: Mapping[str, object],
    client: httpx.AsyncClient,
    *,
    env: Optional[Mapping[str, str]] = None,
    metrics: Optional[MetricsRegistry] = None,
    delay_seconds: Optional[float] = None,
    sleep: Sleeper = asyncio.sleep,
) -> MapController:
    """Validate configuration and assemble a controller; raises ``ConfigurationError``."""
    board = load_board_config(settings)
    credentials = load_credentials(settings, env)
    app = settings.get("app") or {}
    trello = settings.get("trello") or {}
    geocoding = settings.get("geocoding") or {}
    metrics = metrics or MetricsRegistry()

    preferences = PreferenceStore(Path(str(app.get("preferences_path", "data/preferences.json"))))
    pending = PendingLocationStore(Path(str(app.get("pending_path", "data/pending_locations.json"))))
    source = TrelloBoardSource(
        client,
        api_key=credentials.api_key,
        token=credentials.token,
        api_base=str(trello.get("api_base", "https://api.trello.com/1")),
        field_hints=trello.get("coordinates_field_hints", DEFAULT_FIELD_HINTS),
    )
    lookup = NominatimClient(
        client,
        search_url=str(geocoding.get("search_url", "https://nominatim.openstreetmap.org/search")),
        timeout=float(geocoding.get("timeout_seconds", 10)),
    )
    writer = build_writer(settings, client, write_key=credentials.write_key, write_token=credentials.write_token)
    delay = delay_seconds if delay_seconds is not None else float(geocoding.get("delay_seconds", DEFAULT_DELAY_SECONDS))
    return MapController(
        context=MapController.build_context(board, preferences),
        source=source,
        resolver=CoordinateResolver(lookup, metrics=metrics),
        writer=writer,
        preferences=preferences,
        pending=pending,
        metrics=metrics,
        delay_seconds=delay,
        sleep=sleep,
    )
