"""Turns extracted candidates into coordinates."""
from __future__ import annotations

from typing import Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError

from cardmap.domain.models import Coordinates, is_coordinate_text
from cardmap.observability.metrics import MetricsRegistry
from cardmap.observability.tracing import span

LOGGER = structlog.get_logger(__name__)


class GeocodingLookup(Protocol):
    async def search(self, query: str, *, limit: int = 1) -> list: ...


class CoordinateResolver:
    """Parses bare coordinate pairs locally and geocodes everything else."""

    def __init__(self, lookup: GeocodingLookup, *, metrics: Optional[MetricsRegistry] = None) -> None:
        self._lookup = lookup
        self._metrics = metrics or MetricsRegistry()

    async def resolve(self, candidate: str) -> Optional[Coordinates]:
        """Return coordinates for the candidate, or None when it cannot be resolved."""
        if is_coordinate_text(candidate):
            self._metrics.incr("geocode_direct_parses")
            coords = Coordinates.parse_text(candidate)
            if coords is None:
                LOGGER.debug("coordinates_out_of_range", candidate=candidate)
            return coords

        self._metrics.incr("geocode_lookups")
        try:
            with span(name="geocode_lookup", target=candidate):
                results = await self._lookup.search(candidate, limit=1)
        except (httpx.HTTPError, ValueError) as exc:
            self._metrics.incr("geocode_failures")
            LOGGER.warning("geocode_failed", candidate=candidate, reason=str(exc))
            return None
        if not results:
            LOGGER.debug("geocode_no_results", candidate=candidate)
            return None

        first = results[0]
        try:
            return Coordinates(lat=float(first["lat"]), lng=float(first["lon"]))
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            self._metrics.incr("geocode_failures")
            LOGGER.warning("geocode_bad_result", candidate=candidate, reason=str(exc))
            return None
