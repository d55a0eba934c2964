"""Rebuilds the live marker set from items and the visibility filter."""
from __future__ import annotations

from typing import Dict, Iterable, Optional

import structlog

from cardmap.domain.models import Item
from cardmap.domain.visibility import VisibilityFilter
from cardmap.markers.layer import Bounds, MapSurface, Marker, ViewFit
from cardmap.markers.styles import marker_style
from cardmap.observability.metrics import MetricsRegistry

LOGGER = structlog.get_logger(__name__)


class MarkerReconciler:
    """Clears and re-places markers; never patches the surface incrementally."""

    def __init__(
        self,
        surface: MapSurface,
        visibility: VisibilityFilter,
        *,
        list_names: Optional[Dict[str, str]] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._surface = surface
        self._visibility = visibility
        self._list_names = list_names if list_names is not None else {}
        self._metrics = metrics or MetricsRegistry()

    def build_marker(self, item: Item) -> Optional[Marker]:
        if item.coordinates is None:
            return None
        group = self._visibility.group_for(item)
        return Marker(
            item_id=item.id,
            name=item.name,
            coordinates=item.coordinates,
            style=marker_style(item.label_keys),
            group_id=group.id if group else None,
            list_name=self._list_names.get(item.list_id),
            labels=tuple(label.name for label in item.labels if label.name),
            url=item.url,
        )

    def sync(self, items: Iterable[Item]) -> int:
        """Rebuild markers for visible items with coordinates; returns the marker count."""
        self._surface.clear()
        bounds = Bounds()
        placed = 0
        for item in self._visibility.visible(items):
            marker = self.build_marker(item)
            if marker is None:
                continue
            self._surface.add(marker)
            bounds.extend(marker.coordinates)
            placed += 1
        if placed:
            self._surface.fit_bounds(ViewFit(bounds=bounds))
        self._metrics.set("markers_rendered", placed)
        LOGGER.info("markers_synced", markers=placed)
        return placed
