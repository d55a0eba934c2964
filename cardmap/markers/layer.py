"""Marker primitives and an in-memory map surface with GeoJSON export."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import orjson

from cardmap.domain.models import Coordinates
from cardmap.markers.styles import MarkerStyle

FIT_PADDING = 50
FIT_MAX_ZOOM = 15


@dataclass(frozen=True)
class Marker:
    item_id: str
    name: str
    coordinates: Coordinates
    style: MarkerStyle
    group_id: Optional[str] = None
    list_name: Optional[str] = None
    labels: tuple = ()
    url: Optional[str] = None


@dataclass
class Bounds:
    """Axis-aligned lat/lng box grown one point at a time."""

    south: Optional[float] = None
    west: Optional[float] = None
    north: Optional[float] = None
    east: Optional[float] = None

    def extend(self, coords: Coordinates) -> None:
        self.south = coords.lat if self.south is None else min(self.south, coords.lat)
        self.north = coords.lat if self.north is None else max(self.north, coords.lat)
        self.west = coords.lng if self.west is None else min(self.west, coords.lng)
        self.east = coords.lng if self.east is None else max(self.east, coords.lng)

    def is_valid(self) -> bool:
        return None not in (self.south, self.west, self.north, self.east)


@dataclass(frozen=True)
class ViewFit:
    bounds: Bounds
    padding: int = FIT_PADDING
    max_zoom: int = FIT_MAX_ZOOM


class MapSurface(Protocol):
    def clear(self) -> None: ...

    def add(self, marker: Marker) -> None: ...

    def fit_bounds(self, fit: ViewFit) -> None: ...


@dataclass
class MarkerLayer:
    """Holds the live marker set and the most recent view-fit request."""

    markers: Dict[str, Marker] = field(default_factory=dict)
    view: Optional[ViewFit] = None

    def clear(self) -> None:
        self.markers.clear()

    def add(self, marker: Marker) -> None:
        self.markers[marker.item_id] = marker

    def fit_bounds(self, fit: ViewFit) -> None:
        self.view = fit

    def to_geojson(self) -> Dict[str, object]:
        features: List[Dict[str, object]] = []
        for marker in self.markers.values():
            features.append(
                {
                    "type": "Feature",
                    "id": marker.item_id,
                    "geometry": {
                        "type": "Point",
                        "coordinates": [marker.coordinates.lng, marker.coordinates.lat],
                    },
                    "properties": {
                        "name": marker.name,
                        "group": marker.group_id,
                        "list": marker.list_name,
                        "labels": list(marker.labels),
                        "url": marker.url,
                        "icon": marker.style.icon,
                        "color": marker.style.color,
                        "prefix": marker.style.prefix,
                    },
                }
            )
        collection: Dict[str, object] = {"type": "FeatureCollection", "features": features}
        if self.view is not None and self.view.bounds.is_valid():
            bounds = self.view.bounds
            collection["bbox"] = [bounds.west, bounds.south, bounds.east, bounds.north]
        return collection

    def write_geojson(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(orjson.dumps(self.to_geojson(), option=orjson.OPT_INDENT_2))
        return path
