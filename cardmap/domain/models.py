"""Pydantic models for board items and their geolocation."""
from __future__ import annotations

import math
import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_COORD_TEXT_RE = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?)\s*,\s*([-+]?\d+(?:\.\d+)?)\s*$")

COMPLETED_LABEL = "completed"


def is_completed_label(key: str) -> bool:
    """Any label mentioning completion counts, e.g. "Task Completed"."""
    return COMPLETED_LABEL in key


def is_coordinate_text(text: str) -> bool:
    """Return True when the text is a bare numeric ``lat,lng`` pair."""
    return bool(_COORD_TEXT_RE.match(text or ""))


class Coordinates(BaseModel):
    """A resolved latitude/longitude pair in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    @field_validator("lat", "lng")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("coordinate must be finite")
        return value

    @classmethod
    def parse_text(cls, text: str) -> Optional["Coordinates"]:
        """Parse the ``lat,lng`` text stored on a card, or return None."""
        match = _COORD_TEXT_RE.match(text or "")
        if not match:
            return None
        try:
            return cls(lat=float(match.group(1)), lng=float(match.group(2)))
        except ValueError:
            return None

    def as_text(self) -> str:
        return f"{self.lat},{self.lng}"


class Label(BaseModel):
    """A card label; matching uses the name, falling back to the colour."""

    name: str = ""
    color: Optional[str] = None

    @property
    def key(self) -> str:
        return (self.name or self.color or "").strip().lower()


class Item(BaseModel):
    """A work item (Trello card) that may carry coordinates."""

    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    list_id: str = ""
    labels: List[Label] = Field(default_factory=list)
    coordinates: Optional[Coordinates] = None
    position: float = 0.0
    is_template: bool = False
    url: Optional[str] = None

    @property
    def label_keys(self) -> List[str]:
        return [label.key for label in self.labels if label.key]

    @property
    def is_completed(self) -> bool:
        return any(is_completed_label(key) for key in self.label_keys)

    def has_description(self) -> bool:
        return bool(self.description and self.description.strip())


class Group(BaseModel):
    """A user-defined visibility bucket over board lists."""

    id: str = Field(min_length=1)
    name: str = ""
    list_ids: List[str] = Field(default_factory=list)
    include_on_map: bool = True
    ignore_first_item: bool = False

    def contains(self, item: Item) -> bool:
        return item.list_id in self.list_ids
