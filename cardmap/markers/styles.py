"""Marker icon and colour selection from card labels."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from cardmap.domain.models import is_completed_label

_EN_ROUTE = {"en route", "enroute", "en-route"}
_ON_SITE = {"on scene", "on site", "onscene", "onsite"}
_PRIORITY_COLORS = (
    ("priority", "red"),
    ("important", "orange"),
    ("routine", "yellow"),
)


@dataclass(frozen=True)
class MarkerStyle:
    icon: str = "map-marker"
    color: str = "blue"
    prefix: str = "fa"


DEFAULT_STYLE = MarkerStyle()
COMPLETED_STYLE = MarkerStyle(icon="check-circle", color="green")


def marker_style(label_keys: Iterable[str]) -> MarkerStyle:
    """Pick the marker style for a set of lower-cased label names.

    Completion wins outright; otherwise the workflow label sets the icon and
    the priority label sets the colour. Completion and priority words match
    anywhere in a label ("High Priority"), workflow labels must match exactly.
    """
    keys = {key.strip().lower() for key in label_keys if key}
    if any(is_completed_label(key) for key in keys):
        return COMPLETED_STYLE

    icon = DEFAULT_STYLE.icon
    if keys & _EN_ROUTE:
        icon = "truck"
    elif keys & _ON_SITE:
        icon = "wrench"

    color = next(
        (color for word, color in _PRIORITY_COLORS if any(word in key for key in keys)),
        DEFAULT_STYLE.color,
    )
    return MarkerStyle(icon=icon, color=color)
