"""Candidate address extraction from free-text card descriptions."""
from __future__ import annotations

import re
from typing import Optional

_MAP_LINK_RE = re.compile(
    r"https?://(?:"
    r"(?:www\.)?google\.[a-z.]+/maps"
    r"|maps\.google\.[a-z.]+"
    r"|goo\.gl/maps"
    r"|maps\.app\.goo\.gl"
    r")[^\s<>\"')\]]*",
    re.IGNORECASE,
)
_COORD_PAIR_RE = re.compile(r"(?<![\d.])([-+]?\d+\.\d+)\s*,\s*([-+]?\d+\.\d+)(?![\d.])")

MIN_LINE_LENGTH = 3


def _in_range(lat: str, lng: str) -> bool:
    return abs(float(lat)) <= 90 and abs(float(lng)) <= 180


def find_map_link(description: str) -> Optional[str]:
    match = _MAP_LINK_RE.search(description)
    return match.group(0) if match else None


def find_coordinate_pair(description: str) -> Optional[str]:
    for match in _COORD_PAIR_RE.finditer(description):
        lat, lng = match.group(1), match.group(2)
        if _in_range(lat, lng):
            return f"{lat},{lng}"
    return None


def first_line(description: str) -> Optional[str]:
    for line in description.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped if len(stripped) > MIN_LINE_LENGTH else None
    return None


def extract_candidate(description: Optional[str]) -> Optional[str]:
    """Return the text to geocode for a description, or None.

    Rules are tried in order and the first hit wins: a map-service link
    (verbatim), a decimal ``lat,lng`` pair, then the first non-empty line
    when it is longer than three characters.
    """
    if not description or not description.strip():
        return None
    return find_map_link(description) or find_coordinate_pair(description) or first_line(description)


class AddressExtractor:
    """Callable wrapper so the queue can take the extractor as a collaborator."""

    def extract(self, description: Optional[str]) -> Optional[str]:
        return extract_candidate(description)
