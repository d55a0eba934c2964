"""Resolved coordinates whose write was not confirmed, kept per board until it is."""
from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional

import orjson

from cardmap.domain.models import Coordinates

_PENDING_SCHEMA_VERSION = 1


def description_digest(description: str) -> str:
    return hashlib.sha1(description.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class PendingLocation:
    """Coordinates awaiting a confirmed write, tied to the description they came from."""

    lat: float
    lng: float
    description_sha1: str

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)

    def matches(self, description: str) -> bool:
        return self.description_sha1 == description_digest(description)


class PendingLocationStore:
    """orjson file of ``{board_id: {item_id: PendingLocation}}``."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._boards: Dict[str, Dict[str, PendingLocation]] = {}
        if not path.exists():
            return
        try:
            payload = orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError:
            return
        if not isinstance(payload, dict) or payload.get("version") != _PENDING_SCHEMA_VERSION:
            return
        for board_id, entries in (payload.get("boards") or {}).items():
            self._boards[board_id] = {item_id: PendingLocation(**entry) for item_id, entry in entries.items()}

    def for_board(self, board_id: str) -> Dict[str, PendingLocation]:
        return dict(self._boards.get(board_id, {}))

    def get(self, board_id: str, item_id: str) -> Optional[PendingLocation]:
        return self._boards.get(board_id, {}).get(item_id)

    def record(self, board_id: str, item_id: str, coordinates: Coordinates, description: str) -> None:
        self._boards.setdefault(board_id, {})[item_id] = PendingLocation(
            lat=coordinates.lat,
            lng=coordinates.lng,
            description_sha1=description_digest(description),
        )
        self._write_payload()

    def discard(self, board_id: str, item_id: str) -> None:
        entries = self._boards.get(board_id)
        if not entries or item_id not in entries:
            return
        del entries[item_id]
        if not entries:
            del self._boards[board_id]
        self._write_payload()

    def _write_payload(self) -> None:
        payload = {
            "version": _PENDING_SCHEMA_VERSION,
            "boards": {
                board_id: {item_id: asdict(entry) for item_id, entry in entries.items()}
                for board_id, entries in self._boards.items()
            },
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
