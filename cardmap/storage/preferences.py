"""Disk-backed store for map visibility preferences."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import orjson

from cardmap.domain.visibility import VisibilityState

_PREFS_SCHEMA_VERSION = 1


class PreferenceStore:
    """Persist visibility state per board and the include-on-map default per group."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._boards: Dict[str, Dict[str, object]] = {}
        self._groups: Dict[str, bool] = {}
        if path.exists():
            try:
                payload = orjson.loads(path.read_bytes())
            except orjson.JSONDecodeError:
                payload = {}
            if isinstance(payload, dict) and payload.get("version") == _PREFS_SCHEMA_VERSION:
                self._boards = payload.get("boards", {})
                self._groups = payload.get("groups", {})
        else:
            path.parent.mkdir(parents=True, exist_ok=True)

    def load_visibility(self, board_id: str) -> Optional[VisibilityState]:
        entry = self._boards.get(board_id)
        if entry is None:
            return None
        return VisibilityState.from_payload(entry)

    def save_visibility(self, board_id: str, state: VisibilityState) -> None:
        self._boards[board_id] = state.to_payload()
        self._write_payload()

    def group_default(self, group_id: str) -> Optional[bool]:
        return self._groups.get(group_id)

    def set_group_default(self, group_id: str, include_on_map: bool) -> None:
        self._groups[group_id] = include_on_map
        self._write_payload()

    def _write_payload(self) -> None:
        payload = {"version": _PREFS_SCHEMA_VERSION, "boards": self._boards, "groups": self._groups}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
