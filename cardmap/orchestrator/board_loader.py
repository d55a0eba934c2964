"""Validation of board, group and credential configuration."""
from __future__ import annotations

import os
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from cardmap.domain.models import Group


class ConfigurationError(RuntimeError):
    """Raised when the board or credentials needed to start are missing."""


class BoardConfig(BaseModel):
    """Validated board selection and its map groups."""

    id: str = Field(min_length=1)
    name: str = ""
    groups: List[Group] = Field(min_length=1)

    @field_validator("id", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class Credentials(BaseModel):
    api_key: str = Field(min_length=1)
    token: str = Field(min_length=1)
    write_key: Optional[str] = None
    write_token: Optional[str] = None


def load_board_config(settings: Mapping[str, object]) -> BoardConfig:
    board = dict(settings.get("board") or {})
    try:
        return BoardConfig(**board)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid board configuration: {exc}") from exc


def load_credentials(
    settings: Mapping[str, object],
    env: Optional[Mapping[str, str]] = None,
) -> Credentials:
    env = os.environ if env is None else env
    mode = str((settings.get("persistence") or {}).get("mode", "endpoint"))
    try:
        credentials = Credentials(
            api_key=env.get("TRELLO_API_KEY", ""),
            token=env.get("TRELLO_TOKEN", ""),
            write_key=env.get("TRELLO_WRITE_KEY") or None,
            write_token=env.get("TRELLO_WRITE_TOKEN") or None,
        )
    except ValidationError as exc:
        raise ConfigurationError("TRELLO_API_KEY and TRELLO_TOKEN must be set") from exc
    if mode == "trello" and not (credentials.write_key and credentials.write_token):
        raise ConfigurationError("persistence.mode = 'trello' requires TRELLO_WRITE_KEY and TRELLO_WRITE_TOKEN")
    return credentials


def validate_board(
    settings: Mapping[str, object],
    env: Optional[Mapping[str, str]] = None,
) -> List[Tuple[str, bool, str]]:
    """Run every configuration check, returning results without raising."""
    results: List[Tuple[str, bool, str]] = []
    try:
        board = load_board_config(settings)
    except ConfigurationError as exc:
        results.append(("board", False, str(exc)))
    else:
        results.append(("board", True, "ok"))
        list_owner: Dict[str, str] = {}
        for group in board.groups:
            clashes = [list_owner[list_id] for list_id in group.list_ids if list_id in list_owner]
            if not group.list_ids:
                results.append((f"group:{group.id}", False, "no lists mapped"))
            elif clashes:
                results.append((f"group:{group.id}", False, f"lists already mapped by {sorted(set(clashes))}"))
            else:
                results.append((f"group:{group.id}", True, "ok"))
            for list_id in group.list_ids:
                list_owner.setdefault(list_id, group.id)
    try:
        load_credentials(settings, env)
    except ConfigurationError as exc:
        results.append(("credentials", False, str(exc)))
    else:
        results.append(("credentials", True, "ok"))
    mode = str((settings.get("persistence") or {}).get("mode", "endpoint"))
    if mode not in {"endpoint", "trello"}:
        results.append(("persistence", False, f"unknown mode {mode!r}"))
    elif mode == "endpoint" and not (settings.get("persistence") or {}).get("endpoint_url"):
        results.append(("persistence", False, "endpoint_url is required"))
    else:
        results.append(("persistence", True, "ok"))
    return results
