"""Read-only Trello client that loads board cards as items."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

import httpx
import structlog

from cardmap.domain.models import Coordinates, Item, Label

LOGGER = structlog.get_logger(__name__)

DEFAULT_API_BASE = "https://api.trello.com/1"
DEFAULT_FIELD_HINTS = ("coordinates", "location", "coord")
CARD_FIELDS = "id,name,desc,idList,labels,pos,isTemplate,shortUrl,coordinates"


def _custom_field_text(value: object) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        text = value.get("text")
        return text if isinstance(text, str) else None
    return None


def card_coordinates(value: object) -> Optional[Coordinates]:
    """Read the card's own ``coordinates`` attribute.

    Trello returns it as ``"lat,lng"`` text or as an object keyed
    ``latitude``/``longitude`` (``lat``/``lng`` is accepted too).
    """
    if isinstance(value, str):
        return Coordinates.parse_text(value)
    if not isinstance(value, dict):
        return None
    lat = value.get("latitude", value.get("lat"))
    lng = value.get("longitude", value.get("lng"))
    try:
        return Coordinates(lat=float(lat), lng=float(lng))
    except (TypeError, ValueError):
        return None


def card_to_item(card: Dict[str, object], coordinates_text: Optional[str] = None) -> Item:
    """Build an ``Item`` from a Trello card payload.

    The card's own ``coordinates`` win; ``coordinates_text`` from the custom
    field is only used when the card has none.
    """
    labels = [
        Label(name=str(label.get("name") or ""), color=label.get("color"))
        for label in card.get("labels") or []
        if isinstance(label, dict)
    ]
    try:
        position = float(card.get("pos") or 0)
    except (TypeError, ValueError):
        position = 0.0
    return Item(
        id=str(card["id"]),
        name=str(card.get("name") or ""),
        description=str(card.get("desc") or ""),
        list_id=str(card.get("idList") or ""),
        labels=labels,
        coordinates=card_coordinates(card.get("coordinates")) or (
            Coordinates.parse_text(coordinates_text) if coordinates_text else None
        ),
        position=position,
        is_template=bool(card.get("isTemplate", False)),
        url=card.get("shortUrl"),
    )


class TrelloBoardSource:
    """Fetches cards, list names and stored coordinates for a board."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        token: str,
        api_base: str = DEFAULT_API_BASE,
        field_hints: Sequence[str] = DEFAULT_FIELD_HINTS,
    ) -> None:
        self._client = client
        self._auth = {"key": api_key, "token": token}
        self._api_base = api_base.rstrip("/")
        self._field_hints = tuple(hint.lower() for hint in field_hints)

    async def _get(self, path: str, **params: str) -> object:
        response = await self._client.get(f"{self._api_base}{path}", params={**params, **self._auth})
        response.raise_for_status()
        return response.json()

    async def fetch_items(self, board_id: str) -> List[Item]:
        """Return every card on the board with any stored coordinates attached."""
        cards = await self._get(f"/boards/{board_id}/cards", fields=CARD_FIELDS)
        if not isinstance(cards, list):
            raise ValueError("Unexpected cards payload")
        missing = [str(card["id"]) for card in cards if card_coordinates(card.get("coordinates")) is None]
        coordinates = await self._fetch_coordinates(board_id, missing) if missing else {}
        items = [card_to_item(card, coordinates.get(str(card["id"]))) for card in cards]
        LOGGER.info(
            "items_fetched",
            board_id=board_id,
            total=len(items),
            with_coordinates=sum(1 for item in items if item.coordinates),
            with_description=sum(1 for item in items if item.has_description()),
        )
        return items

    async def fetch_lists(self, board_id: str) -> Dict[str, str]:
        """Return a list id to list name mapping."""
        lists = await self._get(f"/boards/{board_id}/lists", fields="id,name")
        return {str(entry["id"]): str(entry.get("name") or "") for entry in lists or []}

    def _match_field(self, fields: Iterable[Dict[str, object]]) -> Optional[str]:
        for field in fields:
            name = str(field.get("name") or "").lower()
            if any(hint in name for hint in self._field_hints):
                return str(field["id"])
        return None

    async def _fetch_coordinates(self, board_id: str, card_ids: List[str]) -> Dict[str, str]:
        try:
            fields = await self._get(f"/boards/{board_id}/customFields")
        except httpx.HTTPError as exc:
            LOGGER.warning("custom_fields_unavailable", board_id=board_id, reason=str(exc))
            return {}
        field_id = self._match_field(fields or [])
        if field_id is None:
            LOGGER.info("coordinates_field_missing", board_id=board_id)
            return {}

        try:
            lists = await self._get(
                f"/boards/{board_id}/lists", cards="open", customFieldItems="open", fields="id"
            )
            found: Dict[str, str] = {}
            for entry in lists or []:
                for card in entry.get("cards") or []:
                    text = self._field_value(card.get("customFieldItems") or [], field_id)
                    if text:
                        found[str(card["id"])] = text
            return found
        except httpx.HTTPError as exc:
            LOGGER.warning("custom_field_items_bulk_failed", board_id=board_id, reason=str(exc))
        return await self._fetch_coordinates_per_card(card_ids, field_id)

    async def _fetch_coordinates_per_card(self, card_ids: List[str], field_id: str) -> Dict[str, str]:
        found: Dict[str, str] = {}
        for card_id in card_ids:
            try:
                items = await self._get(f"/cards/{card_id}/customFieldItems")
            except httpx.HTTPError:
                continue
            text = self._field_value(items or [], field_id)
            if text:
                found[card_id] = text
        return found

    @staticmethod
    def _field_value(items: Iterable[Dict[str, object]], field_id: str) -> Optional[str]:
        for item in items:
            if item.get("idCustomField") == field_id and item.get("value"):
                return _custom_field_text(item["value"])
        return None
