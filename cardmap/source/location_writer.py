"""Writers that durably store resolved coordinates for a card."""
from __future__ import annotations

from typing import Protocol

import httpx
import structlog

from cardmap.domain.models import Coordinates
from cardmap.source.trello import DEFAULT_API_BASE

LOGGER = structlog.get_logger(__name__)


class LocationWriteError(RuntimeError):
    """Raised when the backend does not confirm a coordinate write."""

    def __init__(self, item_id: str, status_code: int, detail: str = "") -> None:
        super().__init__(f"Coordinate write for {item_id} failed with HTTP {status_code}: {detail}".rstrip(": "))
        self.item_id = item_id
        self.status_code = status_code


class LocationWriter(Protocol):
    async def write(self, item_id: str, coordinates: Coordinates) -> None: ...


def _check(response: httpx.Response, item_id: str) -> None:
    if response.is_success:
        return
    raise LocationWriteError(item_id, response.status_code, response.text[:200])


class EndpointLocationWriter:
    """POSTs ``{cardId, lat, lng}`` to the update-location backend endpoint."""

    def __init__(self, client: httpx.AsyncClient, *, endpoint_url: str) -> None:
        self._client = client
        self._endpoint_url = endpoint_url

    async def write(self, item_id: str, coordinates: Coordinates) -> None:
        payload = {"cardId": item_id, "lat": coordinates.lat, "lng": coordinates.lng}
        response = await self._client.post(self._endpoint_url, json=payload)
        _check(response, item_id)
        LOGGER.info("coordinates_persisted", item_id=item_id, via="endpoint")


class TrelloLocationWriter:
    """Writes the card's ``coordinates`` attribute directly with write credentials."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        token: str,
        api_base: str = DEFAULT_API_BASE,
    ) -> None:
        self._client = client
        self._auth = {"key": api_key, "token": token}
        self._api_base = api_base.rstrip("/")

    async def write(self, item_id: str, coordinates: Coordinates) -> None:
        params = {**self._auth, "coordinates": coordinates.as_text()}
        response = await self._client.put(f"{self._api_base}/cards/{item_id}", params=params)
        _check(response, item_id)
        LOGGER.info("coordinates_persisted", item_id=item_id, via="trello")
