"""HTTP session factory and Nominatim search client."""
from __future__ import annotations

import contextlib
from typing import AsyncIterator, Dict, List, Optional

import httpx

DEFAULT_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_USER_AGENT = "CardMap/1.0"


class NominatimClient:
    """Free-text search against a Nominatim-compatible geocoding endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        search_url: str = DEFAULT_SEARCH_URL,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._search_url = search_url
        self._timeout = timeout

    async def search(self, query: str, *, limit: int = 1) -> List[Dict[str, object]]:
        """Return the ranked result list for ``query``; raises on transport errors."""
        params = {"format": "json", "q": query, "limit": str(limit)}
        response = await self._client.get(self._search_url, params=params, timeout=self._timeout)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, list):
            raise ValueError(f"Unexpected geocoding payload type: {type(payload).__name__}")
        return payload


@contextlib.asynccontextmanager
async def create_http_session(
    *,
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield a shared ``httpx.AsyncClient`` for the duration of the context."""
    headers = {"User-Agent": user_agent}
    limits = httpx.Limits(max_connections=4, max_keepalive_connections=4)
    async with httpx.AsyncClient(headers=headers, limits=limits, timeout=timeout, transport=transport) as client:
        yield client
