import asyncio

import httpx

from cardmap.domain.models import Coordinates
from cardmap.geocode.client import NominatimClient
from cardmap.geocode.resolver import CoordinateResolver
from cardmap.observability.metrics import MetricsRegistry


class FakeLookup:
    def __init__(self, results=None, error=None):
        self.results = results if results is not None else []
        self.error = error
        self.queries = []

    async def search(self, query, *, limit=1):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.results


def test_direct_coordinates_skip_lookup():
    lookup = FakeLookup()
    metrics = MetricsRegistry()
    resolver = CoordinateResolver(lookup, metrics=metrics)
    coords = asyncio.run(resolver.resolve("40.7128,-74.0060"))
    assert coords == Coordinates(lat=40.7128, lng=-74.006)
    assert lookup.queries == []
    assert metrics.get("geocode_direct_parses") == 1
    assert metrics.get("geocode_lookups") == 0


def test_direct_out_of_range_pair_is_unresolved_without_lookup():
    lookup = FakeLookup(results=[{"lat": "1", "lon": "2"}])
    resolver = CoordinateResolver(lookup)
    assert asyncio.run(resolver.resolve("95,200")) is None
    assert lookup.queries == []


def test_free_text_uses_first_result():
    lookup = FakeLookup(results=[{"lat": "-37.8409", "lon": "145.0123"}, {"lat": "0", "lon": "0"}])
    resolver = CoordinateResolver(lookup)
    url = "https://www.google.com/maps/place/XYZ"
    coords = asyncio.run(resolver.resolve(url))
    assert coords == Coordinates(lat=-37.8409, lng=145.0123)
    assert lookup.queries == [url]


def test_empty_results_are_unresolved():
    resolver = CoordinateResolver(FakeLookup(results=[]))
    assert asyncio.run(resolver.resolve("Nowhere Street")) is None


def test_transport_errors_surface_as_none():
    metrics = MetricsRegistry()
    error = httpx.ConnectError("boom", request=httpx.Request("GET", "https://nominatim.test/search"))
    resolver = CoordinateResolver(FakeLookup(error=error), metrics=metrics)
    assert asyncio.run(resolver.resolve("10 Downing Street")) is None
    assert metrics.get("geocode_failures") == 1


def test_malformed_result_surfaces_as_none():
    resolver = CoordinateResolver(FakeLookup(results=[{"lat": "north", "lon": "2"}]))
    assert asyncio.run(resolver.resolve("Somewhere")) is None


def test_nominatim_client_query_and_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["agent"] = request.headers.get("User-Agent")
        return httpx.Response(200, json=[{"lat": "51.5034", "lon": "-0.1276"}])

    async def _run():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), headers={"User-Agent": "CardMapTest/1.0"}
        ) as client:
            resolver = CoordinateResolver(NominatimClient(client, search_url="https://nominatim.test/search"))
            return await resolver.resolve("10 Downing Street, London")

    coords = asyncio.run(_run())
    assert coords == Coordinates(lat=51.5034, lng=-0.1276)
    assert seen["params"] == {"format": "json", "q": "10 Downing Street, London", "limit": "1"}
    assert seen["agent"] == "CardMapTest/1.0"


def test_nominatim_http_error_is_unresolved():
    async def _run():
        transport = httpx.MockTransport(lambda request: httpx.Response(429, text="slow down"))
        async with httpx.AsyncClient(transport=transport) as client:
            resolver = CoordinateResolver(NominatimClient(client, search_url="https://nominatim.test/search"))
            return await resolver.resolve("Anywhere")

    assert asyncio.run(_run()) is None
