import asyncio

import httpx
import pytest

from cardmap.domain.models import Coordinates
from cardmap.source.location_writer import TrelloLocationWriter
from cardmap.source.trello import CARD_FIELDS, TrelloBoardSource, card_coordinates, card_to_item
from conftest import API, FakeBackend, card


def _fetch(backend, board_id="board-1"):
    async def _run():
        async with backend.client() as client:
            source = TrelloBoardSource(client, api_key="key", token="token", api_base=API)
            return await source.fetch_items(board_id), await source.fetch_lists(board_id)

    return asyncio.run(_run())


def test_card_to_item_maps_fields():
    item = card_to_item(
        card("a", "12 High St", labels=[{"name": "Priority", "color": "red"}], pos="16384.5", template=True),
        "1.5, 2.5",
    )
    assert item.description == "12 High St"
    assert item.label_keys == ["priority"]
    assert item.position == 16384.5
    assert item.is_template
    assert item.coordinates == Coordinates(lat=1.5, lng=2.5)
    assert item.url == "https://trello.test/c/a"


def test_unparseable_stored_coordinates_are_ignored():
    assert card_to_item(card("a"), "not a pair").coordinates is None


def test_fetch_items_attaches_coordinates_from_custom_field():
    backend = FakeBackend(
        [card("a", "somewhere"), card("b", "elsewhere", list_id="l2")],
        coordinates={"a": "-37.81,144.96"},
    )
    items, lists = _fetch(backend)
    by_id = {item.id: item for item in items}
    assert by_id["a"].coordinates == Coordinates(lat=-37.81, lng=144.96)
    assert by_id["b"].coordinates is None
    assert lists == {"l1": "To do", "l2": "Doing"}
    assert all(params["key"] == "key" and params["token"] == "token" for _, _, params in backend.requests)
    assert not any(path.endswith("/customFieldItems") for _, path, _ in backend.requests)


def test_per_card_fallback_when_bulk_request_fails():
    backend = FakeBackend([card("a"), card("b")], coordinates={"b": "10,20"}, bulk_fails=True)
    items, _ = _fetch(backend)
    assert [item.coordinates for item in items] == [None, Coordinates(lat=10, lng=20)]
    per_card = [path for _, path, _ in backend.requests if path.endswith("/customFieldItems")]
    assert per_card == ["/1/cards/a/customFieldItems", "/1/cards/b/customFieldItems"]


def test_unauthorised_board_raises():
    async def _run():
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="invalid token"))
        async with httpx.AsyncClient(transport=transport) as client:
            await TrelloBoardSource(client, api_key="k", token="t", api_base=API).fetch_items("b")

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(_run())


@pytest.mark.parametrize(
    "value, expected",
    [
        ("-37.81,144.96", Coordinates(lat=-37.81, lng=144.96)),
        ({"latitude": -37.81, "longitude": 144.96}, Coordinates(lat=-37.81, lng=144.96)),
        ({"lat": "1.5", "lng": "2.5"}, Coordinates(lat=1.5, lng=2.5)),
        ({"latitude": 95, "longitude": 0}, None),
        ({}, None),
        ("", None),
        (None, None),
    ],
)
def test_card_coordinates_attribute_forms(value, expected):
    assert card_coordinates(value) == expected


def test_card_attribute_wins_over_custom_field():
    item = card_to_item({**card("a"), "coordinates": {"latitude": 10, "longitude": 20}}, "30,40")
    assert item.coordinates == Coordinates(lat=10, lng=20)


def test_written_coordinates_come_back_on_next_fetch():
    backend = FakeBackend([card("a", "12 High St"), card("b", "elsewhere")])

    async def _run():
        async with backend.client() as client:
            writer = TrelloLocationWriter(client, api_key="wk", token="wt", api_base=API)
            await writer.write("a", Coordinates(lat=-37.8, lng=145.0))
            source = TrelloBoardSource(client, api_key="key", token="token", api_base=API)
            return await source.fetch_items("board-1")

    items = asyncio.run(_run())
    assert items[0].coordinates == Coordinates(lat=-37.8, lng=145.0)
    assert items[1].coordinates is None
    cards_request = next(params for _, path, params in backend.requests if path.endswith("/cards"))
    assert cards_request["fields"] == CARD_FIELDS
    assert "coordinates" in CARD_FIELDS.split(",")


def test_custom_fields_skipped_when_every_card_has_coordinates():
    backend = FakeBackend([{**card("a"), "coordinates": "1,2"}, {**card("b"), "coordinates": "3,4"}])
    items, _ = _fetch(backend)
    assert [item.coordinates for item in items] == [Coordinates(lat=1, lng=2), Coordinates(lat=3, lng=4)]
    assert not any(path.endswith("/customFields") for _, path, _ in backend.requests)
