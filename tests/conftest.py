import json

import httpx
import pytest

API = "https://trello.test/1"
SEARCH_URL = "https://nominatim.test/search"
ENDPOINT_URL = "https://backend.test/api/update-location"


class FakeBackend:
    """In-memory stand-in for the board API, the geocoder and the location endpoint."""

    def __init__(self, cards, *, coordinates=None, places=None, lists=None, bulk_fails=False, post_failures=None):
        self.cards = cards
        self.coordinates = dict(coordinates or {})
        self.places = dict(places or {})
        self.lists = lists or {"l1": "To do", "l2": "Doing"}
        self.bulk_fails = bulk_fails
        self.post_failures = dict(post_failures or {})
        self.searches = []
        self.posts = []
        self.puts = []
        self.requests = []

    def _field_items(self, card_id):
        text = self.coordinates.get(card_id)
        if text is None:
            return []
        return [{"idCustomField": "cf-coords", "value": {"text": text}}]

    def _store(self, card_id, text):
        for stored in self.cards:
            if stored["id"] == card_id:
                stored["coordinates"] = text

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = dict(request.url.params)
        self.requests.append((request.method, path, params))
        if request.url.host == "nominatim.test":
            self.searches.append(params["q"])
            place = self.places.get(params["q"])
            return httpx.Response(200, json=[place] if place else [])
        if request.url.host == "backend.test":
            body = json.loads(request.content)
            self.posts.append(body)
            if self.post_failures.get(body["cardId"]):
                self.post_failures[body["cardId"]] -= 1
                return httpx.Response(503, text="unavailable")
            self._store(body["cardId"], f"{body['lat']},{body['lng']}")
            return httpx.Response(200, json={"ok": True})
        if request.method == "PUT" and path.startswith("/1/cards/"):
            card_id = path.rsplit("/", 1)[-1]
            self.puts.append((card_id, params.get("coordinates")))
            self._store(card_id, params.get("coordinates"))
            return httpx.Response(200, json={})
        if path.endswith("/cards") and path.startswith("/1/boards/"):
            return httpx.Response(200, json=self.cards)
        if path.endswith("/customFields"):
            return httpx.Response(200, json=[
                {"id": "cf-notes", "name": "Notes"},
                {"id": "cf-coords", "name": "Coordinates"},
            ])
        if path.endswith("/lists") and params.get("cards") == "open":
            if self.bulk_fails:
                return httpx.Response(500, text="bulk unavailable")
            by_list = {}
            for card in self.cards:
                by_list.setdefault(card["idList"], []).append(
                    {"id": card["id"], "customFieldItems": self._field_items(card["id"])}
                )
            return httpx.Response(200, json=[{"id": lid, "cards": cards} for lid, cards in by_list.items()])
        if path.endswith("/lists"):
            return httpx.Response(200, json=[{"id": lid, "name": name} for lid, name in self.lists.items()])
        if path.endswith("/customFieldItems"):
            return httpx.Response(200, json=self._field_items(path.split("/")[-2]))
        return httpx.Response(404, text="not found")

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def card(card_id, desc="", *, list_id="l1", name=None, labels=None, pos=1, template=False):
    return {
        "id": card_id,
        "name": name or card_id.upper(),
        "desc": desc,
        "idList": list_id,
        "labels": labels or [],
        "pos": pos,
        "isTemplate": template,
        "shortUrl": f"https://trello.test/c/{card_id}",
    }


@pytest.fixture
def settings(tmp_path):
    return {
        "app": {
            "preferences_path": str(tmp_path / "preferences.json"),
            "pending_path": str(tmp_path / "pending.json"),
            "markers_path": str(tmp_path / "markers.geojson"),
            "metrics_dir": str(tmp_path / "metrics"),
        },
        "board": {
            "id": "board-1",
            "name": "Dispatch",
            "groups": [
                {"id": "active", "name": "Active", "list_ids": ["l1"], "include_on_map": True},
                {"id": "backlog", "name": "Backlog", "list_ids": ["l2"], "include_on_map": False},
            ],
        },
        "trello": {"api_base": API},
        "geocoding": {"search_url": SEARCH_URL, "delay_seconds": 0},
        "persistence": {"mode": "endpoint", "endpoint_url": ENDPOINT_URL},
    }


@pytest.fixture
def env():
    return {"TRELLO_API_KEY": "key", "TRELLO_TOKEN": "token"}
