from cardmap.domain.models import Coordinates
from cardmap.storage.pending import PendingLocationStore

COORDS = Coordinates(lat=-37.8, lng=145.0)


def test_entries_survive_reload_per_board(tmp_path):
    path = tmp_path / "state" / "pending.json"
    store = PendingLocationStore(path)
    store.record("board-1", "a", COORDS, "12 High St")
    store.record("board-2", "z", Coordinates(lat=1, lng=2), "Elsewhere")

    reloaded = PendingLocationStore(path)
    entry = reloaded.get("board-1", "a")
    assert entry.coordinates == COORDS
    assert entry.matches("12 High St")
    assert not entry.matches("12 High Street")
    assert list(reloaded.for_board("board-2")) == ["z"]


def test_discard_removes_entry_and_empty_board(tmp_path):
    path = tmp_path / "pending.json"
    store = PendingLocationStore(path)
    store.record("board-1", "a", COORDS, "12 High St")
    store.discard("board-1", "a")
    store.discard("board-1", "missing")
    assert PendingLocationStore(path).for_board("board-1") == {}


def test_unreadable_file_starts_empty(tmp_path):
    path = tmp_path / "pending.json"
    path.write_text("not json", encoding="utf-8")
    assert PendingLocationStore(path).for_board("board-1") == {}
    path.write_text('{"version": 2, "boards": {"board-1": {}}}', encoding="utf-8")
    assert PendingLocationStore(path).for_board("board-1") == {}
