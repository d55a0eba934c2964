import contextlib
import json
import re
from pathlib import Path

import pytest

from cardmap import main as cli
from conftest import FakeBackend, card

PLACES = {"12 High St": {"lat": "-37.8", "lon": "145.0"}}


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "DEFAULT_LOGGING", tmp_path / "logging.yaml")


@pytest.fixture
def backend():
    return FakeBackend(
        [card("a", "12 High St"), card("b", "-33.86,151.20"), card("c", "")],
        places=PLACES,
    )


@pytest.fixture
def wired(monkeypatch, settings, env, backend):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setattr(cli, "load_settings", lambda path: settings)

    @contextlib.asynccontextmanager
    async def session(**kwargs):
        async with backend.client() as client:
            yield client

    monkeypatch.setattr(cli, "create_http_session", session)
    return settings


def test_extract_prints_candidate(capsys):
    cli.main(["extract", "--text", "See https://maps.app.goo.gl/xyz123\n12 High St"])
    payload = json.loads(capsys.readouterr().out)
    assert payload == {"candidate": "https://maps.app.goo.gl/xyz123", "direct": False}


def test_enrich_dry_run_lists_plan_without_geocoding(capsys, wired, backend):
    cli.main(["enrich", "--dry-run"])
    plan = json.loads(capsys.readouterr().out)
    assert [(entry["id"], entry["candidate"], entry["direct"]) for entry in plan] == [
        ("a", "12 High St", False),
        ("b", "-33.86,151.20", True),
    ]
    assert backend.searches == []
    assert backend.posts == []


def test_enrich_writes_markers_and_metrics(capsys, wired, backend):
    cli.main(["enrich", "--delay", "0"])
    report = json.loads(capsys.readouterr().out)
    assert report["resolved"] == 2
    assert report["markers"] == 2
    assert report["resolve_rate"] == 1.0
    assert re.fullmatch(r"\d{8}T\d{6}", report["run_id"])
    markers = json.loads(Path(wired["app"]["markers_path"]).read_text(encoding="utf-8"))
    assert [feature["id"] for feature in markers["features"]] == ["a", "b"]
    metrics_files = list(Path(wired["app"]["metrics_dir"]).glob("run_*.json"))
    assert len(metrics_files) == 1
    assert json.loads(metrics_files[0].read_text(encoding="utf-8"))["counters"]["coordinates_resolved"] == 2


def test_groups_command_persists_changes(capsys, wired):
    cli.main(["groups", "--show", "backlog", "--no-completed"])
    shown = json.loads(capsys.readouterr().out)
    assert [group["visible"] for group in shown["groups"]] == [True, True]
    assert shown["include_completed"] is False

    cli.main(["groups"])
    again = json.loads(capsys.readouterr().out)
    assert again == shown


def test_groups_rejects_unknown_ids(wired):
    with pytest.raises(SystemExit):
        cli.main(["groups", "--hide", "nope"])


def test_validate_config_fails_without_credentials(capsys, monkeypatch, settings):
    monkeypatch.setattr(cli, "load_settings", lambda path: settings)
    monkeypatch.delenv("TRELLO_API_KEY", raising=False)
    monkeypatch.delenv("TRELLO_TOKEN", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["validate-config"])
    assert excinfo.value.code == 1
    report = {row["check"]: row["status"] for row in json.loads(capsys.readouterr().out)}
    assert report["credentials"] == "FAIL"
    assert report["board"] == "OK"


def test_missing_board_is_reported(monkeypatch, wired):
    wired["board"] = {}
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["enrich"])
    assert str(excinfo.value.code).startswith("Configuration error")
