"""Command-line entrypoints for the card map geocoder."""
from __future__ import annotations

import argparse
import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import tomllib
from dotenv import load_dotenv

from cardmap.domain.models import is_coordinate_text
from cardmap.geocode.client import create_http_session
from cardmap.geocode.extractor import extract_candidate
from cardmap.observability.log import configure_logging
from cardmap.observability.metrics import MetricsRegistry, record_duration
from cardmap.observability.tracing import clear_context
from cardmap.orchestrator.board_loader import ConfigurationError, load_board_config, validate_board
from cardmap.orchestrator.controller import MapController, build_controller
from cardmap.orchestrator.refresh_loop import run_refresh_loop
from cardmap.storage.preferences import PreferenceStore

DEFAULT_SETTINGS = Path("config/settings.toml")
DEFAULT_LOGGING = Path("config/logging.yaml")


def load_settings(path: Path) -> Dict[str, object]:
    """Read the TOML configuration file."""
    with path.open("rb") as handle:
        return tomllib.load(handle)


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="cardmap", description="Geocode board cards onto a map")
    sub = parser.add_subparsers(dest="command", required=True)

    enrich = sub.add_parser("enrich", help="Geocode cards lacking coordinates and write markers")
    enrich.add_argument("--delay", type=float, help="Seconds between geocoding requests")
    enrich.add_argument("--dry-run", action="store_true", help="Print the planned backlog without geocoding")

    watch = sub.add_parser("watch", help="Refresh the board periodically")
    watch.add_argument("--interval", type=float, help="Seconds between refreshes")
    watch.add_argument("--ticks", type=int, help="Number of refreshes to execute")

    extract = sub.add_parser("extract", help="Show the geocoding candidate for a description")
    extract.add_argument("--text", required=True, help="Card description text")

    groups = sub.add_parser("groups", help="Show or change map group visibility")
    groups.add_argument("--show", action="append", default=[], metavar="GROUP_ID")
    groups.add_argument("--hide", action="append", default=[], metavar="GROUP_ID")
    groups.add_argument("--completed", action=argparse.BooleanOptionalAction, default=None)
    groups.add_argument("--templates", action=argparse.BooleanOptionalAction, default=None)

    sub.add_parser("validate-config", help="Validate board, groups and credentials")

    return parser


def _app_paths(settings: Dict[str, object]) -> Dict[str, Path]:
    app = settings.get("app") or {}
    return {
        "markers": Path(str(app.get("markers_path", "data/markers.geojson"))),
        "metrics": Path(str(app.get("metrics_dir", "data/metrics"))),
    }


def _plan(controller: MapController) -> List[Dict[str, object]]:
    plan = []
    for item in controller.pending_items():
        candidate = extract_candidate(item.description)
        plan.append({
            "id": item.id,
            "name": item.name,
            "candidate": candidate,
            "direct": bool(candidate and is_coordinate_text(candidate)),
        })
    return plan


async def run_enrich(args: argparse.Namespace, settings: Dict[str, object]) -> Dict[str, object]:
    """Execute the enrich command end-to-end."""
    paths = _app_paths(settings)
    geocoding = settings.get("geocoding") or {}
    metrics = MetricsRegistry()
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")

    async with create_http_session(
        user_agent=str(geocoding.get("user_agent", "CardMap/1.0")),
        timeout=float(geocoding.get("timeout_seconds", 10)),
    ) as client:
        controller = build_controller(settings, client, metrics=metrics, delay_seconds=getattr(args, "delay", None))
        try:
            with record_duration(metrics, "run_duration_ms"):
                await controller.load()
                if getattr(args, "dry_run", False):
                    plan = _plan(controller)
                    print(json.dumps(plan, indent=2))
                    return {"run_id": run_id, "planned": len(plan)}
                summary = await controller.enrich()
        finally:
            clear_context()

    controller.context.layer.write_geojson(paths["markers"])
    metrics.export(path=paths["metrics"] / f"run_{run_id}.json", run_id=run_id)
    report = {
        "run_id": run_id,
        "processed": summary.processed,
        "resolved": summary.resolved,
        "skipped": summary.skipped,
        "failed": summary.failed,
        "markers": len(controller.context.layer.markers),
        "resolve_rate": metrics.resolve_rate(),
        "markers_path": str(paths["markers"]),
    }
    print(json.dumps(report, indent=2))
    return report


async def run_watch(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    geocoding = settings.get("geocoding") or {}
    refresh = settings.get("refresh") or {}
    interval = args.interval if getattr(args, "interval", None) is not None else float(refresh.get("interval_seconds", 300))
    async with create_http_session(
        user_agent=str(geocoding.get("user_agent", "CardMap/1.0")),
        timeout=float(geocoding.get("timeout_seconds", 10)),
    ) as client:
        controller = build_controller(settings, client)
        await run_refresh_loop(
            controller,
            interval_seconds=interval,
            ticks=getattr(args, "ticks", None),
            markers_path=_app_paths(settings)["markers"],
        )


def cmd_extract(args: argparse.Namespace) -> None:
    candidate = extract_candidate(args.text)
    print(json.dumps({
        "candidate": candidate,
        "direct": bool(candidate and is_coordinate_text(candidate)),
    }, indent=2))


def cmd_groups(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    board = load_board_config(settings)
    app = settings.get("app") or {}
    preferences = PreferenceStore(Path(str(app.get("preferences_path", "data/preferences.json"))))
    context = MapController.build_context(board, preferences)
    known = {group.id for group in context.groups}
    unknown = sorted((set(args.show) | set(args.hide)) - known)
    if unknown:
        raise SystemExit(f"Unknown group id(s): {', '.join(unknown)}")

    state = context.visibility
    changed = bool(args.show or args.hide) or args.completed is not None or args.templates is not None
    for group_id in args.show:
        state.set_group(group_id, True)
    for group_id in args.hide:
        state.set_group(group_id, False)
    if args.completed is not None:
        state.include_completed = args.completed
    if args.templates is not None:
        state.include_templates = args.templates
    if changed:
        preferences.save_visibility(board.id, state)

    print(json.dumps({
        "board_id": board.id,
        "groups": [
            {"id": group.id, "name": group.name, "visible": group.id in state.visible_groups}
            for group in context.groups
        ],
        "include_completed": state.include_completed,
        "include_templates": state.include_templates,
    }, indent=2))


def cmd_validate(settings: Dict[str, object]) -> None:
    results = validate_board(settings, os.environ)
    report = [
        {"check": name, "status": "OK" if ok else "FAIL", "detail": "" if ok else detail}
        for name, ok, detail in results
    ]
    print(json.dumps(report, indent=2))
    if not all(ok for _, ok, _ in results):
        raise SystemExit(1)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(DEFAULT_LOGGING)

    if args.command == "extract":
        cmd_extract(args)
        return

    settings = load_settings(DEFAULT_SETTINGS)

    if args.command == "validate-config":
        cmd_validate(settings)
        return

    try:
        if args.command == "groups":
            cmd_groups(args, settings)
            return
        if args.command == "enrich":
            asyncio.run(run_enrich(args, settings))
            return
        if args.command == "watch":
            asyncio.run(run_watch(args, settings))
    except ConfigurationError as exc:
        raise SystemExit(f"Configuration error: {exc}")
    except httpx.HTTPError as exc:
        raise SystemExit(f"Failed to load board: {exc}")


if __name__ == "__main__":
    main()
