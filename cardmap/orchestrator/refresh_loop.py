"""Periodic board refresh loop built on asyncio."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import structlog

from cardmap.orchestrator.controller import MapController
from cardmap.orchestrator.enrichment import RunSummary

LOGGER = structlog.get_logger(__name__)


async def run_refresh_loop(
    controller: MapController,
    *,
    interval_seconds: float = 300,
    ticks: Optional[int] = None,
    markers_path: Optional[Path] = None,
) -> List[RunSummary]:
    """Reload, enrich changed items and re-sync markers every ``interval_seconds``."""
    summaries: List[RunSummary] = []
    tick = 0
    while ticks is None or tick < ticks:
        summary = await controller.refresh_once()
        summaries.append(summary)
        if markers_path is not None:
            controller.context.layer.write_geojson(markers_path)
        LOGGER.info(
            "refresh_tick",
            tick=tick,
            resolved=summary.resolved,
            markers=len(controller.context.layer.markers),
        )
        tick += 1
        if ticks is None or tick < ticks:
            await asyncio.sleep(interval_seconds)
    return summaries
