"""In-process counters and gauges for geocoding runs."""
from __future__ import annotations

import contextlib
import time
from collections import Counter
from pathlib import Path
from typing import Dict, Iterator, Optional

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

COUNTERS = (
    "items_enqueued",
    "geocode_lookups",
    "geocode_direct_parses",
    "geocode_failures",
    "coordinates_resolved",
    "entries_skipped",
    "persist_failures",
    "persist_retries",
    "run_duration_ms",
)
# Gauges hold the latest observed value rather than a running total.
GAUGES = ("items_loaded", "markers_rendered")


class MetricsRegistry:
    """Counters accumulate with ``incr``; gauges are overwritten with ``set``."""

    def __init__(self) -> None:
        self._counters: Counter = Counter({name: 0 for name in COUNTERS})
        self._gauges: Dict[str, int] = {name: 0 for name in GAUGES}

    def incr(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def set(self, name: str, value: int) -> None:
        self._gauges[name] = value

    def get(self, name: str) -> int:
        if name in self._gauges:
            return self._gauges[name]
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        """Counters and gauges merged into one flat mapping."""
        merged = dict(self._counters)
        merged.update(self._gauges)
        return merged

    def resolve_rate(self) -> Optional[float]:
        """Share of attempted resolutions that produced coordinates."""
        attempts = self._counters["geocode_lookups"] + self._counters["geocode_direct_parses"]
        if not attempts:
            return None
        return round(self._counters["coordinates_resolved"] / attempts, 3)

    def export(self, *, path: Path, run_id: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "run_id": run_id,
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "counters": self.snapshot(),
            "resolve_rate": self.resolve_rate(),
        }
        path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        LOGGER.info("metrics_exported", path=str(path), run_id=run_id)
        return path


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        registry.incr(metric_name, elapsed_ms)
        LOGGER.info("run_timed", metric=metric_name, duration_ms=elapsed_ms)
