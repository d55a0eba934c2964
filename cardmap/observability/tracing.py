"""Tracing helpers binding board and item context to log events."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, unbind_contextvars


def _logger():
    return structlog.get_logger("cardmap.trace")


def set_context(*, board_id: Optional[str] = None, item_id: Optional[str] = None) -> None:
    values = {key: value for key, value in {"board_id": board_id, "item_id": item_id}.items() if value}
    bind_contextvars(**values)


def clear_item_context() -> None:
    unbind_contextvars("item_id")


def clear_context() -> None:
    clear_contextvars()


@contextlib.contextmanager
def span(*, name: str, target: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().debug("trace_span", span=name, target=target, elapsed_ms=elapsed_ms)


def log_progress(*, processed: int, total: int) -> None:
    _logger().info("geocode_progress", processed=processed, total=total)
