#!/usr/bin/env python3
"""Logging and in-process telemetry shared by the router and recall modules.

Every component logs through ``get_logger(<component>)``. Records are written
to stderr as one JSON object per line::

    {"ts": "...Z", "level": "info", "component": "semantic_router",
     "event": "router_trained", "data": {"routes": 10}}

``metrics`` is a process-wide registry. The router counts decisions, cache
hits and rejections there; recall records backend latency and corpus sizes.
``timed`` wraps a block and stores its duration as ``<name>_ms``.

The verbosity comes from ``HOUDI_RELEVANCE_LOG_LEVEL`` (default ``INFO``) and
is read once per component, when its logger is first created.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

LOG_LEVEL_ENV = "HOUDI_RELEVANCE_LOG_LEVEL"
LOGGER_PREFIX = "houdi-relevance"

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _env_level() -> int:
    name = os.environ.get(LOG_LEVEL_ENV, "").strip().upper() or "INFO"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


class JSONFormatter(logging.Formatter):
    """Render a record as a compact JSON line.

    Structured fields travel on ``record.data``; the component name on
    ``record.component``. Records from plain ``logging`` calls still format,
    falling back to the logger name.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).strftime(_TS_FORMAT),
            "level": record.levelname.lower(),
            "component": getattr(record, "component", None) or record.name,
            "event": record.getMessage(),
        }
        fields = getattr(record, "data", None)
        if fields:
            payload["data"] = fields
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _attach_stderr(logger: logging.Logger) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(_env_level())
    logger.propagate = False


class StructuredLogger:
    """Thin wrapper: ``log.info("event", key=value, ...)``."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._logger = logging.getLogger(f"{LOGGER_PREFIX}.{name}")
        if not self._logger.handlers:
            _attach_stderr(self._logger)

    def _emit(self, level: int, event: str, fields: dict) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level, event,
            extra={"component": self.name, "data": fields or None},
        )

    def debug(self, event: str, **fields) -> None:
        self._emit(logging.DEBUG, event, fields)

    def info(self, event: str, **fields) -> None:
        self._emit(logging.INFO, event, fields)

    def warning(self, event: str, **fields) -> None:
        self._emit(logging.WARNING, event, fields)

    def error(self, event: str, **fields) -> None:
        self._emit(logging.ERROR, event, fields)


def get_logger(component: str) -> StructuredLogger:
    return StructuredLogger(component)


def _describe(samples: list[float]) -> dict:
    return {
        "count": len(samples),
        "min": min(samples),
        "max": max(samples),
        "avg": sum(samples) / len(samples),
    }


class Metrics:
    """Counters plus raw samples, safe to share between MCP tool calls.

    ``summary()`` always carries a ``counters`` mapping; ``observations`` is
    present only once something has been observed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int | float] = {}
        self._samples: dict[str, list[float]] = {}

    def inc(self, name: str, value: int | float = 1) -> None:
        with self._lock:
            self._counts[name] = self._counts.get(name, 0) + value

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._samples.setdefault(name, []).append(float(value))

    def get(self, name: str) -> int | float:
        """Current counter value; 0 for a counter never incremented."""
        with self._lock:
            return self._counts.get(name, 0)

    def summary(self) -> dict:
        with self._lock:
            out: dict = {"counters": dict(self._counts)}
            described = {k: _describe(v) for k, v in self._samples.items() if v}
        if described:
            out["observations"] = described
        return out

    def reset(self) -> None:
        with self._lock:
            self._counts = {}
            self._samples = {}


metrics = Metrics()


@contextmanager
def timed(operation: str, logger: StructuredLogger | None = None) -> Iterator[None]:
    """Record the wall time of the ``with`` body as ``<operation>_ms``.

    The sample is stored even when the body raises. With a logger, a debug
    ``<operation>_complete`` event carries the rounded duration.
    """
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed = (time.perf_counter() - started) * 1000.0
        metrics.observe(f"{operation}_ms", elapsed)
        if logger is not None:
            logger.debug(f"{operation}_complete", duration_ms=round(elapsed, 2))
