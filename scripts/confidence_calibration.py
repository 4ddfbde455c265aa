#!/usr/bin/env python3
"""houdi-relevance confidence calibration — per-route score histograms.

Maps a raw router score to the empirical accuracy observed for scores in the
same bin for the same predicted route. Routes or bins with too little
evidence pass the raw score through (clamped to [0, 1]).

State file layout::

    {"version": 1, "updatedAt": "...", "bins": 10,
     "byRoute": {"gmail": {"support": 42,
                           "bins": [{"min": 0.0, "max": 0.1, "total": 0, "correct": 0}, ...]}}}
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from filelock import FileLock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from observability import get_logger

_log = get_logger("confidence_calibration")

MIN_BINS, MAX_BINS = 5, 20
MIN_ROUTE_SUPPORT = 8
MIN_BIN_TOTAL = 3


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _as_int(value) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


@dataclass
class CalibrationSample:
    predicted_route: str
    score: float
    final_route: str


@dataclass
class CalibrationBin:
    min: float
    max: float
    total: int = 0
    correct: int = 0


@dataclass
class RouteHistogram:
    bins: list[CalibrationBin] = field(default_factory=list)
    support: int = 0


class ConfidenceCalibrator:
    """Histogram calibration of router confidence, one histogram per route."""

    def __init__(self, bins: int = 10) -> None:
        self.bins = max(MIN_BINS, min(MAX_BINS, int(bins)))
        self._by_route: dict[str, RouteHistogram] = {}

    def _empty_histogram(self) -> RouteHistogram:
        return RouteHistogram(bins=[
            CalibrationBin(min=i / self.bins, max=(i + 1) / self.bins) for i in range(self.bins)
        ])

    @staticmethod
    def _bucket(score: float, count: int) -> int:
        return min(count - 1, int(_clamp01(score) * count))

    def fit(self, samples: Iterable[CalibrationSample]) -> None:
        """Rebuild every histogram from scratch."""
        self._by_route.clear()
        for sample in samples:
            route = sample.predicted_route.strip()
            if not route:
                continue
            histogram = self._by_route.get(route)
            if histogram is None:
                histogram = self._by_route[route] = self._empty_histogram()
            cell = histogram.bins[self._bucket(sample.score, len(histogram.bins))]
            cell.total += 1
            if sample.predicted_route == sample.final_route:
                cell.correct += 1
            histogram.support += 1
        _log.info("calibrator_fitted", routes=len(self._by_route))

    def calibrate(self, route: str, score: float) -> float:
        histogram = self._by_route.get(route)
        safe = _clamp01(score)
        if histogram is None or histogram.support < MIN_ROUTE_SUPPORT or not histogram.bins:
            return safe
        cell = histogram.bins[self._bucket(safe, len(histogram.bins))]
        if cell.total < MIN_BIN_TOTAL:
            return safe
        return _clamp01(cell.correct / cell.total)

    def get_support(self, route: str) -> int:
        histogram = self._by_route.get(route)
        return histogram.support if histogram else 0

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load_from_file(self, path: str) -> None:
        """Load histograms. Raises ValueError for a file of the wrong shape."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict) or not isinstance(data.get("byRoute"), dict):
            raise ValueError(f"invalid calibration file: {path}")
        self._by_route.clear()
        for route, state in data["byRoute"].items():
            if not isinstance(state, dict) or not isinstance(state.get("bins"), list):
                continue
            bins = []
            for raw in state["bins"]:
                if not isinstance(raw, dict):
                    continue
                cell = CalibrationBin(
                    min=_clamp01(raw.get("min") or 0),
                    max=_clamp01(raw.get("max") or 0),
                    total=_as_int(raw.get("total")),
                    correct=_as_int(raw.get("correct")),
                )
                if cell.max >= cell.min:
                    bins.append(cell)
            self._by_route[route] = RouteHistogram(bins=bins, support=_as_int(state.get("support")))

    def save_to_file(self, path: str) -> None:
        payload = {
            "version": 1,
            "updatedAt": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "bins": self.bins,
            "byRoute": {route: asdict(histogram) for route, histogram in self._by_route.items()},
        }
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        tmp_path = path + ".tmp"
        with FileLock(path + ".lock", timeout=10):
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.write("\n")
            os.replace(tmp_path, path)
