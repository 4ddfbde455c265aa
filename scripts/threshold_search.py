"""Threshold search — coordinate descent plus bounded random jitter.

A small pure optimizer over an explicit ``thresholds -> accuracy`` objective.
It knows nothing about routes or scoring: the router builds the objective and
the candidate grids, this module only searches. Every accepted move strictly
improves the objective, so the result is never worse than the start.
"""

from __future__ import annotations

import os
import random
import sys
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from _text_constants import THRESHOLD_MAX, THRESHOLD_MIN

__all__ = [
    "Objective", "ThresholdSearchResult",
    "quantile", "candidate_thresholds",
    "coordinate_descent", "jitter_refine", "optimize_thresholds",
]

Objective = Callable[[Mapping[str, float]], float]

SEED_QUANTILES = (0.1, 0.2, 0.3, 0.4, 0.5)
DEFAULT_SEARCH_RANGE = 0.08
DEFAULT_SEARCH_STEP = 0.02
DEFAULT_ROUNDS = 4
DEFAULT_JITTER_TRIALS = 400
DEFAULT_JITTER_DELTA = 0.03
DEFAULT_SEED = 1337


@dataclass
class ThresholdSearchResult:
    initial_thresholds: dict[str, float]
    thresholds: dict[str, float]
    initial_score: float
    score: float
    rounds_run: int = 0
    jitter_accepted: int = 0
    history: list[float] = field(default_factory=list)

    @property
    def improved(self) -> bool:
        return self.score > self.initial_score


def _clamp_threshold(value: float) -> float:
    return round(max(THRESHOLD_MIN, min(THRESHOLD_MAX, value)), 4)


def quantile(values: Iterable[float], q: float) -> float:
    """Linear-interpolation quantile (``q`` in [0, 1]); 0.0 for no values."""
    ordered = sorted(values)
    if not ordered:
        return 0.0
    q = max(0.0, min(1.0, q))
    position = (len(ordered) - 1) * q
    lower = int(position)
    upper = min(lower + 1, len(ordered) - 1)
    fraction = position - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * fraction


def candidate_thresholds(
    current: float,
    true_positive_scores: Sequence[float],
    search_range: float = DEFAULT_SEARCH_RANGE,
    step: float = DEFAULT_SEARCH_STEP,
) -> list[float]:
    """Seed candidates: quantiles of own-route TP scores plus a grid around current."""
    seeds: set[float] = set()
    if true_positive_scores:
        for q in SEED_QUANTILES:
            seeds.add(_clamp_threshold(quantile(true_positive_scores, q)))
    steps = int(round(search_range / step)) if step > 0 else 0
    for i in range(-steps, steps + 1):
        seeds.add(_clamp_threshold(current + i * step))
    return sorted(seeds)


def coordinate_descent(
    objective: Objective,
    thresholds: Mapping[str, float],
    candidates: Mapping[str, Sequence[float]],
    rounds: int = DEFAULT_ROUNDS,
) -> tuple[dict[str, float], float, int]:
    """Optimize one coordinate at a time; stop when a full round changes nothing.

    Returns ``(thresholds, score, rounds_run)``.
    """
    current = dict(thresholds)
    best = objective(current)
    rounds_run = 0
    for _ in range(max(0, rounds)):
        rounds_run += 1
        changed = False
        for name in sorted(current):
            original = current[name]
            best_value = original
            for value in candidates.get(name, ()):
                if value == best_value:
                    continue
                current[name] = value
                score = objective(current)
                if score > best:
                    best = score
                    best_value = value
            current[name] = best_value
            if best_value != original:
                changed = True
        if not changed:
            break
    return current, best, rounds_run


def jitter_refine(
    objective: Objective,
    thresholds: Mapping[str, float],
    score: float,
    trials: int = DEFAULT_JITTER_TRIALS,
    max_delta: float = DEFAULT_JITTER_DELTA,
    seed: int = DEFAULT_SEED,
) -> tuple[dict[str, float], float, int]:
    """Perturb every threshold at once; keep a trial only on strict improvement.

    Returns ``(thresholds, score, accepted_trials)``.
    """
    rng = random.Random(seed)
    current = dict(thresholds)
    best = score
    accepted = 0
    names = sorted(current)
    for _ in range(max(0, trials)):
        trial = {
            name: _clamp_threshold(current[name] + rng.uniform(-max_delta, max_delta))
            for name in names
        }
        trial_score = objective(trial)
        if trial_score > best:
            current, best = trial, trial_score
            accepted += 1
    return current, best, accepted


def optimize_thresholds(
    objective: Objective,
    initial: Mapping[str, float],
    candidates: Mapping[str, Sequence[float]],
    rounds: int = DEFAULT_ROUNDS,
    jitter_trials: int = DEFAULT_JITTER_TRIALS,
    jitter_delta: float = DEFAULT_JITTER_DELTA,
    seed: int = DEFAULT_SEED,
) -> ThresholdSearchResult:
    """Coordinate descent followed by jitter refinement."""
    start = dict(initial)
    start_score = objective(start)
    descended, descended_score, rounds_run = coordinate_descent(objective, start, candidates, rounds)
    refined, refined_score, accepted = jitter_refine(
        objective, descended, descended_score, jitter_trials, jitter_delta, seed,
    )
    return ThresholdSearchResult(
        initial_thresholds=start,
        thresholds=refined,
        initial_score=start_score,
        score=refined_score,
        rounds_run=rounds_run,
        jitter_accepted=accepted,
        history=[start_score, descended_score, refined_score],
    )
