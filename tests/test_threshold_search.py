#!/usr/bin/env python3
"""Tests for threshold_search.py — quantiles, candidate grids, descent, jitter."""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from threshold_search import (
    candidate_thresholds,
    coordinate_descent,
    jitter_refine,
    optimize_thresholds,
    quantile,
)


def _bowl(target):
    """Objective maximized (at 0.0) exactly at ``target``."""
    def objective(thresholds):
        return -sum((thresholds[name] - value) ** 2 for name, value in target.items())
    return objective


class TestQuantile(unittest.TestCase):
    def test_empty(self):
        self.assertEqual(quantile([], 0.5), 0.0)

    def test_linear_interpolation(self):
        self.assertAlmostEqual(quantile([0.0, 1.0], 0.25), 0.25)
        self.assertAlmostEqual(quantile([3.0, 1.0, 2.0], 0.5), 2.0)

    def test_extremes(self):
        values = [0.2, 0.9, 0.5]
        self.assertEqual(quantile(values, 0.0), 0.2)
        self.assertEqual(quantile(values, 1.0), 0.9)
        self.assertEqual(quantile(values, 7.0), 0.9)


class TestCandidates(unittest.TestCase):
    def test_grid_around_current(self):
        seeds = candidate_thresholds(0.3, [], search_range=0.04, step=0.02)
        self.assertEqual(seeds, [0.26, 0.28, 0.3, 0.32, 0.34])

    def test_includes_quantiles_and_is_clamped(self):
        seeds = candidate_thresholds(0.02, [0.5, 0.6, 0.7])
        # q10 of [0.5, 0.6, 0.7] interpolates to 0.52, the median is 0.6
        self.assertIn(0.52, seeds)
        self.assertIn(0.6, seeds)
        self.assertEqual(min(seeds), 0.01)
        self.assertEqual(seeds, sorted(seeds))


class TestCoordinateDescent(unittest.TestCase):
    def test_finds_grid_optimum(self):
        objective = _bowl({"gmail": 0.4, "web": 0.2})
        candidates = {"gmail": [0.1, 0.2, 0.3, 0.4, 0.5], "web": [0.1, 0.2, 0.3]}
        thresholds, score, rounds = coordinate_descent(
            objective, {"gmail": 0.1, "web": 0.3}, candidates)
        self.assertEqual(thresholds, {"gmail": 0.4, "web": 0.2})
        self.assertAlmostEqual(score, 0.0)
        self.assertEqual(rounds, 2)

    def test_no_improvement_keeps_start(self):
        objective = _bowl({"a": 0.5})
        thresholds, score, rounds = coordinate_descent(objective, {"a": 0.5}, {"a": [0.4, 0.6]})
        self.assertEqual(thresholds, {"a": 0.5})
        self.assertEqual(rounds, 1)

    def test_ties_do_not_move(self):
        objective = lambda thresholds: 1.0  # noqa: E731
        thresholds, _, _ = coordinate_descent(objective, {"a": 0.3}, {"a": [0.1, 0.9]})
        self.assertEqual(thresholds, {"a": 0.3})


class TestJitter(unittest.TestCase):
    def test_never_worse(self):
        objective = _bowl({"a": 0.37, "b": 0.61})
        start = {"a": 0.3, "b": 0.6}
        start_score = objective(start)
        thresholds, score, accepted = jitter_refine(objective, start, start_score, trials=200)
        self.assertGreaterEqual(score, start_score)
        self.assertAlmostEqual(score, objective(thresholds))
        self.assertGreater(accepted, 0)

    def test_deterministic_with_seed(self):
        objective = _bowl({"a": 0.37})
        first = jitter_refine(objective, {"a": 0.3}, objective({"a": 0.3}), trials=50, seed=7)
        second = jitter_refine(objective, {"a": 0.3}, objective({"a": 0.3}), trials=50, seed=7)
        self.assertEqual(first, second)

    def test_zero_trials(self):
        objective = _bowl({"a": 0.37})
        self.assertEqual(jitter_refine(objective, {"a": 0.3}, -1.0, trials=0), ({"a": 0.3}, -1.0, 0))


class TestOptimize(unittest.TestCase):
    def test_result_never_below_start(self):
        objective = _bowl({"a": 0.33, "b": 0.71})
        result = optimize_thresholds(
            objective, {"a": 0.2, "b": 0.5},
            {"a": [0.2, 0.3, 0.4], "b": [0.5, 0.6, 0.7]},
            jitter_trials=100,
        )
        self.assertTrue(result.improved)
        self.assertGreaterEqual(result.score, result.initial_score)
        self.assertEqual(result.initial_thresholds, {"a": 0.2, "b": 0.5})
        self.assertEqual(len(result.history), 3)
        self.assertEqual(result.history, sorted(result.history))

    def test_unimprovable(self):
        result = optimize_thresholds(lambda t: 0.5, {"a": 0.3}, {"a": [0.1, 0.5]}, jitter_trials=20)
        self.assertFalse(result.improved)
        self.assertEqual(result.thresholds, {"a": 0.3})


if __name__ == "__main__":
    unittest.main()
