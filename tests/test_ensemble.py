#!/usr/bin/env python3
"""Tests for ensemble.py — additive fusion of routing signals."""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from ensemble import rank_with_ensemble
from semantic_router import RouteScore


class TestEnsemble(unittest.TestCase):
    def test_all_signals(self):
        ranked = rank_with_ensemble(
            ["gmail", "web", "workspace"],
            semantic_alternatives=[{"name": "gmail", "score": 0.5}, {"name": "web", "score": 0.4}],
            ai_selected="web",
            layer_allowed=["workspace"],
            contextual_boosts={"workspace": 0.1},
            calibrated_confidence=0.8,
        )
        self.assertEqual([r["name"] for r in ranked], ["web", "gmail", "workspace"])
        self.assertAlmostEqual(ranked[0]["score"], 0.61)
        self.assertAlmostEqual(ranked[1]["score"], 0.525)
        self.assertAlmostEqual(ranked[2]["score"], 0.17)

    def test_accepts_route_scores(self):
        ranked = rank_with_ensemble(["gmail"], semantic_alternatives=[RouteScore("gmail", 2.0)])
        self.assertAlmostEqual(ranked[0]["score"], 0.65)

    def test_ties_keep_candidate_order(self):
        ranked = rank_with_ensemble(["b", "a"])
        self.assertEqual(ranked, [{"name": "b", "score": 0.0}, {"name": "a", "score": 0.0}])

    def test_bool_boost_ignored(self):
        ranked = rank_with_ensemble(["a"], contextual_boosts={"a": True})
        self.assertEqual(ranked[0]["score"], 0.0)

    def test_confidence_needs_alternatives(self):
        ranked = rank_with_ensemble(["a"], calibrated_confidence=0.9)
        self.assertEqual(ranked[0]["score"], 0.0)


if __name__ == "__main__":
    unittest.main()
