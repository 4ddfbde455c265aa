#!/usr/bin/env python3
"""Tests for observability.py — JSON log lines, metrics, timing."""

import io
import json
import logging
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
import observability
from observability import JSONFormatter, LOGGER_PREFIX, Metrics, get_logger, timed


class TestStructuredLogger(unittest.TestCase):
    def _capture(self, component):
        log = get_logger(component)
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
        log._logger.addHandler(handler)
        log._logger.setLevel(logging.DEBUG)
        self.addCleanup(log._logger.removeHandler, handler)
        return log, stream

    def test_logger_name_is_prefixed(self):
        log = get_logger("semantic_router")
        self.assertEqual(log.name, "semantic_router")
        self.assertEqual(log._logger.name, f"{LOGGER_PREFIX}.semantic_router")

    def test_event_is_single_json_line(self):
        log, stream = self._capture("obs-json")
        log.info("router_trained", routes=2, utterances=7)
        lines = [l for l in stream.getvalue().splitlines() if l.strip()]
        self.assertEqual(len(lines), 1)
        entry = json.loads(lines[0])
        self.assertEqual(entry["event"], "router_trained")
        self.assertEqual(entry["level"], "info")
        self.assertEqual(entry["component"], "obs-json")
        self.assertEqual(entry["data"], {"routes": 2, "utterances": 7})
        self.assertTrue(entry["ts"].endswith("Z"))

    def test_event_without_fields_has_no_data(self):
        log, stream = self._capture("obs-nodata")
        log.warning("cache_cleared")
        entry = json.loads(stream.getvalue().splitlines()[0])
        self.assertNotIn("data", entry)
        self.assertEqual(entry["level"], "warning")

    def test_non_ascii_is_kept(self):
        log, stream = self._capture("obs-utf8")
        log.error("note", text="recordame mañana")
        self.assertIn("mañana", stream.getvalue())


class TestMetrics(unittest.TestCase):
    def test_counters(self):
        m = Metrics()
        m.inc("router_decisions")
        m.inc("router_decisions", 2)
        self.assertEqual(m.get("router_decisions"), 3)
        self.assertEqual(m.get("router_rejections"), 0)

    def test_observation_summary(self):
        m = Metrics()
        for value in (4, 8, 12):
            m.observe("recall_corpus_lines", value)
        obs = m.summary()["observations"]["recall_corpus_lines"]
        self.assertEqual(obs["count"], 3)
        self.assertEqual(obs["min"], 4.0)
        self.assertEqual(obs["max"], 12.0)
        self.assertAlmostEqual(obs["avg"], 8.0)

    def test_reset(self):
        m = Metrics()
        m.inc("recall_queries")
        m.observe("x", 1.0)
        m.reset()
        self.assertEqual(m.summary(), {"counters": {}})


class TestTimed(unittest.TestCase):
    def test_records_ms_observation(self):
        m = Metrics()
        original = observability.metrics
        observability.metrics = m
        try:
            with timed("router_calibration"):
                pass
        finally:
            observability.metrics = original
        self.assertEqual(m.summary()["observations"]["router_calibration_ms"]["count"], 1)

    def test_records_even_when_block_raises(self):
        m = Metrics()
        original = observability.metrics
        observability.metrics = m
        try:
            with self.assertRaises(RuntimeError):
                with timed("failing_op", logger=get_logger("test")):
                    raise RuntimeError("boom")
        finally:
            observability.metrics = original
        self.assertIn("failing_op_ms", m.summary()["observations"])


if __name__ == "__main__":
    unittest.main()
