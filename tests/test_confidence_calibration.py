#!/usr/bin/env python3
"""Tests for confidence_calibration.py — per-route histogram calibration."""

import json
import os
import shutil
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from confidence_calibration import CalibrationSample, ConfidenceCalibrator


def _gmail_samples():
    samples = [CalibrationSample("gmail", 0.85, "gmail") for _ in range(6)]
    samples += [CalibrationSample("gmail", 0.85, "web") for _ in range(2)]
    return samples


class TestCalibration(unittest.TestCase):
    def test_bins_clamped(self):
        self.assertEqual(ConfidenceCalibrator(bins=100).bins, 20)
        self.assertEqual(ConfidenceCalibrator(bins=1).bins, 5)

    def test_empirical_accuracy(self):
        calibrator = ConfidenceCalibrator()
        calibrator.fit(_gmail_samples())
        self.assertEqual(calibrator.get_support("gmail"), 8)
        self.assertAlmostEqual(calibrator.calibrate("gmail", 0.82), 0.75)

    def test_sparse_bin_passes_raw_score(self):
        calibrator = ConfidenceCalibrator()
        calibrator.fit(_gmail_samples())
        self.assertAlmostEqual(calibrator.calibrate("gmail", 0.15), 0.15)

    def test_low_support_passes_raw_score(self):
        calibrator = ConfidenceCalibrator()
        calibrator.fit(_gmail_samples()[:7])
        self.assertAlmostEqual(calibrator.calibrate("gmail", 0.85), 0.85)
        self.assertEqual(calibrator.calibrate("unknown", 1.7), 1.0)
        self.assertEqual(calibrator.calibrate("unknown", -0.2), 0.0)

    def test_refit_replaces_state(self):
        calibrator = ConfidenceCalibrator()
        calibrator.fit(_gmail_samples())
        calibrator.fit([CalibrationSample("web", 0.4, "web")])
        self.assertEqual(calibrator.get_support("gmail"), 0)
        self.assertEqual(calibrator.get_support("web"), 1)


class TestPersistence(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.mkdtemp()
        self.path = os.path.join(self.td, "state", "intent-calibration.json")

    def tearDown(self):
        shutil.rmtree(self.td, ignore_errors=True)

    def test_save_then_load(self):
        calibrator = ConfidenceCalibrator()
        calibrator.fit(_gmail_samples())
        calibrator.save_to_file(self.path)
        with open(self.path, encoding="utf-8") as f:
            raw = json.load(f)
        self.assertEqual(raw["bins"], 10)
        self.assertEqual(raw["byRoute"]["gmail"]["support"], 8)

        other = ConfidenceCalibrator()
        other.load_from_file(self.path)
        self.assertAlmostEqual(other.calibrate("gmail", 0.82), 0.75)

    def test_wrong_shape_raises(self):
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"byRoute": []}, f)
        with self.assertRaises(ValueError):
            ConfidenceCalibrator().load_from_file(self.path)

    def test_missing_file_raises(self):
        with self.assertRaises(OSError):
            ConfidenceCalibrator().load_from_file(self.path)


if __name__ == "__main__":
    unittest.main()
