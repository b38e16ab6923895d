"""Tests for CTRV-Fusion NIS/NEES/RMSE metrics."""
import logging
import math

import numpy as np
import pytest
from numpy.testing import assert_allclose
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ctrv_fusion.ctrv_fusion_measurements import SensorType
from ctrv_fusion.ctrv_fusion_metrics import (
    NISMonitor, compute_nees, compute_nis, compute_rmse, nis_threshold,
)
from ctrv_fusion.ctrv_fusion_ukf import InnovationReport


class TestScalarMetrics:

    def test_nis(self):
        S = np.diag([4.0, 1.0])
        assert compute_nis(np.array([2.0, 1.0]), S) == pytest.approx(2.0)

    def test_nis_singular(self):
        assert math.isinf(compute_nis(np.array([1.0, 1.0]), np.zeros((2, 2))))

    def test_nees(self):
        P = 0.5 * np.eye(5)
        x_true = np.array([1.0, 0.0, 0.0, 0.0, 0.0])
        assert compute_nees(x_true, np.zeros(5), P) == pytest.approx(2.0)

    def test_thresholds(self):
        assert nis_threshold(2) == pytest.approx(5.991, abs=1e-3)
        assert nis_threshold(3) == pytest.approx(7.815, abs=1e-3)
        assert nis_threshold(3, 0.05) == pytest.approx(0.352, abs=1e-3)


class TestRMSE:

    def test_per_component(self):
        est = [np.array([1.0, 2.0]), np.array([3.0, 4.0])]
        gt = [np.array([0.0, 2.0]), np.array([0.0, 4.0])]
        assert_allclose(compute_rmse(est, gt), [math.sqrt(5.0), 0.0])

    def test_perfect_estimate(self):
        est = [np.arange(4.0)] * 3
        assert_allclose(compute_rmse(est, est), np.zeros(4))

    def test_empty(self):
        with pytest.raises(ValueError):
            compute_rmse([], [])

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            compute_rmse([np.zeros(4)], [np.zeros(4), np.zeros(4)])

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            compute_rmse([np.zeros(4)], [np.zeros(3)])


class TestNISMonitor:

    def test_empty(self):
        monitor = NISMonitor()
        assert monitor.count(SensorType.RADAR) == 0
        assert math.isnan(monitor.mean(SensorType.RADAR))
        assert monitor.fraction_above(SensorType.RADAR) == 0.0
        assert monitor.is_consistent(SensorType.RADAR)

    def test_fraction_above(self):
        monitor = NISMonitor()
        for nis in (1.0, 2.0, 3.0, 10.0):
            monitor.add(SensorType.LIDAR, nis)
        assert monitor.count(SensorType.LIDAR) == 4
        assert monitor.mean(SensorType.LIDAR) == pytest.approx(4.0)
        assert monitor.fraction_above(SensorType.LIDAR) == pytest.approx(0.25)
        assert not monitor.is_consistent(SensorType.LIDAR)
        assert monitor.count(SensorType.RADAR) == 0

    def test_record_report(self):
        monitor = NISMonitor()
        report = InnovationReport(SensorType.RADAR, np.zeros(3), np.eye(3), 1.5, 0)
        monitor.record(report)
        assert monitor.history(SensorType.RADAR) == [1.5]

    def test_history_is_copy(self):
        monitor = NISMonitor()
        monitor.add(SensorType.LIDAR, 1.0)
        monitor.history(SensorType.LIDAR).append(99.0)
        assert monitor.count(SensorType.LIDAR) == 1

    def test_summary(self):
        monitor = NISMonitor(confidence=0.95)
        monitor.add(SensorType.RADAR, 2.0)
        summary = monitor.summary()
        assert set(summary) == {"lidar", "radar"}
        assert summary["radar"]["count"] == 1
        assert summary["radar"]["threshold"] == pytest.approx(7.815, abs=1e-3)

    def test_exceedance_logged(self, caplog):
        monitor = NISMonitor()
        with caplog.at_level(logging.DEBUG, logger="ctrv_fusion.ctrv_fusion_metrics"):
            monitor.add(SensorType.RADAR, 50.0)
        assert "above" in caplog.text

    @pytest.mark.parametrize("confidence", [0.0, 1.0, -0.5, 1.5])
    def test_invalid_confidence(self, confidence):
        with pytest.raises(ValueError):
            NISMonitor(confidence=confidence)
