"""Tests for CTRV-Fusion configuration and measurement packages."""
import dataclasses
import importlib
import math

import numpy as np
import pytest
from numpy.testing import assert_allclose
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ctrv_fusion.ctrv_fusion_config import UKFConfig
from ctrv_fusion.ctrv_fusion_measurements import (
    LidarMeasurement, RadarMeasurement, SensorType, make_measurement,
)


class TestUKFConfig:

    def test_defaults(self):
        cfg = UKFConfig()
        assert cfg.use_laser and cfg.use_radar
        assert cfg.std_a == 0.8
        assert cfg.std_yawdd == 0.6
        assert cfg.lambda_const == 3.0

    def test_noise_matrices(self):
        cfg = UKFConfig()
        assert_allclose(cfg.process_noise, np.diag([0.64, 0.36]))
        assert_allclose(cfg.lidar_noise, np.diag([0.0225, 0.0225]))
        assert_allclose(cfg.radar_noise, np.diag([0.09, 0.0009, 0.09]))

    def test_frozen(self):
        cfg = UKFConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.std_a = 1.0

    @pytest.mark.parametrize("field,value", [
        ("std_a", -0.1),
        ("std_a", 0.0),
        ("std_yawdd", 0.0),
        ("std_radphi", float('nan')),
        ("std_laspx", float('inf')),
        ("yaw_rate_epsilon", 0.0),
        ("bearing_window", -1.0),
        ("max_condition_number", float('inf')),
        ("lambda_const", 0.0),
        ("origin_substitute", float('nan')),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValueError):
            UKFConfig(**{field: value})

    def test_zero_noise_allowed(self):
        cfg = UKFConfig(std_laspx=0.0, std_laspy=0.0)
        assert_allclose(cfg.lidar_noise, np.zeros((2, 2)))


class TestMeasurements:

    def test_lidar(self):
        m = LidarMeasurement(1.5, -2.0, timestamp=1477010443000000)
        assert m.sensor_type is SensorType.LIDAR
        assert_allclose(m.z, [1.5, -2.0])
        assert m.z.dtype == np.float64

    def test_radar(self):
        m = RadarMeasurement(2.0, math.pi / 2, -0.5, timestamp=5)
        assert m.sensor_type is SensorType.RADAR
        assert_allclose(m.z, [2.0, math.pi / 2, -0.5])
        x, y = m.to_cartesian()
        assert x == pytest.approx(0.0, abs=1e-12)
        assert y == pytest.approx(2.0)

    def test_numpy_integer_timestamp(self):
        m = LidarMeasurement(0.0, 0.0, timestamp=np.int64(42))
        assert m.timestamp == 42

    @pytest.mark.parametrize("timestamp", [1.5, "100", True, None])
    def test_bad_timestamp(self, timestamp):
        with pytest.raises(ValueError):
            LidarMeasurement(0.0, 0.0, timestamp=timestamp)

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            LidarMeasurement(float('nan'), 0.0, timestamp=0)
        with pytest.raises(ValueError):
            RadarMeasurement(1.0, float('inf'), 0.0, timestamp=0)

    def test_negative_range_rejected(self):
        with pytest.raises(ValueError):
            RadarMeasurement(-0.1, 0.0, 0.0, timestamp=0)

    def test_immutable(self):
        m = LidarMeasurement(1.0, 2.0, timestamp=0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            m.px = 3.0


class TestMakeMeasurement:

    def test_lidar(self):
        m = make_measurement(SensorType.LIDAR, [3.0, 4.0], 10)
        assert isinstance(m, LidarMeasurement)
        assert (m.px, m.py, m.timestamp) == (3.0, 4.0, 10)

    def test_radar_from_array(self):
        m = make_measurement(SensorType.RADAR, np.array([5.0, 0.2, 1.0]), 20)
        assert isinstance(m, RadarMeasurement)
        assert_allclose(m.z, [5.0, 0.2, 1.0])

    @pytest.mark.parametrize("sensor,raw", [
        (SensorType.LIDAR, [1.0, 2.0, 3.0]),
        (SensorType.LIDAR, [1.0]),
        (SensorType.RADAR, [1.0, 2.0]),
    ])
    def test_wrong_length(self, sensor, raw):
        with pytest.raises(ValueError):
            make_measurement(sensor, raw, 0)


@pytest.mark.parametrize("module_name", [
    "ctrv_fusion",
    "ctrv_fusion.ctrv_fusion_batch",
    "ctrv_fusion.ctrv_fusion_config",
    "ctrv_fusion.ctrv_fusion_datasets",
    "ctrv_fusion.ctrv_fusion_measurements",
    "ctrv_fusion.ctrv_fusion_metrics",
    "ctrv_fusion.ctrv_fusion_ukf",
])
def test_module_license_line(module_name):
    module = importlib.import_module(module_name)
    assert module.__doc__.rstrip().endswith("License: AGPL-3.0-or-later")
