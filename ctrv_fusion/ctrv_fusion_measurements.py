"""CTRV-Fusion measurement packages.

Two sensor modalities feed the filter:

    LIDAR : [px, py]              direct Cartesian position (m)
    RADAR : [rho, phi, rho_dot]   range (m), bearing (rad), range rate (m/s)

Each modality is its own frozen dataclass so the measurement dimension is
carried by the type. Timestamps are integer microseconds and must be
non-decreasing across the sequence handed to the filter.

License: AGPL-3.0-or-later
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple, Union

import numpy as np


class SensorType(Enum):
    """Measurement modality tag."""
    LIDAR = "lidar"
    RADAR = "radar"


def _check_timestamp(timestamp) -> None:
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, np.integer)):
        raise ValueError(f"timestamp must be integer microseconds, got {timestamp!r}")


def _check_finite(**values) -> None:
    for name, value in values.items():
        if not math.isfinite(value):
            raise ValueError(f"{name} must be finite, got {value}")


@dataclass(frozen=True)
class LidarMeasurement:
    """Lidar position fix.

    Attributes:
        px: x position (m)
        py: y position (m)
        timestamp: Measurement time (microseconds)
    """
    px: float
    py: float
    timestamp: int

    def __post_init__(self):
        _check_finite(px=self.px, py=self.py)
        _check_timestamp(self.timestamp)

    @property
    def sensor_type(self) -> SensorType:
        return SensorType.LIDAR

    @property
    def z(self) -> np.ndarray:
        return np.array([self.px, self.py], dtype=np.float64)


@dataclass(frozen=True)
class RadarMeasurement:
    """Radar detection in polar coordinates about the sensor origin.

    Attributes:
        rho: Range (m), non-negative
        phi: Bearing from the x axis (rad)
        rho_dot: Range rate (m/s)
        timestamp: Measurement time (microseconds)
    """
    rho: float
    phi: float
    rho_dot: float
    timestamp: int

    def __post_init__(self):
        _check_finite(rho=self.rho, phi=self.phi, rho_dot=self.rho_dot)
        if self.rho < 0.0:
            raise ValueError(f"rho must be >= 0, got {self.rho}")
        _check_timestamp(self.timestamp)

    @property
    def sensor_type(self) -> SensorType:
        return SensorType.RADAR

    @property
    def z(self) -> np.ndarray:
        return np.array([self.rho, self.phi, self.rho_dot], dtype=np.float64)

    def to_cartesian(self) -> Tuple[float, float]:
        """Polar → Cartesian position (x, y)."""
        return self.rho * math.cos(self.phi), self.rho * math.sin(self.phi)


MeasurementPackage = Union[LidarMeasurement, RadarMeasurement]


def make_measurement(sensor_type: SensorType, raw: Sequence[float],
                     timestamp: int) -> MeasurementPackage:
    """Build a typed measurement from a sensor tag and a raw vector.

    Args:
        sensor_type: Which modality produced ``raw``
        raw: [px, py] for lidar, [rho, phi, rho_dot] for radar
        timestamp: Measurement time (microseconds)

    Returns:
        LidarMeasurement or RadarMeasurement.

    Raises:
        ValueError: if ``raw`` has the wrong length for ``sensor_type``.
    """
    values = [float(v) for v in np.asarray(raw, dtype=np.float64).ravel()]

    if sensor_type is SensorType.LIDAR:
        if len(values) != 2:
            raise ValueError(f"lidar measurement needs 2 values, got {len(values)}")
        return LidarMeasurement(values[0], values[1], timestamp)

    if sensor_type is SensorType.RADAR:
        if len(values) != 3:
            raise ValueError(f"radar measurement needs 3 values, got {len(values)}")
        return RadarMeasurement(values[0], values[1], values[2], timestamp)

    raise ValueError(f"Unknown sensor type: {sensor_type}")
