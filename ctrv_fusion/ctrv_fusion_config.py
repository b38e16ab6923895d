"""CTRV-Fusion filter configuration.

All tunable quantities of the filter live in a single frozen dataclass that
is handed to the filter at construction time. Nothing here is reconfigurable
at runtime: a new configuration means a new filter.

Noise defaults are the standard deviations the filter was tuned with for a
bicycle-sized target observed by an automotive lidar and radar.

License: AGPL-3.0-or-later
"""

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class UKFConfig:
    """Construction-time parameters of the CTRV unscented Kalman filter.

    Attributes:
        use_laser: Apply lidar updates (lidar still initializes the filter)
        use_radar: Apply radar updates (radar still initializes the filter)
        std_a: Longitudinal acceleration process noise (m/s^2)
        std_yawdd: Yaw acceleration process noise (rad/s^2)
        std_laspx: Lidar x noise (m)
        std_laspy: Lidar y noise (m)
        std_radr: Radar range noise (m)
        std_radphi: Radar bearing noise (rad)
        std_radrd: Radar range-rate noise (m/s)
        lambda_const: Sigma spreading, lambda = lambda_const - n_aug
        origin_epsilon: |px|, |py| below this count as "at the origin"
        origin_substitute: Position substituted for sigma points at the origin
        range_epsilon: Position substituted before the range-rate division
        yaw_rate_epsilon: Below this |yaw rate| the straight-line model is used
        bearing_window: Window around +-pi for the bearing discontinuity fix
        max_condition_number: Innovation covariance above this is degenerate
    """
    use_laser: bool = True
    use_radar: bool = True

    std_a: float = 0.8
    std_yawdd: float = 0.6
    std_laspx: float = 0.15
    std_laspy: float = 0.15
    std_radr: float = 0.3
    std_radphi: float = 0.03
    std_radrd: float = 0.3

    lambda_const: float = 3.0
    origin_epsilon: float = 0.01
    origin_substitute: float = 0.1
    range_epsilon: float = 0.01
    yaw_rate_epsilon: float = 1e-3
    bearing_window: float = 0.2
    max_condition_number: float = 1e12

    def __post_init__(self):
        for name in ('std_laspx', 'std_laspy', 'std_radr', 'std_radphi', 'std_radrd'):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0.0:
                raise ValueError(f"{name} must be finite and >= 0, got {value}")

        # std_a, std_yawdd > 0 keeps Q positive definite
        for name in ('std_a', 'std_yawdd', 'origin_epsilon', 'range_epsilon',
                     'yaw_rate_epsilon', 'bearing_window', 'max_condition_number', 'lambda_const'):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0.0:
                raise ValueError(f"{name} must be finite and > 0, got {value}")

        if not math.isfinite(self.origin_substitute):
            raise ValueError("origin_substitute must be finite")

    @property
    def process_noise(self) -> np.ndarray:
        """Q (2x2): longitudinal and yaw acceleration variances."""
        return np.diag([self.std_a**2, self.std_yawdd**2])

    @property
    def lidar_noise(self) -> np.ndarray:
        """R_lidar (2x2)."""
        return np.diag([self.std_laspx**2, self.std_laspy**2])

    @property
    def radar_noise(self) -> np.ndarray:
        """R_radar (3x3): range, bearing, range-rate variances."""
        return np.diag([self.std_radr**2, self.std_radphi**2, self.std_radrd**2])
