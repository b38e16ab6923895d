"""CTRV-Fusion consistency and accuracy metrics.

NIS (Normalized Innovation Squared) is chi-square distributed with as many
degrees of freedom as the measurement has components. A consistent filter
keeps roughly 5 % of its NIS values above the 95 % chi-square bound:

    lidar (2 dof) : 5.991
    radar (3 dof) : 7.815

Values persistently above the bound mean the filter is overconfident
(noise too small); values persistently far below it mean it is too timid.

License: AGPL-3.0-or-later
"""

import logging
from typing import Dict, List, Sequence

import numpy as np
from scipy.stats import chi2

from .ctrv_fusion_measurements import SensorType

logger = logging.getLogger(__name__)

MEASUREMENT_DOF = {
    SensorType.LIDAR: 2,
    SensorType.RADAR: 3,
}


def compute_nis(innovation: np.ndarray, S: np.ndarray) -> float:
    """Normalized Innovation Squared, y^T S^-1 y."""
    y = np.asarray(innovation, dtype=np.float64)
    try:
        return float(y @ np.linalg.solve(S, y))
    except np.linalg.LinAlgError:
        return float('inf')


def compute_nees(x_true: np.ndarray, x_est: np.ndarray, P: np.ndarray) -> float:
    """Normalized Estimation Error Squared, (x - x^)^T P^-1 (x - x^).

    For a consistent filter E[NEES] equals the state dimension.
    """
    dx = np.asarray(x_true, dtype=np.float64) - np.asarray(x_est, dtype=np.float64)
    try:
        return float(dx @ np.linalg.solve(P, dx))
    except np.linalg.LinAlgError:
        return float('inf')


def compute_rmse(estimates: Sequence[np.ndarray],
                 ground_truth: Sequence[np.ndarray]) -> np.ndarray:
    """Per-component root mean squared error over a sequence.

    Raises:
        ValueError: on empty input or mismatched lengths/shapes.
    """
    if len(estimates) == 0:
        raise ValueError("estimates must not be empty")
    if len(estimates) != len(ground_truth):
        raise ValueError(f"estimates ({len(estimates)}) and ground truth "
                         f"({len(ground_truth)}) differ in length")

    est = np.asarray(estimates, dtype=np.float64)
    gt = np.asarray(ground_truth, dtype=np.float64)
    if est.shape != gt.shape:
        raise ValueError(f"shape mismatch: {est.shape} vs {gt.shape}")

    return np.sqrt(np.mean((est - gt) ** 2, axis=0))


def nis_threshold(dof: int, confidence: float = 0.95) -> float:
    """Chi-square bound for NIS with ``dof`` degrees of freedom."""
    return float(chi2.ppf(confidence, df=dof))


class NISMonitor:
    """Per-sensor NIS history for filter tuning.

    Example::

        monitor = NISMonitor()
        report = ukf.update_radar(z)
        monitor.record(report)
        monitor.fraction_above(SensorType.RADAR)   # ~0.05 when tuned

    Args:
        confidence: Chi-square confidence of the reference bound
        tolerance: Largest fraction above the bound still called consistent
    """

    def __init__(self, confidence: float = 0.95, tolerance: float = 0.1):
        if not 0.0 < confidence < 1.0:
            raise ValueError(f"confidence must be in (0, 1), got {confidence}")
        self.confidence = confidence
        self.tolerance = tolerance
        self._history: Dict[SensorType, List[float]] = {s: [] for s in SensorType}

    def record(self, report) -> None:
        """Record the NIS of an :class:`InnovationReport`."""
        self.add(report.sensor_type, report.nis)

    def add(self, sensor_type: SensorType, nis: float) -> None:
        self._history[sensor_type].append(float(nis))
        bound = self.threshold(sensor_type)
        if nis > bound:
            logger.debug(f"{sensor_type.value} NIS {nis:.2f} above "
                         f"{self.confidence:.0%} bound {bound:.3f}")

    def threshold(self, sensor_type: SensorType) -> float:
        return nis_threshold(MEASUREMENT_DOF[sensor_type], self.confidence)

    def history(self, sensor_type: SensorType) -> List[float]:
        return list(self._history[sensor_type])

    def count(self, sensor_type: SensorType) -> int:
        return len(self._history[sensor_type])

    def mean(self, sensor_type: SensorType) -> float:
        """Average NIS; ~dof for a consistent filter, NaN with no samples."""
        values = self._history[sensor_type]
        return float(np.mean(values)) if values else float('nan')

    def fraction_above(self, sensor_type: SensorType) -> float:
        """Share of NIS samples above the chi-square bound."""
        values = self._history[sensor_type]
        if not values:
            return 0.0
        bound = self.threshold(sensor_type)
        return float(np.mean(np.asarray(values) > bound))

    def is_consistent(self, sensor_type: SensorType) -> bool:
        return self.fraction_above(sensor_type) <= self.tolerance

    def summary(self) -> Dict[str, Dict[str, float]]:
        return {
            s.value: {
                'count': self.count(s),
                'mean': self.mean(s),
                'threshold': self.threshold(s),
                'fraction_above': self.fraction_above(s),
            }
            for s in SensorType
        }
