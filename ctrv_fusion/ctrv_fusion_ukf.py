"""
CTRV-Fusion Unscented Kalman Filter
===================================
Lidar/radar fusion over the Constant Turn Rate and Velocity (CTRV) model.

State vector (5):
    x = [px, py, v, yaw, yaw_rate]
        px, py   : position (m)
        v        : speed magnitude (m/s)
        yaw      : heading (rad), kept in (-pi, pi]
        yaw_rate : heading rate (rad/s)

Augmented state (7) appends the two zero-mean process noise terms
[nu_a, nu_yawdd] (longitudinal and yaw acceleration) with covariance Q.

Cycle per measurement:
    1. first measurement      → initialize x, P = I
    2. otherwise prediction   → sigma points (2·7+1 = 15) through CTRV
    3. update                 → linear KF for lidar, unscented for radar

Every angular residual (heading, bearing) is wrapped BEFORE it enters a
weighted sum or outer product.

References:
  - Julier & Uhlmann (2004), "Unscented Filtering and Nonlinear Estimation"
  - Wan & van der Merwe (2000), "The Unscented Kalman Filter for
    Nonlinear Estimation"

License: AGPL-3.0-or-later
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.linalg import block_diag

from .ctrv_fusion_config import UKFConfig
from .ctrv_fusion_measurements import (
    LidarMeasurement,
    MeasurementPackage,
    RadarMeasurement,
    SensorType,
)
from .ctrv_fusion_metrics import compute_nis

logger = logging.getLogger(__name__)


# ===== STATE MODEL =====

N_X = 5
N_NOISE = 2
N_AUG = N_X + N_NOISE
N_SIGMA = 2 * N_AUG + 1
N_Z_LIDAR = 2
N_Z_RADAR = 3

# State indices
PX, PY, V, YAW, YAW_RATE = range(N_X)
# Augmented noise indices
NU_A, NU_YAWDD = N_X, N_X + 1
# Radar measurement indices
RHO, PHI, RHO_DOT = range(N_Z_RADAR)

TWO_PI = 2.0 * math.pi


class FilterError(RuntimeError):
    """Base class for numerical failures of the filter."""


class FilterDivergenceError(FilterError):
    """Covariance is no longer positive definite (or not finite)."""


class DegenerateUpdateError(FilterError):
    """Innovation covariance is singular or too ill-conditioned to invert."""


@dataclass(frozen=True)
class InnovationReport:
    """Outcome of one measurement update.

    Attributes:
        sensor_type: Modality of the measurement
        innovation: Measurement residual z - z_pred (bearing wrapped)
        innovation_covariance: S
        nis: Normalized Innovation Squared, y^T S^-1 y
        timestamp: Measurement time (microseconds)
    """
    sensor_type: SensorType
    innovation: np.ndarray
    innovation_covariance: np.ndarray
    nis: float
    timestamp: int


# ===== ANGLE UTILITIES =====

def normalize_angle(angle: float) -> float:
    """Wrap an angle into (-pi, pi].

    The result is congruent to ``angle`` modulo 2*pi.

    Raises:
        ValueError: if ``angle`` is not finite.
    """
    angle = float(angle)
    if not math.isfinite(angle):
        raise ValueError(f"cannot normalize non-finite angle {angle}")
    if -math.pi < angle <= math.pi:
        return angle
    wrapped = math.pi - (math.pi - angle) % TWO_PI
    if wrapped <= -math.pi:
        wrapped += TWO_PI
    return wrapped


def normalize_angles(angles: np.ndarray) -> np.ndarray:
    """Element-wise :func:`normalize_angle` for arrays."""
    angles = np.asarray(angles, dtype=np.float64)
    if not np.all(np.isfinite(angles)):
        raise ValueError("cannot normalize non-finite angles")
    wrapped = np.pi - np.mod(np.pi - angles, TWO_PI)
    wrapped = np.where(wrapped <= -np.pi, wrapped + TWO_PI, wrapped)
    return np.where((angles > -np.pi) & (angles <= np.pi), angles, wrapped)


def angular_mean(angles: np.ndarray, weights: np.ndarray) -> float:
    """Weighted mean of angles, taken about the first (central) sample.

    Equal to the plain weighted sum when the samples do not straddle +-pi.
    """
    ref = float(angles[0])
    return normalize_angle(ref + weights @ normalize_angles(angles - ref))


# ===== SIGMA POINTS =====

def sigma_weights(n_aug: int, lambda_: float) -> np.ndarray:
    """Sigma point weights; they sum to 1 by construction.

    w[0] = lambda / (lambda + n_aug)
    w[i] = 1 / (2 (lambda + n_aug)),  i = 1 .. 2 n_aug
    """
    spread = lambda_ + n_aug
    weights = np.full(2 * n_aug + 1, 0.5 / spread)
    weights[0] = lambda_ / spread
    return weights


def augment(x: np.ndarray, P: np.ndarray, Q: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Append zero-mean process noise to the state.

    Returns:
        x_aug (n+q,), P_aug (n+q, n+q) with P top-left and Q bottom-right.
    """
    x_aug = np.concatenate([x, np.zeros(Q.shape[0])])
    P_aug = block_diag(P, Q)
    return x_aug, P_aug


def generate_sigma_points(x_aug: np.ndarray, P_aug: np.ndarray,
                          lambda_: float) -> np.ndarray:
    """Deterministic sigma spread about ``x_aug``.

    Column 0 is the mean, columns 1..n are mean + sqrt(lambda + n)·A[:, i]
    and columns n+1..2n are mean - sqrt(lambda + n)·A[:, i], where A is the
    lower Cholesky factor of ``P_aug``.

    Returns:
        Sigma matrix (n, 2n+1).

    Raises:
        FilterDivergenceError: if ``P_aug`` is not finite or not positive
            definite.
    """
    n = x_aug.shape[0]
    if not (np.all(np.isfinite(x_aug)) and np.all(np.isfinite(P_aug))):
        raise FilterDivergenceError("state or covariance contains non-finite values")
    if np.any(np.diag(P_aug) < 0.0):
        raise FilterDivergenceError(
            f"covariance has negative variance: diag={np.diag(P_aug)}")

    try:
        A = np.linalg.cholesky(P_aug)
    except np.linalg.LinAlgError as err:
        raise FilterDivergenceError("covariance is not positive definite") from err

    spread = math.sqrt(lambda_ + n)
    sigma = np.empty((n, 2 * n + 1))
    sigma[:, 0] = x_aug
    sigma[:, 1:n + 1] = x_aug[:, None] + spread * A
    sigma[:, n + 1:] = x_aug[:, None] - spread * A
    return sigma


# ===== CTRV PROCESS MODEL =====

def ctrv_propagate(sigma_aug: np.ndarray, dt: float,
                   config: Optional[UKFConfig] = None) -> np.ndarray:
    """Propagate augmented sigma points ``dt`` seconds under CTRV.

    Straight-line motion is used when |yaw_rate| < ``yaw_rate_epsilon``,
    the closed-form turn integral otherwise. Sigma points sitting on the
    origin are moved to (origin_substitute, origin_substitute) first.

    Args:
        sigma_aug: Augmented sigma matrix (7, k)
        dt: Elapsed time (s)
        config: Source of the guard thresholds (defaults if None)

    Returns:
        Predicted sigma matrix (5, k). Headings are left unwrapped.
    """
    cfg = config or UKFConfig()

    px = sigma_aug[PX]
    py = sigma_aug[PY]
    v = sigma_aug[V]
    yaw = sigma_aug[YAW]
    yawd = sigma_aug[YAW_RATE]
    nu_a = sigma_aug[NU_A]
    nu_yawdd = sigma_aug[NU_YAWDD]

    at_origin = (np.abs(px) < cfg.origin_epsilon) & (np.abs(py) < cfg.origin_epsilon)
    px = np.where(at_origin, cfg.origin_substitute, px)
    py = np.where(at_origin, cfg.origin_substitute, py)

    straight = np.abs(yawd) < cfg.yaw_rate_epsilon
    safe_yawd = np.where(straight, 1.0, yawd)
    yaw_end = yaw + yawd * dt

    px_p = np.where(straight,
                    px + v * np.cos(yaw) * dt,
                    px + v / safe_yawd * (np.sin(yaw_end) - np.sin(yaw)))
    py_p = np.where(straight,
                    py + v * np.sin(yaw) * dt,
                    py + v / safe_yawd * (np.cos(yaw) - np.cos(yaw_end)))

    half_dt2 = 0.5 * dt * dt
    sigma_pred = np.empty((N_X, sigma_aug.shape[1]))
    sigma_pred[PX] = px_p + half_dt2 * np.cos(yaw) * nu_a
    sigma_pred[PY] = py_p + half_dt2 * np.sin(yaw) * nu_a
    sigma_pred[V] = v + dt * nu_a
    sigma_pred[YAW] = yaw_end + half_dt2 * nu_yawdd
    sigma_pred[YAW_RATE] = yawd + dt * nu_yawdd
    return sigma_pred


def predicted_mean_and_covariance(sigma_pred: np.ndarray,
                                  weights: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Reduce predicted sigma points to (x, P).

    Heading residuals are wrapped before the outer products.
    """
    x = sigma_pred @ weights
    x[YAW] = angular_mean(sigma_pred[YAW], weights)

    x_diff = sigma_pred - x[:, None]
    x_diff[YAW] = normalize_angles(x_diff[YAW])

    P = (weights * x_diff) @ x_diff.T
    P = 0.5 * (P + P.T)
    return x, P


# ===== RADAR MEASUREMENT MODEL =====

def radar_projection(sigma_pred: np.ndarray,
                     config: Optional[UKFConfig] = None) -> np.ndarray:
    """Map predicted sigma points into radar space [rho, phi, rho_dot].

    Bearing is atan2(py, px) for px != 0, +-pi/2 by the sign of py on the
    y axis and 0 at the origin. The range-rate divisor uses positions
    substituted with ``range_epsilon`` when the point is at the origin.

    Returns:
        Measurement sigma matrix (3, k).
    """
    cfg = config or UKFConfig()

    px = sigma_pred[PX]
    py = sigma_pred[PY]
    v = sigma_pred[V]
    yaw = sigma_pred[YAW]

    z_sig = np.empty((N_Z_RADAR, sigma_pred.shape[1]))
    z_sig[RHO] = np.sqrt(px * px + py * py)
    z_sig[PHI] = np.where(px != 0.0, np.arctan2(py, px), np.sign(py) * (np.pi / 2.0))

    at_origin = (np.abs(px) < cfg.range_epsilon) & (np.abs(py) < cfg.range_epsilon)
    px_safe = np.where(at_origin, cfg.range_epsilon, px)
    py_safe = np.where(at_origin, cfg.range_epsilon, py)
    rho_safe = np.sqrt(px_safe * px_safe + py_safe * py_safe)

    vx = v * np.cos(yaw)
    vy = v * np.sin(yaw)
    z_sig[RHO_DOT] = (px_safe * vx + py_safe * vy) / rho_safe
    return z_sig


def bearing_residual(z_phi: float, z_pred_phi: float, window: float = 0.2) -> float:
    """Bearing residual with the +-pi discontinuity correction.

    A measurement just below +pi against a negative prediction (or just
    above -pi against a positive one) is compared after shifting the
    prediction by 2*pi; the result is wrapped into (-pi, pi].
    """
    if z_phi > math.pi - window and z_pred_phi < 0.0:
        z_pred_phi += TWO_PI
    elif z_phi < -math.pi + window and z_pred_phi > 0.0:
        z_pred_phi -= TWO_PI
    return normalize_angle(z_phi - z_pred_phi)


def _invert_innovation(S: np.ndarray, max_condition_number: float) -> np.ndarray:
    if not np.all(np.isfinite(S)):
        raise DegenerateUpdateError("innovation covariance contains non-finite values")
    cond = np.linalg.cond(S)
    if not np.isfinite(cond) or cond > max_condition_number:
        raise DegenerateUpdateError(
            f"innovation covariance is near-singular (cond={cond:.3e})")
    return np.linalg.inv(S)


# ===== FILTER =====

class CTRVUnscentedKF:
    """Unscented Kalman filter fusing lidar and radar under CTRV.

    The instance owns x, P and the predicted sigma matrix of the current
    cycle. Weights, Q, R_lidar, R_radar and H are fixed at construction.

    Example::

        ukf = CTRVUnscentedKF()
        ukf.process_measurement(LidarMeasurement(5.0, 3.0, timestamp=0))
        ukf.process_measurement(RadarMeasurement(6.0, 0.3, 1.0, timestamp=100000))
        print(ukf.x, ukf.nis_radar)
        ahead = ukf.predict_future(0.5)

    Args:
        config: Noise and policy parameters (defaults if None)
    """

    def __init__(self, config: Optional[UKFConfig] = None):
        self.config = config or UKFConfig()

        self.lambda_ = self.config.lambda_const - N_AUG
        self.weights = sigma_weights(N_AUG, self.lambda_)

        self._Q = self.config.process_noise
        self._R_lidar = self.config.lidar_noise
        self._R_radar = self.config.radar_noise
        self._H = np.eye(N_Z_LIDAR, N_X)

        self._x = np.zeros(N_X)
        self._P = np.zeros((N_X, N_X))
        self._sigma_pred: Optional[np.ndarray] = None
        self._time_us: Optional[int] = None
        self.is_initialized = False

        self.nis_lidar = 0.0
        self.nis_radar = 0.0
        self.last_report: Optional[InnovationReport] = None

    # ----- read-only views -----

    @property
    def x(self) -> np.ndarray:
        """Current state estimate [px, py, v, yaw, yaw_rate]."""
        return self._x.copy()

    @property
    def P(self) -> np.ndarray:
        """Current state covariance (5x5)."""
        return self._P.copy()

    @property
    def time_us(self) -> Optional[int]:
        """Timestamp of the last processed measurement (microseconds)."""
        return self._time_us

    @property
    def predicted_sigma_points(self) -> Optional[np.ndarray]:
        """Predicted sigma matrix of the pending cycle, if any."""
        return None if self._sigma_pred is None else self._sigma_pred.copy()

    # ----- lifecycle -----

    def initialize(self, measurement: MeasurementPackage) -> None:
        """Seed the state from a first measurement.

        Position comes from the measurement (polar → Cartesian for radar);
        speed, heading and heading rate stay zero. P is set to identity.
        """
        x = np.zeros(N_X)
        if isinstance(measurement, LidarMeasurement):
            x[PX], x[PY] = measurement.px, measurement.py
        elif isinstance(measurement, RadarMeasurement):
            x[PX], x[PY] = measurement.to_cartesian()
        else:
            raise TypeError(f"Unsupported measurement: {type(measurement).__name__}")

        self._x = x
        self._P = np.eye(N_X)
        self._sigma_pred = None
        self._time_us = int(measurement.timestamp)
        self.is_initialized = True
        logger.info(f"UKF initialized from {measurement.sensor_type.value} "
                    f"at t={self._time_us}us: px={x[PX]:.3f} py={x[PY]:.3f}")

    def set_state(self, x: np.ndarray, P: np.ndarray, timestamp: int) -> None:
        """Overwrite x and P directly (warm start or replay).

        Only shapes and finiteness are checked; positive definiteness is
        checked at the next prediction.
        """
        x = np.array(x, dtype=np.float64)
        P = np.array(P, dtype=np.float64)
        if x.shape != (N_X,) or P.shape != (N_X, N_X):
            raise ValueError(f"expected x ({N_X},) and P ({N_X}, {N_X}), "
                             f"got {x.shape} and {P.shape}")
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(P))):
            raise ValueError("x and P must be finite")

        x[YAW] = normalize_angle(x[YAW])
        self._x = x
        self._P = P
        self._sigma_pred = None
        self._time_us = int(timestamp)
        self.is_initialized = True

    def process_measurement(self, measurement: MeasurementPackage) -> None:
        """Advance the filter by exactly one measurement.

        Measurements must arrive in non-decreasing timestamp order. If the
        cycle raises a :class:`FilterError`, x, P and the timestamp are
        restored to their values before the call.
        """
        if not isinstance(measurement, (LidarMeasurement, RadarMeasurement)):
            raise TypeError(f"Unsupported measurement: {type(measurement).__name__}")

        self.last_report = None
        if not self.is_initialized:
            self.initialize(measurement)
            return

        dt = (measurement.timestamp - self._time_us) / 1e6
        if dt < 0.0:
            logger.warning(f"Out-of-order measurement: dt={dt:.6f}s "
                           f"(t={measurement.timestamp}us, last={self._time_us}us)")

        x_prev, P_prev, time_prev = self._x, self._P, self._time_us
        try:
            self.prediction(dt)
            self._time_us = int(measurement.timestamp)

            if isinstance(measurement, LidarMeasurement):
                if self.config.use_laser:
                    self.update_lidar(measurement)
                else:
                    logger.debug("Lidar update disabled, prediction only")
            else:
                if self.config.use_radar:
                    self.update_radar(measurement)
                else:
                    logger.debug("Radar update disabled, prediction only")
        except FilterError:
            self._x, self._P, self._time_us = x_prev, P_prev, time_prev
            raise
        finally:
            self._sigma_pred = None

    # ----- prediction -----

    def _propagate(self, dt: float) -> np.ndarray:
        x_aug, P_aug = augment(self._x, self._P, self._Q)
        sigma_aug = generate_sigma_points(x_aug, P_aug, self.lambda_)
        return ctrv_propagate(sigma_aug, dt, self.config)

    def prediction(self, dt: float) -> None:
        """Predict x and P ``dt`` seconds ahead.

        The predicted sigma matrix is kept for a radar update in the same
        cycle.
        """
        self._require_initialized()
        sigma_pred = self._propagate(dt)
        x, P = predicted_mean_and_covariance(sigma_pred, self.weights)

        self._x = x
        self._P = P
        self._sigma_pred = sigma_pred
        logger.debug(f"Prediction step completed, dt={dt:.3f}s")

    def predict_future(self, dt: float) -> np.ndarray:
        """Mean state ``dt`` seconds ahead; filter state is not modified.

        The origin guard of the process model still applies, so for a mean
        within ``origin_epsilon`` of the origin ``predict_future(0.0)``
        returns a position pulled towards ``origin_substitute`` rather than
        the current mean.
        """
        self._require_initialized()
        sigma_pred = self._propagate(dt)
        x_future = sigma_pred @ self.weights
        x_future[YAW] = angular_mean(sigma_pred[YAW], self.weights)
        return x_future

    # ----- updates -----

    def update_lidar(self, measurement: LidarMeasurement) -> InnovationReport:
        """Linear Kalman correction with a lidar position fix."""
        self._require_initialized()
        if not isinstance(measurement, LidarMeasurement):
            raise TypeError("update_lidar expects a LidarMeasurement")

        H = self._H
        R = self._R_lidar
        P = self._P

        y = measurement.z - H @ self._x
        PHt = P @ H.T
        S = H @ PHt + R
        S_inv = _invert_innovation(S, self.config.max_condition_number)
        K = PHt @ S_inv

        x = self._x + K @ y
        x[YAW] = normalize_angle(x[YAW])
        I_KH = np.eye(N_X) - K @ H
        P_new = I_KH @ P @ I_KH.T + K @ R @ K.T  # Joseph form
        nis = compute_nis(y, S)

        self._x = x
        self._P = 0.5 * (P_new + P_new.T)
        self._sigma_pred = None
        self.nis_lidar = nis
        self.last_report = InnovationReport(SensorType.LIDAR, y, S, nis, measurement.timestamp)
        logger.debug(f"Lidar update applied: NIS={nis:.3f}")
        return self.last_report

    def update_radar(self, measurement: RadarMeasurement) -> InnovationReport:
        """Unscented correction with a radar detection.

        Uses the predicted sigma matrix of the current cycle, so a call to
        :meth:`prediction` must precede it.
        """
        self._require_initialized()
        if not isinstance(measurement, RadarMeasurement):
            raise TypeError("update_radar expects a RadarMeasurement")
        if self._sigma_pred is None:
            raise RuntimeError("update_radar requires a prediction in the same cycle")

        sigma_pred = self._sigma_pred
        w = self.weights

        z_sig = radar_projection(sigma_pred, self.config)

        z_pred = z_sig @ w
        z_pred[PHI] = angular_mean(z_sig[PHI], w)

        z_diff = z_sig - z_pred[:, None]
        z_diff[PHI] = normalize_angles(z_diff[PHI])
        S = (w * z_diff) @ z_diff.T + self._R_radar
        S = 0.5 * (S + S.T)

        x_diff = sigma_pred - self._x[:, None]
        x_diff[YAW] = normalize_angles(x_diff[YAW])
        T = (w * x_diff) @ z_diff.T

        S_inv = _invert_innovation(S, self.config.max_condition_number)
        K = T @ S_inv

        z = measurement.z
        y = z - z_pred
        y[PHI] = bearing_residual(z[PHI], z_pred[PHI], self.config.bearing_window)

        x = self._x + K @ y
        x[YAW] = normalize_angle(x[YAW])
        P_new = self._P - K @ S @ K.T
        nis = compute_nis(y, S)

        self._x = x
        self._P = 0.5 * (P_new + P_new.T)
        self._sigma_pred = None
        self.nis_radar = nis
        self.last_report = InnovationReport(SensorType.RADAR, y, S, nis, measurement.timestamp)
        logger.debug(f"Radar update applied: NIS={nis:.3f}")
        return self.last_report

    def _require_initialized(self) -> None:
        if not self.is_initialized:
            raise RuntimeError("Filter not initialized. Process a measurement first.")
