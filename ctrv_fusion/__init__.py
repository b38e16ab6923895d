"""CTRV-Fusion v1.0.0: Unscented Kalman filter for lidar/radar object tracking.

Estimates [px, py, v, yaw, yaw_rate] of a single object from asynchronous
lidar (x, y) and radar (range, bearing, range-rate) measurements under the
Constant Turn Rate and Velocity model.

Quick Start::

    from ctrv_fusion import CTRVUnscentedKF, LidarMeasurement, RadarMeasurement
    ukf = CTRVUnscentedKF()
    for meas in measurements:
        ukf.process_measurement(meas)
    print(ukf.x, ukf.nis_lidar, ukf.nis_radar)

License: AGPL-3.0-or-later
"""

__version__ = "1.0.0"
__license__ = "AGPL-3.0-or-later"

# ---------------------------------------------------------------------------
# Core filter
# ---------------------------------------------------------------------------
from .ctrv_fusion_ukf import (
    CTRVUnscentedKF,
    InnovationReport,
    # Errors
    FilterError,
    FilterDivergenceError,
    DegenerateUpdateError,
    # Building blocks
    normalize_angle,
    normalize_angles,
    angular_mean,
    sigma_weights,
    augment,
    generate_sigma_points,
    ctrv_propagate,
    predicted_mean_and_covariance,
    radar_projection,
    bearing_residual,
    # Dimensions
    N_X,
    N_AUG,
    N_SIGMA,
)

# ---------------------------------------------------------------------------
# Configuration and measurements
# ---------------------------------------------------------------------------
from .ctrv_fusion_config import UKFConfig
from .ctrv_fusion_measurements import (
    SensorType,
    LidarMeasurement,
    RadarMeasurement,
    MeasurementPackage,
    make_measurement,
)

# ---------------------------------------------------------------------------
# Metrics, scenarios, batch evaluation
# ---------------------------------------------------------------------------
from .ctrv_fusion_metrics import (
    NISMonitor,
    compute_nis,
    compute_nees,
    compute_rmse,
    nis_threshold,
)
from .ctrv_fusion_datasets import ScenarioData, SyntheticCTRVScenario
from .ctrv_fusion_batch import (
    BatchConfig,
    BatchProcessor,
    BatchResult,
    to_cartesian_kinematics,
)

__all__ = [
    "__version__",
    # Filter
    "CTRVUnscentedKF", "InnovationReport",
    "FilterError", "FilterDivergenceError", "DegenerateUpdateError",
    "normalize_angle", "normalize_angles", "angular_mean", "sigma_weights", "augment",
    "generate_sigma_points", "ctrv_propagate", "predicted_mean_and_covariance",
    "radar_projection", "bearing_residual", "N_X", "N_AUG", "N_SIGMA",
    # Config / measurements
    "UKFConfig", "SensorType", "LidarMeasurement", "RadarMeasurement",
    "MeasurementPackage", "make_measurement",
    # Metrics
    "NISMonitor", "compute_nis", "compute_nees", "compute_rmse", "nis_threshold",
    # Scenarios / batch
    "ScenarioData", "SyntheticCTRVScenario",
    "BatchConfig", "BatchProcessor", "BatchResult", "to_cartesian_kinematics",
]
