"""Unscented Kalman Filter for radar/lidar sensor fusion.

Quick start::

    from ukf_fusion import LaserMeasurement, RadarMeasurement, UnscentedKalmanFilter

    ukf = UnscentedKalmanFilter()
    ukf.process_measurement(LaserMeasurement(0, 0.31, 0.58))
    ukf.process_measurement(RadarMeasurement(50_000, 1.01, 0.55, 2.0))
    print(ukf.x, ukf.P, ukf.nis_radar)
"""

import logging

from .core import (
    UkfError,
    UkfMathError,
    UkfParameterError,
    UnscentedKalmanFilter,
)
from .measurement import (
    LaserMeasurement,
    Measurement,
    RadarMeasurement,
    SensorType,
)
from .version import __version__, __version_info__

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "UnscentedKalmanFilter",
    "UkfError",
    "UkfParameterError",
    "UkfMathError",
    "SensorType",
    "LaserMeasurement",
    "RadarMeasurement",
    "Measurement",
    "__version__",
    "__version_info__",
]
