#!/usr/bin/env python3
"""Minimal example: track a turning target with alternating lidar and radar."""

import math

import numpy as np

from ukf_fusion import LaserMeasurement, RadarMeasurement, UnscentedKalmanFilter
from ukf_fusion.utils import state_to_cartesian

ukf = UnscentedKalmanFilter()

# True target: constant speed and turn rate
px, py, v, yaw, yaw_rate = 0.6, 0.6, 5.0, 0.0, 0.3
dt = 0.05

rng = np.random.default_rng(42)

for k in range(100):
    timestamp = k * 50_000  # microseconds

    if k > 0:
        px += v / yaw_rate * (math.sin(yaw + yaw_rate * dt) - math.sin(yaw))
        py += v / yaw_rate * (math.cos(yaw) - math.cos(yaw + yaw_rate * dt))
        yaw += yaw_rate * dt

    if k % 2 == 0:
        meas = LaserMeasurement(
            timestamp,
            px + rng.normal(0, 0.15),
            py + rng.normal(0, 0.15),
        )
    else:
        rho = math.hypot(px, py)
        meas = RadarMeasurement(
            timestamp,
            rho + rng.normal(0, 0.3),
            math.atan2(py, px) + rng.normal(0, 0.03),
            (px * v * math.cos(yaw) + py * v * math.sin(yaw)) / rho + rng.normal(0, 0.3),
        )

    ukf.process_measurement(meas)
    est = state_to_cartesian(ukf.x)

    print(
        f"t={timestamp / 1e6:5.2f}  {meas.sensor_type.name:5s}  "
        f"true=({px:7.3f}, {py:7.3f})  "
        f"est=({est[0]:7.3f}, {est[1]:7.3f})  "
        f"v={ukf.x[2]:6.3f}"
    )
