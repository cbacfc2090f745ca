"""Sensor measurement records consumed by the filter.

A measurement is one of two immutable variants, tagged by
:class:`SensorType`:

* :class:`LaserMeasurement` -- Cartesian position ``(px, py)``.
* :class:`RadarMeasurement` -- polar ``(rho, phi, rho_dot)``.

Both carry an integer timestamp in microseconds.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union

import numpy as np


class SensorType(enum.Enum):
    """Kind of sensor that produced a measurement."""

    LASER = "L"
    RADAR = "R"

    @property
    def meas_dim(self) -> int:
        """Number of scalar readings this sensor reports."""
        return 2 if self is SensorType.LASER else 3


@dataclass(frozen=True)
class LaserMeasurement:
    """Lidar position fix.

    Attributes
    ----------
    timestamp : int
        Acquisition time in microseconds.
    px, py : float
        Measured position in metres.
    """

    timestamp: int
    px: float
    py: float

    @property
    def sensor_type(self) -> SensorType:
        return SensorType.LASER

    @property
    def raw(self) -> np.ndarray:
        """Readings as a float64 vector ``[px, py]``."""
        return np.array([self.px, self.py], dtype=np.float64)


@dataclass(frozen=True)
class RadarMeasurement:
    """Radar range / bearing / range-rate return.

    Attributes
    ----------
    timestamp : int
        Acquisition time in microseconds.
    rho : float
        Range in metres.
    phi : float
        Bearing in radians (not necessarily wrapped).
    rho_dot : float
        Range rate in metres per second.
    """

    timestamp: int
    rho: float
    phi: float
    rho_dot: float

    @property
    def sensor_type(self) -> SensorType:
        return SensorType.RADAR

    @property
    def raw(self) -> np.ndarray:
        """Readings as a float64 vector ``[rho, phi, rho_dot]``."""
        return np.array([self.rho, self.phi, self.rho_dot], dtype=np.float64)


Measurement = Union[LaserMeasurement, RadarMeasurement]
