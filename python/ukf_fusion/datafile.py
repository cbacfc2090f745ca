"""Reader for radar/lidar sensor log files.

Each non-empty line holds one measurement, fields separated by whitespace::

    L  px   py   timestamp  [gt_px gt_py gt_vx gt_vy ...]
    R  rho  phi  rho_dot    timestamp  [gt_px gt_py gt_vx gt_vy ...]

The optional trailing fields are the ground truth of the tracked object at
that time.  Only the first four (position and velocity) are kept; any
further columns (yaw, yaw rate) are ignored.  Lines starting with ``#`` are
comments.
"""

from __future__ import annotations

import os
from typing import Iterable, List, NamedTuple, Optional, Union

import numpy as np

from .measurement import LaserMeasurement, Measurement, RadarMeasurement, SensorType

_GROUND_TRUTH_FIELDS = 4


class DataRecord(NamedTuple):
    """One parsed log line."""

    measurement: Measurement
    ground_truth: Optional[np.ndarray]


def parse_line(line: str) -> DataRecord:
    """Parse a single log line.

    Raises
    ------
    ValueError
        If the sensor tag is unknown, a field is not numeric, or the number
        of fields does not fit the sensor type.
    """
    fields = line.split()
    if not fields:
        raise ValueError("empty line")

    try:
        sensor_type = SensorType(fields[0])
    except ValueError:
        raise ValueError(f"unknown sensor tag {fields[0]!r}") from None

    n_meas = sensor_type.meas_dim
    values = fields[1:]
    if len(values) < n_meas + 1:
        raise ValueError(
            f"{sensor_type.name} line needs {n_meas} readings and a timestamp, "
            f"got {len(values)} fields"
        )

    readings = [float(v) for v in values[:n_meas]]
    timestamp = int(values[n_meas])

    if sensor_type is SensorType.LASER:
        measurement = LaserMeasurement(timestamp, *readings)
    else:
        measurement = RadarMeasurement(timestamp, *readings)

    extra = values[n_meas + 1 :]
    if not extra:
        return DataRecord(measurement, None)
    if len(extra) < _GROUND_TRUTH_FIELDS:
        raise ValueError(
            f"ground truth needs at least {_GROUND_TRUTH_FIELDS} fields, "
            f"got {len(extra)}"
        )
    ground_truth = np.array([float(v) for v in extra[:_GROUND_TRUTH_FIELDS]])
    return DataRecord(measurement, ground_truth)


def read_measurements(
    source: Union[str, "os.PathLike[str]", Iterable[str]],
) -> List[DataRecord]:
    """Read every measurement from a log file or an iterable of lines.

    Parameters
    ----------
    source : path-like or iterable of str
        A file path, or already-opened lines (e.g. a file object).

    Returns
    -------
    list of DataRecord
        Records in file order.

    Raises
    ------
    ValueError
        If any line is malformed; the message carries its line number.
    """
    if isinstance(source, (str, os.PathLike)):
        with open(source, "r", encoding="utf-8") as fh:
            return _read_lines(fh)
    return _read_lines(source)


def _read_lines(lines: Iterable[str]) -> List[DataRecord]:
    records = []
    for lineno, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            records.append(parse_line(stripped))
        except ValueError as exc:
            raise ValueError(f"line {lineno}: {exc}") from exc
    return records
