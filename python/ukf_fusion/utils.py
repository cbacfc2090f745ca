"""Numerical helpers shared by the filter core and its tooling.

Angle wrapping, shape validation, and the accuracy / consistency metrics
used to judge a filter run against ground truth.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np

from .measurement import SensorType

TWO_PI = 2.0 * np.pi

#: 95% quantiles of the chi-squared distribution, keyed by measurement
#: dimension.  A consistent filter sees about 5% of NIS values above these.
NIS_95_THRESHOLDS = {
    2: 5.991,
    3: 7.815,
}

ArrayOrFloat = Union[float, np.ndarray]

# ---------------------------------------------------------------------------
# Angles
# ---------------------------------------------------------------------------


def normalize_angle(angle: ArrayOrFloat) -> ArrayOrFloat:
    """Wrap an angle (or an array of angles) into ``[-pi, pi]``.

    Angles already inside the interval are returned unchanged, so the
    operation is idempotent.

    Parameters
    ----------
    angle : float or numpy.ndarray
        Angle(s) in radians.

    Returns
    -------
    float or numpy.ndarray
        A Python float for scalar input, otherwise an array of the same
        shape.

    Examples
    --------
    >>> normalize_angle(3 * np.pi / 2)
    -1.5707963267948966
    >>> normalize_angle(np.array([0.5, 7.0]))
    array([0.5       , 0.71681469])
    """
    angle = np.asarray(angle, dtype=np.float64)
    wrapped = np.where(
        np.abs(angle) > np.pi,
        angle - np.round(angle / TWO_PI) * TWO_PI,
        angle,
    )
    if wrapped.ndim == 0:
        return float(wrapped)
    return wrapped


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def validate_square(arr: np.ndarray, name: str = "matrix") -> np.ndarray:
    """Ensure *arr* is a square 2-D float64 array.

    Parameters
    ----------
    arr : array_like
        Input to validate.
    name : str
        Human-readable name for error messages.

    Returns
    -------
    numpy.ndarray
        Validated array (may be a new object if dtype conversion occurred).

    Raises
    ------
    ValueError
        If the array is not 2-D or not square.
    """
    arr = np.asarray(arr, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise ValueError(
            f"{name} must be a square 2-D array, got shape {arr.shape}"
        )
    return arr


def validate_vector(arr: np.ndarray, length: int, name: str = "vector") -> np.ndarray:
    """Ensure *arr* is a 1-D float64 array of the given length.

    Parameters
    ----------
    arr : array_like
        Input to validate.
    length : int
        Expected number of elements.
    name : str
        Human-readable name for error messages.

    Returns
    -------
    numpy.ndarray
        Validated 1-D array.

    Raises
    ------
    ValueError
        If shape does not match.
    """
    arr = np.asarray(arr, dtype=np.float64).ravel()
    if arr.shape[0] != length:
        raise ValueError(
            f"{name} must have {length} elements, got {arr.shape[0]}"
        )
    return arr


# ---------------------------------------------------------------------------
# Accuracy metrics
# ---------------------------------------------------------------------------


def state_to_cartesian(x: np.ndarray) -> np.ndarray:
    """Convert a CTRV state ``[px, py, v, yaw, yaw_rate]`` to ``[px, py, vx, vy]``."""
    x = validate_vector(x, 5, "state")
    px, py, v, yaw, _ = x
    return np.array([px, py, v * np.cos(yaw), v * np.sin(yaw)])


def calculate_rmse(
    estimations: Sequence[np.ndarray],
    ground_truth: Sequence[np.ndarray],
) -> np.ndarray:
    """Element-wise root-mean-square error between two sequences of vectors.

    Parameters
    ----------
    estimations : sequence of array_like
        Estimated vectors, typically from :func:`state_to_cartesian`.
    ground_truth : sequence of array_like
        True vectors, same length and shape as *estimations*.

    Returns
    -------
    numpy.ndarray
        RMSE per vector component.

    Raises
    ------
    ValueError
        If either sequence is empty, or the two differ in length or
        vector shape.

    Examples
    --------
    >>> calculate_rmse([np.array([1.0, 2.0])], [np.array([1.0, 1.0])])
    array([0., 1.])
    """
    if len(estimations) == 0:
        raise ValueError("estimations must not be empty")
    if len(estimations) != len(ground_truth):
        raise ValueError(
            f"estimations and ground_truth differ in length: "
            f"{len(estimations)} != {len(ground_truth)}"
        )

    est = np.asarray(estimations, dtype=np.float64)
    gt = np.asarray(ground_truth, dtype=np.float64)
    if est.shape != gt.shape:
        raise ValueError(
            f"estimation shape {est.shape} does not match ground truth "
            f"shape {gt.shape}"
        )
    return np.sqrt(np.mean((est - gt) ** 2, axis=0))


def nis_exceedance_rate(values: Sequence[float], sensor_type: SensorType) -> float:
    """Fraction of NIS values above the 95% chi-squared threshold.

    The threshold is chosen from the measurement dimension of
    *sensor_type* (2 for laser, 3 for radar).  For a well-tuned filter the
    result should be close to 0.05.

    Raises
    ------
    ValueError
        If *values* is empty.
    """
    values = np.asarray(values, dtype=np.float64).ravel()
    if values.size == 0:
        raise ValueError("values must not be empty")
    threshold = NIS_95_THRESHOLDS[sensor_type.meas_dim]
    return float(np.mean(values > threshold))
