"""Unscented Kalman Filter for fusing radar and lidar observations.

The filter tracks a single object with the constant turn rate and velocity
(CTRV) model.  The state is ``[px, py, v, yaw, yaw_rate]``; process noise
is a longitudinal acceleration and a yaw acceleration, both appended to the
state when sigma points are generated.

Example
-------
>>> from ukf_fusion import LaserMeasurement, RadarMeasurement, UnscentedKalmanFilter
>>>
>>> ukf = UnscentedKalmanFilter()
>>> ukf.process_measurement(LaserMeasurement(0, 1.0, 1.0))
>>> ukf.process_measurement(RadarMeasurement(50_000, 1.45, 0.79, 0.2))
>>> print(ukf.x, ukf.nis_radar)
"""

from __future__ import annotations

import logging
import math
from typing import List, NamedTuple, Optional

import numpy as np

from .measurement import LaserMeasurement, Measurement, RadarMeasurement, SensorType
from .utils import normalize_angle, validate_square, validate_vector

logger = logging.getLogger(__name__)

#: State dimension: px, py, v, yaw, yaw_rate.
N_X = 5

#: Augmented dimension: state plus longitudinal and yaw acceleration noise.
N_AUG = 7

#: Index of the heading angle in the state vector.
YAW_INDEX = 3

#: Index of the bearing angle in the radar measurement vector.
BEARING_INDEX = 1

#: Position components smaller than this (both at once) are clamped to it.
SMALL_POSITION = 1e-4

#: Below this yaw rate the straight-line motion limit is used.
YAW_RATE_EPS = 1e-3

#: Gaps longer than this are predicted in several sub-steps.
MAX_SINGLE_STEP = 0.2

#: Length of each sub-step for long gaps, in seconds.
SUB_STEP = 0.1

H_LASER = np.array(
    [
        [1.0, 0.0, 0.0, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0, 0.0],
    ]
)

# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class UkfError(RuntimeError):
    """Base exception for filter errors."""


class UkfParameterError(UkfError, ValueError):
    """Raised for invalid configuration, shapes, or measurement input."""


class UkfMathError(UkfError):
    """Raised when a covariance cannot be factorized or inverted."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class PredictedMoments(NamedTuple):
    """Mean and covariance recombined from a set of sigma points."""

    mean: np.ndarray
    covariance: np.ndarray


class RadarPrediction(NamedTuple):
    """Predicted radar measurement.

    Attributes
    ----------
    sigma_points : numpy.ndarray
        ``(3, 15)`` sigma points in measurement space.
    mean : numpy.ndarray
        Predicted measurement ``[rho, phi, rho_dot]``.
    covariance : numpy.ndarray
        Innovation covariance ``S`` including radar noise.
    """

    sigma_points: np.ndarray
    mean: np.ndarray
    covariance: np.ndarray


# ---------------------------------------------------------------------------
# Linear algebra wrappers
# ---------------------------------------------------------------------------


def _cholesky(matrix: np.ndarray, context: str) -> np.ndarray:
    """Lower Cholesky factor, translating numpy failures into UkfMathError."""
    try:
        return np.linalg.cholesky(matrix)
    except np.linalg.LinAlgError as exc:
        raise UkfMathError(f"{context}: matrix is not positive definite") from exc


def _inverse(matrix: np.ndarray, context: str) -> np.ndarray:
    try:
        inv = np.linalg.inv(matrix)
    except np.linalg.LinAlgError as exc:
        raise UkfMathError(f"{context}: matrix is singular") from exc
    if not np.all(np.isfinite(inv)):
        raise UkfMathError(f"{context}: inverse is not finite")
    return inv


# ---------------------------------------------------------------------------
# Sigma-point machinery
# ---------------------------------------------------------------------------


def compute_weights(n_aug: int = N_AUG, lambda_: float = 3.0 - N_AUG) -> np.ndarray:
    """Sigma-point weights for *n_aug* dimensions and spread *lambda_*.

    Returns
    -------
    numpy.ndarray
        ``2 * n_aug + 1`` weights; the first is ``lambda_ / (lambda_ + n_aug)``
        and the rest are ``0.5 / (lambda_ + n_aug)``.  They sum to one.
    """
    weights = np.full(2 * n_aug + 1, 0.5 / (n_aug + lambda_))
    weights[0] = lambda_ / (lambda_ + n_aug)
    return weights


def generate_sigma_points(
    mean: np.ndarray,
    covariance: np.ndarray,
    lambda_: float,
) -> np.ndarray:
    """Deterministic sigma points for a Gaussian ``(mean, covariance)``.

    Parameters
    ----------
    mean : array_like
        Mean vector of length *n*.
    covariance : array_like
        ``(n, n)`` positive definite covariance.
    lambda_ : float
        Spread parameter; points are placed at
        ``sqrt(lambda_ + n)`` times the columns of the Cholesky factor.

    Returns
    -------
    numpy.ndarray
        ``(n, 2n + 1)`` matrix, one sigma point per column.

    Raises
    ------
    UkfMathError
        If *covariance* is not positive definite.
    """
    mean = np.asarray(mean, dtype=np.float64)
    n = mean.shape[0]
    L = _cholesky(covariance, "sigma point generation")
    spread = math.sqrt(lambda_ + n) * L

    sigma = np.empty((n, 2 * n + 1))
    sigma[:, 0] = mean
    sigma[:, 1 : n + 1] = mean[:, None] + spread
    sigma[:, n + 1 :] = mean[:, None] - spread
    return sigma


def ctrv_transition(sigma_aug: np.ndarray, delta_t: float) -> np.ndarray:
    """Propagate augmented sigma points through the CTRV motion model.

    Parameters
    ----------
    sigma_aug : numpy.ndarray
        ``(7, k)`` augmented sigma points
        ``[px, py, v, yaw, yaw_rate, nu_a, nu_yawdd]``.
    delta_t : float
        Time step in seconds.

    Returns
    -------
    numpy.ndarray
        ``(5, k)`` predicted state sigma points.
    """
    px, py, v, yaw, yawd, nu_a, nu_yawdd = sigma_aug
    dt = delta_t
    dt2 = dt * dt

    turning = np.abs(yawd) > YAW_RATE_EPS
    # placeholder divisor on the straight-line branch, result discarded
    safe_yawd = np.where(turning, yawd, 1.0)
    yaw_end = yaw + yawd * dt

    px_p = np.where(
        turning,
        px + v / safe_yawd * (np.sin(yaw_end) - np.sin(yaw)),
        px + v * dt * np.cos(yaw),
    )
    py_p = np.where(
        turning,
        py + v / safe_yawd * (np.cos(yaw) - np.cos(yaw_end)),
        py + v * dt * np.sin(yaw),
    )

    return np.vstack(
        [
            px_p + 0.5 * nu_a * dt2 * np.cos(yaw),
            py_p + 0.5 * nu_a * dt2 * np.sin(yaw),
            v + nu_a * dt,
            yaw_end + 0.5 * nu_yawdd * dt2,
            yawd + nu_yawdd * dt,
        ]
    )


def predict_mean_and_covariance(
    sigma: np.ndarray,
    weights: np.ndarray,
    angle_index: Optional[int] = YAW_INDEX,
) -> PredictedMoments:
    """Recombine sigma points into a mean and covariance.

    The *angle_index* row of every difference from the mean is wrapped into
    ``[-pi, pi]`` before it enters the covariance.  Pass ``None`` for
    vectors without an angular component.
    """
    mean = sigma @ weights
    diff = sigma - mean[:, None]
    if angle_index is not None:
        diff[angle_index] = normalize_angle(diff[angle_index])
    covariance = (diff * weights) @ diff.T
    return PredictedMoments(mean, covariance)


def radar_measurement_model(sigma: np.ndarray) -> np.ndarray:
    """Map ``(5, k)`` state sigma points to ``(3, k)`` radar measurements.

    Points whose position is within :data:`SMALL_POSITION` of the origin in
    both coordinates are moved to ``(SMALL_POSITION, SMALL_POSITION)`` so
    range and range rate stay finite.
    """
    px, py, v, yaw = sigma[0], sigma[1], sigma[2], sigma[3]

    near_origin = (np.abs(px) < SMALL_POSITION) & (np.abs(py) < SMALL_POSITION)
    px = np.where(near_origin, SMALL_POSITION, px)
    py = np.where(near_origin, SMALL_POSITION, py)

    rho = np.sqrt(px * px + py * py)
    phi = np.arctan2(py, px)
    rho_dot = (px * np.cos(yaw) * v + py * np.sin(yaw) * v) / rho
    return np.vstack([rho, phi, rho_dot])


def split_time_step(delta_t: float) -> List[float]:
    """Break an elapsed time into prediction steps.

    Gaps up to :data:`MAX_SINGLE_STEP` are predicted in one step.  Longer
    gaps are cut into :data:`SUB_STEP` pieces plus a final remainder, so no
    step exceeds :data:`SUB_STEP`.

    Examples
    --------
    >>> split_time_step(0.05)
    [0.05]
    >>> [round(s, 6) for s in split_time_step(0.55)]
    [0.1, 0.1, 0.1, 0.1, 0.1, 0.05]
    """
    steps = []
    if delta_t > MAX_SINGLE_STEP:
        # tolerance keeps float residue from producing a ~1e-17 tail step
        while delta_t > SUB_STEP + 1e-9:
            steps.append(SUB_STEP)
            delta_t -= SUB_STEP
    steps.append(delta_t)
    return steps


# ---------------------------------------------------------------------------
# Main class
# ---------------------------------------------------------------------------


class UnscentedKalmanFilter:
    """CTRV Unscented Kalman Filter fusing lidar and radar.

    Parameters
    ----------
    std_a : float, optional
        Process noise standard deviation of longitudinal acceleration
        (m/s^2, default ``0.5``).
    std_yawdd : float, optional
        Process noise standard deviation of yaw acceleration
        (rad/s^2, default ``0.5``).
    std_laspx, std_laspy : float, optional
        Lidar noise standard deviations in x and y (m, default ``0.15``).
    std_radr : float, optional
        Radar range noise standard deviation (m, default ``0.3``).
    std_radphi : float, optional
        Radar bearing noise standard deviation (rad, default ``0.03``).
    std_radrd : float, optional
        Radar range-rate noise standard deviation (m/s, default ``0.3``).
    use_laser, use_radar : bool, optional
        When false, measurements from that sensor are still used to
        initialize the filter but are skipped afterwards.
    init_std : float, optional
        Initial state standard deviation; ``P`` starts as
        ``init_std**2 * I`` (default ``1.0``).

    Raises
    ------
    UkfParameterError
        If any standard deviation is not a positive finite number.

    Examples
    --------
    >>> ukf = UnscentedKalmanFilter(std_a=1.0, std_yawdd=0.6)
    >>> ukf.is_initialized
    False
    """

    def __init__(
        self,
        std_a: float = 0.5,
        std_yawdd: float = 0.5,
        std_laspx: float = 0.15,
        std_laspy: float = 0.15,
        std_radr: float = 0.3,
        std_radphi: float = 0.03,
        std_radrd: float = 0.3,
        use_laser: bool = True,
        use_radar: bool = True,
        init_std: float = 1.0,
    ) -> None:
        stds = {
            "std_a": std_a,
            "std_yawdd": std_yawdd,
            "std_laspx": std_laspx,
            "std_laspy": std_laspy,
            "std_radr": std_radr,
            "std_radphi": std_radphi,
            "std_radrd": std_radrd,
            "init_std": init_std,
        }
        for name, value in stds.items():
            if not (math.isfinite(value) and value > 0.0):
                raise UkfParameterError(
                    f"{name} must be a positive finite number, got {value!r}"
                )

        self._std_a = float(std_a)
        self._std_yawdd = float(std_yawdd)
        self._use_laser = bool(use_laser)
        self._use_radar = bool(use_radar)

        self._lambda = 3.0 - N_AUG
        self._weights = compute_weights(N_AUG, self._lambda)

        self._R_laser = np.diag([std_laspx**2, std_laspy**2])
        self._R_radar = np.diag([std_radr**2, std_radphi**2, std_radrd**2])

        self._x = np.ones(N_X)
        self._P = init_std**2 * np.eye(N_X)
        self._Xsig_pred = np.zeros((N_X, 2 * N_AUG + 1))

        self._is_initialized = False
        self._time_us = 0
        self._nis_lidar = 0.0
        self._nis_radar = 0.0

    # -- Properties ---------------------------------------------------------

    @property
    def x(self) -> np.ndarray:
        """State estimate ``[px, py, v, yaw, yaw_rate]`` (copy)."""
        return self._x.copy()

    @x.setter
    def x(self, value: np.ndarray) -> None:
        try:
            self._x = validate_vector(value, N_X, "state").copy()
        except ValueError as exc:
            raise UkfParameterError(str(exc)) from exc

    @property
    def P(self) -> np.ndarray:
        """State covariance (5 x 5, copy)."""
        return self._P.copy()

    @P.setter
    def P(self, value: np.ndarray) -> None:
        try:
            value = validate_square(value, "P")
        except ValueError as exc:
            raise UkfParameterError(str(exc)) from exc
        if value.shape[0] != N_X:
            raise UkfParameterError(
                f"P shape {value.shape} does not match state_dim={N_X}"
            )
        self._P = value.copy()

    @property
    def state_dim(self) -> int:
        """State vector dimension (5)."""
        return N_X

    @property
    def aug_dim(self) -> int:
        """Augmented dimension including the two process-noise terms (7)."""
        return N_AUG

    @property
    def lambda_(self) -> float:
        """Sigma-point spread parameter ``3 - n_aug``."""
        return self._lambda

    @property
    def weights(self) -> np.ndarray:
        """The ``2 * n_aug + 1`` sigma-point weights (copy)."""
        return self._weights.copy()

    @property
    def R_laser(self) -> np.ndarray:
        """Lidar measurement noise covariance (2 x 2, copy)."""
        return self._R_laser.copy()

    @property
    def R_radar(self) -> np.ndarray:
        """Radar measurement noise covariance (3 x 3, copy)."""
        return self._R_radar.copy()

    @property
    def sigma_points(self) -> np.ndarray:
        """Predicted state sigma points from the last :meth:`predict` (5 x 15)."""
        return self._Xsig_pred.copy()

    @property
    def is_initialized(self) -> bool:
        """Whether the first measurement has been processed."""
        return self._is_initialized

    @property
    def time_us(self) -> int:
        """Timestamp of the last processed measurement, in microseconds."""
        return self._time_us

    @property
    def use_laser(self) -> bool:
        """Whether lidar measurements are used after initialization."""
        return self._use_laser

    @property
    def use_radar(self) -> bool:
        """Whether radar measurements are used after initialization."""
        return self._use_radar

    @property
    def nis_lidar(self) -> float:
        """Normalized innovation squared of the last lidar update."""
        return self._nis_lidar

    @property
    def nis_radar(self) -> float:
        """Normalized innovation squared of the last radar update."""
        return self._nis_radar

    # -- Processing ---------------------------------------------------------

    def process_measurement(self, measurement: Measurement) -> "UnscentedKalmanFilter":
        """Fold one measurement into the estimate.

        The first measurement seeds the state and starts the clock.  Every
        later one triggers a prediction over the elapsed time followed by
        the update matching its sensor type.

        Parameters
        ----------
        measurement : LaserMeasurement or RadarMeasurement
            The new observation.

        Returns
        -------
        UnscentedKalmanFilter
            *self*, for method chaining.

        Raises
        ------
        UkfParameterError
            If the readings are not finite, or the timestamp is older than
            the last processed one.
        UkfMathError
            If a covariance loses positive definiteness.
        """
        raw = measurement.raw
        if not np.all(np.isfinite(raw)):
            raise UkfParameterError(
                f"{measurement.sensor_type.name} measurement has non-finite "
                f"readings: {raw}"
            )

        if not self._is_initialized:
            self._initialize(measurement)
            return self

        if not self._sensor_enabled(measurement.sensor_type):
            logger.info(
                "Skipping %s measurement at %d us: sensor disabled",
                measurement.sensor_type.name,
                measurement.timestamp,
            )
            return self

        if measurement.timestamp < self._time_us:
            raise UkfParameterError(
                f"measurement timestamp {measurement.timestamp} is older than "
                f"the filter clock {self._time_us}"
            )

        delta_t = (measurement.timestamp - self._time_us) / 1e6
        self._time_us = measurement.timestamp

        steps = split_time_step(delta_t)
        if len(steps) > 1:
            logger.debug("Splitting %.3f s gap into %d predictions", delta_t, len(steps))
        for step in steps:
            self.predict(step)

        if measurement.sensor_type is SensorType.RADAR:
            self.update_radar(measurement)
        else:
            self.update_lidar(measurement)
        return self

    def _sensor_enabled(self, sensor_type: SensorType) -> bool:
        if sensor_type is SensorType.RADAR:
            return self._use_radar
        return self._use_laser

    def _initialize(self, measurement: Measurement) -> None:
        if measurement.sensor_type is SensorType.RADAR:
            phi = normalize_angle(measurement.phi)
            rho, rho_dot = measurement.rho, measurement.rho_dot
            vx = rho_dot * math.cos(phi)
            vy = rho_dot * math.sin(phi)
            self._x = np.array(
                [rho * math.cos(phi), rho * math.sin(phi), math.hypot(vx, vy), phi, 0.0]
            )
        else:
            self._x = np.array([measurement.px, measurement.py, 0.0, 0.0, 0.0])

        if abs(self._x[0]) < SMALL_POSITION and abs(self._x[1]) < SMALL_POSITION:
            self._x[0] = SMALL_POSITION
            self._x[1] = SMALL_POSITION

        self._time_us = measurement.timestamp
        self._is_initialized = True
        logger.debug(
            "Initialized from %s at %d us: x=%s",
            measurement.sensor_type.name,
            measurement.timestamp,
            self._x,
        )

    # -- Prediction ---------------------------------------------------------

    def augmented_sigma_points(self) -> np.ndarray:
        """Sigma points of the noise-augmented state (7 x 15).

        Raises
        ------
        UkfMathError
            If the augmented covariance is not positive definite.
        """
        x_aug = np.zeros(N_AUG)
        x_aug[:N_X] = self._x

        P_aug = np.zeros((N_AUG, N_AUG))
        P_aug[:N_X, :N_X] = self._P
        P_aug[N_X, N_X] = self._std_a**2
        P_aug[N_X + 1, N_X + 1] = self._std_yawdd**2

        return generate_sigma_points(x_aug, P_aug, self._lambda)

    def predict(self, delta_t: float) -> "UnscentedKalmanFilter":
        """Propagate state and covariance forward by *delta_t* seconds.

        Does not sub-step; :meth:`process_measurement` splits long gaps
        before calling this.

        Returns
        -------
        UnscentedKalmanFilter
            *self*, for method chaining.

        Raises
        ------
        UkfMathError
            If the augmented covariance is not positive definite.
        """
        sigma_aug = self.augmented_sigma_points()
        self._Xsig_pred = ctrv_transition(sigma_aug, delta_t)
        self._x, self._P = predict_mean_and_covariance(self._Xsig_pred, self._weights)
        return self

    # -- Updates ------------------------------------------------------------

    def update_lidar(self, measurement: LaserMeasurement) -> "UnscentedKalmanFilter":
        """Linear Kalman update with a lidar position fix.

        Returns
        -------
        UnscentedKalmanFilter
            *self*, for method chaining.

        Raises
        ------
        UkfMathError
            If the innovation covariance is singular.
        """
        z = measurement.raw
        y = z - H_LASER @ self._x
        PHt = self._P @ H_LASER.T
        S = H_LASER @ PHt + self._R_laser
        Si = _inverse(S, "lidar update")
        K = PHt @ Si

        self._x = self._x + K @ y
        self._P = (np.eye(N_X) - K @ H_LASER) @ self._P

        self._nis_lidar = float(y @ Si @ y)
        logger.debug("Lidar update at %d us: NIS=%.4f", measurement.timestamp, self._nis_lidar)
        return self

    def predict_radar_measurement(self) -> RadarPrediction:
        """Project the predicted sigma points into radar measurement space."""
        Zsig = radar_measurement_model(self._Xsig_pred)
        z_pred, S = predict_mean_and_covariance(Zsig, self._weights, BEARING_INDEX)
        return RadarPrediction(Zsig, z_pred, S + self._R_radar)

    def update_radar(self, measurement: RadarMeasurement) -> "UnscentedKalmanFilter":
        """Unscented update with a radar return.

        Uses the sigma points of the most recent :meth:`predict`.

        Returns
        -------
        UnscentedKalmanFilter
            *self*, for method chaining.

        Raises
        ------
        UkfMathError
            If the innovation covariance is singular.
        """
        z = measurement.raw
        z[BEARING_INDEX] = normalize_angle(z[BEARING_INDEX])

        Zsig, z_pred, S = self.predict_radar_measurement()

        z_diff = Zsig - z_pred[:, None]
        z_diff[BEARING_INDEX] = normalize_angle(z_diff[BEARING_INDEX])
        x_diff = self._Xsig_pred - self._x[:, None]
        x_diff[YAW_INDEX] = normalize_angle(x_diff[YAW_INDEX])
        Tc = (x_diff * self._weights) @ z_diff.T

        Si = _inverse(S, "radar update")
        K = Tc @ Si

        residual = z - z_pred
        residual[BEARING_INDEX] = normalize_angle(residual[BEARING_INDEX])

        self._x = self._x + K @ residual
        self._P = self._P - K @ S @ K.T

        self._nis_radar = float(residual @ Si @ residual)
        logger.debug("Radar update at %d us: NIS=%.4f", measurement.timestamp, self._nis_radar)
        return self

    # -- Representation -----------------------------------------------------

    def __repr__(self) -> str:
        return (
            f"UnscentedKalmanFilter(state_dim={N_X}, aug_dim={N_AUG}, "
            f"initialized={self._is_initialized})"
        )
