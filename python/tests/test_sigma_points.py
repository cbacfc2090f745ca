"""Tests for sigma-point generation, the CTRV model and the radar model."""

import math

import numpy as np
import pytest

from ukf_fusion import RadarMeasurement, UkfMathError, UnscentedKalmanFilter
from ukf_fusion.core import (
    compute_weights,
    ctrv_transition,
    generate_sigma_points,
    predict_mean_and_covariance,
    radar_measurement_model,
    split_time_step,
)


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------


class TestWeights:
    def test_default_values(self):
        w = compute_weights()
        assert w.shape == (15,)
        assert w[0] == pytest.approx(-4.0 / 3.0)
        np.testing.assert_allclose(w[1:], np.full(14, 1.0 / 6.0))

    @pytest.mark.parametrize("n_aug, lambda_", [(7, -4.0), (5, -2.0), (3, 0.0), (4, 1.5)])
    def test_sum_to_one(self, n_aug, lambda_):
        w = compute_weights(n_aug, lambda_)
        assert w.shape == (2 * n_aug + 1,)
        assert np.sum(w) == pytest.approx(1.0)

    def test_filter_weights(self):
        ukf = UnscentedKalmanFilter()
        np.testing.assert_allclose(ukf.weights, compute_weights(7, ukf.lambda_))


# ---------------------------------------------------------------------------
# Sigma point generation
# ---------------------------------------------------------------------------


class TestSigmaPoints:
    @pytest.fixture
    def gaussian(self):
        mean = np.array([1.0, -2.0, 0.5])
        A = np.array([[1.0, 0.2, 0.0], [0.2, 0.5, 0.1], [0.0, 0.1, 0.3]])
        return mean, A @ A.T + 0.1 * np.eye(3)

    def test_shape_and_center(self, gaussian):
        mean, cov = gaussian
        sigma = generate_sigma_points(mean, cov, 0.0)
        assert sigma.shape == (3, 7)
        np.testing.assert_allclose(sigma[:, 0], mean)

    def test_symmetric_about_mean(self, gaussian):
        mean, cov = gaussian
        sigma = generate_sigma_points(mean, cov, 0.0)
        np.testing.assert_allclose(
            sigma[:, 1:4] - mean[:, None], -(sigma[:, 4:] - mean[:, None])
        )

    @pytest.mark.parametrize("lambda_", [0.0, -1.0, 2.0])
    def test_identity_round_trip(self, gaussian, lambda_):
        mean, cov = gaussian
        n = mean.shape[0]
        weights = compute_weights(n, lambda_)
        sigma = generate_sigma_points(mean, cov, lambda_)
        recovered = predict_mean_and_covariance(sigma, weights, angle_index=None)
        np.testing.assert_allclose(recovered.mean, mean, atol=1e-12)
        np.testing.assert_allclose(recovered.covariance, cov, atol=1e-12)

    def test_not_positive_definite(self):
        with pytest.raises(UkfMathError):
            generate_sigma_points(np.zeros(2), np.array([[1.0, 2.0], [2.0, 1.0]]), 1.0)

    def test_augmented_points(self):
        ukf = UnscentedKalmanFilter(std_a=0.5, std_yawdd=0.2)
        ukf.x = np.array([1.0, 2.0, 3.0, 0.5, 0.1])
        sigma = ukf.augmented_sigma_points()
        assert sigma.shape == (7, 15)
        np.testing.assert_allclose(sigma[:, 0], [1.0, 2.0, 3.0, 0.5, 0.1, 0.0, 0.0])
        spread = math.sqrt(3.0)
        # identity P: column i moves only coordinate i
        assert sigma[0, 1] == pytest.approx(1.0 + spread)
        assert sigma[0, 8] == pytest.approx(1.0 - spread)
        assert sigma[5, 6] == pytest.approx(0.5 * spread)
        assert sigma[6, 14] == pytest.approx(-0.2 * spread)
        np.testing.assert_allclose(sigma @ ukf.weights, sigma[:, 0], atol=1e-12)


# ---------------------------------------------------------------------------
# CTRV motion model
# ---------------------------------------------------------------------------


def _point(px=0.0, py=0.0, v=0.0, yaw=0.0, yawd=0.0, nu_a=0.0, nu_yawdd=0.0):
    return np.array([[px], [py], [v], [yaw], [yawd], [nu_a], [nu_yawdd]])


class TestCtrv:
    def test_straight_line(self):
        out = ctrv_transition(_point(v=2.0, yaw=math.pi / 2), 1.0)
        np.testing.assert_allclose(out[:, 0], [0.0, 2.0, 2.0, math.pi / 2, 0.0], atol=1e-12)

    def test_quarter_turn(self):
        out = ctrv_transition(_point(v=1.0, yawd=math.pi / 2), 1.0)
        r = 2.0 / math.pi
        np.testing.assert_allclose(out[:, 0], [r, r, 1.0, math.pi / 2, math.pi / 2], atol=1e-12)

    def test_noise_terms(self):
        out = ctrv_transition(_point(nu_a=1.0, nu_yawdd=2.0), 0.5)
        np.testing.assert_allclose(out[:, 0], [0.125, 0.0, 0.5, 0.25, 1.0], atol=1e-12)

    def test_continuous_across_threshold(self):
        below = ctrv_transition(_point(v=5.0, yaw=0.3, yawd=0.999e-3), 0.1)
        above = ctrv_transition(_point(v=5.0, yaw=0.3, yawd=1.001e-3), 0.1)
        # branches differ by about v * yaw_rate * dt**2 / 2 at the threshold
        np.testing.assert_allclose(below[:2], above[:2], atol=1e-4)

    def test_zero_yaw_rate_is_finite(self):
        out = ctrv_transition(_point(v=3.0, yawd=0.0), 0.1)
        assert np.all(np.isfinite(out))

    def test_vectorized_columns(self):
        sigma = np.hstack([_point(v=1.0), _point(v=1.0, yawd=1.0)])
        out = ctrv_transition(sigma, 0.1)
        assert out.shape == (5, 2)
        np.testing.assert_allclose(out[:, 0], ctrv_transition(sigma[:, :1], 0.1)[:, 0])
        np.testing.assert_allclose(out[:, 1], ctrv_transition(sigma[:, 1:], 0.1)[:, 0])


# ---------------------------------------------------------------------------
# Mean / covariance recombination
# ---------------------------------------------------------------------------


class TestPredictedMoments:
    def test_heading_difference_normalized(self):
        weights = compute_weights(1, 1.0)  # [0.5, 0.25, 0.25]
        sigma = np.zeros((5, 3))
        sigma[3] = [0.0, 2 * math.pi + 0.1, -2 * math.pi - 0.1]
        moments = predict_mean_and_covariance(sigma, weights)
        assert moments.mean[3] == pytest.approx(0.0)
        # without wrapping the variance would be about (2*pi)^2 / 2
        assert moments.covariance[3, 3] == pytest.approx(0.01 / 2)

    def test_filter_covariance_symmetric(self):
        ukf = UnscentedKalmanFilter()
        ukf.x = np.array([1.0, 1.0, 2.0, 0.4, 0.3])
        ukf.predict(0.1)
        P = ukf.P
        np.testing.assert_allclose(P, P.T, atol=1e-12)
        assert ukf.sigma_points.shape == (5, 15)


# ---------------------------------------------------------------------------
# Radar measurement model
# ---------------------------------------------------------------------------


class TestRadarModel:
    def test_known_values(self):
        sigma = np.array([[3.0], [4.0], [5.0], [math.atan2(4.0, 3.0)], [0.0]])
        z = radar_measurement_model(sigma)
        np.testing.assert_allclose(z[:, 0], [5.0, math.atan2(4.0, 3.0), 5.0])

    @pytest.mark.parametrize("yaw", [0.0, 1.0, -2.5])
    def test_origin_is_finite(self, yaw):
        sigma = np.array([[0.0], [0.0], [2.0], [yaw], [0.1]])
        z = radar_measurement_model(sigma)
        assert np.all(np.isfinite(z))
        assert z[0, 0] == pytest.approx(math.sqrt(2.0) * 1e-4)
        assert z[1, 0] == pytest.approx(math.pi / 4)

    def test_filter_near_origin(self):
        ukf = UnscentedKalmanFilter()
        ukf.process_measurement(RadarMeasurement(0, 0.0, 1.3, 0.0))
        np.testing.assert_allclose(ukf.x[:2], [1e-4, 1e-4])
        ukf.x = np.array([0.0, 0.0, 0.0, 0.0, 0.0])
        ukf.P = 1e-12 * np.eye(5)
        ukf.predict(0.0)
        prediction = ukf.predict_radar_measurement()
        assert np.all(np.isfinite(prediction.sigma_points))
        assert np.all(np.isfinite(prediction.mean))
        assert np.all(np.isfinite(prediction.covariance))


# ---------------------------------------------------------------------------
# Time step splitting
# ---------------------------------------------------------------------------


class TestSplitTimeStep:
    @pytest.mark.parametrize("dt", [0.0, 0.05, 0.1, 0.15, 0.2])
    def test_short_gap_single_step(self, dt):
        assert split_time_step(dt) == [dt]

    def test_long_gap(self):
        assert split_time_step(0.55) == pytest.approx([0.1, 0.1, 0.1, 0.1, 0.1, 0.05])

    @pytest.mark.parametrize("dt", [0.21, 0.3, 1.0, 2.37])
    def test_steps_bounded_and_sum(self, dt):
        steps = split_time_step(dt)
        assert len(steps) > 1
        assert max(steps) <= 0.1 + 1e-9
        assert min(steps) > 0.0
        assert sum(steps) == pytest.approx(dt)
