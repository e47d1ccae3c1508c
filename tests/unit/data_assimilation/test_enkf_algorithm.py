"""Tests for the EnKF analysis on synthetic profile experiments."""

import numpy as np
import pytest

from lakeda.core.exceptions import NumericalDegeneracyWarning
from lakeda.data_assimilation.enkf.covariance import CovarianceEstimator
from lakeda.data_assimilation.enkf.enkf_algorithm import EnKFAlgorithm
from lakeda.data_assimilation.enkf.observation_operator import ProfileObservationOperator


def _operator(n_state, rows, values, sd):
    H = np.zeros((len(rows), n_state))
    for i, row in enumerate(rows):
        H[i, row] = 1.0
    return ProfileObservationOperator(H, rows, values, np.asarray(sd, dtype=float) ** 2)


class TestEnKFLinearSystem:
    """EnKF analysis on small synthetic ensembles."""

    def test_analysis_moves_toward_truth(self):
        rng = np.random.default_rng(42)
        x_true = np.array([10.0, 5.0, 2.0])
        X_f = rng.normal(loc=(x_true + 3.0)[:, np.newaxis], scale=2.0, size=(3, 50))

        op = _operator(3, [0], [x_true[0]], [0.5])
        estimate = CovarianceEstimator([0.5, 1.0, 2.0], nstates=1).estimate(X_f)
        result = EnKFAlgorithm(ndepths=3).analyze(X_f, op, estimate, rng)

        forecast_error = abs(X_f.mean(axis=1)[0] - x_true[0])
        analysis_error = abs(result.x.mean(axis=1)[0] - x_true[0])
        assert analysis_error < forecast_error

    def test_single_member_no_correction(self):
        """Degenerate ensemble: zero covariance, zero gain, no correction."""
        rng = np.random.default_rng(0)
        X_f = np.array([[10.0], [11.0], [5.0], [6.0]])
        op = _operator(4, [0, 2], [12.0, 3.0], [0.5, 1.0])
        estimate = CovarianceEstimator([0.5, 1.0], nstates=2).estimate(X_f)

        result = EnKFAlgorithm(ndepths=2).analyze(X_f, op, estimate, rng)

        np.testing.assert_array_equal(result.K, np.zeros((4, 2)))
        np.testing.assert_array_equal(result.x, X_f)

    def test_near_perfect_observation_converges(self):
        rng = np.random.default_rng(7)
        X_f = rng.normal(loc=8.0, scale=1.5, size=(3, 20))
        observed = X_f[1, 4]
        op = _operator(3, [1], [observed], [1e-6])
        estimate = CovarianceEstimator([0.5, 1.0, 2.0], nstates=1).estimate(X_f)

        result = EnKFAlgorithm(ndepths=3).analyze(X_f, op, estimate, rng)

        assert result.x[1].mean() == pytest.approx(observed, abs=1e-4)
        assert result.x[1].std() < 1e-4

    def test_parameter_update_follows_correlated_state(self):
        rng = np.random.default_rng(11)
        pars = rng.normal(1.0, 0.2, size=(1, 40))
        X_f = 10.0 + 5.0 * (pars - 1.0) + rng.normal(0.0, 0.05, size=(2, 40))
        op = _operator(2, [0], [12.0], [0.1])
        estimate = CovarianceEstimator([0.5, 1.0], nstates=1).estimate(X_f, pars)

        result = EnKFAlgorithm(ndepths=2).analyze(X_f, op, estimate, rng, pars_matrix=pars)

        # State observed above the mean => positively correlated parameter increases
        assert result.pars.mean() > pars.mean() + 0.2
        assert result.K_pars.shape == (1, 1)

    def test_no_parameter_update_without_parameters(self):
        rng = np.random.default_rng(0)
        X_f = rng.normal(size=(2, 5))
        estimate = CovarianceEstimator([0.5, 1.0], nstates=1).estimate(X_f, rng.normal(size=(1, 5)))
        result = EnKFAlgorithm(ndepths=2).analyze(X_f, _operator(2, [0], [0.0], [1.0]), estimate, rng)
        assert result.pars is None
        assert result.K_pars is None


class TestPerturbedObservations:

    def test_non_primary_rows_clipped(self):
        rng = np.random.default_rng(0)
        op = _operator(4, [0, 3], [-5.0, -5.0], [1.0, 1.0])
        d = EnKFAlgorithm(ndepths=2).perturb_observations(op, 200, rng)

        assert d.shape == (2, 200)
        assert np.all(d[1] == 0.0)
        assert np.all(d[0] < 0.0)

    def test_no_clipping_in_log_space(self):
        rng = np.random.default_rng(0)
        op = _operator(4, [3], [-5.0], [1.0])
        d = EnKFAlgorithm(ndepths=2, clip_perturbed=False).perturb_observations(op, 50, rng)
        assert np.all(d < 0.0)

    def test_unperturbed_without_observation_uncertainty(self):
        rng = np.random.default_rng(0)
        op = _operator(2, [0, 1], [3.0, 4.0], [1.0, 1.0])
        d = EnKFAlgorithm(ndepths=2, observation_uncertainty=False).perturb_observations(op, 5, rng)
        np.testing.assert_allclose(d, np.array([[3.0] * 5, [4.0] * 5]))

    def test_perturbation_spread(self):
        rng = np.random.default_rng(3)
        op = _operator(1, [0], [10.0], [0.5])
        d = EnKFAlgorithm(ndepths=1).perturb_observations(op, 5000, rng)
        assert d.std() == pytest.approx(0.5, rel=0.05)


class TestKalmanGain:

    def test_matches_explicit_inverse(self):
        rng = np.random.default_rng(5)
        A = rng.normal(size=(4, 4))
        P = A @ A.T
        H = np.array([[1.0, 0.0, 0.0, 0.0], [0.0, 0.0, 1.0, 0.0]])
        R = np.diag([0.3, 0.2])

        K, K_pars, degenerate = EnKFAlgorithm(ndepths=2).kalman_gain(P, H, R)

        expected = P @ H.T @ np.linalg.inv(H @ P @ H.T + R)
        np.testing.assert_allclose(K, expected)
        assert K_pars is None
        assert not degenerate

    def test_singular_innovation_covariance_warns(self):
        P = np.zeros((2, 2))
        H = np.array([[1.0, 0.0]])
        R = np.zeros((1, 1))

        with pytest.warns(NumericalDegeneracyWarning):
            K, _, degenerate = EnKFAlgorithm(ndepths=2).kalman_gain(P, H, R)

        assert degenerate
        np.testing.assert_array_equal(K, np.zeros((2, 1)))

    def test_degenerate_single_member_without_observation_error(self):
        rng = np.random.default_rng(0)
        X_f = np.array([[10.0], [5.0]])
        op = _operator(2, [0], [12.0], [0.5])
        estimate = CovarianceEstimator([0.5, 1.0], nstates=1).estimate(X_f)

        with pytest.warns(NumericalDegeneracyWarning):
            result = EnKFAlgorithm(ndepths=2, observation_uncertainty=False).analyze(
                X_f, op, estimate, rng
            )

        assert result.degenerate
        np.testing.assert_array_equal(result.x, X_f)
