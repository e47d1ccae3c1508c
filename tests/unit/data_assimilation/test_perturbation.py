"""Tests for the vertically correlated process noise injector."""

import numpy as np
import pytest

from lakeda.core.exceptions import DimensionMismatchError
from lakeda.data_assimilation.enkf.perturbation import ProcessNoiseInjector, decorrelation_alpha


class TestProcessNoiseInjector:
    """Tests for ProcessNoiseInjector."""

    def test_zero_model_sd_is_identity(self):
        rng = np.random.default_rng(42)
        injector = ProcessNoiseInjector(np.zeros((2, 4)), vert_decorr_length=[1.0, 0.5])
        x_star = np.array([[12.0, 11.5, 10.0, 8.0], [6.0, 5.5, 4.0, 0.0]])

        for _ in range(20):
            np.testing.assert_array_equal(injector.inject(x_star, rng), x_star)

    def test_disabled_noise_draws_nothing(self):
        rng = np.random.default_rng(7)
        reference = np.random.default_rng(7)
        injector = ProcessNoiseInjector(np.ones((1, 3)), vert_decorr_length=[1.0])
        x_star = np.array([[1.0, 2.0, 3.0]])

        np.testing.assert_array_equal(injector.inject(x_star, rng, enabled=False), x_star)
        assert rng.standard_normal() == reference.standard_normal()

    def test_noise_scales_with_model_sd(self):
        rng = np.random.default_rng(0)
        injector = ProcessNoiseInjector(np.array([[0.0, 2.0]]), vert_decorr_length=[0.0])
        draws = np.array([injector.sample(rng) for _ in range(4000)])

        assert np.all(draws[:, 0, 0] == 0.0)
        assert abs(draws[:, 0, 1].std() - 2.0) < 0.15

    def test_adjacent_depths_are_correlated(self):
        rng = np.random.default_rng(1)
        # alpha close to 1: strong vertical correlation in group 0, none in group 1
        injector = ProcessNoiseInjector(np.ones((2, 3)), vert_decorr_length=[5.0, 0.0])
        draws = np.array([injector.sample(rng) for _ in range(3000)])

        corr_correlated = np.corrcoef(draws[:, 0, 0], draws[:, 0, 1])[0, 1]
        corr_white = np.corrcoef(draws[:, 1, 0], draws[:, 1, 1])[0, 1]
        corr_groups = np.corrcoef(draws[:, 0, 0], draws[:, 1, 0])[0, 1]

        assert corr_correlated > 0.95
        assert abs(corr_white) < 0.1
        assert abs(corr_groups) < 0.1

    def test_marginal_variance_preserved_along_depth(self):
        rng = np.random.default_rng(3)
        injector = ProcessNoiseInjector(np.ones((1, 5)), vert_decorr_length=[0.7])
        draws = np.array([injector.sample(rng) for _ in range(5000)])

        assert np.allclose(draws[:, 0, :].std(axis=0), 1.0, atol=0.07)

    def test_negative_non_primary_clipped(self):
        rng = np.random.default_rng(0)
        injector = ProcessNoiseInjector(np.zeros((2, 2)), vert_decorr_length=[1.0, 1.0])
        x_star = np.array([[-1.0, 2.0], [-0.5, 3.0]])

        x_corr = injector.inject(x_star, rng)

        assert x_corr[0, 0] == -1.0
        assert x_corr[1, 0] == 0.0

    def test_no_clipping_in_log_space(self):
        rng = np.random.default_rng(0)
        injector = ProcessNoiseInjector(np.zeros((2, 2)), [1.0, 1.0], clip_non_primary=False)
        x_star = np.array([[1.0, 2.0], [-0.5, 3.0]])

        assert injector.inject(x_star, rng)[1, 0] == -0.5

    def test_shape_mismatch(self):
        injector = ProcessNoiseInjector(np.zeros((2, 3)), vert_decorr_length=[1.0, 1.0])
        with pytest.raises(DimensionMismatchError):
            injector.inject(np.zeros((2, 4)), np.random.default_rng(0))

    def test_decorr_length_per_group(self):
        with pytest.raises(DimensionMismatchError):
            ProcessNoiseInjector(np.zeros((2, 3)), vert_decorr_length=[1.0])

    def test_from_config_checks_model_sd_shape(self, make_config):
        config = make_config()
        with pytest.raises(DimensionMismatchError):
            ProcessNoiseInjector.from_config(config, np.zeros((2, 4)))


def test_decorrelation_alpha():
    alpha = decorrelation_alpha([0.0, 1.0])
    assert alpha[0] == 0.0
    assert alpha[1] == pytest.approx(1.0 - np.exp(-1.0))
