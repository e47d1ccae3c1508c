"""Tests for observation operators."""

import numpy as np
import pytest

from lakeda.core.exceptions import DimensionMismatchError
from lakeda.data_assimilation.enkf.observation_operator import (
    ObservationOperatorBuilder,
    ProfileObservationOperator,
    StateToObservationMap,
)


def _builder(coef=0.8, auxiliary_sd=None):
    state_map = StateToObservationMap.from_lists([[0], [1]], [[coef], [1.0]])
    return ObservationOperatorBuilder(
        state_map, nstates=2, ndepths=3, obs_sd=[0.5, 2.0], auxiliary_sd=auxiliary_sd
    )


class TestObservationOperatorBuilder:
    """Tests for per-step operator construction."""

    def test_single_observation_single_row(self):
        """2 states x 3 depths x 4 members, one observed state/depth pair."""
        obs_step = np.full((2, 3), np.nan)
        obs_step[0, 1] = 11.0

        op = _builder(coef=0.8).build(obs_step)

        assert op.H.shape == (1, 6)
        assert np.count_nonzero(op.H) == 1
        assert op.H[0, 1] == 0.8
        np.testing.assert_array_equal(op.z_index, [1])
        np.testing.assert_array_equal(op.zt, [11.0])
        np.testing.assert_allclose(op.variances, [0.25])

        ensemble = np.arange(24, dtype=float).reshape(6, 4)
        np.testing.assert_allclose(op.apply(ensemble), 0.8 * ensemble[1:2])

    def test_no_observations_is_empty(self):
        op = _builder().build(np.full((2, 3), np.nan))
        assert op.is_empty
        assert op.H.shape == (0, 6)
        assert op.R().shape == (0, 0)

    def test_row_and_column_layout(self):
        obs_step = np.full((2, 3), np.nan)
        obs_step[0, 0] = 10.0
        obs_step[1, 2] = 4.0

        op = _builder().build(obs_step)

        # variable v at depth j -> row v*ndepths + j; state s at depth j -> column s*ndepths + j
        np.testing.assert_array_equal(op.z_index, [0, 5])
        assert op.H[0, 0] == 0.8
        assert op.H[1, 5] == 1.0
        np.testing.assert_array_equal(op.zt, [10.0, 4.0])
        np.testing.assert_allclose(op.variances, [0.25, 4.0])

    def test_auxiliary_observation_row(self):
        obs_step = np.full((2, 3), np.nan)
        obs_step[0, 0] = 10.0

        op = _builder(auxiliary_sd=0.3).build(obs_step, auxiliary_obs=2.5)

        assert op.H.shape == (2, 7)
        assert op.H[-1, -1] == 1.0
        assert np.count_nonzero(op.H[-1]) == 1
        np.testing.assert_array_equal(op.zt, [10.0, 2.5])
        np.testing.assert_allclose(op.variances, [0.25, 0.09])

    def test_missing_auxiliary_observation_ignored(self):
        obs_step = np.full((2, 3), np.nan)
        obs_step[0, 0] = 10.0

        op = _builder(auxiliary_sd=0.3).build(obs_step, auxiliary_obs=np.nan)

        assert op.H.shape == (1, 6)

    def test_auxiliary_only(self):
        op = _builder(auxiliary_sd=0.3).build(np.full((2, 3), np.nan), auxiliary_obs=1.2)
        assert op.H.shape == (1, 7)
        np.testing.assert_array_equal(op.z_index, [6])

    def test_observed_variable_without_mapped_state_dropped(self):
        state_map = StateToObservationMap.from_lists([[0], []], [[1.0], []])
        builder = ObservationOperatorBuilder(state_map, nstates=2, ndepths=2, obs_sd=[0.5, 1.0])
        obs_step = np.array([[np.nan, np.nan], [3.0, 3.0]])

        assert builder.build(obs_step).is_empty

    def test_observation_shape_checked(self):
        with pytest.raises(DimensionMismatchError):
            _builder().build(np.full((3, 3), np.nan))

    def test_mapping_outside_obs_variables(self):
        state_map = StateToObservationMap.from_lists([[0], [4]], [[1.0], [1.0]])
        with pytest.raises(DimensionMismatchError):
            ObservationOperatorBuilder(state_map, nstates=2, ndepths=3, obs_sd=[0.5, 2.0])

    def test_from_config(self, make_config):
        config = make_config(observations={'secchi_sd': 0.4})
        builder = ObservationOperatorBuilder.from_config(config)
        assert builder.auxiliary_sd == 0.4
        assert builder.state_map.pairs == ((0, 0, 1.0), (1, 1, 1.0))


class TestProfileObservationOperator:
    """Tests for the filtered operator."""

    def test_R_matrix_even_for_one_row(self):
        op = ProfileObservationOperator(np.array([[1.0, 0.0]]), [0], [3.0], [0.04])
        R = op.R()
        assert R.shape == (1, 1)
        assert R[0, 0] == 0.04

    def test_R_zero_without_observation_uncertainty(self):
        op = ProfileObservationOperator(np.eye(2), [0, 1], [3.0, 4.0], [0.04, 0.09])
        np.testing.assert_array_equal(op.R(observation_uncertainty=False), np.zeros((2, 2)))

    def test_inconsistent_lengths(self):
        with pytest.raises(DimensionMismatchError):
            ProfileObservationOperator(np.eye(2), [0, 1], [3.0], [0.04, 0.09])

    def test_get_matrix_checks_state_length(self):
        op = ProfileObservationOperator(np.eye(2), [0, 1], [3.0, 4.0], [0.04, 0.09])
        assert op.get_matrix(2) is op.H
        with pytest.raises(DimensionMismatchError):
            op.get_matrix(3)
