# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Data Assimilation Manager.

Top-level orchestrator of an ensemble forecast with data assimilation.
Alternates, once per daily step, a parallel propagate phase (process model
per member) and a sequential assimilate phase (noise, correction, QC,
flags).
"""

import logging
from typing import Mapping, Optional

import numpy as np

from lakeda.core.config.models import ForecastConfig
from lakeda.core.exceptions import ConfigurationError, DimensionMismatchError
from lakeda.core.mixins import LoggingMixin, TimingMixin
from .diagnostics import format_parameter_summary, parameter_summary
from .enkf.covariance import CovarianceEstimator, fill_missing
from .enkf.enkf_algorithm import EnKFAlgorithm
from .enkf.localization import Localizer
from .enkf.observation_operator import ObservationOperatorBuilder, ProfileObservationOperator
from .enkf.parameter_fit import create_parameter_fit
from .enkf.perturbation import ProcessNoiseInjector
from .ensemble_manager import EnsembleManager, ForcingFiles, ProcessModel, PropagationRequest
from .flags import StepFlag, classify_step
from .pf.particle_filter import ParticleFilter
from .quality_control import QualityControlGate
from .store import EnsembleStore, ForecastResult

logger = logging.getLogger(__name__)


class DataAssimilationManager(LoggingMixin, TimingMixin):
    """Orchestrates the ensemble forecast and assimilation loop.

    Workflow per step:
        1. Propagate: run every member through the process model
        2. Perturb: add depth-correlated process noise, clip
        3. Observe: build the observation operator of the step
        4. Correct: EnKF update, particle resampling or passthrough
        5. Mask: invalidate depths below each member's lake floor
        6. QC: clip non-primary states and parameters
        7. Flag: record the outcome of the step

    Args:
        config: Forecast configuration.
        model: Process model collaborator.
        localizer: Optional covariance localization routine.
    """

    def __init__(
        self,
        config: ForecastConfig,
        model: ProcessModel,
        localizer: Optional[Localizer] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.model = model
        self.localizer = localizer
        if logger is not None:
            self.logger = logger

        da_setup = config.da_setup
        self.parameter_fit = create_parameter_fit(
            da_setup.par_fit_method, da_setup.da_method, config.parameters
        )
        self.operator_builder = ObservationOperatorBuilder.from_config(config)
        self.covariance = CovarianceEstimator.from_config(config, localizer)
        self.enkf = EnKFAlgorithm.from_config(config)
        self.particle_filter = ParticleFilter()
        self.qc = QualityControlGate.from_config(config)
        self.ensemble = EnsembleManager.from_config(config, model)
        self.modeled_depths = np.asarray(config.model_settings.modeled_depths, dtype=float)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_inputs(self, nmembers, obs, obs_secchi, obs_depth) -> None:
        config = self.config
        nsteps = config.run.nsteps
        expected = (len(config.observations.obs_sd), nsteps, config.ndepths)
        if obs.shape != expected:
            raise DimensionMismatchError(
                f"Observations have shape {obs.shape}, expected (n_obs_vars, nsteps, ndepths) = {expected}"
            )
        if nmembers < 1:
            raise DimensionMismatchError("The ensemble needs at least one member")

        if obs_secchi is not None:
            if np.shape(obs_secchi) != (nsteps,):
                raise DimensionMismatchError(
                    f"Secchi observations have shape {np.shape(obs_secchi)}, expected ({nsteps},)"
                )
            if np.isfinite(obs_secchi).any():
                if config.observations.secchi_sd is None:
                    raise ConfigurationError("Secchi observations require SECCHI_SD")
                if config.ndiagnostics <= config.observations.secchi_diagnostic:
                    raise ConfigurationError(
                        "Secchi observations require the light extinction diagnostic "
                        f"(index {config.observations.secchi_diagnostic} of DIAGNOSTICS_NAMES)"
                    )

        if obs_depth is not None and np.shape(obs_depth) != (nsteps,):
            raise DimensionMismatchError(
                f"Depth observations have shape {np.shape(obs_depth)}, expected ({nsteps},)"
            )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run_da_forecast(
        self,
        states_init: np.ndarray,
        aux_states_init: Mapping[str, np.ndarray],
        obs: np.ndarray,
        model_sd: np.ndarray,
        forcing: ForcingFiles,
        pars_init: Optional[np.ndarray] = None,
        obs_secchi: Optional[np.ndarray] = None,
        obs_depth: Optional[np.ndarray] = None,
    ) -> ForecastResult:
        """Run the full forecast with data assimilation.

        Args:
            states_init: Initial states, shape (nstates, ndepths, nmembers).
            aux_states_init: Initial auxiliary model state (see EnsembleStore.seed).
            obs: Observations, shape (n_obs_vars, nsteps, ndepths), NaN where missing.
            model_sd: Process noise standard deviation, shape (nstates, ndepths).
            forcing: Forcing file references of the ensemble.
            pars_init: Initial parameters, shape (npars, nmembers).
            obs_secchi: Secchi depth observations, shape (nsteps,).
            obs_depth: Lake depth observations, shape (nsteps,).

        Returns:
            ForecastResult with every array and the per-step flags.
        """
        config = self.config
        obs = np.asarray(obs, dtype=float)
        if obs_secchi is not None:
            obs_secchi = np.asarray(obs_secchi, dtype=float)
        if obs_depth is not None:
            obs_depth = np.asarray(obs_depth, dtype=float)

        nmembers = np.shape(states_init)[-1]
        self._check_inputs(nmembers, obs, obs_secchi, obs_depth)

        store = EnsembleStore.from_config(config, nmembers)
        store.seed(states_init, aux_states_init, pars_init)
        noise = ProcessNoiseInjector.from_config(config, model_sd)
        rng = np.random.default_rng(config.run.random_seed)

        full_time = config.run.full_time
        nsteps = config.run.nsteps
        forecast_start_step = config.run.forecast_start_step

        self.logger.info(
            "Starting %s forecast '%s': %d members, %d steps, forecast from step %d",
            config.da_setup.da_method, config.run.sim_name, nmembers, nsteps, forecast_start_step,
        )

        for step in range(nsteps):
            if step == 0 and not config.da_setup.assimilate_first_step:
                store.flags.record(0, StepFlag.PASSTHROUGH)
                store.commit(0)
                continue

            start = f"{full_time[step - 1]:%Y-%m-%d %H:%M}" if step > 0 else "Restart"
            window = f"{start} - {full_time[step]:%Y-%m-%d %H:%M}"
            with self.time_step(step, nsteps, window):
                self._run_step(step, store, noise, forcing, obs, obs_secchi, obs_depth, rng)

        self.logger.info(
            "Forecast complete: %d assimilated, %d forecast, %d passthrough steps",
            len(store.flags.steps_with(StepFlag.ASSIMILATED)),
            len(store.flags.steps_with(StepFlag.FORECAST)),
            len(store.flags.steps_with(StepFlag.PASSTHROUGH)),
        )
        return store.to_result(
            full_time,
            forecast_start_step,
            attrs={
                'sim_name': config.run.sim_name,
                'da_method': config.da_setup.da_method,
                'par_fit_method': self.parameter_fit.method.value,
            },
        )

    def _run_step(self, step, store, noise, forcing, obs, obs_secchi, obs_depth, rng) -> None:
        config = self.config
        uncertainty = config.uncertainty
        forecast = step > config.run.forecast_start_step
        store.check_writable(step)

        # 1-2. Propagate and perturb
        if step == 0:
            x_star = store.x[0].copy()
            x_corr = x_star.copy()
            pars_star = store.pars[0].copy() if store.pars is not None else None
        else:
            with self.time_phase("Propagation"):
                x_star, pars_star = self._propagate(step, store, forcing, forecast, rng)
            process_noise = uncertainty.process or not forecast
            x_corr = np.empty_like(x_star)
            for m in range(store.nmembers):
                x_corr[..., m] = noise.inject(x_star[..., m], rng, enabled=process_noise)

        # 3. Observe
        obs_step = obs[:, step, :]
        auxiliary_obs = None
        if forecast:
            obs_step = np.full_like(obs_step, np.nan)
        elif step > 0 and obs_secchi is not None and np.isfinite(obs_secchi[step]):
            # The extinction diagnostic is not part of the restart, so step 0 has no modeled Secchi
            auxiliary_obs = float(obs_secchi[step])
        operator = self.operator_builder.build(obs_step, auxiliary_obs)

        # 4-5. Correct and mask
        da_method = config.da_setup.da_method
        passthrough = (
            operator.is_empty
            or da_method == 'none'
            or not config.da_setup.use_obs_constraint
        )
        if passthrough:
            self._passthrough(step, store, x_star, x_corr, pars_star)
        else:
            self._deepen_to_observations(step, store, obs_step)
            x_matrix = self._ensemble_matrix(step, store, x_corr, operator)
            with self.time_phase("Analysis"):
                if da_method == 'enkf':
                    updated = self._enkf_update(step, store, x_matrix, pars_star, operator, rng)
                elif da_method == 'pf':
                    updated = self._pf_update(step, store, x_matrix, pars_star, operator, rng)
                else:
                    raise ConfigurationError(f"Unsupported assimilation method '{da_method}'")
            self._assimilate_depth(step, store, obs_depth, forecast, rng)
            x_update = x_matrix_to_states(updated, store.nstates, store.ndepths)
            store.write_states_above_floor(step, x_update, self.modeled_depths)
            store.mask_below_floor(step, self.modeled_depths, states=False)

        # 6. QC
        report = self.qc.apply(
            store.x[step],
            store.pars[step] if store.pars is not None else None,
        )
        store.qc_interventions[step] = report.negative_states_clipped + report.parameters_clipped

        # 7. Flag
        flag = classify_step(step, config.run.forecast_start_step, corrected=not passthrough)
        store.flags.record(step, flag)
        if store.pars is not None:
            summary = parameter_summary(store.pars[step], [p.name for p in config.parameters])
            self.logger.info("Parameters: %s", format_parameter_summary(summary))
        store.commit(step)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _propagate(self, step, store, forcing, forecast, rng):
        """Run the process model for every member; returns (x_star, pars_star)."""
        config = self.config
        uncertainty = config.uncertainty
        prev_pars = store.pars[step - 1] if store.pars is not None else None
        prop_pars = None
        if prev_pars is not None:
            prop_pars = self.parameter_fit.propagation_parameters(
                prev_pars, forecast, uncertainty.parameter, rng
            )

        full_time = config.run.full_time
        requests = [
            PropagationRequest(
                step=step,
                member=m,
                start=full_time[step - 1],
                end=full_time[step],
                states=store.x[step - 1, :, :, m].copy(),
                auxiliary=store.member_auxiliary(step - 1, m),
                pars=prop_pars[:, m].copy() if prop_pars is not None else None,
                forcing=forcing.for_member(
                    m,
                    weather_uncertainty=uncertainty.weather or not forecast,
                    inflow_uncertainty=uncertainty.inflow or not forecast,
                ),
            )
            for m in range(store.nmembers)
        ]
        results = self.ensemble.propagate(requests)

        x_star = np.empty((store.nstates, store.ndepths, store.nmembers))
        pars_star = np.array(prop_pars) if prop_pars is not None else None
        for m, result in enumerate(results):
            if result is None:
                store.failed_members[step, m] = True
                x_star[..., m] = store.x[step - 1, :, :, m]
                store.write_auxiliary(step, m, store.member_auxiliary(step - 1, m))
                if store.diagnostics is not None:
                    store.diagnostics[step, ..., m] = store.diagnostics[step - 1, ..., m]
                if pars_star is not None:
                    pars_star[:, m] = prev_pars[:, m]
                continue

            states = np.asarray(result.states, dtype=float)
            if states.shape != (store.nstates, store.ndepths):
                raise DimensionMismatchError(
                    f"Member {m} returned states of shape {states.shape}, "
                    f"expected {(store.nstates, store.ndepths)}"
                )
            x_star[..., m] = states
            store.write_auxiliary(step, m, result.auxiliary)
            if store.diagnostics is not None and result.diagnostics is not None:
                store.diagnostics[step, ..., m] = result.diagnostics
            if pars_star is not None and result.pars is not None:
                pars_star[:, m] = result.pars

        n_failed = int(store.failed_members[step].sum())
        if n_failed:
            self.logger.warning("%d of %d members failed at step %d", n_failed, store.nmembers, step)
        return x_star, pars_star

    def _passthrough(self, step, store, x_star, x_corr, pars_star) -> None:
        """Accept the noise-corrected propagated ensemble as-is."""
        config = self.config
        store.x[step] = x_corr
        if store.pars is not None:
            store.pars[step] = pars_star

        if step == config.run.forecast_start_step and not config.uncertainty.initial_condition:
            flat = fill_missing(x_star.reshape(store.nstates * store.ndepths, store.nmembers))
            mean = flat.mean(axis=1).reshape(store.nstates, store.ndepths)
            store.x[step] = np.repeat(mean[:, :, np.newaxis], store.nmembers, axis=2)
            self.logger.debug("Collapsed ensemble to its mean at the forecast boundary")

        store.mask_below_floor(step, self.modeled_depths)

    def _deepen_to_observations(self, step, store, obs_step) -> None:
        """Deepen members shallower than the deepest observed modeled depth."""
        observed_depths = np.flatnonzero(np.isfinite(obs_step).any(axis=0))
        if observed_depths.size == 0:
            return
        deepest = self.modeled_depths[observed_depths.max()]
        shallow = store.lake_depth[step] < deepest
        if shallow.any():
            self.logger.debug("Deepened %d members to the observed depth %.2f", int(shallow.sum()), deepest)
            store.lake_depth[step, shallow] = deepest

    def _ensemble_matrix(self, step, store, x_corr, operator: ProfileObservationOperator) -> np.ndarray:
        """Flatten states into (state x depth [+ Secchi], member), missing entries filled."""
        x_matrix = x_corr.reshape(store.nstates * store.ndepths, store.nmembers)
        n_state_cols = operator.H.shape[1]
        if n_state_cols > x_matrix.shape[0]:
            observations = self.config.observations
            reference = int(np.argmin(np.abs(self.modeled_depths - observations.secchi_reference_depth)))
            extinction = store.diagnostics[step, observations.secchi_diagnostic, reference, :]
            with np.errstate(divide='ignore'):
                modeled_secchi = observations.secchi_coefficient / extinction
            x_matrix = np.vstack([x_matrix, modeled_secchi[np.newaxis, :]])
        return fill_missing(x_matrix)

    def _enkf_update(self, step, store, x_matrix, pars_star, operator, rng) -> np.ndarray:
        """EnKF analysis of states (and parameters); returns the updated ensemble matrix."""
        pars_corr = None
        if pars_star is not None:
            pars_corr = self.parameter_fit.prepare_analysis(pars_star)

        estimate = self.covariance.estimate(x_matrix, pars_corr)
        update_pars = pars_corr is not None and self.parameter_fit.updates_parameters
        update = self.enkf.analyze(
            x_matrix, operator, estimate, rng,
            pars_matrix=pars_corr if update_pars else None,
        )
        if store.pars is not None:
            if update_pars:
                store.pars[step] = update.pars
            elif step > 0:
                store.pars[step] = store.pars[step - 1]
        return update.x

    def _pf_update(self, step, store, x_matrix, pars_star, operator, rng) -> np.ndarray:
        """Resample every member-carried quantity; returns the resampled ensemble matrix."""
        result = self.particle_filter.analyze(x_matrix, operator, rng)
        sample = result.sample
        if store.pars is not None:
            store.pars[step] = pars_star[:, sample]
        store.resample_members(step, sample)
        return x_matrix[:, sample]

    def _assimilate_depth(self, step, store, obs_depth, forecast, rng) -> None:
        if obs_depth is None or forecast or not np.isfinite(obs_depth[step]):
            return
        store.resample_lake_depth(
            step, float(obs_depth[step]), self.config.observations.depth_obs_sd, rng
        )


def x_matrix_to_states(x_matrix: np.ndarray, nstates: int, ndepths: int) -> np.ndarray:
    """Drop auxiliary rows and reshape to (nstates, ndepths, n_members)."""
    n_members = x_matrix.shape[1]
    return x_matrix[:nstates * ndepths].reshape(nstates, ndepths, n_members)
