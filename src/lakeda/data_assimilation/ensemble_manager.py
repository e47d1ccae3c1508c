# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Ensemble manager.

Runs the process model once per member per step. Members are independent
during propagation; ``propagate`` returns only when every member has
finished, which is the barrier between the parallel propagate phase and
the sequential assimilate phase.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from lakeda.core.exceptions import MemberPropagationError, require
from .store import AuxiliaryState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberForcing:
    """Forcing references handed to one member for one step."""
    met_file: str
    inflow_file: Optional[str] = None
    outflow_file: Optional[str] = None


@dataclass
class ForcingFiles:
    """Forcing file references shared by the ensemble.

    Members cycle through the available files: member ``m`` uses
    meteorology file ``m mod n_met`` and inflow/outflow file
    ``m mod n_inflow``. With weather (inflow) uncertainty off every member
    uses the first file.
    """
    met_files: List[str]
    inflow_files: List[str] = field(default_factory=list)
    outflow_files: List[str] = field(default_factory=list)

    def __post_init__(self):
        require(len(self.met_files) > 0, "At least one meteorology file is required")
        if self.outflow_files:
            require(
                len(self.outflow_files) == len(self.inflow_files),
                "Inflow and outflow files must be given in pairs",
            )

    def for_member(self, member: int, weather_uncertainty: bool = True,
                   inflow_uncertainty: bool = True) -> MemberForcing:
        met_index = member % len(self.met_files) if weather_uncertainty else 0
        inflow_file = outflow_file = None
        if self.inflow_files:
            inflow_index = member % len(self.inflow_files) if inflow_uncertainty else 0
            inflow_file = self.inflow_files[inflow_index]
            if self.outflow_files:
                outflow_file = self.outflow_files[inflow_index]
        return MemberForcing(
            met_file=self.met_files[met_index],
            inflow_file=inflow_file,
            outflow_file=outflow_file,
        )


@dataclass
class PropagationRequest:
    """Everything one member needs to advance one step."""
    step: int
    member: int
    start: pd.Timestamp
    end: pd.Timestamp
    states: np.ndarray
    auxiliary: AuxiliaryState
    pars: Optional[np.ndarray]
    forcing: MemberForcing


@dataclass
class PropagationResult:
    """Output of the process model for one member.

    ``pars`` is the parameter vector the model actually used; None means
    unchanged. ``diagnostics`` has shape (ndiagnostics, ndepths).
    """
    states: np.ndarray
    auxiliary: AuxiliaryState
    diagnostics: Optional[np.ndarray] = None
    pars: Optional[np.ndarray] = None


class ProcessModel(ABC):
    """Abstract process model collaborator.

    Implementations must be picklable when used with the process backend.
    """

    @abstractmethod
    def propagate(self, request: PropagationRequest) -> PropagationResult:
        """Advance one member from ``request.start`` to ``request.end``."""
        ...


def _propagate_member(model: ProcessModel, request: PropagationRequest) -> PropagationResult:
    return model.propagate(request)


class EnsembleManager:
    """Runs one propagation request per member.

    Args:
        model: Process model.
        ncore: Number of parallel workers (1 = sequential).
        backend: 'thread' or 'process' pool for ncore > 1.
        failure_policy: 'raise' aborts the step on the first failed member;
            'isolate' reports the failure and returns None for that member.
    """

    def __init__(
        self,
        model: ProcessModel,
        ncore: int = 1,
        backend: str = 'thread',
        failure_policy: str = 'raise',
    ):
        require(backend in ('thread', 'process'), f"Unknown parallel backend '{backend}'")
        require(failure_policy in ('raise', 'isolate'), f"Unknown failure policy '{failure_policy}'")
        self.model = model
        self.ncore = ncore
        self.backend = backend
        self.failure_policy = failure_policy

    @classmethod
    def from_config(cls, config, model: ProcessModel) -> 'EnsembleManager':
        settings = config.model_settings
        return cls(
            model=model,
            ncore=settings.ncore,
            backend=settings.parallel_backend,
            failure_policy=settings.member_failure_policy,
        )

    def _executor(self) -> Executor:
        if self.backend == 'process':
            return ProcessPoolExecutor(max_workers=self.ncore)
        return ThreadPoolExecutor(max_workers=self.ncore)

    def propagate(self, requests: Sequence[PropagationRequest]) -> List[Optional[PropagationResult]]:
        """Propagate every member and return results in request order.

        Returns:
            One result per request; None for members that failed under the
            'isolate' policy.

        Raises:
            MemberPropagationError: A member failed under the 'raise'
                policy, or every member failed.
        """
        if not requests:
            return []

        if self.ncore == 1 or len(requests) == 1:
            results = [self._collect(request, lambda r=request: _propagate_member(self.model, r))
                       for request in requests]
        else:
            with self._executor() as executor:
                futures = [executor.submit(_propagate_member, self.model, request)
                           for request in requests]
                results = [self._collect(request, future.result)
                           for request, future in zip(requests, futures)]

        if all(result is None for result in results):
            raise MemberPropagationError(
                f"Every ensemble member failed at step {requests[0].step}",
                step=requests[0].step,
            )
        return results

    def _collect(self, request: PropagationRequest, call) -> Optional[PropagationResult]:
        try:
            return call()
        except Exception as e:
            if self.failure_policy == 'raise':
                raise MemberPropagationError(
                    f"Member {request.member} failed at step {request.step}: {e}",
                    step=request.step, member=request.member,
                ) from e
            logger.warning(
                "Member %d failed at step %d and carries its previous state forward: %s",
                request.member, request.step, e,
            )
            return None
