"""
Online (single-pass) EM for two-level linear mixed models.

Public API:
    fit_observation()  - process one observation, return new states
    fit_stream()       - process a feed of observations
    check_invariants() - verify global statistics against unit states
    ModelConfig        - dimensions, priors and PD policy
    Observation        - one validated observation
    GlobalState        - parameters and global sufficient statistics
    UnitState          - per-unit statistics and random effects
    FitStep            - result of fit_observation()
    DictRegistry       - in-memory unit registry
    OnlineLMMSolution  - result wrapper for fit_stream()
"""

from streamlmm.online._common import (
    GlobalState, UnitState, FitStep, OnlineLMMParams,
    MSTEP_BOOTSTRAPPING, MSTEP_INITIALIZED, MSTEP_UPDATED,
)
from streamlmm.online.design import ModelConfig, Observation
from streamlmm.online.registry import DictRegistry
from streamlmm.online.solution import OnlineLMMSolution
from streamlmm.online.solvers import fit_observation, fit_stream, check_invariants

__all__ = [
    "fit_observation",
    "fit_stream",
    "check_invariants",
    "ModelConfig",
    "Observation",
    "GlobalState",
    "UnitState",
    "FitStep",
    "OnlineLMMParams",
    "DictRegistry",
    "OnlineLMMSolution",
    "MSTEP_BOOTSTRAPPING",
    "MSTEP_INITIALIZED",
    "MSTEP_UPDATED",
]
