"""
streamlmm: single-pass EM estimation for two-level linear mixed models.

Observations are consumed one at a time. Per-unit and global sufficient
statistics are updated in place of the raw data, and every observation
triggers one E-step (for the unit that received it) and, once the fixed
effects design is invertible, one M-step.

Submodules:
    core: exceptions, result envelope, validation, numeric primitives
    online: states, E-step / M-step engines, orchestrator, registry
"""

__version__ = "0.1.0"

from streamlmm import online
from streamlmm.online import (
    fit_observation,
    fit_stream,
    ModelConfig,
    GlobalState,
    UnitState,
    DictRegistry,
    OnlineLMMSolution,
)

__all__ = [
    "__version__",
    "online",
    "fit_observation",
    "fit_stream",
    "ModelConfig",
    "GlobalState",
    "UnitState",
    "DictRegistry",
    "OnlineLMMSolution",
]
