"""
Solution wrapper for a fitted stream.

Contains the user-facing accessor for the estimates after fit_stream().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Hashable, TYPE_CHECKING
import numpy as np
from numpy.typing import NDArray

from streamlmm.core.result import Result
from streamlmm.online._common import GlobalState, OnlineLMMParams

if TYPE_CHECKING:
    from streamlmm.core.protocols import UnitRegistry


@dataclass
class OnlineLMMSolution:
    """
    User-facing results of an online mixed model fit.

    Wraps the Result envelope, the final GlobalState and the registry the
    unit states were written to. Pass ``global_state`` and ``registry``
    back into fit_stream() to continue the same fit with more data.
    """
    _result: Result[OnlineLMMParams]
    _state: GlobalState
    _registry: 'UnitRegistry'

    @property
    def B_hat(self) -> NDArray[np.floating[Any]]:
        """Fixed effects coefficients."""
        return self._result.params.B_hat

    @property
    def tausq_hat(self) -> NDArray[np.floating[Any]]:
        """Random effects covariance."""
        return self._result.params.tausq_hat

    @property
    def sigsq_hat(self) -> float:
        """Residual variance."""
        return self._result.params.sigsq_hat

    @property
    def n_obs(self) -> int:
        return self._result.params.n_obs

    @property
    def n_units(self) -> int:
        return self._result.params.n_units

    @property
    def y_mean(self) -> float:
        """Running mean of the outcome."""
        return self._result.params.y_mean

    @property
    def parameters_available(self) -> bool:
        """False if the stream ended while the design was still singular."""
        return self._result.params.parameters_available

    @property
    def regime(self) -> str:
        return self._result.params.regime

    @property
    def random_effects(self) -> dict[Hashable, NDArray[np.floating[Any]]]:
        """Unit id -> posterior mean of the unit's random effects."""
        return self._result.params.random_effects

    def random_effect(self, unit_id: Hashable) -> NDArray[np.floating[Any]]:
        """
        Posterior mean of one unit's random effects.

        Looks the unit up in the registry, so it also works for registries
        that cannot enumerate their contents.

        Raises:
            KeyError: If the unit has never been observed.
        """
        unit = self._registry.get(unit_id)
        if unit is None:
            raise KeyError(unit_id)
        return unit.mu_j.copy()

    @property
    def tau_std(self) -> NDArray[np.floating[Any]]:
        """Standard deviations of the random effects."""
        return np.sqrt(np.clip(np.diag(self.tausq_hat), 0.0, None))

    @property
    def global_state(self) -> GlobalState:
        """Final global state (live object, used to resume the fit)."""
        return self._state

    @property
    def registry(self) -> 'UnitRegistry':
        return self._registry

    @property
    def info(self) -> dict[str, Any]:
        """Fit metadata."""
        return self._result.info

    @property
    def timing(self) -> dict[str, float] | None:
        """Execution timing breakdown."""
        return self._result.timing

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def warnings(self) -> tuple[str, ...]:
        """Non-fatal warnings from computation."""
        return self._result.warnings

    def summary(self) -> str:
        """Generate summary output."""
        lines = [
            "Online Linear Mixed Model (single-pass EM)",
            "=" * 60,
            f"Observations: {self.n_obs}",
            f"Units: {self.n_units}",
            f"Regime: {self.regime}",
            f"Parameters available: {self.parameters_available}",
            "",
            "Fixed Effects:",
            "-" * 60,
        ]

        for i, b in enumerate(self.B_hat):
            lines.append(f"  B[{i}]: {b:12.6f}")

        lines.extend([
            "",
            "Random Effects Covariance:",
            "-" * 60,
        ])

        tausq = self.tausq_hat
        for i in range(tausq.shape[0]):
            lines.append("  " + " ".join(f"{tausq[i, j]:12.6f}" for j in range(tausq.shape[1])))

        lines.extend([
            "",
            f"Residual variance: {self.sigsq_hat:.6f}",
            f"Residual std dev:  {np.sqrt(max(self.sigsq_hat, 0.0)):.6f}",
            "-" * 60,
            f"Backend: {self.backend_name}",
        ])
        if self.timing:
            lines.append(f"Time: {self.timing.get('total_seconds', 0):.4f}s")
        if self.warnings:
            lines.append(f"Warnings: {len(self.warnings)}")
            for w in self.warnings:
                lines.append(f"  - {w}")

        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'B_hat': self.B_hat.tolist(),
            'tausq_hat': self.tausq_hat.tolist(),
            'sigsq_hat': self.sigsq_hat,
            'n_obs': self.n_obs,
            'n_units': self.n_units,
            'y_mean': self.y_mean,
            'parameters_available': self.parameters_available,
            'regime': self.regime,
            'backend': self.backend_name,
        }

    def __repr__(self) -> str:
        return (
            f"OnlineLMMSolution(n_obs={self.n_obs}, n_units={self.n_units}, "
            f"regime={self.regime!r}, sigsq_hat={self.sigsq_hat:.4f})"
        )
