"""
E-step for the online mixed model.

For the unit that received the current observation, computes the
posterior of its random effects under the current global parameters,

    Cinv = (Z_j'Z_j + sigsq tausq^{-1})^{-1}
    mu_j = Cinv (Z_j'y_j - Z_j'X_j B)

and its contributions to the three global sufficient statistics:

    T1j = X_j'Z_j mu_j
    T2j = mu_j mu_j' + sigsq Cinv                     (E[b_j b_j'])
    T3j = E[ ||y_j - X_j B - Z_j b_j||^2 ]

Because mu_j moves whenever B, tausq or sigsq move, the unit's previous
contribution is stale by the time it is seen again; the global totals
are corrected by subtracting the stale contribution and adding the new
one, which keeps T = sum_j Tj exact at every step.

Computation and application are split: compute_e_step() does all the
linear algebra (and is the only part that can fail) without touching any
state, apply_e_step() then writes the result.
"""

from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from numpy.typing import NDArray

from streamlmm.core.compute.linalg import invert
from streamlmm.online._common import GlobalState, UnitState


@dataclass(frozen=True)
class EStepResult:
    """Posterior and contributions for one unit.

    Attributes:
        Cinv: (Z'Z + sigsq tausq^{-1})^{-1}, shape (q, q).
        mu_j: Posterior mean of the random effects (q,).
        T1j: Contribution to T1 (p,).
        T2j: Contribution to T2 (q, q).
        T3j: Contribution to T3.
    """
    Cinv: NDArray
    mu_j: NDArray
    T1j: NDArray
    T2j: NDArray
    T3j: float


def compute_t3j(
    xsq: NDArray,
    ysq: float,
    Zsq: NDArray,
    xy: NDArray,
    zy: NDArray,
    zxmat: NDArray,
    mu_j: NDArray,
    B: NDArray,
    sigsq: float,
    Cinv: NDArray,
) -> float:
    """Expected residual sum of squares of one unit.

    Expands E||y - XB - Zb||^2 over the unit's cross-products:

        y'y + B'X'XB + mu'Z'Z mu - 2B'X'y - 2mu'Z'y + 2B'X'Z mu
            + sigsq tr(Cinv Z'Z)
    """
    return float(
        ysq
        + B @ xsq @ B
        + mu_j @ Zsq @ mu_j
        - 2.0 * (B @ xy)
        - 2.0 * (mu_j @ zy)
        + 2.0 * (B @ zxmat @ mu_j)
        + sigsq * np.trace(Cinv @ Zsq)
    )


def compute_e_step(state: GlobalState, unit: UnitState) -> EStepResult:
    """Posterior of one unit's random effects under the current parameters.

    Args:
        state: Global state providing B_hat, tausq_hat and sigsq_hat.
        unit: Unit whose cross-products already include the current
            observation.

    Returns:
        EStepResult. Nothing is modified.

    Raises:
        SingularMatrixError: If tausq_hat or Z'Z + sigsq tausq^{-1} is
            singular. There is no fallback estimate for mu_j.
    """
    B = state.B_hat
    sigsq = state.sigsq_hat

    tausq_inv = invert(state.tausq_hat, 'tausq_hat')
    Cinv = invert(unit.Zsq + sigsq * tausq_inv, 'Zsq + sigsq_hat * inv(tausq_hat)')

    mu_j = Cinv @ (unit.zy - unit.zxmat.T @ B)

    T1j = unit.zxmat @ mu_j
    T2j = np.outer(mu_j, mu_j) + sigsq * Cinv
    T3j = compute_t3j(
        unit.xsq, unit.ysq, unit.Zsq, unit.xy, unit.zy, unit.zxmat,
        mu_j, B, sigsq, Cinv,
    )
    return EStepResult(Cinv=Cinv, mu_j=mu_j, T1j=T1j, T2j=T2j, T3j=T3j)


def apply_e_step(state: GlobalState, unit: UnitState, result: EStepResult) -> None:
    """Swap the unit's old contributions for the new ones.

    Order is T1, T2, T3; each total loses the unit's previous
    contribution before gaining the new one. Writes into both arguments.
    """
    unit.Cinv = result.Cinv
    unit.mu_j = result.mu_j

    state.T1 = state.T1 - unit.T1j
    unit.T1j = result.T1j
    state.T1 = state.T1 + unit.T1j

    state.T2 = state.T2 - unit.T2j
    unit.T2j = result.T2j
    state.T2 = state.T2 + unit.T2j

    state.T3 = state.T3 - unit.T3j
    unit.T3j = result.T3j
    state.T3 = state.T3 + unit.T3j
