"""
M-step for the online mixed model.

Closed-form updates from the global sufficient statistics:

    B_hat     = (X'X)^{-1} (X'y - T1)
    tausq_hat = T2 / (J + J_prior)
    sigsq_hat = T3 / (n + n_prior)

(X'X)^{-1} is only available once the accumulated fixed effects design
has full rank. Until then every observation is added to Xsq and an
inversion is attempted; the first success stores Xinv and from the next
observation on Xinv is kept current with Sherman-Morrison updates. The
parameters are not touched until that point.

    uninitialized -> bootstrapping -> invertible (terminal)
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import numpy as np
from numpy.typing import NDArray

from streamlmm.core.exceptions import NotPositiveDefiniteError
from streamlmm.core.compute.linalg import (
    update_accumulator, rank_one_inverse_update, try_invert,
)
from streamlmm.online._common import (
    GlobalState, MStepStatus,
    MSTEP_BOOTSTRAPPING, MSTEP_INITIALIZED, MSTEP_UPDATED,
)
from streamlmm.online.design import ModelConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MStepResult:
    """Proposed M-step update.

    Attributes:
        status: 'bootstrapping', 'initialized' or 'updated'.
        Xsq: Fixed effects cross-product including the current row.
        Xinv: Inverse of Xsq, or None while bootstrapping.
        B_hat, tausq_hat, sigsq_hat: New parameters; equal to the
            current ones unless status == 'updated'.
        projected: Whether the PD guard changed tausq_hat or sigsq_hat.
    """
    status: MStepStatus
    Xsq: NDArray
    Xinv: NDArray | None
    B_hat: NDArray
    tausq_hat: NDArray
    sigsq_hat: float
    projected: bool = False


def ensure_valid_variances(
    tausq: NDArray,
    sigsq: float,
    policy: str,
    floor: float,
) -> tuple[NDArray, float, bool]:
    """Apply the positive-definiteness policy to new variance estimates.

    'project' adds a ridge |min_eig| + floor to tausq when its smallest
    eigenvalue is below floor, and raises sigsq to floor. Estimates
    already in the valid region are returned unchanged.

    Returns:
        (tausq, sigsq, projected)

    Raises:
        NotPositiveDefiniteError: Under policy 'raise'.
    """
    if policy == 'none':
        return tausq, sigsq, False

    q = tausq.shape[0]
    try:
        min_eig = float(np.min(np.linalg.eigvalsh((tausq + tausq.T) / 2.0)))
    except np.linalg.LinAlgError:
        min_eig = -np.inf
    bad_tausq = min_eig < floor
    bad_sigsq = not sigsq >= floor

    if policy == 'raise':
        if bad_tausq:
            raise NotPositiveDefiniteError(
                f"tausq_hat is not positive definite after the M-step "
                f"(min eigenvalue {min_eig:.3e}, floor {floor:.1e})",
                matrix_name='tausq_hat',
                min_eigenvalue=min_eig,
            )
        if bad_sigsq:
            raise NotPositiveDefiniteError(
                f"sigsq_hat = {sigsq:.3e} is below the floor {floor:.1e}",
                matrix_name='sigsq_hat',
                min_eigenvalue=sigsq,
            )
        return tausq, sigsq, False

    projected = False
    if bad_tausq:
        ridge = abs(min_eig) + floor if np.isfinite(min_eig) else floor
        tausq = tausq + ridge * np.eye(q)
        projected = True
    if bad_sigsq:
        sigsq = floor
        projected = True
    return tausq, sigsq, projected


def compute_m_step(state: GlobalState, x: NDArray, config: ModelConfig) -> MStepResult:
    """Propose the M-step for the current observation.

    Args:
        state: Global state after the E-step of the current observation.
        x: Fixed effects row of the current observation (p,).
        config: Provides the PD policy.

    Returns:
        MStepResult. Nothing is modified.

    Raises:
        SingularMatrixError: If the Sherman-Morrison denominator vanishes.
        NotPositiveDefiniteError: Under pd_policy='raise'.
    """
    Xsq = update_accumulator(state.Xsq, x, x)

    if state.Xinv is None:
        inversion = try_invert(Xsq)
        if inversion.singular:
            return MStepResult(
                status=MSTEP_BOOTSTRAPPING,
                Xsq=Xsq,
                Xinv=None,
                B_hat=state.B_hat,
                tausq_hat=state.tausq_hat,
                sigsq_hat=state.sigsq_hat,
            )
        return MStepResult(
            status=MSTEP_INITIALIZED,
            Xsq=Xsq,
            Xinv=inversion.inverse,
            B_hat=state.B_hat,
            tausq_hat=state.tausq_hat,
            sigsq_hat=state.sigsq_hat,
        )

    Xinv = rank_one_inverse_update(state.Xinv, x)
    B_hat = Xinv @ (state.XYvec - state.T1)
    tausq_hat = state.T2 / (state.J + state.J_prior)
    sigsq_hat = float(state.T3 / (state.n + state.n_prior))

    tausq_hat, sigsq_hat, projected = ensure_valid_variances(
        tausq_hat, sigsq_hat, config.pd_policy, config.pd_floor,
    )
    return MStepResult(
        status=MSTEP_UPDATED,
        Xsq=Xsq,
        Xinv=Xinv,
        B_hat=B_hat,
        tausq_hat=tausq_hat,
        sigsq_hat=sigsq_hat,
        projected=projected,
    )


def apply_m_step(state: GlobalState, result: MStepResult) -> None:
    """Write a proposed M-step into the global state."""
    state.Xsq = result.Xsq
    state.Xinv = result.Xinv
    if result.status == MSTEP_INITIALIZED:
        logger.debug(
            "Fixed effects design invertible after %d observations; "
            "switching to rank-one updates", state.n,
        )
    if result.status == MSTEP_UPDATED:
        state.B_hat = result.B_hat
        state.tausq_hat = result.tausq_hat
        state.sigsq_hat = result.sigsq_hat
        state.n_updates += 1
