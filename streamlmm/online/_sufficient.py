"""
Raw cross-product updates for one observation.

The unit update is pure and returns a new UnitState. The global update
writes into the GlobalState it is given; the orchestrator only ever
hands it a private working copy.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from streamlmm.core.compute.linalg import update_accumulator, update_mean
from streamlmm.online._common import GlobalState, UnitState


def update_unit_statistics(
    unit: UnitState,
    x: NDArray,
    z: NDArray,
    y: float,
) -> UnitState:
    """Fold one observation into a unit's cross-products.

    Args:
        unit: Current state of the unit (not modified).
        x: Fixed effects row (p,).
        z: Random effects row (q,).
        y: Outcome.

    Returns:
        New UnitState with nj, xsq, ysq, xy, Zsq, zxmat and zy updated.
        mu_j, Cinv and the contributions are carried over unchanged; the
        E-step refreshes them.
    """
    new = unit.copy()
    new.nj = unit.nj + 1
    new.xsq = update_accumulator(unit.xsq, x, x)
    new.ysq = update_accumulator(unit.ysq, y, y)
    new.xy = update_accumulator(unit.xy, y, x)
    new.Zsq = update_accumulator(unit.Zsq, z, z)
    new.zxmat = update_accumulator(unit.zxmat, x, z)
    new.zy = update_accumulator(unit.zy, y, z)
    return new


def update_global_statistics(state: GlobalState, x: NDArray, y: float) -> None:
    """Count the observation and fold it into X'y and the outcome mean."""
    state.n += 1
    state.XYvec = update_accumulator(state.XYvec, x, y)
    state.y = update_mean(state.y, y, state.n)


def sum_contributions(units, p: int, q: int) -> tuple[NDArray, NDArray, float]:
    """Sum T1j, T2j and T3j over an iterable of UnitState.

    Used to check the global sufficient statistics against their
    definition; never on the per-observation path.
    """
    T1 = np.zeros(p)
    T2 = np.zeros((q, q))
    T3 = 0.0
    for unit in units:
        T1 = T1 + unit.T1j
        T2 = T2 + unit.T2j
        T3 += unit.T3j
    return T1, T2, T3
