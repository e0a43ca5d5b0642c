"""
Orchestration for the online mixed model.

Public API:
    fit_observation() - process one observation, return new states
    fit_stream()      - process a feed of observations against a registry
    check_invariants() - verify global statistics against the unit states
"""

from __future__ import annotations

from contextlib import nullcontext
import logging
from typing import Any, Hashable, Iterable, Literal

import numpy as np
from numpy.typing import ArrayLike

from streamlmm.core.exceptions import (
    StreamLMMError, DimensionError, NumericalError, NotPositiveDefiniteError,
    SingularMatrixError, ValidationError,
)
from streamlmm.core.protocols import UnitRegistry
from streamlmm.core.result import Result
from streamlmm.core.validation import check_array
from streamlmm.core.compute.timing import Timer
from streamlmm.core.compute.tolerances import (
    ToleranceTier, ILL_CONDITION_THRESHOLD, select_tolerance,
)
from streamlmm.online._common import (
    GlobalState, UnitState, FitStep, OnlineLMMParams,
)
from streamlmm.online._sufficient import (
    update_unit_statistics, update_global_statistics, sum_contributions,
)
from streamlmm.online._estep import compute_e_step, apply_e_step
from streamlmm.online._mstep import compute_m_step, apply_m_step
from streamlmm.online.design import ModelConfig, Observation, as_observation
from streamlmm.online.registry import DictRegistry
from streamlmm.online.solution import OnlineLMMSolution

logger = logging.getLogger(__name__)


def fit_observation(
    x: ArrayLike,
    z: ArrayLike,
    y: float,
    unit_id: Hashable,
    global_state: GlobalState | None = None,
    unit_state: UnitState | None = None,
    *,
    config: ModelConfig | None = None,
) -> FitStep:
    """Process one observation.

    Runs the full per-observation pipeline: unit and global raw updates,
    the E-step for the observed unit and the (possibly skipped) M-step.
    The arguments are never modified; new state objects are returned, so
    a call that raises leaves the caller's model exactly as it was.

    Args:
        x: Fixed effects row (p,).
        z: Random effects row (q,).
        y: Outcome.
        unit_id: Identifier of the unit the observation belongs to.
        global_state: Current global state, or None to start a new fit
            (dimensions taken from config, or from x and z).
        unit_state: Current state of this unit as stored in the caller's
            registry, or None if the unit has not been seen before.
        config: Model configuration. Used to create the initial state and
            for the PD policy. Default: ModelConfig.validate(p, q).

    Returns:
        FitStep with the new global state, the new unit state (to be
        stored back under unit_id) and the M-step status.

    Raises:
        DimensionError: If x, z or unit_state do not match the model.
        ValidationError: On non-finite or non-numeric input.
        SingularMatrixError: If the unit's posterior cannot be computed.
        NotPositiveDefiniteError: Under pd_policy='raise'.

    Examples:
        >>> step = fit_observation([1.0], [1.0], 2.0, unit_id=1)
        >>> step = fit_observation([1.0], [1.0], 4.0, unit_id=1,
        ...                        global_state=step.global_state,
        ...                        unit_state=step.unit_state)
        >>> step.m_step
        'updated'
    """
    config = _resolve_config(config, global_state, x, z)
    if global_state is None:
        global_state = GlobalState.from_config(config)
    obs = Observation.validate(x, z, y, unit_id, global_state.p, global_state.q)
    return _step(global_state, unit_state, obs, config, global_state.n + 1, None)


def fit_stream(
    observations: Iterable[Any],
    *,
    config: ModelConfig | None = None,
    registry: UnitRegistry | None = None,
    global_state: GlobalState | None = None,
    on_error: Literal['raise', 'skip'] = 'raise',
) -> OnlineLMMSolution:
    """Fit the model over a feed of observations, in order.

    Args:
        observations: Iterable of (x, z, y, unit_id) tuples or Observation
            records. Consumed once.
        config: Model configuration. Default: inferred from the first valid
            observation (or from global_state).
        registry: Store for unit states. Default: a new DictRegistry.
            Required when resuming from a global_state that has seen units.
            Each processed unit's state is written back after its
            observation.
        global_state: State to resume from. Not modified.
        on_error: 'raise' (default) propagates the first failure; the
            registry then holds the states as of the last successful
            observation. 'skip' drops observations that fail validation
            or hit a numerical failure and records them in
            info['skipped'].

    Returns:
        OnlineLMMSolution.

    Examples:
        >>> feed = [([1.0, t], [1.0], y, subject) for t, y, subject in rows]
        >>> solution = fit_stream(feed)
        >>> solution.B_hat, solution.sigsq_hat
    """
    if on_error not in ('raise', 'skip'):
        raise ValidationError(f"on_error: must be 'raise' or 'skip', got {on_error!r}")
    if global_state is not None:
        config = _resolve_config(config, global_state, None, None)
    if registry is None:
        if global_state is not None and global_state.J > 0:
            raise ValidationError(
                f"registry: resuming a fit with {global_state.J} unit(s) needs the "
                f"registry holding their states"
            )
        registry = DictRegistry()

    timer = Timer()
    timer.start()
    state = global_state
    n_projected = 0
    skipped: list[int] = []
    warnings_list: list[str] = []

    logger.info("Starting stream fit (resume=%s)", global_state is not None)

    for index, item in enumerate(observations, start=1):
        try:
            with timer.section('validation'):
                if state is None:
                    # Dimensions are committed only once this item succeeds
                    item_config = _resolve_config(config, None, *_peek_dimensions(item))
                    item_state = GlobalState.from_config(item_config)
                else:
                    item_config, item_state = config, state
                obs = as_observation(item, item_state.p, item_state.q)
            unit_state = registry.get(obs.unit_id)
            step = _step(item_state, unit_state, obs, item_config, index, timer)
        except StreamLMMError as exc:
            if on_error == 'raise':
                raise
            logger.debug("Skipping observation %d: %s", index, exc)
            skipped.append(index)
            continue

        registry.put(obs.unit_id, step.unit_state)
        config = item_config
        state = step.global_state
        if step.projected:
            n_projected += 1

    if state is None:
        raise ValidationError("observations: stream is empty (or every item was skipped) and no global_state was given")

    timer.stop()

    if not state.parameters_available:
        warnings_list.append(
            f"Stream ended before the fixed effects design produced estimates "
            f"({state.n} observations, regime '{state.regime}'); "
            f"B_hat, tausq_hat and sigsq_hat are still the starting values"
        )
    if n_projected:
        warnings_list.append(
            f"Variance estimates were projected to the positive definite cone "
            f"on {n_projected} observation(s)"
        )
    if skipped:
        warnings_list.append(f"Skipped {len(skipped)} observation(s) that failed")

    logger.info(
        "Stream fit finished: n=%d, J=%d, regime=%s, skipped=%d",
        state.n, state.J, state.regime, len(skipped),
    )

    params = OnlineLMMParams(
        B_hat=state.B_hat.copy(),
        tausq_hat=state.tausq_hat.copy(),
        sigsq_hat=float(state.sigsq_hat),
        n_obs=state.n,
        n_units=state.J,
        y_mean=float(state.y),
        parameters_available=state.parameters_available,
        regime=state.regime,
        n_updates=state.n_updates,
        random_effects=_random_effects(registry),
    )
    result = Result(
        params=params,
        info={
            'algorithm': 'online_em',
            'n_obs': state.n,
            'n_units': state.J,
            'regime': state.regime,
            'n_projected': n_projected,
            'skipped': tuple(skipped),
            'on_error': on_error,
        },
        timing=timer.result(),
        backend_name='online_em',
        warnings=tuple(warnings_list),
    )
    return OnlineLMMSolution(_result=result, _state=state, _registry=registry)


def check_invariants(
    global_state: GlobalState,
    units: Iterable[UnitState],
    *,
    tolerance: ToleranceTier | None = None,
    complete: bool = True,
) -> None:
    """Verify the global sufficient statistics against the unit states.

    Checks T1 = sum T1j, T2 = T2_prior + sum T2j, T3 = T3_prior + sum T3j
    and, when ``complete`` (units holds every unit of the fit), that
    J equals the number of units and n equals the sum of nj.

    Without an explicit ``tolerance`` the tier is chosen from the condition
    number of Xsq.

    Raises:
        NumericalError: On any violation, naming the statistic.
    """
    units = list(units)
    if tolerance is None:
        cond = np.linalg.cond(global_state.Xsq)
        tolerance = select_tolerance(
            is_ill_conditioned=not cond < ILL_CONDITION_THRESHOLD,
        )
    T1, T2, T3 = sum_contributions(units, global_state.p, global_state.q)
    checks = (
        ('T1', global_state.T1, T1),
        ('T2', global_state.T2 - global_state.T2_prior, T2),
        ('T3', global_state.T3 - global_state.T3_prior, T3),
    )
    for name, actual, expected in checks:
        if not np.allclose(actual, expected, rtol=tolerance.rtol, atol=tolerance.atol):
            diff = float(np.max(np.abs(np.asarray(actual) - np.asarray(expected))))
            raise NumericalError(
                f"{name} differs from the sum of unit contributions "
                f"(max abs difference {diff:.3e}, tier {tolerance.name})"
            )
    if complete:
        if global_state.J != len(units):
            raise NumericalError(f"J = {global_state.J} but {len(units)} units were given")
        n_total = sum(unit.nj for unit in units)
        if global_state.n != n_total:
            raise NumericalError(f"n = {global_state.n} but units hold {n_total} observations")


def _step(
    global_state: GlobalState,
    unit_state: UnitState | None,
    obs: Observation,
    config: ModelConfig,
    observation_index: int,
    timer: Timer | None,
) -> FitStep:
    """Run one observation on private copies of the states."""
    def section(name):
        return timer.section(name) if timer is not None else nullcontext()

    new_unit = unit_state is None
    if new_unit:
        unit = UnitState.empty(obs.unit_id, global_state.p, global_state.q)
    else:
        _check_unit(unit_state, obs.unit_id, global_state)
        unit = unit_state

    state = global_state.copy()
    if new_unit:
        state.J += 1
        logger.debug("New unit %r (J=%d)", obs.unit_id, state.J)

    try:
        with section('raw_update'):
            unit = update_unit_statistics(unit, obs.x, obs.z, obs.y)
            update_global_statistics(state, obs.x, obs.y)

        with section('e_step'):
            e_result = compute_e_step(state, unit)
            apply_e_step(state, unit, e_result)

        with section('m_step'):
            m_result = compute_m_step(state, obs.x, config)
            apply_m_step(state, m_result)
    except SingularMatrixError as exc:
        raise SingularMatrixError(
            f"Observation {observation_index} (unit {obs.unit_id!r}): {exc}",
            matrix_name=exc.matrix_name,
            rank=exc.rank,
            expected_rank=exc.expected_rank,
            unit_id=obs.unit_id,
            observation_index=observation_index,
        ) from exc
    except NotPositiveDefiniteError as exc:
        raise NotPositiveDefiniteError(
            f"Observation {observation_index} (unit {obs.unit_id!r}): {exc}",
            matrix_name=exc.matrix_name,
            min_eigenvalue=exc.min_eigenvalue,
            unit_id=obs.unit_id,
            observation_index=observation_index,
        ) from exc

    return FitStep(
        global_state=state,
        unit_state=unit,
        m_step=m_result.status,
        new_unit=new_unit,
        projected=m_result.projected,
    )


def _check_unit(unit: UnitState, unit_id: Hashable, state: GlobalState) -> None:
    if unit.id != unit_id:
        raise ValidationError(
            f"unit_state: belongs to unit {unit.id!r}, observation is for {unit_id!r}"
        )
    if unit.p != state.p or unit.q != state.q:
        raise DimensionError(
            f"unit_state: dimensions (p={unit.p}, q={unit.q}) do not match "
            f"the model (p={state.p}, q={state.q})"
        )


def _resolve_config(
    config: ModelConfig | None,
    global_state: GlobalState | None,
    x: Any,
    z: Any,
) -> ModelConfig:
    if global_state is not None:
        if config is None:
            return ModelConfig.validate(global_state.p, global_state.q)
        if (config.n_fixed, config.n_random) != (global_state.p, global_state.q):
            raise DimensionError(
                f"config: dimensions (p={config.n_fixed}, q={config.n_random}) do not "
                f"match global_state (p={global_state.p}, q={global_state.q})"
            )
        return config
    if config is not None:
        return config
    return ModelConfig.validate(check_array(x, 'x').size, check_array(z, 'z').size)


def _peek_dimensions(item: Any) -> tuple[Any, Any]:
    if isinstance(item, Observation):
        return item.x, item.z
    try:
        x, z, _, _ = item
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"observation: expected (x, z, y, unit_id), got {type(item).__name__}"
        ) from e
    return x, z


def _random_effects(registry: UnitRegistry) -> dict[Hashable, Any]:
    states = getattr(registry, 'states', None)
    if states is None:
        return {}
    return {unit.id: unit.mu_j.copy() for unit in states()}
