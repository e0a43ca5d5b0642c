"""
Design validation for the online mixed model.

ModelConfig fixes the model dimensions and the (optionally informative)
starting values; Observation is one validated row of the stream. Both
are checked up front so that nothing downstream has to re-validate.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Hashable, Literal

import numpy as np
from numpy.typing import ArrayLike, NDArray

from streamlmm.core.exceptions import ValidationError
from streamlmm.core.validation import (
    check_array, check_finite, check_1d, check_2d, check_length, check_square,
    check_symmetric, check_positive, check_non_negative,
)

PDPolicy = Literal['project', 'raise', 'none']
_PD_POLICIES = ('project', 'raise', 'none')


@dataclass(frozen=True)
class ModelConfig:
    """Validated configuration for one model fit.

    Attributes:
        n_fixed: Number of fixed effects columns p.
        n_random: Number of random effects columns q.
        prior_B: Starting fixed effects (p,). Default: ones.
        prior_tausq: Starting random effects covariance (q, q). Default: I.
        prior_sigsq: Starting residual variance. Default: 1.
        prior_weight_obs: Weight of prior_B / prior_sigsq, in observations.
            Default 0 (non-informative).
        prior_weight_units: Weight of prior_tausq, in units. Default 0.
        pd_policy: What to do when an M-step leaves tausq_hat not positive
            definite or sigsq_hat non-positive: 'project' (ridge, default),
            'raise' (NotPositiveDefiniteError) or 'none'.
        pd_floor: Smallest eigenvalue / variance accepted by the guard.
    """
    n_fixed: int
    n_random: int
    prior_B: NDArray
    prior_tausq: NDArray
    prior_sigsq: float
    prior_weight_obs: float
    prior_weight_units: float
    pd_policy: PDPolicy
    pd_floor: float

    @staticmethod
    def validate(
        n_fixed: int,
        n_random: int,
        *,
        prior_B: ArrayLike | None = None,
        prior_tausq: ArrayLike | None = None,
        prior_sigsq: float = 1.0,
        prior_weight_obs: float = 0.0,
        prior_weight_units: float = 0.0,
        pd_policy: PDPolicy = 'project',
        pd_floor: float = 1e-10,
    ) -> 'ModelConfig':
        """Validate inputs and create a ModelConfig.

        Args:
            n_fixed: Number of fixed effects columns (>= 1).
            n_random: Number of random effects columns (>= 1).
            prior_B: Optional starting fixed effects.
            prior_tausq: Optional starting random effects covariance;
                must be symmetric positive definite.
            prior_sigsq: Starting residual variance (> 0).
            prior_weight_obs: Prior weight in observations (>= 0).
            prior_weight_units: Prior weight in units (>= 0).
            pd_policy: 'project', 'raise' or 'none'.
            pd_floor: Positive floor used by the PD guard.

        Returns:
            Validated ModelConfig.

        Raises:
            ValidationError: On invalid inputs.
        """
        if isinstance(n_fixed, bool) or not isinstance(n_fixed, (int, np.integer)) or n_fixed < 1:
            raise ValidationError(f"n_fixed: must be a positive integer, got {n_fixed!r}")
        if isinstance(n_random, bool) or not isinstance(n_random, (int, np.integer)) or n_random < 1:
            raise ValidationError(f"n_random: must be a positive integer, got {n_random!r}")
        p, q = int(n_fixed), int(n_random)

        if prior_B is None:
            B = np.ones(p)
        else:
            B = check_array(prior_B, 'prior_B').reshape(-1)
            check_length(B, p, 'prior_B')
            check_finite(B, 'prior_B')

        if prior_tausq is None:
            tausq = np.eye(q)
        else:
            tausq = check_array(prior_tausq, 'prior_tausq')
            if tausq.ndim == 0:
                tausq = tausq.reshape(1, 1)
            check_2d(tausq, 'prior_tausq')
            check_square(tausq, q, 'prior_tausq')
            check_finite(tausq, 'prior_tausq')
            check_symmetric(tausq, 'prior_tausq')
            min_eig = float(np.min(np.linalg.eigvalsh(tausq)))
            if min_eig <= 0:
                raise ValidationError(
                    f"prior_tausq: not positive definite (min eigenvalue {min_eig:.3e})"
                )

        check_positive(prior_sigsq, 'prior_sigsq')
        check_non_negative(prior_weight_obs, 'prior_weight_obs')
        check_non_negative(prior_weight_units, 'prior_weight_units')

        if pd_policy not in _PD_POLICIES:
            raise ValidationError(
                f"pd_policy: must be one of {_PD_POLICIES}, got {pd_policy!r}"
            )
        check_positive(pd_floor, 'pd_floor')

        return ModelConfig(
            n_fixed=p,
            n_random=q,
            prior_B=B,
            prior_tausq=tausq,
            prior_sigsq=float(prior_sigsq),
            prior_weight_obs=float(prior_weight_obs),
            prior_weight_units=float(prior_weight_units),
            pd_policy=pd_policy,
            pd_floor=float(pd_floor),
        )


@dataclass(frozen=True)
class Observation:
    """One validated observation.

    Attributes:
        x: Fixed effects row (p,).
        z: Random effects row (q,).
        y: Outcome.
        unit_id: Unit the observation belongs to.
    """
    x: NDArray
    z: NDArray
    y: float
    unit_id: Hashable

    @staticmethod
    def validate(
        x: ArrayLike,
        z: ArrayLike,
        y: float,
        unit_id: Hashable,
        p: int,
        q: int,
    ) -> 'Observation':
        """Validate one observation against the model dimensions.

        Scalars are accepted for one-column rows.

        Raises:
            DimensionError: If x or z has the wrong length or shape.
            ValidationError: On non-numeric or non-finite values, or an
                unhashable unit id.
        """
        x_arr = _row(x, 'x', p)
        z_arr = _row(z, 'z', q)

        y_arr = check_array(y, 'y')
        if y_arr.size != 1:
            raise ValidationError(f"y: expected a scalar, got shape {y_arr.shape}")
        y_val = float(y_arr.reshape(()))
        if not np.isfinite(y_val):
            raise ValidationError(f"y: must be finite, got {y_val}")

        try:
            hash(unit_id)
        except TypeError as e:
            raise ValidationError(f"unit_id: must be hashable, got {type(unit_id).__name__}") from e

        return Observation(x=x_arr, z=z_arr, y=y_val, unit_id=unit_id)


def _row(value: ArrayLike, name: str, length: int) -> NDArray:
    arr = check_array(value, name)
    if arr.ndim == 0:
        arr = arr.reshape(1)
    check_1d(arr, name)
    check_length(arr, length, name)
    check_finite(arr, name)
    return arr


def as_observation(item: Any, p: int, q: int) -> Observation:
    """Coerce a feed item ((x, z, y, unit_id) tuple or Observation)."""
    if isinstance(item, Observation):
        return Observation.validate(item.x, item.z, item.y, item.unit_id, p, q)
    try:
        x, z, y, unit_id = item
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"observation: expected (x, z, y, unit_id), got {type(item).__name__}"
        ) from e
    return Observation.validate(x, z, y, unit_id, p, q)
