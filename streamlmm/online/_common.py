"""
Common data types for the online mixed model estimator.

GlobalState holds the model parameters and global sufficient statistics;
UnitState holds one unit's accumulated cross-products, its latest random
effects estimate and its current contribution to the global statistics.
Both are plain mutable containers. The engines in _sufficient, _estep
and _mstep update them; the orchestrator only ever mutates private copies.

Model:
    y_ij = x_ij' B + z_ij' b_j + e_ij,   b_j ~ N(0, tausq),   e_ij ~ N(0, sigsq)

References:
    Laird, N. M., & Ware, J. H. (1982). Random-effects models for
    longitudinal data. Biometrics, 38(4), 963-974.
    Cappé, O., & Moulines, E. (2009). On-line expectation-maximization
    algorithm for latent data models. JRSS-B, 71(3), 593-613.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Hashable, Literal, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from streamlmm.core.exceptions import ValidationError
from streamlmm.core.validation import check_array, check_finite, check_length, check_square

if TYPE_CHECKING:
    from streamlmm.online.design import ModelConfig


# M-step outcomes for a single observation
MSTEP_BOOTSTRAPPING = 'bootstrapping'   # design still singular, nothing estimated
MSTEP_INITIALIZED = 'initialized'       # design became invertible this round
MSTEP_UPDATED = 'updated'               # parameters re-estimated

MStepStatus = Literal['bootstrapping', 'initialized', 'updated']


def _copy_value(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.copy()
    return value


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    return value


def _vector(data: dict[str, Any], key: str, length: int) -> NDArray:
    arr = check_array(data[key], key).reshape(-1)
    check_length(arr, length, key)
    check_finite(arr, key)
    return arr


def _matrix(data: dict[str, Any], key: str, rows: int, cols: int | None = None) -> NDArray:
    arr = check_array(data[key], key)
    if cols is None:
        check_square(arr, rows, key)
    elif arr.shape != (rows, cols):
        raise ValidationError(f"{key}: expected shape ({rows}, {cols}), got {arr.shape}")
    check_finite(arr, key)
    return arr


@dataclass
class GlobalState:
    """
    Process-wide parameters and sufficient statistics for one model fit.

    Attributes:
        p: Number of fixed effects columns.
        q: Number of random effects columns.
        B_hat: Fixed effects coefficients (p,).
        T1: Fixed effects sufficient statistic, sum of unit T1j (p,).
        tausq_hat: Random effects covariance (q, q).
        T2: Random effects sufficient statistic, T2_prior + sum of T2j (q, q).
        sigsq_hat: Residual variance.
        T3: Residual variance sufficient statistic, T3_prior + sum of T3j.
        n: Observations processed.
        J: Distinct units seen.
        y: Running mean of the outcome.
        Xsq: Fixed effects cross-product X'X, including prior mass (p, p).
        XYvec: Fixed effects-outcome cross-product X'y, including prior mass (p,).
        Xinv: Inverse of Xsq once it is invertible, else None (p, p).
        n_prior: Prior weight in observations (added to n in the M-step).
        J_prior: Prior weight in units (added to J in the M-step).
        T2_prior: Prior mass inside T2 (q, q).
        T3_prior: Prior mass inside T3.
        n_updates: Number of M-steps that re-estimated the parameters.
    """
    p: int
    q: int
    B_hat: NDArray
    T1: NDArray
    tausq_hat: NDArray
    T2: NDArray
    sigsq_hat: float
    T3: float
    n: int
    J: int
    y: float
    Xsq: NDArray
    XYvec: NDArray
    Xinv: NDArray | None = None
    n_prior: float = 0.0
    J_prior: float = 0.0
    T2_prior: NDArray = field(default=None)
    T3_prior: float = 0.0
    n_updates: int = 0

    def __post_init__(self):
        if self.T2_prior is None:
            self.T2_prior = np.zeros((self.q, self.q))

    @classmethod
    def from_config(cls, config: 'ModelConfig') -> 'GlobalState':
        """
        Create the initial state for a fit.

        With zero prior weights every sufficient statistic starts at zero
        and the parameters start at prior_B, prior_tausq and prior_sigsq.
        A positive prior_weight_obs w seeds Xsq with w I and XYvec with
        w prior_B (a ridge toward prior_B) and puts w prior_sigsq into T3;
        a positive prior_weight_units v puts v prior_tausq into T2.
        """
        p, q = config.n_fixed, config.n_random
        w, v = config.prior_weight_obs, config.prior_weight_units
        T2_prior = v * config.prior_tausq
        T3_prior = w * config.prior_sigsq
        return cls(
            p=p,
            q=q,
            B_hat=config.prior_B.copy(),
            T1=np.zeros(p),
            tausq_hat=config.prior_tausq.copy(),
            T2=T2_prior.copy(),
            sigsq_hat=float(config.prior_sigsq),
            T3=float(T3_prior),
            n=0,
            J=0,
            y=0.0,
            Xsq=w * np.eye(p),
            XYvec=w * config.prior_B,
            Xinv=None,
            n_prior=float(w),
            J_prior=float(v),
            T2_prior=T2_prior,
            T3_prior=float(T3_prior),
        )

    @property
    def regime(self) -> Literal['uninitialized', 'bootstrapping', 'invertible']:
        """Where the fixed effects inverse is in its lifecycle."""
        if self.Xinv is not None:
            return 'invertible'
        if self.n == 0:
            return 'uninitialized'
        return 'bootstrapping'

    @property
    def parameters_available(self) -> bool:
        """True once at least one M-step has re-estimated the parameters."""
        return self.n_updates > 0

    def copy(self) -> 'GlobalState':
        """Deep copy (all arrays duplicated)."""
        return GlobalState(**{f.name: _copy_value(getattr(self, f.name)) for f in fields(self)})

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {f.name: _to_jsonable(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'GlobalState':
        """
        Rebuild a state produced by to_dict().

        Raises:
            ValidationError: On missing keys or inconsistent shapes.
        """
        missing = [f.name for f in fields(cls) if f.name not in data]
        if missing:
            raise ValidationError(f"GlobalState: missing keys {missing}")
        p, q = int(data['p']), int(data['q'])
        Xinv = None if data['Xinv'] is None else _matrix(data, 'Xinv', p)
        return cls(
            p=p,
            q=q,
            B_hat=_vector(data, 'B_hat', p),
            T1=_vector(data, 'T1', p),
            tausq_hat=_matrix(data, 'tausq_hat', q),
            T2=_matrix(data, 'T2', q),
            sigsq_hat=float(data['sigsq_hat']),
            T3=float(data['T3']),
            n=int(data['n']),
            J=int(data['J']),
            y=float(data['y']),
            Xsq=_matrix(data, 'Xsq', p),
            XYvec=_vector(data, 'XYvec', p),
            Xinv=Xinv,
            n_prior=float(data['n_prior']),
            J_prior=float(data['J_prior']),
            T2_prior=_matrix(data, 'T2_prior', q),
            T3_prior=float(data['T3_prior']),
            n_updates=int(data['n_updates']),
        )


@dataclass
class UnitState:
    """
    Accumulated statistics for one unit.

    Attributes:
        id: Opaque unit identifier.
        nj: Observations for this unit.
        mu_j: Posterior mean of the unit's random effects (q,).
        Zsq: Z_j'Z_j (q, q).
        zxmat: X_j'Z_j (p, q).
        xsq: X_j'X_j (p, p).
        ysq: y_j'y_j.
        xy: X_j'y_j (p,).
        zy: Z_j'y_j (q,).
        Cinv: (Z_j'Z_j + sigsq tausq^{-1})^{-1} from the latest E-step,
              None before the first one (q, q).
        T1j: Contribution to T1 (p,).
        T2j: Contribution to T2 (q, q).
        T3j: Contribution to T3.
    """
    id: Hashable
    nj: int
    mu_j: NDArray
    Zsq: NDArray
    zxmat: NDArray
    xsq: NDArray
    ysq: float
    xy: NDArray
    zy: NDArray
    Cinv: NDArray | None
    T1j: NDArray
    T2j: NDArray
    T3j: float

    @classmethod
    def empty(cls, unit_id: Hashable, p: int, q: int) -> 'UnitState':
        """Zero-initialized state for a unit that has not been observed yet."""
        return cls(
            id=unit_id,
            nj=0,
            mu_j=np.zeros(q),
            Zsq=np.zeros((q, q)),
            zxmat=np.zeros((p, q)),
            xsq=np.zeros((p, p)),
            ysq=0.0,
            xy=np.zeros(p),
            zy=np.zeros(q),
            Cinv=None,
            T1j=np.zeros(p),
            T2j=np.zeros((q, q)),
            T3j=0.0,
        )

    @property
    def p(self) -> int:
        return self.xy.shape[0]

    @property
    def q(self) -> int:
        return self.zy.shape[0]

    def copy(self) -> 'UnitState':
        """Deep copy (all arrays duplicated)."""
        return UnitState(**{f.name: _copy_value(getattr(self, f.name)) for f in fields(self)})

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary (id is stored as-is)."""
        return {f.name: _to_jsonable(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'UnitState':
        """
        Rebuild a state produced by to_dict().

        Raises:
            ValidationError: On missing keys or inconsistent shapes.
        """
        missing = [f.name for f in fields(cls) if f.name not in data]
        if missing:
            raise ValidationError(f"UnitState: missing keys {missing}")
        xy = check_array(data['xy'], 'xy').reshape(-1)
        zy = check_array(data['zy'], 'zy').reshape(-1)
        p, q = xy.shape[0], zy.shape[0]
        Cinv = None if data['Cinv'] is None else _matrix(data, 'Cinv', q)
        return cls(
            id=data['id'],
            nj=int(data['nj']),
            mu_j=_vector(data, 'mu_j', q),
            Zsq=_matrix(data, 'Zsq', q),
            zxmat=_matrix(data, 'zxmat', p, q),
            xsq=_matrix(data, 'xsq', p),
            ysq=float(data['ysq']),
            xy=xy,
            zy=zy,
            Cinv=Cinv,
            T1j=_vector(data, 'T1j', p),
            T2j=_matrix(data, 'T2j', q),
            T3j=float(data['T3j']),
        )


@dataclass(frozen=True)
class FitStep:
    """
    Outcome of processing one observation.

    Attributes:
        global_state: Updated global state (a new object).
        unit_state: Updated state of the observed unit (a new object);
            the caller stores it back into its registry.
        m_step: 'bootstrapping', 'initialized' or 'updated'.
        new_unit: True if this was the unit's first observation.
        projected: True if the PD guard modified tausq_hat or sigsq_hat.
    """
    global_state: GlobalState
    unit_state: UnitState
    m_step: MStepStatus
    new_unit: bool = False
    projected: bool = False

    @property
    def parameters_available(self) -> bool:
        """Whether B_hat/tausq_hat/sigsq_hat have been estimated from data."""
        return self.global_state.parameters_available


@dataclass(frozen=True)
class OnlineLMMParams:
    """
    Parameter payload for a fitted stream.

    Snapshot of the estimates after the last observation; arrays are
    copies and do not alias the live GlobalState.
    """
    B_hat: NDArray                      # fixed effects (p,)
    tausq_hat: NDArray                  # random effects covariance (q, q)
    sigsq_hat: float                    # residual variance
    n_obs: int
    n_units: int
    y_mean: float
    parameters_available: bool
    regime: str
    n_updates: int
    random_effects: dict[Hashable, NDArray]   # unit id -> mu_j (q,)
