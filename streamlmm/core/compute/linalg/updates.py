"""
Incremental linear algebra primitives.

Running means, outer-product accumulators and the Sherman-Morrison
rank-one inverse update, plus an inversion helper that reports
singularity as a value instead of an exception. These are the only
places where the online estimator touches LAPACK.

All functions are pure: inputs are never modified in place.
"""

from dataclasses import dataclass
from typing import Any
import numpy as np
from numpy.typing import ArrayLike, NDArray
import scipy.linalg as sla

from streamlmm.core.exceptions import (
    DimensionError, SingularMatrixError, ValidationError,
)


@dataclass(frozen=True)
class InversionResult:
    """
    Outcome of an attempted matrix inversion.

    Attributes:
        inverse: The inverse, or None when the matrix is singular
        rank: Numerical rank of the input (SVD, NumPy default tolerance)
        size: Dimension of the (square) input
    """
    inverse: NDArray[np.floating[Any]] | None
    rank: int
    size: int

    @property
    def singular(self) -> bool:
        return self.inverse is None


def update_mean(old: float, obs: float, count: int) -> float:
    """
    Running mean after observing ``obs`` as the ``count``-th value.

    Args:
        old: Mean of the first count - 1 values (ignored when count == 1)
        obs: New value
        count: Number of values including obs, must be >= 1

    Returns:
        old + (obs - old) / count
    """
    if count < 1:
        raise ValidationError(f"count: must be >= 1, got {count}")
    return old + (obs - old) / count


def update_accumulator(
    old: float | NDArray[np.floating[Any]],
    a: float | ArrayLike,
    b: float | ArrayLike,
) -> float | NDArray[np.floating[Any]]:
    """
    Accumulate the outer product ``a b'`` into ``old``.

    Shapes follow np.multiply.outer: vector x vector gives a matrix,
    scalar x vector a vector, scalar x scalar a scalar. The result must
    match the shape of ``old``.

    Returns:
        old + a b' as a new array (or float for the scalar case)
    """
    increment = np.multiply.outer(a, b)
    if increment.ndim == 0:
        return float(old + increment)
    if np.shape(old) != increment.shape:
        raise DimensionError(
            f"accumulator: increment has shape {increment.shape}, "
            f"accumulator has shape {np.shape(old)}"
        )
    return old + increment


def rank_one_inverse_update(
    xinv: NDArray[np.floating[Any]],
    x: NDArray[np.floating[Any]],
) -> NDArray[np.floating[Any]]:
    """
    Sherman-Morrison update of an inverse cross-product.

    Given A^{-1}, returns (A + x x')^{-1} in O(p^2):

        A^{-1} - (A^{-1} x x' A^{-1}) / (1 + x' A^{-1} x)

    Args:
        xinv: Exact inverse of the cross-product before adding x x' (p, p)
        x: New row (p,)

    Returns:
        Updated inverse (p, p)

    Raises:
        SingularMatrixError: If 1 + x' A^{-1} x is zero
    """
    left = xinv @ x
    right = x @ xinv
    denom = 1.0 + float(x @ left)
    if abs(denom) <= np.finfo(np.float64).eps:
        raise SingularMatrixError(
            f"Rank-one update is singular: 1 + x'A^-1 x = {denom:.3e}",
            matrix_name='Xinv',
        )
    return xinv - np.outer(left, right) / denom


def try_invert(matrix: NDArray[np.floating[Any]]) -> InversionResult:
    """
    Invert a square matrix, reporting singularity instead of raising.

    A matrix is treated as singular when its numerical rank is below its
    dimension or LAPACK refuses the factorization. Rank is computed from
    the SVD rather than trusting the LU pivots, which for a rank-deficient
    floating point matrix are often tiny but non-zero.

    Args:
        matrix: Square matrix (k, k)

    Returns:
        InversionResult with inverse=None on failure
    """
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise DimensionError(f"expected a square matrix, got shape {matrix.shape}")

    size = matrix.shape[0]
    rank = int(np.linalg.matrix_rank(matrix))
    if rank < size:
        return InversionResult(inverse=None, rank=rank, size=size)

    try:
        inverse = sla.inv(matrix)
    except np.linalg.LinAlgError:
        return InversionResult(inverse=None, rank=rank, size=size)

    if not np.all(np.isfinite(inverse)):
        return InversionResult(inverse=None, rank=rank, size=size)
    return InversionResult(inverse=inverse, rank=rank, size=size)


def invert(matrix: NDArray[np.floating[Any]], name: str) -> NDArray[np.floating[Any]]:
    """
    Invert a square matrix that is required to be non-singular.

    Args:
        matrix: Square matrix (k, k)
        name: Matrix name for the error message

    Raises:
        SingularMatrixError: If the matrix cannot be inverted
    """
    result = try_invert(matrix)
    if result.singular:
        raise SingularMatrixError(
            f"{name} is singular (rank {result.rank} < {result.size})",
            matrix_name=name,
            rank=result.rank,
            expected_rank=result.size,
        )
    return result.inverse
