"""
Input validation utilities for streamlmm.

Every observation, configuration and restored state passes through these
checks before any statistic is touched; a rejected input raises and the
model is left as it was. Messages start with the offending argument name
and quote the value or shape that was found.
"""

import numpy as np
from numpy.typing import ArrayLike, NDArray
from typing import Any

from streamlmm.core.exceptions import ValidationError, DimensionError


def check_array(
    array: ArrayLike,
    name: str,
) -> NDArray[np.floating[Any]]:
    """
    Convert an array-like (or scalar) to a float ndarray.

    Integer input is promoted to float64. Object, string and boolean
    arrays are rejected.

    Raises:
        ValidationError: If the input is not numeric
    """
    try:
        result = np.asarray(array)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{name}: cannot convert to array: {e}") from e

    if result.dtype == object:
        raise ValidationError(
            f"{name}: converted to object dtype, indicating mixed types or non-numeric data"
        )

    # Booleans are numbers to numpy but never a valid design row
    if result.dtype == np.bool_ or not np.issubdtype(result.dtype, np.number):
        raise ValidationError(
            f"{name}: non-numeric dtype {result.dtype}, expected numeric data"
        )

    if not np.issubdtype(result.dtype, np.floating):
        result = result.astype(np.float64)

    return result


def check_finite(array: NDArray[np.floating[Any]], name: str) -> None:
    """
    Reject NaN and Inf, reporting how many of each were found.
    """
    if not np.all(np.isfinite(array)):
        n_nan = int(np.sum(np.isnan(array)))
        n_inf = int(np.sum(np.isinf(array)))
        raise ValidationError(
            f"{name}: contains non-finite values ({n_nan} NaN, {n_inf} Inf)"
        )


def check_ndim(array: NDArray[np.floating[Any]], ndim: int, name: str) -> None:
    """Raise DimensionError unless array.ndim == ndim."""
    if array.ndim != ndim:
        raise DimensionError(
            f"{name}: expected {ndim}D array, got {array.ndim}D with shape {array.shape}"
        )


def check_1d(array: NDArray[np.floating[Any]], name: str) -> None:
    """Verify array is 1-dimensional."""
    check_ndim(array, 1, name)


def check_2d(array: NDArray[np.floating[Any]], name: str) -> None:
    """Verify array is 2-dimensional."""
    check_ndim(array, 2, name)


def check_length(array: NDArray[np.floating[Any]], length: int, name: str) -> None:
    """
    Verify a 1D array has exactly the expected number of entries.

    Args:
        array: 1D array to check
        length: Required length
        name: Parameter name for error messages

    Raises:
        DimensionError: If the length differs
    """
    if array.shape[0] != length:
        raise DimensionError(
            f"{name}: expected length {length}, got {array.shape[0]}"
        )


def check_square(array: NDArray[np.floating[Any]], size: int, name: str) -> None:
    """
    Verify a 2D array is square with the expected size.

    Raises:
        DimensionError: If the shape is not (size, size)
    """
    if array.shape != (size, size):
        raise DimensionError(
            f"{name}: expected shape ({size}, {size}), got {array.shape}"
        )


def check_symmetric(
    array: NDArray[np.floating[Any]],
    name: str,
    atol: float = 1e-10,
) -> None:
    """
    Verify a square matrix is symmetric within an absolute tolerance.

    Raises:
        ValidationError: If the matrix is not symmetric
    """
    max_asym = float(np.max(np.abs(array - array.T))) if array.size else 0.0
    if max_asym > atol:
        raise ValidationError(
            f"{name}: not symmetric (max |A - A'| = {max_asym:.3e}, tol {atol:.1e})"
        )


def check_positive(value: float, name: str) -> None:
    """
    Verify a scalar is strictly positive and finite.

    Raises:
        ValidationError: If value <= 0 or non-finite
    """
    if not np.isfinite(value) or value <= 0:
        raise ValidationError(f"{name}: must be positive and finite, got {value}")


def check_non_negative(value: float, name: str) -> None:
    """
    Verify a scalar is non-negative and finite.

    Raises:
        ValidationError: If value < 0 or non-finite
    """
    if not np.isfinite(value) or value < 0:
        raise ValidationError(f"{name}: must be non-negative and finite, got {value}")
