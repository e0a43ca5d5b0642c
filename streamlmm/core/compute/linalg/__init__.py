"""
Linear algebra kernels for streamlmm.

All functions follow these conventions:
    - CPU only, NumPy/SciPy (LAPACK under the hood)
    - Pure: inputs are never modified in place
    - Expected singularity is returned as a value (InversionResult);
      unexpected singularity raises SingularMatrixError

Submodules:
    updates: running mean, outer-product accumulator, Sherman-Morrison
"""

from streamlmm.core.compute.linalg.updates import (
    InversionResult,
    update_mean,
    update_accumulator,
    rank_one_inverse_update,
    try_invert,
    invert,
)

__all__ = [
    "InversionResult",
    "update_mean",
    "update_accumulator",
    "rank_one_inverse_update",
    "try_invert",
    "invert",
]
