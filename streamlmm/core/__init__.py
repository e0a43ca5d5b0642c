"""
Core infrastructure for streamlmm.

Shared abstractions and numeric helpers used by the online estimator.

Key components:
    protocols: UnitRegistry protocol (external per-unit store)
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing, tolerance tiers, incremental linear algebra primitives
"""

from streamlmm.core.protocols import UnitRegistry
from streamlmm.core.result import Result
from streamlmm.core.exceptions import (
    StreamLMMError,
    ValidationError,
    DimensionError,
    NumericalError,
    SingularMatrixError,
    NotPositiveDefiniteError,
)

__all__ = [
    # Protocols
    "UnitRegistry",
    # Result
    "Result",
    # Exceptions
    "StreamLMMError",
    "ValidationError",
    "DimensionError",
    "NumericalError",
    "SingularMatrixError",
    "NotPositiveDefiniteError",
]
