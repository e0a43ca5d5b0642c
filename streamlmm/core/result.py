"""
Generic result container for streamlmm computations.

The Result class provides a standardized envelope around a parameter
payload, with metadata, timing and non-fatal warnings.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (observations, regime, diagnostics)
    - timing is optional (don't burden unit tests)
    - Immutable (frozen=True) for reproducibility
"""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for a fitted stream.

    Type Parameters:
        P: The parameter payload type

    Attributes:
        params: Parameter payload (coefficients, variance components, ...)
        info: Structured metadata (observations, units, regime, ...)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the algorithm that produced this result
        warnings: Non-fatal issues encountered during computation

    Examples:
        >>> Result(
        ...     params=OnlineLMMParams(...),
        ...     info={'n_obs': 500, 'n_units': 20, 'parameters_available': True},
        ...     timing={'total_seconds': 0.04},
        ...     backend_name='online_em'
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
