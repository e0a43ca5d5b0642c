"""
Exception hierarchy for streamlmm.

All exceptions inherit from StreamLMMError to allow catching any
library-specific error.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""

from typing import Hashable


class StreamLMMError(Exception):
    """Base exception for all streamlmm errors."""
    pass


class ValidationError(StreamLMMError):
    """
    Input validation failed.

    Raised when user-provided inputs (observations, configuration, persisted
    state) fail validation checks. Always raised before any state mutation.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when a fixed or random effects row does not match the number of
    columns fixed when the model state was created.
    """
    pass


class NumericalError(StreamLMMError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class SingularMatrixError(NumericalError):
    """
    Matrix is singular or nearly singular.

    Raised when an update requires an inverse that does not exist: the
    random effects covariance, the posterior precision of a unit, or a
    rank-one update whose denominator vanishes. Singularity of the fixed
    effects cross-product during the bootstrap phase is NOT an error and
    never raises this.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        rank: Numerical rank, if computed
        expected_rank: Expected rank (the matrix dimension)
        unit_id: Unit whose observation triggered the failure, if known
        observation_index: 1-based index of the failing observation in
            the stream, if known
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        rank: int | None = None,
        expected_rank: int | None = None,
        unit_id: Hashable | None = None,
        observation_index: int | None = None,
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.rank = rank
        self.expected_rank = expected_rank
        self.unit_id = unit_id
        self.observation_index = observation_index


class NotPositiveDefiniteError(NumericalError):
    """
    Matrix is not positive definite.

    Raised after an M-step when the random effects covariance or the
    residual variance has drifted out of the valid region and the model
    is configured with ``pd_policy='raise'``.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        min_eigenvalue: Minimum eigenvalue, if computed
        unit_id: Unit whose observation triggered the failure, if known
        observation_index: 1-based index of the failing observation in
            the stream, if known
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        min_eigenvalue: float | None = None,
        unit_id: Hashable | None = None,
        observation_index: int | None = None,
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.min_eigenvalue = min_eigenvalue
        self.unit_id = unit_id
        self.observation_index = observation_index
