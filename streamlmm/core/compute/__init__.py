"""
Shared compute infrastructure for streamlmm.

Numeric building blocks only; the estimator itself is in streamlmm/online/.

Submodules:
    timing: Execution timing utilities
    tolerances: Tolerance tiers for incremental-vs-batch comparisons
    linalg: Incremental linear algebra primitives
"""

from streamlmm.core.compute.timing import Timer

__all__ = [
    "Timer",
]
