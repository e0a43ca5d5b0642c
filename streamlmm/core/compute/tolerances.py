"""
Tolerance tiers for numerical validation.

Incrementally maintained quantities (Sherman-Morrison inverses, sums of
per-unit contributions) drift from their batch counterparts by rounding
error that grows with stream length. The tiers below are what the test
suite and check_invariants() use when comparing the two.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ToleranceTier:
    """Absolute and relative tolerance pair for numerical comparison."""
    rtol: float
    atol: float
    name: str
    description: str


# A single update compared with its closed form
CPU_FP64 = ToleranceTier(
    rtol=1e-10,
    atol=1e-12,
    name='cpu_fp64',
    description='CPU double precision, one update',
)

# Running totals accumulated over a stream (subtract-old/add-new cancels)
STREAM_FP64 = ToleranceTier(
    rtol=1e-8,
    atol=1e-8,
    name='stream_fp64',
    description='CPU double precision, accumulated over a stream',
)

# Long chains of rank-one inverse updates on poorly conditioned designs
STREAM_FP64_ILL_CONDITIONED = ToleranceTier(
    rtol=1e-4,
    atol=1e-6,
    name='stream_fp64_ill_conditioned',
    description='CPU double precision, ill-conditioned (cond > 1e4)',
)

# Condition number above which an accumulated design is ill-conditioned
ILL_CONDITION_THRESHOLD = 1e4


def select_tolerance(
    accumulated: bool = True,
    is_ill_conditioned: bool = False,
) -> ToleranceTier:
    """Select appropriate tolerance tier for a comparison."""
    if is_ill_conditioned:
        return STREAM_FP64_ILL_CONDITIONED
    if accumulated:
        return STREAM_FP64
    return CPU_FP64
