"""
Shared fixtures for online mixed model tests.

Provides streams with known structure: (x, z, y, unit_id) tuples in the
order they are fed to the estimator.
"""

import numpy as np
import pytest


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(2024)


def make_stream(rng, n_units, n_per_unit, *, beta, tau_sd, sigma, slope_sd=None,
                interleave=False):
    """Random intercept (and optional random slope) stream.

    x = [1, t], z = [1] or [1, t]; t ~ N(0, 1).
    """
    stream = []
    for j in range(n_units):
        b0 = rng.normal(0.0, tau_sd)
        b1 = rng.normal(0.0, slope_sd) if slope_sd is not None else 0.0
        for _ in range(n_per_unit):
            t = rng.normal()
            x = np.array([1.0, t])
            z = np.array([1.0, t]) if slope_sd is not None else np.array([1.0])
            y = x @ beta + b0 + b1 * t + rng.normal(0.0, sigma)
            stream.append((x, z, float(y), f"unit-{j}"))
    if interleave:
        stream = [stream[i * n_per_unit + k]
                  for k in range(n_per_unit) for i in range(n_units)]
    return stream


@pytest.fixture
def random_intercept_stream(rng):
    """100 units x 10 observations, round-robin over units.

    y = 5 + 2 t + b_j + e,  b_j ~ N(0, 1),  e ~ N(0, 0.5^2).
    """
    return make_stream(rng, 100, 10, beta=np.array([5.0, 2.0]), tau_sd=1.0, sigma=0.5,
                       interleave=True)


@pytest.fixture
def small_stream(rng):
    """8 units x 5 observations, round-robin, random intercept and slope."""
    return make_stream(rng, 8, 5, beta=np.array([1.0, -0.5]), tau_sd=1.0, sigma=1.0,
                       slope_sd=0.5, interleave=True)


@pytest.fixture
def stream_factory(rng):
    """make_stream bound to the seeded generator."""
    def factory(n_units, n_per_unit, **kwargs):
        return make_stream(rng, n_units, n_per_unit, **kwargs)
    return factory
