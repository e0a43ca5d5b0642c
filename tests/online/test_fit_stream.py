"""
Tests for fit_stream() and the solution wrapper.

Validates:
    - Parameter recovery on a simulated random intercept stream
    - Warnings for streams that never produce estimates
    - Error policies ('raise' and 'skip')
    - Resuming a fit from a solution equals fitting in one go
    - Solution accessors, summary and serialization
"""

import json
import logging

import numpy as np
import pytest

from streamlmm.core.exceptions import ValidationError
from streamlmm.core.protocols import UnitRegistry
from streamlmm.online import (
    DictRegistry, GlobalState, ModelConfig, Observation, OnlineLMMSolution, fit_stream,
)


# ═══════════════════════════════════════════════════════════════════════
# Recovery
# ═══════════════════════════════════════════════════════════════════════


class TestRecovery:

    def test_random_intercept(self, random_intercept_stream):
        """y = 5 + 2t + b_j + e with tau = 1, sigma = 0.5."""
        solution = fit_stream(random_intercept_stream)
        assert isinstance(solution, OnlineLMMSolution)
        assert solution.parameters_available
        assert solution.regime == 'invertible'
        assert solution.n_obs == 1000
        assert solution.n_units == 100

        assert abs(solution.B_hat[1] - 2.0) < 0.2
        assert abs(solution.B_hat[0] - 5.0) < 1.0
        assert 0.1 < solution.sigsq_hat < 0.6
        assert 0.3 < solution.tausq_hat[0, 0] < 3.0
        assert solution.warnings == ()

    def test_slope_from_unit_grouped_order(self, stream_factory):
        stream = stream_factory(60, 10, beta=np.array([5.0, 2.0]), tau_sd=1.0, sigma=0.5)
        solution = fit_stream(stream)
        assert abs(solution.B_hat[1] - 2.0) < 0.2

    def test_random_effects_track_units(self, random_intercept_stream):
        solution = fit_stream(random_intercept_stream)
        assert len(solution.random_effects) == 100
        mu = solution.random_effect('unit-3')
        assert mu.shape == (1,)
        np.testing.assert_array_equal(mu, solution.random_effects['unit-3'])

    def test_observation_records_accepted(self, small_stream):
        records = [Observation.validate(x, z, y, uid, 2, 2) for x, z, y, uid in small_stream]
        from_records = fit_stream(records)
        from_tuples = fit_stream(small_stream)
        np.testing.assert_array_equal(from_records.B_hat, from_tuples.B_hat)


# ═══════════════════════════════════════════════════════════════════════
# Bootstrap-only streams
# ═══════════════════════════════════════════════════════════════════════


class TestNoEstimates:

    def test_collinear_stream_warns(self):
        stream = [([1.0, 1.0], [1.0], float(k), k % 3) for k in range(10)]
        solution = fit_stream(stream)
        assert not solution.parameters_available
        assert solution.regime == 'bootstrapping'
        np.testing.assert_array_equal(solution.B_hat, [1.0, 1.0])
        assert any("starting values" in w for w in solution.warnings)

    def test_empty_stream(self):
        with pytest.raises(ValidationError, match="empty"):
            fit_stream([])

    def test_empty_stream_with_state(self, small_stream):
        first = fit_stream(small_stream)
        again = fit_stream([], global_state=first.global_state, registry=first.registry)
        assert again.n_obs == first.n_obs
        np.testing.assert_array_equal(again.B_hat, first.B_hat)


# ═══════════════════════════════════════════════════════════════════════
# Error policies
# ═══════════════════════════════════════════════════════════════════════


class TestErrorPolicy:

    @pytest.fixture
    def dirty_stream(self, small_stream):
        stream = list(small_stream)
        x, z, _, uid = stream[2]
        stream[2] = (x, z, float('nan'), uid)
        _, z, y, uid = stream[4]
        stream[4] = ([1.0, 2.0, 3.0], z, y, uid)
        return stream

    def test_skip(self, dirty_stream):
        solution = fit_stream(dirty_stream, on_error='skip')
        assert solution.info['skipped'] == (3, 5)
        assert solution.n_obs == len(dirty_stream) - 2
        assert any("Skipped 2" in w for w in solution.warnings)

    def test_raise_keeps_registry_at_last_success(self, dirty_stream):
        registry = DictRegistry()
        with pytest.raises(ValidationError, match="y"):
            fit_stream(dirty_stream, registry=registry)
        assert len(registry) == 2
        assert all(registry.get(uid).nj == 1 for uid in registry)

    def test_skip_malformed_first_item(self, small_stream):
        stream = [(None, None, 0.0, 'bad')] + list(small_stream)
        solution = fit_stream(stream, on_error='skip')
        reference = fit_stream(small_stream)
        assert solution.info['skipped'] == (1,)
        assert solution.global_state.p == 2
        assert solution.n_obs == len(small_stream)
        np.testing.assert_array_equal(solution.B_hat, reference.B_hat)

    def test_skip_ragged_first_item(self, small_stream):
        stream = [([[1.0], [1.0, 2.0]], [1.0, 0.0], 0.0, 'bad')] + list(small_stream)
        solution = fit_stream(stream, on_error='skip')
        assert solution.info['skipped'] == (1,)
        assert solution.n_obs == len(small_stream)

    def test_non_numeric_first_item_raises_validation_error(self):
        with pytest.raises(ValidationError, match="x"):
            fit_stream([(['a', 'b'], [1.0], 0.0, 'u')])

    def test_every_item_skipped(self):
        with pytest.raises(ValidationError, match="empty"):
            fit_stream([(None, [1.0], 0.0, 'u')], on_error='skip')

    def test_unknown_policy(self, small_stream):
        with pytest.raises(ValidationError, match="on_error"):
            fit_stream(small_stream, on_error='ignore')

    def test_malformed_item(self):
        with pytest.raises(ValidationError, match="expected"):
            fit_stream([([1.0], [1.0], 2.0)])


# ═══════════════════════════════════════════════════════════════════════
# Resume
# ═══════════════════════════════════════════════════════════════════════


class TestResume:

    def test_two_halves_equal_one_pass(self, small_stream):
        whole = fit_stream(small_stream)

        half = len(small_stream) // 2
        first = fit_stream(small_stream[:half])
        second = fit_stream(small_stream[half:], global_state=first.global_state,
                            registry=first.registry)

        assert second.n_obs == whole.n_obs
        assert second.n_units == whole.n_units
        np.testing.assert_array_equal(second.B_hat, whole.B_hat)
        np.testing.assert_array_equal(second.tausq_hat, whole.tausq_hat)
        assert second.sigsq_hat == whole.sigsq_hat

    def test_resume_does_not_modify_state(self, small_stream):
        first = fit_stream(small_stream[:10])
        before = first.global_state.to_dict()
        registry = DictRegistry({u.id: u for u in first.registry.states()})
        fit_stream(small_stream[10:], global_state=first.global_state, registry=registry)
        assert first.global_state.to_dict() == before

    def test_resume_without_registry_rejected(self, small_stream):
        first = fit_stream(small_stream[:10])
        with pytest.raises(ValidationError, match="registry"):
            fit_stream(small_stream[10:], global_state=first.global_state)

    def test_fresh_state_without_registry(self, small_stream):
        state = GlobalState.from_config(ModelConfig.validate(2, 2))
        solution = fit_stream(small_stream, global_state=state)
        np.testing.assert_array_equal(solution.B_hat, fit_stream(small_stream).B_hat)

    def test_config_must_match_state(self, small_stream):
        first = fit_stream(small_stream[:10])
        with pytest.raises(ValidationError, match="config"):
            fit_stream(small_stream[10:], global_state=first.global_state,
                       config=ModelConfig.validate(3, 2))


# ═══════════════════════════════════════════════════════════════════════
# Registries
# ═══════════════════════════════════════════════════════════════════════


class LookupOnlyRegistry:
    """Registry that cannot enumerate its units."""

    def __init__(self):
        self._data = {}

    def get(self, unit_id):
        return self._data.get(unit_id)

    def put(self, unit_id, state):
        self._data[unit_id] = state


class TestRegistries:

    def test_dict_registry_satisfies_protocol(self):
        assert isinstance(DictRegistry(), UnitRegistry)
        assert isinstance(LookupOnlyRegistry(), UnitRegistry)

    def test_custom_registry(self, small_stream):
        registry = LookupOnlyRegistry()
        solution = fit_stream(small_stream, registry=registry)
        reference = fit_stream(small_stream)
        np.testing.assert_array_equal(solution.B_hat, reference.B_hat)
        assert solution.random_effects == {}
        np.testing.assert_array_equal(solution.random_effect('unit-0'),
                                      reference.random_effect('unit-0'))

    def test_dict_registry_container(self):
        registry = DictRegistry()
        assert registry.get('a') is None
        assert 'a' not in registry
        registry.put('a', 'state')
        assert 'a' in registry
        assert len(registry) == 1
        assert list(registry) == ['a']
        assert registry.states() == ['state']
        assert repr(registry) == "DictRegistry(n_units=1)"


# ═══════════════════════════════════════════════════════════════════════
# Solution
# ═══════════════════════════════════════════════════════════════════════


class TestSolution:

    @pytest.fixture
    def solution(self, small_stream):
        return fit_stream(small_stream)

    def test_unknown_unit(self, solution):
        with pytest.raises(KeyError):
            solution.random_effect('no-such-unit')

    def test_info_and_timing(self, solution):
        assert solution.backend_name == 'online_em'
        assert solution.info['algorithm'] == 'online_em'
        assert solution.info['n_obs'] == 40
        assert solution.info['skipped'] == ()
        assert {'total_seconds', 'raw_update', 'e_step', 'm_step'} <= set(solution.timing)

    def test_tau_std(self, solution):
        np.testing.assert_allclose(solution.tau_std ** 2, np.diag(solution.tausq_hat))

    def test_summary(self, solution):
        text = solution.summary()
        assert "Fixed Effects" in text
        assert "B[1]" in text
        assert "Residual variance" in text

    def test_to_dict_is_json_serializable(self, solution):
        data = json.loads(json.dumps(solution.to_dict()))
        assert data['n_obs'] == 40
        assert len(data['B_hat']) == 2
        assert data['regime'] == 'invertible'

    def test_repr(self, solution):
        assert repr(solution).startswith("OnlineLMMSolution(n_obs=40")

    def test_params_are_snapshots(self, solution):
        B = solution.B_hat.copy()
        solution.global_state.B_hat[0] += 100.0
        np.testing.assert_array_equal(solution.B_hat, B)

    def test_logging(self, small_stream, caplog):
        caplog.set_level(logging.INFO, logger='streamlmm.online.solvers')
        fit_stream(small_stream)
        assert "Stream fit finished: n=40, J=8" in caplog.text
