"""
Tests for GlobalState / UnitState construction, copying and persistence.
"""

import json

import numpy as np
import pytest

from streamlmm.core.exceptions import ValidationError
from streamlmm.online import (
    DictRegistry, GlobalState, ModelConfig, UnitState, fit_stream,
)


class TestGlobalStateFromConfig:

    def test_non_informative(self):
        state = GlobalState.from_config(ModelConfig.validate(3, 2))
        np.testing.assert_array_equal(state.B_hat, np.ones(3))
        np.testing.assert_array_equal(state.tausq_hat, np.eye(2))
        assert state.sigsq_hat == 1.0
        np.testing.assert_array_equal(state.Xsq, np.zeros((3, 3)))
        np.testing.assert_array_equal(state.T2, np.zeros((2, 2)))
        assert state.T3 == 0.0
        assert state.n == 0 and state.J == 0
        assert state.Xinv is None
        assert state.regime == 'uninitialized'
        assert not state.parameters_available

    def test_prior_mass(self):
        config = ModelConfig.validate(
            2, 1, prior_B=[2.0, -1.0], prior_tausq=0.5, prior_sigsq=3.0,
            prior_weight_obs=4.0, prior_weight_units=2.0,
        )
        state = GlobalState.from_config(config)
        np.testing.assert_array_equal(state.B_hat, [2.0, -1.0])
        np.testing.assert_array_equal(state.Xsq, 4.0 * np.eye(2))
        np.testing.assert_array_equal(state.XYvec, [8.0, -4.0])
        np.testing.assert_array_equal(state.T2, [[1.0]])
        assert state.T3 == 12.0
        assert state.n_prior == 4.0
        assert state.J_prior == 2.0

    def test_copy_is_deep(self):
        state = GlobalState.from_config(ModelConfig.validate(2, 1))
        clone = state.copy()
        clone.B_hat[0] = 99.0
        clone.T2[0, 0] = 5.0
        assert state.B_hat[0] == 1.0
        assert state.T2[0, 0] == 0.0


class TestUnitState:

    def test_empty(self):
        unit = UnitState.empty('s1', 3, 2)
        assert unit.p == 3 and unit.q == 2
        assert unit.zxmat.shape == (3, 2)
        assert unit.Cinv is None
        assert unit.nj == 0

    def test_copy_is_deep(self):
        unit = UnitState.empty('s1', 1, 1)
        clone = unit.copy()
        clone.Zsq[0, 0] = 3.0
        assert unit.Zsq[0, 0] == 0.0


class TestPersistence:
    """States written to JSON and read back continue the fit exactly."""

    def test_round_trip_then_continue(self, small_stream):
        half = len(small_stream) // 2
        first = fit_stream(small_stream[:half])

        state_json = json.dumps(first.global_state.to_dict())
        units_json = json.dumps([u.to_dict() for u in first.registry.states()])

        state = GlobalState.from_dict(json.loads(state_json))
        registry = DictRegistry({d['id']: UnitState.from_dict(d) for d in json.loads(units_json)})

        restored = fit_stream(small_stream[half:], global_state=state, registry=registry)
        direct = fit_stream(small_stream[half:], global_state=first.global_state,
                            registry=first.registry)

        np.testing.assert_array_equal(restored.B_hat, direct.B_hat)
        np.testing.assert_array_equal(restored.tausq_hat, direct.tausq_hat)
        assert restored.sigsq_hat == direct.sigsq_hat

    def test_bootstrapping_state_round_trip(self):
        state = GlobalState.from_config(ModelConfig.validate(2, 1))
        restored = GlobalState.from_dict(json.loads(json.dumps(state.to_dict())))
        assert restored.Xinv is None
        assert restored.regime == 'uninitialized'

    def test_missing_keys(self):
        data = GlobalState.from_config(ModelConfig.validate(1, 1)).to_dict()
        del data['T3']
        with pytest.raises(ValidationError, match="missing keys"):
            GlobalState.from_dict(data)

        unit = UnitState.empty('a', 1, 1).to_dict()
        del unit['zy']
        with pytest.raises(ValidationError, match="missing keys"):
            UnitState.from_dict(unit)

    def test_inconsistent_shapes(self):
        data = GlobalState.from_config(ModelConfig.validate(2, 1)).to_dict()
        data['B_hat'] = [1.0, 2.0, 3.0]
        with pytest.raises(ValidationError, match="B_hat"):
            GlobalState.from_dict(data)

        unit = UnitState.empty('a', 2, 1).to_dict()
        unit['zxmat'] = [[1.0, 2.0]]
        with pytest.raises(ValidationError, match="zxmat"):
            UnitState.from_dict(unit)
