import logging

import numpy as np
import pytest

from wdl.config import TrainingConfig
from wdl.master import MasterPhase, MasterState, WDLMaster, build_optimizer, init_state, master_round
from wdl.normalizer import NormType
from wdl.params import SerializationType, WDLParams
from wdl.serialization import save_model
from wdl.weight import RangeRandom


def _ones_result(model, count=1.0):
    return WDLParams(
        gradients={name: np.ones(value.shape, dtype=np.float32)
                   for name, value in model.weights_snapshot().items()},
        train_count=count,
        train_error=0.5 * count)


def test_first_round_initializes_and_ignores_results(model_config, train_config):
    master = WDLMaster(model_config, train_config).init()
    assert master.phase is MasterPhase.AWAITING_FIRST_ROUND

    garbage = WDLParams(gradients={'nope': np.ones(3)}, train_count=5)
    params = master.do_compute([garbage])

    assert params.iteration == 0
    assert params.serialization_type is SerializationType.WEIGHTS
    assert master.phase is MasterPhase.AGGREGATING
    assert master.iteration == 1
    assert set(params.weights) == set(dict(master.model.named_parameters()))
    for name, value in params.weights.items():
        assert np.any(value != 0), name


def test_initialization_is_seeded(model_config):
    config = TrainingConfig(seed=123)
    a = WDLMaster(model_config, config).init().do_compute([])
    b = WDLMaster(model_config, config).init().do_compute([])
    for name, value in a.weights.items():
        np.testing.assert_array_equal(value, b.weights[name])


def test_broadcast_is_a_snapshot(model_config, train_config):
    master = WDLMaster(model_config, train_config).init()
    params = master.do_compute([])
    before = {k: v.copy() for k, v in params.weights.items()}
    master.do_compute([_ones_result(master.model)])
    for name, value in params.weights.items():
        np.testing.assert_array_equal(value, before[name])


def test_round_applies_one_mean_gradient_step(model_config):
    config = TrainingConfig(optimizer='sgd', learning_rate=0.05)
    master = WDLMaster(model_config, config).init()
    start = master.do_compute([]).weights

    # two workers, one record each, gradient sums of ones -> mean gradient of ones
    params = master.do_compute([_ones_result(master.model), _ones_result(master.model)])

    assert params.iteration == 1
    assert params.train_count == 2
    assert params.mean_train_error == pytest.approx(0.5)
    assert master.iteration == 2
    for name, value in params.weights.items():
        expected = start[name] - 0.05 * (1.0 + model_config.l2_reg * start[name])
        np.testing.assert_allclose(value, expected, rtol=1e-5, atol=1e-6)


def test_mismatched_gradients_fail_the_master(model_config, train_config):
    master = WDLMaster(model_config, train_config).init()
    master.do_compute([])
    bad = _ones_result(master.model)
    bad.gradients['wide_bias'] = np.ones(3, dtype=np.float32)
    with pytest.raises(ValueError):
        master.do_compute([bad])
    assert master.phase is MasterPhase.FAILED


def test_inconsistent_worker_results_fail_the_master(model_config, train_config):
    master = WDLMaster(model_config, train_config).init()
    master.do_compute([])
    partial = _ones_result(master.model)
    del partial.gradients['wide_bias']
    with pytest.raises(ValueError):
        master.do_compute([_ones_result(master.model), partial])
    assert master.phase is MasterPhase.FAILED


def test_no_worker_results(model_config, train_config):
    master = WDLMaster(model_config, train_config).init()
    master.do_compute([])
    with pytest.raises(ValueError):
        master.do_compute([])
    assert master.phase is MasterPhase.FAILED


def test_round_before_init_is_rejected(model_config, train_config):
    with pytest.raises(RuntimeError):
        master_round(MasterState(model_config, train_config), [])
    master = WDLMaster(model_config, train_config)
    with pytest.raises(RuntimeError):
        master.do_compute([])
    assert master.phase is MasterPhase.UNINITIALIZED


def test_double_init_is_rejected(model_config, train_config):
    master = WDLMaster(model_config, train_config).init()
    with pytest.raises(RuntimeError):
        master.init()


def test_halt_converges(model_config, train_config):
    master = WDLMaster(model_config, train_config).init()
    master.do_compute([])
    master.halt()
    assert master.phase is MasterPhase.CONVERGED
    with pytest.raises(RuntimeError):
        master.do_compute([_ones_result(master.model)])


def test_master_round_returns_new_state(model_config, train_config):
    state = init_state(model_config, train_config, RangeRandom(-0.3, 0.3, seed=1))
    new_state, params = master_round(state, [])
    assert state.phase is MasterPhase.AWAITING_FIRST_ROUND
    assert new_state.phase is MasterPhase.AGGREGATING
    assert new_state is not state
    assert np.all(np.abs(params.weights['wide_bias']) <= 0.3)


def test_continuous_training_recovers_checkpoint(tmp_path, model_config, initialized_model, columns):
    path = tmp_path / 'model.wdl'
    save_model(str(path), initialized_model, columns, NormType.ZSCALE)
    config = TrainingConfig(continuous_training=True, checkpoint_path=str(path))

    params = WDLMaster(model_config, config).init().do_compute([])

    for name, value in initialized_model.weights_snapshot().items():
        np.testing.assert_array_equal(params.weights[name], value)


@pytest.mark.parametrize("content", [None, b'', b'\x1f\x8b not gzip', b'\x00\x00\x00\x01\x00'])
def test_unreadable_checkpoint_falls_back_to_initialization(tmp_path, model_config, content, caplog):
    path = tmp_path / 'model.wdl'
    if content is not None:
        path.write_bytes(content)
    config = TrainingConfig(continuous_training=True, checkpoint_path=str(path), seed=5)

    with caplog.at_level(logging.WARNING, logger='wdl.master'):
        params = WDLMaster(model_config, config).init().do_compute([])

    assert 'do random initialization' in caplog.text
    expected = WDLMaster(model_config, TrainingConfig(seed=5)).init().do_compute([])
    for name, value in expected.weights.items():
        np.testing.assert_array_equal(params.weights[name], value)


def test_checkpoint_of_other_shape_falls_back(tmp_path, columns, model_config, caplog):
    from wdl.config import ModelConfig
    other = ModelConfig(columns, hidden_nodes=[3], act_funcs=['relu']).build_model()
    path = tmp_path / 'model.wdl'
    save_model(str(path), other, columns, NormType.ZSCALE)
    config = TrainingConfig(continuous_training=True, checkpoint_path=str(path))

    with caplog.at_level(logging.WARNING, logger='wdl.master'):
        params = WDLMaster(model_config, config).init().do_compute([])

    assert 'do random initialization' in caplog.text
    assert params.weights['deep.0.weight'].shape == (8, 10)


def test_unknown_optimizer(model_config):
    with pytest.raises(ValueError):
        build_optimizer(model_config.build_model(), TrainingConfig(optimizer='lbfgs'))


def test_halt_needs_a_running_master(model_config, train_config):
    master = WDLMaster(model_config, train_config)
    with pytest.raises(RuntimeError):
        master.halt()
    assert master.phase is MasterPhase.UNINITIALIZED

    master.init()
    with pytest.raises(RuntimeError):
        master.halt()

    master.do_compute([])
    with pytest.raises(ValueError):
        master.do_compute([])
    with pytest.raises(RuntimeError):
        master.halt()
    assert master.phase is MasterPhase.FAILED
