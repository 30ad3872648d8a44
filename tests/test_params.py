from functools import reduce
from itertools import permutations

import numpy as np
import pytest

from wdl.params import SerializationType, WDLParams


def _params(seed, count):
    rng = np.random.default_rng(seed)
    return WDLParams(
        gradients={'w': rng.normal(size=(3, 2)).astype(np.float32),
                   'b': rng.normal(size=2).astype(np.float32)},
        train_count=count,
        validation_count=count / 2,
        train_error=0.5 * count,
        validation_error=0.25 * count,
        iteration=4)


def test_combine_sums_gradients_and_counters():
    a, b = _params(1, 10), _params(2, 30)
    c = a.combine(b)
    np.testing.assert_allclose(c.gradients['w'], a.gradients['w'].astype(np.float64) + b.gradients['w'])
    assert c.train_count == 40
    assert c.validation_count == 20
    assert c.train_error == pytest.approx(20.0)
    assert c.serialization_type is SerializationType.GRADIENTS
    assert c.iteration == 4


def test_combine_leaves_inputs_untouched():
    a, b = _params(1, 10), _params(2, 30)
    before = a.gradients['w'].copy()
    a.combine(b)
    np.testing.assert_array_equal(a.gradients['w'], before)


def test_aggregation_is_order_independent():
    results = [_params(seed, seed * 10 + 1) for seed in range(4)]
    reference = reduce(WDLParams.combine, results)
    for order in permutations(results):
        aggregate = reduce(WDLParams.combine, order)
        assert aggregate.train_count == reference.train_count
        assert aggregate.train_error == pytest.approx(reference.train_error)
        for name in reference.gradients:
            np.testing.assert_allclose(aggregate.gradients[name], reference.gradients[name], rtol=1e-12)


def test_combine_rejects_different_parameters():
    a = _params(1, 10)
    b = _params(2, 10)
    del b.gradients['b']
    with pytest.raises(ValueError):
        a.combine(b)


def test_combine_rejects_different_shapes():
    a = _params(1, 10)
    b = _params(2, 10)
    b.gradients['w'] = np.zeros((2, 3), dtype=np.float32)
    with pytest.raises(ValueError):
        a.combine(b)


def test_mean_errors():
    params = WDLParams(train_error=3.0, train_count=4.0)
    assert params.mean_train_error == 0.75
    assert params.mean_validation_error == 0.0
