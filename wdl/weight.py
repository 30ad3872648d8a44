"""
Weight initializers for a freshly built wide and deep model
"""
from abc import ABC, abstractmethod

import numpy as np


class Initializer(ABC):
    """Produce float32 initial weights of an exact shape"""

    @abstractmethod
    def init_scalar(self) -> np.float32:
        pass

    @abstractmethod
    def init_vector(self, length) -> np.ndarray:
        pass

    @abstractmethod
    def init_matrix(self, rows, cols) -> np.ndarray:
        pass


def _make_rng(seed):
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


class RangeRandom(Initializer):
    """Uniform draws in ``[min_value, max_value)``"""

    def __init__(self, min_value, max_value, seed=None):
        if not (np.isfinite(min_value) and np.isfinite(max_value)):
            raise ValueError(f"Range bounds must be finite, got [{min_value}, {max_value}]")
        if min_value > max_value:
            raise ValueError(f"min_value {min_value} is greater than max_value {max_value}")
        self.min_value = float(min_value)
        self.max_value = float(max_value)
        self.rng = _make_rng(seed)

    def _draw(self, shape):
        values = self.rng.uniform(self.min_value, self.max_value, size=shape)
        return values.astype(np.float32)

    def init_scalar(self):
        return np.float32(self._draw(()))

    def init_vector(self, length):
        return self._draw((length,))

    def init_matrix(self, rows, cols):
        return self._draw((rows, cols))


class Randomizer(ABC):
    """Statistical randomizer which may take the current value as a hint"""

    def __init__(self, seed=None):
        self.rng = _make_rng(seed)

    @abstractmethod
    def randomize(self, value):
        pass

    def randomize_array(self, values):
        flat = values.reshape(-1)
        for i in range(flat.shape[0]):
            flat[i] = self.randomize(flat[i])
        return values


class GaussianRandomizer(Randomizer):

    def __init__(self, mean=0.0, stddev=1.0, seed=None):
        super().__init__(seed)
        self.mean = mean
        self.stddev = stddev

    def randomize(self, value):
        return self.rng.normal(self.mean, self.stddev)


class UniformRandomizer(Randomizer):

    def __init__(self, min_value=-1.0, max_value=1.0, seed=None):
        super().__init__(seed)
        self.min_value = min_value
        self.max_value = max_value

    def randomize(self, value):
        return self.rng.uniform(self.min_value, self.max_value)


class WeightRandom(Initializer):
    """Initializer delegating every draw to a ``Randomizer``"""

    # hint passed to randomizers which expect a current value, fresh init has none
    NO_USE = 666.0

    def __init__(self, randomizer):
        self.randomizer = randomizer

    def init_scalar(self):
        return np.float32(self.randomizer.randomize(self.NO_USE))

    def init_vector(self, length):
        weight = np.full((length,), self.NO_USE, dtype=np.float32)
        return self.randomizer.randomize_array(weight)

    def init_matrix(self, rows, cols):
        weight = np.full((rows, cols), self.NO_USE, dtype=np.float32)
        return self.randomizer.randomize_array(weight)


def build_initializer(name='range', min_value=-0.1, max_value=0.1, seed=None):
    """Initializer by name: 'range', 'gaussian' or 'uniform'"""
    name = (name or 'range').lower()
    if name == 'range':
        return RangeRandom(min_value, max_value, seed=seed)
    if name == 'gaussian':
        return WeightRandom(GaussianRandomizer(0.0, max_value, seed=seed))
    if name == 'uniform':
        return WeightRandom(UniformRandomizer(min_value, max_value, seed=seed))
    raise ValueError(f"Unknown weight initializer: {name}")
