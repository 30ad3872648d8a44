"""
Payload exchanged between master and workers each iteration
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import numpy as np


class SerializationType(Enum):
    WEIGHTS = 'WEIGHTS'
    GRADIENTS = 'GRADIENTS'


@dataclass
class WDLParams:
    """
    Workers fill ``gradients`` (summed over their records) and the counters;
    the master fills ``weights`` with a snapshot of the global model.
    """

    gradients: Dict[str, np.ndarray] = field(default_factory=dict)
    weights: Optional[Dict[str, np.ndarray]] = None
    train_count: float = 0.0
    validation_count: float = 0.0
    train_error: float = 0.0
    validation_error: float = 0.0
    serialization_type: SerializationType = SerializationType.GRADIENTS
    iteration: int = 0

    def combine(self, other):
        """Sum of two worker payloads; associative and commutative"""
        if set(self.gradients) != set(other.gradients):
            raise ValueError(
                f"Cannot combine gradients of different parameters: "
                f"{sorted(set(self.gradients) ^ set(other.gradients))}")
        gradients = {}
        for name, grad in self.gradients.items():
            other_grad = other.gradients[name]
            if np.shape(grad) != np.shape(other_grad):
                raise ValueError(
                    f"Gradient shapes of {name} differ: {np.shape(grad)} vs {np.shape(other_grad)}")
            gradients[name] = np.add(grad, other_grad, dtype=np.float64)
        return WDLParams(
            gradients=gradients,
            train_count=self.train_count + other.train_count,
            validation_count=self.validation_count + other.validation_count,
            train_error=self.train_error + other.train_error,
            validation_error=self.validation_error + other.validation_error,
            serialization_type=SerializationType.GRADIENTS,
            iteration=max(self.iteration, other.iteration),
        )

    @property
    def mean_train_error(self):
        return self.train_error / self.train_count if self.train_count > 0 else 0.0

    @property
    def mean_validation_error(self):
        return self.validation_error / self.validation_count if self.validation_count > 0 else 0.0
