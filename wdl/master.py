"""
Master side of synchronous wide and deep training.

Each round the master receives every worker's result (barrier), combines them
into one aggregate, applies exactly one optimizer step to the global model and
broadcasts a snapshot of the new weights. Iteration 0 only initializes or
recovers the model.
"""
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from functools import reduce
from typing import Any, Optional

import torch
import torch.optim as optim

from wdl.params import SerializationType, WDLParams
from wdl.serialization import load_model
from wdl.weight import build_initializer

logger = logging.getLogger(__name__)


class MasterPhase(Enum):
    UNINITIALIZED = 'UNINITIALIZED'
    AWAITING_FIRST_ROUND = 'AWAITING_FIRST_ROUND'
    AGGREGATING = 'AGGREGATING'
    CONVERGED = 'CONVERGED'
    FAILED = 'FAILED'


def build_optimizer(model, train_config):
    name = train_config.OPTIMIZER.lower()
    lr = train_config.LEARNING_RATE
    # L2 regularization of the model is applied as weight decay
    if name == 'adam':
        return optim.Adam(model.parameters(), lr=lr, weight_decay=model.l2_reg)
    if name == 'sgd':
        return optim.SGD(model.parameters(), lr=lr, weight_decay=model.l2_reg)
    if name == 'adagrad':
        return optim.Adagrad(model.parameters(), lr=lr, weight_decay=model.l2_reg)
    raise ValueError(f"Unknown optimizer: {train_config.OPTIMIZER}")


@dataclass
class MasterState:
    model_config: Any
    train_config: Any
    model: Optional[torch.nn.Module] = None
    optimizer: Optional[optim.Optimizer] = None
    initializer: Any = None
    phase: MasterPhase = MasterPhase.UNINITIALIZED
    iteration: int = 0


def init_state(model_config, train_config, initializer=None):
    """Build the global model and its optimizer, weights are not set yet"""
    model = model_config.build_model()
    if initializer is None:
        initializer = build_initializer(train_config.INITIALIZER, train_config.INIT_MIN,
                                        train_config.INIT_MAX, seed=train_config.SEED)
    logger.info(f"Wide and deep model built: {len(model.dense_column_ids)} dense, "
                f"{len(model.embed_column_ids)} embed, {len(model.wide_column_ids)} wide columns, "
                f"hidden {model_config.hidden_nodes}, {model.num_parameters()} parameters")
    return MasterState(
        model_config=model_config,
        train_config=train_config,
        model=model,
        optimizer=build_optimizer(model, train_config),
        initializer=initializer,
        phase=MasterPhase.AWAITING_FIRST_ROUND,
        iteration=0)


def _recover_model(state):
    path = state.train_config.CHECKPOINT_PATH
    if not path:
        logger.warning("Continuous training enabled but no checkpoint path set, do random initialization.")
        return False
    try:
        existing = load_model(path, strict_version=True)
        state.model.update_weights(existing.model)
    except (OSError, ValueError) as e:
        logger.warning(f"Continuous training enabled but existing model load failed ({e}), "
                       f"do random initialization.")
        return False
    logger.info(f"Recovered wide and deep weights from {path}")
    return True


def _init_or_recover(state):
    if not (state.train_config.CONTINUOUS_TRAINING and _recover_model(state)):
        state.model.init_weights(state.initializer)
    new_state = dataclasses.replace(state, phase=MasterPhase.AGGREGATING, iteration=1)
    params = WDLParams(weights=state.model.weights_snapshot(),
                       serialization_type=SerializationType.WEIGHTS, iteration=0)
    return new_state, params


def _apply_gradients(state, aggregation):
    params = dict(state.model.named_parameters())
    if set(params) != set(aggregation.gradients):
        raise ValueError(
            f"Worker gradients do not match model parameters: "
            f"{sorted(set(params) ^ set(aggregation.gradients))}")
    # mean gradient over all training records
    scale = 1.0 / aggregation.train_count if aggregation.train_count > 0 else 1.0
    state.optimizer.zero_grad()
    for name, param in params.items():
        grad = torch.as_tensor(aggregation.gradients[name] * scale, dtype=param.dtype)
        if tuple(grad.shape) != tuple(param.shape):
            raise ValueError(f"Gradient of {name} has shape {tuple(grad.shape)}, expected {tuple(param.shape)}")
        param.grad = grad
    state.optimizer.step()


def master_round(state, worker_results):
    """
    One synchronous round: ``(state, worker results) -> (new state, broadcast)``.

    Raises:
        RuntimeError: the master is not in a phase which accepts rounds
        ValueError: worker results are missing or do not fit the model
    """
    if state.phase == MasterPhase.AWAITING_FIRST_ROUND:
        # workers have computed nothing meaningful yet, their results are ignored
        return _init_or_recover(state)
    if state.phase != MasterPhase.AGGREGATING:
        raise RuntimeError(f"Master cannot run a round in phase {state.phase.value}")

    results = list(worker_results or [])
    if not results:
        raise ValueError(f"No worker results for iteration {state.iteration}")
    aggregation = reduce(WDLParams.combine, results)
    _apply_gradients(state, aggregation)

    params = WDLParams(
        weights=state.model.weights_snapshot(),
        train_count=aggregation.train_count,
        validation_count=aggregation.validation_count,
        train_error=aggregation.train_error,
        validation_error=aggregation.validation_error,
        serialization_type=SerializationType.WEIGHTS,
        iteration=state.iteration)
    return dataclasses.replace(state, iteration=state.iteration + 1), params


class WDLMaster:
    """
    Stateful wrapper of ``master_round`` for a training job.

    Usage:
        master = WDLMaster(model_config, train_config)
        master.init()
        params = master.do_compute([])          # iteration 0, broadcast initial weights
        params = master.do_compute(results)     # iteration >= 1
    """

    def __init__(self, model_config, train_config, initializer=None):
        self.state = MasterState(model_config=model_config, train_config=train_config,
                                 initializer=initializer)

    @property
    def phase(self):
        return self.state.phase

    @property
    def iteration(self):
        return self.state.iteration

    @property
    def model(self):
        return self.state.model

    def init(self):
        if self.state.phase != MasterPhase.UNINITIALIZED:
            raise RuntimeError(f"Master already initialized, phase {self.state.phase.value}")
        self.state = init_state(self.state.model_config, self.state.train_config, self.state.initializer)
        return self

    def do_compute(self, worker_results=()):
        try:
            self.state, params = master_round(self.state, worker_results)
        except ValueError:
            self.state = dataclasses.replace(self.state, phase=MasterPhase.FAILED)
            logger.error(f"Aggregation failed at iteration {self.state.iteration}, master stopped")
            raise
        if params.iteration > 0:
            logger.info(f"Iteration {params.iteration}: train error {params.mean_train_error:.6f} "
                        f"({params.train_count:.0f} records), validation error "
                        f"{params.mean_validation_error:.6f} ({params.validation_count:.0f} records)")
        return params

    def halt(self):
        """Stop the job, the loop driver decided training converged"""
        if self.state.phase != MasterPhase.AGGREGATING:
            raise RuntimeError(f"Master cannot halt in phase {self.state.phase.value}")
        self.state = dataclasses.replace(self.state, phase=MasterPhase.CONVERGED)
        logger.info(f"Master halted after {self.state.iteration - 1} iterations")
