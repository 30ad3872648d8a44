"""
Worker side of synchronous wide and deep training
"""
import logging

import numpy as np
import torch
import torch.nn.functional as F
from torch.utils.data import DataLoader, Dataset

from wdl.params import SerializationType, WDLParams

logger = logging.getLogger(__name__)


class WDLDataset(Dataset):
    """Normalized records of one data partition"""

    def __init__(self, data):
        self.dense = torch.from_numpy(np.ascontiguousarray(data.dense, dtype=np.float32))
        self.embed = torch.from_numpy(np.ascontiguousarray(data.embed, dtype=np.int64))
        self.wide = torch.from_numpy(np.ascontiguousarray(data.wide, dtype=np.int64))
        self.target = torch.from_numpy(np.ascontiguousarray(data.target, dtype=np.float32))
        self.weight = torch.from_numpy(np.ascontiguousarray(data.weight, dtype=np.float32))

    def __len__(self):
        return len(self.target)

    def __getitem__(self, idx):
        return self.dense[idx], self.embed[idx], self.wide[idx], self.target[idx], self.weight[idx]


def weighted_bce(logits, target, weight):
    """Sum of weighted binary cross entropy"""
    loss = F.binary_cross_entropy_with_logits(logits.reshape(-1), target, reduction='none')
    return (loss * weight).sum()


class WDLWorker:
    """
    Computes gradients of one data partition against the broadcast model.

    Gradients and errors are sums over records; the master divides by the
    aggregated train count.
    """

    def __init__(self, model_config, train_data, validation_data=None, batch_size=4096):
        self.model = model_config.build_model()
        self.train_loader = DataLoader(WDLDataset(train_data), batch_size=batch_size, shuffle=False)
        self.validation_loader = None
        if validation_data is not None and len(validation_data.target) > 0:
            self.validation_loader = DataLoader(WDLDataset(validation_data), batch_size=batch_size, shuffle=False)

    def compute(self, master_params):
        if master_params.weights is None:
            raise ValueError("Master params carry no model weights")
        self.model.load_weights(master_params.weights)

        self.model.train()
        self.model.zero_grad()
        train_error, train_count = 0.0, 0.0
        for dense, embed, wide, target, weight in self.train_loader:
            loss = weighted_bce(self.model.logits(dense, embed, wide), target, weight)
            loss.backward()
            train_error += loss.item()
            train_count += weight.sum().item()

        gradients = {}
        for name, param in self.model.named_parameters():
            grad = param.grad if param.grad is not None else torch.zeros_like(param)
            gradients[name] = grad.detach().cpu().numpy().copy()

        validation_error, validation_count = 0.0, 0.0
        if self.validation_loader is not None:
            self.model.eval()
            with torch.no_grad():
                for dense, embed, wide, target, weight in self.validation_loader:
                    validation_error += weighted_bce(self.model.logits(dense, embed, wide), target, weight).item()
                    validation_count += weight.sum().item()

        return WDLParams(
            gradients=gradients,
            train_count=train_count,
            validation_count=validation_count,
            train_error=train_error,
            validation_error=validation_error,
            serialization_type=SerializationType.GRADIENTS,
            iteration=master_params.iteration + 1)
