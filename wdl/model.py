"""
Wide and deep model graph
"""
import logging
from collections import namedtuple

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

logger = logging.getLogger(__name__)

SparseInput = namedtuple('SparseInput', ['column_id', 'value_index'])

ACTIVATIONS = {
    'sigmoid': torch.sigmoid,
    'tanh': torch.tanh,
    'relu': torch.relu,
    'leakyrelu': F.leaky_relu,
    'linear': lambda x: x,
}


class ShapeMismatchError(ValueError):
    """Weights do not fit the shapes of the configured model"""


def check_activation(name):
    key = name.strip().lower()
    if key not in ACTIVATIONS:
        raise ValueError(f"Unknown activation: {name}")
    return key


def _lookup(table, index):
    # out of range and negative indices go to the last row, the missing slot
    rows = table.num_embeddings
    index = torch.where((index < 0) | (index >= rows), torch.full_like(index, rows - 1), index)
    return table(index)


class WideAndDeep(nn.Module):
    """
    Wide and deep graph: a sparse linear part over categorical columns and an
    MLP over dense columns plus embedded categorical columns.

    Args:
        id_bin_cate_size: {column id: number of categories} for categorical columns
        dense_column_ids: ordered dense (numerical) column ids
        embed_column_ids: ordered column ids fed through embedding tables
        embed_outputs: embedding dimension per embed column, same order
        wide_column_ids: ordered column ids of the wide part
        hidden_nodes: sizes of the hidden layers
        act_funcs: activation per hidden layer
        l2_reg: L2 regularization coefficient
    """

    def __init__(self, id_bin_cate_size, dense_column_ids, embed_column_ids, embed_outputs,
                 wide_column_ids, hidden_nodes, act_funcs, l2_reg=0.0):
        super().__init__()
        if len(embed_outputs) != len(embed_column_ids):
            raise ValueError("embed_outputs must have one entry per embed column")
        if len(act_funcs) != len(hidden_nodes):
            raise ValueError("act_funcs must have one entry per hidden layer")

        self.dense_column_ids = [int(c) for c in dense_column_ids]
        self.embed_column_ids = [int(c) for c in embed_column_ids]
        self.wide_column_ids = [int(c) for c in wide_column_ids]
        self.l2_reg = float(l2_reg or 0.0)

        # one extra row per table for the missing category
        self.embeddings = nn.ModuleDict()
        for column_id, embed_dim in zip(self.embed_column_ids, embed_outputs):
            self.embeddings[str(column_id)] = nn.Embedding(id_bin_cate_size[column_id] + 1, embed_dim)

        self.wide = nn.ModuleDict()
        for column_id in self.wide_column_ids:
            self.wide[str(column_id)] = nn.Embedding(id_bin_cate_size[column_id] + 1, 1)
        self.wide_bias = nn.Parameter(torch.zeros(1))

        input_dim = len(self.dense_column_ids) + sum(embed_outputs)
        sizes = [input_dim] + list(hidden_nodes) + [1]
        self.deep = nn.ModuleList([nn.Linear(sizes[i], sizes[i + 1]) for i in range(len(sizes) - 1)])
        self.act_funcs = [check_activation(a) for a in act_funcs] + ['linear']

    @property
    def input_dim(self):
        return self.deep[0].in_features

    def forward(self, dense, embed_idx, wide_idx):
        """
        Args:
            dense: [B, num_dense] float tensor
            embed_idx: [B, num_embed] long tensor of category indices
            wide_idx: [B, num_wide] long tensor of category indices
        Returns:
            [B, 1] scores after sigmoid
        """
        return torch.sigmoid(self.logits(dense, embed_idx, wide_idx))

    def logits(self, dense, embed_idx, wide_idx):
        batch_size = dense.size(0)

        wide = self.wide_bias.expand(batch_size, 1)
        for i, column_id in enumerate(self.wide_column_ids):
            wide = wide + _lookup(self.wide[str(column_id)], wide_idx[:, i])

        deep_inputs = [dense]
        for i, column_id in enumerate(self.embed_column_ids):
            deep_inputs.append(_lookup(self.embeddings[str(column_id)], embed_idx[:, i]))
        x = torch.cat(deep_inputs, dim=1)

        for layer, act in zip(self.deep, self.act_funcs):
            x = ACTIVATIONS[act](layer(x))
        return x + wide

    def compute(self, dense_inputs, embed_inputs, wide_inputs):
        """
        Score one record.

        Args:
            dense_inputs: normalized dense values in ``dense_column_ids`` order
            embed_inputs: list of SparseInput for embed columns
            wide_inputs: list of SparseInput for wide columns
        Returns:
            float32 array of the model outputs
        """
        dense = torch.as_tensor(np.asarray(dense_inputs, dtype=np.float32).reshape(1, -1))
        embed_idx = self._sparse_tensor(embed_inputs, self.embed_column_ids)
        wide_idx = self._sparse_tensor(wide_inputs, self.wide_column_ids)
        with torch.no_grad():
            out = self.forward(dense, embed_idx, wide_idx)
        return out.reshape(-1).numpy().astype(np.float32)

    @staticmethod
    def _sparse_tensor(inputs, column_ids):
        by_column = {si.column_id: si.value_index for si in inputs}
        # a column without input resolves to the missing slot
        values = [by_column.get(column_id, -1) for column_id in column_ids]
        return torch.tensor([values], dtype=torch.long).reshape(1, len(column_ids))

    def init_weights(self, initializer):
        """Fill every parameter from ``initializer``"""
        with torch.no_grad():
            for name, param in self.named_parameters():
                if param.dim() == 2:
                    values = initializer.init_matrix(param.shape[0], param.shape[1])
                elif param.numel() == 1:
                    values = np.array([initializer.init_scalar()], dtype=np.float32)
                else:
                    values = initializer.init_vector(param.shape[0])
                param.copy_(torch.from_numpy(np.asarray(values, dtype=np.float32)).reshape(param.shape))
        logger.info(f"Initialized {self.num_parameters()} weights of wide and deep model")

    def update_weights(self, other):
        """Copy weights from another model (or a weights dict) of the same shapes"""
        if isinstance(other, WideAndDeep):
            self._check_layout(other)
            weights = {name: p.detach() for name, p in other.named_parameters()}
        else:
            weights = other
        self.load_weights(weights)

    def _check_layout(self, other):
        for attr in ('dense_column_ids', 'embed_column_ids', 'wide_column_ids'):
            if getattr(self, attr) != getattr(other, attr):
                raise ShapeMismatchError(
                    f"{attr} differ: {getattr(self, attr)} vs {getattr(other, attr)}")
        if self.act_funcs != other.act_funcs:
            raise ShapeMismatchError(f"Activations differ: {self.act_funcs} vs {other.act_funcs}")

    def load_weights(self, weights):
        params = dict(self.named_parameters())
        missing = set(params) - set(weights)
        unexpected = set(weights) - set(params)
        if missing or unexpected:
            raise ShapeMismatchError(
                f"Weight names differ, missing: {sorted(missing)}, unexpected: {sorted(unexpected)}")
        for name, param in params.items():
            if tuple(np.shape(weights[name])) != tuple(param.shape):
                raise ShapeMismatchError(
                    f"Shape of {name} is {tuple(np.shape(weights[name]))}, expected {tuple(param.shape)}")
        with torch.no_grad():
            for name, param in params.items():
                param.copy_(torch.as_tensor(np.asarray(weights[name], dtype=np.float32)))

    def weights_snapshot(self):
        """Detached numpy copies of all parameters, keyed by parameter name"""
        return {name: p.detach().cpu().numpy().copy() for name, p in self.named_parameters()}

    def num_parameters(self):
        return sum(p.numel() for p in self.parameters())
