"""
Configuration for wide and deep training and inference
"""
import json

from wdl.column import ColumnStats
from wdl.model import WideAndDeep
from wdl.normalizer import NormType


class BaseConfig:
    """Base configuration with common defaults"""

    # Embedding
    DEFAULT_EMBED_OUTPUT = 16

    # Deep part
    DEFAULT_HIDDEN_NODES = [50]
    DEFAULT_ACTIVATION = 'tanh'

    # Regularization
    DEFAULT_L2_REG = 0.0

    # Normalization
    DEFAULT_NORM_TYPE = NormType.ZSCALE


class ModelConfig(BaseConfig):
    """
    Model layout derived from column statistics.

    Numerical and hybrid columns feed the deep part directly, categorical
    columns feed the wide part and, by default, embedding tables. When
    ``selected_column_ids`` is given (after variable selection) only those
    columns are used.
    """

    def __init__(self, columns, embed_column_ids=None, embed_output=None, hidden_nodes=None,
                 act_funcs=None, l2_reg=None, norm_type=None, selected_column_ids=None):
        self.columns = {c.column_num: c for c in columns}

        # Features
        self.selected_column_ids = sorted(selected_column_ids) if selected_column_ids is not None else None
        candidates = [c for cid, c in sorted(self.columns.items())
                      if self.selected_column_ids is None or cid in self.selected_column_ids]
        self.dense_column_ids = [c.column_num for c in candidates if c.is_numerical or c.is_hybrid]
        self.wide_column_ids = [c.column_num for c in candidates if c.is_categorical]

        # Embedding
        self.embed_column_ids = list(embed_column_ids) if embed_column_ids is not None else list(self.wide_column_ids)
        not_categorical = [cid for cid in self.embed_column_ids
                           if cid not in self.columns or not self.columns[cid].is_categorical]
        if not_categorical:
            raise ValueError(f"Embed columns must be categorical columns: {not_categorical}")
        self.embed_output = embed_output or self.DEFAULT_EMBED_OUTPUT

        # Model architecture
        self.hidden_nodes = list(hidden_nodes) if hidden_nodes is not None else list(self.DEFAULT_HIDDEN_NODES)
        self.act_funcs = list(act_funcs) if act_funcs is not None else [self.DEFAULT_ACTIVATION] * len(self.hidden_nodes)
        if len(self.act_funcs) != len(self.hidden_nodes):
            raise ValueError(f"{len(self.act_funcs)} activations for {len(self.hidden_nodes)} hidden layers")
        self.l2_reg = self.DEFAULT_L2_REG if l2_reg is None else float(l2_reg)
        self.norm_type = NormType.parse(norm_type or self.DEFAULT_NORM_TYPE)

    @property
    def id_bin_cate_size(self):
        return {cid: len(c.bin_categories) for cid, c in self.columns.items() if c.is_categorical}

    @property
    def embed_outputs(self):
        return [self.embed_output] * len(self.embed_column_ids)

    def build_model(self):
        return WideAndDeep(
            id_bin_cate_size=self.id_bin_cate_size,
            dense_column_ids=self.dense_column_ids,
            embed_column_ids=self.embed_column_ids,
            embed_outputs=self.embed_outputs,
            wide_column_ids=self.wide_column_ids,
            hidden_nodes=self.hidden_nodes,
            act_funcs=self.act_funcs,
            l2_reg=self.l2_reg)

    def to_dict(self):
        return {
            'dense_column_ids': self.dense_column_ids,
            'embed_column_ids': self.embed_column_ids,
            'wide_column_ids': self.wide_column_ids,
            'embed_output': self.embed_output,
            'hidden_nodes': self.hidden_nodes,
            'act_funcs': self.act_funcs,
            'l2_reg': self.l2_reg,
            'norm_type': self.norm_type.value,
        }

    @classmethod
    def from_column_file(cls, path, **kwargs):
        """Build from a JSON list of column stats dicts"""
        with open(path, 'r') as f:
            columns = [ColumnStats.from_dict(d) for d in json.load(f)]
        return cls(columns, **kwargs)


class TrainingConfig:
    """Training hyperparameters"""

    # Optimization
    LEARNING_RATE = 0.003
    OPTIMIZER = 'adam'
    EPOCHS = 20

    # Early Stopping
    PATIENCE = 5

    # Workers
    NUM_WORKERS = 4

    # Weight initialization
    INITIALIZER = 'range'
    INIT_MIN = -0.1
    INIT_MAX = 0.1
    SEED = 42

    # Continuous training
    CONTINUOUS_TRAINING = False
    CHECKPOINT_PATH = None

    # Data
    TARGET_COLUMN = 'clicked'
    POS_TAGS = ['1']
    NEG_TAGS = ['0']
    SAVE_DIR = './experiments'

    def __init__(self, **overrides):
        for key, value in overrides.items():
            attr = key.upper()
            if not hasattr(TrainingConfig, attr):
                raise ValueError(f"Unknown training option: {key}")
            setattr(self, attr, value)

    def to_dict(self):
        return {name.lower(): getattr(self, name) for name in dir(TrainingConfig)
                if name.isupper()}
