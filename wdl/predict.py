"""
Standalone scoring of raw records with a saved wide and deep model
"""
import logging

import numpy as np
import pandas as pd
import torch

from wdl.features import FeatureAssembler
from wdl.serialization import load_model

logger = logging.getLogger(__name__)


class WDLPredictor:
    """
    Light wide and deep scoring engine over a saved model file.

    Raw records are dicts of (column name, value). Numerical values may be
    numbers or strings; anything missing, None or unparsable is treated as a
    missing value, and categories not seen in training go to the missing
    category. Normalization follows the norm type stored with the model.

    A loaded predictor is never mutated, so ``compute`` can be called from
    many threads at once.
    """

    def __init__(self, model, columns, norm_type, version=None, remove_namespace=True):
        self.model = model.eval()
        self.columns = dict(columns)
        self.version = version
        self.assembler = FeatureAssembler.for_model(model, self.columns, norm_type,
                                                    remove_namespace=remove_namespace)

    @property
    def norm_type(self):
        return self.assembler.norm_type

    @classmethod
    def load(cls, source, remove_namespace=True, strict_version=True):
        """
        Args:
            source: path, bytes or binary stream, gzip or plain
            remove_namespace: match record keys against simple column names
            strict_version: reject format versions this code does not write
        """
        loaded = load_model(source, strict_version=strict_version)
        logger.info(f"Loaded wide and deep model version {loaded.version} with "
                    f"{len(loaded.columns)} columns, norm type {loaded.norm_type.value}")
        return cls(loaded.model, loaded.columns, loaded.norm_type, version=loaded.version,
                   remove_namespace=remove_namespace)

    def preprocess_input(self, data):
        """Raw record -> (dense inputs, embed inputs, wide inputs)"""
        data = data or {}
        return (self.assembler.dense_inputs(data),
                self.assembler.embed_inputs(data),
                self.assembler.wide_inputs(data))

    def compute_inputs(self, dense_inputs, embed_inputs, wide_inputs):
        return self.model.compute(dense_inputs, embed_inputs, wide_inputs)

    def compute(self, data):
        """Score one raw record, returns a float32 array of model outputs"""
        return self.compute_inputs(*self.preprocess_input(data))

    def predict(self, data):
        return float(self.compute(data)[0])

    def predict_batch(self, data_list):
        """Score a DataFrame or list of raw records in one forward pass"""
        frame = data_list if isinstance(data_list, pd.DataFrame) else pd.DataFrame(list(data_list))
        if len(frame) == 0:
            return np.zeros(0, dtype=np.float32)
        dense, embed, wide = self.assembler.transform(frame)
        with torch.no_grad():
            scores = self.model(torch.from_numpy(dense), torch.from_numpy(embed), torch.from_numpy(wide))
        return scores.reshape(-1).numpy().astype(np.float32)
