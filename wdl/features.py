"""
Turn raw records into the dense / embed / wide inputs of the model.

The same assembler is used when building training arrays and when scoring a
single record, so both paths normalize identically.
"""
import numpy as np
import pandas as pd

from wdl.column import build_category_index, category_index_of, missing_category_index
from wdl.model import SparseInput
from wdl.normalizer import NormType, normalize


class FeatureAssembler:
    """
    Args:
        columns: {column id: ColumnStats}
        norm_type: NormType applied to dense columns
        dense_column_ids, embed_column_ids, wide_column_ids: model input layout
        remove_namespace: look values up by simple column name ('ns::a' -> 'a')
    """

    def __init__(self, columns, norm_type, dense_column_ids, embed_column_ids, wide_column_ids,
                 remove_namespace=True):
        self.columns = dict(columns)
        self.norm_type = NormType.parse(norm_type)
        self.dense_column_ids = list(dense_column_ids)
        self.embed_column_ids = list(embed_column_ids)
        self.wide_column_ids = list(wide_column_ids)

        used = set(self.dense_column_ids) | set(self.embed_column_ids) | set(self.wide_column_ids)
        unknown = sorted(used - set(self.columns))
        if unknown:
            raise ValueError(f"No column stats for model columns {unknown}")

        self.name_map = {
            cid: (stats.simple_name if remove_namespace else stats.name)
            for cid, stats in self.columns.items()
        }
        # recomputed from the stored labels, never persisted pre-split
        self.cate_index_map = {
            cid: build_category_index(stats.bin_categories) for cid, stats in self.columns.items()
        }

    @classmethod
    def for_model(cls, model, columns, norm_type, remove_namespace=True):
        return cls(columns, norm_type, model.dense_column_ids, model.embed_column_ids,
                   model.wide_column_ids, remove_namespace=remove_namespace)

    def _value(self, column_id, record):
        return record.get(self.name_map[column_id])

    def missing_index(self, column_id):
        return missing_category_index(self.cate_index_map[column_id])

    def value_index(self, column_id, value):
        return category_index_of(self.cate_index_map[column_id], value)

    def normalize(self, column_id, value):
        return normalize(self.columns[column_id], value, self.norm_type, self.cate_index_map[column_id])

    def dense_inputs(self, record):
        values = np.zeros(len(self.dense_column_ids), dtype=np.float32)
        for i, column_id in enumerate(self.dense_column_ids):
            values[i] = self.normalize(column_id, self._value(column_id, record))
        return values

    def embed_inputs(self, record):
        return [SparseInput(cid, self.value_index(cid, self._value(cid, record)))
                for cid in self.embed_column_ids]

    def wide_inputs(self, record):
        return [SparseInput(cid, self.value_index(cid, self._value(cid, record)))
                for cid in self.wide_column_ids]

    def transform(self, frame: pd.DataFrame):
        """
        Normalize a frame of raw records.

        Returns:
            (dense float32 [N, num_dense], embed int64 [N, num_embed], wide int64 [N, num_wide])
        """
        n = len(frame)
        dense = np.zeros((n, len(self.dense_column_ids)), dtype=np.float32)
        embed = np.zeros((n, len(self.embed_column_ids)), dtype=np.int64)
        wide = np.zeros((n, len(self.wide_column_ids)), dtype=np.int64)

        for i, column_id in enumerate(self.dense_column_ids):
            raw = self._column(frame, column_id)
            dense[:, i] = [self.normalize(column_id, v) for v in raw]
        for i, column_id in enumerate(self.embed_column_ids):
            embed[:, i] = [self.value_index(column_id, v) for v in self._column(frame, column_id)]
        for i, column_id in enumerate(self.wide_column_ids):
            wide[:, i] = [self.value_index(column_id, v) for v in self._column(frame, column_id)]
        return dense, embed, wide

    def _column(self, frame, column_id):
        name = self.name_map[column_id]
        if name not in frame.columns:
            return [None] * len(frame)
        # pandas NA markers become None so they hit the missing path
        series = frame[name].astype(object)
        return series.where(series.notna(), None).tolist()
