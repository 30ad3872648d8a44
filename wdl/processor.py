"""
In-process normalize step: raw records with tags -> model ready arrays
"""
import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from wdl.column import category_key

logger = logging.getLogger(__name__)

# warn when this share of records or more carry an invalid tag
INVALID_TAG_ALERT_RATIO = 0.8


@dataclass
class NormalizedData:
    dense: np.ndarray
    embed: np.ndarray
    wide: np.ndarray
    target: np.ndarray
    weight: np.ndarray

    def __len__(self):
        return len(self.target)

    def split(self, parts):
        """Split into ``parts`` contiguous partitions, one per worker"""
        bounds = np.linspace(0, len(self), parts + 1).astype(int)
        return [NormalizedData(self.dense[s:e], self.embed[s:e], self.wide[s:e],
                               self.target[s:e], self.weight[s:e])
                for s, e in zip(bounds[:-1], bounds[1:])]


def _tag_str(value):
    key = category_key(value)
    return key.strip() if key is not None else None


class NormalizeProcessor:
    """
    Args:
        assembler: FeatureAssembler with the column stats and model layout
        target_column: tag column name
        pos_tags, neg_tags: raw tag values of positive and negative records
        weight_column: optional record weight column, 1.0 when absent or invalid
    """

    def __init__(self, assembler, target_column, pos_tags, neg_tags, weight_column=None):
        self.assembler = assembler
        self.target_column = target_column
        self.pos_tags = {str(t) for t in pos_tags}
        self.neg_tags = {str(t) for t in neg_tags}
        self.weight_column = weight_column

    def run(self, frame: pd.DataFrame) -> NormalizedData:
        if self.target_column not in frame.columns:
            raise KeyError(f"Target column {self.target_column!r} not in data")

        tags = frame[self.target_column].map(_tag_str)
        is_pos = tags.isin(self.pos_tags)
        valid = is_pos | tags.isin(self.neg_tags)
        total = len(frame)
        invalid = int(total - valid.sum())
        logger.info(f"Total valid records {total - invalid} after filtering, invalid tag records {invalid}.")
        if total > 0 and invalid / total >= INVALID_TAG_ALERT_RATIO:
            logger.error("Too many invalid tags, please check you configuration on positive tags and negative tags.")

        kept = frame[valid.values]
        dense, embed, wide = self.assembler.transform(kept)
        target = is_pos[valid.values].to_numpy(dtype=np.float32)
        if self.weight_column and self.weight_column in kept.columns:
            weight = pd.to_numeric(kept[self.weight_column], errors='coerce').fillna(1.0).to_numpy(dtype=np.float32)
        else:
            weight = np.ones(len(kept), dtype=np.float32)
        return NormalizedData(dense=dense, embed=embed, wide=wide, target=target, weight=weight)
