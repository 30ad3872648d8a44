"""
Normalization of raw feature values into model inputs

Every function here is pure and never raises on bad data: unparsable or
missing values fall back to the column mean (z-score family) or to the
missing WOE bin (WOE family).
"""
from enum import Enum

import numpy as np

from wdl.column import bin_index, build_category_index, parse_float

DEFAULT_CUTOFF = 4.0
EPS = 1e-6


class NormType(Enum):
    ZSCALE = 'ZSCALE'
    ZSCORE = 'ZSCORE'
    OLD_ZSCALE = 'OLD_ZSCALE'
    OLD_ZSCORE = 'OLD_ZSCORE'
    WOE = 'WOE'
    WEIGHT_WOE = 'WEIGHT_WOE'
    HYBRID = 'HYBRID'
    WEIGHT_HYBRID = 'WEIGHT_HYBRID'
    WOE_ZSCORE = 'WOE_ZSCORE'
    WOE_ZSCALE = 'WOE_ZSCALE'
    WEIGHT_WOE_ZSCORE = 'WEIGHT_WOE_ZSCORE'
    WEIGHT_WOE_ZSCALE = 'WEIGHT_WOE_ZSCALE'

    @classmethod
    def parse(cls, name):
        if isinstance(name, cls):
            return name
        if name is None:
            raise ValueError("Norm type is missing")
        return cls(name.strip().upper())


def check_cutoff(cutoff):
    if cutoff is None:
        return DEFAULT_CUTOFF
    return abs(cutoff)


def compute_zscore(value, mean, stddev, cutoff):
    """Z-score of ``value`` clipped into ``[-cutoff, cutoff]``"""
    if abs(stddev) > EPS:
        z = (value - mean) / stddev
    else:
        z = 0.0
    return min(max(z, -cutoff), cutoff)


def woe_value(stats, value, weighted=False, category_index=None):
    woes = stats.bin_weighted_woes if weighted else stats.bin_count_woes
    if not woes:
        return 0.0
    index = bin_index(stats, value, category_index)
    if index < 0 or index >= len(woes) - 1:
        # the last bin is the missing value bin
        return woes[-1]
    return woes[index]


def _zscore(stats, value, category_index):
    parsed = parse_float(value)
    if parsed is None:
        parsed = stats.mean
    else:
        # raw values are single precision, as they are in training data
        parsed = float(np.float32(parsed))
    return compute_zscore(parsed, stats.mean, stats.stddev, check_cutoff(stats.cutoff))


def _woe(stats, value, category_index):
    return woe_value(stats, value, False, category_index)


def _weighted_woe(stats, value, category_index):
    return woe_value(stats, value, True, category_index)


def _woe_zscore(stats, value, category_index):
    woe = float(np.float32(woe_value(stats, value, False, category_index)))
    return compute_zscore(woe, stats.woe_mean, stats.woe_stddev, check_cutoff(stats.cutoff))


def _weighted_woe_zscore(stats, value, category_index):
    woe = float(np.float32(woe_value(stats, value, True, category_index)))
    return compute_zscore(woe, stats.woe_wgt_mean, stats.woe_wgt_stddev, check_cutoff(stats.cutoff))


_NORMALIZERS = {
    NormType.ZSCALE: _zscore,
    NormType.ZSCORE: _zscore,
    NormType.OLD_ZSCALE: _zscore,
    NormType.OLD_ZSCORE: _zscore,
    NormType.HYBRID: _zscore,
    NormType.WEIGHT_HYBRID: _zscore,
    NormType.WOE: _woe,
    NormType.WEIGHT_WOE: _weighted_woe,
    NormType.WOE_ZSCORE: _woe_zscore,
    NormType.WOE_ZSCALE: _woe_zscore,
    NormType.WEIGHT_WOE_ZSCORE: _weighted_woe_zscore,
    NormType.WEIGHT_WOE_ZSCALE: _weighted_woe_zscore,
}


def normalize(stats, value, norm_type, category_index=None) -> np.float32:
    """
    Normalize one raw value of a column.

    Args:
        stats: ColumnStats of the column
        value: raw value, number or string, None for missing
        norm_type: NormType or its name
        category_index: prebuilt category index of the column (rebuilt if None)
    """
    norm_type = NormType.parse(norm_type)
    if category_index is None and stats.bin_categories:
        category_index = build_category_index(stats.bin_categories)
    func = _NORMALIZERS.get(norm_type, _zscore)
    return np.float32(func(stats, value, category_index or {}))
