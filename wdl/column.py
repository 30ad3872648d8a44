"""
Per-column statistics consumed by normalization and the wide and deep model
"""
import math
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Merged categories are stored as one label joined by this delimiter
CATEGORICAL_GROUP_VAL_DELIMITER = '@^'
# Column names may carry a name-space prefix such as 'ns::feature'
NAMESPACE_DELIMITER = '::'


class ColumnType:
    NUMERICAL = 'N'
    CATEGORICAL = 'C'
    HYBRID = 'H'


@dataclass(frozen=True)
class ColumnStats:
    """Statistics of one feature column, produced upstream by stats/binning"""

    column_num: int
    name: str
    column_type: str = ColumnType.NUMERICAL
    mean: float = 0.0
    stddev: float = 1.0
    cutoff: float = 4.0
    bin_boundaries: List[float] = field(default_factory=list)
    bin_categories: List[str] = field(default_factory=list)
    bin_count_woes: List[float] = field(default_factory=list)
    bin_weighted_woes: List[float] = field(default_factory=list)
    woe_mean: float = 0.0
    woe_stddev: float = 1.0
    woe_wgt_mean: float = 0.0
    woe_wgt_stddev: float = 1.0

    def __post_init__(self):
        if self.column_type not in (ColumnType.NUMERICAL, ColumnType.CATEGORICAL, ColumnType.HYBRID):
            raise ValueError(f"Unknown column type {self.column_type!r} for column {self.column_num}")
        # lists are frozen as tuples so the record can be shared across threads
        for name in ('bin_boundaries', 'bin_categories', 'bin_count_woes', 'bin_weighted_woes'):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        for name in ('bin_count_woes', 'bin_weighted_woes'):
            woes = getattr(self, name)
            if woes and len(woes) != self.num_bins + 1:
                raise ValueError(
                    f"Column {self.column_num} ({self.name}): {name} has {len(woes)} entries, "
                    f"expected {self.num_bins + 1} (bins + missing)")

    @property
    def is_categorical(self):
        return self.column_type == ColumnType.CATEGORICAL

    @property
    def is_numerical(self):
        return self.column_type == ColumnType.NUMERICAL

    @property
    def is_hybrid(self):
        return self.column_type == ColumnType.HYBRID

    @property
    def num_bins(self):
        if self.is_categorical:
            return len(self.bin_categories)
        if self.is_hybrid:
            return len(self.bin_boundaries) + len(self.bin_categories)
        return len(self.bin_boundaries)

    @property
    def simple_name(self):
        return get_simple_column_name(self.name)

    def to_dict(self):
        return {
            'columnNum': self.column_num,
            'columnName': self.name,
            'columnType': self.column_type,
            'mean': self.mean,
            'stdDev': self.stddev,
            'cutoff': self.cutoff,
            'binBoundary': list(self.bin_boundaries),
            'binCategory': list(self.bin_categories),
            'binCountWoe': list(self.bin_count_woes),
            'binWeightedWoe': list(self.bin_weighted_woes),
            'woeMean': self.woe_mean,
            'woeStddev': self.woe_stddev,
            'woeWgtMean': self.woe_wgt_mean,
            'woeWgtStddev': self.woe_wgt_stddev,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            column_num=int(data['columnNum']),
            name=data['columnName'],
            column_type=data.get('columnType', ColumnType.NUMERICAL),
            mean=float(data.get('mean', 0.0)),
            stddev=float(data.get('stdDev', 1.0)),
            cutoff=float(data.get('cutoff', 4.0)),
            bin_boundaries=[float(v) for v in data.get('binBoundary') or []],
            bin_categories=list(data.get('binCategory') or []),
            bin_count_woes=[float(v) for v in data.get('binCountWoe') or []],
            bin_weighted_woes=[float(v) for v in data.get('binWeightedWoe') or []],
            woe_mean=float(data.get('woeMean', 0.0)),
            woe_stddev=float(data.get('woeStddev', 1.0)),
            woe_wgt_mean=float(data.get('woeWgtMean', 0.0)),
            woe_wgt_stddev=float(data.get('woeWgtStddev', 1.0)),
        )


def get_simple_column_name(name):
    """Strip the name-space prefix, 'a::b::feature' -> 'feature'"""
    if name and NAMESPACE_DELIMITER in name:
        return name[name.rindex(NAMESPACE_DELIMITER) + len(NAMESPACE_DELIMITER):]
    return name


def build_category_index(bin_categories) -> Dict[str, int]:
    """
    Map raw category value to bin index.

    A merged label such as 'A@^B' is flattened so that every synonym points at
    the bin of the merged label.
    """
    index = {}
    for bin_index, category in enumerate(bin_categories):
        if CATEGORICAL_GROUP_VAL_DELIMITER in category:
            for value in category.split(CATEGORICAL_GROUP_VAL_DELIMITER):
                index[value] = bin_index
        else:
            index[category] = bin_index
    return index


def missing_category_index(category_index):
    # one past the last real entry, reserved for missing and unseen values
    return len(category_index)


def category_key(value):
    """
    Lookup key of a raw category value, None for null or NaN.

    Integer codes read back as floats (a null in the column makes pandas use
    float64) map to their integer label, 1.0 -> '1'.
    """
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            value = int(value)
    return str(value)


def category_index_of(category_index, value):
    """Index of a raw value, or the reserved missing index if absent/unseen"""
    key = category_key(value)
    if key is None:
        return missing_category_index(category_index)
    index = category_index.get(key)
    if index is None:
        return missing_category_index(category_index)
    return index


def parse_float(value) -> Optional[float]:
    """Parse a raw value as float, None for null, empty, unparsable or NaN"""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed):
        return None
    return parsed


def numerical_bin_index(bin_boundaries, value):
    """
    Locate the numeric bin of ``value``.

    Bin ``i`` covers ``[b[i], b[i+1])``; the last bin ends at and includes the
    last boundary. Values outside ``[b[0], b[-1]]`` or not parsable give -1.
    """
    parsed = parse_float(value)
    if parsed is None or not bin_boundaries:
        return -1
    if parsed < bin_boundaries[0] or parsed > bin_boundaries[-1]:
        return -1
    return bisect_right(bin_boundaries, parsed) - 1


def bin_index(stats, value, category_index=None):
    """Bin index of a raw value for any column type, -1 if unresolved"""
    if category_index is None:
        category_index = build_category_index(stats.bin_categories)
    if stats.is_numerical:
        return numerical_bin_index(stats.bin_boundaries, value)
    if stats.is_hybrid:
        index = numerical_bin_index(stats.bin_boundaries, value)
        if index >= 0:
            return index
        # hybrid categorical bins follow the numerical ones
        key = category_key(value)
        if key is not None and key in category_index:
            return len(stats.bin_boundaries) + category_index[key]
        return -1
    key = category_key(value)
    if key is None:
        return -1
    return category_index.get(key, -1)
