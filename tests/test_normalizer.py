import numpy as np
import pytest

from wdl.column import ColumnStats, ColumnType
from wdl.normalizer import NormType, check_cutoff, compute_zscore, normalize, woe_value


@pytest.mark.parametrize("mean,stddev,cutoff", [(0.0, 1.0, 4.0), (10.0, 2.0, 0.5), (-3.5, 0.1, 6.0)])
def test_zscore_of_mean_is_zero(mean, stddev, cutoff):
    assert compute_zscore(mean, mean, stddev, cutoff) == 0


@pytest.mark.parametrize("value", [-1e9, -20.0, 0.0, 13.0, 1e9])
def test_zscore_is_clipped_into_cutoff(value):
    z = compute_zscore(value, 10.0, 2.0, 3.0)
    assert -3.0 <= z <= 3.0


def test_zscore_with_zero_stddev():
    assert compute_zscore(5.0, 1.0, 0.0, 4.0) == 0.0


def test_cutoff_sign_and_default():
    assert check_cutoff(-3.0) == 3.0
    assert check_cutoff(2.5) == 2.5
    assert check_cutoff(None) == 4.0


def test_zscore_end_to_end_values(numeric_stats):
    assert normalize(numeric_stats, 14, NormType.ZSCORE) == pytest.approx(2.0)
    assert normalize(numeric_stats, '30', NormType.ZSCORE) == pytest.approx(4.0)
    assert normalize(numeric_stats, None, NormType.ZSCORE) == 0.0


def test_zscore_returns_float32(numeric_stats):
    assert isinstance(normalize(numeric_stats, 12.0, 'ZSCALE'), np.float32)


@pytest.mark.parametrize("raw", ['abc', '', '   ', None, float('nan'), object()])
def test_unparsable_value_normalizes_as_mean(numeric_stats, raw):
    expected = compute_zscore(numeric_stats.mean, numeric_stats.mean, numeric_stats.stddev, 4.0)
    assert normalize(numeric_stats, raw, NormType.ZSCORE) == np.float32(expected)


def test_negative_cutoff_used_as_positive(price_stats):
    # mean 100, stddev 25, cutoff -3
    assert normalize(price_stats, 1000, NormType.ZSCALE) == pytest.approx(3.0)
    assert normalize(price_stats, -1000, NormType.ZSCALE) == pytest.approx(-3.0)


@pytest.mark.parametrize("norm_type", ['OLD_ZSCORE', 'OLD_ZSCALE', 'HYBRID', 'WEIGHT_HYBRID', 'ZSCALE'])
def test_zscore_family_shares_formula(numeric_stats, norm_type):
    assert normalize(numeric_stats, 13, norm_type) == pytest.approx(1.5)


def test_woe_lookup_by_numeric_bin(numeric_stats):
    # boundaries [0, 5, 10, 20]
    assert normalize(numeric_stats, 3, NormType.WOE) == np.float32(-0.5)
    assert normalize(numeric_stats, 5, NormType.WOE) == np.float32(-0.1)
    assert normalize(numeric_stats, 12.5, NormType.WOE) == np.float32(0.2)
    assert normalize(numeric_stats, 20, NormType.WOE) == np.float32(0.6)


@pytest.mark.parametrize("raw", [-1, 25, 'x', None])
def test_woe_out_of_range_uses_missing_bin(numeric_stats, raw):
    assert normalize(numeric_stats, raw, NormType.WOE) == np.float32(0.05)
    assert normalize(numeric_stats, raw, NormType.WEIGHT_WOE) == np.float32(0.01)


def test_woe_lookup_is_deterministic(numeric_stats):
    values = {normalize(numeric_stats, '7.5', NormType.WOE) for _ in range(10)}
    assert values == {np.float32(-0.1)}


def test_weighted_woe(numeric_stats):
    assert normalize(numeric_stats, 3, NormType.WEIGHT_WOE) == np.float32(-0.4)


def test_woe_zscore(numeric_stats):
    # woe 0.6, woe mean 0.1, woe stddev 0.5 -> 1.0
    assert normalize(numeric_stats, 20, NormType.WOE_ZSCORE) == pytest.approx(1.0, abs=1e-6)
    assert normalize(numeric_stats, 20, NormType.WOE_ZSCALE) == pytest.approx(1.0, abs=1e-6)


def test_weighted_woe_zscore(numeric_stats):
    # weighted woe 0.7, mean 0.05, stddev 0.25 -> 2.6
    assert normalize(numeric_stats, 20, NormType.WEIGHT_WOE_ZSCORE) == pytest.approx(2.6, abs=1e-5)
    # missing bin 0.01 -> -0.16
    assert normalize(numeric_stats, None, NormType.WEIGHT_WOE_ZSCALE) == pytest.approx(-0.16, abs=1e-5)


def test_categorical_woe(categorical_stats):
    assert normalize(categorical_stats, 'desktop', NormType.WOE) == np.float32(0.2)
    assert normalize(categorical_stats, 'console', NormType.WOE) == np.float32(0.4)
    assert normalize(categorical_stats, 'unknown', NormType.WOE) == np.float32(-1.0)
    assert normalize(categorical_stats, None, NormType.WEIGHT_WOE) == np.float32(-2.0)


def test_hybrid_woe_numeric_then_category():
    stats = ColumnStats(
        column_num=9, name='hybrid', column_type=ColumnType.HYBRID,
        bin_boundaries=[0.0, 10.0], bin_categories=['NA', 'UNK'],
        bin_count_woes=[1.0, 2.0, 3.0, 4.0, 5.0])
    assert woe_value(stats, 5) == 1.0
    assert woe_value(stats, 10) == 2.0
    assert woe_value(stats, 'NA') == 3.0
    assert woe_value(stats, 'UNK') == 4.0
    assert woe_value(stats, 'other') == 5.0


def test_norm_type_parse():
    assert NormType.parse('woe_zscore') is NormType.WOE_ZSCORE
    assert NormType.parse(NormType.WOE) is NormType.WOE
    with pytest.raises(ValueError):
        NormType.parse('median')
