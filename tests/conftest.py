# tests/conftest.py
import numpy as np
import pandas as pd
import pytest
import torch

from wdl.column import ColumnStats, ColumnType
from wdl.config import ModelConfig, TrainingConfig
from wdl.weight import RangeRandom


@pytest.fixture
def numeric_stats():
    return ColumnStats(
        column_num=0,
        name='ns::age',
        column_type=ColumnType.NUMERICAL,
        mean=10.0,
        stddev=2.0,
        cutoff=4.0,
        bin_boundaries=[0.0, 5.0, 10.0, 20.0],
        bin_count_woes=[-0.5, -0.1, 0.2, 0.6, 0.05],
        bin_weighted_woes=[-0.4, -0.2, 0.1, 0.7, 0.01],
        woe_mean=0.1,
        woe_stddev=0.5,
        woe_wgt_mean=0.05,
        woe_wgt_stddev=0.25,
    )


@pytest.fixture
def categorical_stats():
    return ColumnStats(
        column_num=1,
        name='device',
        column_type=ColumnType.CATEGORICAL,
        mean=0.3,
        stddev=0.1,
        bin_categories=['mobile', 'desktop', 'tablet', 'tv@^console'],
        bin_count_woes=[0.1, 0.2, 0.3, 0.4, -1.0],
        bin_weighted_woes=[0.15, 0.25, 0.35, 0.45, -2.0],
    )


@pytest.fixture
def second_categorical_stats():
    return ColumnStats(
        column_num=2,
        name='region',
        column_type=ColumnType.CATEGORICAL,
        bin_categories=['north', 'south'],
        bin_count_woes=[0.3, -0.3, 0.0],
        bin_weighted_woes=[0.3, -0.3, 0.0],
    )


@pytest.fixture
def price_stats():
    return ColumnStats(
        column_num=3,
        name='price',
        column_type=ColumnType.NUMERICAL,
        mean=100.0,
        stddev=25.0,
        cutoff=-3.0,
        bin_boundaries=[float('-inf'), 50.0, 150.0],
        bin_count_woes=[0.2, 0.0, -0.2, 0.0],
        bin_weighted_woes=[0.2, 0.0, -0.2, 0.0],
    )


@pytest.fixture
def columns(numeric_stats, categorical_stats, second_categorical_stats, price_stats):
    return [numeric_stats, categorical_stats, second_categorical_stats, price_stats]


@pytest.fixture
def model_config(columns):
    return ModelConfig(columns, embed_column_ids=[1, 2], embed_output=4,
                       hidden_nodes=[8, 4], act_funcs=['tanh', 'relu'], l2_reg=0.001)


@pytest.fixture
def train_config():
    return TrainingConfig(learning_rate=0.05, optimizer='adam', num_workers=2, seed=7)


@pytest.fixture
def initialized_model(model_config):
    torch.manual_seed(0)
    model = model_config.build_model()
    model.init_weights(RangeRandom(-0.5, 0.5, seed=3))
    return model.eval()


@pytest.fixture
def raw_frame():
    rng = np.random.default_rng(11)
    n = 200
    device = rng.choice(['mobile', 'desktop', 'tablet', 'tv', 'console', None], size=n)
    region = rng.choice(['north', 'south', 'east'], size=n)
    age = rng.normal(10, 3, size=n)
    price = rng.normal(100, 30, size=n)
    logit = 0.8 * (age - 10) / 3 + np.where(device == 'mobile', 1.0, -0.5)
    clicked = (rng.random(n) < 1 / (1 + np.exp(-logit))).astype(int)
    return pd.DataFrame({
        'age': age,
        'device': device,
        'region': region,
        'price': price.astype(str),
        'clicked': clicked,
    })
