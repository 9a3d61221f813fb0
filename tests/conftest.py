import numpy as np
import pandas as pd
import pytest

from trendbt.candles import DAY_MS, synthetic_candles
from trendbt.config import StrategyConfig

BAR_MS = 4 * 60 * 60 * 1000


def _ohlc_frame(rows, start_ms=0, bar_ms=BAR_MS):
    """rows: list of (open, high, low, close)."""
    open_time = start_ms + np.arange(len(rows), dtype="int64") * bar_ms
    o, h, l, c = (np.array(col, dtype=float) for col in zip(*rows))
    return pd.DataFrame({
        "open_time": open_time,
        "close_time": open_time + bar_ms - 1,
        "open": o,
        "high": h,
        "low": l,
        "close": c,
        "volume": np.ones(len(rows)),
    })


@pytest.fixture
def ohlc_frame():
    return _ohlc_frame


@pytest.fixture
def small_config():
    # warm-up of 5 bars, every entry filter wide open
    return StrategyConfig(
        use_trend_filter=False,
        signal_variant="breakout",
        stop_loss_pct=0.02,
        take_profit_pct=0.04,
        min_atr_pct=1e-6,
        min_rsi_for_entry=0.0,
        max_rsi_for_entry=100.0,
        rsi_period=3,
        fee_rate=0.0,
        ema_fast_period=3,
        ema_slow_period=5,
        ema_mid_period=3,
        atr_period=3,
    )


@pytest.fixture
def cross_up_rows():
    """Six flat bars at 95, then a bar closing at 100 that crosses the fast EMA."""
    return [(95.0, 95.0, 95.0, 95.0)] * 6 + [(95.0, 100.0, 95.0, 100.0)]


def _random_walk(n, seed=7, bar_ms=BAR_MS, start_ms=0, vol=0.01):
    rng = np.random.default_rng(seed)
    closes = 100.0 * np.exp(np.cumsum(rng.normal(0.0, vol, n)))
    return synthetic_candles(closes, start_ms=start_ms, bar_ms=bar_ms, spread=0.002)


@pytest.fixture
def random_walk():
    return _random_walk


@pytest.fixture
def walk_config():
    # warm-up of 20 bars
    return StrategyConfig(
        use_trend_filter=False,
        min_atr_pct=1e-6,
        min_rsi_for_entry=0.0,
        max_rsi_for_entry=100.0,
        rsi_period=14,
        ema_fast_period=5,
        ema_slow_period=20,
        atr_period=14,
    )


@pytest.fixture
def daily_walk():
    return _random_walk(400, seed=11, bar_ms=DAY_MS)
