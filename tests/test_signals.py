import numpy as np
import pytest

from trendbt.candles import synthetic_candles
from trendbt.config import StrategyConfig
from trendbt.signals import (
    CLOSE_LONG,
    HOLD,
    LONG,
    SignalContext,
    detect_breakout,
    detect_cross,
    detect_loose_confirm,
    detect_mean_revert,
    detect_pullback,
    detect_weak_rsi,
    get_detector,
    supports_exit,
    uses_lookahead,
)

CFG = StrategyConfig()


def make_ctx(close, high=None, low=None, ema_fast=None, ema_slow=None, ema_mid=None, atr=None, rsi=None):
    close = np.asarray(close, dtype=float)
    n = len(close)

    def arr(x, default):
        if x is None:
            return np.full(n, default, dtype=float)
        if np.isscalar(x):
            return np.full(n, x, dtype=float)
        return np.asarray(x, dtype=float)

    return SignalContext(
        close_time=np.arange(n, dtype="int64"),
        close=close,
        high=arr(high, 0.0) if high is not None else close.copy(),
        low=arr(low, 0.0) if low is not None else close.copy(),
        ema_fast=arr(ema_fast, 100.0),
        ema_slow=arr(ema_slow, 50.0),
        ema_mid=arr(ema_mid, 100.0),
        atr=arr(atr, 1.0),
        rsi=arr(rsi, 50.0),
    )


def test_cross_up_and_down():
    assert detect_cross(11, 9, 10, 10, in_position=False) == LONG
    assert detect_cross(11, 9, 10, 10, in_position=True) == HOLD
    assert detect_cross(9, 11, 10, 10, in_position=True) == CLOSE_LONG
    assert detect_cross(9, 11, 10, 10, in_position=False) == HOLD


def test_cross_ties():
    # previous close exactly on the EMA still counts as "below"
    assert detect_cross(11, 10, 10, 10, in_position=False) == LONG
    # landing exactly on the EMA is not a cross
    assert detect_cross(10, 9, 10, 10, in_position=False) == HOLD
    assert detect_cross(10, 11, 10, 10, in_position=True) == HOLD


def test_breakout_on_flat_series_never_longs():
    cfg = StrategyConfig(ema_fast_period=3, ema_slow_period=5, atr_period=3, rsi_period=3)
    ctx = SignalContext.build(synthetic_candles([100.0] * 50), cfg)
    assert all(detect_breakout(ctx, i, False, cfg) == HOLD for i in range(len(ctx)))


def test_breakout_needs_previous_bar():
    ctx = make_ctx([101.0], ema_fast=100.0)
    assert detect_breakout(ctx, 0, False, CFG) == HOLD


def test_breakout_not_ready_is_hold():
    ctx = make_ctx([99.0, 101.0], ema_fast=[np.nan, 100.0])
    assert detect_breakout(ctx, 1, False, CFG) == HOLD


def _pullback_closes(with_dip):
    closes = [100.0] * 11 + [101.0]
    if with_dip:
        closes[5] = 99.0   # 1% under the fast EMA
    return closes


def test_pullback_requires_retrace():
    with_dip = make_ctx(_pullback_closes(True))
    no_dip = make_ctx(_pullback_closes(False))
    assert detect_pullback(with_dip, 11, False, CFG) == LONG
    assert detect_pullback(no_dip, 11, False, CFG) == HOLD


def test_pullback_dip_outside_lookback_is_ignored():
    ctx = make_ctx(_pullback_closes(True))
    cfg = CFG.replace(pullback_lookback=3)
    assert detect_pullback(ctx, 11, False, cfg) == HOLD


def test_pullback_requires_uptrend_and_flat():
    downtrend = make_ctx(_pullback_closes(True), ema_slow=150.0)
    assert detect_pullback(downtrend, 11, False, CFG) == HOLD
    ctx = make_ctx(_pullback_closes(True))
    assert detect_pullback(ctx, 11, True, CFG) == HOLD


def test_loose_confirm():
    ctx = make_ctx([100.0, 105.0, 106.0], high=[101.0, 105.0, 106.0], ema_fast=90.0, ema_slow=80.0)
    assert detect_loose_confirm(ctx, 1, False, CFG) == LONG
    # last bar has nothing to confirm it
    assert detect_loose_confirm(ctx, 2, False, CFG) == HOLD
    assert detect_loose_confirm(ctx, 1, True, CFG) == HOLD

    failed = make_ctx([100.0, 105.0, 104.0], high=[101.0, 105.0, 106.0], ema_fast=90.0, ema_slow=80.0)
    assert detect_loose_confirm(failed, 1, False, CFG) == HOLD

    below_prev_high = make_ctx([100.0, 105.0, 106.0], high=[110.0, 105.0, 106.0], ema_fast=90.0, ema_slow=80.0)
    assert detect_loose_confirm(below_prev_high, 1, False, CFG) == HOLD


def test_mean_revert_bands():
    cfg = CFG.replace(band_k_enter=2.0, band_k_exit=0.5)
    ctx = make_ctx([89.0, 91.0, 98.0, 97.0], ema_mid=100.0, atr=5.0)
    assert detect_mean_revert(ctx, 0, False, cfg) == LONG
    assert detect_mean_revert(ctx, 1, False, cfg) == HOLD
    assert detect_mean_revert(ctx, 2, True, cfg) == CLOSE_LONG
    assert detect_mean_revert(ctx, 3, True, cfg) == HOLD


def test_mean_revert_not_ready():
    ctx = make_ctx([80.0], ema_mid=100.0, atr=[np.nan])
    assert detect_mean_revert(ctx, 0, False, CFG) == HOLD


def test_weak_rsi():
    ctx = make_ctx([99.0, 101.0, 99.0], ema_fast=100.0, rsi=[30.0, 30.0, 55.0])
    assert detect_weak_rsi(ctx, 0, False, CFG) == LONG
    # oversold but above the fast EMA
    assert detect_weak_rsi(ctx, 1, False, CFG) == HOLD
    assert detect_weak_rsi(ctx, 2, True, CFG) == CLOSE_LONG
    assert detect_weak_rsi(ctx, 0, True, CFG) == HOLD


def test_registry():
    assert get_detector("breakout") is detect_breakout
    assert supports_exit("mean-revert")
    assert not supports_exit("pullback")
    assert uses_lookahead("loose-confirm")
    with pytest.raises(KeyError):
        get_detector("martingale")
