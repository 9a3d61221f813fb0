"""Rule-based signal detectors.

Each detector looks at bar ``i`` of a :class:`SignalContext` and the current
position status and answers ``"LONG"``, ``"CLOSE_LONG"`` or ``"HOLD"``.
Detectors are pure; they never manage stops or targets (the engine does)
and return ``"HOLD"`` whenever an indicator they need is not ready.

Detectors share one signature so the engine can pick one by name from
:data:`SIGNAL_DETECTORS`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Literal

import numpy as np

from .candles import CandleInput, to_frame
from .config import StrategyConfig
from .indicators import atr, ema, rsi

Signal = Literal["LONG", "CLOSE_LONG", "HOLD"]

LONG: Signal = "LONG"
CLOSE_LONG: Signal = "CLOSE_LONG"
HOLD: Signal = "HOLD"


@dataclass(frozen=True)
class SignalContext:
    """Price and indicator arrays aligned bar by bar."""

    close_time: np.ndarray
    close: np.ndarray
    high: np.ndarray
    low: np.ndarray
    ema_fast: np.ndarray
    ema_slow: np.ndarray
    ema_mid: np.ndarray
    atr: np.ndarray
    rsi: np.ndarray

    def __len__(self) -> int:
        return len(self.close)

    @classmethod
    def build(cls, candles: CandleInput, config: StrategyConfig) -> "SignalContext":
        df = to_frame(candles)
        closes = df["close"].to_numpy(dtype=float)
        return cls(
            close_time=df["close_time"].to_numpy(dtype="int64"),
            close=closes,
            high=df["high"].to_numpy(dtype=float),
            low=df["low"].to_numpy(dtype=float),
            ema_fast=ema(closes, config.ema_fast_period),
            ema_slow=ema(closes, config.ema_slow_period),
            ema_mid=ema(closes, config.ema_mid_period),
            atr=atr(df, config.atr_period),
            rsi=rsi(closes, config.rsi_period),
        )


def _ready(*values: float) -> bool:
    return all(np.isfinite(v) for v in values)


def detect_cross(price: float, prev_price: float, ema_value: float, prev_ema_value: float,
                 in_position: bool) -> Signal:
    """Cross of price through an EMA.

    A previous close sitting exactly on the EMA counts as being on the near
    side, so touching the line is not a cross by itself.
    """
    cross_up = prev_price <= prev_ema_value and price > ema_value
    cross_down = prev_price >= prev_ema_value and price < ema_value
    if not in_position and cross_up:
        return LONG
    if in_position and cross_down:
        return CLOSE_LONG
    return HOLD


def detect_breakout(ctx: SignalContext, i: int, in_position: bool, config: StrategyConfig) -> Signal:
    if i < 1:
        return HOLD
    e, prev_e = ctx.ema_fast[i], ctx.ema_fast[i - 1]
    if not _ready(e, prev_e):
        return HOLD
    return detect_cross(ctx.close[i], ctx.close[i - 1], e, prev_e, in_position)


def detect_pullback(ctx: SignalContext, i: int, in_position: bool, config: StrategyConfig) -> Signal:
    """Cross back above the fast EMA after a real dip below it, inside an up-trend.

    Looks back ``pullback_lookback`` bars for a close at least
    ``pullback_retrace_pct`` under the fast EMA.  Never emits ``CLOSE_LONG``.
    """
    if in_position or i < 1:
        return HOLD

    price, prev_price = ctx.close[i], ctx.close[i - 1]
    e_fast, prev_e_fast, e_slow = ctx.ema_fast[i], ctx.ema_fast[i - 1], ctx.ema_slow[i]
    if not _ready(e_fast, prev_e_fast, e_slow):
        return HOLD

    if not (price > e_slow and e_fast > e_slow):
        return HOLD

    lo = max(0, i - config.pullback_lookback)
    past_close = ctx.close[lo:i]
    past_ema = ctx.ema_fast[lo:i]
    retraced = bool(np.any(past_close < past_ema * (1.0 - config.pullback_retrace_pct)))
    if not retraced:
        return HOLD

    if prev_price <= prev_e_fast and price > e_fast:
        return LONG
    return HOLD


def detect_loose_confirm(ctx: SignalContext, i: int, in_position: bool, config: StrategyConfig) -> Signal:
    """Breakout above both EMAs and the previous high, confirmed by the next close.

    Reads bar ``i + 1``: on the last bar of a series there is no
    confirmation yet and the answer is always ``HOLD``.
    """
    if in_position or i < 1 or i + 1 >= len(ctx):
        return HOLD
    e_fast, e_slow = ctx.ema_fast[i], ctx.ema_slow[i]
    if not _ready(e_fast, e_slow):
        return HOLD

    price = ctx.close[i]
    breakout = price > e_fast and price > e_slow and price > ctx.high[i - 1]
    if breakout and ctx.close[i + 1] > price:
        return LONG
    return HOLD


def detect_mean_revert(ctx: SignalContext, i: int, in_position: bool, config: StrategyConfig) -> Signal:
    """Buy a stretch below the mid EMA, sell once price comes back towards it."""
    e_mid, a = ctx.ema_mid[i], ctx.atr[i]
    if not _ready(e_mid, a):
        return HOLD

    price = ctx.close[i]
    if not in_position:
        return LONG if price < e_mid - config.band_k_enter * a else HOLD
    return CLOSE_LONG if price >= e_mid - config.band_k_exit * a else HOLD


def detect_weak_rsi(ctx: SignalContext, i: int, in_position: bool, config: StrategyConfig) -> Signal:
    """Oversold RSI at or below the fast EMA; exit when RSI recovers.

    Meant for ranging markets: pair it with ``max_atr_pct`` and
    ``max_slow_slope``, which the engine applies at entry.
    """
    r, e_fast = ctx.rsi[i], ctx.ema_fast[i]
    if not _ready(r, e_fast):
        return HOLD

    if not in_position:
        return LONG if (r <= config.rsi_buy and ctx.close[i] <= e_fast) else HOLD
    return CLOSE_LONG if r >= config.rsi_sell else HOLD


Detector = Callable[[SignalContext, int, bool, StrategyConfig], Signal]

SIGNAL_DETECTORS: Dict[str, Detector] = {
    "breakout": detect_breakout,
    "pullback": detect_pullback,
    "loose-confirm": detect_loose_confirm,
    "mean-revert": detect_mean_revert,
    "weak-rsi": detect_weak_rsi,
}

_EXIT_CAPABLE = frozenset({"breakout", "mean-revert", "weak-rsi"})


def get_detector(variant: str) -> Detector:
    try:
        return SIGNAL_DETECTORS[variant]
    except KeyError:
        raise KeyError(f"no signal detector registered for {variant!r}") from None


def supports_exit(variant: str) -> bool:
    return variant in _EXIT_CAPABLE


def uses_lookahead(variant: str) -> bool:
    return variant == "loose-confirm"
