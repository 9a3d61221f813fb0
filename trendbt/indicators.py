"""Technical indicators over price series.

Every function returns a ``numpy`` float array with exactly one element per
input element, so callers can index indicator series in lock-step with the
candles.  Values that are not ready yet are ``NaN``.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
import pandas as pd

from .candles import CandleInput, to_frame

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


def _check_period(period: int) -> int:
    period = int(period)
    if period < 1:
        raise ValueError(f"indicator period must be >= 1, got {period}")
    return period


def ema(values: ArrayLike, period: int) -> np.ndarray:
    """Exponential moving average seeded with the first value.

    ``ema[0] = values[0]`` and ``ema[i] = values[i] * k + ema[i-1] * (1 - k)``
    with ``k = 2 / (period + 1)``.  There is no warm-up gap; the first
    ``~period`` values are unreliable by convention only.
    """
    period = _check_period(period)
    v = pd.Series(np.asarray(values, dtype=float))
    if v.empty:
        return np.array([], dtype=float)
    return v.ewm(span=period, adjust=False).mean().to_numpy(dtype=float)


def true_range(candles: CandleInput) -> np.ndarray:
    """True range per bar; the first bar has no previous close and is ``NaN``."""
    df = to_frame(candles)
    h = df["high"].to_numpy(dtype=float)
    l = df["low"].to_numpy(dtype=float)
    c = df["close"].to_numpy(dtype=float)
    tr = np.full(len(df), np.nan)
    if len(df) > 1:
        prev_c = c[:-1]
        tr[1:] = np.maximum(h[1:] - l[1:], np.maximum(np.abs(h[1:] - prev_c), np.abs(l[1:] - prev_c)))
    return tr


def atr(candles: CandleInput, period: int = 14) -> np.ndarray:
    """Average true range with Wilder smoothing.

    The first ``period`` true ranges (bars 1..period) are averaged into
    ``atr[period]``; afterwards ``atr[i] = (atr[i-1] * (period - 1) + tr[i]) / period``.
    Indices ``< period`` are ``NaN``.
    """
    period = _check_period(period)
    tr = true_range(candles)
    out = np.full(len(tr), np.nan)
    if len(tr) <= period:
        return out

    # seed at index ``period``, then Wilder's recurrence is an ewm with alpha = 1/period
    s = tr[period:].copy()
    s[0] = tr[1:period + 1].mean()
    out[period:] = pd.Series(s).ewm(alpha=1.0 / period, adjust=False).mean().to_numpy(dtype=float)
    return out


def rsi(closes: ArrayLike, period: int = 14) -> np.ndarray:
    """Relative strength index with Wilder smoothing.

    The first ``period`` price changes seed the average gain/loss; the first
    value lands at index ``period``.  Indices ``< period`` are ``NaN``.
    A window without losses reads 100, including a flat market.
    """
    period = _check_period(period)
    c = np.asarray(closes, dtype=float)
    out = np.full(len(c), np.nan)
    if len(c) < period + 1:
        return out

    d = pd.Series(np.diff(c))
    up = d.clip(lower=0)
    dn = -d.clip(upper=0)
    up = pd.concat([pd.Series([up.iloc[:period].mean()]), up.iloc[period:]], ignore_index=True)
    dn = pd.concat([pd.Series([dn.iloc[:period].mean()]), dn.iloc[period:]], ignore_index=True)
    avg_gain = up.ewm(alpha=1.0 / period, adjust=False).mean().to_numpy(dtype=float)
    avg_loss = dn.ewm(alpha=1.0 / period, adjust=False).mean().to_numpy(dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        rs = avg_gain / avg_loss
        out[period:] = np.where(avg_loss == 0, 100.0, 100.0 - 100.0 / (1.0 + rs))
    return out
