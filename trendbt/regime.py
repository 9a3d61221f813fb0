"""Market regime classification.

A regime is a coarse trend label derived from a fast/slow EMA pair and the
slope of the slow EMA:

* ``BULL``  price and fast EMA above a rising slow EMA
* ``BEAR``  price and fast EMA below a falling slow EMA
* ``RANGE`` anything else

The batch variant is typically run on a higher timeframe (e.g. daily bars)
and consumed by the engine through :class:`RegimeCursor`.
"""

from __future__ import annotations

from typing import Dict, Literal, Optional, Tuple

import numpy as np
import pandas as pd

from .candles import CandleInput, to_frame
from .indicators import ema

Regime = Literal["BULL", "BEAR", "RANGE"]


def detect_regime_from_ema(
    price: float,
    ema_fast: float,
    ema_slow: float,
    prev_ema_slow: float,
) -> Tuple[Regime, float]:
    """Classify one bar; returns ``(regime, slope_slow)``."""
    slope_slow = ema_slow - prev_ema_slow
    if price > ema_slow and ema_fast > ema_slow and slope_slow > 0:
        return "BULL", slope_slow
    if price < ema_slow and ema_fast < ema_slow and slope_slow < 0:
        return "BEAR", slope_slow
    return "RANGE", slope_slow


def compute_regimes(candles: CandleInput, fast: int = 50, slow: int = 200) -> pd.DataFrame:
    """Label every bar from index ``max(fast, slow)`` onwards.

    Returns a frame with columns ``time`` (the bar's ``close_time``) and
    ``regime``, ordered by time.  Empty when the series is too short.
    """
    df = to_frame(candles)
    start = max(fast, slow)
    if len(df) <= start:
        return pd.DataFrame({"time": pd.Series([], dtype="int64"), "regime": pd.Series([], dtype=object)})

    closes = df["close"].to_numpy(dtype=float)
    e_fast = ema(closes, fast)
    e_slow = ema(closes, slow)

    labels = []
    for i in range(start, len(df)):
        regime, _ = detect_regime_from_ema(closes[i], e_fast[i], e_slow[i], e_slow[i - 1])
        labels.append(regime)

    return pd.DataFrame({
        "time": df["close_time"].to_numpy()[start:].astype("int64"),
        "regime": pd.Series(labels, dtype=object),
    })


def regime_distribution(regimes: pd.Series) -> Dict[str, float]:
    """Percentage share of each regime label."""
    counts = pd.Series(regimes).value_counts(normalize=True) * 100.0
    return {r: float(counts.get(r, 0.0)) for r in ("BULL", "BEAR", "RANGE")}


class RegimeCursor:
    """Forward-only lookup into a time-ordered regime series.

    ``advance(t)`` returns the regime of the latest higher-timeframe bar that
    closed at or before ``t``.  The pointer never moves backwards, so a full
    pass over the lower-timeframe bars is linear in both series.  One cursor
    belongs to one engine run.
    """

    def __init__(self, regimes: pd.DataFrame):
        self._times = regimes["time"].to_numpy(dtype="int64") if len(regimes) else np.array([], dtype="int64")
        self._labels = list(regimes["regime"]) if len(regimes) else []
        self._pos = -1
        self._last_time: Optional[int] = None

    def __len__(self) -> int:
        return len(self._labels)

    def advance(self, time_ms: int) -> Optional[Regime]:
        if self._last_time is not None and time_ms < self._last_time:
            raise ValueError(f"RegimeCursor cannot move backwards ({time_ms} < {self._last_time})")
        self._last_time = time_ms

        n = len(self._times)
        while self._pos + 1 < n and self._times[self._pos + 1] <= time_ms:
            self._pos += 1
        if self._pos < 0:
            return None
        return self._labels[self._pos]
