"""Candle records and candle-frame helpers.

The engine works on a ``pandas.DataFrame`` with one row per bar and the
columns listed in :data:`CANDLE_COLUMNS`.  Callers may also pass a plain
sequence of :class:`Candle` objects; :func:`to_frame` normalises both.

Timestamps are epoch milliseconds (int).
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Iterable, List, Sequence, Union

import numpy as np
import pandas as pd

from .logging_utils import get_logger

logger = get_logger(__name__)

CANDLE_COLUMNS = ["open_time", "close_time", "open", "high", "low", "close", "volume"]
PRICE_COLUMNS = ["open", "high", "low", "close", "volume"]

DAY_MS = 24 * 60 * 60 * 1000


class CandleDataError(ValueError):
    """Raised when a candle series violates its ordering or value invariants."""


@dataclass(frozen=True)
class Candle:
    open_time: int
    close_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


CandleInput = Union[pd.DataFrame, Sequence[Candle]]


def to_frame(candles: CandleInput, sort: bool = True) -> pd.DataFrame:
    """Return a candle frame with a clean RangeIndex, sorted by ``close_time``.

    ``sort=False`` keeps the caller's row order.
    """
    if isinstance(candles, pd.DataFrame):
        missing = set(CANDLE_COLUMNS) - set(candles.columns)
        if "volume" in missing:
            candles = candles.assign(volume=0.0)
            missing.discard("volume")
        if missing:
            raise CandleDataError(f"missing candle columns: {', '.join(sorted(missing))}")
        df = candles[CANDLE_COLUMNS].copy()
    else:
        df = pd.DataFrame([asdict(c) for c in candles], columns=CANDLE_COLUMNS)

    df["open_time"] = df["open_time"].astype("int64")
    df["close_time"] = df["close_time"].astype("int64")
    for col in PRICE_COLUMNS:
        df[col] = df[col].astype(float)
    if sort:
        df = df.sort_values("close_time", kind="mergesort")
    return df.reset_index(drop=True)


def from_frame(df: pd.DataFrame) -> List[Candle]:
    return [
        Candle(
            open_time=int(r.open_time),
            close_time=int(r.close_time),
            open=float(r.open),
            high=float(r.high),
            low=float(r.low),
            close=float(r.close),
            volume=float(r.volume),
        )
        for r in df.itertuples(index=False)
    ]


def validate_candles(candles: CandleInput) -> pd.DataFrame:
    """Normalise and check a candle series.

    Checks that prices are finite and non-negative, that each bar opens
    before it closes and that ``close_time`` is strictly increasing in the
    order given.  Gaps between bars are allowed.
    """
    df = to_frame(candles, sort=False)
    if df.empty:
        return df

    prices = df[PRICE_COLUMNS].to_numpy(dtype=float)
    if not np.isfinite(prices).all():
        raise CandleDataError("candle prices must be finite")
    if (prices < 0).any():
        raise CandleDataError("candle prices must be non-negative")
    if (df["open_time"] >= df["close_time"]).any():
        raise CandleDataError("open_time must be earlier than close_time")

    close_times = df["close_time"].to_numpy()
    if len(close_times) > 1 and (np.diff(close_times) <= 0).any():
        raise CandleDataError("close_time must be strictly increasing (out-of-order or duplicate timestamps)")
    return df


def slice_by_time(df: pd.DataFrame, start_ms: int, end_ms: int) -> pd.DataFrame:
    """Bars fully inside ``[start_ms, end_ms]``."""
    mask = (df["open_time"] >= start_ms) & (df["close_time"] <= end_ms)
    return df.loc[mask].reset_index(drop=True)


def read_candles_csv(path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(path)
    # openTime/closeTime as written by the exchange dumps
    df = df.rename(columns={"openTime": "open_time", "closeTime": "close_time"})
    logger.debug("[candles] loaded %d rows from %s", len(df), path)
    return validate_candles(df)


def write_candles_csv(candles: CandleInput, path: str | Path) -> None:
    df = to_frame(candles)
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(p, index=False)


def synthetic_candles(closes: Iterable[float], start_ms: int = 0,
                      bar_ms: int = 4 * 60 * 60 * 1000, spread: float = 0.0) -> pd.DataFrame:
    """Build a candle frame from close prices.

    ``open`` is the previous close, ``high``/``low`` extend the body by
    ``spread`` (a fraction of the close).  Handy for research notebooks
    and tests.
    """
    c = np.asarray(list(closes), dtype=float)
    if len(c) == 0:
        return pd.DataFrame(columns=CANDLE_COLUMNS)
    o = np.concatenate([[c[0]], c[:-1]])
    hi = np.maximum(o, c) * (1.0 + spread)
    lo = np.minimum(o, c) * (1.0 - spread)
    open_time = start_ms + np.arange(len(c), dtype="int64") * bar_ms
    return pd.DataFrame({
        "open_time": open_time,
        "close_time": open_time + bar_ms - 1,
        "open": o,
        "high": hi,
        "low": lo,
        "close": c,
        "volume": np.zeros(len(c)),
    })
