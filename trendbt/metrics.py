from __future__ import annotations

import math
import sys
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np

__all__ = [
    "YEAR_MS",
    "equity_curve",
    "max_drawdown_pct",
    "annualized_return_pct",
    "summarize_trades",
]

YEAR_MS = 365 * 24 * 60 * 60 * 1000

# largest exponent whose annualized percent still fits in a float
_MAX_EXPONENT = math.log(sys.float_info.max / 100.0)


def equity_curve(pnl_pcts: Sequence[float], exit_times: Sequence[int],
                 start_time: int | None = None) -> List[Tuple[int, float]]:
    """Compounded equity after each trade, seeded at 1.0.

    The seed point is stamped with ``start_time`` (usually the first trade's
    entry time); an empty trade list gives an empty curve.
    """
    if len(pnl_pcts) == 0:
        return []
    growth = np.cumprod(1.0 + np.asarray(pnl_pcts, dtype=float) / 100.0)
    seed_time = int(start_time) if start_time is not None else int(exit_times[0])
    curve = [(seed_time, 1.0)]
    curve.extend((int(t), float(e)) for t, e in zip(exit_times, growth))
    return curve


def max_drawdown_pct(equity: Sequence[float]) -> float:
    """Largest peak-to-trough drop in percent (>= 0)."""
    eq = np.asarray(equity, dtype=float)
    if eq.size == 0:
        return 0.0
    peak = np.maximum.accumulate(eq)
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peak > 0, (peak - eq) / peak * 100.0, 0.0)
    return float(max(dd.max(), 0.0))


def annualized_return_pct(final_equity: float, first_entry_time: int, last_exit_time: int) -> float:
    """``(final_equity ** (1 / years) - 1) * 100``, computed in log space.

    0 for a non-positive span or equity, and when the compounded rate is too
    large to represent (large gains over a span of minutes).
    """
    span_ms = last_exit_time - first_entry_time
    if span_ms <= 0 or final_equity <= 0:
        return 0.0
    years = span_ms / YEAR_MS
    exponent = math.log(final_equity) / years
    if exponent > _MAX_EXPONENT:
        return 0.0
    return float(math.expm1(exponent) * 100.0)


def summarize_trades(pnl_pcts: Sequence[float]) -> Dict[str, Any]:
    """Simple (non-compounded) aggregates over per-trade returns."""
    pnl = np.asarray(pnl_pcts, dtype=float)
    n = int(pnl.size)
    total = float(pnl.sum()) if n else 0.0
    wins = int((pnl > 0).sum()) if n else 0
    return {
        "total_trades": n,
        "total_return_pct": total,
        "avg_return_pct": total / n if n else 0.0,
        "win_rate": wins / n * 100.0 if n else 0.0,
    }
