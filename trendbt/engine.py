"""Single-position backtest engine.

The engine walks the candles once, bar by bar, holding at most one long
position.  While flat it asks the configured signal detector for an entry
and applies the volatility floor and cap, slow-EMA slope cap, trend,
higher-timeframe regime, RSI and anti-chase filters.  While long it checks,
in this order and stopping at the first hit:

1. stop-loss  (bar low  <= entry * (1 - stop_loss_pct), filled at the stop)
2. take-profit (bar high >= entry * (1 + take_profit_pct), filled at the target)
3. detector exit (``CLOSE_LONG``, filled at the close)

A position still open after the last bar is closed at the last close.
Every trade is charged a round-trip fee.

Bars before the warm-up length are never evaluated.  A series shorter than
the warm-up yields ``None`` ("insufficient data"), which callers treat as a
normal outcome.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple

import numpy as np
import pandas as pd

from .candles import CandleInput, to_frame
from .config import StrategyConfig, warmup_bars
from .logging_utils import get_logger
from .metrics import annualized_return_pct, equity_curve, max_drawdown_pct, summarize_trades
from .regime import RegimeCursor, compute_regimes
from .signals import CLOSE_LONG, LONG, SignalContext, get_detector, supports_exit, uses_lookahead

logger = get_logger(__name__)

ExitReason = Literal["SL", "TP", "SIGNAL"]


@dataclass(frozen=True)
class Trade:
    entry_time: int
    exit_time: int
    entry_price: float
    exit_price: float
    pnl_pct: float
    exit_reason: ExitReason

    @property
    def gross_pnl_pct(self) -> float:
        return (self.exit_price / self.entry_price - 1.0) * 100.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BacktestResult:
    trades: Tuple[Trade, ...]
    total_trades: int
    total_return_pct: float
    avg_return_pct: float
    win_rate: float
    equity_curve: Tuple[Tuple[int, float], ...]
    max_drawdown_pct: float
    annualized_return_pct: float
    bars: int = 0

    @classmethod
    def from_trades(cls, trades: List[Trade], bars: int = 0) -> "BacktestResult":
        pnl = [t.pnl_pct for t in trades]
        stats = summarize_trades(pnl)
        curve = equity_curve(pnl, [t.exit_time for t in trades],
                             start_time=trades[0].entry_time if trades else None)
        final_equity = curve[-1][1] if curve else 1.0
        annualized = (
            annualized_return_pct(final_equity, trades[0].entry_time, trades[-1].exit_time)
            if trades else 0.0
        )
        return cls(
            trades=tuple(trades),
            total_trades=stats["total_trades"],
            total_return_pct=stats["total_return_pct"],
            avg_return_pct=stats["avg_return_pct"],
            win_rate=stats["win_rate"],
            equity_curve=tuple(curve),
            max_drawdown_pct=max_drawdown_pct([e for _, e in curve]),
            annualized_return_pct=annualized,
            bars=bars,
        )

    @property
    def final_equity(self) -> float:
        return self.equity_curve[-1][1] if self.equity_curve else 1.0

    def exit_reason_counts(self) -> Dict[str, int]:
        counts = {"SL": 0, "TP": 0, "SIGNAL": 0}
        for t in self.trades:
            counts[t.exit_reason] += 1
        return counts

    def trades_frame(self) -> pd.DataFrame:
        cols = ["entry_time", "exit_time", "entry_price", "exit_price", "pnl_pct", "exit_reason"]
        return pd.DataFrame([t.to_dict() for t in self.trades], columns=cols)

    def summary(self) -> Dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "total_return_pct": self.total_return_pct,
            "avg_return_pct": self.avg_return_pct,
            "win_rate": self.win_rate,
            "max_drawdown_pct": self.max_drawdown_pct,
            "annualized_return_pct": self.annualized_return_pct,
            "final_equity": self.final_equity,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = self.summary()
        d["bars"] = self.bars
        d["trades"] = [t.to_dict() for t in self.trades]
        d["equity_curve"] = [{"time": t, "equity": e} for t, e in self.equity_curve]
        return d


@dataclass
class _Position:
    entry_price: float
    entry_time: int


def _close_trade(pos: _Position, exit_price: float, exit_time: int, reason: ExitReason,
                 fee_rate: float) -> Trade:
    gross = (exit_price / pos.entry_price - 1.0) * 100.0
    fee_pct = fee_rate * 2 * 100.0
    return Trade(
        entry_time=pos.entry_time,
        exit_time=int(exit_time),
        entry_price=pos.entry_price,
        exit_price=float(exit_price),
        pnl_pct=gross - fee_pct,
        exit_reason=reason,
    )


def _entry_filters_pass(ctx: SignalContext, i: int, cfg: StrategyConfig,
                        regime: Optional[str], use_regime: bool) -> bool:
    price = ctx.close[i]
    if price <= 0:
        return False

    atr_pct = ctx.atr[i] / price
    if not atr_pct > cfg.min_atr_pct:
        return False
    if cfg.max_atr_pct is not None and atr_pct > cfg.max_atr_pct:
        return False

    if cfg.max_slow_slope is not None:
        if i < 1 or not np.isfinite(ctx.ema_slow[i - 1]):
            return False
        if abs(ctx.ema_slow[i] - ctx.ema_slow[i - 1]) > cfg.max_slow_slope:
            return False

    if cfg.use_trend_filter and not (price > ctx.ema_slow[i] and ctx.ema_fast[i] > ctx.ema_slow[i]):
        return False

    if use_regime and regime not in cfg.allowed_higher_tf_regimes:
        return False

    r = ctx.rsi[i]
    if not (cfg.min_rsi_for_entry <= r <= cfg.max_rsi_for_entry):
        return False

    if cfg.max_premium_over_ema_fast is not None:
        premium = price / ctx.ema_fast[i] - 1.0
        if not premium < cfg.max_premium_over_ema_fast:
            return False
    return True


def run_backtest(
    candles: CandleInput,
    config: Optional[StrategyConfig] = None,
    higher_tf_regimes: Optional[pd.DataFrame] = None,
    higher_tf_candles: Optional[CandleInput] = None,
) -> Optional[BacktestResult]:
    """Backtest one configuration over one candle series.

    Parameters
    ----------
    candles : DataFrame or sequence of Candle
        Trading-timeframe bars in ascending ``close_time`` order.
    config : StrategyConfig, optional
        Defaults to ``StrategyConfig()``.
    higher_tf_regimes : DataFrame, optional
        Output of :func:`trendbt.regime.compute_regimes`.  When given, an
        entry additionally requires the latest closed higher-timeframe
        regime to be in ``config.allowed_higher_tf_regimes``.
    higher_tf_candles : DataFrame or sequence of Candle, optional
        Convenience alternative to ``higher_tf_regimes``; the regimes are
        computed with the config's fast/slow EMA periods.

    Returns
    -------
    BacktestResult or None
        ``None`` when there are fewer candles than the warm-up length.
    """
    cfg = config if config is not None else StrategyConfig()
    df = to_frame(candles)
    warmup = warmup_bars(cfg)

    if len(df) < warmup:
        logger.info("[backtest] insufficient data: %d candles, need at least %d", len(df), warmup)
        return None

    if higher_tf_regimes is None and higher_tf_candles is not None:
        higher_tf_regimes = compute_regimes(higher_tf_candles, cfg.ema_fast_period, cfg.ema_slow_period)
    use_regime = higher_tf_regimes is not None
    cursor = RegimeCursor(higher_tf_regimes) if use_regime else None

    detector = get_detector(cfg.signal_variant)
    detector_exits = supports_exit(cfg.signal_variant)
    if uses_lookahead(cfg.signal_variant):
        logger.warning("[backtest] signal variant %r confirms on the next bar's close; "
                       "entries are only known one bar late in live use", cfg.signal_variant)

    ctx = SignalContext.build(df, cfg)
    trades: List[Trade] = []
    pos: Optional[_Position] = None

    for i in range(warmup, len(df)):
        t = int(ctx.close_time[i])
        regime = cursor.advance(t) if cursor is not None else None

        if not np.isfinite([ctx.ema_fast[i], ctx.ema_slow[i], ctx.atr[i], ctx.rsi[i]]).all():
            continue

        price = float(ctx.close[i])

        if pos is None:
            signal = detector(ctx, i, False, cfg)
            if signal == LONG and _entry_filters_pass(ctx, i, cfg, regime, use_regime):
                pos = _Position(entry_price=price, entry_time=t)
            continue

        stop_price = pos.entry_price * (1.0 - cfg.stop_loss_pct)
        target_price = pos.entry_price * (1.0 + cfg.take_profit_pct)

        if ctx.low[i] <= stop_price:
            trades.append(_close_trade(pos, stop_price, t, "SL", cfg.fee_rate))
            pos = None
        elif ctx.high[i] >= target_price:
            trades.append(_close_trade(pos, target_price, t, "TP", cfg.fee_rate))
            pos = None
        elif detector_exits and detector(ctx, i, True, cfg) == CLOSE_LONG:
            trades.append(_close_trade(pos, price, t, "SIGNAL", cfg.fee_rate))
            pos = None

    if pos is not None:
        trades.append(_close_trade(pos, float(ctx.close[-1]), int(ctx.close_time[-1]), "SIGNAL", cfg.fee_rate))

    result = BacktestResult.from_trades(trades, bars=len(df))
    logger.debug(
        "[backtest] %s: bars=%d trades=%d return=%.2f%% dd=%.2f%%",
        cfg.signal_variant, len(df), result.total_trades, result.total_return_pct, result.max_drawdown_pct,
    )
    return result
