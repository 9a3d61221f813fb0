"""Backtesting and evaluation engine for rule-based trading strategies.

The package turns an ordered candle history into trades and risk/return
statistics.  Everything here is deterministic: given the same candles and
the same :class:`~trendbt.config.StrategyConfig` a run always produces the
same result.

Modules
=======

candles
    Candle record, conversion between candle sequences and dataframes,
    validation and time slicing.

indicators
    EMA, ATR and RSI over numeric series (``NaN`` marks not-ready values).

regime
    BULL / BEAR / RANGE classification from EMA structure and a forward-only
    cursor used for higher-timeframe filtering.

signals
    Interchangeable entry/exit detectors (breakout, pullback, loose-confirm,
    mean-revert, weak-rsi).

config
    Validated strategy, optimizer and walk-forward settings.

engine
    The position state machine producing :class:`~trendbt.engine.BacktestResult`.

metrics
    Equity curve, drawdown and annualization helpers.

walk_forward
    Rolling train/test windows, robustness variants and per-window selection.

optimizer
    Exhaustive grid search scored on train and test slices.

parallel, reports, logging_utils
    Process-pool map, JSON/CSV report writers and logging setup.
"""

from .config import ConfigError, StrategyConfig, OptimizerSettings, WalkForwardSettings
from .candles import Candle, CandleDataError
from .engine import BacktestResult, Trade, run_backtest

__all__ = [
    "Candle",
    "CandleDataError",
    "ConfigError",
    "StrategyConfig",
    "OptimizerSettings",
    "WalkForwardSettings",
    "BacktestResult",
    "Trade",
    "run_backtest",
]
