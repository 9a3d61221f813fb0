"""Exhaustive parameter search scored on a train slice and a later test slice.

Each grid combination is applied on top of a base :class:`StrategyConfig`
and backtested twice.  Combinations with too few trades on either slice are
discarded.  Survivors are scored with

    score = total_return_pct - alpha * max_drawdown_pct

per slice, combined as ``train_weight * train_score + test_weight * test_score``
and ranked best first.  The engine itself is never altered; the optimizer
only feeds it different configurations.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .candles import CandleInput, to_frame
from .config import ConfigError, OptimizerSettings, StrategyConfig
from .engine import BacktestResult, run_backtest
from .logging_utils import get_logger
from .parallel import parallel_map
from .regime import compute_regimes

logger = get_logger(__name__)

# 4H trend study grid
DEFAULT_GRID: Dict[str, List[Any]] = {
    "signal_variant": ["breakout", "pullback"],
    "min_atr_pct": [0.003, 0.005, 0.0075, 0.01, 0.015],
    "stop_loss_pct": [0.008, 0.01, 0.012, 0.015, 0.018, 0.02],
    "take_profit_pct": [0.025, 0.03, 0.035, 0.04, 0.045, 0.05],
    "min_rsi_for_entry": [25.0, 30.0, 35.0],
    "max_rsi_for_entry": [65.0, 70.0, 75.0],
}


@dataclass(frozen=True)
class ScoredResult:
    params: Dict[str, Any]
    config: StrategyConfig
    train: BacktestResult
    test: BacktestResult
    train_score: float
    test_score: float
    joint_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "params": dict(self.params),
            "config": self.config.to_dict(),
            "train": self.train.summary(),
            "test": self.test.summary(),
            "train_score": self.train_score,
            "test_score": self.test_score,
            "joint_score": self.joint_score,
        }


def iter_param_grid(grid: Mapping[str, Iterable[Any]]) -> Iterable[Dict[str, Any]]:
    """All combinations of a ``{name: [values]}`` grid, last key varying fastest."""
    keys = list(grid.keys())
    values = [list(grid[k]) for k in keys]
    for combo in itertools.product(*values):
        yield dict(zip(keys, combo))


def score_result(result: BacktestResult, alpha: float) -> float:
    return result.total_return_pct - alpha * result.max_drawdown_pct


def split_train_test(candles: CandleInput, ratio: float = 0.67) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Chronological split: the first ``ratio`` of the bars train, the rest test."""
    if not 0.0 < ratio < 1.0:
        raise ValueError(f"ratio must be in (0, 1), got {ratio}")
    df = to_frame(candles)
    cut = int(len(df) * ratio)
    return df.iloc[:cut].reset_index(drop=True), df.iloc[cut:].reset_index(drop=True)


def _evaluate_combo(
    params: Dict[str, Any],
    base_config: StrategyConfig,
    train: pd.DataFrame,
    test: pd.DataFrame,
    regimes: Optional[pd.DataFrame],
    settings: OptimizerSettings,
) -> Optional[ScoredResult]:
    try:
        cfg = base_config.replace(**params)
    except ConfigError as e:
        logger.debug("[optimize] %s -> invalid config, skip: %s", params, e)
        return None

    train_res = run_backtest(train, cfg, higher_tf_regimes=regimes)
    if train_res is None:
        return None
    if train_res.total_trades < settings.min_train_trades:
        logger.debug("[optimize] %s -> too few train trades (%d), skip", params, train_res.total_trades)
        return None

    test_res = run_backtest(test, cfg, higher_tf_regimes=regimes)
    if test_res is None:
        return None
    if test_res.total_trades < settings.min_test_trades:
        logger.debug("[optimize] %s -> too few test trades (%d), skip", params, test_res.total_trades)
        return None

    train_score = score_result(train_res, settings.alpha)
    test_score = score_result(test_res, settings.alpha)
    joint = settings.train_weight * train_score + settings.test_weight * test_score
    return ScoredResult(
        params=dict(params),
        config=cfg,
        train=train_res,
        test=test_res,
        train_score=train_score,
        test_score=test_score,
        joint_score=joint,
    )


def optimize(
    train: CandleInput,
    test: CandleInput,
    grid: Optional[Mapping[str, Iterable[Any]]] = None,
    base_config: Optional[StrategyConfig] = None,
    settings: Optional[OptimizerSettings] = None,
    higher_tf_regimes: Optional[pd.DataFrame] = None,
    higher_tf_candles: Optional[CandleInput] = None,
) -> List[ScoredResult]:
    """Evaluate every grid combination and rank by ``joint_score``.

    Returns an empty list when no combination qualifies; the first entry is
    the recommended configuration otherwise.  Ties keep grid order.
    """
    base = base_config if base_config is not None else StrategyConfig()
    settings = settings if settings is not None else OptimizerSettings()
    grid = grid if grid is not None else DEFAULT_GRID

    if higher_tf_regimes is None and higher_tf_candles is not None:
        higher_tf_regimes = compute_regimes(higher_tf_candles, base.ema_fast_period, base.ema_slow_period)

    train_df = to_frame(train)
    test_df = to_frame(test)
    if len(train_df) and len(test_df) and train_df["close_time"].iloc[-1] >= test_df["close_time"].iloc[0]:
        raise ValueError("train slice must end before the test slice starts")

    combos = list(iter_param_grid(grid))
    logger.info("[optimize] combinations=%d train_bars=%d test_bars=%d n_jobs=%s",
                len(combos), len(train_df), len(test_df), settings.n_jobs)

    fn = partial(_evaluate_combo, base_config=base, train=train_df, test=test_df,
                 regimes=higher_tf_regimes, settings=settings)
    results = [r for r in parallel_map(combos, fn, n_jobs=settings.n_jobs) if r is not None]

    if not results:
        logger.warning("[optimize] no combination met the train/test trade minimums "
                       "(min_train_trades=%d, min_test_trades=%d)",
                       settings.min_train_trades, settings.min_test_trades)
        return []

    results.sort(key=lambda r: r.joint_score, reverse=True)
    best = results[0]
    logger.info("[optimize] best %s -> train %.2f%% / dd %.2f%%, test %.2f%% / dd %.2f%%, score=%.2f",
                best.params, best.train.total_return_pct, best.train.max_drawdown_pct,
                best.test.total_return_pct, best.test.max_drawdown_pct, best.joint_score)
    return results


def results_frame(results: List[ScoredResult]) -> pd.DataFrame:
    """Flat table of a ranking, one row per combination."""
    rows = []
    for rank, r in enumerate(results, start=1):
        rows.append({
            "rank": rank,
            **r.params,
            "train_return_pct": r.train.total_return_pct,
            "train_drawdown_pct": r.train.max_drawdown_pct,
            "train_trades": r.train.total_trades,
            "test_return_pct": r.test.total_return_pct,
            "test_drawdown_pct": r.test.max_drawdown_pct,
            "test_trades": r.test.total_trades,
            "test_annualized_pct": r.test.annualized_return_pct,
            "train_score": r.train_score,
            "test_score": r.test_score,
            "joint_score": r.joint_score,
        })
    return pd.DataFrame(rows)
