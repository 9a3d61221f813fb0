"""Walk-forward (rolling train/test) evaluation.

Given train and test lengths in days, the harness slides a window pair over
the history:

    [start, start + train) -> [start + train, start + train + test)

and moves ``start`` forward by ``test`` each step, so test windows are
contiguous and never overlap.  Each window is an independent pair of engine
runs with the same configuration; nothing is carried between windows.  A
window with too few bars in either slice is skipped, and the loop stops as
soon as a test window would run past the end of the data.

The higher-timeframe series used for regime filtering is never sliced: its
own EMAs need the full history to warm up.

Also here:

* :func:`make_config_variants` / :func:`run_robustness` - walk-forward over
  small perturbations of one configuration to see whether the out-of-sample
  result survives nearby parameters.
* :func:`run_window_selection` - split the history into equal windows, pick
  the best grid combination on the first part of each and score it on the
  rest.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import pandas as pd

from .candles import DAY_MS, CandleInput, slice_by_time, to_frame
from .config import ConfigError, StrategyConfig, WalkForwardSettings, warmup_bars
from .engine import BacktestResult, run_backtest
from .logging_utils import get_logger
from .optimizer import iter_param_grid, score_result
from .parallel import parallel_map
from .regime import compute_regimes

logger = get_logger(__name__)


@dataclass(frozen=True)
class WindowResult:
    index: int
    train_start: int
    train_end: int
    test_start: int
    test_end: int
    train: BacktestResult
    test: BacktestResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "train_start": self.train_start,
            "train_end": self.train_end,
            "test_start": self.test_start,
            "test_end": self.test_end,
            "train": self.train.summary(),
            "test": self.test.summary(),
        }


@dataclass(frozen=True)
class WalkForwardReport:
    config: StrategyConfig
    windows: Tuple[WindowResult, ...]
    name: str = "base"

    @property
    def num_windows(self) -> int:
        return len(self.windows)

    @property
    def mean_test_return_pct(self) -> Optional[float]:
        if not self.windows:
            return None
        return sum(w.test.total_return_pct for w in self.windows) / len(self.windows)

    @property
    def worst_test_return_pct(self) -> Optional[float]:
        if not self.windows:
            return None
        return min(w.test.total_return_pct for w in self.windows)

    @property
    def worst_test_drawdown_pct(self) -> Optional[float]:
        if not self.windows:
            return None
        return max(w.test.max_drawdown_pct for w in self.windows)

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "num_windows": self.num_windows,
            "mean_test_return_pct": self.mean_test_return_pct,
            "worst_test_return_pct": self.worst_test_return_pct,
            "worst_test_drawdown_pct": self.worst_test_drawdown_pct,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = self.summary()
        d["config"] = self.config.to_dict()
        d["windows"] = [w.to_dict() for w in self.windows]
        return d


def walk_forward_windows(first_time: int, last_time: int, train_ms: int,
                         test_ms: int) -> Iterator[Tuple[int, int, int, int]]:
    """Yield ``(train_start, train_end, test_start, test_end)`` in time order.

    Stops before the first test window that would end after ``last_time``.
    """
    if train_ms <= 0 or test_ms <= 0:
        raise ValueError("window lengths must be positive")
    cursor = first_time
    while True:
        train_start = cursor
        train_end = train_start + train_ms
        test_start = train_end
        test_end = test_start + test_ms
        if test_end > last_time:
            return
        yield train_start, train_end, test_start, test_end
        cursor += test_ms


def run_walk_forward(
    candles: CandleInput,
    config: Optional[StrategyConfig] = None,
    settings: Optional[WalkForwardSettings] = None,
    higher_tf_regimes: Optional[pd.DataFrame] = None,
    higher_tf_candles: Optional[CandleInput] = None,
    name: str = "base",
) -> WalkForwardReport:
    cfg = config if config is not None else StrategyConfig()
    settings = settings if settings is not None else WalkForwardSettings()
    df = to_frame(candles)

    if higher_tf_regimes is None and higher_tf_candles is not None:
        higher_tf_regimes = compute_regimes(higher_tf_candles, cfg.ema_fast_period, cfg.ema_slow_period)

    if df.empty:
        return WalkForwardReport(config=cfg, windows=(), name=name)

    warmup = warmup_bars(cfg)
    min_train = settings.min_train_bars if settings.min_train_bars is not None else warmup
    min_test = settings.min_test_bars if settings.min_test_bars is not None else warmup

    train_ms = int(round(settings.train_days * DAY_MS))
    test_ms = int(round(settings.test_days * DAY_MS))
    first_time = int(df["open_time"].iloc[0])
    last_time = int(df["close_time"].iloc[-1])

    windows: List[WindowResult] = []
    for train_start, train_end, test_start, test_end in walk_forward_windows(first_time, last_time, train_ms, test_ms):
        train_df = slice_by_time(df, train_start, train_end)
        test_df = slice_by_time(df, test_start, test_end)

        if len(train_df) < min_train or len(test_df) < min_test:
            logger.debug("[walk-forward] %s: window at %d skipped (train=%d, test=%d bars)",
                         name, train_start, len(train_df), len(test_df))
            continue

        train_res = run_backtest(train_df, cfg, higher_tf_regimes=higher_tf_regimes)
        test_res = run_backtest(test_df, cfg, higher_tf_regimes=higher_tf_regimes)
        if train_res is None or test_res is None:
            logger.debug("[walk-forward] %s: window at %d skipped (insufficient data)", name, train_start)
            continue

        w = WindowResult(
            index=len(windows) + 1,
            train_start=train_start,
            train_end=train_end,
            test_start=test_start,
            test_end=test_end,
            train=train_res,
            test=test_res,
        )
        windows.append(w)
        logger.info(
            "[walk-forward] %s #%d: train %.2f%% / dd %.2f%% / %d trades | test %.2f%% / dd %.2f%% / %d trades",
            name, w.index,
            train_res.total_return_pct, train_res.max_drawdown_pct, train_res.total_trades,
            test_res.total_return_pct, test_res.max_drawdown_pct, test_res.total_trades,
        )

    if not windows:
        logger.warning("[walk-forward] %s: no valid windows", name)
    return WalkForwardReport(config=cfg, windows=tuple(windows), name=name)


def make_config_variants(base: StrategyConfig) -> List[Tuple[str, StrategyConfig]]:
    """The base config plus one-parameter nudges of SL, TP and the ATR floor."""
    sl, tp, atr_min = base.stop_loss_pct, base.take_profit_pct, base.min_atr_pct
    candidates = [
        ("base", {}),
        ("SL-0.001", {"stop_loss_pct": max(sl - 0.001, 0.0005)}),
        ("SL+0.001", {"stop_loss_pct": sl + 0.001}),
        ("TP-0.01", {"take_profit_pct": max(tp - 0.01, 0.01)}),
        ("TP+0.01", {"take_profit_pct": tp + 0.01}),
        ("ATR-0.0025", {"min_atr_pct": max(atr_min - 0.0025, 0.001)}),
        ("ATR+0.0025", {"min_atr_pct": atr_min + 0.0025}),
    ]
    variants = []
    for name, overrides in candidates:
        try:
            variants.append((name, base.replace(**overrides)))
        except ConfigError as e:
            logger.warning("[robustness] variant %s dropped: %s", name, e)
    return variants


def _run_variant(variant: Tuple[str, StrategyConfig], candles: pd.DataFrame,
                 settings: WalkForwardSettings, regimes: Optional[pd.DataFrame]) -> WalkForwardReport:
    name, cfg = variant
    return run_walk_forward(candles, cfg, settings, higher_tf_regimes=regimes, name=name)


def run_robustness(
    candles: CandleInput,
    base: Optional[StrategyConfig] = None,
    settings: Optional[WalkForwardSettings] = None,
    higher_tf_candles: Optional[CandleInput] = None,
    n_jobs: int = 1,
) -> List[WalkForwardReport]:
    """Walk-forward every variant; best mean test return first, empty reports last."""
    base = base if base is not None else StrategyConfig()
    settings = settings if settings is not None else WalkForwardSettings()
    df = to_frame(candles)
    regimes = (
        compute_regimes(higher_tf_candles, base.ema_fast_period, base.ema_slow_period)
        if higher_tf_candles is not None else None
    )

    fn = partial(_run_variant, candles=df, settings=settings, regimes=regimes)
    reports = parallel_map(make_config_variants(base), fn, n_jobs=n_jobs)

    def _key(r: WalkForwardReport) -> Tuple[int, float]:
        m = r.mean_test_return_pct
        return (1, 0.0) if m is None else (0, -m)

    return sorted(reports, key=_key)


@dataclass(frozen=True)
class WindowSelection:
    index: int
    start_idx: int
    end_idx: int
    params: Dict[str, Any]
    config: StrategyConfig
    train: BacktestResult
    test: BacktestResult
    train_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "start_idx": self.start_idx,
            "end_idx": self.end_idx,
            "params": dict(self.params),
            "train": self.train.summary(),
            "train_score": self.train_score,
            "test": self.test.summary(),
        }


def run_window_selection(
    candles: CandleInput,
    grid: Mapping[str, Any],
    base: Optional[StrategyConfig] = None,
    window_count: int = 3,
    split_ratio: float = 0.67,
    alpha: float = 0.5,
) -> List[WindowSelection]:
    """Per equal-size window: choose on the train part, evaluate on the test part.

    The last window absorbs the remainder bars.  Windows too short to warm
    up both parts are skipped.
    """
    if window_count < 1:
        raise ValueError(f"window_count must be >= 1, got {window_count}")
    if not 0.0 < split_ratio < 1.0:
        raise ValueError(f"split_ratio must be in (0, 1), got {split_ratio}")
    base = base if base is not None else StrategyConfig()
    df = to_frame(candles)
    size = len(df) // window_count
    combos = list(iter_param_grid(grid))

    selections: List[WindowSelection] = []
    for w in range(window_count):
        start = w * size
        end = len(df) if w == window_count - 1 else (w + 1) * size
        window = df.iloc[start:end].reset_index(drop=True)
        split = int(math.floor(len(window) * split_ratio))
        train_df = window.iloc[:split].reset_index(drop=True)
        test_df = window.iloc[split:].reset_index(drop=True)

        best: Optional[Tuple[float, Dict[str, Any], StrategyConfig, BacktestResult]] = None
        for params in combos:
            try:
                cfg = base.replace(**params)
            except ConfigError as e:
                logger.debug("[window-select] %s -> invalid config, skip: %s", params, e)
                continue
            res = run_backtest(train_df, cfg)
            if res is None:
                continue
            score = score_result(res, alpha)
            if best is None or score > best[0]:
                best = (score, params, cfg, res)

        if best is None:
            logger.info("[window-select] window %d [%d, %d): no valid train result, skip", w, start, end)
            continue

        score, params, cfg, train_res = best
        test_res = run_backtest(test_df, cfg)
        if test_res is None:
            logger.info("[window-select] window %d [%d, %d): test part too short, skip", w, start, end)
            continue

        selections.append(WindowSelection(
            index=w,
            start_idx=start,
            end_idx=end,
            params=dict(params),
            config=cfg,
            train=train_res,
            test=test_res,
            train_score=score,
        ))
        logger.info("[window-select] window %d: best %s train %.2f%% -> test %.2f%%",
                    w, params, train_res.total_return_pct, test_res.total_return_pct)
    return selections
