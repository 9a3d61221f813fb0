"""Strategy, optimizer and walk-forward settings.

All settings are frozen dataclasses validated at construction time, so an
invalid combination fails before any backtest runs.  A configuration is
built once per run and passed explicitly to every component.
"""

from __future__ import annotations

import json
import math
import numbers
from dataclasses import asdict, dataclass, field, fields, replace as dc_replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional

SIGNAL_VARIANTS = ("breakout", "pullback", "loose-confirm", "mean-revert", "weak-rsi")
REGIMES = ("BULL", "BEAR", "RANGE")


class ConfigError(ValueError):
    """Raised when a configuration value is out of range or inconsistent."""


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _in_open_unit(name: str, value: float) -> None:
    _require(math.isfinite(value) and 0.0 < value < 1.0, f"{name} must be in (0, 1), got {value}")


# camelCase keys used by the strategy.json files of the live tooling
_CAMEL_KEYS = {
    "useTrendFilter": "use_trend_filter",
    "signalVariant": "signal_variant",
    "stopLossPct": "stop_loss_pct",
    "takeProfitPct": "take_profit_pct",
    "minAtrPct": "min_atr_pct",
    "minRsiForEntry": "min_rsi_for_entry",
    "maxRsiForEntry": "max_rsi_for_entry",
    "rsiPeriod": "rsi_period",
    "maxPremiumOverEma50": "max_premium_over_ema_fast",
    "maxAtrPct": "max_atr_pct",
    "maxEma200Slope": "max_slow_slope",
    "allowedHigherTFRegimes": "allowed_higher_tf_regimes",
    "feeRate": "fee_rate",
}


@dataclass(frozen=True)
class StrategyConfig:
    """Parameters of one backtest run.

    ``use_trend_filter`` requires ``price > ema_slow`` and ``ema_fast > ema_slow``
    before an entry.  ``allowed_higher_tf_regimes`` only matters when the
    engine is given a higher-timeframe regime series.
    ``max_premium_over_ema_fast`` of ``None`` disables the anti-chase filter.
    ``max_atr_pct`` and ``max_slow_slope`` (absolute one-bar change of the slow
    EMA) cap volatility and trend strength at entry; they make weak-rsi a
    ranging-market strategy and are off when ``None``.
    """

    use_trend_filter: bool = True
    signal_variant: str = "breakout"
    stop_loss_pct: float = 0.015
    take_profit_pct: float = 0.04
    min_atr_pct: float = 0.005
    min_rsi_for_entry: float = 30.0
    max_rsi_for_entry: float = 70.0
    rsi_period: int = 14
    max_premium_over_ema_fast: Optional[float] = None
    max_atr_pct: Optional[float] = None
    max_slow_slope: Optional[float] = None
    allowed_higher_tf_regimes: FrozenSet[str] = field(default_factory=lambda: frozenset({"BULL"}))
    fee_rate: float = 0.0004

    ema_fast_period: int = 50
    ema_slow_period: int = 200
    ema_mid_period: int = 20
    atr_period: int = 14

    # pullback
    pullback_lookback: int = 10
    pullback_retrace_pct: float = 0.003
    # mean-revert
    band_k_enter: float = 2.0
    band_k_exit: float = 0.5
    # weak-rsi
    rsi_buy: float = 35.0
    rsi_sell: float = 50.0

    def __post_init__(self) -> None:
        # accept any iterable of labels but store an immutable set
        object.__setattr__(self, "allowed_higher_tf_regimes", frozenset(self.allowed_higher_tf_regimes))

        _require(self.signal_variant in SIGNAL_VARIANTS,
                 f"unknown signal_variant {self.signal_variant!r}; expected one of {SIGNAL_VARIANTS}")
        _in_open_unit("stop_loss_pct", self.stop_loss_pct)
        _in_open_unit("take_profit_pct", self.take_profit_pct)
        _in_open_unit("min_atr_pct", self.min_atr_pct)
        _require(0.0 <= self.fee_rate < 1.0, f"fee_rate must be in [0, 1), got {self.fee_rate}")

        for name in ("min_rsi_for_entry", "max_rsi_for_entry", "rsi_buy", "rsi_sell"):
            v = getattr(self, name)
            _require(0.0 <= v <= 100.0, f"{name} must be in [0, 100], got {v}")
        _require(self.min_rsi_for_entry < self.max_rsi_for_entry,
                 f"min_rsi_for_entry ({self.min_rsi_for_entry}) must be below "
                 f"max_rsi_for_entry ({self.max_rsi_for_entry})")
        _require(self.rsi_buy < self.rsi_sell,
                 f"rsi_buy ({self.rsi_buy}) must be below rsi_sell ({self.rsi_sell})")

        for name in ("rsi_period", "ema_fast_period", "ema_slow_period", "ema_mid_period",
                     "atr_period", "pullback_lookback"):
            v = getattr(self, name)
            _require(isinstance(v, numbers.Integral) and not isinstance(v, bool) and v >= 1,
                     f"{name} must be a positive integer, got {v!r}")
            object.__setattr__(self, name, int(v))
        _require(self.ema_fast_period < self.ema_slow_period,
                 f"ema_fast_period ({self.ema_fast_period}) must be shorter than "
                 f"ema_slow_period ({self.ema_slow_period})")

        _require(self.pullback_retrace_pct >= 0.0,
                 f"pullback_retrace_pct must be >= 0, got {self.pullback_retrace_pct}")
        _require(self.band_k_exit < self.band_k_enter,
                 f"band_k_exit ({self.band_k_exit}) must be below band_k_enter ({self.band_k_enter})")
        if self.max_premium_over_ema_fast is not None:
            _require(self.max_premium_over_ema_fast > 0.0,
                     f"max_premium_over_ema_fast must be > 0, got {self.max_premium_over_ema_fast}")
        if self.max_atr_pct is not None:
            _in_open_unit("max_atr_pct", self.max_atr_pct)
            _require(self.max_atr_pct > self.min_atr_pct,
                     f"max_atr_pct ({self.max_atr_pct}) must be above min_atr_pct ({self.min_atr_pct})")
        if self.max_slow_slope is not None:
            _require(math.isfinite(self.max_slow_slope) and self.max_slow_slope >= 0.0,
                     f"max_slow_slope must be >= 0, got {self.max_slow_slope}")

        unknown = self.allowed_higher_tf_regimes - set(REGIMES)
        _require(not unknown, f"unknown regimes in allowed_higher_tf_regimes: {sorted(unknown)}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StrategyConfig":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_KEYS.get(key, key)
            if name == "useV2Signal":
                # legacy boolean switch between breakout and pullback
                kwargs.setdefault("signal_variant", "pullback" if value else "breakout")
                continue
            if name not in known:
                raise ConfigError(f"unknown strategy option {key!r}")
            kwargs[name] = value
        if "allowed_higher_tf_regimes" in kwargs:
            kwargs["allowed_higher_tf_regimes"] = frozenset(kwargs["allowed_higher_tf_regimes"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["allowed_higher_tf_regimes"] = sorted(self.allowed_higher_tf_regimes)
        return d

    def replace(self, **overrides: Any) -> "StrategyConfig":
        return dc_replace(self, **overrides)

    @property
    def warmup_bars(self) -> int:
        return warmup_bars(self)


def warmup_bars(config: StrategyConfig) -> int:
    """Number of leading bars skipped before any entry or exit is evaluated."""
    return max(config.ema_slow_period, config.atr_period, config.rsi_period)


def load_strategy_config(path: str | Path) -> StrategyConfig:
    p = Path(path)
    with open(p, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigError(f"{p}: expected a JSON object")
    return StrategyConfig.from_dict(data)


@dataclass(frozen=True)
class OptimizerSettings:
    """Scoring and filtering knobs for the grid search.

    ``score = return_pct - alpha * max_drawdown_pct`` on each slice and
    ``joint = train_weight * train_score + test_weight * test_score``.
    """

    alpha: float = 0.5
    train_weight: float = 0.4
    test_weight: float = 0.6
    min_train_trades: int = 3
    min_test_trades: int = 2
    n_jobs: int = 1

    def __post_init__(self) -> None:
        _require(self.alpha >= 0.0, f"alpha must be >= 0, got {self.alpha}")
        _require(self.train_weight >= 0.0 and self.test_weight >= 0.0, "weights must be non-negative")
        _require(math.isclose(self.train_weight + self.test_weight, 1.0, abs_tol=1e-9),
                 f"train_weight + test_weight must equal 1, got {self.train_weight + self.test_weight}")
        _require(self.test_weight >= self.train_weight,
                 f"test_weight ({self.test_weight}) must not be below train_weight ({self.train_weight})")
        _require(self.min_train_trades >= 0 and self.min_test_trades >= 0,
                 "minimum trade counts must be non-negative")


@dataclass(frozen=True)
class WalkForwardSettings:
    train_days: float = 365.0
    test_days: float = 90.0
    # None -> the strategy's warm-up length
    min_train_bars: Optional[int] = None
    min_test_bars: Optional[int] = None

    def __post_init__(self) -> None:
        _require(self.train_days > 0 and self.test_days > 0,
                 f"window lengths must be positive, got train={self.train_days} test={self.test_days}")
        for name in ("min_train_bars", "min_test_bars"):
            v = getattr(self, name)
            _require(v is None or v >= 0, f"{name} must be >= 0, got {v}")
