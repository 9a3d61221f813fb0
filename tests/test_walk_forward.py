import pytest

from trendbt.candles import DAY_MS
from trendbt.config import WalkForwardSettings
from trendbt.walk_forward import (
    make_config_variants,
    run_robustness,
    run_walk_forward,
    run_window_selection,
    walk_forward_windows,
)

SETTINGS = WalkForwardSettings(train_days=100, test_days=50)


def test_window_generator():
    windows = list(walk_forward_windows(0, 100, 30, 10))
    assert len(windows) == 7
    assert windows[0] == (0, 30, 30, 40)
    assert windows[-1] == (60, 90, 90, 100)
    with pytest.raises(ValueError):
        list(walk_forward_windows(0, 100, 0, 10))


def test_walk_forward_windows_are_contiguous(daily_walk, walk_config):
    report = run_walk_forward(daily_walk, walk_config, SETTINGS)
    assert report.num_windows == 5
    assert [w.index for w in report.windows] == [1, 2, 3, 4, 5]
    for prev, cur in zip(report.windows, report.windows[1:]):
        assert cur.test_start == prev.test_end
    for w in report.windows:
        assert w.train_end == w.test_start
        assert w.test_end - w.test_start == 50 * DAY_MS
        assert w.train.bars == 100
        assert w.test.bars == 50
    summary = report.summary()
    assert summary["worst_test_return_pct"] <= summary["mean_test_return_pct"]


def test_short_windows_are_skipped(daily_walk, walk_config):
    settings = WalkForwardSettings(train_days=100, test_days=50, min_test_bars=60)
    report = run_walk_forward(daily_walk, walk_config, settings)
    assert report.num_windows == 0
    assert report.mean_test_return_pct is None
    assert report.to_dict()["windows"] == []


def test_config_variants(walk_config):
    variants = dict(make_config_variants(walk_config))
    assert len(variants) == 7
    assert variants["base"] == walk_config
    assert variants["SL-0.001"].stop_loss_pct == pytest.approx(0.014)
    assert variants["TP+0.01"].take_profit_pct == pytest.approx(0.05)
    # floors keep nudged values valid
    assert variants["ATR-0.0025"].min_atr_pct == pytest.approx(0.001)


def test_robustness_ranks_variants(daily_walk, walk_config):
    reports = run_robustness(daily_walk, walk_config, SETTINGS)
    assert len(reports) == 7
    assert {r.name for r in reports} == {name for name, _ in make_config_variants(walk_config)}
    means = [r.mean_test_return_pct for r in reports]
    assert all(m is not None for m in means)
    assert means == sorted(means, reverse=True)


def test_window_selection(random_walk, walk_config):
    grid = {"stop_loss_pct": [0.01, 0.02]}
    selections = run_window_selection(random_walk(600), grid, base=walk_config, window_count=3)
    assert [s.index for s in selections] == [0, 1, 2]
    assert selections[-1].end_idx == 600
    for s in selections:
        assert s.params["stop_loss_pct"] in grid["stop_loss_pct"]
        assert s.train.bars == 134
        assert s.test.bars == 66

    with pytest.raises(ValueError):
        run_window_selection(random_walk(100), grid, window_count=0)
