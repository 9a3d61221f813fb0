import logging

import pytest

from trendbt.logging_utils import get_logger, setup_logging
from trendbt.parallel import default_n_jobs, parallel_map


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_writes_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "run.log"
    setup_logging("debug", log_file=str(log_file))
    assert logging.getLogger().level == logging.DEBUG
    get_logger("trendbt.test").info("[test] hello")
    for h in logging.getLogger().handlers:
        h.flush()
    line = log_file.read_text(encoding="utf-8").strip()
    assert line.endswith("trendbt.test - INFO - [test] hello")


def test_setup_logging_rejects_unknown_level(restore_root_logger):
    with pytest.raises(ValueError):
        setup_logging("chatty")


def _square(x):
    return x * x


def test_parallel_map_keeps_order():
    items = list(range(12))
    assert parallel_map(items, _square, n_jobs=1) == [x * x for x in items]
    assert parallel_map(items, _square, n_jobs=2) == [x * x for x in items]
    assert parallel_map([], _square, n_jobs=4) == []


def test_default_n_jobs():
    assert default_n_jobs(3) == 3
    assert default_n_jobs(None) >= 1
    assert default_n_jobs(-1) == default_n_jobs(0)
