from __future__ import annotations

import os
from concurrent.futures import ProcessPoolExecutor
from typing import Callable, Iterable, List, TypeVar

from .logging_utils import get_logger

T = TypeVar("T")
R = TypeVar("R")

logger = get_logger(__name__)


def default_n_jobs(n_jobs: int | None = None) -> int:
    """Number of worker processes to use.

    ``None``/``0``/negative means "all cores but one".
    """
    if n_jobs is None or n_jobs <= 0:
        return max(1, (os.cpu_count() or 2) - 1)
    return int(max(1, n_jobs))


def parallel_map(
    items: Iterable[T],
    fn: Callable[[T], R],
    n_jobs: int | None = 1,
) -> List[R]:
    """``[fn(x) for x in items]``, possibly spread over a process pool.

    Results always come back in input order.  Runs inline for a single job
    or a single item; otherwise ``fn`` and the items must be picklable.
    """
    items = list(items)
    n_jobs = min(default_n_jobs(n_jobs), max(1, len(items)))

    if n_jobs == 1:
        return [fn(x) for x in items]

    chunksize = max(1, len(items) // (n_jobs * 4))
    logger.debug("[parallel] %d tasks on %d workers (chunksize=%d)", len(items), n_jobs, chunksize)
    with ProcessPoolExecutor(max_workers=n_jobs) as ex:
        return list(ex.map(fn, items, chunksize=chunksize))
