"""Per-stage deadlines for blocking calls."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, TypeVar

from codeground.errors import StageTimeout

T = TypeVar("T")


def with_timeout(fn: Callable[[], T], seconds: float, stage: str) -> T:
    """Run *fn* on a helper thread and return its result.

    Exceptions raised by *fn* propagate unchanged. Past the deadline the
    caller gets StageTimeout while the helper thread runs on; Python threads
    cannot be killed, so its result is simply discarded.

    Raises:
        StageTimeout: If *fn* has not finished within *seconds*.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stage-{stage}")
    future = executor.submit(fn)
    try:
        return future.result(timeout=seconds)
    except FutureTimeout:
        raise StageTimeout(stage, seconds) from None
    finally:
        executor.shutdown(wait=False)
