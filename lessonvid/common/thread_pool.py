from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Callable, Generic, TypeVar

R = TypeVar("R")


class TimedTask(Generic[R]):
    """Background call whose result is awaited against a fixed deadline.

    The deadline starts when the task is submitted, so work done by the caller
    between :meth:`submit` and :meth:`result` counts against the timeout.
    """

    def __init__(self, future: Future, executor: ThreadPoolExecutor, deadline: float | None) -> None:
        self._future = future
        self._executor = executor
        self._deadline = deadline

    @classmethod
    def submit(cls, func: Callable[[], R], *, timeout: int | float | None) -> "TimedTask[R]":
        ex = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lessonvid-fetch")
        deadline = None if timeout in (0, None) else time.monotonic() + float(timeout)
        return cls(ex.submit(func), ex, deadline)

    def result(self, on_error: Callable[[Exception], R]) -> R:
        """Return the call's result, or ``on_error(exc)`` on timeout or failure."""
        try:
            if self._deadline is None:
                res = self._future.result()
            else:
                res = self._future.result(timeout=max(0.0, self._deadline - time.monotonic()))
        except FuturesTimeout as e:
            self._future.cancel()
            res = on_error(e)
        except Exception as e:  # pragma: no cover - passthrough to handler
            res = on_error(e)
        # A timed-out fetch keeps running on its thread; never wait for it.
        self._executor.shutdown(wait=False, cancel_futures=True)
        return res

    def cancel(self) -> None:
        self._future.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)


__all__ = ["TimedTask"]
