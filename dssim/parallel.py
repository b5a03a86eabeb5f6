# dssim/parallel.py
from __future__ import annotations
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from .config import THREADS

A = TypeVar("A")
B = TypeVar("B")
T = TypeVar("T")
R = TypeVar("R")

_local = threading.local()


def _run_as_worker(fn: Callable[[], T]) -> T:
    _local.in_worker = True
    try:
        return fn()
    finally:
        _local.in_worker = False


def _in_worker() -> bool:
    return getattr(_local, "in_worker", False)


class TaskPool:
    """
    Fork-join helper over a ThreadPoolExecutor.

    numpy and OpenCV release the GIL in their inner loops, so threads give
    real parallelism for plane-sized work. Tasks forked from inside a worker
    run inline on that worker, which keeps nested joins from exhausting the
    pool. With threads <= 1 every task runs on the calling thread; results
    are identical, only slower.
    """

    def __init__(self, threads: Optional[int] = None):
        self.threads = THREADS if threads is None else int(threads)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    @property
    def sequential(self) -> bool:
        return self.threads <= 1

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.threads, thread_name_prefix="dssim"
                )
            return self._executor

    def _inline(self) -> bool:
        return self.sequential or _in_worker()

    def join(self, a: Callable[[], A], b: Callable[[], B]) -> Tuple[A, B]:
        """Run `a` on a worker and `b` on the calling thread, then wait for both."""
        if self._inline():
            return a(), b()
        fut: Future = self._get_executor().submit(_run_as_worker, a)
        try:
            rb = b()
        except BaseException:
            # still wait, `a` may hold buffers that `b` shares
            fut.exception()
            raise
        return fut.result(), rb

    def map(self, fn: Callable[[T], R], items: Iterable[T]) -> List[R]:
        """Apply fn to every item concurrently. Results keep the input order."""
        items = list(items)
        if self._inline() or len(items) < 2:
            return [fn(x) for x in items]
        ex = self._get_executor()
        futures = [ex.submit(_run_as_worker, (lambda x=x: fn(x))) for x in items]
        return [f.result() for f in futures]

    def shutdown(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def __getstate__(self):
        return {"threads": self.threads}

    def __setstate__(self, state):
        self.__init__(state["threads"])
