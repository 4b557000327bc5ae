from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, List, Tuple

from dualtreex.algo.dual import PARALLEL_INTERRUPTIONS
from dualtreex.logging import get_logger

LOGGER = get_logger("index.forkjoin")


class ForkJoinBuilder:
    """Recursive construction where one branch of every split may run on a pool.

    Build functions take the builder as their first argument and call
    :meth:`fork` for the branch they hand off; its result is attached to
    ``node.<attr>`` once the main thread joins. Worker tasks only ever submit,
    never wait, so the pool cannot deadlock however deep the recursion goes.
    With a single worker everything runs inline.
    """

    def __init__(self, workers: int = 1) -> None:
        self.workers = max(1, int(workers))
        self._pool: ThreadPoolExecutor | None = None
        self._pending: List[Tuple[Any, str, Future]] = []
        self._lock = threading.Lock()

    def fork(self, node: Any, attr: str, build: Callable[..., Any], *args: Any) -> None:
        if self._pool is None:
            setattr(node, attr, build(self, *args))
            return
        future = self._pool.submit(build, self, *args)
        with self._lock:
            self._pending.append((node, attr, future))

    def run(self, build: Callable[..., Any], *args: Any) -> Any:
        if self.workers == 1:
            return build(self, *args)
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            self._pool = pool
            try:
                root = build(self, *args)
                joined = 0
                while True:
                    with self._lock:
                        if joined >= len(self._pending):
                            break
                        node, attr, future = self._pending[joined]
                    setattr(node, attr, future.result())
                    joined += 1
            finally:
                self._pool = None
                with self._lock:
                    for _, _, future in self._pending:
                        future.cancel()
                    self._pending = []
        return root


def build_with_fallback(
    name: str,
    build: Callable[..., Any],
    *args: Any,
    parallel: bool,
    workers: int,
) -> Any:
    """Run ``build(builder, *args)``, on a pool when ``parallel``.

    An interrupted parallel build is discarded and redone serially from
    scratch; a failure of the serial rebuild propagates. ``args`` must not be
    mutated by ``build``.
    """

    if parallel and workers > 1:
        try:
            return ForkJoinBuilder(workers).run(build, *args)
        except PARALLEL_INTERRUPTIONS as exc:
            LOGGER.warning(
                "Parallel %s construction interrupted (%s); rebuilding serially.", name, exc
            )
    return ForkJoinBuilder(1).run(build, *args)


__all__ = ["ForkJoinBuilder", "build_with_fallback"]
