"""Per-key serialization: locks for inline work, a runner for submitted tasks."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Dict, Hashable, Iterator


class KeyedLocks:
    """One re-entrant lock per key, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield


class KeyedTaskRunner:
    """
    Thread pool where tasks sharing a key never overlap.

    Tasks with different keys run in parallel up to `max_workers`.
    """

    def __init__(self, max_workers: int = 4, locks: KeyedLocks | None = None) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="keyed-task")
        self.locks = locks or KeyedLocks()

    def submit(self, key: Hashable, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        def _run() -> Any:
            with self.locks.hold(key):
                return fn(*args, **kwargs)

        return self._executor.submit(_run)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "KeyedTaskRunner":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown(wait=True)
