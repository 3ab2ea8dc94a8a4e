"""Shared utility functions used across components."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, TypeVar

T = TypeVar("T")

# Bounded pool for collaborator calls that need a wall-clock deadline.
_deadline_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="deadline-call")


def utcnow() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return datetime as timezone-aware UTC. Returns None if input is None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def call_with_timeout(fn: Callable[..., T], timeout_seconds: float, *args: Any, **kwargs: Any) -> T:
    """Run ``fn`` and wait at most ``timeout_seconds`` for its result.

    Raises ``concurrent.futures.TimeoutError`` when the deadline passes. The
    worker keeps running in the background; callers bound it with their own
    client-side timeout.
    """
    future = _deadline_pool.submit(fn, *args, **kwargs)
    return future.result(timeout=timeout_seconds)


class KeyedLockRegistry:
    """Process-local mutual exclusion keyed by an arbitrary string.

    Entries are reference counted and dropped once no holder or waiter
    remains, so the registry does not grow with the number of sessions.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
