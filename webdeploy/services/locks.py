"""Per-application exclusive locks held for the duration of a deploy or rollback."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

_APP_LOCKS: dict[str, threading.Lock] = {}
_APP_LOCKS_GUARD = threading.Lock()


def _lock_for(application_id) -> threading.Lock:
    key = str(application_id)
    with _APP_LOCKS_GUARD:
        lock = _APP_LOCKS.get(key)
        if lock is None:
            lock = _APP_LOCKS[key] = threading.Lock()
        return lock


def is_locked(application_id) -> bool:
    """True while a pipeline in this process holds the application's lock."""
    return _lock_for(application_id).locked()


@contextmanager
def application_lock(application_id) -> Iterator[bool]:
    """Try to take the application's lock without waiting.

    Yields True when the lock was acquired; False means another pipeline
    already holds it and the caller must not touch the application.
    """
    lock = _lock_for(application_id)
    acquired = lock.acquire(blocking=False)
    try:
        yield acquired
    finally:
        if acquired:
            lock.release()
