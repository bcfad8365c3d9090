"""Per-job concurrency locks using threading.Lock.

Prevents overlapping runs of the same periodic job (a slow drain must not
be started again by the next tick).  Uses a non-blocking acquire: if the
lock is already held, the caller gets False and skips the run.
"""

from __future__ import annotations

import threading

_registry_lock = threading.Lock()
_job_locks: dict[str, threading.Lock] = {}


def _lock_for(name: str) -> threading.Lock:
    with _registry_lock:
        lock = _job_locks.get(name)
        if lock is None:
            lock = _job_locks[name] = threading.Lock()
        return lock


def acquire_job_lock(name: str) -> bool:
    """Try to acquire the lock for job *name*.

    Returns True if the lock was acquired, False if already held.
    """
    return _lock_for(name).acquire(blocking=False)


def release_job_lock(name: str) -> None:
    """Release the lock for job *name*.

    Safe to call even if the lock is not held.
    """
    try:
        _lock_for(name).release()
    except RuntimeError:
        pass  # Already released


def is_job_running(name: str) -> bool:
    """Check if job *name* currently holds its lock."""
    return _lock_for(name).locked()
