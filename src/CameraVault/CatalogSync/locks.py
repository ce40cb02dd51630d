"""Locking helpers for asset writes and cross-process job exclusion.

Responsibilities
----------------
- :class:`KeyedLock` serialises work per key (camera id) inside one process so
  two enrichment workers never write the same image files concurrently.
- :func:`job_lock` maps a job name to a lock file next to the catalog so a
  one-off ``cameravault sync`` cannot run alongside the daemon's own cycle.

Design Notes
------------
- File locks use :mod:`filelock`; ``catalog.soft_locks`` opts into soft locks
  on filesystems without ``flock`` support.
- Keyed locks are reference counted and dropped once no thread holds or waits
  for them, so the table does not grow with the catalog.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from pathlib import Path
from typing import Dict, Iterator

from filelock import FileLock, SoftFileLock, Timeout

__all__ = ["KeyedLock", "Timeout", "job_lock"]

LOGGER = logging.getLogger(__name__)
logging.getLogger("filelock").setLevel(logging.INFO)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLock:
    """Mutual exclusion per key.

    Example:
        >>> locks = KeyedLock()
        >>> with locks.hold("canon-eos-r5-2020"):
        ...     pass  # only one thread per camera id gets here at a time
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._mutex = threading.Lock()

    @contextlib.contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._mutex:
                entry.users -= 1
                if entry.users == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._entries)


@contextlib.contextmanager
def job_lock(
    lock_dir: Path, name: str, timeout: float = 0.0, *, soft: bool = False
) -> Iterator[Path]:
    """Hold the lock file ``<lock_dir>/<name>.lock`` for the duration.

    ``soft`` selects :class:`filelock.SoftFileLock`, which only checks for the
    file's existence and works where ``flock`` does not.

    Raises:
        Timeout: If another process holds the lock beyond ``timeout`` seconds
    """
    lock_dir = Path(lock_dir)
    lock_dir.mkdir(parents=True, exist_ok=True)
    path = lock_dir / f"{name}.lock"
    lock_class = SoftFileLock if soft else FileLock
    lock = lock_class(str(path), timeout=timeout)
    with lock:
        LOGGER.debug(f"Acquired job lock {path}")
        yield path
