"""Cooperative cancellation primitives shared by scheduled jobs.

The scheduler hands every job run a :class:`CancellationToken`. Jobs check it at
safe checkpoints (between chunks, between sources, before enrichment) rather
than being interrupted, so a catalog transaction is never abandoned half way.
:class:`CancellationTokenGroup` lets the scheduler cancel every in-flight run at
shutdown.
"""

from __future__ import annotations

import threading
from typing import Optional


class CancellationToken:
    """Thread-safe cancellation token for cooperative job cancellation.

    Examples:
        >>> token = CancellationToken()
        >>> # In a job
        >>> if token.is_cancelled():
        ...     return  # Exit at a safe checkpoint
        >>> # From the scheduler thread
        >>> token.cancel()
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        return self._is_cancelled.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancellation.

        Returns:
            True if cancellation was requested before the timeout elapsed.
        """
        return self._is_cancelled.wait(timeout)


class CancellationTokenGroup:
    """Tokens for concurrently running jobs that can be cancelled together."""

    def __init__(self) -> None:
        self._tokens: list[CancellationToken] = []
        self._lock = threading.Lock()
        self._cancelled = False

    def create_token(self) -> CancellationToken:
        """Create a new token and add it to this group.

        A token created after :meth:`cancel_all` starts out cancelled.
        """
        token = CancellationToken()
        with self._lock:
            self._tokens.append(token)
            if self._cancelled:
                token.cancel()
        return token

    def remove_token(self, token: CancellationToken) -> None:
        """Release ``token`` once its job has finished."""
        with self._lock:
            if token in self._tokens:
                self._tokens.remove(token)

    def cancel_all(self) -> None:
        with self._lock:
            self._cancelled = True
            for token in self._tokens:
                token.cancel()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
