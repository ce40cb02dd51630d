# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.ratelimit",
#   "purpose": "Per-host request spacing with pyrate-limiter.",
#   "sections": [
#     {
#       "id": "ratelimitexceeded",
#       "name": "RateLimitExceeded",
#       "anchor": "class-ratelimitexceeded",
#       "kind": "class"
#     },
#     {
#       "id": "rateacquisition",
#       "name": "RateAcquisition",
#       "anchor": "class-rateacquisition",
#       "kind": "class"
#     },
#     {
#       "id": "ratelimitregistry",
#       "name": "RateLimitRegistry",
#       "anchor": "class-ratelimitregistry",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Per-host request spacing with pyrate-limiter.

Each source host gets its own limiter allowing one request per
``min_interval_ms`` window. Callers block (cooperatively, honouring a
cancellation token) until a slot frees up or ``max_wait_ms`` elapses.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from pyrate_limiter import Limiter, Rate

from CameraVault.CatalogSync.cancellation import CancellationToken
from CameraVault.CatalogSync.config.models import RateLimitPolicy

LOGGER = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.025


class RateLimitExceeded(Exception):
    """Raised when a slot is not obtained within ``max_wait_ms``."""


@dataclass(frozen=True)
class RateAcquisition:
    """Outcome of one slot acquisition."""

    host: str
    delay_ms: int


class RateLimitRegistry:
    """Lazily created limiters, one per host."""

    def __init__(
        self,
        policy: Optional[RateLimitPolicy] = None,
        *,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RateLimitPolicy()
        self._limiters: Dict[str, Limiter] = {}
        self._lock = threading.Lock()
        self._now = now

    def _get_or_create_limiter(self, host: str) -> Optional[Limiter]:
        if self.policy.min_interval_ms <= 0:
            return None
        with self._lock:
            limiter = self._limiters.get(host)
            if limiter is None:
                limiter = Limiter(
                    [Rate(1, self.policy.min_interval_ms)],
                    raise_when_fail=False,
                    max_delay=None,
                )
                self._limiters[host] = limiter
            return limiter

    def acquire(self, host: str, token: Optional[CancellationToken] = None) -> RateAcquisition:
        """Block until ``host`` may be contacted again.

        Raises:
            RateLimitExceeded: If no slot frees up within ``max_wait_ms`` or the
                token is cancelled while waiting
        """
        limiter = self._get_or_create_limiter(host)
        if limiter is None:
            return RateAcquisition(host=host, delay_ms=0)

        start = self._now()
        acquired = limiter.try_acquire(host, weight=1)
        while not acquired:
            elapsed_ms = int((self._now() - start) * 1000)
            if elapsed_ms >= self.policy.max_wait_ms:
                raise RateLimitExceeded(f"Rate limit exceeded for {host} after {elapsed_ms}ms")
            if token is not None:
                if token.wait(_POLL_INTERVAL_S):
                    raise RateLimitExceeded(f"Cancelled while waiting for {host}")
            else:
                time.sleep(_POLL_INTERVAL_S)
            acquired = limiter.try_acquire(host, weight=1)

        delay_ms = int((self._now() - start) * 1000)
        if delay_ms:
            LOGGER.debug(f"rate slot acquired host={host} delay_ms={delay_ms}")
        return RateAcquisition(host=host, delay_ms=delay_ms)
