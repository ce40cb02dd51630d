"""Tenacity retry strategies and classification for source fetching.

Provides:
- Retryability classification for HTTP statuses and transport errors
- Retry-After header aware wait strategy
- Tenacity controller builder
"""

from __future__ import annotations

import email.utils
import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional

import httpx
import tenacity
from tenacity import RetryCallState, retry_if_exception, retry_if_result

from CameraVault.CatalogSync.config.models import RetryPolicy

LOGGER = logging.getLogger(__name__)

_RETRYABLE_EXCEPTIONS = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
)


def is_retryable(
    *,
    policy: RetryPolicy,
    status: Optional[int] = None,
    exception: Optional[BaseException] = None,
) -> bool:
    """Determine if a request should be retried.

    Args:
        policy: Retry policy holding the retryable statuses
        status: HTTP status code (if from response)
        exception: Exception that occurred (if from exception)

    Returns:
        True if the request should be retried, False otherwise
    """
    if status is not None:
        return status in policy.retry_statuses

    if exception is not None:
        # LocalProtocolError is a client bug; retrying cannot help
        if isinstance(exception, httpx.LocalProtocolError):
            return False
        return isinstance(exception, _RETRYABLE_EXCEPTIONS)

    return False


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given as seconds or an HTTP-date."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt is None:
        return None
    return max(0.0, (dt - datetime.now(dt.tzinfo)).total_seconds())


class _WaitRetryAfter(tenacity.wait.wait_base):
    """Wait strategy that prefers the Retry-After header over exponential backoff."""

    def __init__(self, fallback: tenacity.wait.wait_base, cap_s: float) -> None:
        self.fallback = fallback
        self.cap_s = cap_s

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is None or outcome.failed:
            return self.fallback(retry_state)

        response = outcome.result()
        headers = getattr(response, "headers", None)
        retry_after_s = parse_retry_after(headers.get("Retry-After")) if headers else None

        if retry_after_s is not None and retry_after_s > 0:
            wait_s = min(retry_after_s, self.cap_s)
            LOGGER.debug(f"Using Retry-After header: {wait_s}s (capped at {self.cap_s}s)")
            return wait_s

        return self.fallback(retry_state)


def build_tenacity_retrying(
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Any] = time.sleep,
    before_sleep_hook: Optional[Callable[[RetryCallState], None]] = None,
) -> tenacity.Retrying:
    """Build a Tenacity Retrying controller for one logical request.

    The controller retries both raised transport errors and returned responses
    whose status is retryable. When attempts run out on a response, that last
    response is returned so the caller can report its status.

    Args:
        policy: Retry policy (attempts, backoff, statuses)
        sleep: Sleep function; cancellation-aware callers pass ``token.wait``
        before_sleep_hook: Optional hook to run before each sleep

    Returns:
        Configured Tenacity Retrying controller
    """

    def exception_predicate(exception: BaseException) -> bool:
        return is_retryable(policy=policy, exception=exception)

    def result_predicate(value: Any) -> bool:
        status = getattr(value, "status_code", None)
        if status is None:
            return False
        return is_retryable(policy=policy, status=status)

    fallback_wait = tenacity.wait_exponential(
        multiplier=policy.base_delay_s,
        max=policy.max_delay_s,
    )

    return tenacity.Retrying(
        retry=retry_if_exception(exception_predicate) | retry_if_result(result_predicate),
        stop=tenacity.stop_after_attempt(policy.max_attempts),
        wait=_WaitRetryAfter(fallback=fallback_wait, cap_s=policy.retry_after_cap_s),
        sleep=sleep,
        before_sleep=before_sleep_hook or _default_before_sleep_hook,
        retry_error_callback=_return_last_result,
        reraise=True,
    )


def _return_last_result(retry_state: RetryCallState) -> Any:
    """Hand back the final outcome once attempts are exhausted.

    Exceptions are re-raised; responses are returned for status reporting.
    """
    outcome = retry_state.outcome
    if outcome is None:
        return None
    return outcome.result()


def _default_before_sleep_hook(retry_state: RetryCallState) -> None:
    attempt_num = retry_state.attempt_number
    next_action = retry_state.next_action
    wait_ms = int(next_action.sleep * 1000) if next_action is not None else 0

    outcome = retry_state.outcome
    if outcome is not None and outcome.failed:
        reason = repr(outcome.exception())
    elif outcome is not None:
        reason = f"status={getattr(outcome.result(), 'status_code', '?')}"
    else:
        reason = "unknown"

    LOGGER.warning(
        f"retry attempt={attempt_num} wait_ms={wait_ms} "
        f"elapsed_s={retry_state.seconds_since_start:.1f} reason={reason}"
    )
