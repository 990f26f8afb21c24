"""Retry scheduling: decide whether and when a failed attempt is retried."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from ..errors import RequestError
    from ..models.options import RetryOptions

# Shortest delay used when an HTTP-date Retry-After is already in the past
MIN_RETRY_AFTER = 0.001

# Delay of a retry requested by an after_response hook
FORCED_RETRY_DELAY = 0.001

# Upper bound of the random jitter added to the exponential backoff
JITTER = 0.1

NO_RETRY_WITHOUT_RETRY_AFTER = frozenset({413})


@dataclass(frozen=True)
class RetryContext:
    """Inputs handed to a ``calculate_delay`` override."""

    attempt_count: int
    retry_options: RetryOptions
    error: RequestError
    computed_value: float
    retry_after: Optional[float] = None


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of the scheduler. A zero delay means "do not retry"."""

    delay: float

    @property
    def should_retry(self) -> bool:
        return self.delay > 0


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """
    Parse a Retry-After header into seconds.

    Accepts delta-seconds or an HTTP date. Dates in the past floor to
    ``MIN_RETRY_AFTER``.

    Args:
        value: Raw header value
        now: Current wall-clock time (seconds since epoch), for testing

    Returns:
        Delay in seconds, or None if the value is missing or unparseable
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    if value.isdigit():
        return float(int(value))

    try:
        date = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if date is None:
        return None

    if now is None:
        now = time.time()
    delay = date.timestamp() - now
    if delay <= 0:
        return MIN_RETRY_AFTER
    return delay


def compute_retry_delay(
    attempt_count: int,
    retry_options: RetryOptions,
    error: RequestError,
    *,
    now: Optional[float] = None,
    jitter: Callable[[], float] = random.random,
) -> tuple[float, Optional[float]]:
    """
    Default retry delay in seconds.

    Args:
        attempt_count: 1-based number of the retry being considered
        retry_options: Retry policy
        error: Failure of the previous attempt
        now: Wall-clock time used to evaluate an HTTP-date Retry-After
        jitter: Source of ``[0, 1)`` randomness

    Returns:
        Tuple of (delay, parsed Retry-After). Delay 0 means no retry.
    """
    if attempt_count > retry_options.limit:
        return 0.0, None

    options = error.options
    method = options.method.upper() if options is not None else ""
    if method not in retry_options.methods:
        return 0.0, None

    response = error.response
    status = response.status_code if response is not None else None
    has_matching_code = error.code in retry_options.error_codes
    has_matching_status = status is not None and status in retry_options.status_codes
    if not has_matching_code and not has_matching_status:
        return 0.0, None

    if response is not None:
        retry_after = parse_retry_after(response.headers.get("retry-after"), now=now)
        # Retry-After: 0 carries no wait and falls through to backoff
        if retry_after:
            max_retry_after = retry_options.max_retry_after
            if max_retry_after is not None and retry_after > max_retry_after:
                return 0.0, retry_after
            return retry_after, retry_after

        if status in NO_RETRY_WITHOUT_RETRY_AFTER:
            return 0.0, None

    return 2 ** (attempt_count - 1) + jitter() * JITTER, None


def decide(
    attempt_count: int,
    retry_options: RetryOptions,
    error: RequestError,
    computed: Optional[float] = None,
    **kwargs: Any,
) -> RetryDecision:
    """
    Apply the default policy and the ``calculate_delay`` override, if any.

    The override sees the default delay and returns the one actually used.
    Passing ``computed`` skips the default policy, as for a retry requested
    from an ``after_response`` hook.
    """
    if computed is None:
        computed, retry_after = compute_retry_delay(attempt_count, retry_options, error, **kwargs)
    else:
        retry_after = None
    delay = computed
    if retry_options.calculate_delay is not None:
        delay = retry_options.calculate_delay(
            RetryContext(
                attempt_count=attempt_count,
                retry_options=retry_options,
                error=error,
                computed_value=computed,
                retry_after=retry_after,
            )
        )
        delay = float(delay or 0)
    return RetryDecision(delay=max(delay, 0.0))
