"""
Resilience patterns for provider calls and scheduled runs.

ExponentialBackoff spaces out retries of provider requests and of whole
invocations that ended in a retry-later error. CircuitBreaker stops hammering
an endpoint that keeps failing and marks when unavailability has become
persistent enough to report.
"""

import logging
import random
import time
from collections import defaultdict
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

logger = logging.getLogger(__name__)


class ExponentialBackoff:
    """Exponential backoff with ±25% jitter."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0, max_retries: int = 3):
        if base_delay < 0 or max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return max(0, delay + jitter)

    def should_retry(self, attempt: int) -> bool:
        """Check if should retry based on attempt count."""
        return attempt < self.max_retries

    def retry_delay(self, attempt: int, retry_after: str | None = None) -> float:
        """
        Delay before retry number ``attempt``, honouring a ``Retry-After`` header.

        A usable header wins over the computed backoff but is capped at
        ``max_delay``. An unparseable header is ignored.
        """
        hinted = parse_retry_after(retry_after)
        if hinted is None:
            return self.calculate_delay(attempt)
        return min(hinted, self.max_delay)


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """
    Seconds to wait according to a ``Retry-After`` header.

    Accepts both delta-seconds and HTTP-date forms. Returns None for a missing
    or malformed header; past dates and negative values become 0.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring malformed Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


class CircuitBreaker:
    """
    Per-key circuit breaker.

    After ``failure_threshold`` consecutive failures the circuit for that key
    opens and stays open until ``timeout`` seconds pass or a success is
    recorded.
    """

    def __init__(self, failure_threshold: int = 5, timeout: float = 300.0):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.failures: dict[str, int] = defaultdict(int)
        self.opened_at: dict[str, float] = {}

    def record_failure(self, key: str) -> None:
        self.failures[key] += 1
        if self.failures[key] >= self.failure_threshold and key not in self.opened_at:
            self.opened_at[key] = time.time()
            logger.warning(f"Circuit breaker OPEN for {key} ({self.failures[key]} failures)")

    def record_success(self, key: str) -> None:
        if self.failures.get(key):
            self.failures[key] = 0
        if key in self.opened_at:
            del self.opened_at[key]
            logger.info(f"Circuit breaker CLOSED for {key}")

    def is_open(self, key: str) -> bool:
        """Check if the circuit is open, half-closing it once the timeout elapsed."""
        if key not in self.opened_at:
            return False

        if time.time() - self.opened_at[key] > self.timeout:
            del self.opened_at[key]
            self.failures[key] = 0
            logger.info(f"Circuit breaker reset for {key} (timeout passed)")
            return False

        return True
