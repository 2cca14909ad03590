"""
Retry classification and backoff for outbound API calls.

classify() turns an exception into a decision; RetryPolicy turns a decision
plus attempt number into a delay. Callers own the loop.
"""

from dataclasses import dataclass
from typing import Optional, Union

import requests

from exceptions import (
    AppError,
    AuthFailedError,
    CatalogUserError,
    QuotaExceededError,
    RateLimitedError,
    UpstreamApiError,
    ValidationError,
)

RATE_LIMIT_MARKERS = ("rate limit", "429", "throttled")
MAX_DELAY_SECONDS = 60.0


@dataclass(frozen=True)
class Retryable:
    """Worth another attempt."""
    rate_limited: bool = False
    delay_hint: Optional[float] = None


@dataclass(frozen=True)
class Fatal:
    """Retrying cannot help; propagate immediately."""
    reason: str = ""


Decision = Union[Retryable, Fatal]


def is_rate_limit_message(message: str) -> bool:
    message = message.lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def classify(error: Exception) -> Decision:
    """
    Decide whether an error from a remote call should be retried.

    Rate limits and quota errors are retryable with exponential backoff.
    Auth, validation and mutation userErrors are fatal. Network failures and
    other upstream errors are retryable with linear backoff.
    """
    if isinstance(error, RateLimitedError):
        return Retryable(rate_limited=True, delay_hint=error.retry_after)
    if isinstance(error, QuotaExceededError):
        return Retryable(rate_limited=True)
    if isinstance(error, (AuthFailedError, ValidationError, CatalogUserError)):
        return Fatal(reason=error.code)
    if isinstance(error, UpstreamApiError):
        if is_rate_limit_message(error.message):
            return Retryable(rate_limited=True)
        http_status = error.details.get("http_status")
        if http_status and 400 <= http_status < 500:
            return Fatal(reason=f"http_{http_status}")
        return Retryable()
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return Retryable()
    if isinstance(error, AppError):
        return Fatal(reason=error.code)
    if is_rate_limit_message(str(error)):
        return Retryable(rate_limited=True)
    return Fatal(reason=type(error).__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt budget and backoff curve.

    Rate limited: min(base * 2^(attempt-1), 60). Otherwise: base * attempt.
    """
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = MAX_DELAY_SECONDS

    def delay_for(self, decision: Retryable, attempt: int) -> float:
        if decision.rate_limited:
            delay = self.base_delay * (2 ** (attempt - 1))
            if decision.delay_hint:
                delay = max(delay, decision.delay_hint)
            return min(delay, self.max_delay)
        return min(self.base_delay * attempt, self.max_delay)
