"""Retry classification and exponential backoff.

Decides which failures are transient (worth reopening the stream for)
and how long to wait between attempts.
"""

from __future__ import annotations

import litellm

from stream_session.errors import (
    InvalidInputError,
    TerminalServiceError,
    TransientTransportError,
)

# LiteLLM exceptions that clear on their own given time
RETRYABLE_LITELLM_ERRORS: tuple[type[BaseException], ...] = (
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
    litellm.APIConnectionError,
    litellm.Timeout,
)


def default_is_retryable(error: BaseException) -> bool:
    """Classify an error as transient (True) or terminal (False).

    Taxonomy errors classify themselves. Timeouts, connection drops, and
    LiteLLM's rate-limit / server-side errors are transient. Anything
    unrecognized is treated as terminal so that bugs surface instead of
    being retried.
    """
    if isinstance(error, TransientTransportError):
        return True
    if isinstance(error, (TerminalServiceError, InvalidInputError)):
        return False
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    return isinstance(error, RETRYABLE_LITELLM_ERRORS)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    if attempt < 1:
        return 0.0
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def short_error_reason(error: BaseException) -> str:
    """Extract a short, log-friendly reason from a transport error.

    Maps error types and status codes to concise descriptions instead
    of dumping full JSON error payloads.
    """
    error_str = str(error).lower()
    if isinstance(error, TimeoutError) or "timeout" in error_str or "timed out" in error_str:
        return "timeout"
    if (
        isinstance(error, litellm.RateLimitError)
        or "rate limit" in error_str
        or "ratelimit" in error_str
        or "429" in error_str
    ):
        return "rate limit"
    if "overloaded" in error_str or "529" in error_str:
        return "overloaded"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "500" in error_str or "internal" in error_str:
        return "server error"
    if "connection" in error_str or isinstance(error, ConnectionError):
        return "connection error"
    return str(error)[:80] or type(error).__name__
