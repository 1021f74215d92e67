"""Error taxonomy for streaming sessions.

Every error a caller can observe from a session is a StreamSessionError.
Callers branch on the subclass, never on the transport's own exception
types. Those are wrapped and kept as ``__cause__``.
"""

from __future__ import annotations


class StreamSessionError(Exception):
    """Base exception for all stream session errors."""


class InvalidInputError(StreamSessionError):
    """Raised synchronously when a request payload is empty or malformed."""


class TransientTransportError(StreamSessionError):
    """A failure expected to clear on its own (timeout, dropped connection, rate limit)."""


class RetriesExhaustedError(TransientTransportError):
    """Raised when a transient failure persists past the retry budget."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Stream failed after {attempts} retries: {last_error}"
        )

    def __reduce__(self):
        return type(self), (self.attempts, self.last_error)


class TerminalServiceError(StreamSessionError):
    """A failure that retrying cannot fix (auth, quota, malformed request)."""


class SessionCancelledError(StreamSessionError):
    """Delivered to the handle of a session that was cancelled or superseded."""

    def __init__(
        self,
        generation: int,
        superseded: bool = False,
        partial_text: str = "",
    ) -> None:
        self.generation = generation
        self.superseded = superseded
        self.partial_text = partial_text
        reason = "superseded by a newer session" if superseded else "cancelled"
        super().__init__(f"Session {generation} {reason}")

    def __reduce__(self):
        return type(self), (self.generation, self.superseded, self.partial_text)
