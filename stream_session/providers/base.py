"""Abstract base class for streaming transports.

Defines the Transport interface the session controller drives. The
controller interacts exclusively through this interface and never
calls provider SDKs directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from stream_session.schemas.messages import ChatTurn


class Transport(ABC):
    """Opens requests to a text-generation service.

    Each call to ``open`` starts a brand-new request and returns a lazy,
    finite, non-restartable async iterator of text fragments. Normal
    exhaustion of the iterator is the end-of-stream signal; an exception
    raised from it is the error signal.
    """

    @property
    def name(self) -> str:
        """Human-friendly transport name for logs and CLI output."""
        return type(self).__name__

    @abstractmethod
    def open(self, turns: Sequence[ChatTurn]) -> AsyncIterator[str]:
        """Open a streaming request for ``turns``.

        Implementations are usually async generators. They should raise
        TransientTransportError or TerminalServiceError where they can
        tell the difference; any other exception is classified by the
        controller's retry policy.
        """
