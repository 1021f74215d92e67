"""stream-session — cancellation-safe, retrying sessions over streamed LLM output."""

__version__ = "0.1.0"

from stream_session.aggregator import FragmentBuffer, append, fold, render
from stream_session.controller import SessionHandle, StreamSessionController
from stream_session.errors import (
    InvalidInputError,
    RetriesExhaustedError,
    SessionCancelledError,
    StreamSessionError,
    TerminalServiceError,
    TransientTransportError,
)
from stream_session.events import SessionEvent, SessionEventType, Subscription
from stream_session.providers import LiteLLMTransport, ScriptedTransport, Transport
from stream_session.schemas import (
    ChatTurn,
    ControllerConfig,
    ModelConfig,
    RetryPolicy,
    SessionSnapshot,
    SessionStatus,
)

__all__ = [
    # Controller
    "StreamSessionController", "SessionHandle",
    # Aggregator
    "FragmentBuffer", "append", "fold", "render",
    # Observation
    "SessionSnapshot", "SessionStatus", "SessionEvent", "SessionEventType", "Subscription",
    # Configuration
    "ControllerConfig", "RetryPolicy", "ModelConfig", "ChatTurn",
    # Transports
    "Transport", "LiteLLMTransport", "ScriptedTransport",
    # Errors
    "StreamSessionError", "InvalidInputError", "TransientTransportError",
    "RetriesExhaustedError", "TerminalServiceError", "SessionCancelledError",
]
