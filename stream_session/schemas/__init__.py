"""Stream session schema definitions.

All Pydantic v2 models used by the controller, transports, and CLI.
"""

from stream_session.schemas.config import ControllerConfig, ModelConfig, RetryPolicy
from stream_session.schemas.messages import ChatTurn, Role, normalize_payload
from stream_session.schemas.streaming import SessionSnapshot, SessionStatus

__all__ = [
    "ChatTurn",
    "ControllerConfig",
    "ModelConfig",
    "RetryPolicy",
    "Role",
    "SessionSnapshot",
    "SessionStatus",
    "normalize_payload",
]
