"""Streaming schemas for caller-visible session state.

Defines the SessionStatus lifecycle and the read-only SessionSnapshot
delivered to subscribers on every change.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(StrEnum):
    """Externally observable lifecycle of a session."""

    IDLE = "idle"
    STREAMING = "streaming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {SessionStatus.SUCCEEDED, SessionStatus.FAILED, SessionStatus.CANCELLED}
)


class SessionSnapshot(BaseModel):
    """Immutable view of the current session for observers."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    generation: int = Field(ge=0, description="Generation token of the session")
    status: SessionStatus = Field(description="Lifecycle status")
    text: str = Field(default="", description="Rendered text accumulated so far")
    error: BaseException | None = Field(
        default=None, description="Surfaced error, present only when failed"
    )
    attempt: int = Field(default=0, ge=0, description="Retries made so far")
    fragment_count: int = Field(default=0, ge=0, description="Fragments received")
    reopen_offsets: tuple[int, ...] = Field(
        default=(),
        description="Fragment indices where a retried request's output begins",
    )

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error is not None else ""
