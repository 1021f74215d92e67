"""Request payload schemas.

A payload is an ordered list of conversation turns. Callers may pass
bare strings (user turns), ``{"role": ..., "content": ...}`` dicts, or
ChatTurn instances; ``normalize_payload`` turns any of these into a
validated tuple of ChatTurn.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stream_session.errors import InvalidInputError


class Role(StrEnum):
    """Conversation roles understood by chat-completion services."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatTurn(BaseModel):
    """A single turn in the request payload."""

    model_config = ConfigDict(frozen=True)

    role: Role = Field(default=Role.USER, description="Who authored this turn")
    content: str = Field(description="Turn text")

    def to_openai(self) -> dict[str, str]:
        """Render as an OpenAI-format message dict."""
        return {"role": self.role.value, "content": self.content}


def normalize_payload(payload: Sequence[Any]) -> tuple[ChatTurn, ...]:
    """Validate a request payload and return it as ChatTurn instances.

    Raises:
        InvalidInputError: If the payload is empty, is a bare string, or
            contains a turn that cannot be interpreted.
    """
    if isinstance(payload, (str, bytes)) or not isinstance(payload, Sequence):
        raise InvalidInputError(
            f"Payload must be a sequence of turns, got {type(payload).__name__}"
        )
    if not payload:
        raise InvalidInputError("Payload must contain at least one turn")

    turns: list[ChatTurn] = []
    for index, item in enumerate(payload):
        if isinstance(item, ChatTurn):
            turns.append(item)
            continue
        try:
            if isinstance(item, str):
                turns.append(ChatTurn(content=item))
            elif isinstance(item, Mapping):
                turns.append(ChatTurn.model_validate(dict(item)))
            else:
                raise InvalidInputError(
                    f"Turn {index} has unsupported type {type(item).__name__}"
                )
        except ValidationError as e:
            raise InvalidInputError(f"Turn {index} is malformed: {e}") from e

    return tuple(turns)
