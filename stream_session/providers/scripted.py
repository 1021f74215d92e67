"""Scripted in-memory transport.

Replays a fixed script of attempts (each a list of fragments optionally
followed by a failure) without touching the network. Used by the
``demo`` command to show retries and reopen boundaries.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field

from stream_session.providers.base import Transport
from stream_session.schemas.messages import ChatTurn


@dataclass(frozen=True)
class ScriptedAttempt:
    """One request's worth of output: fragments, then end or ``error``.

    Each replay raises a fresh shallow copy of ``error``, so repeated
    attempts never share a traceback.
    """

    fragments: tuple[str, ...] = ()
    error: BaseException | None = None


@dataclass
class ScriptedTransport(Transport):
    """Transport that plays back ``attempts`` in order.

    The n-th ``open`` replays ``attempts[n]``; once the script runs out the
    last attempt is repeated.
    """

    attempts: Sequence[ScriptedAttempt]
    fragment_delay: float = 0.0
    opened: list[tuple[ChatTurn, ...]] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        if not self.attempts:
            raise ValueError("ScriptedTransport needs at least one attempt")

    @property
    def name(self) -> str:
        return "scripted"

    @property
    def open_count(self) -> int:
        return len(self.opened)

    async def open(self, turns: Sequence[ChatTurn]) -> AsyncIterator[str]:
        index = min(len(self.opened), len(self.attempts) - 1)
        self.opened.append(tuple(turns))
        attempt = self.attempts[index]

        for fragment in attempt.fragments:
            if self.fragment_delay:
                await asyncio.sleep(self.fragment_delay)
            yield fragment

        if attempt.error is not None:
            raise copy.copy(attempt.error)
