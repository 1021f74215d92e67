"""Session event emitter for live observers.

Emits structured events for every session milestone: start, fragments,
retries, reopen boundaries, and terminal transitions. Each event carries
the SessionSnapshot taken right after the change, so listeners never
need a handle into controller state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stream_session.schemas.streaming import SessionSnapshot

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 256


class SessionEventType(StrEnum):
    """Types of session events delivered to listeners."""

    SESSION_STARTED = "session_started"
    FRAGMENT = "fragment"
    RETRY_SCHEDULED = "retry_scheduled"
    REOPENED = "reopened"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SessionEvent(BaseModel):
    """A single session event."""

    model_config = ConfigDict(frozen=True)

    type: SessionEventType = Field(description="Event type")
    snapshot: SessionSnapshot = Field(description="Session state after the change")
    timestamp: float = Field(
        default_factory=time.time,
        description="Unix timestamp when the event occurred",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event payload, varies by event type",
    )


# Type alias for event listener callbacks
EventListener = Callable[[SessionEvent], Any]


class Subscription:
    """Registration handle returned by ``SessionEventEmitter.add_listener``.

    Closing it (directly or by leaving a ``with`` block) removes the
    listener. The emitter closes every outstanding subscription when it is
    itself closed, so owners never need to track a "still mounted" flag.
    """

    def __init__(self, emitter: SessionEventEmitter, listener: EventListener) -> None:
        self._emitter = emitter
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if self._active:
            self._active = False
            self._emitter.remove_listener(self._listener)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class SessionEventEmitter:
    """Broadcasts session events to registered listeners.

    Listeners run synchronously, in registration order, at the point the
    controller publishes. A listener that returns a coroutine has it
    scheduled on the running loop. Listener exceptions are logged but
    never propagate into the controller.
    """

    def __init__(self, history_limit: int = _HISTORY_LIMIT) -> None:
        self._listeners: list[EventListener] = []
        self._subscriptions: list[Subscription] = []
        self._history: deque[SessionEvent] = deque(maxlen=history_limit)
        self._pending: set[asyncio.Task] = set()

    @property
    def history(self) -> list[SessionEvent]:
        """Most recent events (for late-attaching observers)."""
        return list(self._history)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: EventListener) -> Subscription:
        """Register a listener and return its Subscription."""
        self._listeners.append(listener)
        subscription = Subscription(self, listener)
        self._subscriptions.append(subscription)
        return subscription

    def remove_listener(self, listener: EventListener) -> None:
        """Remove a previously registered listener."""
        self._listeners = [ln for ln in self._listeners if ln is not listener]
        self._subscriptions = [
            s for s in self._subscriptions if s._listener is not listener
        ]

    def emit(
        self,
        event_type: SessionEventType,
        snapshot: SessionSnapshot,
        **data: Any,
    ) -> SessionEvent:
        """Create a SessionEvent and dispatch it to every listener."""
        event = SessionEvent(type=event_type, snapshot=snapshot, data=data)
        self._history.append(event)

        for listener in list(self._listeners):
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    self._schedule(result, event_type)
            except Exception:
                logger.exception("Session listener error for %s", event_type)
        return event

    def _schedule(self, coro: Any, event_type: SessionEventType) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "Async session listener error for %s",
                    event_type,
                    exc_info=t.exception(),
                )

        task.add_done_callback(_done)

    async def aclose(self) -> None:
        """Close all subscriptions and wait for scheduled async listeners."""
        for subscription in list(self._subscriptions):
            subscription.close()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
