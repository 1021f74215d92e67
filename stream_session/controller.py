"""Stream session controller.

Drives a Transport for one session at a time, folds the fragments it
yields into a FragmentBuffer, retries transient failures with
exponential backoff, and publishes read-only snapshots to subscribers.

Every callback that can mutate session state carries the generation
token of the session it belongs to. ``start`` issues a new generation,
so callbacks from superseded or cancelled sessions fail the ownership
check and are dropped instead of leaking into the current session.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from stream_session.aggregator import FragmentBuffer, fold, render
from stream_session.errors import (
    RetriesExhaustedError,
    SessionCancelledError,
    StreamSessionError,
    TerminalServiceError,
    TransientTransportError,
)
from stream_session.events import (
    SessionEvent,
    SessionEventEmitter,
    SessionEventType,
    Subscription,
)
from stream_session.providers.base import Transport
from stream_session.retry import short_error_reason
from stream_session.schemas.config import ControllerConfig
from stream_session.schemas.messages import ChatTurn, normalize_payload
from stream_session.schemas.streaming import SessionSnapshot, SessionStatus

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[SessionSnapshot], Any]


class _Step(StrEnum):
    """Driver steps. Each handler returns the next step."""

    OPEN = "open"
    BACKOFF = "backoff"
    DONE = "done"


@dataclass
class _Session:
    """Mutable session record. Owned by the controller, never handed out."""

    generation: int
    turns: tuple[ChatTurn, ...] = ()
    status: SessionStatus = SessionStatus.IDLE
    buffer: FragmentBuffer = field(default_factory=FragmentBuffer)
    error: BaseException | None = None
    attempt: int = 0
    reopen_offsets: list[int] = field(default_factory=list)
    retry_delay: float = 0.0
    future: asyncio.Future | None = None
    task: asyncio.Task | None = None


class SessionHandle:
    """Awaitable result of ``StreamSessionController.start``.

    Resolves to the final rendered text, or raises the surfaced
    StreamSessionError. Cancelling the awaiting task does not cancel the
    session; use ``StreamSessionController.cancel`` for that.
    """

    def __init__(self, generation: int, future: asyncio.Future) -> None:
        self._generation = generation
        self._future = future

    @property
    def generation(self) -> int:
        return self._generation

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> str:
        """Final text; raises the session's error or InvalidStateError if still running."""
        return self._future.result()

    def __await__(self):
        return asyncio.shield(self._future).__await__()

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<SessionHandle generation={self._generation} {state}>"


class StreamSessionController:
    """Owns the current streaming session and its lifecycle.

    Status moves IDLE -> STREAMING -> {SUCCEEDED, FAILED, CANCELLED}.
    Retries stay inside STREAMING: the attempt counter and reopen offsets
    change, the status does not.

    All mutation happens on the event loop thread through the ``on_*``
    callbacks; fragment append and listener notification complete before
    the next fragment is pulled from the transport.
    """

    def __init__(
        self,
        transport: Transport,
        config: ControllerConfig | None = None,
    ) -> None:
        self._transport = transport
        self._config = config or ControllerConfig()
        self._generation = 0
        self._session = _Session(generation=0)
        self._events = SessionEventEmitter()
        self._stale_discards = 0
        self._closed = False
        self._steps: dict[_Step, Callable[[_Session], Awaitable[_Step]]] = {
            _Step.OPEN: self._step_open,
            _Step.BACKOFF: self._step_backoff,
        }

    # ── Read interface ────────────────────────────────────────

    @property
    def config(self) -> ControllerConfig:
        return self._config

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def events(self) -> SessionEventEmitter:
        """Typed event stream (retries, reopen boundaries, transitions)."""
        return self._events

    @property
    def generation(self) -> int:
        """Generation token of the current session (0 before the first start)."""
        return self._generation

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def stale_discards(self) -> int:
        """Number of callbacks dropped because their session was no longer current."""
        return self._stale_discards

    def snapshot(self) -> SessionSnapshot:
        """Read-only view of the current session."""
        session = self._session
        return SessionSnapshot(
            generation=session.generation,
            status=session.status,
            text=self._render(session),
            error=session.error,
            attempt=session.attempt,
            fragment_count=len(session.buffer),
            reopen_offsets=tuple(session.reopen_offsets),
        )

    def subscribe(self, listener: SnapshotListener) -> Subscription:
        """Deliver a SessionSnapshot to ``listener`` on every change.

        The returned Subscription unregisters the listener when closed or
        used as a context manager; ``aclose`` closes all of them.
        """

        def _on_event(event: SessionEvent) -> Any:
            return listener(event.snapshot)

        return self._events.add_listener(_on_event)

    # ── Commands ──────────────────────────────────────────────

    def start(self, payload: Sequence[Any]) -> SessionHandle:
        """Start a new session, superseding any session still streaming.

        Must be called from a running event loop.

        Raises:
            InvalidInputError: If the payload is empty or malformed.
            RuntimeError: If the controller has been closed.
        """
        if self._closed:
            raise RuntimeError("Controller is closed")
        turns = normalize_payload(payload)
        loop = asyncio.get_running_loop()

        previous = self._session
        superseded: int | None = None
        if previous.status is SessionStatus.STREAMING:
            superseded = previous.generation
            previous.status = SessionStatus.CANCELLED
            self._abandon(previous, superseded=True)
            logger.info("Session %d superseded", previous.generation)

        self._generation += 1
        session = _Session(
            generation=self._generation,
            turns=turns,
            status=SessionStatus.STREAMING,
            future=loop.create_future(),
        )
        self._session = session
        session.task = loop.create_task(
            self._drive(session), name=f"stream-session-{session.generation}"
        )

        logger.info(
            "Session %d started via %s (%d turns)",
            session.generation, self._transport.name, len(turns),
        )
        self._publish(SessionEventType.SESSION_STARTED, superseded=superseded)
        return SessionHandle(session.generation, session.future)

    def cancel(self) -> bool:
        """Cancel the current session if it is streaming.

        Text received so far is frozen; the pending transport read or
        backoff wait is cancelled. Returns False (and changes nothing)
        when there is no streaming session.
        """
        session = self._session
        if session.status is not SessionStatus.STREAMING:
            return False

        session.status = SessionStatus.CANCELLED
        self._abandon(session, superseded=False)
        logger.info(
            "Session %d cancelled after %d fragments",
            session.generation, len(session.buffer),
        )
        self._publish(SessionEventType.CANCELLED)
        return True

    async def aclose(self) -> None:
        """Tear down: cancel the current session and drop every subscription."""
        if self._closed:
            return
        self._closed = True
        self.cancel()
        task = self._session.task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        await self._events.aclose()

    async def __aenter__(self) -> StreamSessionController:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ── Transport callbacks ───────────────────────────────────

    def on_fragment(self, generation: int, fragment: str) -> bool:
        """Append one fragment. Returns False if the callback was stale."""
        return self.on_fragments(generation, (fragment,))

    def on_fragments(self, generation: int, fragments: Iterable[str]) -> bool:
        """Append a batch of fragments and publish a single update."""
        if not self._owns(generation, "fragment"):
            return False
        batch = list(fragments)
        if not batch:
            return True

        session = self._session
        session.buffer = fold(batch, session.buffer)
        self._publish(
            SessionEventType.FRAGMENT,
            delta="".join(batch),
            fragments=len(batch),
        )
        return True

    def on_stream_end(self, generation: int) -> bool:
        """Resolve the session with its final text."""
        if not self._owns(generation, "end"):
            return False

        session = self._session
        session.status = SessionStatus.SUCCEEDED
        text = self._render(session)
        self._settle(session, result=text)
        logger.info(
            "Session %d succeeded (%d fragments, %d retries)",
            session.generation, len(session.buffer), session.attempt,
        )
        self._publish(SessionEventType.SUCCEEDED)
        return True

    def on_stream_error(self, generation: int, error: BaseException) -> bool:
        """Handle a failed attempt. Returns True when a retry was scheduled."""
        if not self._owns(generation, "error"):
            return False

        session = self._session
        policy = self._config.retry
        if policy.should_retry(session.attempt, error):
            session.attempt += 1
            session.retry_delay = policy.delay_for(session.attempt)
            reason = short_error_reason(error)
            logger.warning(
                "Stream retry %d/%d for session %d (%s, backoff: %.1fs)",
                session.attempt,
                policy.max_attempts,
                session.generation,
                reason,
                session.retry_delay,
            )
            self._publish(
                SessionEventType.RETRY_SCHEDULED,
                delay=session.retry_delay,
                reason=reason,
            )
            return True

        self._fail(session, self._surface(session, error))
        return False

    # ── Driver ────────────────────────────────────────────────

    async def _drive(self, session: _Session) -> None:
        step = _Step.OPEN
        try:
            while step is not _Step.DONE:
                if not self._is_current(session.generation):
                    return
                step = await self._steps[step](session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Session %d driver crashed", session.generation)
            if self._is_current(session.generation):
                self._fail(session, self._surface(session, e))

    async def _step_open(self, session: _Session) -> _Step:
        generation = session.generation
        if session.attempt:
            offset = len(session.buffer)
            session.reopen_offsets.append(offset)
            logger.info(
                "Session %d reopening (retry %d) at fragment %d",
                generation, session.attempt, offset,
            )
            self._publish(SessionEventType.REOPENED, offset=offset)

        timeout = self._config.attempt_timeout
        deadline = asyncio.timeout(timeout)
        error: BaseException
        try:
            async with deadline:
                stream = self._transport.open(session.turns)
                try:
                    async for fragment in stream:
                        if not self.on_fragment(generation, fragment):
                            return _Step.DONE
                finally:
                    aclose = getattr(stream, "aclose", None)
                    if aclose is not None:
                        await aclose()
        except TimeoutError as e:
            if deadline.expired():
                error = TransientTransportError(
                    f"Attempt {session.attempt + 1} timed out after {timeout:.1f}s"
                )
                error.__cause__ = e
            else:
                error = e
        except Exception as e:
            error = e
        else:
            self.on_stream_end(generation)
            return _Step.DONE

        if self.on_stream_error(generation, error):
            return _Step.BACKOFF
        return _Step.DONE

    async def _step_backoff(self, session: _Session) -> _Step:
        if session.retry_delay > 0:
            await asyncio.sleep(session.retry_delay)
        return _Step.OPEN

    # ── Internals ─────────────────────────────────────────────

    def _is_current(self, generation: int) -> bool:
        session = self._session
        return (
            generation == session.generation
            and session.status is SessionStatus.STREAMING
        )

    def _owns(self, generation: int, signal: str) -> bool:
        if self._is_current(generation):
            return True
        self._stale_discards += 1
        logger.debug(
            "Discarded stale %s from session %d (current: %d, %s)",
            signal, generation, self._session.generation, self._session.status,
        )
        return False

    def _render(self, session: _Session) -> str:
        return render(
            session.buffer,
            self._config.reopen_delimiter,
            session.reopen_offsets,
        )

    def _surface(self, session: _Session, error: BaseException) -> StreamSessionError:
        """Normalize a final error into the taxonomy."""
        if self._config.retry.is_retryable(error):
            exhausted = RetriesExhaustedError(session.attempt, error)
            exhausted.__cause__ = error
            return exhausted
        if isinstance(error, StreamSessionError):
            return error
        wrapped = TerminalServiceError(f"{type(error).__name__}: {error}")
        wrapped.__cause__ = error
        return wrapped

    def _fail(self, session: _Session, error: StreamSessionError) -> None:
        session.status = SessionStatus.FAILED
        session.error = error
        self._settle(session, error=error)
        self._mark_retrieved(session)
        logger.warning(
            "Session %d failed after %d retries: %s",
            session.generation, session.attempt, error,
        )
        self._publish(SessionEventType.FAILED, error_type=type(error).__name__)

    def _abandon(self, session: _Session, *, superseded: bool) -> None:
        """Stop a session's driver and reject its handle."""
        task = session.task
        if task is not None and not task.done():
            task.cancel()
        error = SessionCancelledError(
            session.generation,
            superseded=superseded,
            partial_text=self._render(session),
        )
        self._settle(session, error=error)
        self._mark_retrieved(session)

    @staticmethod
    def _mark_retrieved(session: _Session) -> None:
        # Errors are reported through status and events; handles may never be awaited
        future = session.future
        if future is not None and future.done() and not future.cancelled():
            future.exception()

    def _settle(
        self,
        session: _Session,
        *,
        result: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        future = session.future
        if future is None or future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _publish(self, event_type: SessionEventType, **data: Any) -> None:
        self._events.emit(event_type, self.snapshot(), **data)
