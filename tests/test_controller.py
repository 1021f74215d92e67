"""Tests for stream_session.controller — session lifecycle, retries, cancellation."""

from __future__ import annotations

import asyncio
import gc
import logging
from collections.abc import AsyncIterator, Sequence
from unittest.mock import AsyncMock, patch

import pytest

from stream_session.controller import StreamSessionController
from stream_session.errors import (
    InvalidInputError,
    RetriesExhaustedError,
    SessionCancelledError,
    TerminalServiceError,
    TransientTransportError,
)
from stream_session.events import SessionEventType
from stream_session.providers.base import Transport
from stream_session.providers.scripted import ScriptedAttempt, ScriptedTransport
from stream_session.schemas.config import ControllerConfig, RetryPolicy
from stream_session.schemas.messages import ChatTurn
from stream_session.schemas.streaming import SessionStatus

_END = object()


# ── Helpers ───────────────────────────────────────────────────


class QueueTransport(Transport):
    """Transport whose streams are fed by the test, one queue per open."""

    def __init__(self) -> None:
        self.streams: list[asyncio.Queue] = []

    async def open(self, turns: Sequence[ChatTurn]) -> AsyncIterator[str]:
        queue: asyncio.Queue = asyncio.Queue()
        self.streams.append(queue)
        while True:
            item = await queue.get()
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


def _config(max_attempts: int = 3, **overrides) -> ControllerConfig:
    """ControllerConfig with zero backoff so retries run immediately."""
    retry = RetryPolicy(max_attempts=max_attempts, backoff_base_delay=0.0)
    return ControllerConfig(retry=retry, **overrides)


async def _until(predicate, ticks: int = 200) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    for _ in range(ticks):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def _event_types(controller: StreamSessionController) -> list[SessionEventType]:
    return [e.type for e in controller.events.history]


# ══════════════════════════════════════════════════════════════════
# Scenarios
# ══════════════════════════════════════════════════════════════════


class TestScenarios:
    @pytest.mark.asyncio
    async def test_plain_stream_succeeds(self):
        transport = ScriptedTransport([ScriptedAttempt(("He", "llo", ", world"))])
        controller = StreamSessionController(transport, _config())

        handle = controller.start(["hello"])
        text = await handle

        assert text == "Hello, world"
        snap = controller.snapshot()
        assert snap.status == SessionStatus.SUCCEEDED
        assert snap.text == "Hello, world"
        assert snap.fragment_count == 3
        assert snap.attempt == 0
        assert snap.error is None
        assert transport.opened[0] == (ChatTurn(content="hello"),)

    @pytest.mark.asyncio
    async def test_two_retries_then_success(self):
        drop = TransientTransportError("connection reset")
        transport = ScriptedTransport([
            ScriptedAttempt(("Hel",), error=drop),
            ScriptedAttempt((), error=drop),
            ScriptedAttempt(("lo",)),
        ])
        controller = StreamSessionController(transport, _config(max_attempts=3))

        text = await controller.start(["hello"])

        snap = controller.snapshot()
        assert snap.status == SessionStatus.SUCCEEDED
        assert snap.attempt == 2
        assert transport.open_count == 3
        # Pre-retry text is kept and the reopen points are recorded
        assert text == "Hello"
        assert snap.reopen_offsets == (1, 1)

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        drop = TransientTransportError("connection reset")
        transport = ScriptedTransport([ScriptedAttempt(error=drop)])
        controller = StreamSessionController(transport, _config(max_attempts=3))

        handle = controller.start(["hello"])
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await handle

        last = exc_info.value.last_error
        assert isinstance(last, TransientTransportError)
        assert str(last) == "connection reset"
        assert exc_info.value.attempts == 3
        assert exc_info.value.__cause__ is last
        assert transport.open_count == 4
        snap = controller.snapshot()
        assert snap.status == SessionStatus.FAILED
        assert snap.error is exc_info.value
        assert snap.attempt == 3

    @pytest.mark.asyncio
    async def test_cancel_after_two_of_five_fragments(self):
        transport = QueueTransport()
        controller = StreamSessionController(transport, _config())
        handle = controller.start(["hello"])

        await _until(lambda: transport.streams)
        stream = transport.streams[0]
        for fragment in ("one ", "two "):
            stream.put_nowait(fragment)
        await _until(lambda: controller.snapshot().fragment_count == 2)

        assert controller.cancel() is True
        frozen = controller.snapshot()

        for fragment in ("three ", "four ", "five"):
            stream.put_nowait(fragment)
        stream.put_nowait(_END)
        for _ in range(10):
            await asyncio.sleep(0)

        # Late deliveries from an unaborted transport change nothing
        assert controller.on_fragment(handle.generation, "three ") is False
        assert controller.on_stream_end(handle.generation) is False

        snap = controller.snapshot()
        assert snap == frozen
        assert snap.status == SessionStatus.CANCELLED
        assert snap.text == "one two "

        with pytest.raises(SessionCancelledError) as exc_info:
            await handle
        assert exc_info.value.superseded is False
        assert exc_info.value.partial_text == "one two "


# ══════════════════════════════════════════════════════════════════
# Start / input validation
# ══════════════════════════════════════════════════════════════════


class TestStart:
    @pytest.mark.asyncio
    async def test_initial_state_is_idle(self):
        controller = StreamSessionController(QueueTransport())
        snap = controller.snapshot()
        assert snap.status == SessionStatus.IDLE
        assert snap.generation == 0
        assert snap.text == ""

    @pytest.mark.asyncio
    async def test_empty_payload_rejected_synchronously(self):
        transport = QueueTransport()
        controller = StreamSessionController(transport)

        with pytest.raises(InvalidInputError):
            controller.start([])

        assert controller.status == SessionStatus.IDLE
        assert controller.generation == 0
        await asyncio.sleep(0)
        assert transport.streams == []

    @pytest.mark.asyncio
    async def test_malformed_turn_rejected(self):
        controller = StreamSessionController(QueueTransport())
        with pytest.raises(InvalidInputError):
            controller.start([{"role": "narrator", "content": "x"}])

    @pytest.mark.asyncio
    async def test_start_sets_streaming_and_generation(self):
        controller = StreamSessionController(QueueTransport())
        handle = controller.start(["hi"])
        assert controller.status == SessionStatus.STREAMING
        assert handle.generation == 1
        assert controller.generation == 1
        assert not handle.done()
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_dict_turns_are_passed_to_transport(self):
        transport = ScriptedTransport([ScriptedAttempt(("ok",))])
        controller = StreamSessionController(transport, _config())
        await controller.start([
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
        ])
        turns = transport.opened[0]
        assert [t.role.value for t in turns] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_start_after_terminal_begins_fresh(self):
        transport = ScriptedTransport([
            ScriptedAttempt(("first",)),
            ScriptedAttempt(("second",)),
        ])
        controller = StreamSessionController(transport, _config())
        assert await controller.start(["a"]) == "first"
        assert await controller.start(["b"]) == "second"

        snap = controller.snapshot()
        assert snap.generation == 2
        assert snap.text == "second"
        assert snap.attempt == 0

    @pytest.mark.asyncio
    async def test_start_requires_running_loop(self):
        controller = StreamSessionController(QueueTransport())

        def _outside_loop():
            controller.start(["hi"])

        loop = asyncio.get_running_loop()
        with pytest.raises(RuntimeError):
            await loop.run_in_executor(None, _outside_loop)


# ══════════════════════════════════════════════════════════════════
# Supersede / stale callbacks
# ══════════════════════════════════════════════════════════════════


class TestSupersede:
    @pytest.mark.asyncio
    async def test_new_start_drops_old_generation(self):
        transport = QueueTransport()
        controller = StreamSessionController(transport, _config())

        first = controller.start(["one"])
        await _until(lambda: len(transport.streams) == 1)
        transport.streams[0].put_nowait("old ")
        await _until(lambda: controller.snapshot().fragment_count == 1)

        second = controller.start(["two"])
        await _until(lambda: len(transport.streams) == 2)

        with pytest.raises(SessionCancelledError) as exc_info:
            await first
        assert exc_info.value.superseded is True
        assert exc_info.value.partial_text == "old "

        # Signals tagged with the old generation are discarded
        assert controller.on_fragment(first.generation, "stale ") is False
        assert controller.on_stream_end(first.generation) is False
        assert controller.on_stream_error(first.generation, TimeoutError()) is False
        assert controller.stale_discards == 3

        transport.streams[1].put_nowait("new")
        transport.streams[1].put_nowait(_END)
        assert await second == "new"

        snap = controller.snapshot()
        assert snap.generation == second.generation
        assert snap.text == "new"
        assert "old" not in snap.text

    @pytest.mark.asyncio
    async def test_supersede_recorded_in_start_event(self):
        controller = StreamSessionController(QueueTransport(), _config())
        first = controller.start(["one"])
        controller.start(["two"])

        started = [
            e for e in controller.events.history
            if e.type == SessionEventType.SESSION_STARTED
        ]
        assert started[0].data["superseded"] is None
        assert started[1].data["superseded"] == first.generation
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_supersede_cancels_pending_backoff(self):
        transport = ScriptedTransport([
            ScriptedAttempt(error=TransientTransportError("drop")),
            ScriptedAttempt(("fresh",)),
        ])
        config = ControllerConfig(
            retry=RetryPolicy(max_attempts=3, backoff_base_delay=60.0)
        )
        controller = StreamSessionController(transport, config)

        controller.start(["one"])
        await _until(
            lambda: SessionEventType.RETRY_SCHEDULED in _event_types(controller)
        )
        assert transport.open_count == 1

        second = controller.start(["two"])
        assert await asyncio.wait_for(second, timeout=1.0) == "fresh"
        # The first session never reopened after its backoff
        assert transport.open_count == 2


# ══════════════════════════════════════════════════════════════════
# Cancel
# ══════════════════════════════════════════════════════════════════


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_noop(self):
        controller = StreamSessionController(QueueTransport())
        before = controller.snapshot()
        assert controller.cancel() is False
        assert controller.snapshot() == before

    @pytest.mark.asyncio
    async def test_cancel_after_success_is_noop(self):
        transport = ScriptedTransport([ScriptedAttempt(("done",))])
        controller = StreamSessionController(transport, _config())
        await controller.start(["hi"])
        before = controller.snapshot()

        assert controller.cancel() is False
        assert controller.snapshot() == before
        assert controller.status == SessionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_cancel_after_failure_is_noop(self):
        transport = ScriptedTransport([
            ScriptedAttempt(error=TerminalServiceError("quota exhausted")),
        ])
        controller = StreamSessionController(transport, _config())
        with pytest.raises(TerminalServiceError):
            await controller.start(["hi"])
        before = controller.snapshot()

        assert controller.cancel() is False
        assert controller.snapshot() == before

    @pytest.mark.asyncio
    async def test_cancel_twice(self):
        controller = StreamSessionController(QueueTransport())
        controller.start(["hi"])
        assert controller.cancel() is True
        assert controller.cancel() is False
        assert controller.status == SessionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_prevents_reopen(self):
        transport = ScriptedTransport([
            ScriptedAttempt(("partial",), error=TransientTransportError("drop")),
            ScriptedAttempt(("never",)),
        ])
        config = ControllerConfig(
            retry=RetryPolicy(max_attempts=3, backoff_base_delay=60.0)
        )
        controller = StreamSessionController(transport, config)
        handle = controller.start(["hi"])

        await _until(
            lambda: SessionEventType.RETRY_SCHEDULED in _event_types(controller)
        )
        assert controller.snapshot().status == SessionStatus.STREAMING
        assert controller.cancel() is True

        with pytest.raises(SessionCancelledError):
            await handle
        for _ in range(10):
            await asyncio.sleep(0)

        assert transport.open_count == 1
        snap = controller.snapshot()
        assert snap.status == SessionStatus.CANCELLED
        assert snap.text == "partial"
        assert SessionEventType.REOPENED not in _event_types(controller)

    @pytest.mark.asyncio
    async def test_cancel_from_listener(self):
        transport = ScriptedTransport([ScriptedAttempt(("a", "b", "c", "d"))])
        controller = StreamSessionController(transport, _config())

        def _stop_after_two(snapshot):
            if snapshot.fragment_count == 2:
                controller.cancel()

        controller.subscribe(_stop_after_two)
        handle = controller.start(["hi"])

        with pytest.raises(SessionCancelledError):
            await handle
        await controller.aclose()
        assert controller.snapshot().text == "ab"

    @pytest.mark.asyncio
    async def test_awaiter_cancellation_does_not_cancel_session(self):
        transport = QueueTransport()
        controller = StreamSessionController(transport, _config())
        handle = controller.start(["hi"])

        waiter = asyncio.ensure_future(_await(handle))
        await _until(lambda: transport.streams)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert controller.status == SessionStatus.STREAMING
        transport.streams[0].put_nowait("still here")
        transport.streams[0].put_nowait(_END)
        assert await handle == "still here"


async def _await(handle):
    return await handle


# ══════════════════════════════════════════════════════════════════
# Errors and retries
# ══════════════════════════════════════════════════════════════════


class TestErrors:
    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self):
        quota = TerminalServiceError("quota exhausted")
        transport = ScriptedTransport([ScriptedAttempt(("x",), error=quota)])
        controller = StreamSessionController(transport, _config(max_attempts=5))

        with pytest.raises(TerminalServiceError) as exc_info:
            await controller.start(["hi"])

        assert type(exc_info.value) is TerminalServiceError
        assert str(exc_info.value) == "quota exhausted"
        assert transport.open_count == 1
        snap = controller.snapshot()
        assert snap.status == SessionStatus.FAILED
        assert snap.attempt == 0
        assert snap.text == "x"

    @pytest.mark.asyncio
    async def test_unknown_error_wrapped_as_terminal(self):
        bug = ValueError("malformed chunk")
        transport = ScriptedTransport([ScriptedAttempt(error=bug)])
        controller = StreamSessionController(transport, _config())

        with pytest.raises(TerminalServiceError) as exc_info:
            await controller.start(["hi"])

        assert isinstance(exc_info.value.__cause__, ValueError)
        assert "malformed chunk" in str(exc_info.value)
        assert transport.open_count == 1

    @pytest.mark.asyncio
    async def test_foreign_transient_error_retried(self):
        transport = ScriptedTransport([
            ScriptedAttempt(error=ConnectionResetError("peer reset")),
            ScriptedAttempt(("ok",)),
        ])
        controller = StreamSessionController(transport, _config())
        assert await controller.start(["hi"]) == "ok"
        assert controller.snapshot().attempt == 1

    @pytest.mark.asyncio
    async def test_zero_attempts_fails_on_first_transient(self):
        drop = TransientTransportError("drop")
        transport = ScriptedTransport([ScriptedAttempt(error=drop)])
        controller = StreamSessionController(transport, _config(max_attempts=0))

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await controller.start(["hi"])

        assert exc_info.value.attempts == 0
        assert transport.open_count == 1

    @pytest.mark.parametrize("max_attempts", [0, 1, 2, 5])
    @pytest.mark.asyncio
    async def test_retry_count_never_exceeds_budget(self, max_attempts):
        transport = ScriptedTransport([
            ScriptedAttempt(error=TransientTransportError("drop")),
        ])
        controller = StreamSessionController(transport, _config(max_attempts))

        with pytest.raises(RetriesExhaustedError):
            await controller.start(["hi"])
        for _ in range(10):
            await asyncio.sleep(0)

        assert controller.snapshot().attempt == max_attempts
        assert transport.open_count == max_attempts + 1
        assert controller.status == SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_custom_classifier(self):
        transport = ScriptedTransport([
            ScriptedAttempt(error=KeyError("flaky")),
            ScriptedAttempt(("ok",)),
        ])
        config = ControllerConfig(retry=RetryPolicy(
            backoff_base_delay=0.0,
            classifier=lambda e: isinstance(e, KeyError),
        ))
        controller = StreamSessionController(transport, config)
        assert await controller.start(["hi"]) == "ok"

    @pytest.mark.asyncio
    async def test_backoff_delays_are_exponential(self):
        transport = ScriptedTransport([
            ScriptedAttempt(error=TransientTransportError("drop")),
            ScriptedAttempt(error=TransientTransportError("drop")),
            ScriptedAttempt(error=TransientTransportError("drop")),
            ScriptedAttempt(("ok",)),
        ])
        config = ControllerConfig(retry=RetryPolicy(
            max_attempts=3, backoff_base_delay=1.0, backoff_max_delay=3.0,
        ))
        controller = StreamSessionController(transport, config)

        with patch(
            "stream_session.controller.asyncio.sleep", new_callable=AsyncMock,
        ) as mock_sleep:
            assert await controller.start(["hi"]) == "ok"

        delays = [call.args[0] for call in mock_sleep.call_args_list]
        assert delays == [1.0, 2.0, 3.0]
        retries = [
            e.data["delay"] for e in controller.events.history
            if e.type == SessionEventType.RETRY_SCHEDULED
        ]
        assert retries == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_attempt_timeout_forces_transient_error(self):
        transport = QueueTransport()
        controller = StreamSessionController(
            transport, _config(max_attempts=0, attempt_timeout=0.05),
        )

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await asyncio.wait_for(controller.start(["hi"]), timeout=2.0)

        last = exc_info.value.last_error
        assert isinstance(last, TransientTransportError)
        assert "timed out" in str(last)
        assert controller.status == SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_attempt_timeout_then_retry_succeeds(self):
        class _HangOnce(Transport):
            def __init__(self) -> None:
                self.opens = 0

            async def open(self, turns):
                self.opens += 1
                if self.opens == 1:
                    await asyncio.Event().wait()
                yield "recovered"

        transport = _HangOnce()
        controller = StreamSessionController(
            transport, _config(max_attempts=1, attempt_timeout=0.05),
        )
        text = await asyncio.wait_for(controller.start(["hi"]), timeout=2.0)

        assert text == "recovered"
        assert transport.opens == 2
        assert controller.snapshot().attempt == 1


# ══════════════════════════════════════════════════════════════════
# Reopen boundaries
# ══════════════════════════════════════════════════════════════════


class TestReopenBoundaries:
    @pytest.mark.asyncio
    async def test_reopened_event_carries_offset(self):
        transport = ScriptedTransport([
            ScriptedAttempt(("a", "b"), error=TransientTransportError("drop")),
            ScriptedAttempt(("c",)),
        ])
        controller = StreamSessionController(transport, _config())
        await controller.start(["hi"])

        reopened = [
            e for e in controller.events.history
            if e.type == SessionEventType.REOPENED
        ]
        assert len(reopened) == 1
        assert reopened[0].data["offset"] == 2
        assert reopened[0].snapshot.status == SessionStatus.STREAMING

    @pytest.mark.asyncio
    async def test_delimiter_in_rendered_text(self):
        transport = ScriptedTransport([
            ScriptedAttempt(("Hel",), error=TransientTransportError("drop")),
            ScriptedAttempt(("lo",)),
        ])
        controller = StreamSessionController(
            transport, _config(reopen_delimiter=" [retry] "),
        )
        text = await controller.start(["hi"])
        assert text == "Hel [retry] lo"
        assert controller.snapshot().reopen_offsets == (1,)

    @pytest.mark.asyncio
    async def test_status_stays_streaming_during_retry(self):
        transport = ScriptedTransport([
            ScriptedAttempt(("x",), error=TransientTransportError("drop")),
            ScriptedAttempt(("y",)),
        ])
        controller = StreamSessionController(transport, _config())
        await controller.start(["hi"])

        statuses = [e.snapshot.status for e in controller.events.history]
        assert SessionStatus.FAILED not in statuses
        assert statuses[-1] == SessionStatus.SUCCEEDED
        assert all(s == SessionStatus.STREAMING for s in statuses[:-1])


# ══════════════════════════════════════════════════════════════════
# Observation
# ══════════════════════════════════════════════════════════════════


class TestObservation:
    @pytest.mark.asyncio
    async def test_unawaited_failure_is_reported_only_through_events(self, caplog):
        transport = ScriptedTransport([
            ScriptedAttempt(error=TerminalServiceError("auth")),
        ])
        controller = StreamSessionController(transport, _config())
        seen: list = []
        controller.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="asyncio"):
            controller.start(["hi"])
            await _until(lambda: controller.status == SessionStatus.FAILED)
            await controller.aclose()
            del controller
            gc.collect()
            await asyncio.sleep(0)

        assert seen[-1].status == SessionStatus.FAILED
        assert seen[-1].error_message == "auth"
        assert "never retrieved" not in caplog.text

    @pytest.mark.asyncio
    async def test_awaiting_failed_handle_still_raises(self):
        transport = ScriptedTransport([
            ScriptedAttempt(error=TerminalServiceError("auth")),
        ])
        controller = StreamSessionController(transport, _config())
        handle = controller.start(["hi"])
        await _until(lambda: controller.status == SessionStatus.FAILED)

        with pytest.raises(TerminalServiceError, match="auth"):
            await handle
        with pytest.raises(TerminalServiceError):
            handle.result()

    @pytest.mark.asyncio
    async def test_snapshot_is_idempotent(self):
        transport = QueueTransport()
        controller = StreamSessionController(transport, _config())
        controller.start(["hi"])
        await _until(lambda: transport.streams)
        transport.streams[0].put_nowait("x")
        await _until(lambda: controller.snapshot().fragment_count == 1)

        assert controller.snapshot() == controller.snapshot()
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_subscriber_sees_every_fragment_in_order(self):
        transport = ScriptedTransport([ScriptedAttempt(("a", "b", "c"))])
        controller = StreamSessionController(transport, _config())
        texts: list[str] = []
        controller.subscribe(lambda s: texts.append(s.text))

        await controller.start(["hi"])

        # started, three fragments, succeeded
        assert texts == ["", "a", "ab", "abc", "abc"]

    @pytest.mark.asyncio
    async def test_subscription_context_unregisters(self):
        transport = ScriptedTransport([ScriptedAttempt(("a",))])
        controller = StreamSessionController(transport, _config())
        seen: list = []

        with controller.subscribe(seen.append) as subscription:
            assert subscription.active
        assert not subscription.active

        await controller.start(["hi"])
        assert seen == []

    @pytest.mark.asyncio
    async def test_aclose_drops_subscriptions(self):
        controller = StreamSessionController(QueueTransport(), _config())
        subscription = controller.subscribe(lambda s: None)
        controller.start(["hi"])

        await controller.aclose()

        assert controller.status == SessionStatus.CANCELLED
        assert not subscription.active
        assert controller.events.listener_count == 0
        with pytest.raises(RuntimeError):
            controller.start(["again"])

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        transport = ScriptedTransport([ScriptedAttempt(("ok",))])
        async with StreamSessionController(transport, _config()) as controller:
            assert await controller.start(["hi"]) == "ok"
        with pytest.raises(RuntimeError):
            controller.start(["hi"])

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_session(self):
        transport = ScriptedTransport([ScriptedAttempt(("a", "b"))])
        controller = StreamSessionController(transport, _config())

        def _boom(snapshot):
            raise RuntimeError("listener bug")

        controller.subscribe(_boom)
        assert await controller.start(["hi"]) == "ab"

    @pytest.mark.asyncio
    async def test_event_sequence(self):
        transport = ScriptedTransport([
            ScriptedAttempt(("a",), error=TransientTransportError("drop")),
            ScriptedAttempt(("b",)),
        ])
        controller = StreamSessionController(transport, _config())
        await controller.start(["hi"])

        assert _event_types(controller) == [
            SessionEventType.SESSION_STARTED,
            SessionEventType.FRAGMENT,
            SessionEventType.RETRY_SCHEDULED,
            SessionEventType.REOPENED,
            SessionEventType.FRAGMENT,
            SessionEventType.SUCCEEDED,
        ]


# ══════════════════════════════════════════════════════════════════
# Batched publication
# ══════════════════════════════════════════════════════════════════


class TestBatching:
    @pytest.mark.parametrize("size", [1, 2, 4, 16])
    @pytest.mark.asyncio
    async def test_final_text_independent_of_batching(self, size):
        fragments = [f"w{i} " for i in range(12)]
        transport = QueueTransport()
        controller = StreamSessionController(transport, _config())
        handle = controller.start(["hi"])

        for i in range(0, len(fragments), size):
            assert controller.on_fragments(handle.generation, fragments[i:i + size])
        assert controller.on_stream_end(handle.generation)

        assert await handle == "".join(fragments)
        assert controller.snapshot().fragment_count == len(fragments)
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_batch_publishes_once(self):
        controller = StreamSessionController(QueueTransport(), _config())
        handle = controller.start(["hi"])
        notifications: list = []
        controller.subscribe(notifications.append)

        controller.on_fragments(handle.generation, ["a", "b", "c"])

        assert len(notifications) == 1
        assert notifications[0].text == "abc"
        fragment_events = [
            e for e in controller.events.history
            if e.type == SessionEventType.FRAGMENT
        ]
        assert fragment_events[-1].data == {"delta": "abc", "fragments": 3}
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_empty_batch_is_silent(self):
        controller = StreamSessionController(QueueTransport(), _config())
        handle = controller.start(["hi"])
        notifications: list = []
        controller.subscribe(notifications.append)

        assert controller.on_fragments(handle.generation, []) is True
        assert notifications == []
        await controller.aclose()
