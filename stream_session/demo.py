"""Offline demo of a streaming session with simulated transient failures.

Plays a scripted transport through a real StreamSessionController so the
retry, backoff, and reopen-boundary behavior can be watched without any
API keys.
"""

from __future__ import annotations

from rich.console import Console

from stream_session.controller import StreamSessionController
from stream_session.display import SessionDisplay
from stream_session.errors import TransientTransportError
from stream_session.providers.scripted import ScriptedAttempt, ScriptedTransport
from stream_session.schemas.config import ControllerConfig, RetryPolicy
from stream_session.schemas.streaming import SessionSnapshot

DEMO_PROMPT = "Explain exponential backoff in two sentences."

DEMO_FRAGMENTS: tuple[str, ...] = (
    "Exponential backoff ",
    "waits longer after ",
    "each failed attempt, ",
    "doubling the delay ",
    "so a struggling service ",
    "gets room to recover. ",
    "A cap on the delay ",
    "keeps the worst case bounded.",
)

DEMO_DELIMITER = " ⟲ "


def build_demo_transport(fail_times: int, fragment_delay: float = 0.05) -> ScriptedTransport:
    """Script ``fail_times`` interrupted attempts followed by a clean one."""
    attempts = [
        ScriptedAttempt(
            fragments=DEMO_FRAGMENTS[:2],
            error=TransientTransportError("connection reset by peer"),
        )
        for _ in range(fail_times)
    ]
    attempts.append(ScriptedAttempt(fragments=DEMO_FRAGMENTS))
    return ScriptedTransport(attempts=attempts, fragment_delay=fragment_delay)


async def run_demo(
    console: Console,
    *,
    fail_times: int = 2,
    max_attempts: int = 3,
    base_delay: float = 0.2,
    fragment_delay: float = 0.05,
) -> SessionSnapshot:
    """Run the scripted session under a live display and return its final snapshot."""
    transport = build_demo_transport(fail_times, fragment_delay)
    config = ControllerConfig(
        retry=RetryPolicy(max_attempts=max_attempts, backoff_base_delay=base_delay),
        attempt_timeout=10.0,
        reopen_delimiter=DEMO_DELIMITER,
    )

    display = SessionDisplay(console, f"demo — {DEMO_PROMPT}")
    async with StreamSessionController(transport, config) as controller:
        controller.events.add_listener(display.create_listener())
        with display:
            handle = controller.start([DEMO_PROMPT])
            try:
                await handle
            except TransientTransportError:
                pass  # reported through the returned snapshot
        return controller.snapshot()
