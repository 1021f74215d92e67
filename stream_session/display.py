"""Live terminal display for a streaming session.

Renders a Rich Live panel with the session status, the text streamed so
far, and a short activity log of retries and reopen boundaries. The
display only ever sees SessionEvents, never controller internals.
"""

from __future__ import annotations

import time
from collections import deque

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from stream_session.events import EventListener, SessionEvent, SessionEventType
from stream_session.schemas.streaming import SessionSnapshot, SessionStatus

_STATUS_MARKUP: dict[SessionStatus, str] = {
    SessionStatus.IDLE: "[dim]○ idle[/dim]",
    SessionStatus.STREAMING: "[bold cyan]◉ streaming[/bold cyan]",
    SessionStatus.SUCCEEDED: "[bold green]● succeeded[/bold green]",
    SessionStatus.FAILED: "[bold red]✗ failed[/bold red]",
    SessionStatus.CANCELLED: "[bold yellow]⊘ cancelled[/bold yellow]",
}

_BORDER_STYLE: dict[SessionStatus, str] = {
    SessionStatus.IDLE: "dim",
    SessionStatus.STREAMING: "cyan",
    SessionStatus.SUCCEEDED: "green",
    SessionStatus.FAILED: "red",
    SessionStatus.CANCELLED: "yellow",
}


def status_markup(status: SessionStatus) -> str:
    """Rich markup label for a status."""
    return _STATUS_MARKUP[status]


class SessionDisplay:
    """Single-panel live view of one controller's current session.

    Use as a context manager around the session, and register
    ``create_listener()`` with the controller's event emitter.
    """

    def __init__(self, console: Console, title: str, *, max_lines: int = 40) -> None:
        self._console = console
        self._title = title
        self._max_lines = max_lines
        self._snapshot: SessionSnapshot | None = None
        self._activity_log: deque[tuple[float, str]] = deque(maxlen=8)
        self._start_time = time.monotonic()
        self._live: Live | None = None

    @property
    def snapshot(self) -> SessionSnapshot | None:
        """Last snapshot rendered."""
        return self._snapshot

    @property
    def activity(self) -> list[str]:
        return [message for _, message in self._activity_log]

    def __enter__(self) -> SessionDisplay:
        """Start the Rich Live display."""
        self._start_time = time.monotonic()
        self._live = Live(
            self._build_panel(),
            console=self._console,
            refresh_per_second=8,
            transient=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args: object) -> None:
        """Stop the Rich Live display."""
        if self._live:
            self._live.update(self._build_panel())
            self._live.__exit__(*args)
            self._live = None

    def create_listener(self) -> EventListener:
        """Create an event listener for the controller's event emitter."""

        def _handle(event: SessionEvent) -> None:
            self._handle_event(event)
            self._refresh()

        return _handle

    # ── Event handling ────────────────────────────────────────────

    def _handle_event(self, event: SessionEvent) -> None:
        self._snapshot = event.snapshot
        data = event.data

        if event.type == SessionEventType.SESSION_STARTED:
            self._log(f"session {event.snapshot.generation} started")
        elif event.type == SessionEventType.RETRY_SCHEDULED:
            self._log(
                f"[yellow]retry {event.snapshot.attempt}[/yellow] "
                f"({data.get('reason', '')}, backoff {data.get('delay', 0):.1f}s)"
            )
        elif event.type == SessionEventType.REOPENED:
            self._log(f"reopened at fragment {data.get('offset', 0)}")
        elif event.type == SessionEventType.FAILED:
            self._log(f"[red]{event.snapshot.error_message}[/red]")
        elif event.type in (SessionEventType.SUCCEEDED, SessionEventType.CANCELLED):
            self._log(status_markup(event.snapshot.status))

    def _log(self, message: str) -> None:
        elapsed = time.monotonic() - self._start_time
        self._activity_log.append((elapsed, message))

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._build_panel())

    # ── Rendering ─────────────────────────────────────────────────

    def _build_panel(self) -> Panel:
        snap = self._snapshot
        status = snap.status if snap else SessionStatus.IDLE

        header = Text.from_markup(
            f"{status_markup(status)}  "
            f"[dim]fragments:[/dim] {snap.fragment_count if snap else 0}  "
            f"[dim]retries:[/dim] {snap.attempt if snap else 0}"
        )

        body_text = snap.text if snap else ""
        lines = body_text.splitlines()
        if len(lines) > self._max_lines:
            body_text = "\n".join(lines[-self._max_lines:])
        body = Text(body_text or "…", style="" if body_text else "dim")

        log = Text()
        for elapsed, message in self._activity_log:
            log.append(f"{elapsed:5.1f}s ", style="dim")
            log.append_text(Text.from_markup(message))
            log.append("\n")

        return Panel(
            Group(header, Text(""), body, Text(""), log),
            title=f"[bold]{self._title}[/bold]",
            border_style=_BORDER_STYLE[status],
        )
