"""stream-session CLI — Typer + Rich terminal interface.

Commands: run, demo, models list, config show.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from stream_session import __version__
from stream_session.controller import StreamSessionController
from stream_session.display import SessionDisplay, status_markup
from stream_session.errors import StreamSessionError
from stream_session.providers.litellm_provider import LiteLLMTransport
from stream_session.providers.registry import load_controller_config, load_models
from stream_session.schemas.config import ControllerConfig, ModelConfig, RetryPolicy
from stream_session.schemas.streaming import SessionSnapshot, SessionStatus

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="stream-session",
    help="Stream LLM output through a cancellable, retrying session.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

models_app = typer.Typer(
    name="models",
    help="Inspect the model registry.",
    no_args_is_help=True,
)
app.add_typer(models_app, name="models")

config_app = typer.Typer(
    name="config",
    help="Show session controller configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"stream-session {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log session lifecycle and retries.",
    ),
) -> None:
    """stream-session — cancellable, retrying LLM streaming sessions."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


# ── Helpers ──────────────────────────────────────────────────────


def _load_registry(path: Path | None = None) -> dict[str, ModelConfig]:
    """Load the model registry, exit on error."""
    try:
        return load_models(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading models:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def _load_config(path: Path | None = None) -> ControllerConfig:
    """Load session controller config, exit on error."""
    try:
        return load_controller_config(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def _apply_overrides(
    base: ControllerConfig,
    max_attempts: int | None,
    timeout: float | None,
) -> ControllerConfig:
    """Build a validated ControllerConfig from ``base`` plus CLI overrides, exit on error."""
    try:
        retry = RetryPolicy(
            max_attempts=base.retry.max_attempts if max_attempts is None else max_attempts,
            backoff_base_delay=base.retry.backoff_base_delay,
            backoff_max_delay=base.retry.backoff_max_delay,
            classifier=base.retry.classifier,
        )
        return ControllerConfig(
            retry=retry,
            attempt_timeout=base.attempt_timeout if timeout is None else timeout,
            reopen_delimiter=base.reopen_delimiter,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid option:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def _display_summary(snapshot: SessionSnapshot) -> None:
    """Print a one-line outcome after the live panel closes."""
    console.print(
        f"{status_markup(snapshot.status)}  "
        f"[dim]{snapshot.fragment_count} fragments, "
        f"{snapshot.attempt} retries, "
        f"{len(snapshot.text)} chars[/dim]"
    )
    if snapshot.reopen_offsets:
        offsets = ", ".join(str(o) for o in snapshot.reopen_offsets)
        console.print(f"[dim]reopened at fragments: {offsets}[/dim]")
    if snapshot.status is SessionStatus.FAILED:
        console.print(
            f"[red]{type(snapshot.error).__name__}:[/red] {escape(snapshot.error_message)}"
        )


async def _stream(
    transport: LiteLLMTransport,
    config: ControllerConfig,
    prompt: str,
) -> SessionSnapshot:
    display = SessionDisplay(console, transport.name)
    async with StreamSessionController(transport, config) as controller:
        controller.events.add_listener(display.create_listener())
        with display:
            handle = controller.start([prompt])
            try:
                await handle
            except asyncio.CancelledError:
                controller.cancel()
                raise
            except StreamSessionError:
                pass  # reported through the snapshot
        return controller.snapshot()


# ── stream-session run ───────────────────────────────────────────


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    model: str = typer.Option(
        "gpt-4o-mini", "--model", "-m",
        help="Model registry key (see `stream-session models list`)",
    ),
    system: str = typer.Option(
        "", "--system", "-s",
        help="System prompt (overrides the registry entry)",
    ),
    max_attempts: int = typer.Option(
        None, "--max-attempts",
        help="Override max retries for transient failures",
    ),
    timeout: float = typer.Option(
        None, "--timeout", "-t",
        help="Override per-attempt timeout in seconds",
    ),
    config_path: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a session defaults TOML file",
    ),
    models_path: Path = typer.Option(
        None, "--models",
        help="Path to a models TOML file",
    ),
) -> None:
    """Stream a completion through a retrying session. Ctrl+C cancels."""
    registry = _load_registry(models_path)
    if model not in registry:
        console.print(f"[red]Model not found:[/red] '{model}'")
        console.print(f"[dim]Available: {', '.join(sorted(registry))}[/dim]")
        raise typer.Exit(1)

    model_config = registry[model]
    if system:
        model_config = model_config.model_copy(update={"system_prompt": system})

    config = _apply_overrides(_load_config(config_path), max_attempts, timeout)

    transport = LiteLLMTransport(model_config, request_timeout=config.attempt_timeout)
    try:
        snapshot = asyncio.run(_stream(transport, config, prompt))
    except KeyboardInterrupt:
        console.print(status_markup(SessionStatus.CANCELLED))
        raise typer.Exit(130) from None

    _display_summary(snapshot)
    if snapshot.status is not SessionStatus.SUCCEEDED:
        raise typer.Exit(1)


# ── stream-session demo ──────────────────────────────────────────


@app.command()
def demo(
    fail_times: int = typer.Option(
        2, "--fail-times", "-f",
        help="Number of simulated interrupted attempts",
    ),
    max_attempts: int = typer.Option(
        3, "--max-attempts",
        help="Max retries for transient failures",
    ),
    base_delay: float = typer.Option(
        0.2, "--base-delay",
        help="Backoff delay before the first retry, in seconds",
    ),
) -> None:
    """Run an offline scripted session with simulated transient failures."""
    from stream_session.demo import run_demo

    snapshot = asyncio.run(
        run_demo(
            console,
            fail_times=fail_times,
            max_attempts=max_attempts,
            base_delay=base_delay,
        )
    )
    _display_summary(snapshot)
    if snapshot.status is not SessionStatus.SUCCEEDED:
        raise typer.Exit(1)


# ── stream-session models ────────────────────────────────────────


@models_app.command("list")
def models_list(
    models_path: Path = typer.Option(
        None, "--models",
        help="Path to a models TOML file",
    ),
) -> None:
    """Show all registered models as a table."""
    registry = _load_registry(models_path)

    table = Table(title="Registered Models", show_lines=True)
    table.add_column("Key", style="bold cyan")
    table.add_column("Display Name")
    table.add_column("Provider", style="dim")
    table.add_column("LiteLLM Model")
    table.add_column("API Key Env", style="dim")

    for key, cfg in sorted(registry.items()):
        table.add_row(key, cfg.display_name, cfg.provider, cfg.model, cfg.api_key_env)

    console.print(table)
    console.print(f"\n[dim]{len(registry)} models registered[/dim]")


# ── stream-session config ────────────────────────────────────────


@config_app.command("show")
def config_show(
    config_path: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a session defaults TOML file",
    ),
) -> None:
    """Show session controller defaults."""
    config = _load_config(config_path)

    table = Table(title="Session Defaults", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    table.add_row("Max Attempts", str(config.retry.max_attempts))
    table.add_row("Backoff Base Delay", f"{config.retry.backoff_base_delay:.2f}s")
    table.add_row("Backoff Max Delay", f"{config.retry.backoff_max_delay:.2f}s")
    table.add_row("Attempt Timeout", f"{config.attempt_timeout:.1f}s")
    table.add_row("Reopen Delimiter", repr(config.reopen_delimiter))

    console.print(table)
