"""flowbench CLI: Typer + Rich terminal interface.

Commands: serve, stream, config show.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from flowbench import __version__
from flowbench.config import load_config
from flowbench.errors import ConfigError
from flowbench.scheduler.scheduler import UpdateScheduler
from flowbench.schemas.config import FlowbenchConfig, PolicyKind, policy_for
from flowbench.session import StreamingSession

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="flowbench",
    help="Paced token streaming for rendering benchmarks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    name="config",
    help="Show configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"flowbench {__version__}")
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
        help="Enable debug logging.",
    ),
) -> None:
    """flowbench: paced token streaming for rendering benchmarks."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Helpers ──────────────────────────────────────────────────────


def _load_config(path: Path | None) -> FlowbenchConfig:
    """Load configuration, exit on error."""
    try:
        return load_config(path)
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]Error loading config:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def _parse_policy(value: str) -> PolicyKind:
    try:
        return PolicyKind(value)
    except ValueError:
        valid = ", ".join(p.value for p in PolicyKind)
        console.print(f"[red]Invalid policy:[/red] {escape(value)}. Use: {valid}")
        raise typer.Exit(1) from None


def _env_port(default: int) -> int:
    """Port from $PORT when set, exit on a non-numeric value."""
    raw = os.environ.get("PORT")
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        console.print(f"[red]Invalid PORT:[/red] {escape(raw)}")
        raise typer.Exit(1) from None


# ── serve ────────────────────────────────────────────────────────


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: int = typer.Option(
        None, "--port", "-p", help="Port (default: $PORT, then config)"
    ),
    config_path: Path = typer.Option(None, "--config", help="Path to a TOML config"),
) -> None:
    """Run the token stream server."""
    try:
        import uvicorn

        from flowbench.server.app import create_app
    except ImportError:
        console.print(
            "[red]Server requires extra dependencies.[/red] "
            "Install with: [bold]pip install flowbench\\[server][/bold]"
        )
        raise typer.Exit(1) from None

    cfg = _load_config(config_path)
    bind_host = host or cfg.server.host
    bind_port = port if port is not None else _env_port(cfg.server.port)

    console.print(f"Server listening on [bold]http://{bind_host}:{bind_port}[/bold]")
    uvicorn.run(
        create_app(cfg.server, cfg.segments),
        host=bind_host,
        port=bind_port,
        log_level="info",
    )


# ── stream ───────────────────────────────────────────────────────


@app.command()
def stream(
    words: int = typer.Option(None, "--words", "-w", help="Token budget (server clamps)"),
    delay: int = typer.Option(None, "--delay", "-d", help="Inter-token delay in ms"),
    policy: str = typer.Option(
        None, "--policy",
        help="immediate, frame_batched, priority_deferred, or lag_tolerant",
    ),
    url: str = typer.Option(None, "--url", help="Server base URL (default from config)"),
    plain: bool = typer.Option(
        False, "--plain", help="Print the final text instead of a live view"
    ),
    config_path: Path = typer.Option(None, "--config", help="Path to a TOML config"),
) -> None:
    """Consume a token stream and render it live."""
    cfg = _load_config(config_path)

    scheduler_policy = cfg.scheduler
    if policy:
        scheduler_policy = policy_for(
            _parse_policy(policy), **scheduler_policy.model_dump(exclude={"policy"})
        )
    client_config = cfg.client
    if url:
        client_config = client_config.model_copy(update={"base_url": url})

    session = StreamingSession(
        UpdateScheduler(scheduler_policy),
        client_config,
        cfg.segments,
    )
    n_words = words if words is not None else cfg.server.default_words
    n_delay = delay if delay is not None else cfg.server.default_delay_ms

    try:
        asyncio.run(_run_stream(session, n_words, n_delay, plain))
    except KeyboardInterrupt:
        console.print("[dim]Stream cancelled.[/dim]")
        return

    if session.error is not None:
        console.print(f"[red]Stream failed:[/red] {escape(str(session.error))}")
        raise typer.Exit(1)

    if plain:
        console.print(session.text, markup=False, highlight=False)
    console.print(
        f"[dim]{session.token_count} tokens, "
        f"{session.scheduler.apply_count} applies, "
        f"{len(session.segments())} segments[/dim]"
    )


async def _run_stream(
    session: StreamingSession, words: int, delay: int, plain: bool
) -> None:
    """Run one session to completion, stopping it if the task is cancelled."""
    if plain:
        session.start(words, delay)
        try:
            await session.wait()
        except asyncio.CancelledError:
            session.stop()
            raise
        return

    from flowbench.display import StreamDisplay

    with StreamDisplay(console, session) as display:
        session.add_listener(display.on_apply)
        session.start(words, delay)
        try:
            await session.wait()
        except asyncio.CancelledError:
            session.stop()
            raise


# ── config ───────────────────────────────────────────────────────


@config_app.command("show")
def config_show(
    config_path: Path = typer.Option(None, "--config", help="Path to a TOML config"),
) -> None:
    """Show the effective configuration."""
    cfg = _load_config(config_path)

    table = Table(title="flowbench configuration", show_lines=False)
    table.add_column("Section", style="cyan")
    table.add_column("Key", style="bold")
    table.add_column("Value")

    for section_name, section in (
        ("server", cfg.server),
        ("client", cfg.client),
        ("scheduler", cfg.scheduler),
        ("segments", cfg.segments),
    ):
        for key, value in section.model_dump().items():
            table.add_row(section_name, key, escape(str(value)))

    console.print(table)
