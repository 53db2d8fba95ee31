"""CLI commands for relaybot."""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from relaybot import __logo__, __version__

app = typer.Typer(
    name="relaybot",
    help=f"{__logo__} relaybot - Telegram media assistant",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} relaybot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """relaybot - Telegram media assistant."""
    pass


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def build_channel(config):
    """Wire the pipeline and Telegram channel from configuration."""
    from relaybot.audit.logger import AuditLogger
    from relaybot.channels.telegram import TelegramChannel
    from relaybot.handlers.media import MediaPipeline
    from relaybot.media.manager import FileAcquirer
    from relaybot.providers.backend import AnthropicBackend
    from relaybot.providers.transcription import create_transcription_provider
    from relaybot.security.rate_limiter import RateLimiter
    from relaybot.session.manager import SessionManager

    backend = AnthropicBackend(
        api_key=config.backend.api_key or None,
        model=config.backend.model,
        max_tokens=config.backend.max_tokens,
        system_prompt=config.backend.system_prompt,
    )
    sessions = SessionManager(backend)
    pipeline = MediaPipeline(
        sessions=sessions,
        rate_limiter=RateLimiter(
            max_requests=config.rate_limit.max_requests,
            window_seconds=config.rate_limit.window_seconds,
        ),
        acquirer=FileAcquirer(config.temp_path),
        audit=AuditLogger(config.audit_path),
        allow_from=config.telegram.allow_from,
        transcriber=create_transcription_provider(config.transcription),
        max_video_size=config.media.max_video_size,
        edit_interval=config.streaming.edit_interval,
    )
    return TelegramChannel(config.telegram, pipeline, sessions)


@app.command()
def run(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start the Telegram bot."""
    from relaybot.config.loader import load_config

    _configure_logging(verbose)
    config = load_config(config_path)

    if not config.telegram.token:
        console.print("[red]Error: no Telegram token configured (telegram.token)[/red]")
        raise typer.Exit(1)
    if not config.telegram.allow_from:
        console.print("[yellow]Warning: allow list is empty, every user will be refused[/yellow]")

    config.temp_path.mkdir(parents=True, exist_ok=True)
    channel = build_channel(config)

    console.print(f"{__logo__} Starting relaybot...")

    async def _run():
        try:
            await channel.start()
        finally:
            await channel.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


@app.command()
def status(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """Show relaybot configuration status."""
    from relaybot.config.loader import get_config_path, load_config

    path = config_path or get_config_path()
    config = load_config(path)

    table = Table(title=f"{__logo__} relaybot status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    def mark(ok: bool) -> str:
        return "[green]✓[/green]" if ok else "[red]✗[/red]"

    table.add_row("Config", f"{path} {mark(path.exists())}")
    table.add_row("Telegram token", mark(bool(config.telegram.token)))
    table.add_row("Allowed users", ", ".join(config.telegram.allow_from) or "[dim]none[/dim]")
    transcription_ok = config.transcription.provider != "none" and bool(config.transcription.api_key)
    table.add_row("Transcription", f"{config.transcription.provider} {mark(transcription_ok)}")
    table.add_row("Model", config.backend.model)
    table.add_row(
        "Rate limit",
        f"{config.rate_limit.max_requests} per {config.rate_limit.window_seconds:g}s",
    )
    table.add_row("Scratch dir", str(config.temp_path))
    table.add_row("Audit log", str(config.audit_path))

    console.print(table)
