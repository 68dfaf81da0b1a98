"""
DOCRELAY CLI — The Interface

  docrelay serve             (run the LINE webhook server)
  docrelay chat --user <id>  (talk to the relay from a terminal)
  docrelay status            (check config + API keys)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from docrelay.identity import __codename__, __tagline__, __version__, BANNER
from docrelay.config_loader import ConfigError, Secrets, load_config, validate_api_keys

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".docrelay" / ".env")

app = typer.Typer(
    name="docrelay",
    help=f"{__codename__} — {__tagline__}\nChat relay for a shared Notion page.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Override config YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run the webhook server."""
    import uvicorn

    from docrelay.server import build_app

    _print_banner()
    _configure_logging(verbose, quiet=False)

    try:
        web_app = build_app(config_file)
    except ConfigError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    console.print(f"[cyan]Listening on {host}:{port} — POST /webhook[/]")
    uvicorn.run(web_app, host=host, port=port, log_level="debug" if verbose else "info")


@app.command()
def chat(
    user: str = typer.Option("local", "--user", "-u", help="User id the session runs as"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Override config YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Talk to the relay from the terminal. Uses the real Notion page and GitHub."""
    from docrelay.controller import Relay

    _print_banner()
    _configure_logging(verbose)

    try:
        relay = Relay.from_config(load_config(config_file), Secrets.from_env())
    except ConfigError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    console.print("[dim]Empty line or Ctrl-D to quit.[/]\n")
    while True:
        try:
            message = Prompt.ask(f"[bold cyan]{user}[/]", default="", show_default=False)
        except EOFError:
            break
        if not message.strip():
            break

        reply = relay.handle(user, message)
        console.print(Panel(reply.text, title=reply.kind, border_style="bright_green"))


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Override config YAML"),
):
    """Show configuration and which API keys are present."""
    try:
        config = load_config(config_file)
    except ConfigError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    table = Table(title=f"{__codename__} v{__version__}", border_style="bright_green")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Editor model", config.routing.editor)
    table.add_row("Classifier model", config.routing.classifier)
    table.add_row("Notion page", config.notion.page_id or "[red]not set[/]")
    table.add_row("GitHub org", config.github.org)
    table.add_row("Max tool rounds", str(config.limits.max_tool_rounds))
    table.add_row("Proposal TTL", f"{config.limits.proposal_ttl_seconds}s")
    table.add_row("Targets", str(len(config.targets)))
    console.print(table)

    keys = Table(title="API Keys", border_style="cyan")
    keys.add_column("Key")
    keys.add_column("Status")
    for name, present in validate_api_keys().items():
        keys.add_row(name, "[green]✓ set[/]" if present else "[red]✗ missing[/]")
    console.print(keys)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool, quiet: bool = True) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(msg, style="dim", end="", highlight=False, markup=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(msg, style="dim", end="", highlight=False, markup=False),
            level="WARNING" if quiet else "INFO",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
