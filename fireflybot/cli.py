"""Fireflybot CLI — command line interface."""

import asyncio
import json
import time

import click
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from . import __version__
from .commands import Add, ParseError, is_command, parse
from .config import BotSettings, ConfigError, load_settings
from .ledger import TRANSACTIONS_API
from .transaction import synthesize

console = Console()

_config_arg = click.argument(
    "config_path", metavar="PATH_TO_CONFIG", type=click.Path(dir_okay=False),
)


def _load(config_path: str) -> BotSettings:
    try:
        return load_settings(config_path)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="fireflybot")
def cli():
    """Fireflybot — log expenses to Firefly III from a Matrix room 💸"""
    pass


# ── Run ──────────────────────────────────────────────────────

@cli.command()
@_config_arg
def run(config_path):
    """Start the bot and listen for commands."""
    from .main import run as run_bot, setup_logging

    settings = _load(config_path)
    setup_logging(settings.log_level)
    try:
        asyncio.run(run_bot(settings))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        console.print(f"[red]Fatal error: {type(e).__name__}: {escape(str(e))}[/red]")
        raise SystemExit(1)


# ── Categories ───────────────────────────────────────────────

@cli.command()
@_config_arg
def categories(config_path):
    """List ledger categories (checks URL and API key)."""
    from .ledger import FireflyClient, LedgerError

    settings = _load(config_path)

    async def _fetch() -> list[str]:
        async with FireflyClient(
            settings.firefly_url, settings.firefly_api_key, timeout=settings.firefly_timeout,
        ) as ledger:
            return await ledger.list_categories()

    try:
        names = asyncio.run(_fetch())
    except LedgerError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)

    table = Table(title=f"Categories at {settings.firefly_url}")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Name", style="bold")
    for i, name in enumerate(names, 1):
        table.add_row(str(i), escape(name))
    console.print(table)
    if not names:
        console.print("[dim]No categories defined.[/dim]")


# ── Parse (dry run) ──────────────────────────────────────────

@cli.command("parse")
@_config_arg
@click.argument("text")
@click.option("--sender", default="cli", show_default=True, help="Sender name used for tags")
def parse_cmd(config_path, text, sender):
    """Show what a chat command would do, without sending anything."""
    settings = _load(config_path)

    if not is_command(text):
        console.print("[dim]Ignored: not a command.[/dim]")
        return

    try:
        command = parse(text)
    except ParseError as e:
        console.print(f"[yellow]Reply:[/yellow] {escape(str(e))}")
        return

    if not isinstance(command, Add):
        console.print(f"[green]Command:[/green] {type(command).__name__}")
        return

    transaction = synthesize(
        command.request,
        sender=sender,
        timestamp=int(time.time() * 1000),
        source_account_id=settings.firefly_source_account_id,
    )
    payload = json.dumps(transaction.to_payload(), indent=2, ensure_ascii=False)
    console.print(f"[green]POST[/green] {settings.firefly_url}/{TRANSACTIONS_API}")
    console.print(Syntax(payload, "json"))


def main():
    cli()


if __name__ == "__main__":
    main()
