"""Job Store Janitor CLI - Main Entry Point"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from janitor.config.logging import setup_logging
from janitor.config.settings import get_settings
from janitor.core.exceptions import ConfigurationError, StoreNotReadyError
from janitor.daemon import create_daemon, run_cleanup_once, run_notify_once
from janitor.infra.database import Database

from .utils.formatting import (
    create_cleanup_table,
    create_notify_table,
    print_error,
    print_info,
    print_success,
)

console = Console()

app = typer.Typer(
    name="janitor",
    help="🧹 Job Store Janitor - prunes expired jobs and reports failures",
    rich_markup_mode="rich",
)


@app.command()
def run():
    """🔁 Run the maintenance daemon until interrupted"""
    settings = get_settings()
    setup_logging(settings)
    print_info(f"Starting {settings.app_name} (Ctrl+C to stop)")

    try:
        asyncio.run(create_daemon(settings).run_forever())
    except StoreNotReadyError as e:
        print_error(f"{e.message}: {e.details.get('error', '')}")
        raise typer.Exit(1)


@app.command()
def cleanup(
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Report expired jobs without deleting them"
    ),
):
    """🗑️ Run one cleanup sweep and exit"""
    settings = get_settings()
    setup_logging(settings)

    try:
        result = asyncio.run(run_cleanup_once(settings, dry_run=dry_run))
    except StoreNotReadyError as e:
        print_error(f"{e.message}: {e.details.get('error', '')}")
        raise typer.Exit(1)

    console.print(create_cleanup_table(result, dry_run=dry_run))
    if not result.ok:
        print_error(f"Cleanup aborted: {result.error}")
        raise typer.Exit(1)
    print_success("Cleanup finished")


@app.command()
def notify():
    """📣 Run one failure notification sweep and exit"""
    settings = get_settings()
    setup_logging(settings)

    try:
        result = asyncio.run(run_notify_once(settings))
    except ConfigurationError as e:
        print_error(f"Failure notifications are disabled: {e.message}")
        raise typer.Exit(1)
    except StoreNotReadyError as e:
        print_error(f"{e.message}: {e.details.get('error', '')}")
        raise typer.Exit(1)

    console.print(create_notify_table(result))
    if not result.ok:
        print_error(f"Notification sweep aborted: {result.error}")
        raise typer.Exit(1)
    print_success("Notification sweep finished")


@app.command("init-ledger")
def init_ledger():
    """🗄️ Create the notification ledger table"""
    settings = get_settings()
    setup_logging(settings)

    async def _create() -> None:
        database = Database(settings)
        try:
            await database.create_ledger_table(settings.notifications_collection)
        finally:
            await database.close()

    asyncio.run(_create())
    print_success(f"Ledger table '{settings.notifications_collection}' is ready")


@app.command()
def version():
    """📎 Show version information"""
    from . import __version__

    settings = get_settings()
    console.print(Panel(
        f"🧹 [bold cyan]{settings.app_name}[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]\n"
        f"• Environment: [yellow]{settings.environment or 'unset'}[/yellow]\n"
        f"• Job table: [blue]{settings.jobs_collection}[/blue]",
        title="Version Info",
        border_style="cyan"
    ))


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    🧹 Job Store Janitor

    Deletes jobs whose last run finished longer ago than the expiration
    window and emails operators once per job failure.
    """
    if version:
        from . import __version__
        console.print(f"Job Store Janitor v{__version__}")
        raise typer.Exit()


if __name__ == "__main__":
    app()
