"""Rich Formatting Utilities for Sweep Summaries"""

from rich import box
from rich.console import Console
from rich.table import Table

from janitor.maintenance.cleanup import CleanupResult
from janitor.maintenance.failure_notify import NotifyResult

console = Console()


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_cleanup_table(result: CleanupResult, dry_run: bool = False) -> Table:
    """Create a summary table for a cleanup sweep"""
    title = "Cleanup (dry run)" if dry_run else "Cleanup"
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("Scanned", justify="right", style="cyan")
    table.add_column("Deleted" if not dry_run else "Would delete", justify="right", style="green")
    table.add_column("Malformed", justify="right", style="yellow")

    table.add_row(str(result.scanned), str(result.deleted), str(result.skipped_malformed))
    return table


def create_notify_table(result: NotifyResult) -> Table:
    """Create a summary table for a failure notification sweep"""
    table = Table(title="Failure notifications", box=box.ROUNDED)

    table.add_column("Failed jobs", justify="right", style="cyan")
    table.add_column("Notified", justify="right", style="green")
    table.add_column("Already notified", justify="right", style="white")
    table.add_column("Delivery failures", justify="right", style="red")
    table.add_column("Malformed", justify="right", style="yellow")

    table.add_row(
        str(result.scanned),
        str(result.notified),
        str(result.already_notified),
        str(result.delivery_failures),
        str(result.skipped_malformed),
    )
    return table
