"""
Status and summary output utilities using rich.
"""

from contextlib import contextmanager
from typing import Iterator

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

console = Console()


@contextmanager
def operation_status(operation: str, out: Console | None = None) -> Iterator[None]:
    """
    Context manager to show operation status.

    Usage:
        with operation_status("Uploading backup archive"):
            # do work
            pass

    Args:
        operation: Description of the operation
        out: Console to print to (defaults to the module console)

    Yields:
        None
    """
    out = out or console
    out.print(f"[bold blue]{escape(operation)}...[/bold blue]")

    try:
        yield
        out.print(f"[green]✓ {escape(operation)} complete[/green]")
    except Exception as e:
        out.print(f"[red]✗ {escape(operation)} failed: {escape(str(e))}[/red]")
        raise


def show_summary(title: str, items: dict[str, str | int], out: Console | None = None):
    """
    Show a formatted summary box.

    Args:
        title: Summary title
        items: Dictionary of items to show (key: value pairs)
        out: Console to print to (defaults to the module console)
    """
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")

    for key, value in items.items():
        table.add_row(key, escape(str(value)))

    panel = Panel(table, title=f"[bold]{title}[/bold]", border_style="blue")
    (out or console).print(panel)
