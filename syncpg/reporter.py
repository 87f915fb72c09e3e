from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from syncpg.domain.messages import CommandComplete, SimpleQueryMessage, SimpleQueryRow


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]NULL[/dim]"
    return str(value)


def print_rows(
    rows: Sequence[Sequence[Any]],
    column_types: Optional[Sequence[str]] = None,
    console: Optional[Console] = None,
) -> None:
    """
    Render query rows as a rich table.

    Columns are numbered; their types are shown when the server reported
    them.
    """
    console = console or Console()
    if not rows:
        console.print("[yellow]No rows returned.[/yellow]")
        return

    width = len(rows[0])
    table = Table(box=box.ROUNDED, caption=f"{len(rows):,} row(s)")
    for i in range(width):
        header = f"#{i + 1}"
        if column_types is not None and i < len(column_types):
            header = f"{header}\n[dim]{column_types[i]}[/dim]"
        table.add_column(header, style="cyan")
    for row in rows:
        table.add_row(*(_cell(v) for v in row))
    console.print(table)


def print_messages(messages: List[SimpleQueryMessage], console: Optional[Console] = None) -> None:
    """
    Render simple-query output: one table per statement that returned rows,
    and the command tag of every statement.
    """
    console = console or Console()
    if not messages:
        console.print("[yellow]Empty query.[/yellow]")
        return

    pending: List[SimpleQueryRow] = []
    for message in messages:
        if isinstance(message, SimpleQueryRow):
            pending.append(message)
            continue
        if pending:
            table = Table(box=box.ROUNDED)
            for name in pending[0].columns:
                table.add_column(name, style="cyan")
            for row in pending:
                table.add_row(*(_cell(v) for v in row.values))
            console.print(table)
            pending = []
        if isinstance(message, CommandComplete):
            console.print(f"[green]{message.tag or 'OK'}[/green] [dim]({message.rows} row(s))[/dim]")


def print_tls_session(session: Dict[str, Any], console: Optional[Console] = None) -> None:
    """Render the outcome of a TLS negotiation."""
    console = console or Console()
    table = Table(title="TLS negotiation", box=box.ROUNDED, show_header=False)
    table.add_column("Property", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    for key, value in session.items():
        table.add_row(key, _cell(value))
    console.print(table)


def print_settings(settings: Dict[str, Any], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Effective settings", box=box.ROUNDED)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    for key, value in settings.items():
        table.add_row(key, _cell(value))
    console.print(table)


__all__ = ["print_messages", "print_rows", "print_settings", "print_tls_session"]
