"""
Rich console utilities for dual-mode CLI output.

Provides terminal output for humans and structured JSON for scripts.
All output functions adapt based on the global output_mode setting.

This module provides:
- OutputMode: Class to manage output format (text/json/quiet)
- Context managers: spinner()
- Output functions: success(), error(), warning(), info()
- Display functions: print_migration_table(), print_events_table(),
  print_summary_table(), print_imbalances_table()

Human Mode (--format text):
    - Rich spinners and colored tables
    - ANSI colors and Unicode symbols

Agent Mode (--format json):
    - Structured JSON output to stdout
    - No ANSI codes or spinners

Examples:
    >>> from wallet_ledger.utils.console import output_mode, spinner, success
    >>> output_mode.format = "text"
    >>> with spinner("Applying migrations..."):
    ...     report = apply_migrations(conn, registry)
    >>> success("Wallet schema is current")

    >>> output_mode.format = "json"
    >>> success("Wallet schema is current")  # Buffers to JSON
    >>> output_mode.flush_json()              # Outputs JSON to stdout
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: Output format - "text" (human) or "json" (agent)
        quiet: If True, suppress non-essential output
        _json_buffer: Internal buffer for JSON output in agent mode
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        """
        Initialize output mode.

        Raises:
            ValueError: If format_type is not "text" or "json"
        """
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """
        Add key-value pair to JSON buffer.

        Used in agent mode to accumulate structured data before final
        output via flush_json().
        """
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Output buffered JSON to stdout and clear buffer.

        Only outputs in agent mode. In human mode, this is a no-op.
        Bytes values (txids, memos) are written as hex.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=_json_default)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


def _json_default(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

# Global Rich console instances for human mode
console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """
    Context manager for showing a spinner during operations.

    Displays a Rich spinner with message in human mode.
    Silent in agent/quiet modes.
    """
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    """
    Print a success message.

    Human mode: Green checkmark with message
    Agent mode: Buffer to JSON
    """
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """
    Print an error message.

    Human mode: Red X with message to stderr
    Agent mode: Buffer to JSON
    """
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    """
    Print a warning message.

    Human mode: Yellow warning symbol with message
    Agent mode: Buffer to JSON
    """
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    """
    Print an info message.

    Human mode: Blue info symbol with message
    Agent/Quiet mode: Silent
    """
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_migration_table(migrations: list[dict]) -> None:
    """
    Print the state of every registered migration.

    Expected dict keys in migrations:
    - migration_id (str): Migration identity
    - description (str): Human-readable summary
    - applied_at (str | None): ISO timestamp, None if pending
    - revertible (bool): Whether a reverse transformation exists

    Human mode: Rich table in dependency order
    Agent mode: Buffer list as JSON
    """
    if output_mode.is_agent():
        output_mode.add_json("migrations", migrations)
        return

    if output_mode.quiet:
        return

    table = Table(title="Wallet Migrations", box=box.ROUNDED)
    table.add_column("Migration", style="cyan", no_wrap=True)
    table.add_column("Description")
    table.add_column("Applied", justify="center")
    table.add_column("Revertible", justify="center")

    for migration in migrations:
        applied_at = migration.get("applied_at")
        applied_str = f"[green]{applied_at}[/green]" if applied_at else "[yellow]pending[/yellow]"
        revertible_str = (
            "[green]✓[/green]" if migration.get("revertible") else "[red]✗[/red]"
        )
        table.add_row(
            migration.get("migration_id", ""),
            migration.get("description", ""),
            applied_str,
            revertible_str,
        )

    console.print(table)


def print_events_table(id_tx: int, events: list[dict]) -> None:
    """
    Print the reconciled outputs of one transaction.

    Expected dict keys match TxEvent fields.
    """
    if output_mode.is_agent():
        output_mode.add_json("id_tx", id_tx)
        output_mode.add_json("events", events)
        return

    if output_mode.quiet:
        return

    table = Table(title=f"Transaction {id_tx} Outputs", box=box.ROUNDED)
    table.add_column("Output", justify="right", style="cyan")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Value", justify="right", style="green")
    table.add_column("Change", justify="center")
    table.add_column("Memo", justify="center")

    for event in events:
        from_account = event.get("from_account")
        if event.get("to_account") is not None:
            recipient = f"account {event['to_account']}"
        else:
            recipient = event.get("to_address") or ""
        table.add_row(
            str(event.get("output_index", "")),
            "" if from_account is None else f"account {from_account}",
            recipient,
            str(event.get("value", 0)),
            "[yellow]change[/yellow]" if event.get("is_change") else "",
            "✓" if event.get("memo") is not None else "",
        )

    console.print(table)


def print_summary_table(summaries: list[dict]) -> None:
    """
    Print per-(account, transaction) summaries.

    Expected dict keys match AccountTransaction fields. Net transfers are
    colored green when positive and red when negative.
    """
    if output_mode.is_agent():
        output_mode.add_json("transactions", summaries)
        return

    if output_mode.quiet:
        return

    table = Table(title="Account Transactions", box=box.ROUNDED)
    table.add_column("Account", justify="right", style="cyan")
    table.add_column("Tx", justify="right", style="cyan")
    table.add_column("Height", justify="right")
    table.add_column("Net", justify="right")
    table.add_column("Fee", justify="right")
    table.add_column("Sent", justify="right")
    table.add_column("Received", justify="right")
    table.add_column("Memos", justify="right")
    table.add_column("Change", justify="center")
    table.add_column("Status", justify="center")

    for row in summaries:
        net = row.get("net_transfer", 0)
        if net > 0:
            net_str = f"[green]+{net}[/green]"
        elif net < 0:
            net_str = f"[red]{net}[/red]"
        else:
            net_str = "0"

        if row.get("mined_height") is not None:
            status_str = "[green]mined[/green]"
        elif row.get("expired_unmined"):
            status_str = "[red]expired[/red]"
        else:
            status_str = "[yellow]pending[/yellow]"

        fee = row.get("fee_paid")
        height = row.get("mined_height")
        table.add_row(
            str(row.get("account_id", "")),
            str(row.get("id_tx", "")),
            "" if height is None else str(height),
            net_str,
            "" if fee is None else str(fee),
            str(row.get("sent_note_count", 0)),
            str(row.get("received_note_count", 0)),
            str(row.get("memo_count", 0)),
            "✓" if row.get("has_change") else "",
            status_str,
        )

    console.print(table)


def print_imbalances_table(imbalances: list[dict]) -> None:
    """
    Print transactions whose note values do not net to the fee paid.

    Expected dict keys: id_tx, net_transfer_total, external_sent_total,
    fee, discrepancy.
    """
    if output_mode.is_agent():
        output_mode.add_json("imbalances", imbalances)
        return

    table = Table(title="Unbalanced Transactions", box=box.ROUNDED)
    table.add_column("Tx", justify="right", style="cyan")
    table.add_column("Net (all accounts)", justify="right")
    table.add_column("Sent externally", justify="right")
    table.add_column("Fee", justify="right")
    table.add_column("Discrepancy", justify="right", style="red")

    for row in imbalances:
        table.add_row(
            str(row.get("id_tx", "")),
            str(row.get("net_transfer_total", 0)),
            str(row.get("external_sent_total", 0)),
            str(row.get("fee", 0)),
            str(row.get("discrepancy", 0)),
        )

    console.print(table)
