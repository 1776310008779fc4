"""
CLI entrypoint for the wallet ledger.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables, colored text
- Agent-friendly output: Structured JSON for automation

Commands:
    migrate: Apply pending wallet schema migrations
    rollback: Revert migrations back to a given migration
    status: Show applied and pending migrations
    events: Show the reconciled outputs of one transaction
    summary: Show per-account transaction summaries
    audit: Cross-check the views against an in-memory reconciliation and
           verify that every wallet-funded transaction balances

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, missing --db/--config)
    2: Database error (cannot open the store, store not migrated)
    3: Migration failure (transformation failed, not revertible, unknown id)
    4: Audit found imbalances or view mismatches

Examples:
    # Migrate a wallet database
    wallet-ledger migrate --db ./wallet.db

    # Stage a migration run using a config file
    wallet-ledger migrate --config ledger.config.yaml

    # Agent-friendly JSON output
    wallet-ledger summary --db ./wallet.db --account 0 --format json
"""

import logging
from dataclasses import asdict
from pathlib import Path
from uuid import UUID

import typer
from rich.traceback import install as install_rich_traceback

from wallet_ledger.config.loader import load_config
from wallet_ledger.config.schema import DatabaseSettings, LedgerConfig
from wallet_ledger.exceptions import (
    ConfigurationError,
    DatabaseError,
    MigrationError,
    TransformationError,
)
from wallet_ledger.ledger.reconcile import (
    build_events,
    find_imbalances,
    summarize_transactions,
)
from wallet_ledger.migrations.executor import (
    apply_migrations,
    get_applied_ids,
    get_applied_migrations,
    rollback_migrations,
)
from wallet_ledger.migrations.resolver import topological_order
from wallet_ledger.migrations.wallet import V_TRANSACTIONS_NET_ID, build_wallet_registry
from wallet_ledger.storage.db import (
    connect,
    get_account_transactions,
    get_tx_events,
    load_ledger,
)
from wallet_ledger.utils.console import (
    error,
    info,
    output_mode,
    print_events_table,
    print_imbalances_table,
    print_migration_table,
    print_summary_table,
    spinner,
    success,
    warning,
)
from wallet_ledger.utils.logging import setup_logging

# Install Rich tracebacks for better error messages
install_rich_traceback(show_locals=False)

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0  # Command completed
EXIT_CONFIG_ERROR = 1  # Config missing or invalid
EXIT_DB_ERROR = 2  # Store cannot be opened or queried
EXIT_MIGRATION_ERROR = 3  # Migration or rollback failed
EXIT_AUDIT_FAILURE = 4  # Ledger does not balance

app = typer.Typer(
    name="wallet-ledger",
    help="Migrate, reconcile and audit a shielded wallet ledger",
    add_completion=False,
)


def _fail(message: str, exit_code: int) -> typer.Exit:
    """Report an error in the current output mode and return the Exit to raise."""
    error(message)
    output_mode.flush_json()
    return typer.Exit(exit_code)


def _setup(format: str, verbose: bool, db: Path | None, config: Path | None) -> LedgerConfig:
    """
    Apply output flags, load settings and configure logging.

    --db overrides database.path from --config. With only --db, every
    other setting takes its default.

    Raises:
        typer.Exit: EXIT_CONFIG_ERROR if settings cannot be resolved
    """
    output_mode.format = format

    try:
        if config is not None:
            settings = load_config(config)
            if db is not None:
                settings.database.path = str(db)
        elif db is not None:
            settings = LedgerConfig(database=DatabaseSettings(path=str(db)))
        else:
            raise _fail("Either --db or --config is required", EXIT_CONFIG_ERROR)
    except ConfigurationError as e:
        setup_logging(verbose=verbose, quiet_logs=True)
        raise _fail(f"Configuration error: {e}", EXIT_CONFIG_ERROR) from e

    # stdout carries JSON in agent mode, keep stderr to warnings unless verbose
    setup_logging(verbose=verbose or settings.logging.verbose, quiet_logs=True)
    return settings


def _open_existing(settings: LedgerConfig):
    """Open a store that must already exist."""
    db_path = Path(settings.database.path)
    if settings.database.path != ":memory:" and not db_path.exists():
        raise _fail(f"Wallet database not found: {db_path}", EXIT_DB_ERROR)
    try:
        return connect(db_path, busy_timeout_ms=settings.database.busy_timeout_ms)
    except DatabaseError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e


def _require_reconciled(conn) -> None:
    """Exit unless the store has the reconciled transaction views."""
    if V_TRANSACTIONS_NET_ID not in get_applied_ids(conn):
        raise _fail(
            "Wallet database predates change reconciliation; run 'wallet-ledger migrate' first",
            EXIT_DB_ERROR,
        )


@app.command()
def migrate(
    db: Path | None = typer.Option(None, "--db", help="Path to the wallet SQLite database"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    target: UUID | None = typer.Option(
        None,
        "--target",
        "-t",
        help="Only migrate far enough to apply this migration id",
    ),
    on_already_applied: str | None = typer.Option(
        None,
        "--on-already-applied",
        help="'skip' or 'fail' when a migration is already recorded as it runs",
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Apply pending wallet schema migrations.

    Each migration runs in its own transaction. A failure rolls back the
    failing migration and stops the run; earlier migrations stay applied.

    Examples:
      wallet-ledger migrate --db ./wallet.db
      wallet-ledger migrate --config ledger.config.yaml --target 282fad2e-8372-4ca0-8bed-71821320909f
    """
    settings = _setup(format, verbose, db, config)

    target = target or settings.migrations.target
    policy = on_already_applied or settings.migrations.on_already_applied
    if policy not in ("skip", "fail"):
        raise _fail(
            f"--on-already-applied must be 'skip' or 'fail' (got: {policy})",
            EXIT_CONFIG_ERROR,
        )

    try:
        conn = connect(settings.database.path, busy_timeout_ms=settings.database.busy_timeout_ms)
    except DatabaseError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e

    try:
        with spinner("Applying migrations..."):
            report = apply_migrations(
                conn,
                build_wallet_registry(),
                targets=None if target is None else [target],
                on_already_applied=policy,
            )
    except TransformationError as e:
        raise _fail(f"{e} (cause: {e.__cause__!r})", EXIT_MIGRATION_ERROR) from e
    except MigrationError as e:
        raise _fail(str(e), EXIT_MIGRATION_ERROR) from e
    except DatabaseError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    finally:
        conn.close()

    if output_mode.is_agent():
        output_mode.add_json("applied", [str(mid) for mid in report.applied])
        output_mode.add_json("skipped", [str(mid) for mid in report.skipped])

    for migration_id in report.skipped:
        warning(f"Skipped already-applied migration {migration_id}")
    if report.applied:
        success(f"Applied {len(report.applied)} migration(s) to {settings.database.path}")
    else:
        success(f"Wallet schema is current: {settings.database.path}")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def rollback(
    to: UUID = typer.Option(
        ..., "--to", help="Migration id to roll back to (it stays applied)"
    ),
    db: Path | None = typer.Option(None, "--db", help="Path to the wallet SQLite database"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Revert every applied migration outside the target's dependency closure.

    The target and everything it depends on stay applied. All other applied
    migrations are reverted, dependents first, including ones unrelated to
    the target.

    Refused before any change if a migration to revert has no reverse
    transformation. The revert runs in a single transaction.
    """
    settings = _setup(format, verbose, db, config)
    conn = _open_existing(settings)

    try:
        with spinner(f"Rolling back to {to}..."):
            report = rollback_migrations(conn, build_wallet_registry(), to)
    except MigrationError as e:
        raise _fail(str(e), EXIT_MIGRATION_ERROR) from e
    except DatabaseError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    finally:
        conn.close()

    if output_mode.is_agent():
        output_mode.add_json("reverted", [str(mid) for mid in report.reverted])

    if report.reverted:
        success(f"Reverted {len(report.reverted)} migration(s)")
    else:
        success(f"Nothing to roll back, {to} is the latest applied migration")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def status(
    db: Path | None = typer.Option(None, "--db", help="Path to the wallet SQLite database"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Show every registered migration and whether the store has applied it."""
    settings = _setup(format, verbose, db, config)
    conn = _open_existing(settings)

    registry = build_wallet_registry()
    try:
        applied = {m.migration_id: m for m in get_applied_migrations(conn)}
        order = topological_order(registry)
    except MigrationError as e:
        raise _fail(str(e), EXIT_MIGRATION_ERROR) from e
    except DatabaseError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    finally:
        conn.close()

    rows = [
        {
            "migration_id": str(migration.migration_id),
            "description": migration.description,
            "applied_at": (
                applied[migration.migration_id].applied_at
                if migration.migration_id in applied
                else None
            ),
            "revertible": migration.is_revertible,
        }
        for migration in order
    ]
    print_migration_table(rows)

    unknown = [mid for mid in applied if mid not in registry]
    for migration_id in unknown:
        warning(f"Store records migration {migration_id}, unknown to this software")

    pending = sum(1 for row in rows if row["applied_at"] is None)
    if pending:
        info(f"{pending} migration(s) pending")
    else:
        success("Wallet schema is current")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def events(
    tx: int = typer.Option(..., "--tx", help="Internal transaction id (id_tx)"),
    db: Path | None = typer.Option(None, "--db", help="Path to the wallet SQLite database"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Show one event per output of a transaction, with change flagged."""
    settings = _setup(format, verbose, db, config)
    conn = _open_existing(settings)

    try:
        _require_reconciled(conn)
        tx_events = get_tx_events(conn, tx)
    except DatabaseError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    finally:
        conn.close()

    if not tx_events:
        warning(f"No outputs recorded for transaction {tx}")
    print_events_table(tx, [asdict(event) for event in tx_events])

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def summary(
    account: int | None = typer.Option(None, "--account", "-a", help="Only this account"),
    tx: int | None = typer.Option(None, "--tx", help="Only this transaction (id_tx)"),
    db: Path | None = typer.Option(None, "--db", help="Path to the wallet SQLite database"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Show net transfer, fee and note counts per (account, transaction)."""
    settings = _setup(format, verbose, db, config)
    conn = _open_existing(settings)

    try:
        _require_reconciled(conn)
        rows = get_account_transactions(conn, account_id=account, id_tx=tx)
    except DatabaseError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    finally:
        conn.close()

    print_summary_table([asdict(row) for row in rows])
    if output_mode.is_human() and not rows:
        info("No transactions match")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def audit(
    db: Path | None = typer.Option(None, "--db", help="Path to the wallet SQLite database"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Audit the ledger.

    Recomputes events and summaries from the base tables in memory and
    compares them with v_tx_events and v_transactions, then checks that
    for every wallet-funded transaction with a known fee the net transfers
    plus external sends equal the negated fee.
    """
    settings = _setup(format, verbose, db, config)
    conn = _open_existing(settings)

    try:
        _require_reconciled(conn)
        with spinner("Reconciling ledger..."):
            snapshot = load_ledger(conn)
            view_summaries = get_account_transactions(conn)
            view_events = {
                t.id_tx: get_tx_events(conn, t.id_tx) for t in snapshot.transactions
            }
    except DatabaseError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    finally:
        conn.close()

    expected = {(r.account_id, r.id_tx): r for r in summarize_transactions(snapshot)}
    actual = {(r.account_id, r.id_tx): r for r in view_summaries}
    mismatched = {
        key[1] for key in expected.keys() | actual.keys() if expected.get(key) != actual.get(key)
    }

    memory_events: dict[int, list] = {}
    for event in build_events(snapshot.received_notes, snapshot.sent_notes):
        row = event.to_event()
        memory_events.setdefault(row.id_tx, []).append(row)
    for id_tx, rows in view_events.items():
        if sorted(rows, key=repr) != sorted(memory_events.get(id_tx, []), key=repr):
            mismatched.add(id_tx)

    imbalances = find_imbalances(snapshot)
    mismatched = sorted(mismatched)

    if output_mode.is_agent():
        output_mode.add_json("transactions_checked", len(snapshot.transactions))
        output_mode.add_json("view_mismatches", mismatched)

    for id_tx in mismatched:
        warning(f"Views disagree with reconciled notes for transaction {id_tx}")

    if imbalances:
        print_imbalances_table(
            [asdict(i) | {"discrepancy": i.discrepancy} for i in imbalances]
        )

    if imbalances or mismatched:
        raise _fail(
            f"Audit failed: {len(imbalances)} unbalanced transaction(s), "
            f"{len(mismatched)} view mismatch(es)",
            EXIT_AUDIT_FAILURE,
        )

    if output_mode.is_agent():
        output_mode.add_json("imbalances", [])
    success(f"Ledger balances across {len(snapshot.transactions)} transaction(s)")
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
    ),
):
    """
    Wallet Ledger - migrate, reconcile and audit a shielded wallet store.

    Use --help on any command for details.
    """
    if version:
        from rich.console import Console

        console = Console()
        console.print(f"[bold cyan]wallet-ledger[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Quick start:")
        console.print("  wallet-ledger migrate --db ./wallet.db")
        console.print()
        console.print("Commands:")
        console.print("  migrate   Apply pending schema migrations")
        console.print("  rollback  Revert migrations back to a given migration")
        console.print("  status    Show applied and pending migrations")
        console.print("  events    Show the outputs of one transaction")
        console.print("  summary   Show per-account transaction summaries")
        console.print("  audit     Check that the ledger balances")


def _read_version() -> str:
    """
    Read version from package metadata (pyproject.toml).

    Returns:
        Version string (e.g., "0.1.0")
    """
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("wallet-ledger-migrations")
    except PackageNotFoundError:
        return "0.1.0"


if __name__ == "__main__":
    app()
