"""
Migration executor: applies and reverts descriptors against a wallet store.

Migration Philosophy:
- The applied set lives in the applied_migrations table and is read fresh
  at the start of every run, never cached in memory
- Each forward migration runs in its own transaction (atomic)
- A failed migration is rolled back and aborts the run; later pending
  migrations are not attempted
- The migration identity is recorded in the same transaction as its
  transformation, so the store is either fully migrated through the last
  successful descriptor or untouched by the failing one
- Rollback to an earlier migration reverts dependents first, all inside a
  single transaction; it is refused up front if any step is not revertible

The connection must have no transaction open when these functions are
called. Connections from storage.db.connect() run in autocommit mode and
satisfy this.

Example:
    >>> from wallet_ledger.migrations import build_wallet_registry
    >>> conn = connect("wallet.db")
    >>> report = apply_migrations(conn, build_wallet_registry())
    >>> len(report.applied)
    4
"""

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal
from uuid import UUID

from wallet_ledger.exceptions import (
    AlreadyAppliedError,
    DatabaseInitError,
    DatabaseQueryError,
    MigrationError,
    NotRevertibleError,
    TransformationError,
)
from wallet_ledger.utils.logging import log_with_context
from wallet_ledger.utils.time import utc_timestamp

from .base import Migration
from .registry import MigrationRegistry
from .resolver import resolve_pending, resolve_rollback

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE = "applied_migrations"

AlreadyAppliedPolicy = Literal["skip", "fail"]


@dataclass(frozen=True)
class AppliedMigration:
    """A row of the applied_migrations table."""

    migration_id: UUID
    description: str
    applied_at: str


@dataclass
class MigrationReport:
    """
    Outcome of a successful migration or rollback run.

    Failures are not reported here; they are raised as MigrationError
    subclasses identifying the failing descriptor.
    """

    applied: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    reverted: list[UUID] = field(default_factory=list)


def ensure_migrations_table(conn: sqlite3.Connection) -> None:
    """Create the applied_migrations table if it does not exist."""
    _require_no_transaction(conn)
    try:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                migration_id TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """)
        if conn.in_transaction:
            conn.commit()
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Failed to create {MIGRATIONS_TABLE} table: {e}") from e


def get_applied_migrations(conn: sqlite3.Connection) -> list[AppliedMigration]:
    """
    Read the applied set from the store, oldest first.

    Returns an empty list if the applied_migrations table does not exist yet.
    """
    try:
        exists = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (MIGRATIONS_TABLE,),
        ).fetchone()
        if exists is None:
            return []

        rows = conn.execute(
            f"SELECT migration_id, description, applied_at FROM {MIGRATIONS_TABLE} "
            f"ORDER BY applied_at, rowid"
        ).fetchall()
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Failed to read {MIGRATIONS_TABLE}: {e}") from e

    return [
        AppliedMigration(migration_id=UUID(row[0]), description=row[1], applied_at=row[2])
        for row in rows
    ]


def get_applied_ids(conn: sqlite3.Connection) -> set[UUID]:
    return {applied.migration_id for applied in get_applied_migrations(conn)}


def apply_migrations(
    conn: sqlite3.Connection,
    registry: MigrationRegistry,
    targets: Iterable[UUID] | None = None,
    on_already_applied: AlreadyAppliedPolicy = "skip",
) -> MigrationReport:
    """
    Apply every pending migration (or those needed by ``targets``) in order.

    Args:
        conn: Connection with no open transaction
        registry: Full catalog of descriptors
        targets: Restrict the run to the dependency closure of these
            identities. None applies everything pending.
        on_already_applied: Policy when a descriptor turns out to be
            recorded already at the moment it would run

    Returns:
        MigrationReport: Identities applied (and skipped) in order

    Raises:
        CycleError, UnknownDependencyError, UnknownMigrationError: Before
            any transformation runs
        TransformationError: A descriptor failed; it was rolled back and
            no later descriptor was attempted
        AlreadyAppliedError: Only with on_already_applied="fail"
        DatabaseError: If the store cannot be read or locked
    """
    ensure_migrations_table(conn)
    applied = get_applied_ids(conn)
    pending = resolve_pending(registry, applied, targets)

    report = MigrationReport()
    if not pending:
        logger.debug("Wallet schema is current, no migrations pending")
        return report

    logger.info(f"Applying {len(pending)} pending migration(s)")
    for migration in pending:
        if apply_migration(conn, migration, on_already_applied=on_already_applied):
            report.applied.append(migration.migration_id)
        else:
            report.skipped.append(migration.migration_id)

    logger.info(f"Applied {len(report.applied)} migration(s)")
    return report


def apply_migration(
    conn: sqlite3.Connection,
    migration: Migration,
    on_already_applied: AlreadyAppliedPolicy = "fail",
) -> bool:
    """
    Apply one descriptor in its own transaction and record it.

    Dependencies are not checked here; use apply_migrations() for that.

    Returns:
        bool: True if applied, False if skipped as already applied

    Raises:
        AlreadyAppliedError: If recorded already and policy is "fail"
        TransformationError: If the transformation or recording failed
        DatabaseInitError: If the store cannot be locked for writing
    """
    _begin(conn)
    try:
        if _is_recorded(conn, migration.migration_id):
            conn.rollback()
            if on_already_applied == "skip":
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Migration already applied, skipping",
                    context={"description": migration.description},
                    migration_id=migration.migration_id,
                )
                return False
            raise AlreadyAppliedError(
                f"Migration {migration.migration_id} ({migration.description}) is already applied",
                migration_id=migration.migration_id,
            )

        log_with_context(
            logger,
            logging.INFO,
            "Applying migration",
            context={"description": migration.description},
            migration_id=migration.migration_id,
        )

        try:
            migration.apply(conn)
            timestamp = utc_timestamp()
            conn.execute(
                f"INSERT INTO {MIGRATIONS_TABLE} (migration_id, description, applied_at) "
                f"VALUES (?, ?, ?)",
                (str(migration.migration_id), migration.description, timestamp),
            )
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(
                f"Migration {migration.migration_id} failed: {e}",
                exc_info=True,
                extra={"migration_id": migration.migration_id},
            )
            raise TransformationError(
                migration.migration_id, migration.description, e
            ) from e
    finally:
        # Interrupts bypass the handler above
        _rollback_if_open(conn)

    log_with_context(
        logger,
        logging.INFO,
        f"Migration applied at {timestamp}",
        context={"description": migration.description},
        migration_id=migration.migration_id,
    )
    return True


def rollback_migrations(
    conn: sqlite3.Connection,
    registry: MigrationRegistry,
    target: UUID | None,
) -> MigrationReport:
    """
    Revert applied migrations until only ``target`` and its dependencies remain.

    The plan is checked for descriptors without a reverse transformation
    before anything runs. The whole sequence runs in one transaction, so a
    failure part way leaves every migration applied.

    Args:
        conn: Connection with no open transaction
        registry: Full catalog of descriptors
        target: Migration to roll back to, or None to revert everything

    Returns:
        MigrationReport: Identities reverted, in the order they were reverted

    Raises:
        NotRevertibleError: A migration in the plan cannot be reverted
        TransformationError: A reverse transformation failed
        MigrationError: The target is unknown or not applied
        DatabaseInitError: If the store cannot be locked for writing
    """
    ensure_migrations_table(conn)
    applied = get_applied_ids(conn)
    plan = resolve_rollback(registry, applied, target)

    report = MigrationReport()
    if not plan:
        logger.info("Nothing to roll back")
        return report

    blocking = [m for m in plan if not m.is_revertible]
    if blocking:
        first = blocking[0]
        raise NotRevertibleError(
            f"Cannot roll back to {target}: migration {first.migration_id} "
            f"({first.description}) has no reverse transformation",
            migration_id=first.migration_id,
        )

    _begin(conn)
    try:
        for migration in plan:
            log_with_context(
                logger,
                logging.INFO,
                "Reverting migration",
                context={"description": migration.description},
                migration_id=migration.migration_id,
            )
            try:
                migration.revert(conn)
                conn.execute(
                    f"DELETE FROM {MIGRATIONS_TABLE} WHERE migration_id = ?",
                    (str(migration.migration_id),),
                )
            except MigrationError:
                raise
            except Exception as e:
                raise TransformationError(
                    migration.migration_id, migration.description, e, direction="revert"
                ) from e
            report.reverted.append(migration.migration_id)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.error(f"Rollback to {target} failed, no migration was reverted", exc_info=True)
        raise
    finally:
        _rollback_if_open(conn)

    logger.info(f"Reverted {len(report.reverted)} migration(s)")
    return report


def _is_recorded(conn: sqlite3.Connection, migration_id: UUID) -> bool:
    try:
        row = conn.execute(
            f"SELECT 1 FROM {MIGRATIONS_TABLE} WHERE migration_id = ?",
            (str(migration_id),),
        ).fetchone()
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Failed to read {MIGRATIONS_TABLE}: {e}") from e
    return row is not None


def _begin(conn: sqlite3.Connection) -> None:
    """Take the write lock for one migration or rollback sequence."""
    _require_no_transaction(conn)
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Failed to lock wallet database for migration: {e}") from e


def _rollback_if_open(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.rollback()


def _require_no_transaction(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        raise DatabaseInitError(
            "Migrations require a connection with no open transaction; "
            "commit or roll back pending work first"
        )
