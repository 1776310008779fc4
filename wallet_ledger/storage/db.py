"""
SQLite database access for the wallet ledger.

This module provides connection setup, schema initialization through the
migration engine, inserts for the base ledger records, and the query
surface over the reconciled views.

The database tracks:
- accounts, blocks, transactions: chain and wallet metadata
- received_notes: notes received by wallet accounts (Sapling)
- sent_notes: the sender's record of each output the wallet created
- applied_migrations: which schema migrations have run

Example usage:
    >>> from wallet_ledger.storage.db import connect, init_db_if_needed
    >>> init_db_if_needed("./wallet.db")
    >>> conn = connect("./wallet.db")
    >>> get_account_transactions(conn, account_id=0)

Security:
    - ALL queries use parameterized statements to prevent SQL injection
    - Viewing keys are stored but never logged in full
"""

import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from uuid import UUID

from wallet_ledger.exceptions import DatabaseInitError, DatabaseQueryError
from wallet_ledger.ledger.models import (
    AccountTransaction,
    Block,
    LedgerSnapshot,
    PoolType,
    ReceivedNote,
    SentNote,
    Transaction,
    TxEvent,
    pool_code,
)
from wallet_ledger.migrations.executor import (
    AlreadyAppliedPolicy,
    MigrationReport,
    apply_migrations,
)
from wallet_ledger.migrations.wallet import build_wallet_registry

logger = logging.getLogger(__name__)


def connect(db_path: str | Path, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """
    Open a wallet database connection.

    The connection runs in autocommit mode (isolation_level=None): nothing
    opens a transaction implicitly, and the migration executor controls
    every transaction boundary with explicit BEGIN/COMMIT. Foreign key
    enforcement is switched on.

    Args:
        db_path: Filesystem path to the SQLite file, or ":memory:"
        busy_timeout_ms: How long to wait on a locked database

    Returns:
        sqlite3.Connection with sqlite3.Row row factory

    Raises:
        DatabaseInitError: If the database cannot be opened
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(
            str(db_path), timeout=busy_timeout_ms / 1000, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Failed to open wallet database {db_path}: {e}") from e

    return conn


def init_db_if_needed(
    db_path: str | Path,
    targets: Iterable[UUID] | None = None,
    on_already_applied: AlreadyAppliedPolicy = "skip",
    busy_timeout_ms: int = 5000,
) -> MigrationReport:
    """
    Create the wallet database if needed and apply pending migrations.

    Idempotent: on a current database this is a no-op.

    Args:
        db_path: Filesystem path to SQLite database file
        targets: Only migrate far enough to apply these migrations
        on_already_applied: "skip" or "fail" when a migration is found
            recorded at the moment it would run
        busy_timeout_ms: How long to wait on a locked database

    Returns:
        MigrationReport: What was applied during this call
    """
    conn = connect(db_path, busy_timeout_ms=busy_timeout_ms)
    try:
        return apply_migrations(
            conn,
            build_wallet_registry(),
            targets=targets,
            on_already_applied=on_already_applied,
        )
    finally:
        conn.close()


# ============================================================================
# Record inserts
# ============================================================================


def insert_account(conn: sqlite3.Connection, account: int, ufvk: str) -> None:
    conn.execute(
        "INSERT INTO accounts (account, ufvk) VALUES (?, ?)",
        (account, ufvk),
    )


def insert_block(conn: sqlite3.Connection, block: Block) -> None:
    """Insert a block. Blocks are immutable once inserted."""
    conn.execute(
        "INSERT INTO blocks (height, hash, time, sapling_tree) VALUES (?, ?, ?, ?)",
        (block.height, block.hash, block.time, block.sapling_tree),
    )


def insert_transaction(conn: sqlite3.Connection, tx: Transaction) -> None:
    """
    Insert a transaction, or fill in confirmation data for a known one.

    An existing row keeps any value the new record leaves as None, so
    mined height, raw bytes and fee can arrive after first observation.
    """
    conn.execute(
        """
        INSERT INTO transactions (id_tx, txid, block, tx_index, expiry_height, raw, fee)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (id_tx) DO UPDATE SET
            block = COALESCE(excluded.block, transactions.block),
            tx_index = COALESCE(excluded.tx_index, transactions.tx_index),
            expiry_height = COALESCE(excluded.expiry_height, transactions.expiry_height),
            raw = COALESCE(excluded.raw, transactions.raw),
            fee = COALESCE(excluded.fee, transactions.fee)
        """,
        (tx.id_tx, tx.txid, tx.block, tx.tx_index, tx.expiry_height, tx.raw, tx.fee),
    )


def insert_received_note(
    conn: sqlite3.Connection,
    note: ReceivedNote,
    diversifier: bytes = b"",
    rcm: bytes = b"",
) -> int:
    """
    Insert a received note.

    Returns:
        int: id_note of the new row
    """
    cursor = conn.execute(
        """
        INSERT INTO received_notes
            (tx, output_index, account, diversifier, value, rcm, nf, is_change, memo, spent)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            note.tx,
            note.output_index,
            note.account,
            diversifier,
            note.value,
            rcm,
            note.nf,
            note.is_change,
            note.memo,
            note.spent,
        ),
    )
    return cursor.lastrowid


def insert_sent_note(conn: sqlite3.Connection, note: SentNote) -> int:
    """
    Insert a sent note.

    Returns:
        int: id_note of the new row
    """
    cursor = conn.execute(
        """
        INSERT INTO sent_notes
            (tx, output_pool, output_index, from_account, to_address, to_account, value, memo)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            note.tx,
            note.output_pool,
            note.output_index,
            note.from_account,
            note.to_address,
            note.to_account,
            note.value,
            note.memo,
        ),
    )
    return cursor.lastrowid


def mark_note_spent(conn: sqlite3.Connection, nf: bytes, spending_tx: int) -> bool:
    """
    Record the transaction that spends the note with nullifier ``nf``.

    Returns:
        bool: True if a wallet note matched the nullifier
    """
    cursor = conn.execute(
        "UPDATE received_notes SET spent = ? WHERE nf = ?",
        (spending_tx, nf),
    )
    return cursor.rowcount > 0


# ============================================================================
# Query surface
# ============================================================================


def get_tx_events(conn: sqlite3.Connection, id_tx: int) -> list[TxEvent]:
    """
    Return the reconciled events of one transaction, ordered by output index.

    Raises:
        DatabaseQueryError: If v_tx_events does not exist (store not migrated)
    """
    rows = _query(
        conn,
        """
        SELECT id_tx, output_index, from_account, to_account, to_address,
               value, is_change, memo
        FROM v_tx_events
        WHERE id_tx = ?
        ORDER BY output_index
        """,
        (id_tx,),
    )
    return [
        TxEvent(
            id_tx=row["id_tx"],
            output_index=row["output_index"],
            from_account=row["from_account"],
            to_account=row["to_account"],
            to_address=row["to_address"],
            value=row["value"],
            is_change=bool(row["is_change"]),
            memo=row["memo"],
        )
        for row in rows
    ]


def get_account_transactions(
    conn: sqlite3.Connection,
    account_id: int | None = None,
    id_tx: int | None = None,
) -> list[AccountTransaction]:
    """
    Return per-(account, transaction) summaries, ordered by (account_id, id_tx).

    Args:
        conn: Wallet database connection
        account_id: Restrict to one account
        id_tx: Restrict to one transaction

    Raises:
        DatabaseQueryError: If v_transactions is missing or predates the
            double-entry fix
    """
    clauses = []
    params: list[int] = []
    if account_id is not None:
        clauses.append("account_id = ?")
        params.append(account_id)
    if id_tx is not None:
        clauses.append("id_tx = ?")
        params.append(id_tx)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    rows = _query(
        conn,
        f"""
        SELECT account_id, id_tx, mined_height, tx_index, txid, expiry_height, raw,
               net_transfer, fee_paid, has_change, sent_note_count,
               received_note_count, memo_count, block_time, expired_unmined
        FROM v_transactions
        {where}
        ORDER BY account_id, id_tx
        """,
        tuple(params),
    )
    return [
        AccountTransaction(
            account_id=row["account_id"],
            id_tx=row["id_tx"],
            mined_height=row["mined_height"],
            tx_index=row["tx_index"],
            txid=row["txid"],
            expiry_height=row["expiry_height"],
            raw=row["raw"],
            net_transfer=row["net_transfer"],
            fee_paid=row["fee_paid"],
            has_change=bool(row["has_change"]),
            sent_note_count=row["sent_note_count"],
            received_note_count=row["received_note_count"],
            memo_count=row["memo_count"],
            block_time=row["block_time"],
            expired_unmined=bool(row["expired_unmined"]),
        )
        for row in rows
    ]


def load_ledger(conn: sqlite3.Connection) -> LedgerSnapshot:
    """Read every base ledger record into typed dataclasses."""
    blocks = [
        Block(height=r["height"], hash=r["hash"], time=r["time"], sapling_tree=r["sapling_tree"])
        for r in _query(conn, "SELECT * FROM blocks ORDER BY height")
    ]
    transactions = [
        Transaction(
            id_tx=r["id_tx"],
            txid=r["txid"],
            block=r["block"],
            tx_index=r["tx_index"],
            expiry_height=r["expiry_height"],
            raw=r["raw"],
            fee=r["fee"],
        )
        for r in _query(conn, "SELECT * FROM transactions ORDER BY id_tx")
    ]
    received = [
        ReceivedNote(
            tx=r["tx"],
            output_index=r["output_index"],
            account=r["account"],
            value=r["value"],
            is_change=bool(r["is_change"]),
            memo=r["memo"],
            spent=r["spent"],
            nf=r["nf"],
            id_note=r["id_note"],
        )
        for r in _query(conn, "SELECT * FROM received_notes ORDER BY tx, output_index")
    ]
    sent = [
        SentNote(
            tx=r["tx"],
            output_pool=r["output_pool"],
            output_index=r["output_index"],
            from_account=r["from_account"],
            value=r["value"],
            to_account=r["to_account"],
            to_address=r["to_address"],
            memo=r["memo"],
            id_note=r["id_note"],
        )
        for r in _query(
            conn, "SELECT * FROM sent_notes ORDER BY tx, output_pool, output_index"
        )
    ]
    return LedgerSnapshot(
        blocks=blocks, transactions=transactions, received_notes=received, sent_notes=sent
    )


def count_change_without_sent_note(
    conn: sqlite3.Connection, pool: PoolType = PoolType.SAPLING
) -> int:
    """Count change notes still lacking a sent_notes row (0 after v_transactions_net)."""
    row = _query(
        conn,
        """
        SELECT COUNT(*) AS missing
        FROM received_notes
        WHERE received_notes.is_change
          AND NOT EXISTS (
              SELECT 1 FROM sent_notes
              WHERE sent_notes.tx = received_notes.tx
                AND sent_notes.output_index = received_notes.output_index
                AND sent_notes.output_pool = ?
          )
        """,
        (pool_code(pool),),
    )[0]
    return row["missing"]


def _query(
    conn: sqlite3.Connection, sql: str, params: tuple = ()
) -> list[sqlite3.Row]:
    try:
        cursor = conn.cursor()
        cursor.row_factory = sqlite3.Row
        return cursor.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Wallet query failed: {e}") from e
