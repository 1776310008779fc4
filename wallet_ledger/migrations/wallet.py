"""
The wallet store's migration chain.

Schema history:
- initial_setup: accounts, blocks, transactions, received_notes
- add_sent_notes: sent_notes (sender-side record of each output)
- add_transaction_views: v_tx_received, v_tx_sent, v_transactions, which
  count change as both received and sent value
- v_transactions_net: backfills sent_notes for change, replaces the views
  with v_tx_events and a double-entry v_transactions (not revertible)

Identities are fixed UUIDs. Never change an identity or the behavior of a
released migration; add a new one instead.
"""

import logging
import sqlite3
from uuid import UUID

from wallet_ledger.ledger.models import PoolType
from wallet_ledger.storage.views import (
    compile_change_backfill,
    compile_legacy_views,
    compile_views,
)

from .base import Migration, depends_on, execute_statements
from .registry import MigrationRegistry

logger = logging.getLogger(__name__)

INITIAL_SETUP_ID = UUID("bc4a9f4e-4d1a-4b6e-9c7b-1a2f5e8c3d90")
ADD_SENT_NOTES_ID = UUID("5b1e3a7c-8f2d-4c0a-b6e9-3d4f7a1c2e58")
ADD_TRANSACTION_VIEWS_ID = UUID("282fad2e-8372-4ca0-8bed-71821320909f")
V_TRANSACTIONS_NET_ID = UUID("2aa4d24f-51aa-4a4c-8d9b-e5b8a762865f")


def _initial_setup_up(conn: sqlite3.Connection) -> None:
    """
    Create the base wallet tables.

    received_notes holds Sapling notes only, so its pool is implied and its
    outputs are unique per (tx, output_index).
    """
    execute_statements(
        conn,
        [
            """
            CREATE TABLE accounts (
                account INTEGER PRIMARY KEY,
                ufvk TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE blocks (
                height INTEGER PRIMARY KEY,
                hash BLOB NOT NULL,
                time INTEGER NOT NULL,
                sapling_tree BLOB NOT NULL
            )
            """,
            """
            CREATE TABLE transactions (
                id_tx INTEGER PRIMARY KEY,
                txid BLOB NOT NULL UNIQUE,
                created TEXT,
                block INTEGER,
                tx_index INTEGER,
                expiry_height INTEGER,
                raw BLOB,
                fee INTEGER,
                FOREIGN KEY (block) REFERENCES blocks(height)
            )
            """,
            """
            CREATE TABLE received_notes (
                id_note INTEGER PRIMARY KEY,
                tx INTEGER NOT NULL,
                output_index INTEGER NOT NULL,
                account INTEGER NOT NULL,
                diversifier BLOB NOT NULL,
                value INTEGER NOT NULL CHECK (value >= 0),
                rcm BLOB NOT NULL,
                nf BLOB UNIQUE,
                is_change INTEGER NOT NULL,
                memo BLOB,
                spent INTEGER,
                FOREIGN KEY (tx) REFERENCES transactions(id_tx),
                FOREIGN KEY (account) REFERENCES accounts(account),
                FOREIGN KEY (spent) REFERENCES transactions(id_tx),
                CONSTRAINT tx_output UNIQUE (tx, output_index)
            )
            """,
            "CREATE INDEX idx_received_notes_account ON received_notes(account)",
            "CREATE INDEX idx_received_notes_spent ON received_notes(spent)",
        ],
    )
    logger.debug("Created accounts, blocks, transactions and received_notes tables")


def _initial_setup_down(conn: sqlite3.Connection) -> None:
    execute_statements(
        conn,
        [
            "DROP TABLE received_notes",
            "DROP TABLE transactions",
            "DROP TABLE blocks",
            "DROP TABLE accounts",
        ],
    )


def _add_sent_notes_up(conn: sqlite3.Connection) -> None:
    """Create sent_notes; each output has exactly one kind of recipient."""
    execute_statements(
        conn,
        [
            """
            CREATE TABLE sent_notes (
                id_note INTEGER PRIMARY KEY,
                tx INTEGER NOT NULL,
                output_pool INTEGER NOT NULL,
                output_index INTEGER NOT NULL,
                from_account INTEGER NOT NULL,
                to_address TEXT,
                to_account INTEGER,
                value INTEGER NOT NULL CHECK (value >= 0),
                memo BLOB,
                FOREIGN KEY (tx) REFERENCES transactions(id_tx),
                FOREIGN KEY (from_account) REFERENCES accounts(account),
                FOREIGN KEY (to_account) REFERENCES accounts(account),
                CONSTRAINT tx_output UNIQUE (tx, output_pool, output_index),
                CONSTRAINT note_recipient CHECK (
                    (to_address IS NOT NULL) != (to_account IS NOT NULL)
                )
            )
            """,
            "CREATE INDEX idx_sent_notes_from_account ON sent_notes(from_account)",
        ],
    )
    logger.debug("Created sent_notes table")


def _add_sent_notes_down(conn: sqlite3.Connection) -> None:
    conn.execute("DROP TABLE sent_notes")


def _add_transaction_views_up(conn: sqlite3.Connection) -> None:
    execute_statements(conn, [view.create_statement() for view in compile_legacy_views()])
    logger.debug("Created v_tx_received, v_tx_sent and v_transactions views")


def _add_transaction_views_down(conn: sqlite3.Connection) -> None:
    # v_transactions reads the other two views, drop it first
    execute_statements(
        conn,
        [view.drop_statement() for view in reversed(compile_legacy_views())],
    )


def _v_transactions_net_up(conn: sqlite3.Connection) -> None:
    """
    Reconcile change as double-entry and replace the transaction views.

    Steps, all on the executor's transaction:
    1. Backfill sent_notes rows for change outputs stored only as received
       notes. received_notes is Sapling-only at this point, so the pool is
       fixed.
    2. Drop the legacy views.
    3. Create v_tx_events and the reconciled v_transactions.

    There is no down migration: the legacy v_transactions cannot be
    regenerated once the backfilled rows are indistinguishable from sent
    notes written by the wallet.
    """
    sql, params = compile_change_backfill(PoolType.SAPLING)
    cursor = conn.execute(sql, params)
    logger.info(f"Backfilled {cursor.rowcount} sent note(s) for change outputs")

    execute_statements(
        conn,
        [view.drop_statement(if_exists=False) for view in reversed(compile_legacy_views())],
    )
    execute_statements(conn, [view.create_statement() for view in compile_views()])
    logger.debug("Created v_tx_events and reconciled v_transactions")


INITIAL_SETUP = Migration(
    migration_id=INITIAL_SETUP_ID,
    description="Create accounts, blocks, transactions and received_notes tables.",
    up=_initial_setup_up,
    down=_initial_setup_down,
)

ADD_SENT_NOTES = Migration(
    migration_id=ADD_SENT_NOTES_ID,
    description="Add the sent_notes table.",
    up=_add_sent_notes_up,
    down=_add_sent_notes_down,
    dependencies=depends_on(INITIAL_SETUP),
)

ADD_TRANSACTION_VIEWS = Migration(
    migration_id=ADD_TRANSACTION_VIEWS_ID,
    description="Add views summarizing received and sent transactions.",
    up=_add_transaction_views_up,
    down=_add_transaction_views_down,
    dependencies=depends_on(ADD_SENT_NOTES),
)

V_TRANSACTIONS_NET = Migration(
    migration_id=V_TRANSACTIONS_NET_ID,
    description="Fix transaction views to correctly handle double-entry accounting for change.",
    up=_v_transactions_net_up,
    dependencies=depends_on(ADD_TRANSACTION_VIEWS),
)

WALLET_MIGRATIONS = [
    INITIAL_SETUP,
    ADD_SENT_NOTES,
    ADD_TRANSACTION_VIEWS,
    V_TRANSACTIONS_NET,
]


def build_wallet_registry() -> MigrationRegistry:
    """Return a registry populated with the wallet's migration chain."""
    return MigrationRegistry(WALLET_MIGRATIONS)
