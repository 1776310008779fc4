"""
Shared fixtures for wallet ledger tests.

The change scenario models a wallet whose history predates change
reconciliation:

- tx 0 receives notes of 2 and 5 (output indices 0 and 3) for account 0
- tx 1 spends both, pays 2 to "addra" and 3 to "addrb" (memo b"a"), and
  returns 2 to account 0 as change. No sent note exists for the change.
- tx 2 spends the change, sends 1 to account 1 and returns 1 to account 0
  as change. Both outputs have sent notes.
"""

import pytest

from wallet_ledger.ledger.models import Block, ReceivedNote, SentNote, Transaction
from wallet_ledger.migrations.executor import apply_migrations
from wallet_ledger.migrations.wallet import ADD_TRANSACTION_VIEWS_ID, build_wallet_registry
from wallet_ledger.storage.db import (
    connect,
    insert_account,
    insert_block,
    insert_received_note,
    insert_sent_note,
    insert_transaction,
    mark_note_spent,
)

SAPLING = 2


def insert_change_scenario(conn):
    insert_account(conn, 0, "uview0")
    insert_account(conn, 1, "uview1")

    insert_block(conn, Block(height=0, hash=b"\x00", time=0))
    insert_transaction(conn, Transaction(id_tx=0, txid=b"tx0", block=0))
    insert_received_note(conn, ReceivedNote(tx=0, output_index=0, account=0, value=2, nf=b"nf_a"))
    insert_received_note(conn, ReceivedNote(tx=0, output_index=3, account=0, value=5, nf=b"nf_b"))

    insert_block(conn, Block(height=1, hash=b"\x01", time=1))
    insert_transaction(conn, Transaction(id_tx=1, txid=b"tx1", block=1))
    mark_note_spent(conn, b"nf_a", 1)
    mark_note_spent(conn, b"nf_b", 1)
    insert_sent_note(
        conn,
        SentNote(tx=1, output_pool=SAPLING, output_index=0, from_account=0, to_address="addra", value=2),
    )
    insert_sent_note(
        conn,
        SentNote(
            tx=1,
            output_pool=SAPLING,
            output_index=1,
            from_account=0,
            to_address="addrb",
            value=3,
            memo=b"a",
        ),
    )
    insert_received_note(
        conn,
        ReceivedNote(tx=1, output_index=2, account=0, value=2, is_change=True, nf=b"nf_c"),
    )

    insert_block(conn, Block(height=2, hash=b"\x02", time=2))
    insert_transaction(conn, Transaction(id_tx=2, txid=b"tx2", block=2))
    mark_note_spent(conn, b"nf_c", 2)
    insert_sent_note(
        conn,
        SentNote(tx=2, output_pool=SAPLING, output_index=0, from_account=0, to_account=0, value=1),
    )
    insert_sent_note(
        conn,
        SentNote(tx=2, output_pool=SAPLING, output_index=1, from_account=0, to_account=1, value=1),
    )
    insert_received_note(
        conn,
        ReceivedNote(tx=2, output_index=0, account=0, value=1, is_change=True, nf=b"nf_d"),
    )
    insert_received_note(
        conn,
        ReceivedNote(tx=2, output_index=1, account=1, value=1, nf=b"nf_e"),
    )


@pytest.fixture
def wallet_db_path(tmp_path):
    """Path of a wallet database that does not exist yet."""
    return tmp_path / "wallet.db"


@pytest.fixture
def conn(wallet_db_path):
    """Connection to an empty, unmigrated wallet database."""
    connection = connect(wallet_db_path)
    yield connection
    connection.close()


@pytest.fixture
def migrated_conn(conn):
    """Connection to a wallet database with every migration applied."""
    apply_migrations(conn, build_wallet_registry())
    return conn


@pytest.fixture
def legacy_scenario_conn(conn):
    """Change scenario stored under the pre-reconciliation schema."""
    apply_migrations(conn, build_wallet_registry(), targets=[ADD_TRANSACTION_VIEWS_ID])
    insert_change_scenario(conn)
    return conn


@pytest.fixture
def scenario_conn(legacy_scenario_conn):
    """Change scenario after the remaining migrations have run."""
    apply_migrations(legacy_scenario_conn, build_wallet_registry())
    return legacy_scenario_conn
