"""
Tests for storage/views.py.

Tests cover:
- Statement generation (create/drop, pool parameter)
- Change backfill idempotency and conflict handling
- v_tx_events partition: one event per (tx, output_index)
- Pool-restricted pairing of sent and received notes
- v_transactions aggregation edge cases (sending-only accounts, equal
  values, change memos, expiry)
"""

from wallet_ledger.ledger.models import (
    Block,
    PoolType,
    ReceivedNote,
    SentNote,
    Transaction,
)
from wallet_ledger.storage.db import (
    get_account_transactions,
    get_tx_events,
    insert_account,
    insert_block,
    insert_received_note,
    insert_sent_note,
    insert_transaction,
    mark_note_spent,
)
from wallet_ledger.storage.views import (
    ViewDefinition,
    compile_change_backfill,
    compile_legacy_views,
    compile_transactions_view,
    compile_tx_events_view,
    compile_views,
)


def _backfill(conn, pool=PoolType.SAPLING):
    sql, params = compile_change_backfill(pool)
    return conn.execute(sql, params).rowcount


# ============================================================================
# Statement generation
# ============================================================================


def test_view_definition_statements():
    """Test CREATE and DROP statement text."""
    view = ViewDefinition(name="v_example", select_sql="SELECT 1")

    assert view.create_statement() == "CREATE VIEW v_example AS\nSELECT 1"
    assert view.drop_statement() == "DROP VIEW IF EXISTS v_example"
    assert view.drop_statement(if_exists=False) == "DROP VIEW v_example"


def test_compile_views_order():
    """Test that reconciled views are compiled in creation order."""
    assert [v.name for v in compile_views()] == ["v_tx_events", "v_transactions"]
    assert [v.name for v in compile_legacy_views()] == [
        "v_tx_received",
        "v_tx_sent",
        "v_transactions",
    ]


def test_compile_change_backfill_binds_pool_code():
    """Test that the pool is passed as a parameter, not interpolated."""
    sql, params = compile_change_backfill(PoolType.ORCHARD)

    assert params == {"output_pool": 3}
    assert ":output_pool" in sql
    assert sql.count("EXCEPT") == 1


def test_compiled_views_restrict_pairing_to_pool():
    """Test that the received note pool code appears in the join conditions."""
    events_sql = compile_tx_events_view(PoolType.SAPLING).select_sql
    transactions_sql = compile_transactions_view(PoolType.SAPLING).select_sql

    assert "sent_notes.output_pool = 2" in events_sql
    assert "sent_notes.output_pool != 2" in transactions_sql
    assert "UNION ALL" in events_sql
    assert "UNION ALL" in transactions_sql


# ============================================================================
# Change backfill
# ============================================================================


def test_backfill_is_idempotent(legacy_scenario_conn):
    """Test that running the backfill again inserts nothing."""
    conn = legacy_scenario_conn

    assert _backfill(conn) == 1
    assert _backfill(conn) == 0
    assert conn.execute("SELECT COUNT(*) FROM sent_notes").fetchone()[0] == 5


def test_backfill_skips_change_with_conflicting_sent_note(migrated_conn):
    """Test that an existing sent note for a change output is never duplicated.

    The existing row differs from what the backfill would synthesize (other
    value and a memo); it must be kept and no second row added.
    """
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_transaction(conn, Transaction(id_tx=5, txid=b"tx5"))
    insert_received_note(conn, ReceivedNote(tx=5, output_index=0, account=0, value=10, is_change=True))
    insert_sent_note(
        conn,
        SentNote(tx=5, output_pool=2, output_index=0, from_account=0, to_account=0, value=9, memo=b"m"),
    )

    assert _backfill(conn) == 0
    rows = conn.execute("SELECT value, memo FROM sent_notes WHERE tx = 5").fetchall()
    assert [tuple(r) for r in rows] == [(9, b"m")]


def test_backfill_ignores_sent_notes_in_other_pools(migrated_conn):
    """Test that an Orchard sent note at the same index does not cover Sapling change."""
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_transaction(conn, Transaction(id_tx=6, txid=b"tx6"))
    insert_received_note(conn, ReceivedNote(tx=6, output_index=0, account=0, value=4, is_change=True))
    insert_sent_note(
        conn,
        SentNote(tx=6, output_pool=3, output_index=0, from_account=0, to_address="u1ext", value=7),
    )

    assert _backfill(conn) == 1
    pools = conn.execute(
        "SELECT output_pool FROM sent_notes WHERE tx = 6 ORDER BY output_pool"
    ).fetchall()
    assert [r[0] for r in pools] == [2, 3]


def test_backfill_ignores_non_change_notes(migrated_conn):
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_transaction(conn, Transaction(id_tx=7, txid=b"tx7"))
    insert_received_note(conn, ReceivedNote(tx=7, output_index=0, account=0, value=4))

    assert _backfill(conn) == 0


# ============================================================================
# v_tx_events
# ============================================================================


def test_events_one_row_per_output(scenario_conn):
    """Test that no (id_tx, output_index) appears twice in v_tx_events."""
    duplicates = scenario_conn.execute(
        """
        SELECT id_tx, output_index, COUNT(*) FROM v_tx_events
        GROUP BY id_tx, output_index HAVING COUNT(*) > 1
        """
    ).fetchall()

    assert duplicates == []
    total = scenario_conn.execute("SELECT COUNT(*) FROM v_tx_events").fetchone()[0]
    assert total == 7


def test_events_do_not_pair_across_pools(migrated_conn):
    """Test that an Orchard sent note is not matched with a Sapling received note."""
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_transaction(conn, Transaction(id_tx=8, txid=b"tx8"))
    insert_received_note(conn, ReceivedNote(tx=8, output_index=0, account=0, value=4))
    insert_sent_note(
        conn,
        SentNote(tx=8, output_pool=3, output_index=0, from_account=0, to_address="u1ext", value=7),
    )

    events = get_tx_events(conn, 8)

    assert {(e.from_account, e.to_account, e.to_address, e.value) for e in events} == {
        (None, 0, None, 4),
        (0, None, "u1ext", 7),
    }


def test_events_memo_prefers_anchoring_side(migrated_conn):
    """Test memo selection for received-anchored and sent-anchored events."""
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_account(conn, 1, "uview1")
    insert_transaction(conn, Transaction(id_tx=9, txid=b"tx9"))
    # change: received note anchors, its memo is missing so the sent memo is used
    insert_received_note(conn, ReceivedNote(tx=9, output_index=0, account=0, value=1, is_change=True))
    insert_sent_note(
        conn,
        SentNote(tx=9, output_pool=2, output_index=0, from_account=0, to_account=0, value=1, memo=b"s0"),
    )
    # transfer: sent note anchors and wins over the received memo
    insert_received_note(conn, ReceivedNote(tx=9, output_index=1, account=1, value=2, memo=b"r1"))
    insert_sent_note(
        conn,
        SentNote(tx=9, output_pool=2, output_index=1, from_account=0, to_account=1, value=2, memo=b"s1"),
    )

    events = get_tx_events(conn, 9)

    assert [(e.output_index, e.memo, e.is_change) for e in events] == [
        (0, b"s0", True),
        (1, b"s1", False),
    ]


# ============================================================================
# v_transactions
# ============================================================================


def test_transactions_equal_valued_notes_are_not_collapsed(migrated_conn):
    """Test that two equal notes in one transaction are both counted."""
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_transaction(conn, Transaction(id_tx=10, txid=b"tx10"))
    insert_received_note(conn, ReceivedNote(tx=10, output_index=0, account=0, value=3))
    insert_received_note(conn, ReceivedNote(tx=10, output_index=1, account=0, value=3))

    [row] = get_account_transactions(conn, id_tx=10)

    assert row.net_transfer == 6
    assert row.received_note_count == 2


def test_transactions_sending_only_account_has_row(migrated_conn):
    """Test that an account that only sent in a tx still gets a summary row."""
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_transaction(conn, Transaction(id_tx=11, txid=b"tx11"))
    insert_sent_note(
        conn,
        SentNote(tx=11, output_pool=2, output_index=0, from_account=0, to_address="zs1ext", value=4),
    )

    [row] = get_account_transactions(conn, id_tx=11)

    assert row.account_id == 0
    assert row.net_transfer == 0
    assert row.sent_note_count == 1
    assert row.received_note_count == 0


def test_transactions_ignore_memo_on_change(migrated_conn):
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_transaction(conn, Transaction(id_tx=12, txid=b"tx12"))
    insert_received_note(
        conn,
        ReceivedNote(tx=12, output_index=0, account=0, value=1, is_change=True, memo=b"note to self"),
    )

    [row] = get_account_transactions(conn, id_tx=12)

    assert row.memo_count == 0
    assert row.has_change is True


def test_transactions_expired_unmined(migrated_conn):
    """Test expired_unmined for unmined transactions below and above the chain tip."""
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_block(conn, Block(height=100, hash=b"\x64", time=1000))
    insert_transaction(conn, Transaction(id_tx=13, txid=b"tx13", expiry_height=90))
    insert_transaction(conn, Transaction(id_tx=14, txid=b"tx14", expiry_height=110))
    insert_transaction(conn, Transaction(id_tx=15, txid=b"tx15", block=100, expiry_height=90))
    for id_tx in (13, 14, 15):
        insert_received_note(conn, ReceivedNote(tx=id_tx, output_index=0, account=0, value=1))

    rows = {r.id_tx: r for r in get_account_transactions(conn)}

    assert rows[13].expired_unmined is True
    assert rows[14].expired_unmined is False
    assert rows[15].expired_unmined is False
    assert rows[15].block_time == 1000


def test_transactions_spend_debits_spending_tx(migrated_conn):
    """Test that a spent note is debited from the spending transaction."""
    conn = migrated_conn
    insert_account(conn, 0, "uview0")
    insert_transaction(conn, Transaction(id_tx=16, txid=b"tx16"))
    insert_transaction(conn, Transaction(id_tx=17, txid=b"tx17", fee=1))
    insert_received_note(conn, ReceivedNote(tx=16, output_index=0, account=0, value=10, nf=b"nf16"))
    mark_note_spent(conn, b"nf16", 17)

    rows = {r.id_tx: r for r in get_account_transactions(conn, account_id=0)}

    assert rows[16].net_transfer == 10
    assert rows[17].net_transfer == -10
    assert rows[17].fee_paid == 1
