"""
View compiler for the wallet store.

Derives the SQL that reconciles raw note records into a double-entry view
of wallet transactions. Every function here is pure: it returns statement
text (and parameters) and never touches a connection. Migrations execute
the compiled statements inside their own transaction.

Reconciliation rules:
- A received note flagged as change is the single source of truth for
  "this output is change". Every downstream count and sum derives from it.
- Historic wallets stored some change outputs only as received notes. The
  change backfill synthesizes the missing sent_notes row (owning account to
  itself, same output index and value, no memo) so old and new
  transactions aggregate identically.
- v_tx_events yields exactly one event per (tx, output_index). Change
  outputs are anchored on the received note; all other outputs that have a
  sent note are anchored on the sent note.
- v_transactions aggregates signed note values per (account, tx), never
  counting change as either sent or received.

Example:
    >>> from wallet_ledger.storage.views import compile_views
    >>> for view in compile_views():
    ...     conn.execute(view.drop_statement())
    ...     conn.execute(view.create_statement())
"""

from dataclasses import dataclass

from wallet_ledger.ledger.models import PoolType, pool_code


@dataclass(frozen=True)
class ViewDefinition:
    """A named query definition materialized as an SQLite view."""

    name: str
    select_sql: str

    def create_statement(self) -> str:
        return f"CREATE VIEW {self.name} AS\n{self.select_sql}"

    def drop_statement(self, if_exists: bool = True) -> str:
        guard = "IF EXISTS " if if_exists else ""
        return f"DROP VIEW {guard}{self.name}"


def compile_change_backfill(
    pool: PoolType = PoolType.SAPLING,
) -> tuple[str, dict[str, int]]:
    """
    Compile the statement that backfills sent_notes rows for change.

    For every received note flagged as change whose (tx, pool, output_index)
    has no sent_notes row, inserts a row from the owning account to itself
    with the same output index and value and no memo.

    The statement is a set difference: every change note, minus the change
    notes already covered by a sent note. Running it a second time inserts
    nothing, and an existing sent note for the same output is never
    duplicated.

    Args:
        pool: Pool of the received notes (received_notes stores Sapling
            notes only, so this is Sapling unless the schema changes)

    Returns:
        tuple[str, dict]: SQL text with named parameters, and the parameters
    """
    sql = """
        INSERT INTO sent_notes (tx, output_pool, output_index, from_account, to_account, value)
        SELECT received_notes.tx, :output_pool, received_notes.output_index,
               received_notes.account, received_notes.account, received_notes.value
        FROM received_notes
        WHERE received_notes.is_change
        EXCEPT
        SELECT received_notes.tx, sent_notes.output_pool, received_notes.output_index,
               received_notes.account, received_notes.account, received_notes.value
        FROM sent_notes
        JOIN received_notes
             ON received_notes.tx = sent_notes.tx
             AND received_notes.output_index = sent_notes.output_index
        WHERE sent_notes.output_pool = :output_pool
    """
    return sql, {"output_pool": pool_code(pool)}


def compile_tx_events_view(pool: PoolType = PoolType.SAPLING) -> ViewDefinition:
    """
    Compile v_tx_events: one row per output touched by a note record.

    The first branch is anchored on received_notes and covers outputs with
    no sent note, or whose received note is change. The second branch is
    anchored on sent_notes and covers every other output with a sent note.
    The branches are disjoint, so each (id_tx, output_index) appears once.

    A sent note is never reported as change; is_change is taken from the
    received note only. The memo prefers the anchoring side.

    Args:
        pool: Pool of the received notes; sent notes in other pools never
            match a received note
    """
    code = pool_code(pool)
    select_sql = f"""
        SELECT received_notes.tx           AS id_tx,
               received_notes.output_index AS output_index,
               sent_notes.from_account     AS from_account,
               received_notes.account      AS to_account,
               NULL                        AS to_address,
               received_notes.value        AS value,
               received_notes.is_change    AS is_change,
               COALESCE(received_notes.memo, sent_notes.memo) AS memo
        FROM received_notes
        LEFT JOIN sent_notes
                  ON sent_notes.tx = received_notes.tx
                  AND sent_notes.output_index = received_notes.output_index
                  AND sent_notes.output_pool = {code}
        WHERE sent_notes.id_note IS NULL
           OR received_notes.is_change = 1
        UNION ALL
        SELECT sent_notes.tx               AS id_tx,
               sent_notes.output_index     AS output_index,
               sent_notes.from_account     AS from_account,
               received_notes.account      AS to_account,
               sent_notes.to_address       AS to_address,
               sent_notes.value            AS value,
               0                           AS is_change,
               COALESCE(sent_notes.memo, received_notes.memo) AS memo
        FROM sent_notes
        LEFT JOIN received_notes
                  ON received_notes.tx = sent_notes.tx
                  AND received_notes.output_index = sent_notes.output_index
                  AND sent_notes.output_pool = {code}
        WHERE received_notes.is_change IS NULL
           OR received_notes.is_change = 0"""
    return ViewDefinition(name="v_tx_events", select_sql=select_sql)


def compile_transactions_view(pool: PoolType = PoolType.SAPLING) -> ViewDefinition:
    """
    Compile v_transactions: per-(account, transaction) summaries.

    Columns:
        net_transfer: received value minus value of notes spent by the tx
        has_change: the account received at least one change note
        sent_note_count: sent notes from the account, excluding change outputs
        received_note_count: non-change notes received by the account
        memo_count: memos on non-change received notes plus memos on
            counted sent notes
        expired_unmined: unmined and expiry height at or below the chain tip

    Sent notes contribute a zero-valued row to the notes relation so an
    account that only sent in a transaction still gets a summary row.
    """
    code = pool_code(pool)
    select_sql = f"""
        WITH
        notes AS (
            SELECT received_notes.account        AS account_id,
                   received_notes.tx             AS id_tx,
                   received_notes.value          AS value,
                   CASE WHEN received_notes.is_change THEN 1 ELSE 0 END AS is_change,
                   CASE WHEN received_notes.is_change THEN 0 ELSE 1 END AS received_count,
                   CASE
                       WHEN received_notes.memo IS NULL OR received_notes.is_change THEN 0
                       ELSE 1
                   END AS memo_present
            FROM   received_notes
            UNION ALL
            SELECT received_notes.account        AS account_id,
                   received_notes.spent          AS id_tx,
                   -received_notes.value         AS value,
                   0                             AS is_change,
                   0                             AS received_count,
                   0                             AS memo_present
            FROM   received_notes
            WHERE  received_notes.spent IS NOT NULL
            UNION ALL
            SELECT sent_notes.from_account       AS account_id,
                   sent_notes.tx                 AS id_tx,
                   0                             AS value,
                   0                             AS is_change,
                   0                             AS received_count,
                   0                             AS memo_present
            FROM   sent_notes
        ),
        sent_note_counts AS (
            SELECT sent_notes.from_account AS account_id,
                   sent_notes.tx AS id_tx,
                   COUNT(DISTINCT sent_notes.id_note) AS sent_notes,
                   SUM(CASE WHEN sent_notes.memo IS NULL THEN 0 ELSE 1 END) AS memo_count
            FROM sent_notes
            WHERE sent_notes.output_pool != {code}
               OR (sent_notes.tx, sent_notes.output_index) NOT IN (
                SELECT received_notes.tx, received_notes.output_index
                FROM received_notes
                WHERE received_notes.is_change = 1
            )
            GROUP BY sent_notes.from_account, sent_notes.tx
        ),
        blocks_max_height AS (
            SELECT MAX(blocks.height) AS max_height FROM blocks
        )
        SELECT notes.account_id                  AS account_id,
               transactions.id_tx                AS id_tx,
               transactions.block                AS mined_height,
               transactions.tx_index             AS tx_index,
               transactions.txid                 AS txid,
               transactions.expiry_height        AS expiry_height,
               transactions.raw                  AS raw,
               SUM(notes.value)                  AS net_transfer,
               transactions.fee                  AS fee_paid,
               SUM(notes.is_change) > 0          AS has_change,
               MAX(COALESCE(sent_note_counts.sent_notes, 0)) AS sent_note_count,
               SUM(notes.received_count)         AS received_note_count,
               SUM(notes.memo_present) + MAX(COALESCE(sent_note_counts.memo_count, 0)) AS memo_count,
               blocks.time                       AS block_time,
               (
                    blocks.height IS NULL
                    AND transactions.expiry_height <= blocks_max_height.max_height
               ) AS expired_unmined
        FROM transactions
        JOIN notes ON notes.id_tx = transactions.id_tx
        JOIN blocks_max_height
        LEFT JOIN blocks ON blocks.height = transactions.block
        LEFT JOIN sent_note_counts
                  ON sent_note_counts.account_id = notes.account_id
                  AND sent_note_counts.id_tx = notes.id_tx
        GROUP BY notes.account_id, transactions.id_tx"""
    return ViewDefinition(name="v_transactions", select_sql=select_sql)


def compile_views() -> list[ViewDefinition]:
    """Return the reconciled view definitions in creation order."""
    return [compile_tx_events_view(), compile_transactions_view()]


# ============================================================================
# Legacy views (before change was reconciled)
# ============================================================================


def compile_legacy_views() -> list[ViewDefinition]:
    """
    Return the transaction views wallets carried before change reconciliation.

    v_tx_received counts change as received value and v_tx_sent counts
    change as sent value. They are kept so the migration chain can recreate
    the historic schema exactly; v_transactions_net drops them.
    """
    tx_received = ViewDefinition(
        name="v_tx_received",
        select_sql="""
        SELECT transactions.id_tx            AS id_tx,
               transactions.block            AS mined_height,
               transactions.tx_index         AS tx_index,
               transactions.txid             AS txid,
               transactions.expiry_height    AS expiry_height,
               transactions.raw              AS raw,
               MAX(received_notes.account)   AS received_by_account,
               SUM(received_notes.value)     AS received_total,
               COUNT(received_notes.id_note) AS received_note_count,
               SUM(CASE WHEN received_notes.memo IS NULL THEN 0 ELSE 1 END) AS memo_count,
               blocks.time                   AS block_time
        FROM transactions
        JOIN received_notes ON transactions.id_tx = received_notes.tx
        LEFT JOIN blocks ON transactions.block = blocks.height
        GROUP BY received_notes.tx, received_notes.account""",
    )
    tx_sent = ViewDefinition(
        name="v_tx_sent",
        select_sql="""
        SELECT transactions.id_tx            AS id_tx,
               transactions.block            AS mined_height,
               transactions.tx_index         AS tx_index,
               transactions.txid             AS txid,
               transactions.expiry_height    AS expiry_height,
               transactions.raw              AS raw,
               MAX(sent_notes.from_account)  AS sent_from_account,
               SUM(sent_notes.value)         AS sent_total,
               COUNT(sent_notes.id_note)     AS sent_note_count,
               SUM(CASE WHEN sent_notes.memo IS NULL THEN 0 ELSE 1 END) AS memo_count,
               blocks.time                   AS block_time
        FROM transactions
        JOIN sent_notes ON transactions.id_tx = sent_notes.tx
        LEFT JOIN blocks ON transactions.block = blocks.height
        GROUP BY sent_notes.tx""",
    )
    transactions = ViewDefinition(
        name="v_transactions",
        select_sql="""
        SELECT transactions.id_tx            AS id_tx,
               transactions.block            AS mined_height,
               transactions.tx_index         AS tx_index,
               transactions.txid             AS txid,
               transactions.expiry_height    AS expiry_height,
               transactions.raw              AS raw,
               COALESCE(received.received_total, 0)
                 - COALESCE(v_tx_sent.sent_total, 0) AS net_transfer,
               transactions.fee              AS fee_paid,
               blocks.time                   AS block_time
        FROM transactions
        LEFT JOIN (
            SELECT id_tx, SUM(received_total) AS received_total
            FROM v_tx_received
            GROUP BY id_tx
        ) AS received ON received.id_tx = transactions.id_tx
        LEFT JOIN v_tx_sent ON v_tx_sent.id_tx = transactions.id_tx
        LEFT JOIN blocks ON transactions.block = blocks.height""",
    )
    return [tx_received, tx_sent, transactions]
