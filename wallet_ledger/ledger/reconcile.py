"""
In-memory reconciliation of wallet note records.

Produces the same rows as the v_tx_events and v_transactions views, but as
an explicit pass over typed records. Used to audit a store (the compiled
views and this pass must agree) and to check the double-entry invariant.

Each (tx, output_index) touched by a note record becomes exactly one
ledger event:

    ReceivedOnly      a received note with no sent note (an incoming
                      payment, or change stored before the backfill)
    SentOnly          a sent note with no received note (external payment)
    SentAndReceived   both records exist; ``is_change`` comes from the
                      received note and decides which side is authoritative
"""

from collections import defaultdict
from dataclasses import dataclass

from wallet_ledger.ledger.models import (
    AccountTransaction,
    LedgerSnapshot,
    PoolType,
    ReceivedNote,
    SentNote,
    TxEvent,
    pool_code,
)


@dataclass(frozen=True)
class ReceivedOnly:
    received: ReceivedNote

    def to_event(self) -> TxEvent:
        note = self.received
        return TxEvent(
            id_tx=note.tx,
            output_index=note.output_index,
            from_account=None,
            to_account=note.account,
            to_address=None,
            value=note.value,
            is_change=note.is_change,
            memo=note.memo,
        )


@dataclass(frozen=True)
class SentOnly:
    sent: SentNote

    def to_event(self) -> TxEvent:
        note = self.sent
        return TxEvent(
            id_tx=note.tx,
            output_index=note.output_index,
            from_account=note.from_account,
            to_account=None,
            to_address=note.to_address,
            value=note.value,
            is_change=False,
            memo=note.memo,
        )


@dataclass(frozen=True)
class SentAndReceived:
    sent: SentNote
    received: ReceivedNote

    @property
    def is_change(self) -> bool:
        return self.received.is_change

    def to_event(self) -> TxEvent:
        # Change is anchored on the received note, everything else on the sent note.
        if self.is_change:
            return TxEvent(
                id_tx=self.received.tx,
                output_index=self.received.output_index,
                from_account=self.sent.from_account,
                to_account=self.received.account,
                to_address=None,
                value=self.received.value,
                is_change=True,
                memo=self.received.memo if self.received.memo is not None else self.sent.memo,
            )
        return TxEvent(
            id_tx=self.sent.tx,
            output_index=self.sent.output_index,
            from_account=self.sent.from_account,
            to_account=self.received.account,
            to_address=self.sent.to_address,
            value=self.sent.value,
            is_change=False,
            memo=self.sent.memo if self.sent.memo is not None else self.received.memo,
        )


LedgerEvent = ReceivedOnly | SentOnly | SentAndReceived


@dataclass(frozen=True)
class Imbalance:
    """A transaction whose signed note values do not net to its fee."""

    id_tx: int
    net_transfer_total: int
    external_sent_total: int
    fee: int

    @property
    def discrepancy(self) -> int:
        return self.net_transfer_total + self.external_sent_total + self.fee


def backfill_change(
    received: list[ReceivedNote],
    sent: list[SentNote],
    pool: PoolType = PoolType.SAPLING,
) -> list[SentNote]:
    """
    Synthesize sent notes for change outputs that have none.

    Mirrors the change backfill statement: every change note, minus the
    change notes whose (tx, pool, output_index) already has a sent note.
    Feeding the result back in as ``sent`` yields an empty list.

    Returns:
        list[SentNote]: Only the synthesized notes, ordered by (tx, output_index)
    """
    code = pool_code(pool)
    covered = {(s.tx, s.output_index) for s in sent if s.output_pool == code}
    synthesized = {
        (r.tx, r.output_index): SentNote(
            tx=r.tx,
            output_pool=code,
            output_index=r.output_index,
            from_account=r.account,
            to_account=r.account,
            value=r.value,
        )
        for r in received
        if r.is_change and (r.tx, r.output_index) not in covered
    }
    return [synthesized[key] for key in sorted(synthesized)]


def build_events(
    received: list[ReceivedNote],
    sent: list[SentNote],
    pool: PoolType = PoolType.SAPLING,
) -> list[LedgerEvent]:
    """
    Classify every touched output into exactly one ledger event.

    Sent notes outside the received-note pool never pair with a received
    note, matching the pool-restricted joins of v_tx_events.

    Returns:
        list[LedgerEvent]: Events ordered by (tx, output_index, pool pairing)
    """
    code = pool_code(pool)
    received_by_output = {(r.tx, r.output_index): r for r in received}
    paired: set[tuple[int, int]] = set()
    events: list[tuple[tuple[int, int, int], LedgerEvent]] = []

    for s in sent:
        match = received_by_output.get((s.tx, s.output_index)) if s.output_pool == code else None
        if match is None:
            events.append(((s.tx, s.output_index, s.output_pool), SentOnly(s)))
        else:
            paired.add((s.tx, s.output_index))
            events.append(((s.tx, s.output_index, s.output_pool), SentAndReceived(s, match)))

    for key, r in received_by_output.items():
        if key not in paired:
            events.append(((r.tx, r.output_index, code), ReceivedOnly(r)))

    return [event for _, event in sorted(events, key=lambda item: item[0])]


def summarize_transactions(
    snapshot: LedgerSnapshot, pool: PoolType = PoolType.SAPLING
) -> list[AccountTransaction]:
    """
    Aggregate per-(account, transaction) summaries from base records.

    Produces the same rows as v_transactions, ordered by (account_id, id_tx).
    Transactions absent from ``snapshot.transactions`` are skipped, as the
    view's inner join does.
    """
    code = pool_code(pool)
    transactions = {t.id_tx: t for t in snapshot.transactions}
    blocks = {b.height: b for b in snapshot.blocks}
    max_height = max(blocks) if blocks else None

    change_outputs = {(r.tx, r.output_index) for r in snapshot.received_notes if r.is_change}

    net: dict[tuple[int, int], int] = defaultdict(int)
    has_change: dict[tuple[int, int], bool] = defaultdict(bool)
    received_count: dict[tuple[int, int], int] = defaultdict(int)
    memo_count: dict[tuple[int, int], int] = defaultdict(int)
    sent_count: dict[tuple[int, int], int] = defaultdict(int)

    for r in snapshot.received_notes:
        key = (r.account, r.tx)
        net[key] += r.value
        if r.is_change:
            has_change[key] = True
        else:
            received_count[key] += 1
            if r.memo is not None:
                memo_count[key] += 1
        if r.spent is not None:
            net[(r.account, r.spent)] -= r.value

    for s in snapshot.sent_notes:
        key = (s.from_account, s.tx)
        net.setdefault(key, 0)
        if s.output_pool == code and (s.tx, s.output_index) in change_outputs:
            continue
        sent_count[key] += 1
        if s.memo is not None:
            memo_count[key] += 1

    rows = []
    for account_id, id_tx in sorted(net):
        tx = transactions.get(id_tx)
        if tx is None:
            continue
        block = blocks.get(tx.block) if tx.block is not None else None
        expired = (
            block is None
            and tx.expiry_height is not None
            and max_height is not None
            and tx.expiry_height <= max_height
        )
        key = (account_id, id_tx)
        rows.append(
            AccountTransaction(
                account_id=account_id,
                id_tx=id_tx,
                mined_height=tx.block,
                tx_index=tx.tx_index,
                txid=tx.txid,
                expiry_height=tx.expiry_height,
                raw=tx.raw,
                net_transfer=net[key],
                fee_paid=tx.fee,
                has_change=has_change[key],
                sent_note_count=sent_count[key],
                received_note_count=received_count[key],
                memo_count=memo_count[key],
                block_time=block.time if block is not None else None,
                expired_unmined=expired,
            )
        )
    return rows


def find_imbalances(
    snapshot: LedgerSnapshot, pool: PoolType = PoolType.SAPLING
) -> list[Imbalance]:
    """
    Check the double-entry invariant for wallet-funded transactions.

    For every transaction with a known fee that spends at least one wallet
    note, the net transfers of all accounts plus the value sent to external
    addresses must equal the negated fee. Value neither appears nor vanishes.

    Returns:
        list[Imbalance]: Violations, ordered by id_tx (empty if balanced)
    """
    fees = {t.id_tx: t.fee for t in snapshot.transactions if t.fee is not None}
    spending = {r.spent for r in snapshot.received_notes if r.spent is not None}

    external: dict[int, int] = defaultdict(int)
    for event in build_events(snapshot.received_notes, snapshot.sent_notes, pool):
        row = event.to_event()
        if row.to_address is not None:
            external[row.id_tx] += row.value

    totals: dict[int, int] = defaultdict(int)
    for summary in summarize_transactions(snapshot, pool):
        totals[summary.id_tx] += summary.net_transfer

    imbalances = []
    for id_tx in sorted(spending & fees.keys()):
        imbalance = Imbalance(
            id_tx=id_tx,
            net_transfer_total=totals[id_tx],
            external_sent_total=external[id_tx],
            fee=fees[id_tx],
        )
        if imbalance.discrepancy != 0:
            imbalances.append(imbalance)
    return imbalances
