"""
Ledger record model for the wallet store.

Typed views of the base tables (blocks, transactions, received_notes,
sent_notes) and of the derived rows produced by reconciliation
(v_tx_events, v_transactions). These are plain data holders; persistence
lives in storage.db and derivation lives in storage.views and
ledger.reconcile.

Values are integer atomic units (zatoshis). Memos are opaque bytes.
"""

from dataclasses import dataclass, field
from enum import IntEnum


class PoolType(IntEnum):
    """Value pool a note belongs to, stored as its integer pool code."""

    TRANSPARENT = 0
    SAPLING = 2
    ORCHARD = 3


def pool_code(pool: PoolType) -> int:
    """Return the integer code stored in sent_notes.output_pool for a pool."""
    return int(pool)


@dataclass(frozen=True)
class Block:
    """A block observed during sync. Immutable once inserted."""

    height: int
    hash: bytes
    time: int
    sapling_tree: bytes = b""


@dataclass(frozen=True)
class Transaction:
    """
    A transaction the wallet has observed, sent or received.

    Attributes:
        id_tx: Internal row identifier
        txid: Content hash identifying the transaction
        block: Height of the mining block, None while unmined
        tx_index: Position within the block
        expiry_height: Last height at which the transaction may be mined
        raw: Serialized transaction bytes, if known
        fee: Fee paid, if known
    """

    id_tx: int
    txid: bytes
    block: int | None = None
    tx_index: int | None = None
    expiry_height: int | None = None
    raw: bytes | None = None
    fee: int | None = None


@dataclass(frozen=True)
class ReceivedNote:
    """
    A note received by one of the wallet's accounts.

    Unique per (tx, output_index); received notes are Sapling notes so the
    pool is implied. ``spent`` is set to the id_tx of the spending
    transaction once the note is consumed.
    """

    tx: int
    output_index: int
    account: int
    value: int
    is_change: bool = False
    memo: bytes | None = None
    spent: int | None = None
    nf: bytes | None = None
    id_note: int | None = None

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"Note value must be non-negative, got: {self.value}")


@dataclass(frozen=True)
class SentNote:
    """
    The sender's accounting record for one transaction output.

    Exactly one of ``to_account`` (wallet-controlled recipient) and
    ``to_address`` (external recipient) is set.
    """

    tx: int
    output_pool: int
    output_index: int
    from_account: int
    value: int
    to_account: int | None = None
    to_address: str | None = None
    memo: bytes | None = None
    id_note: int | None = None

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"Note value must be non-negative, got: {self.value}")
        if (self.to_account is None) == (self.to_address is None):
            raise ValueError(
                "Exactly one of to_account and to_address must be set "
                f"(tx={self.tx}, output_index={self.output_index})"
            )


@dataclass(frozen=True)
class TxEvent:
    """One row of v_tx_events: a single output of a transaction."""

    id_tx: int
    output_index: int
    from_account: int | None
    to_account: int | None
    to_address: str | None
    value: int
    is_change: bool
    memo: bytes | None


@dataclass(frozen=True)
class AccountTransaction:
    """One row of v_transactions: an account's involvement in a transaction."""

    account_id: int
    id_tx: int
    mined_height: int | None
    tx_index: int | None
    txid: bytes
    expiry_height: int | None
    raw: bytes | None
    net_transfer: int
    fee_paid: int | None
    has_change: bool
    sent_note_count: int
    received_note_count: int
    memo_count: int
    block_time: int | None
    expired_unmined: bool


@dataclass
class LedgerSnapshot:
    """All base records of a wallet store, loaded for in-memory reconciliation."""

    blocks: list[Block] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    received_notes: list[ReceivedNote] = field(default_factory=list)
    sent_notes: list[SentNote] = field(default_factory=list)
