"""
Ledger record model and in-memory reconciliation.

Key exports:
    - PoolType, Block, Transaction, ReceivedNote, SentNote: base records
    - TxEvent, AccountTransaction: reconciled rows
    - backfill_change, build_events, summarize_transactions, find_imbalances
"""

from .models import (
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
from .reconcile import (
    Imbalance,
    LedgerEvent,
    ReceivedOnly,
    SentAndReceived,
    SentOnly,
    backfill_change,
    build_events,
    find_imbalances,
    summarize_transactions,
)

__all__ = [
    "AccountTransaction",
    "Block",
    "Imbalance",
    "LedgerEvent",
    "LedgerSnapshot",
    "PoolType",
    "ReceivedNote",
    "ReceivedOnly",
    "SentAndReceived",
    "SentNote",
    "SentOnly",
    "Transaction",
    "TxEvent",
    "backfill_change",
    "build_events",
    "find_imbalances",
    "pool_code",
    "summarize_transactions",
]
