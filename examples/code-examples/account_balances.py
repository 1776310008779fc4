#!/usr/bin/env python3
"""
Report per-account balances and ledger health from a wallet database.

This script demonstrates how to:
- Migrate a wallet store from Python
- Read reconciled per-account transaction summaries
- Run the double-entry balance audit

Usage:
    python examples/code-examples/account_balances.py ./wallet.db
"""

import sys
from collections import defaultdict
from pathlib import Path

from wallet_ledger.ledger.reconcile import find_imbalances
from wallet_ledger.storage.db import (
    connect,
    get_account_transactions,
    init_db_if_needed,
    load_ledger,
)


def account_balances(db_path: Path) -> dict[int, int]:
    """Sum net transfers of mined transactions per account."""
    conn = connect(db_path)
    try:
        balances: dict[int, int] = defaultdict(int)
        for row in get_account_transactions(conn):
            if row.mined_height is not None:
                balances[row.account_id] += row.net_transfer
        return dict(balances)
    finally:
        conn.close()


def main() -> int:
    if len(sys.argv) != 2:
        print(__doc__)
        return 1

    db_path = Path(sys.argv[1])
    if not db_path.exists():
        print(f"Wallet database not found: {db_path}")
        return 1

    report = init_db_if_needed(db_path)
    if report.applied:
        print(f"Applied {len(report.applied)} migration(s)")

    print("\nMined balance per account")
    print("=" * 40)
    for account_id, balance in sorted(account_balances(db_path).items()):
        print(f"  account {account_id:>3}: {balance:>16,}")

    conn = connect(db_path)
    try:
        imbalances = find_imbalances(load_ledger(conn))
    finally:
        conn.close()

    if imbalances:
        print(f"\n{len(imbalances)} unbalanced transaction(s):")
        for imbalance in imbalances:
            print(f"  tx {imbalance.id_tx}: off by {imbalance.discrepancy:,}")
        return 1

    print("\nLedger balances")
    return 0


if __name__ == "__main__":
    sys.exit(main())
