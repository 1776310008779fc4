"""
Entry point for running the wallet ledger as a module.

Enables execution via:
    python -m wallet_ledger [command] [options]

This is equivalent to running the installed CLI:
    wallet-ledger [command] [options]

Examples:
    python -m wallet_ledger --help
    python -m wallet_ledger migrate --db ./wallet.db
    python -m wallet_ledger audit --config ledger.config.yaml
"""

from wallet_ledger.cli import app

if __name__ == "__main__":
    app()
