"""
Wallet ledger: versioned schema migrations and double-entry reconciliation
for a shielded wallet's SQLite store.

Subpackages:
    ledger: record model and in-memory reconciliation
    migrations: descriptors, registry, resolver, executor and the wallet chain
    storage: SQLite access and the view compiler
    config: YAML configuration
"""
