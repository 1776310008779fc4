"""
SQLite storage for the wallet ledger.

Modules:
    db: connections, initialization, record inserts and the query surface
    views: pure SQL compiler for the reconciliation views
"""
