"""
Versioned schema migrations for the wallet store.

Key exports:
    - Migration: descriptor (identity, dependencies, description, up, down)
    - MigrationRegistry: append-only catalog of descriptors
    - resolve_pending / resolve_rollback: dependency-ordered plans
    - apply_migrations / rollback_migrations: transactional execution
    - build_wallet_registry: the wallet's own migration chain
"""

from .base import Migration, depends_on, execute_statements
from .executor import (
    AppliedMigration,
    MigrationReport,
    apply_migration,
    apply_migrations,
    ensure_migrations_table,
    get_applied_ids,
    get_applied_migrations,
    rollback_migrations,
)
from .registry import MigrationRegistry
from .resolver import (
    dependency_closure,
    resolve_pending,
    resolve_rollback,
    topological_order,
)
from .wallet import (
    ADD_SENT_NOTES_ID,
    ADD_TRANSACTION_VIEWS_ID,
    INITIAL_SETUP_ID,
    V_TRANSACTIONS_NET_ID,
    WALLET_MIGRATIONS,
    build_wallet_registry,
)

__all__ = [
    "ADD_SENT_NOTES_ID",
    "ADD_TRANSACTION_VIEWS_ID",
    "INITIAL_SETUP_ID",
    "V_TRANSACTIONS_NET_ID",
    "WALLET_MIGRATIONS",
    "AppliedMigration",
    "Migration",
    "MigrationRegistry",
    "MigrationReport",
    "apply_migration",
    "apply_migrations",
    "build_wallet_registry",
    "dependency_closure",
    "depends_on",
    "ensure_migrations_table",
    "execute_statements",
    "get_applied_ids",
    "get_applied_migrations",
    "resolve_pending",
    "resolve_rollback",
    "rollback_migrations",
    "topological_order",
]
