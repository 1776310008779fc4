"""
Custom exceptions for the wallet ledger migration engine.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the application. All exceptions inherit from the base
WalletLedgerError for consistent catching.

Exception Hierarchy:
    WalletLedgerError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   └── ConfigValidationError
    ├── DatabaseError
    │   ├── DatabaseInitError
    │   └── DatabaseQueryError
    └── MigrationError
        ├── CycleError
        ├── UnknownDependencyError
        ├── UnknownMigrationError
        ├── DuplicateMigrationError
        ├── TransformationError
        ├── NotRevertibleError
        └── AlreadyAppliedError

Usage:
    from wallet_ledger.exceptions import MigrationError

    try:
        apply_migrations(conn, registry)
    except TransformationError as e:
        logger.error(f"Migration {e.migration_id} failed: {e.__cause__}")
        sys.exit(3)
"""

from collections.abc import Iterable
from uuid import UUID


class WalletLedgerError(Exception):
    """
    Base exception for all wallet ledger errors.

    All custom exceptions in this application inherit from this class so
    callers can catch every application-specific error with one except clause.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(WalletLedgerError):
    """
    Base class for configuration-related errors.

    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("/path/to/ledger.config.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (YAML syntax or schema validation failed).

    Example:
        raise ConfigValidationError("database.path: field required")
    """

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(WalletLedgerError):
    """
    Base class for database-related errors.

    Should be caught and result in exit code 2 (database error).
    """

    pass


class DatabaseInitError(DatabaseError):
    """
    Database could not be created, opened or prepared for migration.

    Example:
        raise DatabaseInitError("Executor requires a connection with no open transaction")
    """

    pass


class DatabaseQueryError(DatabaseError):
    """
    A query against the wallet store failed.

    Example:
        raise DatabaseQueryError("v_transactions does not exist; run migrations first")
    """

    pass


# ============================================================================
# Migration Errors
# ============================================================================


class MigrationError(WalletLedgerError):
    """
    Base class for migration resolution and execution errors.

    Attributes:
        migration_id: Identity of the descriptor involved, if any
    """

    def __init__(self, message: str, migration_id: UUID | None = None):
        super().__init__(message)
        self.migration_id = migration_id


class CycleError(MigrationError):
    """
    The declared dependency relation is not a DAG.

    Raised at resolution time, before any transformation runs.

    Attributes:
        cycle: Identities of the migrations that could not be ordered
    """

    def __init__(self, cycle: Iterable[UUID]):
        self.cycle = sorted(cycle, key=str)
        members = ", ".join(str(m) for m in self.cycle)
        super().__init__(f"Migration dependency cycle detected among: {members}")


class UnknownDependencyError(MigrationError):
    """
    A descriptor declares a dependency that is not in the registry.

    Attributes:
        migration_id: The descriptor declaring the dependency
        dependency: The missing dependency identity
    """

    def __init__(self, migration_id: UUID, dependency: UUID):
        super().__init__(
            f"Migration {migration_id} depends on unknown migration {dependency}",
            migration_id=migration_id,
        )
        self.dependency = dependency


class UnknownMigrationError(MigrationError):
    """
    A migration identity is not present in the registry.

    Raised when the store records an applied migration this software does
    not know about, or when a target or rollback point is unknown.
    """

    pass


class DuplicateMigrationError(MigrationError):
    """
    A descriptor with the same identity is already registered.

    The registry is append-only; identities are never replaced.
    """

    pass


class TransformationError(MigrationError):
    """
    A descriptor's forward or reverse transformation failed.

    The transaction for the descriptor has been rolled back when this is
    raised. The underlying storage error is chained as ``__cause__``.

    Attributes:
        migration_id: Identity of the failing descriptor
        description: Human-readable description of the failing descriptor
        direction: "apply" or "revert"
    """

    def __init__(
        self,
        migration_id: UUID,
        description: str,
        cause: BaseException,
        direction: str = "apply",
    ):
        super().__init__(
            f"Migration {migration_id} ({description}) failed to {direction}: {cause}",
            migration_id=migration_id,
        )
        self.description = description
        self.direction = direction


class NotRevertibleError(MigrationError):
    """
    A descriptor has no reverse transformation.

    Fatal to a rollback sequence; never raised during forward application.

    Example:
        raise NotRevertibleError("Cannot revert v_transactions_net", migration_id=...)
    """

    pass


class AlreadyAppliedError(MigrationError):
    """
    The executor was asked to apply a descriptor already recorded as applied.

    Whether this is fatal or a no-op is decided by the executor's policy;
    the forward transformation is never run twice.
    """

    pass
