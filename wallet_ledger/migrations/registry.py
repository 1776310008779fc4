"""
Append-only catalog of migration descriptors.

The surrounding application populates a registry at startup; the engine
never discovers migrations on its own. Identities are never replaced or
removed once registered.

Example:
    >>> registry = MigrationRegistry()
    >>> registry.register(INITIAL_SETUP)
    >>> INITIAL_SETUP.migration_id in registry
    True
    >>> registry.register(INITIAL_SETUP)
    Traceback (most recent call last):
    ...
    DuplicateMigrationError: Migration ... is already registered
"""

import logging
from collections.abc import Iterable, Iterator
from uuid import UUID

from wallet_ledger.exceptions import DuplicateMigrationError, UnknownMigrationError

from .base import Migration

logger = logging.getLogger(__name__)


class MigrationRegistry:
    """
    Registry mapping migration identity to descriptor.

    Iteration yields descriptors sorted by identity, so anything derived
    from a registry is reproducible across runs.
    """

    def __init__(self, migrations: Iterable[Migration] = ()):
        self._migrations: dict[UUID, Migration] = {}
        for migration in migrations:
            self.register(migration)

    def register(self, migration: Migration) -> Migration:
        """
        Add a descriptor to the registry.

        Returns:
            Migration: The same descriptor, so this works as a decorator target

        Raises:
            DuplicateMigrationError: If the identity is already registered
        """
        if migration.migration_id in self._migrations:
            raise DuplicateMigrationError(
                f"Migration {migration.migration_id} is already registered",
                migration_id=migration.migration_id,
            )
        self._migrations[migration.migration_id] = migration
        logger.debug(
            f"Registered migration {migration.migration_id}: {migration.description}"
        )
        return migration

    def get(self, migration_id: UUID) -> Migration:
        """
        Look up a descriptor by identity.

        Raises:
            UnknownMigrationError: If no descriptor has this identity
        """
        try:
            return self._migrations[migration_id]
        except KeyError:
            raise UnknownMigrationError(
                f"Migration {migration_id} is not registered",
                migration_id=migration_id,
            ) from None

    def ids(self) -> set[UUID]:
        return set(self._migrations)

    def __contains__(self, migration_id: object) -> bool:
        return migration_id in self._migrations

    def __iter__(self) -> Iterator[Migration]:
        return iter(sorted(self._migrations.values(), key=lambda m: str(m.migration_id)))

    def __len__(self) -> int:
        return len(self._migrations)
