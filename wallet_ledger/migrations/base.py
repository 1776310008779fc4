"""
Migration descriptor: one unit of schema change.

A descriptor has a stable UUID identity, the identities it depends on, a
human-readable description, a forward transformation and an optional
reverse transformation. A missing reverse transformation means the
migration cannot be reverted; that fact is visible before any rollback
starts (see ``is_revertible``).

Transformations receive the connection with a transaction already open.
They must not commit or roll back themselves; the executor owns the
transaction boundary.

Example:
    >>> def _add_memo_index(conn):
    ...     conn.execute("CREATE INDEX idx_sent_notes_memo ON sent_notes(memo)")
    >>> migration = Migration(
    ...     migration_id=UUID("8c1f0b3e-0d6a-4a55-9d0e-2f6f1c2b7a10"),
    ...     description="Index sent note memos",
    ...     up=_add_memo_index,
    ...     dependencies={ADD_SENT_NOTES_ID},
    ... )
"""

import sqlite3
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from uuid import UUID

from wallet_ledger.exceptions import NotRevertibleError

Transformation = Callable[[sqlite3.Connection], None]


@dataclass(frozen=True)
class Migration:
    """
    Immutable migration descriptor.

    Attributes:
        migration_id: Globally unique identity
        description: Human-readable summary of the change
        up: Forward transformation (always present)
        down: Reverse transformation, or None if the change destroys
            information and cannot be undone
        dependencies: Identities that must be applied first
    """

    migration_id: UUID
    description: str
    up: Transformation
    down: Transformation | None = None
    dependencies: frozenset[UUID] = field(default_factory=frozenset)

    def __post_init__(self):
        if not self.description or self.description.isspace():
            raise ValueError(f"Migration {self.migration_id} needs a description")
        if not isinstance(self.dependencies, frozenset):
            object.__setattr__(self, "dependencies", frozenset(self.dependencies))
        if self.migration_id in self.dependencies:
            raise ValueError(f"Migration {self.migration_id} depends on itself")

    @property
    def is_revertible(self) -> bool:
        return self.down is not None

    def apply(self, conn: sqlite3.Connection) -> None:
        """Run the forward transformation inside the caller's transaction."""
        self.up(conn)

    def revert(self, conn: sqlite3.Connection) -> None:
        """
        Run the reverse transformation inside the caller's transaction.

        Raises:
            NotRevertibleError: If the migration has no reverse transformation
        """
        if self.down is None:
            raise NotRevertibleError(
                f"Migration {self.migration_id} ({self.description}) cannot be reverted",
                migration_id=self.migration_id,
            )
        self.down(conn)


def depends_on(*migrations: Migration | UUID) -> frozenset[UUID]:
    """Build a dependency set from descriptors or raw identities."""
    return frozenset(m.migration_id if isinstance(m, Migration) else m for m in migrations)


def execute_statements(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    """
    Execute schema statements one at a time on the open transaction.

    Used instead of executescript(), which commits any pending transaction
    before running and would break the executor's atomicity.
    """
    for statement in statements:
        conn.execute(statement)
