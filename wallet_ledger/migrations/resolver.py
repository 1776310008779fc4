"""
Dependency resolution for migration descriptors.

Orders the registry topologically and works out which descriptors still
need to run (forward plan) or need to be undone (rollback plan). All
checks happen here, before any transformation touches the store:

- every declared dependency must be registered (UnknownDependencyError)
- the dependency relation must be acyclic (CycleError)
- every identity recorded as applied must be registered (UnknownMigrationError)

Descriptors with no ordering constraint between them are ordered by the
string form of their identity, so plans are deterministic.
"""

import heapq
import logging
from collections.abc import Iterable
from uuid import UUID

from wallet_ledger.exceptions import (
    CycleError,
    MigrationError,
    UnknownDependencyError,
    UnknownMigrationError,
)

from .base import Migration
from .registry import MigrationRegistry

logger = logging.getLogger(__name__)


def topological_order(registry: MigrationRegistry) -> list[Migration]:
    """
    Order every registered descriptor after all of its dependencies.

    Kahn's algorithm with a min-heap on the identity string as tie-break.

    Raises:
        UnknownDependencyError: If a dependency is not registered
        CycleError: If the dependencies contain a cycle
    """
    dependents: dict[UUID, list[UUID]] = {m.migration_id: [] for m in registry}
    remaining: dict[UUID, int] = {}

    for migration in registry:
        for dependency in sorted(migration.dependencies, key=str):
            if dependency not in registry:
                raise UnknownDependencyError(migration.migration_id, dependency)
            dependents[dependency].append(migration.migration_id)
        remaining[migration.migration_id] = len(migration.dependencies)

    ready = [(str(mid), mid) for mid, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    order: list[Migration] = []
    while ready:
        _, migration_id = heapq.heappop(ready)
        order.append(registry.get(migration_id))
        for dependent in dependents[migration_id]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (str(dependent), dependent))

    if len(order) != len(registry):
        ordered = {m.migration_id for m in order}
        raise CycleError(mid for mid in remaining if mid not in ordered)

    return order


def dependency_closure(
    registry: MigrationRegistry, targets: Iterable[UUID]
) -> set[UUID]:
    """
    Return the targets plus all of their transitive dependencies.

    Raises:
        UnknownMigrationError: If a target is not registered
    """
    closure: set[UUID] = set()
    stack = list(targets)
    while stack:
        migration_id = stack.pop()
        if migration_id in closure:
            continue
        migration = registry.get(migration_id)
        closure.add(migration_id)
        stack.extend(migration.dependencies)
    return closure


def _check_applied(registry: MigrationRegistry, applied: set[UUID]) -> None:
    unknown = sorted((mid for mid in applied if mid not in registry), key=str)
    if unknown:
        raise UnknownMigrationError(
            f"Store records migrations unknown to this software: "
            f"{', '.join(str(mid) for mid in unknown)}. "
            f"Update your software or use a different wallet database.",
            migration_id=unknown[0],
        )


def resolve_pending(
    registry: MigrationRegistry,
    applied: Iterable[UUID],
    targets: Iterable[UUID] | None = None,
) -> list[Migration]:
    """
    Compute the ordered list of descriptors that still need to run.

    Args:
        registry: Full catalog of descriptors
        applied: Identities already recorded as applied in the store
        targets: If given, only pending descriptors in the dependency
            closure of these identities are returned (staged migration).
            None means every pending descriptor.

    Returns:
        list[Migration]: Pending descriptors, each after its dependencies

    Raises:
        UnknownDependencyError, CycleError, UnknownMigrationError
    """
    applied = set(applied)
    order = topological_order(registry)
    _check_applied(registry, applied)

    wanted = None if targets is None else dependency_closure(registry, targets)

    pending = [
        m
        for m in order
        if m.migration_id not in applied and (wanted is None or m.migration_id in wanted)
    ]
    logger.debug(
        f"Resolved {len(pending)} pending of {len(registry)} registered migrations"
    )
    return pending


def resolve_rollback(
    registry: MigrationRegistry,
    applied: Iterable[UUID],
    target: UUID | None,
) -> list[Migration]:
    """
    Compute the ordered list of descriptors to revert to reach ``target``.

    Everything applied that is not the target or one of its transitive
    dependencies is reverted, dependents before their dependencies.

    Args:
        registry: Full catalog of descriptors
        applied: Identities already recorded as applied in the store
        target: Migration to roll back to (it stays applied), or None to
            revert everything

    Raises:
        UnknownDependencyError, CycleError, UnknownMigrationError
        MigrationError: If the target is not currently applied
    """
    applied = set(applied)
    order = topological_order(registry)
    _check_applied(registry, applied)

    keep: set[UUID] = set()
    if target is not None:
        registry.get(target)
        if target not in applied:
            raise MigrationError(
                f"Cannot roll back to {target}: it is not applied", migration_id=target
            )
        keep = dependency_closure(registry, [target])

    return [
        m
        for m in reversed(order)
        if m.migration_id in applied and m.migration_id not in keep
    ]
