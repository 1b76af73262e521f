"""Foreign key dependency graphs and dependency-safe ordering.

The same two primitives serve every caller:

- ``DependencyResolver.resolve_referenced()`` walks foreign keys from a
  starting table in a chosen direction, optionally scoped to one schema,
  and returns a ``DependencyGraph`` mapping each discovered table to the
  tables it directly depends on in that direction.
- ``topological_order()`` turns any collection plus a dependency function
  into a list where every item follows all of its dependencies.

Ascending graphs answer "what must exist before I can insert into this
table"; descending graphs answer "what would break if I dropped it".

Usage:
    resolver = DependencyResolver(manager)
    graph = await resolver.resolve_referenced(
        TableIdentity("dbo", "order_lines"), DependencyDirection.ASCENDING
    )
    order = topological_order(graph, lambda t: graph[t], CyclePolicy.STRICT)
    # [dbo.orders, dbo.order_lines]
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable
from typing import TYPE_CHECKING, TypeVar

from db_cloner.errors import CycleDetectedError
from db_cloner.schema.models import (
    CyclePolicy,
    DependencyDirection,
    KeyDefinition,
    TableDefinition,
    TableIdentity,
)

if TYPE_CHECKING:
    from db_cloner.manager import MetadataProvider

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)

DependencyGraph = dict[TableIdentity, list[TableIdentity]]


# ------------------------------------------------------------------
# Topological ordering
# ------------------------------------------------------------------


def topological_order(
    items: Iterable[T],
    dependencies_of: Callable[[T], Iterable[T]],
    policy: CyclePolicy = CyclePolicy.LENIENT,
) -> list[T]:
    """Depth-first post-order sort: dependencies before dependents.

    Items are visited in input order and dependencies in the order
    ``dependencies_of`` yields them.  An item met again while it is still
    being expanded closes a cycle.

    Args:
        items: Items to order.  Dependencies reachable through
            ``dependencies_of`` are included in the output even if they
            are not in ``items``.
        dependencies_of: Returns the direct dependencies of an item.
        policy: ``STRICT`` raises on a cycle; ``LENIENT`` drops the
            back-edge and keeps going.

    Returns:
        Every distinct item exactly once, each after all of its dependencies
        (back-edges excepted in lenient mode).

    Raises:
        CycleDetectedError: On a cycle in strict mode.

    Example:
        >>> deps = {"lines": ["orders"], "orders": []}
        >>> topological_order(["lines", "orders"], deps.__getitem__)
        ['orders', 'lines']
    """
    sorted_items: list[T] = []
    visited: set[T] = set()
    done: set[T] = set()
    path: list[T] = []  # items currently being expanded

    def visit(item: T) -> None:
        if item in visited:
            if item not in done and policy is CyclePolicy.STRICT:
                start = path.index(item)
                raise CycleDetectedError(path[start:] + [item])
            return
        visited.add(item)
        path.append(item)
        for dep in dependencies_of(item):
            visit(dep)
        path.pop()
        done.add(item)
        sorted_items.append(item)

    for item in items:
        visit(item)

    return sorted_items


def order_tables(tables: Iterable[TableDefinition]) -> list[TableDefinition]:
    """Sort table definitions so referenced tables come first.

    Foreign keys are matched on full schema-qualified identity.  Keys that
    point outside ``tables`` are ignored; cycles are broken leniently.
    """
    by_identity = {t.identity: t for t in tables}

    def dependencies(identity: TableIdentity) -> list[TableIdentity]:
        return [
            ref for ref in by_identity[identity].referenced_tables()
            if ref in by_identity
        ]

    # TableDefinition is not hashable; sort identities and map back
    order = topological_order(list(by_identity), dependencies)
    return [by_identity[identity] for identity in order]


# ------------------------------------------------------------------
# Graph resolution
# ------------------------------------------------------------------


def _other_sides(
    table: TableIdentity,
    key: KeyDefinition,
    direction: DependencyDirection,
) -> list[TableIdentity]:
    """Tables on the far side of ``key`` as seen from ``table``."""
    sides: list[TableIdentity] = []
    referenced = key.referenced_identity
    if direction.ascending and key.identity == table and referenced is not None:
        sides.append(referenced)
    if direction.descending and referenced == table:
        sides.append(key.identity)
    return sides


class DependencyResolver:
    """Builds foreign key dependency graphs from a metadata provider.

    The resolver holds no state between calls; each ``resolve_*`` call
    re-reads the catalog.

    Args:
        provider: Anything with an async
            ``list_foreign_keys(table, direction, scope)`` method.
    """

    def __init__(self, provider: MetadataProvider) -> None:
        self._provider = provider

    async def resolve_referenced(
        self,
        start: TableIdentity,
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> DependencyGraph:
        """Compute the dependency closure of ``start``.

        Args:
            start: Table to start from.
            direction: Which side of each foreign key to follow.  ``NONE``
                is rejected before any catalog read.
            scope: Schema to stay within; tables outside it are neither
                returned nor traversed.

        Returns:
            Mapping of every discovered table (``start`` included) to its
            direct dependencies in ``direction``.  Tables without
            dependencies map to an empty list.

        Raises:
            InvalidConfigurationError: If ``direction`` is ``NONE``.
        """
        direction.validate()
        logger.debug("resolving %s dependencies of %s..", direction.value, start)

        graph: DependencyGraph = {}
        await self._expand(start, direction, scope, graph, set())

        logger.debug("found %d related tables of %s", len(graph) - 1, start)
        return graph

    async def resolve_many(
        self,
        starts: Iterable[TableIdentity],
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> DependencyGraph:
        """Merge the closures of several starting tables.

        Shares one visited set across all starts so each table is read
        once; the first entry written for a table wins.
        """
        direction.validate()

        graph: DependencyGraph = {}
        visited: set[TableIdentity] = set()
        for start in starts:
            await self._expand(start, direction, scope, graph, visited)
        return graph

    async def _expand(
        self,
        table: TableIdentity,
        direction: DependencyDirection,
        scope: str | None,
        graph: DependencyGraph,
        visited: set[TableIdentity],
    ) -> None:
        if table in visited:
            return
        visited.add(table)

        keys = await self._provider.list_foreign_keys(table, direction, scope)

        dependencies: list[TableIdentity] = []
        for key in keys:
            for other in _other_sides(table, key, direction):
                if scope is not None and not other.in_schema(scope):
                    continue
                if other == table or other in dependencies:
                    continue
                dependencies.append(other)

        graph.setdefault(table, dependencies)

        for dependency in dependencies:
            await self._expand(dependency, direction, scope, graph, visited)
