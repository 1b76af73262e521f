"""Metadata provider protocol and its PostgreSQL implementation.

``MetadataProvider`` is everything the resolver and the cloner need from a
database: catalog reads, a handful of DDL operations and scripting of a
table for cloning.  ``DatabaseManager`` implements it on top of a
``DatabaseClient`` by combining ``SchemaIntrospector`` (reads),
``StatementGenerator`` (scripts) and the resolver.

Usage:
    from db_cloner.manager import DatabaseManager

    manager = DatabaseManager(adapter)
    tables = await manager.list_tables("dbo")          # dependency ordered
    await manager.drop_table(TableIdentity("dbo", "orders"), check_referenced=True)
"""

import asyncio
import logging
from typing import Protocol

from db_cloner.adapters.base import DatabaseClient
from db_cloner.errors import ReferentialConflictError
from db_cloner.schema.introspector import SchemaIntrospector
from db_cloner.schema.models import (
    DependencyDirection,
    KeyDefinition,
    TableDefinition,
    TableIdentity,
)
from db_cloner.schema.resolver import (
    DependencyGraph,
    DependencyResolver,
    order_tables,
    topological_order,
)
from db_cloner.schema.statements import (
    StatementGenerator,
    create_schema_sql,
    drop_table_sql,
    truncate_table_sql,
)

logger = logging.getLogger(__name__)


class MetadataProvider(Protocol):
    """Catalog reads and DDL the cloning core depends on.

    All methods are async.  Two providers are the same connection only if
    they are the same object.
    """

    async def default_schema(self) -> str: ...

    async def list_schemas(self) -> list[str]: ...

    async def list_schema_tables(self, schema_name: str) -> list[TableIdentity]: ...

    async def describe_table(self, table: TableIdentity) -> TableDefinition | None: ...

    async def list_foreign_keys(
        self,
        table: TableIdentity,
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> list[KeyDefinition]: ...

    async def table_exists(self, table: TableIdentity) -> bool: ...

    async def find_table(self, table: TableIdentity) -> TableIdentity | None: ...

    async def create_schema(self, schema_name: str) -> None: ...

    async def drop_table(self, table: TableIdentity, check_referenced: bool = False) -> None: ...

    async def execute_statement(self, statement: str) -> None: ...

    async def build_clone_statement(self, table: TableDefinition) -> str: ...


class DatabaseManager:
    """``MetadataProvider`` backed by a PostgreSQL ``DatabaseClient``.

    Args:
        client: Connection used for all reads and writes.

    Example:
        manager = DatabaseManager(adapter)
        order = await manager.list_tables_referenced_by(
            TableIdentity("dbo", "order_lines"), DependencyDirection.ASCENDING
        )
    """

    def __init__(self, client: DatabaseClient) -> None:
        self.client = client
        self._introspector = SchemaIntrospector(client)
        self._generator = StatementGenerator(client)

    def __repr__(self) -> str:
        return f"DatabaseManager({self.client!r})"

    # ------------------------------------------------------------------
    # Catalog reads
    # ------------------------------------------------------------------

    async def default_schema(self) -> str:
        return await self._introspector.default_schema()

    async def list_schemas(self) -> list[str]:
        return await self._introspector.list_schemas()

    async def schema_exists(self, schema_name: str) -> bool:
        return await self._introspector.schema_exists(schema_name)

    async def list_schema_tables(self, schema_name: str) -> list[TableIdentity]:
        return await self._introspector.list_tables(schema_name)

    async def describe_table(self, table: TableIdentity) -> TableDefinition | None:
        return await self._introspector.describe_table(table)

    async def list_foreign_keys(
        self,
        table: TableIdentity,
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> list[KeyDefinition]:
        return await self._introspector.list_foreign_keys(table, direction, scope)

    async def table_exists(self, table: TableIdentity) -> bool:
        return await self._introspector.table_exists(table)

    async def find_table(self, table: TableIdentity) -> TableIdentity | None:
        return await self._introspector.find_table(table)

    async def list_tables(
        self, schema_name: str, sort_on_dependency: bool = True
    ) -> list[TableDefinition]:
        """Describe every table of a schema.

        Tables are described concurrently; ordering happens only once all
        definitions are in.

        Args:
            schema_name: Schema to list.
            sort_on_dependency: Order referenced tables before the tables
                referencing them.  Otherwise catalog (name) order.
        """
        identities = await self.list_schema_tables(schema_name)
        described = await asyncio.gather(*(self.describe_table(t) for t in identities))
        # A table dropped between listing and describing is simply gone
        tables = [t for t in described if t is not None]
        return order_tables(tables) if sort_on_dependency else tables

    async def list_schemas_with_tables(self) -> dict[str, list[TableIdentity]]:
        """Map every schema to its tables, fetching schemas concurrently."""
        schemas = await self.list_schemas()
        tables = await asyncio.gather(*(self.list_schema_tables(s) for s in schemas))
        return dict(zip(schemas, tables))

    async def resolve_referenced(
        self,
        table: TableIdentity,
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> DependencyGraph:
        return await DependencyResolver(self).resolve_referenced(table, direction, scope)

    async def list_tables_referenced_by(
        self,
        table: TableIdentity,
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> list[TableIdentity]:
        """Related tables of ``table`` in dependency order, ``table`` included.

        For ``ascending`` the referenced tables come first and ``table``
        last; for ``descending`` the deepest dependents come first, which
        is a safe drop or truncate order.
        """
        graph = await self.resolve_referenced(table, direction, scope)
        tables = topological_order(graph, lambda t: graph.get(t, []))
        logger.debug("found %d related tables of %s", len(tables) - 1, table)
        return tables

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    async def create_schema(self, schema_name: str) -> None:
        logger.info("creating schema %s", schema_name)
        await self.client.execute_script(create_schema_sql(schema_name))

    async def drop_table(self, table: TableIdentity, check_referenced: bool = False) -> None:
        """Drop a table if it exists.

        Args:
            table: Table to drop.
            check_referenced: Refuse to drop when other tables still hold
                foreign keys to it.

        Raises:
            ReferentialConflictError: If ``check_referenced`` and the table
                is still referenced.
        """
        if check_referenced:
            keys = await self.list_foreign_keys(table, DependencyDirection.DESCENDING)
            referencing: list[TableIdentity] = []
            for key in keys:
                if key.identity != table and key.identity not in referencing:
                    referencing.append(key.identity)
            if referencing:
                raise ReferentialConflictError(table, referencing)

        logger.info("dropping %s", table)
        await self.client.execute_script(drop_table_sql(table))

    async def truncate_table(
        self, table: TableIdentity, truncate_referenced: bool = False
    ) -> None:
        """Empty a table.

        Args:
            table: Table to truncate.
            truncate_referenced: Also truncate every table that references
                it, directly or transitively, in the same statement.
        """
        tables = [table]
        if truncate_referenced:
            tables = await self.list_tables_referenced_by(
                table, DependencyDirection.DESCENDING
            )

        logger.info("truncating %s", ", ".join(str(t) for t in tables))
        await self.client.execute_script(truncate_table_sql(*tables))

    async def execute_statement(self, statement: str) -> None:
        await self.client.execute_script(statement)

    async def build_clone_statement(self, table: TableDefinition) -> str:
        return await self._generator.build_create_and_populate(table)
