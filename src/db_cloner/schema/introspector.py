"""PostgreSQL catalog reader via information_schema and pg_catalog.

This module queries the live database for the metadata the dependency
resolver and statement generator need:
- Schemas and the tables in each schema
- Columns (type, length/precision, nullability, default, identity)
- Primary keys
- Foreign keys in either direction, optionally scoped to one schema

Table lookups (``find_table``, ``list_tables``, ``list_foreign_keys``) match
names case-insensitively and return the catalog's own spelling; column and
key reads then compare that spelling exactly, so quoted tables differing
only by case stay apart.  Nothing is cached: each call
re-queries the catalog.

Usage:
    introspector = SchemaIntrospector(adapter)
    tables = await introspector.list_tables("public")
    definition = await introspector.describe_table(tables[0])
"""

import logging

from db_cloner.adapters.base import DatabaseClient
from db_cloner.schema.models import (
    ColumnDefinition,
    DependencyDirection,
    KeyDefinition,
    TableDefinition,
    TableIdentity,
)

logger = logging.getLogger(__name__)


_FOREIGN_KEY_QUERY = """
    SELECT
        con.conname AS constraint_name,
        ns.nspname AS schema_name,
        cl.relname AS table_name,
        att.attname AS column_name,
        rns.nspname AS referenced_schema,
        rcl.relname AS referenced_table,
        ratt.attname AS referenced_column
    FROM pg_constraint con
    JOIN pg_class cl ON cl.oid = con.conrelid
    JOIN pg_namespace ns ON ns.oid = cl.relnamespace
    JOIN pg_class rcl ON rcl.oid = con.confrelid
    JOIN pg_namespace rns ON rns.oid = rcl.relnamespace
    CROSS JOIN LATERAL unnest(con.conkey, con.confkey)
        WITH ORDINALITY AS k(attnum, refattnum, ordinality)
    JOIN pg_attribute att
        ON att.attrelid = con.conrelid AND att.attnum = k.attnum
    JOIN pg_attribute ratt
        ON ratt.attrelid = con.confrelid AND ratt.attnum = k.refattnum
    WHERE con.contype = 'f'
"""


class SchemaIntrospector:
    """Introspects PostgreSQL catalog metadata through a ``DatabaseClient``.

    Works with any PostgreSQL database (RDS, Supabase, local).

    Usage:
        introspector = SchemaIntrospector(adapter)

        # Full table definition (columns + primary and foreign keys)
        table = await introspector.describe_table(TableIdentity("dbo", "orders"))

        # Tables that reference dbo.orders
        keys = await introspector.list_foreign_keys(
            TableIdentity("dbo", "orders"), DependencyDirection.DESCENDING
        )
    """

    # Schemas never listed or cloned
    EXCLUDED_SCHEMAS = frozenset({"pg_catalog", "information_schema", "pg_toast"})

    def __init__(
        self,
        client: DatabaseClient,
        excluded_schemas: set[str] | None = None,
    ) -> None:
        """Initialize with a database client.

        Args:
            client: Client used for every catalog query.
            excluded_schemas: Schemas to hide from ``list_schemas()``.
                Defaults to ``EXCLUDED_SCHEMAS``.
        """
        self._client = client
        self._excluded_schemas = (
            frozenset(excluded_schemas)
            if excluded_schemas is not None
            else self.EXCLUDED_SCHEMAS
        )

    async def default_schema(self) -> str:
        """Return the connection's current schema."""
        rows = await self._client.fetch("SELECT current_schema() AS schema_name")
        return rows[0]["schema_name"]

    async def list_schemas(self) -> list[str]:
        """List user schemas, excluding system and temporary ones."""
        logger.debug("listing schemas..")
        rows = await self._client.fetch(
            """
            SELECT schema_name
            FROM information_schema.schemata
            WHERE schema_name NOT LIKE 'pg\\_temp\\_%'
              AND schema_name NOT LIKE 'pg\\_toast\\_temp\\_%'
            ORDER BY schema_name
            """
        )
        schemas = [
            r["schema_name"] for r in rows
            if r["schema_name"] not in self._excluded_schemas
        ]
        logger.debug("found %d schemas", len(schemas))
        return schemas

    async def schema_exists(self, schema_name: str) -> bool:
        rows = await self._client.fetch(
            """
            SELECT schema_name
            FROM information_schema.schemata
            WHERE lower(schema_name) = lower(:schema)
            """,
            {"schema": schema_name},
        )
        return bool(rows)

    async def list_tables(self, schema_name: str) -> list[TableIdentity]:
        """List base tables of a schema, ordered by name."""
        logger.debug("listing tables of %s..", schema_name)
        rows = await self._client.fetch(
            """
            SELECT table_schema, table_name
            FROM information_schema.tables
            WHERE lower(table_schema) = lower(:schema)
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            {"schema": schema_name},
        )
        tables = [TableIdentity(r["table_schema"], r["table_name"]) for r in rows]
        logger.debug("found %d tables", len(tables))
        return tables

    async def find_table(self, table: TableIdentity) -> TableIdentity | None:
        """Return the catalog spelling of ``table``, or ``None`` if absent."""
        rows = await self._client.fetch(
            """
            SELECT table_schema, table_name
            FROM information_schema.tables
            WHERE lower(table_schema) = lower(:schema)
              AND lower(table_name) = lower(:table)
              AND table_type = 'BASE TABLE'
            """,
            {"schema": table.schema, "table": table.name},
        )
        if not rows:
            return None
        # An exact-case match wins when quoted names differ only by case
        for r in rows:
            if r["table_schema"] == table.schema and r["table_name"] == table.name:
                return TableIdentity(r["table_schema"], r["table_name"])
        return TableIdentity(rows[0]["table_schema"], rows[0]["table_name"])

    async def table_exists(self, table: TableIdentity) -> bool:
        return await self.find_table(table) is not None

    async def describe_table(self, table: TableIdentity) -> TableDefinition | None:
        """Build the full definition of a table.

        Returns:
            ``TableDefinition`` with columns, primary key and the table's own
            foreign keys, or ``None`` if the table does not exist.
        """
        found = await self.find_table(table)
        if found is None:
            return None

        columns = await self.list_columns(found)
        keys = await self.get_primary_key(found)
        keys += await self._read_foreign_keys(found, DependencyDirection.ASCENDING)
        logger.debug("found %d keys in %s", len(keys), found)

        return TableDefinition(
            schema_name=found.schema,
            name=found.name,
            columns=columns,
            keys=keys,
        )

    async def list_columns(self, table: TableIdentity) -> list[ColumnDefinition]:
        """Get columns for a table, ordered by position.

        ``table`` must carry the catalog spelling returned by ``find_table``.
        """
        logger.debug("listing columns of %s..", table)
        rows = await self._client.fetch(
            """
            SELECT
                column_name,
                ordinal_position,
                column_default,
                is_nullable,
                data_type,
                udt_name,
                character_maximum_length,
                numeric_precision,
                numeric_scale,
                is_identity
            FROM information_schema.columns
            WHERE table_schema = :schema
              AND table_name = :table
            ORDER BY ordinal_position
            """,
            {"schema": table.schema, "table": table.name},
        )

        columns = [
            ColumnDefinition(
                name=r["column_name"],
                position=r["ordinal_position"],
                default=r["column_default"],
                is_nullable=(r["is_nullable"] == "YES"),
                data_type=self._resolve_data_type(r["data_type"], r["udt_name"]),
                character_maximum_length=r["character_maximum_length"],
                numeric_precision=self._numeric_attr(r["data_type"], r["numeric_precision"]),
                numeric_scale=self._numeric_attr(r["data_type"], r["numeric_scale"]),
                is_identity=(r["is_identity"] == "YES"),
            )
            for r in rows
        ]
        logger.debug("found %d columns in %s", len(columns), table)
        return columns

    def _resolve_data_type(self, data_type: str, udt_name: str | None) -> str:
        """Map information_schema type names to names usable in DDL.

        ``ARRAY`` and ``USER-DEFINED`` are placeholders in information_schema;
        the real type lives in ``udt_name`` (arrays carry a ``_`` prefix).
        """
        if data_type == "ARRAY" and udt_name:
            return f"{udt_name.lstrip('_')}[]"
        if data_type == "USER-DEFINED" and udt_name:
            return udt_name
        return data_type

    def _numeric_attr(self, data_type: str, value: int | None) -> int | None:
        # information_schema reports precision for integers and floats too;
        # only numeric/decimal take it in DDL.
        if data_type in ("numeric", "decimal"):
            return value
        return None

    async def get_primary_key(self, table: TableIdentity) -> list[KeyDefinition]:
        """Get the primary key columns of a table (empty if none).

        ``table`` must carry the catalog spelling returned by ``find_table``.
        """
        rows = await self._client.fetch(
            """
            SELECT
                tc.table_schema,
                tc.table_name,
                kcu.column_name,
                tc.constraint_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
                AND tc.table_name = kcu.table_name
            WHERE tc.constraint_type = 'PRIMARY KEY'
              AND tc.table_schema = :schema
              AND tc.table_name = :table
            ORDER BY kcu.ordinal_position
            """,
            {"schema": table.schema, "table": table.name},
        )
        return [
            KeyDefinition(
                kind="primary",
                schema_name=r["table_schema"],
                table_name=r["table_name"],
                column_name=r["column_name"],
                constraint_name=r["constraint_name"],
            )
            for r in rows
        ]

    async def list_foreign_keys(
        self,
        table: TableIdentity,
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> list[KeyDefinition]:
        """List foreign keys touching a table.

        Args:
            table: The table at the center of the lookup.
            direction: ``ascending`` returns keys the table owns,
                ``descending`` returns keys of other tables referencing it,
                ``both`` returns the union.
            scope: When set, only keys whose other side lives in this
                schema are returned.

        Returns:
            Keys in catalog order; empty if the table doesn't exist.

        Raises:
            InvalidConfigurationError: If ``direction`` is ``none``.
        """
        direction.validate()

        found = await self.find_table(table)
        if found is None:
            return []
        return await self._read_foreign_keys(found, direction, scope)

    async def _read_foreign_keys(
        self,
        table: TableIdentity,
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> list[KeyDefinition]:
        # ``table`` carries the catalog spelling; names compare exactly
        params = {"schema": table.schema, "table": table.name}
        owned = "(ns.nspname = :schema AND cl.relname = :table)"
        referencing = "(rns.nspname = :schema AND rcl.relname = :table)"

        # Build one condition per selected side
        sides: list[str] = []
        if direction.ascending:
            if scope is not None:
                owned = f"({owned} AND lower(rns.nspname) = lower(:scope))"
            sides.append(owned)
        if direction.descending:
            if scope is not None:
                referencing = f"({referencing} AND lower(ns.nspname) = lower(:scope))"
            sides.append(referencing)
        if scope is not None:
            params["scope"] = scope

        query = (
            f"{_FOREIGN_KEY_QUERY}"
            f"  AND ({' OR '.join(sides)})\n"
            f"    ORDER BY ns.nspname, cl.relname, con.conname, k.ordinality"
        )
        rows = await self._client.fetch(query, params)

        return [
            KeyDefinition(
                kind="foreign",
                schema_name=r["schema_name"],
                table_name=r["table_name"],
                column_name=r["column_name"],
                constraint_name=r["constraint_name"],
                referenced_schema=r["referenced_schema"],
                referenced_table=r["referenced_table"],
                referenced_column=r["referenced_column"],
            )
            for r in rows
        ]
