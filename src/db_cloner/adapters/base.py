"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that backend adapters implement.
All methods are ``async def`` -- the library is async-first.

Usage:
    from db_cloner.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select('"dbo"."orders"', "*", order_by='"id"')
        tables = await client.fetch(
            "SELECT table_name FROM information_schema.tables"
            " WHERE table_schema = :schema",
            {"schema": "dbo"},
        )
        await client.execute_script('CREATE SCHEMA "archive"')
        await client.close()
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    A client owns one logical connection (pool) to one database.  The
    cloner treats two clients as the same connection only when they are
    the same object.

    All methods are async -- callers must ``await`` every operation.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name, already quoted/qualified as needed.
            columns: Comma-separated column list (e.g., ``"id, name"``).
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional ORDER BY expression.

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            rows = await client.select(
                '"dbo"."orders"',
                "*",
                filters={"status": "open"},
                order_by='"id"',
            )
        """
        ...

    async def fetch(self, sql: str, params: dict | None = None) -> list[dict]:
        """Run a query and return all rows as dicts.

        Used for catalog queries that need joins or expressions the simple
        ``select()`` builder can't express.

        Args:
            sql: SQL query with ``:name`` style parameters.
            params: Optional dict of named parameters.

        Returns:
            List of dicts, one per row.
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a single non-query statement with named ``:param`` binds.

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters for the SQL statement.

        Example:
            await client.execute("DELETE FROM audit WHERE id < :id", {"id": 100})
        """
        ...

    async def execute_script(self, sql: str) -> None:
        """Execute a multi-statement script in one implicit transaction.

        The script is sent as-is (no parameters).  Used for the combined
        create-and-populate statements produced by the statement generator
        and for DDL on quoted identifiers, which may contain ``:``.

        Args:
            sql: One or more SQL statements separated by semicolons.
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...

    async def test_connection(self) -> bool:
        """Return ``True`` if a trivial query succeeds; raise otherwise."""
        ...
