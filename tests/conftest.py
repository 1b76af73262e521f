"""Shared fixtures: an in-memory metadata provider.

``FakeDatabase`` implements the ``MetadataProvider`` protocol over plain
dicts and behaves like PostgreSQL where the cloner depends on it: drops
never cascade, and a foreign key to a missing table fails the script that
adds it.  Every mutating call is recorded in ``calls``.
"""

import re
from collections.abc import Callable
from typing import Any

import pytest

from db_cloner.errors import ReferentialConflictError
from db_cloner.schema.models import (
    ColumnDefinition,
    DependencyDirection,
    KeyDefinition,
    TableDefinition,
    TableIdentity,
)
from db_cloner.schema.statements import render_create_and_populate

_NAME = r'"((?:[^"]|"")+)"'
_CREATE_RE = re.compile(r"CREATE TABLE " + _NAME + r"\." + _NAME)
_FOREIGN_KEY_RE = re.compile(
    r"ADD CONSTRAINT " + _NAME + r" FOREIGN KEY \(" + _NAME + r"\) "
    r"REFERENCES " + _NAME + r"\." + _NAME + r" \(" + _NAME + r"\)"
)


def _unquote(name: str) -> str:
    return name.replace('""', '"')


def make_table(
    schema: str,
    name: str,
    references: list[str] | None = None,
    extra_columns: list[str] | None = None,
) -> TableDefinition:
    """Build a table with an ``id`` primary key and one FK column per reference.

    ``references`` are ``schema.table`` strings; each adds a
    ``<table>_id`` column referencing that table's ``id``.
    """
    columns = [
        ColumnDefinition(name="id", position=1, data_type="integer", is_nullable=False)
    ]
    keys = [
        KeyDefinition(
            kind="primary",
            schema_name=schema,
            table_name=name,
            column_name="id",
            constraint_name=f"{name}_pkey",
        )
    ]
    for text in references or []:
        ref = TableIdentity.parse(text)
        column = f"{ref.name}_id"
        columns.append(
            ColumnDefinition(name=column, position=len(columns) + 1, data_type="integer")
        )
        keys.append(
            KeyDefinition(
                kind="foreign",
                schema_name=schema,
                table_name=name,
                column_name=column,
                constraint_name=f"{name}_{column}_fkey",
                referenced_schema=ref.schema,
                referenced_table=ref.name,
                referenced_column="id",
            )
        )
    for extra in extra_columns or []:
        columns.append(
            ColumnDefinition(name=extra, position=len(columns) + 1, data_type="text")
        )
    return TableDefinition(schema_name=schema, name=name, columns=columns, keys=keys)


class FakeDatabase:
    """In-memory ``MetadataProvider``.

    Attributes:
        tables: Table definitions keyed by identity.
        rows: Row dicts per table, scripted into clone statements.
        calls: ``(operation, argument)`` for every mutating call.
        failures: ``(operation, identity)`` -> exception raised by that call.
        on_call: Invoked with ``(operation, argument)`` before each
            mutating call.
    """

    def __init__(self, default_schema: str = "public", schemas: list[str] | None = None):
        self.default = default_schema
        self.schemas: list[str] = list(schemas or [default_schema])
        self.tables: dict[TableIdentity, TableDefinition] = {}
        self.rows: dict[TableIdentity, list[dict]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[tuple[str, TableIdentity], Exception] = {}
        self.on_call: Callable[[str, Any], None] | None = None
        self.foreign_key_reads: list[TableIdentity] = []
        self.statements: dict[TableIdentity, str] = {}

    def add(self, table: TableDefinition, rows: list[dict] | None = None) -> TableDefinition:
        if not any(s.casefold() == table.schema_name.casefold() for s in self.schemas):
            self.schemas.append(table.schema_name)
        self.tables[table.identity] = table
        self.rows[table.identity] = list(rows or [])
        return table

    def add_table(self, text: str, references: list[str] | None = None, **kwargs) -> TableDefinition:
        identity = TableIdentity.parse(text, self.default)
        return self.add(make_table(identity.schema, identity.name, references), **kwargs)

    def _record(self, operation: str, argument: Any) -> None:
        if self.on_call is not None:
            self.on_call(operation, argument)
        self.calls.append((operation, argument))
        if isinstance(argument, TableIdentity) and (operation, argument) in self.failures:
            raise self.failures[(operation, argument)]

    def operations(self, operation: str) -> list[Any]:
        return [arg for op, arg in self.calls if op == operation]

    # --- reads ---------------------------------------------------------

    async def default_schema(self) -> str:
        return self.default

    async def list_schemas(self) -> list[str]:
        return list(self.schemas)

    async def list_schema_tables(self, schema_name: str) -> list[TableIdentity]:
        return sorted(
            (t for t in self.tables if t.in_schema(schema_name)),
            key=lambda t: t.name,
        )

    async def describe_table(self, table: TableIdentity) -> TableDefinition | None:
        return self.tables.get(table)

    async def list_foreign_keys(
        self,
        table: TableIdentity,
        direction: DependencyDirection,
        scope: str | None = None,
    ) -> list[KeyDefinition]:
        self.foreign_key_reads.append(table)
        keys: list[KeyDefinition] = []
        for definition in self.tables.values():
            for key in definition.foreign_keys:
                if direction.ascending and key.identity == table:
                    if scope is None or key.referenced_identity.in_schema(scope):
                        keys.append(key)
                elif direction.descending and key.referenced_identity == table:
                    if scope is None or key.identity.in_schema(scope):
                        keys.append(key)
        return keys

    async def table_exists(self, table: TableIdentity) -> bool:
        return table in self.tables

    async def find_table(self, table: TableIdentity) -> TableIdentity | None:
        definition = self.tables.get(table)
        return definition.identity if definition is not None else None

    # --- writes --------------------------------------------------------

    async def create_schema(self, schema_name: str) -> None:
        self._record("create_schema", schema_name)
        self.schemas.append(schema_name)

    async def drop_table(self, table: TableIdentity, check_referenced: bool = False) -> None:
        self._record("drop", table)
        referencing = [
            t for t, d in self.tables.items()
            if t != table and table in d.referenced_tables()
        ]
        if referencing and table in self.tables:
            if check_referenced:
                raise ReferentialConflictError(table, referencing)
            raise RuntimeError(f"cannot drop {table}: other objects depend on it")
        self.tables.pop(table, None)
        self.rows.pop(table, None)

    async def execute_statement(self, statement: str) -> None:
        match = _CREATE_RE.search(statement)
        identity = None
        if match:
            identity = TableIdentity(_unquote(match.group(1)), _unquote(match.group(2)))
        self._record("execute", identity)
        if identity is None:
            return

        if identity in self.tables:
            raise RuntimeError(f'relation "{identity}" already exists')
        if not any(identity.in_schema(s) for s in self.schemas):
            raise RuntimeError(f'schema "{identity.schema}" does not exist')

        table = make_table(identity.schema, identity.name)
        for fk in _FOREIGN_KEY_RE.finditer(statement):
            referenced = TableIdentity(_unquote(fk.group(3)), _unquote(fk.group(4)))
            if referenced not in self.tables and referenced != identity:
                raise RuntimeError(f'relation "{referenced}" does not exist')
            table.keys.append(
                KeyDefinition(
                    kind="foreign",
                    schema_name=identity.schema,
                    table_name=identity.name,
                    column_name=_unquote(fk.group(2)),
                    constraint_name=_unquote(fk.group(1)),
                    referenced_schema=referenced.schema,
                    referenced_table=referenced.name,
                    referenced_column=_unquote(fk.group(5)),
                )
            )
        self.tables[identity] = table
        self.rows[identity] = []
        self.statements[identity] = statement

    async def build_clone_statement(self, table: TableDefinition) -> str:
        return render_create_and_populate(table, self.rows.get(table.identity, []))


@pytest.fixture
def shop() -> FakeDatabase:
    """A small order schema.

    ``dbo.order_lines`` references ``dbo.orders`` and ``ref.products``;
    ``dbo.orders`` references ``dbo.customers``; ``dbo.audit_log`` stands
    alone.
    """
    db = FakeDatabase(default_schema="dbo", schemas=["dbo", "ref"])
    db.add_table("dbo.customers", rows=[{"id": 1}, {"id": 2}])
    db.add_table("ref.products", rows=[{"id": 10}])
    db.add_table("dbo.orders", ["dbo.customers"], rows=[{"id": 100, "customers_id": 1}])
    db.add_table(
        "dbo.order_lines",
        ["dbo.orders", "ref.products"],
        rows=[{"id": 1000, "orders_id": 100, "products_id": 10}],
    )
    db.add_table("dbo.audit_log")
    return db


class CatalogClient:
    """``DatabaseClient`` answering the introspector's catalog queries.

    Reads come from a ``FakeDatabase``; statements are recorded in
    ``executed`` and ``scripts`` without being applied.
    """

    def __init__(self, db: FakeDatabase):
        self.db = db
        self.executed: list[str] = []
        self.scripts: list[str] = []
        self.closed = False

    def _matching(self, params: dict, exact: bool = False) -> list[TableDefinition]:
        def same(a: str, b: str) -> bool:
            return a == b if exact else a.lower() == b.lower()

        return sorted(
            (
                d for d in self.db.tables.values()
                if same(d.schema_name, params["schema"])
                and ("table" not in params or same(d.name, params["table"]))
            ),
            key=lambda d: d.name,
        )

    def _foreign_keys(self, sql: str, params: dict) -> list[dict]:
        table = (params["schema"], params["table"])
        scope = params.get("scope")
        ascending = "(ns.nspname = :schema" in sql
        descending = "(rns.nspname = :schema" in sql
        rows = []
        for definition in self.db.tables.values():
            for key in definition.foreign_keys:
                owned = ascending and (key.schema_name, key.table_name) == table and (
                    scope is None or key.referenced_identity.in_schema(scope)
                )
                referencing = descending and (key.referenced_schema, key.referenced_table) == table and (
                    scope is None or key.identity.in_schema(scope)
                )
                if owned or referencing:
                    rows.append({
                        "constraint_name": key.constraint_name,
                        "schema_name": key.schema_name,
                        "table_name": key.table_name,
                        "column_name": key.column_name,
                        "referenced_schema": key.referenced_schema,
                        "referenced_table": key.referenced_table,
                        "referenced_column": key.referenced_column,
                    })
        return rows

    async def fetch(self, sql: str, params: dict | None = None) -> list[dict]:
        params = params or {}
        if "current_schema()" in sql:
            return [{"schema_name": self.db.default}]
        if "information_schema.schemata" in sql:
            return [
                {"schema_name": s} for s in self.db.schemas
                if "schema" not in params or s.lower() == params["schema"].lower()
            ]
        if "pg_constraint" in sql:
            return self._foreign_keys(sql, params)
        if "PRIMARY KEY" in sql:
            return [
                {
                    "table_schema": k.schema_name,
                    "table_name": k.table_name,
                    "column_name": k.column_name,
                    "constraint_name": k.constraint_name,
                }
                for d in self._matching(params, exact=True) for k in d.primary_key
            ]
        if "information_schema.tables" in sql:
            return [
                {"table_schema": d.schema_name, "table_name": d.name}
                for d in self._matching(params)
            ]
        if "information_schema.columns" in sql:
            return [
                {
                    "column_name": c.name,
                    "ordinal_position": c.position,
                    "column_default": c.default,
                    "is_nullable": "YES" if c.is_nullable else "NO",
                    "data_type": c.data_type,
                    "udt_name": None,
                    "character_maximum_length": c.character_maximum_length,
                    "numeric_precision": c.numeric_precision,
                    "numeric_scale": c.numeric_scale,
                    "is_identity": "YES" if c.is_identity else "NO",
                }
                for d in self._matching(params, exact=True) for c in d.columns
            ]
        raise AssertionError(f"unexpected query: {sql}")

    async def select(self, table, columns="*", filters=None, order_by=None) -> list[dict]:
        match = re.fullmatch(_NAME + r"\." + _NAME, table)
        identity = TableIdentity(_unquote(match.group(1)), _unquote(match.group(2)))
        return list(self.db.rows.get(identity, []))

    async def execute(self, sql: str, params: dict | None = None) -> None:
        self.executed.append(sql)

    async def execute_script(self, sql: str) -> None:
        self.scripts.append(sql)

    async def close(self) -> None:
        self.closed = True

    async def test_connection(self) -> bool:
        return True
