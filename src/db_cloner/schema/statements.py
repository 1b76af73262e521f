"""SQL statement generation for cloning tables.

Turns a ``TableDefinition`` plus its rows into one self-contained
create-and-populate script, and renders the simple DDL statements the
cloner needs (create schema, drop table, truncate table).  Also rewrites
schema qualifiers in generated statements when cloning into another schema.

Identifiers are always quoted with SQLAlchemy's PostgreSQL identifier
preparer, so catalog spelling (including mixed case) is preserved.

Usage:
    generator = StatementGenerator(source_adapter)
    script = await generator.build_create_and_populate(table_definition)
    script = rewrite_schema(script, "dbo", "archive")
    await target_adapter.execute_script(script)
"""

import json
import logging
import math
import re
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.dialects import postgresql

from db_cloner.adapters.base import DatabaseClient
from db_cloner.schema.models import (
    ColumnDefinition,
    KeyDefinition,
    TableDefinition,
    TableIdentity,
)

logger = logging.getLogger(__name__)

# Named paramstyle: identifiers are not percent-escaped
_PREPARER = postgresql.dialect(paramstyle="named").identifier_preparer

# Rows per INSERT statement
INSERT_BATCH_SIZE = 500

# Types that take a length modifier in DDL
_LENGTH_TYPES = frozenset({
    "character varying", "varchar", "character", "char", "bpchar",
    "bit", "bit varying", "varbit",
})


# ------------------------------------------------------------------
# Identifiers and literals
# ------------------------------------------------------------------


def quote_identifier(name: str) -> str:
    """Quote a single identifier, keeping its case.

    Embedded double quotes are doubled.

    Example:
        >>> quote_identifier("OrderLines")
        '"OrderLines"'
    """
    return _PREPARER.quote_identifier(name)


def qualified_name(table: TableIdentity) -> str:
    """Render ``"schema"."table"``."""
    return f"{quote_identifier(table.schema)}.{quote_identifier(table.name)}"


def _quote_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_literal(value: Any) -> str:
    """Render a Python value as a PostgreSQL literal.

    Values without an exact literal form (temporal values, UUIDs, JSON
    documents) are rendered as quoted strings; PostgreSQL casts them to the
    column type on insert.

    Example:
        >>> render_literal("O'Brien")
        "'O''Brien'"
        >>> render_literal(None)
        'NULL'
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return _quote_string(str(value))
        return repr(value)
    if isinstance(value, Decimal):
        return str(value) if value.is_finite() else _quote_string(str(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"'\\x{bytes(value).hex()}'::bytea"
    if isinstance(value, (datetime, date, time)):
        return _quote_string(value.isoformat())
    if isinstance(value, timedelta):
        return _quote_string(f"{value.total_seconds()} seconds")
    if isinstance(value, dict):
        return _quote_string(json.dumps(value, default=str))
    if isinstance(value, (list, tuple)):
        # asyncpg returns PostgreSQL arrays as lists
        if not value:
            return "'{}'"
        return "ARRAY[" + ", ".join(render_literal(v) for v in value) + "]"
    return _quote_string(str(value))


# ------------------------------------------------------------------
# Simple DDL
# ------------------------------------------------------------------


def create_schema_sql(schema_name: str) -> str:
    return f"CREATE SCHEMA {quote_identifier(schema_name)}"


def drop_table_sql(table: TableIdentity) -> str:
    """``DROP TABLE IF EXISTS`` without ``CASCADE``.

    A drop that would break another table's foreign key fails at the
    backend instead of silently removing the constraint.
    """
    return f"DROP TABLE IF EXISTS {qualified_name(table)}"


def truncate_table_sql(*tables: TableIdentity) -> str:
    """Truncate one or more tables in a single statement.

    PostgreSQL only truncates a referenced table when every table
    referencing it is truncated by the same command.
    """
    return "TRUNCATE TABLE " + ", ".join(qualified_name(t) for t in tables)


# ------------------------------------------------------------------
# Create-and-populate
# ------------------------------------------------------------------


def _is_identity(column: ColumnDefinition) -> bool:
    """Identity columns and serial columns (cloned as identity)."""
    if column.is_identity:
        return True
    return isinstance(column.default, str) and column.default.startswith("nextval(")


def _column_type(column: ColumnDefinition) -> str:
    data_type = column.data_type
    if column.character_maximum_length is not None and data_type in _LENGTH_TYPES:
        return f"{data_type}({column.character_maximum_length})"
    if column.numeric_precision is not None and data_type in ("numeric", "decimal"):
        return f"{data_type}({column.numeric_precision},{column.numeric_scale or 0})"
    return data_type


def _column_sql(column: ColumnDefinition) -> str:
    parts = [quote_identifier(column.name), _column_type(column)]
    if _is_identity(column):
        parts.append("GENERATED BY DEFAULT AS IDENTITY")
    elif column.default is not None:
        # information_schema reports defaults as SQL expressions
        default = column.default if isinstance(column.default, str) else render_literal(column.default)
        parts.append(f"DEFAULT {default}")
    if not column.is_nullable:
        parts.append("NOT NULL")
    return " ".join(parts)


def _group_constraints(keys: Sequence[KeyDefinition]) -> dict[str, list[KeyDefinition]]:
    """Group key columns by constraint name, keeping column order."""
    grouped: dict[str, list[KeyDefinition]] = {}
    for key in keys:
        grouped.setdefault(key.constraint_name, []).append(key)
    return grouped


def _column_list(names: Sequence[str]) -> str:
    return ", ".join(quote_identifier(n) for n in names)


def render_create_and_populate(table: TableDefinition, rows: Sequence[dict]) -> str:
    """Render the create-and-populate script for a table.

    The script creates the table with its primary key, inserts ``rows``,
    moves identity columns past the copied values, then adds the foreign
    keys.  Foreign keys go last so self-referencing rows load in any order.

    Args:
        table: Table to script.  Must have at least one column.
        rows: Row dicts keyed by column name.

    Returns:
        The script, statements separated by blank lines.

    Raises:
        ValueError: If the table has no columns.
    """
    if not table.columns:
        raise ValueError(f"Table {table.identity} has no columns")

    target = qualified_name(table.identity)
    columns = sorted(table.columns, key=lambda c: c.position)

    # 1. CREATE TABLE with primary key
    body = [f"    {_column_sql(c)}" for c in columns]
    for name, keys in _group_constraints(table.primary_key).items():
        body.append(
            f"    CONSTRAINT {quote_identifier(name)} "
            f"PRIMARY KEY ({_column_list([k.column_name for k in keys])})"
        )
    statements = [f"CREATE TABLE {target} (\n" + ",\n".join(body) + "\n);"]

    # 2. INSERT in batches
    identity_columns = [c for c in columns if _is_identity(c)]
    overriding = " OVERRIDING SYSTEM VALUE" if identity_columns else ""
    column_names = _column_list([c.name for c in columns])
    for start in range(0, len(rows), INSERT_BATCH_SIZE):
        batch = rows[start:start + INSERT_BATCH_SIZE]
        values = ",\n".join(
            "    (" + ", ".join(render_literal(row.get(c.name)) for c in columns) + ")"
            for row in batch
        )
        statements.append(
            f"INSERT INTO {target} ({column_names}){overriding} VALUES\n{values};"
        )

    # 3. Identity columns continue after the copied values
    for column in identity_columns:
        copied = [row.get(column.name) for row in rows]
        copied = [v for v in copied if isinstance(v, int) and not isinstance(v, bool)]
        if copied:
            statements.append(
                f"ALTER TABLE {target} ALTER COLUMN {quote_identifier(column.name)} "
                f"RESTART WITH {max(copied) + 1};"
            )

    # 4. Foreign keys
    for name, keys in _group_constraints(table.foreign_keys).items():
        referenced = keys[0].referenced_identity
        statements.append(
            f"ALTER TABLE {target} ADD CONSTRAINT {quote_identifier(name)} "
            f"FOREIGN KEY ({_column_list([k.column_name for k in keys])}) "
            f"REFERENCES {qualified_name(referenced)} "
            f"({_column_list([k.referenced_column for k in keys])});"
        )

    return "\n\n".join(statements)


class StatementGenerator:
    """Builds create-and-populate scripts from a source connection.

    Args:
        client: Source database client; rows are read through it.
    """

    def __init__(self, client: DatabaseClient) -> None:
        self._client = client

    async def fetch_rows(self, table: TableDefinition) -> list[dict]:
        """Read every row of ``table``, ordered by primary key when it has one."""
        order_by = _column_list([k.column_name for k in table.primary_key]) or None
        return await self._client.select(
            qualified_name(table.identity), "*", order_by=order_by
        )

    async def build_create_and_populate(self, table: TableDefinition) -> str:
        """Read the table's rows and render its create-and-populate script."""
        rows = await self.fetch_rows(table)
        logger.debug("scripting %s with %d rows", table.identity, len(rows))
        return render_create_and_populate(table, rows)


# ------------------------------------------------------------------
# Schema rewriting
# ------------------------------------------------------------------


def rewrite_schema(statement: str, source_schema: str, target_schema: str) -> str:
    """Replace ``source_schema`` qualifiers with ``target_schema``.

    Only schema qualifiers are rewritten: the source name, quoted or bare,
    directly followed by ``.`` and not itself part of a longer qualified
    name.  String literals, other quoted identifiers and names that merely
    contain the source name are left alone.  Matching is case-insensitive;
    the replacement is always the quoted target name.

    Example:
        >>> rewrite_schema('SELECT * FROM "dbo"."orders"', "dbo", "archive")
        'SELECT * FROM "archive"."orders"'
        >>> rewrite_schema("INSERT INTO dbo.t VALUES ('dbo.t')", "dbo", "archive")
        'INSERT INTO "archive".t VALUES (\\'dbo.t\\')'
    """
    quoted_source = quote_identifier(source_schema)
    quoted_target = quote_identifier(target_schema)

    pattern = re.compile(
        r"(?P<literal>'(?:[^']|'')*')"
        r"|(?<![\w.\"$])(?P<schema>" + re.escape(quoted_source) + "|"
        + re.escape(source_schema) + r")(?=\s*\.)"
        r'|(?P<identifier>"(?:[^"]|"")*")',
        re.IGNORECASE,
    )

    def replace(match: re.Match) -> str:
        if match.group("schema") is not None:
            return quoted_target
        return match.group(0)

    return pattern.sub(replace, statement)
