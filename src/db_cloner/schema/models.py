"""Table, column and key models plus traversal enums.

This module contains the schema-domain models:
- Identity: TableIdentity (case-insensitive value type, graph node key)
- Definitions: ColumnDefinition, KeyDefinition, TableDefinition
- Traversal switches: DependencyDirection, CyclePolicy

Configuration models (DatabaseProfile, CloneConfiguration) live in
db_cloner.config.models.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from db_cloner.errors import InvalidConfigurationError


# ============================================================================
# Identity
# ============================================================================


@dataclass(frozen=True, eq=False)
class TableIdentity:
    """Schema-qualified table name.

    Equality and hashing casefold both parts, so ``dbo.Orders`` and
    ``DBO.orders`` are the same graph node.  The original spelling is kept
    for display and for quoting in generated SQL.

    Example:
        >>> TableIdentity("dbo", "Orders") == TableIdentity("DBO", "orders")
        True
        >>> str(TableIdentity("dbo", "Orders"))
        'dbo.Orders'
    """

    schema: str
    name: str

    @property
    def key(self) -> tuple[str, str]:
        """Casefolded ``(schema, name)`` used for equality and hashing."""
        return (self.schema.casefold(), self.name.casefold())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableIdentity):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return f"{self.schema}.{self.name}"

    def in_schema(self, schema: str | None) -> bool:
        """True if this table lives in ``schema`` (case-insensitive)."""
        return schema is not None and self.schema.casefold() == schema.casefold()

    def with_schema(self, schema: str) -> "TableIdentity":
        """Return the same table name under another schema."""
        return TableIdentity(schema, self.name)

    @classmethod
    def parse(cls, text: str, default_schema: str | None = None) -> "TableIdentity":
        """Parse ``name`` or ``schema.name``.

        Args:
            text: Table name, optionally schema-qualified.
            default_schema: Schema used when ``text`` has no qualifier.

        Raises:
            InvalidConfigurationError: On any other number of segments, empty
                segments, or a bare name without a default schema.
        """
        parts = text.strip().split(".")
        if any(not part for part in parts):
            raise InvalidConfigurationError(f"Malformed table name: '{text}'")

        if len(parts) == 1:
            if not default_schema:
                raise InvalidConfigurationError(
                    f"Table name '{text}' has no schema and no default schema is set"
                )
            return cls(default_schema, parts[0])
        if len(parts) == 2:
            return cls(parts[0], parts[1])

        raise InvalidConfigurationError(
            f"Malformed table name: '{text}' (expected 'table' or 'schema.table')"
        )


# ============================================================================
# Traversal switches
# ============================================================================


class DependencyDirection(str, Enum):
    """Which side of a foreign key to follow.

    ``ascending`` follows the table's own foreign keys to the tables it
    references (its prerequisites); ``descending`` follows foreign keys of
    other tables that point back at it (its dependents).
    """

    NONE = "none"
    ASCENDING = "ascending"
    DESCENDING = "descending"
    BOTH = "both"

    @property
    def ascending(self) -> bool:
        return self in (DependencyDirection.ASCENDING, DependencyDirection.BOTH)

    @property
    def descending(self) -> bool:
        return self in (DependencyDirection.DESCENDING, DependencyDirection.BOTH)

    def validate(self) -> "DependencyDirection":
        """Return self, or raise if no direction is selected."""
        if self is DependencyDirection.NONE:
            raise InvalidConfigurationError(
                "Can't resolve foreign keys without selecting ascending, "
                "descending or both"
            )
        return self


class CyclePolicy(str, Enum):
    """What a topological sort does on a back-edge."""

    STRICT = "strict"  # raise CycleDetectedError
    LENIENT = "lenient"  # drop the back-edge and continue


# ============================================================================
# Definitions
# ============================================================================


class ColumnDefinition(BaseModel):
    """A table column as reported by the catalog.

    Example:
        >>> col = ColumnDefinition(name="id", position=1, data_type="integer")
        >>> col.is_nullable
        True
    """

    name: str
    position: int
    default: Any = None
    is_nullable: bool = True
    data_type: str
    character_maximum_length: int | None = None
    numeric_precision: int | None = None
    numeric_scale: int | None = None
    is_identity: bool = False


class KeyDefinition(BaseModel):
    """One column of a primary or foreign key constraint.

    Composite keys are represented as several records with the same
    ``constraint_name``.
    """

    kind: Literal["primary", "foreign"]
    schema_name: str
    table_name: str
    column_name: str
    constraint_name: str
    referenced_schema: str | None = None
    referenced_table: str | None = None
    referenced_column: str | None = None

    @property
    def is_foreign(self) -> bool:
        return self.kind == "foreign"

    @property
    def identity(self) -> TableIdentity:
        """The table owning this key."""
        return TableIdentity(self.schema_name, self.table_name)

    @property
    def referenced_identity(self) -> TableIdentity | None:
        """The table a foreign key points to (``None`` for primary keys)."""
        if self.referenced_schema is None or self.referenced_table is None:
            return None
        return TableIdentity(self.referenced_schema, self.referenced_table)


class TableDefinition(BaseModel):
    """A fully resolved table, ready to be scripted."""

    schema_name: str
    name: str
    columns: list[ColumnDefinition] = Field(default_factory=list)
    keys: list[KeyDefinition] = Field(default_factory=list)

    @property
    def identity(self) -> TableIdentity:
        return TableIdentity(self.schema_name, self.name)

    @property
    def primary_key(self) -> list[KeyDefinition]:
        """Primary key columns in constraint order (empty if none)."""
        return [k for k in self.keys if k.kind == "primary"]

    @property
    def foreign_keys(self) -> list[KeyDefinition]:
        return [k for k in self.keys if k.is_foreign]

    def referenced_tables(self) -> list[TableIdentity]:
        """Distinct tables referenced by this table's foreign keys, self excluded."""
        tables: list[TableIdentity] = []
        for key in self.foreign_keys:
            ref = key.referenced_identity
            if ref is not None and ref != self.identity and ref not in tables:
                tables.append(ref)
        return tables
