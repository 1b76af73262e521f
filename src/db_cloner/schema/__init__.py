"""Table metadata, foreign key graphs, and SQL generation.

Provides the table models (``TableIdentity``, ``TableDefinition``), live
catalog introspection (``SchemaIntrospector``), dependency resolution and
ordering (``DependencyResolver``, ``topological_order``), and the
statements used to clone tables (``render_create_and_populate``,
``rewrite_schema``).

Usage:
    from db_cloner.schema import TableIdentity, DependencyDirection
    from db_cloner.schema import DependencyResolver, topological_order
    from db_cloner.schema import SchemaIntrospector, rewrite_schema
"""

from db_cloner.schema.introspector import SchemaIntrospector
from db_cloner.schema.models import (
    ColumnDefinition,
    CyclePolicy,
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
    render_create_and_populate,
    rewrite_schema,
)

__all__ = [
    "SchemaIntrospector",
    "TableIdentity",
    "ColumnDefinition",
    "KeyDefinition",
    "TableDefinition",
    "DependencyDirection",
    "CyclePolicy",
    "DependencyGraph",
    "DependencyResolver",
    "topological_order",
    "order_tables",
    "StatementGenerator",
    "render_create_and_populate",
    "rewrite_schema",
]
