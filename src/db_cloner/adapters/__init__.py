"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async PostgreSQL adapter.

Usage:
    from db_cloner.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from db_cloner.adapters.base import DatabaseClient
from db_cloner.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
]
