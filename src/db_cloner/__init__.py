"""db-cloner: Clone and back up relational tables with their foreign keys.

Resolves the foreign key graph around a set of tables, orders them so
constraints always hold, and copies them to another PostgreSQL database or
schema, or into a directory of replayable SQL scripts.

Usage:
    from db_cloner import DatabaseCloner, CloneConfiguration, get_adapter
    from db_cloner import DatabaseManager, TableIdentity, DependencyDirection
    from db_cloner import backup_to_directory, restore_from_directory
"""

__version__ = "0.1.0"

# Adapters
from db_cloner.adapters.base import DatabaseClient
from db_cloner.adapters.postgres import AsyncPostgresAdapter

# Config
from db_cloner.config.loader import load_clone_job, load_db_config
from db_cloner.config.models import (
    CloneConfiguration,
    CloneJob,
    DatabaseConfig,
    DatabaseProfile,
)

# Factory
from db_cloner.factory import ProfileNotFoundError, get_adapter, resolve_url

# Errors
from db_cloner.errors import (
    BackendFailureError,
    CloneCancelledError,
    CloneError,
    CycleDetectedError,
    InvalidConfigurationError,
    ReferentialConflictError,
    SchemaMissingError,
)

# Schema
from db_cloner.schema.models import DependencyDirection, TableDefinition, TableIdentity
from db_cloner.schema.resolver import DependencyResolver, topological_order

# Orchestration
from db_cloner.manager import DatabaseManager, MetadataProvider
from db_cloner.cloner import CloneResult, DatabaseCloner

# Backup
from db_cloner.backup import backup_to_directory, restore_from_directory, validate_backup

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "load_clone_job",
    "DatabaseProfile",
    "DatabaseConfig",
    "CloneConfiguration",
    "CloneJob",
    # Factory
    "get_adapter",
    "ProfileNotFoundError",
    "resolve_url",
    # Errors
    "CloneError",
    "InvalidConfigurationError",
    "CycleDetectedError",
    "SchemaMissingError",
    "ReferentialConflictError",
    "BackendFailureError",
    "CloneCancelledError",
    # Schema
    "TableIdentity",
    "TableDefinition",
    "DependencyDirection",
    "DependencyResolver",
    "topological_order",
    # Orchestration
    "MetadataProvider",
    "DatabaseManager",
    "DatabaseCloner",
    "CloneResult",
    # Backup
    "backup_to_directory",
    "restore_from_directory",
    "validate_backup",
]
