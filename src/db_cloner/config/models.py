"""Pydantic models for database profiles and clone jobs."""

from pydantic import BaseModel, Field


# ============================================================================
# Connection Profiles
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]


# ============================================================================
# Clone Configuration
# ============================================================================


class CloneConfiguration(BaseModel):
    """Behavioral switches of one clone pass.

    ``source_schema`` and ``target_schema`` must be set together or not at
    all; the cloner rejects anything else before touching the database.

    Example:
        >>> config = CloneConfiguration(
        ...     source_schema="dbo",
        ...     target_schema="archive",
        ...     tables=["orders", "dbo.order_lines"],
        ...     expand_referenced=True,
        ... )
        >>> config.skip_shared_tables
        False
    """

    source_schema: str | None = None
    target_schema: str | None = None
    tables: list[str] = Field(default_factory=list)  # "table" or "schema.table"
    expand_referenced: bool = False  # add every table the roots reference
    create_missing_schemas: bool = False
    skip_shared_tables: bool = False  # same connection: leave other schemas alone


class CloneJob(BaseModel):
    """A clone job file: which profiles to clone between, and how."""

    source: str  # profile name
    target: str | None = None  # profile name; None clones within source
    clone: CloneConfiguration = Field(default_factory=CloneConfiguration)
