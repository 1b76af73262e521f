"""TOML loaders for database profiles and clone jobs."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_cloner.config.models import CloneJob, DatabaseConfig, DatabaseProfile
from db_cloner.errors import InvalidConfigurationError


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml (default: ``db.toml`` in the current
            working directory)

    Returns:
        DatabaseConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        InvalidConfigurationError: If a profile is malformed
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with a [profiles.<name>] table per database."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        try:
            profiles[name] = DatabaseProfile(**profile_data)
        except ValidationError as e:
            raise InvalidConfigurationError(f"Invalid profile '{name}': {e}") from e

    return DatabaseConfig(profiles=profiles)


def load_clone_job(job_path: Path) -> CloneJob:
    """Load a clone job from a TOML file.

    Example file::

        source = "prod"
        target = "backup"

        [clone]
        source_schema = "dbo"
        target_schema = "archive"
        tables = ["orders", "customers"]
        expand_referenced = true
        create_missing_schemas = true

    Raises:
        FileNotFoundError: If the job file doesn't exist
        InvalidConfigurationError: If the file doesn't match ``CloneJob``
    """
    if not job_path.exists():
        raise FileNotFoundError(f"Clone job not found: {job_path}")

    with open(job_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise InvalidConfigurationError(f"Invalid TOML in {job_path.name}: {e}") from e

    try:
        return CloneJob(**data)
    except ValidationError as e:
        raise InvalidConfigurationError(f"Invalid clone job {job_path.name}: {e}") from e
