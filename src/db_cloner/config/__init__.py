"""Configuration management: profiles, clone jobs, and TOML loading.

Usage:
    >>> from db_cloner.config import load_db_config, load_clone_job, CloneConfiguration
"""

from db_cloner.config.loader import load_clone_job, load_db_config
from db_cloner.config.models import (
    CloneConfiguration,
    CloneJob,
    DatabaseConfig,
    DatabaseProfile,
)

__all__ = [
    "load_db_config",
    "load_clone_job",
    "DatabaseConfig",
    "DatabaseProfile",
    "CloneConfiguration",
    "CloneJob",
]
