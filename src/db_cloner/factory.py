"""Database client factory.

Resolves a profile name from db.toml into a connection URL and an
``AsyncPostgresAdapter``.  The active profile comes from the
``{env_prefix}DB_PROFILE`` environment variable unless one is named
explicitly.
"""

import os
from pathlib import Path
from urllib.parse import quote

from db_cloner.adapters import AsyncPostgresAdapter, DatabaseClient
from db_cloner.config import DatabaseConfig, DatabaseProfile, load_db_config


# ============================================================================
# Profile Resolution
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured or the name is unknown."""

    pass


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the environment.

    Args:
        env_prefix: Prefix of the environment variable, e.g. ``"MC_"``
            reads ``MC_DB_PROFILE``.

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If the variable is unset or empty
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Set {env_var}=<name> or pass --profile."
    )


def get_profile(
    profile_name: str,
    config: DatabaseConfig | None = None,
    config_path: Path | None = None,
) -> DatabaseProfile:
    """Look up a profile by name.

    Args:
        profile_name: Profile name from db.toml
        config: Already loaded configuration (loaded from ``config_path``
            when omitted)
        config_path: Path to db.toml

    Raises:
        ProfileNotFoundError: If the profile isn't in db.toml
    """
    if config is None:
        config = load_db_config(config_path)

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {available}"
        )
    return config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted

    Example:
        >>> profile = DatabaseProfile(
        ...     url="postgresql://app:[YOUR-PASSWORD]@db:5432/shop",
        ...     db_password="p@ss",
        ... )
        >>> resolve_url(profile)
        'postgresql://app:p%40ss@db:5432/shop'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Database Adapter Factory
# ============================================================================


def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
    config_path: Path | None = None,
) -> DatabaseClient:
    """Create an adapter for a profile.

    Args:
        profile_name: Profile name from db.toml.  If None, uses the
            ``{env_prefix}DB_PROFILE`` environment variable.
        env_prefix: Prefix of the profile environment variable
        config: Already loaded configuration
        config_path: Path to db.toml

    Returns:
        A new ``AsyncPostgresAdapter``; the caller closes it.

    Raises:
        ProfileNotFoundError: If no profile is configured or found
        ValueError: If the profile's provider isn't supported

    Example:
        >>> adapter = get_adapter("prod")
        >>> rows = await adapter.select("dbo.orders", "*")
        >>> await adapter.close()
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)

    profile = get_profile(profile_name, config, config_path)
    if profile.provider != "postgres":
        raise ValueError(
            f"Profile '{profile_name}' uses unsupported provider '{profile.provider}'"
        )

    return AsyncPostgresAdapter(database_url=resolve_url(profile))
