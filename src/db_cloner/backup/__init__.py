"""Snapshot backup and restore of tables as SQL script directories.

Usage:
    from db_cloner.backup import backup_to_directory, restore_from_directory
    from db_cloner.backup import validate_backup, SnapshotManifest
"""

from db_cloner.backup.backup_restore import (
    backup_to_directory,
    read_manifest,
    restore_from_directory,
    validate_backup,
)
from db_cloner.backup.models import SnapshotEntry, SnapshotManifest

__all__ = [
    "backup_to_directory",
    "read_manifest",
    "restore_from_directory",
    "validate_backup",
    "SnapshotEntry",
    "SnapshotManifest",
]
