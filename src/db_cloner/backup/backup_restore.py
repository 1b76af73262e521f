"""Snapshot backup to, and restore from, a directory of SQL scripts.

Each table is scripted the same way the cloner copies it: one
self-contained create-and-populate script.  Scripts are numbered in
dependency order so they can also be replayed by hand with ``psql``.

Usage:
    from db_cloner.backup.backup_restore import (
        backup_to_directory,
        restore_from_directory,
        validate_backup,
    )

    # Backup
    path = await backup_to_directory(
        manager, [TableIdentity("dbo", "order_lines")], expand_referenced=True
    )

    # Validate (sync -- local file reads only)
    report = validate_backup(path)

    # Restore into another schema
    summary = await restore_from_directory(manager, path, target_schema="archive")
"""

from datetime import datetime
from pathlib import Path
import json
import logging
from typing import Any

from pydantic import ValidationError

from db_cloner.backup.models import (
    MANIFEST_FILE,
    MANIFEST_VERSION,
    SnapshotEntry,
    SnapshotManifest,
)
from db_cloner.errors import (
    BackendFailureError,
    CloneError,
    InvalidConfigurationError,
)
from db_cloner.manager import MetadataProvider
from db_cloner.schema.models import DependencyDirection, TableDefinition, TableIdentity
from db_cloner.schema.resolver import DependencyResolver, order_tables
from db_cloner.schema.statements import rewrite_schema

logger = logging.getLogger(__name__)


def _script_name(index: int, table: TableIdentity) -> str:
    return f"{index:03d}_{table.schema}.{table.name}.sql"


async def backup_to_directory(
    provider: MetadataProvider,
    tables: list[TableIdentity],
    output_dir: str | Path | None = None,
    expand_referenced: bool = False,
) -> Path:
    """Script tables into a snapshot directory.

    Args:
        provider: Metadata provider of the database to back up.
        tables: Tables to back up.
        output_dir: Directory to write.  When ``None``, generates a
            timestamped directory under ``./backups/``.
        expand_referenced: Also back up every table the given tables
            reference, directly or transitively.

    Returns:
        Path of the snapshot directory.

    Raises:
        InvalidConfigurationError: If a table doesn't exist.

    Example:
        path = await backup_to_directory(
            manager,
            [TableIdentity("dbo", "orders")],
            output_dir="backups/orders",
        )
    """
    # Generate output directory if not provided
    if output_dir is None:
        timestamp = datetime.now().strftime("%Y-%m-%d-%H%M")
        output_dir = Path.cwd() / "backups" / f"backup-{timestamp}"
    output_path = Path(output_dir)

    identities = list(tables)
    if expand_referenced:
        graph = await DependencyResolver(provider).resolve_many(
            identities, DependencyDirection.ASCENDING
        )
        identities = list(graph)

    definitions: list[TableDefinition] = []
    for identity in identities:
        definition = await provider.describe_table(identity)
        if definition is None:
            raise InvalidConfigurationError(f"Table {identity} doesn't exist")
        definitions.append(definition)

    output_path.mkdir(parents=True, exist_ok=True)

    manifest = SnapshotManifest()
    for index, definition in enumerate(order_tables(definitions), start=1):
        identity = definition.identity
        script = await provider.build_clone_statement(definition)
        file_name = _script_name(index, identity)
        (output_path / file_name).write_text(script + "\n", encoding="utf-8")

        manifest.tables.append(SnapshotEntry(
            schema_name=identity.schema,
            table_name=identity.name,
            file=file_name,
        ))
        logger.info("backed up %s to %s", identity, file_name)

    (output_path / MANIFEST_FILE).write_text(
        manifest.model_dump_json(indent=2), encoding="utf-8"
    )
    return output_path


def read_manifest(directory: Path) -> tuple[SnapshotManifest | None, list[str]]:
    """Load ``manifest.json``; returns the manifest (or None) and any errors."""
    errors: list[str] = []
    manifest_path = directory / MANIFEST_FILE

    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        errors.append(f"Manifest not found: {manifest_path}")
        return None, errors
    except json.JSONDecodeError as e:
        errors.append(f"Invalid JSON: {e}")
        return None, errors

    try:
        return SnapshotManifest(**data), errors
    except (TypeError, ValidationError) as e:
        errors.append(f"Invalid manifest: {e}")
        return None, errors


def validate_backup(directory: str | Path) -> dict:
    """Validate a snapshot directory.

    Checks that ``manifest.json`` exists and parses, uses version
    ``"1.0"``, and that every script it lists is present.

    This function is **sync** -- it only reads local files with no
    database I/O.

    Args:
        directory: Snapshot directory.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]),
        and ``warnings`` (list[str]).

    Example:
        report = validate_backup("backups/backup-2026-01-15-0930")
        if report["errors"]:
            raise ValueError("Backup is invalid")
    """
    directory = Path(directory)
    warnings: list[str] = []

    if not directory.is_dir():
        return {
            "valid": False,
            "errors": [f"Backup directory not found: {directory}"],
            "warnings": warnings,
        }

    manifest, errors = read_manifest(directory)
    if manifest is None:
        return {"valid": False, "errors": errors, "warnings": warnings}

    if manifest.version != MANIFEST_VERSION:
        errors.append(
            f"Unsupported version: {manifest.version} (expected {MANIFEST_VERSION})"
        )

    if not manifest.tables:
        warnings.append("Backup contains no tables")

    listed = set()
    for entry in manifest.tables:
        listed.add(entry.file)
        if not (directory / entry.file).is_file():
            errors.append(f"Missing script for {entry.identity}: {entry.file}")

    for script in sorted(directory.glob("*.sql")):
        if script.name not in listed:
            warnings.append(f"Script not listed in manifest: {script.name}")

    return {"valid": not errors, "errors": errors, "warnings": warnings}


async def restore_from_directory(
    provider: MetadataProvider,
    directory: str | Path,
    target_schema: str | None = None,
    drop_existing: bool = True,
) -> dict[str, Any]:
    """Restore a snapshot directory.

    Drops the listed tables in reverse order, then replays the scripts in
    manifest order.  Nothing is rolled back on failure.

    Args:
        provider: Metadata provider of the database to restore into.
        directory: Snapshot directory.
        target_schema: Restore every table into this schema instead of
            the schema it was backed up from.
        drop_existing: Drop the tables before recreating them.

    Returns:
        Summary dict with ``dropped`` and ``restored`` lists of
        TableIdentity, in the order the steps ran.

    Raises:
        InvalidConfigurationError: If the snapshot fails validation.
        BackendFailureError: If a drop or script fails.

    Example:
        summary = await restore_from_directory(
            manager, "backups/backup-2026-01-15-0930", target_schema="archive"
        )
    """
    directory = Path(directory)

    validation = validate_backup(directory)
    if validation["errors"]:
        raise InvalidConfigurationError(
            f"Invalid backup: {'; '.join(validation['errors'])}"
        )
    manifest, _ = read_manifest(directory)

    def target_of(entry: SnapshotEntry) -> TableIdentity:
        if target_schema is None:
            return entry.identity
        return entry.identity.with_schema(target_schema)

    summary: dict[str, Any] = {"dropped": [], "restored": []}

    if drop_existing:
        for entry in reversed(manifest.tables):
            target = target_of(entry)
            try:
                await provider.drop_table(target)
            except CloneError:
                raise
            except Exception as e:
                raise BackendFailureError(target, "drop", e) from e
            summary["dropped"].append(target)

    # References between snapshot tables move along with them
    snapshot_schemas: list[str] = []
    for entry in manifest.tables:
        if not any(s.casefold() == entry.schema_name.casefold() for s in snapshot_schemas):
            snapshot_schemas.append(entry.schema_name)

    for entry in manifest.tables:
        target = target_of(entry)
        script = (directory / entry.file).read_text(encoding="utf-8")
        if target_schema is not None:
            for schema_name in snapshot_schemas:
                script = rewrite_schema(script, schema_name, target_schema)

        logger.info("restoring %s from %s", target, entry.file)
        try:
            await provider.execute_statement(script)
        except CloneError:
            raise
        except Exception as e:
            raise BackendFailureError(target, "copy", e) from e
        summary["restored"].append(target)

    return summary
