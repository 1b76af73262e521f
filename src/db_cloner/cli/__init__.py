"""CLI module for cloning, backing up and inspecting tables.

Usage:
    DB_PROFILE=prod db-cloner tables --schema dbo
    db-cloner profiles
    db-cloner -p prod connect
    db-cloner resolve dbo.order_lines --direction ascending
    db-cloner clone job.toml --confirm
    db-cloner clone --from prod --to backup --tables dbo.orders --referenced --confirm
    db-cloner drop dbo.orders_old
    db-cloner truncate dbo.orders --referenced
    db-cloner backup dbo.order_lines --referenced --output backups/lines
    db-cloner restore backups/lines --target-schema archive --confirm

Commands:
    profiles  - List available profiles
    connect   - Check that a profile's database is reachable
    tables    - List the tables of a schema in dependency order
    resolve   - Show the tables related to a table through foreign keys
    clone     - Clone tables between profiles or schemas
    drop      - Drop a table
    truncate  - Empty a table
    backup    - Script tables into a snapshot directory
    restore   - Restore a snapshot directory
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from db_cloner.adapters import DatabaseClient
from db_cloner.backup import (
    backup_to_directory,
    read_manifest,
    restore_from_directory,
    validate_backup,
)
from db_cloner.cloner import DatabaseCloner
from db_cloner.config import CloneConfiguration, load_clone_job, load_db_config
from db_cloner.errors import CloneError
from db_cloner.factory import ProfileNotFoundError, get_active_profile_name, get_adapter
from db_cloner.logging_config import configure_logging
from db_cloner.manager import DatabaseManager
from db_cloner.schema.models import DependencyDirection, TableIdentity

console = Console()

# Errors reported as a red message and exit code 1
_EXPECTED_ERRORS = (CloneError, ProfileNotFoundError, FileNotFoundError, ValueError)


# ============================================================================
# Helpers
# ============================================================================


def _profile_name(args: argparse.Namespace) -> str:
    """Explicit ``--profile``, else the ``{env_prefix}DB_PROFILE`` variable."""
    profile = getattr(args, "profile", None)
    if profile:
        return profile
    return get_active_profile_name(getattr(args, "env_prefix", ""))


async def _parse_tables(
    manager: DatabaseManager, names: list[str]
) -> list[TableIdentity]:
    """Parse table names, filling in the connection's default schema."""
    default_schema = None
    if any("." not in name for name in names):
        default_schema = await manager.default_schema()
    return [TableIdentity.parse(name, default_schema) for name in names]


def _print_error(e: Exception) -> None:
    console.print(f"[red]Error: {e}[/red]")


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 if the database can't be reached.
    """
    profile_name = _profile_name(args)
    console.print("Connecting to database...", style="dim")

    adapter = get_adapter(profile_name)
    try:
        await adapter.test_connection()
        manager = DatabaseManager(adapter)
        default_schema = await manager.default_schema()
        schemas = await manager.list_schemas_with_tables()
    except Exception as e:
        console.print()
        console.print(f"[bold red]x[/bold red] Connection failed: {e}")
        return 1
    finally:
        await adapter.close()

    console.print()
    console.print(
        f"[bold green]v[/bold green] Connected to profile: "
        f"[bold cyan]{profile_name}[/bold cyan]"
    )
    console.print(f"  Default schema: [cyan]{default_schema}[/cyan]")
    for schema_name, tables in schemas.items():
        console.print(f"  {schema_name}: {len(tables)} tables")
    return 0


async def _async_tables(args: argparse.Namespace) -> int:
    """Async implementation for tables command.

    Returns:
        0 on success, 1 on failure.
    """
    adapter = get_adapter(_profile_name(args))
    try:
        manager = DatabaseManager(adapter)
        schema_name = args.schema or await manager.default_schema()
        tables = await manager.list_tables(schema_name, sort_on_dependency=not args.no_sort)
    finally:
        await adapter.close()

    table = Table(
        title=f"Tables in {schema_name}", show_header=True, header_style="bold"
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Table")
    table.add_column("Columns", justify="right")
    table.add_column("References", style="dim")

    for index, definition in enumerate(tables, start=1):
        table.add_row(
            str(index),
            str(definition.identity),
            str(len(definition.columns)),
            ", ".join(str(t) for t in definition.referenced_tables()) or "-",
        )

    console.print(table)
    return 0


async def _async_resolve(args: argparse.Namespace) -> int:
    """Async implementation for resolve command.

    Returns:
        0 on success, 1 if a table doesn't exist.
    """
    direction = DependencyDirection(args.direction)
    adapter = get_adapter(_profile_name(args))
    try:
        manager = DatabaseManager(adapter)
        for requested in await _parse_tables(manager, args.tables):
            found = await manager.find_table(requested)
            if found is None:
                console.print(f"[red]Error: Table {requested} doesn't exist[/red]")
                return 1

            scope = found.schema if args.scoped else None
            related = await manager.list_tables_referenced_by(found, direction, scope)

            console.print()
            console.print(
                f"[bold]{found}[/bold] [dim]({direction.value}"
                f"{', scoped to ' + scope if scope else ''})[/dim]"
            )
            for index, identity in enumerate(related, start=1):
                style = "bold cyan" if identity == found else ""
                name = f"[{style}]{identity}[/{style}]" if style else str(identity)
                console.print(f"  {index}. {name}")
    finally:
        await adapter.close()

    return 0


async def _async_clone(args: argparse.Namespace) -> int:
    """Async implementation for clone command.

    Reads either a job file or the ``--from``/``--to``/``--tables`` flags.
    Without ``--confirm`` only the plan is printed.

    Returns:
        0 on success, 1 on failure.
    """
    if args.job:
        job = load_clone_job(Path(args.job))
        source_profile, target_profile, config = job.source, job.target, job.clone
    else:
        if not args.tables:
            console.print("[red]Error: Pass a job file or --tables[/red]")
            return 1
        source_profile = args.source or _profile_name(args)
        target_profile = args.target
        config = CloneConfiguration(
            source_schema=args.source_schema,
            target_schema=args.target_schema,
            tables=[t.strip() for t in args.tables.split(",") if t.strip()],
            expand_referenced=args.referenced,
            create_missing_schemas=args.create_schemas,
            skip_shared_tables=args.skip_shared,
        )

    same_connection = target_profile is None or target_profile == source_profile
    source_adapter = get_adapter(source_profile)
    target_adapter: DatabaseClient = (
        source_adapter if same_connection else get_adapter(target_profile)
    )
    try:
        source = DatabaseManager(source_adapter)
        target = source if same_connection else DatabaseManager(target_adapter)
        cloner = DatabaseCloner(source, target)

        tables = await cloner.plan(config)

        console.print(f"  Source: [bold]{source_profile}[/bold]")
        console.print(f"  Target: [bold cyan]{target_profile or source_profile}[/bold cyan]")
        console.print()

        plan_table = Table(title="Clone Plan", show_header=True, header_style="bold")
        plan_table.add_column("#", justify="right", style="dim")
        plan_table.add_column("Source")
        plan_table.add_column("Target")
        plan_table.add_column("Action")
        for index, table in enumerate(tables, start=1):
            shared = cloner.is_shared(table, config)
            plan_table.add_row(
                str(index),
                str(table),
                str(cloner.target_identity(table, config)),
                "[yellow]keep (shared)[/yellow]" if shared else "[green]drop + copy[/green]",
            )
        console.print(plan_table)

        if not args.confirm:
            console.print()
            console.print(
                "[dim]To actually clone, add[/dim] [cyan]--confirm[/cyan] "
                "[dim]flag.[/dim]"
            )
            return 0

        console.print()
        console.print("Cloning tables...", style="dim")
        result = await cloner.clone(config)
    finally:
        await source_adapter.close()
        if target_adapter is not source_adapter:
            await target_adapter.close()

    for schema_name in result.created_schemas:
        console.print(f"  Created schema [cyan]{schema_name}[/cyan]")
    console.print(
        f"[bold green]v[/bold green] Clone complete: "
        f"{len(result.copied)} copied, {len(result.skipped)} kept."
    )
    return 0


async def _async_drop(args: argparse.Namespace) -> int:
    """Async implementation for drop command.

    Returns:
        0 on success, 1 on failure.
    """
    adapter = get_adapter(_profile_name(args))
    try:
        manager = DatabaseManager(adapter)
        (table,) = await _parse_tables(manager, [args.table])
        await manager.drop_table(table, check_referenced=not args.force)
    finally:
        await adapter.close()

    console.print(f"[bold green]v[/bold green] Dropped {table}")
    return 0


async def _async_truncate(args: argparse.Namespace) -> int:
    """Async implementation for truncate command.

    Returns:
        0 on success, 1 on failure.
    """
    adapter = get_adapter(_profile_name(args))
    try:
        manager = DatabaseManager(adapter)
        (table,) = await _parse_tables(manager, [args.table])
        await manager.truncate_table(table, truncate_referenced=args.referenced)
    finally:
        await adapter.close()

    console.print(f"[bold green]v[/bold green] Truncated {table}")
    return 0


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 on success, 1 on failure.
    """
    adapter = get_adapter(_profile_name(args))
    try:
        manager = DatabaseManager(adapter)
        tables = await _parse_tables(manager, args.tables)
        console.print("Backing up tables...", style="dim")
        path = await backup_to_directory(
            manager, tables, output_dir=args.output, expand_referenced=args.referenced
        )
    finally:
        await adapter.close()

    manifest, _ = read_manifest(path)
    console.print(
        f"[bold green]v[/bold green] Backed up {len(manifest.tables)} tables to "
        f"[cyan]{path}[/cyan]"
    )
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Validates the snapshot first; without ``--confirm`` only the tables to
    restore are printed.

    Returns:
        0 on success, 1 on an invalid snapshot or failure.
    """
    directory = Path(args.directory)
    report = validate_backup(directory)
    for warning in report["warnings"]:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    if report["errors"]:
        console.print("[bold red]x[/bold red] Invalid backup")
        for error in report["errors"]:
            console.print(f"  [red]{error}[/red]")
        return 1

    manifest, _ = read_manifest(directory)
    restore_table = Table(title="Restore Plan", show_header=True, header_style="bold")
    restore_table.add_column("#", justify="right", style="dim")
    restore_table.add_column("Table")
    restore_table.add_column("Script", style="dim")
    for index, entry in enumerate(manifest.tables, start=1):
        target = entry.identity
        if args.target_schema:
            target = target.with_schema(args.target_schema)
        restore_table.add_row(str(index), str(target), entry.file)
    console.print(restore_table)

    if not args.confirm:
        console.print()
        console.print(
            "[dim]To actually restore, add[/dim] [cyan]--confirm[/cyan] "
            "[dim]flag.[/dim]"
        )
        return 0

    adapter = get_adapter(_profile_name(args))
    try:
        summary = await restore_from_directory(
            DatabaseManager(adapter), directory, target_schema=args.target_schema
        )
    finally:
        await adapter.close()

    console.print(
        f"[bold green]v[/bold green] Restored {len(summary['restored'])} tables."
    )
    return 0


def _run(coro_fn, args: argparse.Namespace) -> int:
    """Run an async command, reporting expected errors in red."""
    try:
        return asyncio.run(coro_fn(args))
    except _EXPECTED_ERRORS as e:
        _print_error(e)
        return 1


# ============================================================================
# Sync command wrappers (cmd_profiles reads local files only)
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config()
    except (FileNotFoundError, CloneError) as e:
        _print_error(e)
        return 1

    try:
        current = get_active_profile_name(getattr(args, "env_prefix", ""))
    except ProfileNotFoundError:
        current = None

    table = Table(
        title="Database Profiles", show_header=True, header_style="bold"
    )
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print(f"\n[bold green]*[/bold green] = current profile")

    return 0


def cmd_connect(args: argparse.Namespace) -> int:
    """Check connectivity. Wraps the async implementation."""
    return _run(_async_connect, args)


def cmd_tables(args: argparse.Namespace) -> int:
    """List the tables of a schema. Wraps the async implementation."""
    return _run(_async_tables, args)


def cmd_resolve(args: argparse.Namespace) -> int:
    """Show related tables. Wraps the async implementation."""
    return _run(_async_resolve, args)


def cmd_clone(args: argparse.Namespace) -> int:
    """Clone tables. Wraps the async implementation."""
    return _run(_async_clone, args)


def cmd_drop(args: argparse.Namespace) -> int:
    """Drop a table. Wraps the async implementation."""
    return _run(_async_drop, args)


def cmd_truncate(args: argparse.Namespace) -> int:
    """Truncate a table. Wraps the async implementation."""
    return _run(_async_truncate, args)


def cmd_backup(args: argparse.Namespace) -> int:
    """Back up tables. Wraps the async implementation."""
    return _run(_async_backup, args)


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a snapshot. Wraps the async implementation."""
    return _run(_async_restore, args)


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every subcommand."""
    parser = argparse.ArgumentParser(
        prog="db-cloner",
        description="Clone, back up and inspect relational tables",
    )

    # Global options
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--profile",
        "-p",
        help="Profile from db.toml (default: the DB_PROFILE variable)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log every catalog read and statement",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # connect command
    p_connect = subparsers.add_parser(
        "connect",
        help="Check that a profile's database is reachable",
    )
    p_connect.set_defaults(func=cmd_connect)

    # tables command
    p_tables = subparsers.add_parser(
        "tables",
        help="List the tables of a schema in dependency order",
    )
    p_tables.add_argument(
        "--schema",
        "-s",
        help="Schema to list (default: the connection's default schema)",
    )
    p_tables.add_argument(
        "--no-sort",
        action="store_true",
        help="Keep catalog order instead of dependency order",
    )
    p_tables.set_defaults(func=cmd_tables)

    # resolve command
    p_resolve = subparsers.add_parser(
        "resolve",
        help="Show the tables related to a table through foreign keys",
    )
    p_resolve.add_argument("tables", nargs="+", help="Tables as 'table' or 'schema.table'")
    p_resolve.add_argument(
        "--direction",
        "-d",
        choices=["ascending", "descending", "both"],
        default="ascending",
        help="ascending: tables it references; descending: tables referencing it",
    )
    p_resolve.add_argument(
        "--scoped",
        action="store_true",
        help="Stay within the table's own schema",
    )
    p_resolve.set_defaults(func=cmd_resolve)

    # clone command
    p_clone = subparsers.add_parser(
        "clone",
        help="Clone tables between profiles or schemas",
    )
    p_clone.add_argument("job", nargs="?", help="Clone job TOML file")
    p_clone.add_argument(
        "--from",
        "-f",
        dest="source",
        help="Source profile (default: the active profile)",
    )
    p_clone.add_argument(
        "--to",
        "-t",
        dest="target",
        help="Target profile (default: clone within the source)",
    )
    p_clone.add_argument(
        "--tables",
        help="Comma-separated list of tables (e.g., dbo.orders,dbo.customers)",
    )
    p_clone.add_argument("--source-schema", help="Schema to clone from")
    p_clone.add_argument("--target-schema", help="Schema to clone into")
    p_clone.add_argument(
        "--referenced",
        action="store_true",
        help="Also clone every table the given tables reference",
    )
    p_clone.add_argument(
        "--create-schemas",
        action="store_true",
        help="Create missing schemas at the target",
    )
    p_clone.add_argument(
        "--skip-shared",
        action="store_true",
        help="Leave tables outside the source schema alone (same connection only)",
    )
    p_clone.add_argument(
        "--confirm",
        action="store_true",
        help="Actually perform the clone (otherwise only the plan is shown)",
    )
    p_clone.set_defaults(func=cmd_clone)

    # drop command
    p_drop = subparsers.add_parser(
        "drop",
        help="Drop a table",
    )
    p_drop.add_argument("table", help="Table as 'table' or 'schema.table'")
    p_drop.add_argument(
        "--force",
        action="store_true",
        help="Drop even if other tables reference it (the backend may still refuse)",
    )
    p_drop.set_defaults(func=cmd_drop)

    # truncate command
    p_truncate = subparsers.add_parser(
        "truncate",
        help="Empty a table",
    )
    p_truncate.add_argument("table", help="Table as 'table' or 'schema.table'")
    p_truncate.add_argument(
        "--referenced",
        action="store_true",
        help="Also truncate every table referencing it",
    )
    p_truncate.set_defaults(func=cmd_truncate)

    # backup command
    p_backup = subparsers.add_parser(
        "backup",
        help="Script tables into a snapshot directory",
    )
    p_backup.add_argument("tables", nargs="+", help="Tables as 'table' or 'schema.table'")
    p_backup.add_argument(
        "--output",
        "-o",
        help="Snapshot directory (default: ./backups/backup-<timestamp>/)",
    )
    p_backup.add_argument(
        "--referenced",
        action="store_true",
        help="Also back up every table the given tables reference",
    )
    p_backup.set_defaults(func=cmd_backup)

    # restore command
    p_restore = subparsers.add_parser(
        "restore",
        help="Restore a snapshot directory",
    )
    p_restore.add_argument("directory", help="Snapshot directory")
    p_restore.add_argument("--target-schema", help="Restore every table into this schema")
    p_restore.add_argument(
        "--confirm",
        action="store_true",
        help="Actually perform the restore (otherwise only the plan is shown)",
    )
    p_restore.set_defaults(func=cmd_restore)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
