"""Operator CLI for the database administration server.

Runs the tool server and exposes the backup workflow for use outside a
tool client.

Usage:
    db-admin serve
    db-admin serve --transport http --port 8000
    db-admin profiles
    DB_ADMIN_PROFILE=local db-admin tables
    db-admin verify
    db-admin backup full
    db-admin backup table authors --data-only
    db-admin backups --type table
    db-admin validate backup-table-authors-20260101-120000-000000.sql.gz
    db-admin restore backup-full-20260101-120000-000000.sql.gz --on-conflict update
    db-admin delete-backup backup-full-20260101-120000-000000.sql.gz --yes
    db-admin cleanup --retention-days 14

Commands:
    serve          - Run the tool server (stdio or http)
    profiles       - List connection profiles from db.toml
    tables         - List whitelisted tables and their allowed operations
    verify         - Compare the whitelist with the live database
    backup         - Create a full, table or incremental backup
    backups        - List backups
    validate       - Validate a backup's checksum and contents
    restore        - Restore a backup (full, or one table with --table)
    delete-backup  - Delete a backup and its manifest
    cleanup        - Delete backups older than the retention period
"""

import argparse
import asyncio
import sys

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from db_admin.backup.models import BackupType
from db_admin.backup.storage import StorageManager
from db_admin.backup.validation import validate_artifact
from db_admin.config import Settings, get_settings, load_db_config
from db_admin.errors import AdminError, classify_db_error
from db_admin.factory import AdminServices, ProfileNotFoundError, build_services

console = Console()


def _settings(args: argparse.Namespace) -> Settings:
    settings = get_settings()
    profile = getattr(args, "profile", None)
    if profile:
        settings = settings.model_copy(update={"db_profile": profile})
    return settings


def _storage(args: argparse.Namespace) -> StorageManager:
    return StorageManager(_settings(args).backup_dir)


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def _print_error(error: AdminError) -> None:
    console.print(f"[bold red]x[/bold red] {error.message} [dim]({error.code})[/dim]")
    detail = (error.data or {}).get("detail")
    if detail:
        console.print(f"  [dim]{detail}[/dim]")
    for line in (error.data or {}).get("errors", []):
        console.print(f"  - {line}")


async def _with_services(args: argparse.Namespace, command) -> int:
    """Build services, run ``command(services)``, always dispose of the pool."""
    try:
        services = build_services(_settings(args))
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        return await command(services)
    except AdminError as e:
        _print_error(e)
        return 1
    except SQLAlchemyError as e:
        _print_error(classify_db_error(e))
        return 1
    finally:
        await services.close()


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_tables(args: argparse.Namespace) -> int:
    """List whitelisted tables present in the database.

    Returns:
        0 on success, 1 on failure.
    """

    async def command(services: AdminServices) -> int:
        live = {t.name: t for t in await services.introspector.list_tables()}

        table = Table(title="Whitelisted Tables", show_header=True, header_style="bold")
        table.add_column("Table")
        table.add_column("Rows", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Read")
        table.add_column("Write")
        table.add_column("Delete")
        table.add_column("Soft delete")

        def mark(flag: bool) -> str:
            return "[green]v[/green]" if flag else "[dim]-[/dim]"

        for name in services.registry.tables:
            entry = services.registry.get(name)
            allowed = services.access.get_allowed_operations(name)
            info = live.get(name)
            table.add_row(
                name if info else f"[yellow]{name}[/yellow] [dim](missing)[/dim]",
                str(info.estimated_rows) if info and info.estimated_rows is not None else "",
                (info.size or "") if info else "",
                mark(allowed.can_read),
                mark(allowed.can_write),
                mark(allowed.can_delete),
                mark(entry.soft_delete),
            )

        console.print(table)
        return 0

    return await _with_services(args, command)


async def _async_verify(args: argparse.Namespace) -> int:
    """Compare the whitelist with the live database.

    Returns:
        0 if every whitelisted table and column exists, 1 otherwise.
    """

    async def command(services: AdminServices) -> int:
        if not await services.adapter.health_check(services.settings.health_check_timeout):
            console.print("[bold red]x[/bold red] Database is not reachable")
            return 1

        report = await services.verify_whitelist()
        if report.valid:
            console.print("[bold green]v[/bold green] Whitelist matches database")
            if report.unlisted_tables:
                console.print(
                    f"  Unlisted tables: [dim]{', '.join(report.unlisted_tables)}[/dim]"
                )
            return 0

        console.print("[bold red]x[/bold red] Whitelist has drifted from the database")
        console.print(report.format_report())
        return 1

    return await _with_services(args, command)


async def _async_backup(args: argparse.Namespace) -> int:
    """Create a backup.

    Returns:
        0 on success, 1 on failure.
    """
    compress = False if args.no_compress else None

    async def command(services: AdminServices) -> int:
        manager = services.backups
        console.print(f"Creating {args.kind} backup...", style="dim")
        if args.kind == "full":
            manifest = await manager.backup_full(compress=compress, include_schema=not args.data_only)
        elif args.kind == "table":
            manifest = await manager.backup_table(
                args.table, data_only=args.data_only, schema_only=args.schema_only, compress=compress
            )
        else:
            manifest = await manager.backup_incremental(base_backup=args.base, compress=compress)

        console.print(f"[bold green]v[/bold green] Backup created: [bold cyan]{manifest.artifact}[/bold cyan]")
        console.print(
            f"  {len(manifest.tables)} table(s), {manifest.total_record_count} record(s), "
            f"{_format_size(manifest.size)}, {manifest.duration_ms} ms"
        )
        console.print(f"  [dim]sha256 {manifest.checksum}[/dim]")
        return 0

    return await _with_services(args, command)


async def _async_restore(args: argparse.Namespace) -> int:
    """Restore a backup after confirmation.

    Returns:
        0 on success, 1 on failure or cancellation.
    """
    if not args.yes:
        target = f"table '{args.table}'" if args.table else "every table in the backup"
        console.print(f"[yellow]This will restore {target} from {args.file}[/yellow]")
        console.print(f"  onConflict: {args.on_conflict}")
        if args.drop_existing:
            console.print("  [bold red]Existing tables will be dropped first[/bold red]")
        if not Confirm.ask("Continue?", default=False):
            console.print("Cancelled.")
            return 1

    async def command(services: AdminServices) -> int:
        manager = services.backups
        if args.table:
            result = await manager.restore_table(
                args.file, args.table, on_conflict=args.on_conflict, force=args.force
            )
        else:
            result = await manager.restore_full(
                args.file,
                drop_existing=args.drop_existing,
                on_conflict=args.on_conflict,
                force=args.force,
            )

        console.print(
            f"[bold green]v[/bold green] Restored {len(result.restored_tables)} table(s) "
            f"from [bold cyan]{result.backup_file}[/bold cyan] in {result.duration_ms} ms"
        )
        if result.warnings:
            console.print(f"\n[yellow]Warnings ({len(result.warnings)}):[/yellow]")
            for warning in result.warnings[:20]:
                console.print(f"  - {warning}")
        return 0

    return await _with_services(args, command)


# ============================================================================
# Command wrappers
# ============================================================================


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the tool server until interrupted.

    Args:
        args: Parsed CLI arguments with transport, host and port.

    Returns:
        0 on clean shutdown, 1 if the server cannot be configured.
    """
    from db_admin.server import configure_logging, run

    settings = _settings(args)
    configure_logging(settings.log_level)
    try:
        services = build_services(settings)
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    run(services, transport=args.transport, host=args.host, port=args.port)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    settings = _settings(args)
    try:
        config = load_db_config(settings.db_config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = settings.db_profile

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        table.add_row(
            marker,
            f"[bold cyan]{name}[/bold cyan]" if name == current else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)
    if current:
        console.print("\n[bold green]*[/bold green] = selected profile")
    return 0


def cmd_tables(args: argparse.Namespace) -> int:
    return asyncio.run(_async_tables(args))


def cmd_verify(args: argparse.Namespace) -> int:
    return asyncio.run(_async_verify(args))


def cmd_backup(args: argparse.Namespace) -> int:
    return asyncio.run(_async_backup(args))


def cmd_restore(args: argparse.Namespace) -> int:
    return asyncio.run(_async_restore(args))


def cmd_backups(args: argparse.Namespace) -> int:
    """List backups in the backup directory. No database calls.

    Returns:
        0 always (informational command).
    """
    kind = BackupType(args.type) if args.type else None
    backups = _storage(args).list_backups(kind, args.sort_by, args.limit)
    if not backups:
        console.print("[yellow]No backups found.[/yellow]")
        return 0

    table = Table(title="Backups", show_header=True, header_style="bold")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Created (UTC)")
    table.add_column("Size", justify="right")
    table.add_column("Records", justify="right")
    table.add_column("Manifest")

    for info in backups:
        table.add_row(
            info.file,
            info.type.value,
            info.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            _format_size(info.size),
            "" if info.record_count is None else str(info.record_count),
            "[green]v[/green]" if info.has_manifest else "[red]x[/red]",
        )

    console.print(table)
    console.print(f"\n{len(backups)} backup(s), {_format_size(sum(b.size for b in backups))}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate one backup. No database calls.

    Returns:
        0 if valid, 1 otherwise.
    """
    try:
        report = validate_artifact(_storage(args), args.file)
    except AdminError as e:
        _print_error(e)
        return 1

    if report.valid:
        console.print(f"[bold green]v[/bold green] {report.file} is valid")
    else:
        console.print(f"[bold red]x[/bold red] {report.file} is invalid")
        for error in report.errors:
            console.print(f"  [red]- {error}[/red]")
    for warning in report.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")
    return 0 if report.valid else 1


def cmd_delete_backup(args: argparse.Namespace) -> int:
    """Delete a backup and its manifest. Requires ``--yes``.

    Returns:
        0 on success, 1 on failure.
    """
    if not args.yes:
        console.print("[yellow]Refusing to delete without --yes[/yellow]")
        return 1
    try:
        result = _storage(args).delete(args.file)
    except AdminError as e:
        _print_error(e)
        return 1

    console.print(
        f"[bold green]v[/bold green] Deleted {', '.join(result['deleted_files'])} "
        f"({_format_size(result['freed_space'])} freed)"
    )
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    """Delete backups older than the retention period.

    Returns:
        0 on success, 1 on invalid retention.
    """
    settings = _settings(args)
    days = args.retention_days or settings.backup_retention_days
    if days < 1:
        console.print("[red]Error: retention days must be a positive integer[/red]")
        return 1

    result = StorageManager(settings.backup_dir).cleanup(days)
    if not result["deleted_count"]:
        console.print(f"No backups older than {days} days.")
        return 0

    console.print(
        f"[bold green]v[/bold green] Deleted {result['deleted_count']} backup(s) older than "
        f"{days} days ({_format_size(result['freed_space'])} freed)"
    )
    for name in result["deleted_backups"]:
        console.print(f"  - {name}")
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-admin",
        description="Secure database administration server and backup toolkit",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Connection profile from db.toml (overrides DB_ADMIN_PROFILE)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    p_serve = subparsers.add_parser("serve", help="Run the tool server")
    p_serve.add_argument("--transport", choices=["stdio", "http"], default="stdio")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.set_defaults(func=cmd_serve)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    # tables command
    p_tables = subparsers.add_parser("tables", help="List whitelisted tables")
    p_tables.set_defaults(func=cmd_tables)

    # verify command
    p_verify = subparsers.add_parser("verify", help="Compare the whitelist with the live database")
    p_verify.set_defaults(func=cmd_verify)

    # backup command
    p_backup = subparsers.add_parser("backup", help="Create a backup")
    backup_kinds = p_backup.add_subparsers(dest="kind", required=True)

    p_full = backup_kinds.add_parser("full", help="Back up every whitelisted table")
    p_full.add_argument("--data-only", action="store_true", help="Skip schema definitions")

    p_table = backup_kinds.add_parser("table", help="Back up one table")
    p_table.add_argument("table")
    only = p_table.add_mutually_exclusive_group()
    only.add_argument("--data-only", action="store_true")
    only.add_argument("--schema-only", action="store_true")

    p_incremental = backup_kinds.add_parser(
        "incremental", help="Data-only backup of every whitelisted table"
    )
    p_incremental.add_argument("--base", default=None, help="Base backup file to depend on")

    for p in (p_full, p_table, p_incremental):
        p.add_argument("--no-compress", action="store_true", help="Write plain SQL")
        p.set_defaults(func=cmd_backup)

    # backups command
    p_backups = subparsers.add_parser("backups", help="List backups")
    p_backups.add_argument(
        "--type", choices=["full", "table", "incremental", "export"], default=None
    )
    p_backups.add_argument("--sort-by", choices=["date", "size", "name"], default="date")
    p_backups.add_argument("--limit", type=int, default=None)
    p_backups.set_defaults(func=cmd_backups)

    # validate command
    p_validate = subparsers.add_parser("validate", help="Validate a backup")
    p_validate.add_argument("file", help="Backup file name in the backup directory")
    p_validate.set_defaults(func=cmd_validate)

    # restore command
    p_restore = subparsers.add_parser("restore", help="Restore a backup")
    p_restore.add_argument("file", help="Backup file name in the backup directory")
    p_restore.add_argument("--table", default=None, help="Restore one table from a table backup")
    p_restore.add_argument(
        "--on-conflict", choices=["error", "skip", "update"], default="error"
    )
    p_restore.add_argument(
        "--drop-existing", action="store_true", help="Drop the backed-up tables first"
    )
    p_restore.add_argument(
        "--force", action="store_true", help="Restore even if validation fails"
    )
    p_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    p_restore.set_defaults(func=cmd_restore)

    # delete-backup command
    p_delete = subparsers.add_parser("delete-backup", help="Delete a backup and its manifest")
    p_delete.add_argument("file")
    p_delete.add_argument("--yes", "-y", action="store_true", help="Confirm deletion")
    p_delete.set_defaults(func=cmd_delete_backup)

    # cleanup command
    p_cleanup = subparsers.add_parser("cleanup", help="Delete backups past retention")
    p_cleanup.add_argument("--retention-days", type=int, default=None)
    p_cleanup.set_defaults(func=cmd_cleanup)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
