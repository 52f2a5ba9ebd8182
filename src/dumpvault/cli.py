#!/usr/bin/env python3
"""Command Line Interface for dumpvault"""

import asyncio
import sys
from typing import Any, cast

import click
from rich.console import Console
from rich.table import Table

from .core.config_manager import ConfigManager
from .core.errors import NotFoundError
from .core.models import Cadence
from .core.service import BackupService, setup_logging
from .utils.formatting import format_bytes
from .utils.notifications import BACKUP_PROGRESS

console = Console()

CADENCE_CHOICES = [cadence.value for cadence in Cadence]

# Lazy-initialized components (created on first access to avoid startup cost)
_components: dict[str, Any] = {}


def _get_config() -> ConfigManager:
    if "config" not in _components:
        _components["config"] = ConfigManager(_components.get("config_dir"))
    return cast("ConfigManager", _components["config"])


def _get_service() -> BackupService:
    if "service" not in _components:
        settings = _get_config().resolve()
        setup_logging(settings, console=_components.get("verbose", False))
        _components["service"] = BackupService(settings)
    return cast("BackupService", _components["service"])


def _print_progress(event: str, payload: dict[str, Any]) -> None:
    if event == BACKUP_PROGRESS:
        console.print(f"[dim]  ... {payload['filename']}: {payload['sizeText']}[/dim]")


@click.group()
@click.option("--config-dir", envvar="DUMPVAULT_CONFIG_DIR", help="Directory containing settings.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Also log to the console")
def cli(config_dir, verbose):
    """dumpvault - database backup and restore"""
    _components.clear()
    _components["config_dir"] = config_dir
    _components["verbose"] = verbose


@cli.command()
@click.option("--cadence", "-c", type=click.Choice(CADENCE_CHOICES), default="manual", show_default=True)
def backup(cadence):
    """Create a backup now"""
    service = _get_service()
    service.events.subscribe(_print_progress)
    console.print(f"[bold cyan]Creating {cadence} backup...[/bold cyan]")

    result = asyncio.run(service.create_backup(cadence))

    for diagnostic in result.diagnostics:
        console.print(f"[yellow]![/yellow] {diagnostic}")

    if result.success and result.metadata:
        meta = result.metadata
        verified = "verified" if meta.verified else "[yellow]not verified[/yellow]"
        console.print(f"[green]✓[/green] {meta.filename} ({format_bytes(meta.size)}, {verified})")
    else:
        console.print(f"[red]✗[/red] Backup failed: {result.error}")
        sys.exit(1)


@cli.command()
@click.argument("filename")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def restore(filename, yes):
    """Restore the database from a backup file"""
    if not yes:
        click.confirm(f"This will overwrite the current database with '{filename}'. Continue?", abort=True)

    console.print(f"[bold cyan]Restoring database from '{filename}'...[/bold cyan]")
    result = asyncio.run(_get_service().restore_backup(filename))

    for diagnostic in result.diagnostics:
        console.print(f"[yellow]![/yellow] {diagnostic}")

    if result.success:
        console.print(f"[green]✓[/green] Restored from {result.restored_from}")
        console.print(f"[dim]Safety backup: {result.safety_backup}[/dim]")
    else:
        console.print(f"[red]✗[/red] Restore failed: {result.error}")
        sys.exit(1)


@cli.command("list")
def list_backups():
    """List all available backups"""
    backups = _get_service().list_backups()

    if not backups:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(title="Backups", show_header=True, header_style="bold magenta")
    table.add_column("Filename", style="cyan")
    table.add_column("Cadence", style="white")
    table.add_column("Size", justify="right")
    table.add_column("Created", style="green")

    for backup in backups:
        table.add_row(
            backup.filename,
            backup.cadence.value,
            format_bytes(backup.size),
            backup.created.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@cli.command()
def stats():
    """Show backup statistics"""
    service = _get_service()
    summary = service.get_stats()

    console.print("[bold cyan]dumpvault - Status[/bold cyan]\n")
    console.print(f"  Backup directory: {service.settings.backup_dir}")
    console.print(f"  Total backups: {summary.total_backups} ({format_bytes(summary.total_size)})")
    if summary.newest:
        console.print(f"  Newest: {summary.newest:%Y-%m-%d %H:%M:%S}")
        console.print(f"  Oldest: {summary.oldest:%Y-%m-%d %H:%M:%S}")
    console.print()

    table = Table(title="By Cadence", show_header=True, header_style="bold magenta")
    table.add_column("Cadence", style="cyan")
    table.add_column("Backups", justify="right")
    table.add_column("Quota", justify="right")

    for cadence, count in summary.by_cadence.items():
        quota = service.settings.quota(cadence)
        table.add_row(cadence, str(count), str(quota) if quota is not None else "-")

    console.print(table)


@cli.command()
@click.argument("filename")
def verify(filename):
    """Run the integrity probe on a backup"""
    try:
        ok = _get_service().verify_backup(filename)
    except NotFoundError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    if ok:
        console.print(f"[green]✓[/green] {filename} passed the integrity probe")
    else:
        console.print(f"[red]✗[/red] {filename} is corrupted or unreadable")
        sys.exit(1)


@cli.command()
@click.argument("filename")
def delete(filename):
    """Delete a backup file"""
    if _get_service().delete_backup(filename):
        console.print(f"[green]✓[/green] Deleted {filename}")
    else:
        console.print(f"[red]✗[/red] Failed to delete {filename}")
        sys.exit(1)


@cli.command()
@click.option("--cadence", "-c", type=click.Choice(CADENCE_CHOICES), help="Only rotate this cadence")
@click.option("--dry-run", is_flag=True, help="Preview without deleting")
def rotate(cadence, dry_run):
    """Apply retention quotas"""
    report = _get_service().rotate(cadence, dry_run=dry_run)

    verb = "Would delete" if dry_run else "Deleted"
    for filename in report.deleted:
        console.print(f"[yellow]-[/yellow] {verb} {filename}")
    for failure in report.failed:
        console.print(f"[red]✗[/red] {failure['filename']}: {failure['error']}")

    console.print(f"[bold]{verb} {len(report.deleted)} backup(s), {format_bytes(report.freed_bytes)}[/bold]")


@cli.command("retention-status")
def retention_status():
    """Show backup counts against retention quotas"""
    status = _get_service().retention.get_retention_status()

    table = Table(title="Retention", show_header=True, header_style="bold magenta")
    table.add_column("Cadence", style="cyan")
    table.add_column("Backups", justify="right")
    table.add_column("Quota", justify="right")
    table.add_column("Over", justify="right", style="yellow")
    table.add_column("Size", justify="right")
    table.add_column("Newest", style="green")

    for cadence, info in status["cadences"].items():
        table.add_row(
            cadence,
            str(info["count"]),
            str(info["quota"]) if info["quota"] is not None else "-",
            str(info["over_quota"]),
            format_bytes(info["size"]),
            info["newest"] or "None",
        )

    console.print(table)


@cli.command()
@click.option("--force", is_flag=True, help="Run the scheduler even outside production")
def schedule(force):
    """Run the backup scheduler in the foreground"""
    service = _get_service()
    if force:
        service.scheduler.enabled = True

    if not service.scheduler.enabled:
        console.print("[yellow]Scheduling is disabled outside production (use --force)[/yellow]")
        return

    async def _run() -> None:
        task = service.start_scheduler()
        console.print(
            f"[bold cyan]Scheduler running, next backup in {service.scheduler.next_delay() / 3600:.1f} hours[/bold cyan]"
        )
        if task is not None:
            await task

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[dim]Scheduler stopped[/dim]")


@cli.command("set-locator")
@click.argument("locator")
def set_locator(locator):
    """Store the database locator (encrypted when it contains a password)"""
    _get_config().set_locator(locator)
    console.print("[green]✓[/green] Database locator saved")


if __name__ == "__main__":
    cli()
