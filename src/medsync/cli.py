"""Command-line interface for medsync."""

import asyncio
import logging
import sys
from datetime import date, datetime, time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .adapters import HttpRemoteClient
from .config import Config, MedSyncSettings, describe, get_config, get_db_path
from .facade import SyncFacade
from .models import Frequency, SyncResult, SyncStatus
from .reconciler import Reconciler
from .reminders import plan_reminders, reminder_infos
from .remote import RemoteClient
from .repository import UNCHANGED, MedicationRepository
from .store import SQLiteMedicationStore


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool, level: str = "INFO"):
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
    )


def get_store() -> SQLiteMedicationStore:
    """Get a store over the configured database."""
    return SQLiteMedicationStore(get_db_path())


def get_remote_client(config: MedSyncSettings) -> RemoteClient:
    """Get the remote client for the configured service."""
    return HttpRemoteClient.from_settings(config)


def get_username(ctx) -> str:
    username = ctx.obj.get('username') or get_config().username
    if not username:
        console.print("[red]Error: No user configured. Pass --user or set MEDSYNC_USERNAME[/red]")
        sys.exit(1)
    return username


def parse_time_of_day(value: Optional[str]) -> Optional[datetime]:
    """Turn ``HH:MM`` into today's local time at that hour."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, "%H:%M")
    except ValueError:
        console.print(f"[red]Error: Invalid time '{value}'. Use HH:MM[/red]")
        sys.exit(1)
    return datetime.combine(date.today(), time(parsed.hour, parsed.minute)).astimezone()


def edited_time(value: Optional[str], clear: bool):
    """Map an edit command's time option and clear flag onto a reminder change."""
    if clear:
        return None
    if not value:
        return UNCHANGED
    return parse_time_of_day(value)


def print_sync_result(result: SyncResult):
    if result.status == SyncStatus.SKIPPED:
        console.print("[yellow]Sync already in progress, skipped[/yellow]")
        return
    if not result.ok:
        console.print(f"[red]❌ Sync failed: {'; '.join(result.errors)}[/red]")
        return

    console.print(f"[green]✅ Sync completed in {result.duration_seconds or 0:.2f}s[/green]")
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Change", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Created remotely", str(result.items_created))
    table.add_row("Pulled from remote", str(result.items_pulled))
    table.add_row("Updated locally", str(result.items_updated_local))
    table.add_row("Updated remotely", str(result.items_updated_remote))
    table.add_row("Deleted", str(result.items_deleted))
    table.add_row("Unchanged", str(result.items_unchanged))
    console.print(table)


@click.group()
@click.option("--config", type=click.Path(), help="Path to config file")
@click.option("--user", "-u", help="Username (overrides configuration)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx, config, user, verbose):
    """medsync - Keep your medication list in sync."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['username'] = user

    # Load configuration
    if config:
        settings = Config.reload(Path(config))
    else:
        settings = get_config()

    setup_logging(verbose, settings.log_level)


@main.command()
@click.argument("name")
@click.argument("dosage")
@click.option("--frequency", "-f", type=click.Choice([f.value for f in Frequency]),
              default=Frequency.DAILY.value, help="How often it is taken")
@click.option("--alert/--no-alert", default=False, help="Enable reminders")
@click.option("--time1", help="First reminder time (HH:MM)")
@click.option("--time2", help="Second reminder time for twice-daily (HH:MM)")
@click.pass_context
def add(ctx, name, dosage, frequency, alert, time1, time2):
    """Add a medication locally."""
    username = get_username(ctx)
    repository = MedicationRepository(get_store())
    try:
        medication = asyncio.run(repository.create(
            username, name, dosage, Frequency(frequency),
            reminder_alert=alert,
            reminder_time1=parse_time_of_day(time1),
            reminder_time2=parse_time_of_day(time2),
        ))
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✅ Added {medication.name} ({medication.dosage})[/green] [dim]{medication.id}[/dim]")


@main.command()
@click.argument("medication_id")
@click.option("--name", help="New name")
@click.option("--dosage", help="New dosage")
@click.option("--frequency", "-f", type=click.Choice([f.value for f in Frequency]),
              help="New frequency")
@click.option("--alert/--no-alert", default=None, help="Enable or disable reminders")
@click.option("--time1", help="First reminder time (HH:MM)")
@click.option("--time2", help="Second reminder time for twice-daily (HH:MM)")
@click.option("--clear-time1", is_flag=True, help="Remove the first reminder time")
@click.option("--clear-time2", is_flag=True, help="Remove the second reminder time")
@click.pass_context
def edit(ctx, medication_id, name, dosage, frequency, alert, time1, time2, clear_time1, clear_time2):
    """Edit a medication locally."""
    username = get_username(ctx)
    repository = MedicationRepository(get_store())
    try:
        medication = asyncio.run(repository.update(
            medication_id, username,
            name=name,
            dosage=dosage,
            frequency=Frequency(frequency) if frequency else None,
            reminder_alert=alert,
            reminder_time1=edited_time(time1, clear_time1),
            reminder_time2=edited_time(time2, clear_time2),
        ))
    except KeyError:
        console.print(f"[red]Error: Medication {medication_id} not found[/red]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✅ Updated {medication.name} ({medication.dosage})[/green]")


@main.command()
@click.argument("medication_id")
@click.pass_context
def delete(ctx, medication_id):
    """Delete a medication (removed remotely on next sync)."""
    username = get_username(ctx)
    repository = MedicationRepository(get_store())
    if not asyncio.run(repository.soft_delete(medication_id, username)):
        console.print(f"[red]Error: Medication {medication_id} not found[/red]")
        sys.exit(1)
    console.print(f"[green]✅ Deleted {medication_id}[/green]")


@main.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include deleted medications awaiting sync")
@click.pass_context
def list_medications(ctx, show_all):
    """List local medications."""
    username = get_username(ctx)
    medications = MedicationRepository(get_store()).list_medications(username, include_deleted=show_all)

    if not medications:
        console.print("[yellow]No medications found[/yellow]")
        return

    table = Table(title=f"Medications for {username}", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Dosage")
    table.add_column("Frequency")
    table.add_column("Updated")
    if show_all:
        table.add_column("Status")

    for medication in medications:
        row = [
            medication.id,
            medication.name,
            medication.dosage,
            medication.frequency.title,
            medication.updated_at.astimezone().strftime("%Y-%m-%d %H:%M"),
        ]
        if show_all:
            row.append("[red]deleted[/red]" if medication.is_deleted else "[green]active[/green]")
        table.add_row(*row)

    console.print(table)


async def _run_sync(username: str, medication_id: Optional[str]) -> SyncResult:
    """Run one sync against the configured remote."""
    logger.debug(f"Running sync for {username}, medication {medication_id or 'all'}")
    async with get_remote_client(get_config()) as remote:
        facade = SyncFacade(Reconciler(remote, get_store()))
        if medication_id:
            return await facade.sync_one(medication_id, username)
        return await facade.sync_all(username)


@main.command()
@click.option("--id", "medication_id", help="Sync only this medication")
@click.pass_context
def sync(ctx, medication_id):
    """Synchronize local medications with the server."""
    username = get_username(ctx)
    try:
        result = asyncio.run(_run_sync(username, medication_id))
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync cancelled[/yellow]")
        sys.exit(1)

    print_sync_result(result)
    if result.status == SyncStatus.ERROR:
        sys.exit(1)


@main.command()
@click.pass_context
def reminders(ctx):
    """Show the reminders that would be scheduled."""
    username = get_username(ctx)
    local_tz = datetime.now().astimezone().tzinfo
    requests = plan_reminders(username, reminder_infos(get_store(), username), tz=local_tz)

    if not requests:
        console.print("[yellow]No reminders scheduled[/yellow]")
        return

    weekdays = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    table = Table(title="Reminders", show_header=True, header_style="bold magenta")
    table.add_column("Time", style="cyan")
    table.add_column("Repeats")
    table.add_column("Message")
    table.add_column("Identifier", style="dim")
    for request in requests:
        trigger = request.trigger
        repeats = f"Every {weekdays[trigger.weekday - 1]}" if trigger.weekday else "Daily"
        table.add_row(f"{trigger.hour:02d}:{trigger.minute:02d}", repeats, request.body, request.identifier)
    console.print(table)


async def _check_health():
    async with get_remote_client(get_config()) as remote:
        return await remote.health()


@main.command()
def health():
    """Check that the medications service is reachable."""
    try:
        response = asyncio.run(_check_health())
    except Exception as e:
        console.print(f"[red]❌ Service unreachable: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]✅ Service status: {response.status}[/green]")


@main.command("config-show")
@click.option("--save", is_flag=True, help="Write the effective settings to the config file")
def config_show(save):
    """Show the effective configuration."""
    config = get_config()
    table = Table(title="Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in describe(config).items():
        table.add_row(key, str(value))
    console.print(table)

    if save:
        path = Config.save(config)
        console.print(f"[green]Configuration saved to {path}[/green]")


if __name__ == "__main__":
    main()
