"""
Main CLI application using Typer.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..config import BACKENDS, AppConfig, StorageConfig
from ..domain.exceptions import SchedulerError, StorageError, ValidationFailedError
from ..domain.models import MeetingBooking
from ..domain.time_utils import parse_date
from ..services.scheduling import SchedulingService
from ..storage.factory import StorageFactory, initialize_storage

app = typer.Typer(
    name="meetingscheduler",
    help="Find free meeting slots, book meetings and manage scheduler storage",
    add_completion=False,
)
config_app = typer.Typer(help="Show and change the availability configuration")
app.add_typer(config_app, name="config")

console = Console()

T = TypeVar("T")

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    try:
        config = AppConfig.load(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    _configure_logging(config.log_level)
    return config


def _run(config: AppConfig, action: Callable[[StorageFactory], Awaitable[T]]) -> T:
    """Initialize storage, run one async action and map domain errors to exit codes."""

    async def main() -> T:
        factory = await initialize_storage(config.storage, timezone=config.timezone)
        return await action(factory)

    try:
        return asyncio.run(main())
    except ValidationFailedError as e:
        console.print("[bold red]Validation failed:[/bold red]")
        for error in e.errors:
            console.print(f"  • {error}")
        raise typer.Exit(1)
    except StorageError as e:
        console.print(
            f"[bold red]Storage error[/bold red] ({e.backend}, {e.operation}): {e}\n"
            "Please try again."
        )
        raise typer.Exit(1)
    except SchedulerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _parse_day(value: str) -> pendulum.Date:
    try:
        day = parse_date(value)
    except ValueError as e:
        console.print(f"[red]Error parsing date: {e}[/red]")
        raise typer.Exit(1)
    return pendulum.date(day.year, day.month, day.day)


def _parse_int_list(value: Optional[str]) -> Optional[List[int]]:
    if value is None:
        return None
    try:
        return [int(item) for item in value.split(",") if item.strip()]
    except ValueError:
        console.print(f"[red]Expected a comma-separated list of numbers, got '{value}'[/red]")
        raise typer.Exit(1)


def _meetings_table(meetings: List[MeetingBooking], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Min", justify="right")
    table.add_column("Type")
    table.add_column("Name", style="bold yellow")
    table.add_column("Email", style="dim")
    table.add_column("Status")

    status_style = {"scheduled": "green", "completed": "blue", "cancelled": "red"}
    for meeting in meetings:
        style = status_style.get(meeting.status, "white")
        table.add_row(
            meeting.id,
            meeting.date,
            meeting.time,
            str(meeting.duration),
            meeting.meeting_type,
            meeting.name,
            meeting.email,
            f"[{style}]{meeting.status}[/{style}]",
        )
    return table


@app.command()
def slots(
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End date (YYYY-MM-DD)")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Meeting duration in minutes")] = None,
    show_all: Annotated[bool, typer.Option("--all", help="Also list unavailable slots")] = False,
):
    """
    List bookable slots.

    Examples:

        meetingscheduler slots
        meetingscheduler slots --start 2024-06-03 --end 2024-06-07 --duration 30
    """
    config = _load_config(config_file)
    today = pendulum.today(config.timezone).date()
    start_date = _parse_day(start) if start else today
    end_date = _parse_day(end) if end else start_date.add(days=config.days_ahead)

    if end_date < start_date:
        console.print("[red]Error: the end date must not be before the start date.[/red]")
        raise typer.Exit(1)

    async def action(factory: StorageFactory):
        return await SchedulingService.from_factory(factory).get_available_slots(
            start_date, end_date, duration
        )

    days = _run(config, action)

    shown = 0
    for day in days:
        day_slots = day.slots if show_all else [slot for slot in day.slots if slot.available]
        if not day_slots:
            continue
        label = pendulum.parse(day.date).format("dddd, MMM D, YYYY")
        rendered = []
        for slot in day_slots:
            if slot.available:
                rendered.append(f"[green]{slot.time}[/green]")
            elif slot.blocked:
                rendered.append(f"[red]{slot.time}[/red]")
            else:
                rendered.append(f"[dim]{slot.time}[/dim]")
        console.print(f"[bold]{label}[/bold]")
        console.print("  " + "  ".join(rendered))
        shown += len(day_slots)

    if not shown:
        console.print(
            "[yellow]⚠ No available slots found.[/yellow]\n"
            "Try a longer date range or a shorter duration."
        )


@app.command("next")
def next_slot(
    config_file: ConfigOption = None,
    duration: Annotated[int, typer.Option("--duration", "-d", help="Meeting duration in minutes")] = 30,
    days_ahead: Annotated[int, typer.Option("--days", help="How many days to look ahead")] = 30,
):
    """Show the earliest slot that fits a meeting of the given duration."""
    config = _load_config(config_file)

    async def action(factory: StorageFactory):
        return await SchedulingService.from_factory(factory).get_next_available_slot(
            duration, days_ahead
        )

    slot = _run(config, action)
    if slot is None:
        console.print(f"[yellow]No slot for a {duration}-minute meeting in the next {days_ahead} days.[/yellow]")
        return
    console.print(f"[bold green]✓ Next available:[/bold green] {slot.format_display()}")


@app.command()
def book(
    name: Annotated[str, typer.Argument(help="Attendee name")],
    email: Annotated[str, typer.Argument(help="Attendee email")],
    phone: Annotated[str, typer.Argument(help="Attendee phone number")],
    date: Annotated[str, typer.Option("--date", help="Meeting date (YYYY-MM-DD)")],
    time: Annotated[str, typer.Option("--time", help="Start time (HH:mm)")],
    config_file: ConfigOption = None,
    duration: Annotated[int, typer.Option("--duration", "-d", help="15, 30 or 60 minutes")] = 30,
    meeting_type: Annotated[str, typer.Option("--type", help="video or phone")] = "video",
    recurrence: Annotated[str, typer.Option("--recurrence", help="none, weekly or monthly")] = "none",
    until: Annotated[Optional[str], typer.Option("--until", help="Recurrence end date (YYYY-MM-DD)")] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Additional notes")] = None,
):
    """Book a meeting in a free slot."""
    config = _load_config(config_file)
    request: Dict[str, Any] = {
        "name": name,
        "email": email,
        "phone": phone,
        "date": date,
        "time": time,
        "duration": duration,
        "meeting_type": meeting_type,
        "recurrence": recurrence,
        "recurrence_end_date": until,
        "notes": notes,
    }

    async def action(factory: StorageFactory):
        return await SchedulingService.from_factory(factory).book_meeting(request)

    booking = _run(config, action)

    details = [
        f"[bold]Booking ID:[/bold] {booking.id}",
        f"[bold]When:[/bold] {booking.date} at {booking.time} ({booking.duration} minutes)",
        f"[bold]Type:[/bold] {'Video Call' if booking.meeting_type == 'video' else 'Phone Call'}",
    ]
    if booking.join_link:
        details.append(f"[bold]Join link:[/bold] {booking.join_link}")
    if booking.phone_number:
        details.append(f"[bold]Dial-in:[/bold] {booking.phone_number}")
    console.print(Panel.fit("\n".join(details), title="✓ Meeting booked"))


@app.command()
def meetings(
    config_file: ConfigOption = None,
    status: Annotated[Optional[str], typer.Option("--status", help="scheduled, completed or cancelled")] = None,
    upcoming: Annotated[bool, typer.Option("--upcoming", help="Only scheduled meetings after now")] = False,
    search: Annotated[Optional[str], typer.Option("--search", "-s", help="Search name, email, phone and notes")] = None,
):
    """List booked meetings."""
    config = _load_config(config_file)

    async def action(factory: StorageFactory):
        service = factory.create_meeting_storage()
        if upcoming:
            return await service.get_upcoming()
        if search:
            return await service.search(search)
        if status:
            return await service.get_by_status(status)
        return sorted(await service.get_all(), key=lambda meeting: (meeting.date, meeting.time))

    found = _run(config, action)
    if not found:
        console.print("[yellow]No meetings found.[/yellow]")
        return
    console.print()
    console.print(_meetings_table(found, "Meetings"))
    console.print()


@app.command()
def cancel(
    meeting_id: Annotated[str, typer.Argument(help="Booking ID")],
    config_file: ConfigOption = None,
):
    """Cancel a scheduled meeting."""
    config = _load_config(config_file)

    async def action(factory: StorageFactory):
        return await SchedulingService.from_factory(factory).cancel_meeting(meeting_id)

    if not _run(config, action):
        console.print(f"[yellow]Meeting {meeting_id} not found.[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Meeting {meeting_id} cancelled.[/green]")


@app.command()
def complete(
    meeting_id: Annotated[str, typer.Argument(help="Booking ID")],
    config_file: ConfigOption = None,
):
    """Mark a scheduled meeting as completed."""
    config = _load_config(config_file)

    async def action(factory: StorageFactory):
        return await SchedulingService.from_factory(factory).complete_meeting(meeting_id)

    if not _run(config, action):
        console.print(f"[yellow]Meeting {meeting_id} not found.[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Meeting {meeting_id} completed.[/green]")


@app.command()
def block(
    date: Annotated[str, typer.Argument(help="Date to block (YYYY-MM-DD)")],
    config_file: ConfigOption = None,
    start_time: Annotated[Optional[str], typer.Option("--from", help="Start time (HH:mm); omit for the full day")] = None,
    end_time: Annotated[Optional[str], typer.Option("--to", help="End time (HH:mm)")] = None,
    reason: Annotated[Optional[str], typer.Option("--reason", help="Why the time is blocked")] = None,
):
    """Block a time range, or the full day."""
    config = _load_config(config_file)
    if (start_time is None) != (end_time is None):
        console.print("[red]Error: --from and --to must be used together.[/red]")
        raise typer.Exit(1)

    async def action(factory: StorageFactory):
        service = factory.create_blocked_slots_storage()
        if start_time is None:
            return await service.block_full_day(date, reason)
        return await service.block_time_range(date, start_time, end_time, reason)

    blocked = _run(config, action)
    console.print(
        f"[green]✓ Blocked {blocked.date} {blocked.start_time}-{blocked.end_time}[/green]"
        + (f" ({blocked.reason})" if blocked.reason else "")
    )


@app.command()
def unblock(
    date: Annotated[str, typer.Argument(help="Date to unblock (YYYY-MM-DD)")],
    config_file: ConfigOption = None,
    start_time: Annotated[Optional[str], typer.Option("--from", help="Start time (HH:mm); omit for the full day")] = None,
    end_time: Annotated[Optional[str], typer.Option("--to", help="End time (HH:mm)")] = None,
):
    """Remove blocked windows on a date."""
    config = _load_config(config_file)
    if (start_time is None) != (end_time is None):
        console.print("[red]Error: --from and --to must be used together.[/red]")
        raise typer.Exit(1)

    async def action(factory: StorageFactory):
        service = factory.create_blocked_slots_storage()
        if start_time is None:
            return await service.unblock_full_day(date)
        return await service.unblock_time_range(date, start_time, end_time)

    if _run(config, action):
        console.print(f"[green]✓ Unblocked {date}.[/green]")
    else:
        console.print(f"[yellow]Nothing blocked on {date} in that range.[/yellow]")


@config_app.command("show")
def config_show(config_file: ConfigOption = None):
    """Show the current availability configuration."""
    config = _load_config(config_file)

    async def action(factory: StorageFactory):
        return await factory.create_config_storage().get()

    meeting_config = _run(config, action)
    availability = meeting_config.availability
    day_names = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

    table = Table(title="Meeting configuration", show_header=False)
    table.add_column("Setting", style="bold cyan")
    table.add_column("Value")
    table.add_row("Working hours", f"{availability.start_time} - {availability.end_time}")
    table.add_row("Timezone", availability.timezone)
    table.add_row("Working days", ", ".join(day_names[day] for day in sorted(availability.working_days)))
    table.add_row("Slot duration", f"{availability.slot_duration} minutes")
    table.add_row("Buffer time", f"{availability.buffer_time} minutes")
    table.add_row("Durations", ", ".join(str(duration) for duration in meeting_config.durations))
    table.add_row("Meeting types", ", ".join(meeting_config.meeting_types))
    table.add_row("Default phone number", meeting_config.default_phone_number or "-")
    table.add_row("Auto join link", "yes" if meeting_config.auto_generate_join_link else "no")
    table.add_row("Reminder", f"{meeting_config.reminder_hours} hours before")
    console.print()
    console.print(table)
    console.print()


@config_app.command("set")
def config_set(
    config_file: ConfigOption = None,
    start_time: Annotated[Optional[str], typer.Option("--start-time", help="HH:mm")] = None,
    end_time: Annotated[Optional[str], typer.Option("--end-time", help="HH:mm")] = None,
    timezone: Annotated[Optional[str], typer.Option("--timezone", help="IANA timezone")] = None,
    working_days: Annotated[Optional[str], typer.Option("--working-days", help="Comma-separated, 0=Sunday")] = None,
    slot_duration: Annotated[Optional[int], typer.Option("--slot-duration", help="Minutes (5-120)")] = None,
    buffer_time: Annotated[Optional[int], typer.Option("--buffer-time", help="Minutes (0-60)")] = None,
    durations: Annotated[Optional[str], typer.Option("--durations", help="Comma-separated: 15,30,60")] = None,
    meeting_types: Annotated[Optional[str], typer.Option("--meeting-types", help="Comma-separated: video,phone")] = None,
    phone_number: Annotated[Optional[str], typer.Option("--phone-number", help="Default dial-in number")] = None,
    reminder_hours: Annotated[Optional[int], typer.Option("--reminder-hours", help="Hours (1-168)")] = None,
):
    """Change configuration values; unspecified values are kept."""
    config = _load_config(config_file)

    availability = {
        key: value
        for key, value in {
            "start_time": start_time,
            "end_time": end_time,
            "timezone": timezone,
            "working_days": _parse_int_list(working_days),
            "slot_duration": slot_duration,
            "buffer_time": buffer_time,
        }.items()
        if value is not None
    }
    updates: Dict[str, Any] = {
        key: value
        for key, value in {
            "durations": _parse_int_list(durations),
            "meeting_types": [item.strip() for item in meeting_types.split(",")] if meeting_types else None,
            "default_phone_number": phone_number,
            "reminder_hours": reminder_hours,
        }.items()
        if value is not None
    }
    if availability:
        updates["availability"] = availability

    if not updates:
        console.print("[yellow]Nothing to change.[/yellow]")
        return

    async def action(factory: StorageFactory):
        return await factory.create_config_storage().update_config(updates)

    _run(config, action)
    console.print("[green]✓ Configuration updated.[/green]")


@config_app.command("reset")
def config_reset(
    config_file: ConfigOption = None,
    preset: Annotated[Optional[str], typer.Option("--preset", help="default, business, flexible or minimal")] = None,
):
    """Reset the configuration to the defaults or to a preset."""
    config = _load_config(config_file)

    async def action(factory: StorageFactory):
        service = factory.create_config_storage()
        if preset:
            return await service.apply_preset(preset)
        return await service.reset()

    try:
        _run(config, action)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]✓ Configuration reset{f' to preset {preset}' if preset else ''}.[/green]")


@app.command("export")
def export_data(
    config_file: ConfigOption = None,
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write to this file instead of stdout")] = None,
):
    """Export all collections as JSON."""
    config = _load_config(config_file)

    async def action(factory: StorageFactory):
        return await factory.export_data()

    payload = json.dumps(_run(config, action).to_json_dict(), indent=2, ensure_ascii=False)
    if output is None:
        console.print_json(payload)
        return
    output.write_text(payload, encoding="utf-8")
    console.print(f"[green]✓ Exported to {output}[/green]")


@app.command("import")
def import_data(
    source: Annotated[Path, typer.Argument(help="JSON file created by 'export'")],
    config_file: ConfigOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
):
    """Replace all stored data with the contents of an export file."""
    config = _load_config(config_file)
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        console.print(f"[bold red]Error reading {source}:[/bold red] {e}")
        raise typer.Exit(1)

    if not yes and not typer.confirm("This replaces all stored data. Continue?"):
        raise typer.Exit(1)

    async def action(factory: StorageFactory):
        await factory.import_data(data)

    _run(config, action)
    console.print(f"[green]✓ Imported {source}[/green]")


@app.command()
def health(config_file: ConfigOption = None):
    """Check the configured storage backend."""
    config = _load_config(config_file)

    async def action(factory: StorageFactory):
        return factory.get_backend_info(), await factory.health_check()

    info, result = _run(config, action)
    color = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}[result.status]
    lines = [
        f"[bold]Backend:[/bold] {result.backend} (v{info['version']})",
        f"[bold]Capabilities:[/bold] {', '.join(info['capabilities'])}",
        f"[bold]Latency:[/bold] {result.latency_ms:.1f} ms",
    ]
    lines.extend(f"[red]• {error}[/red]" for error in result.errors)
    console.print(Panel.fit("\n".join(lines), title=f"[{color}]{result.status}[/{color}]"))
    if result.status == "unhealthy":
        raise typer.Exit(1)


@app.command("switch-backend")
def switch_backend(
    backend: Annotated[str, typer.Argument(help=f"One of: {', '.join(BACKENDS)}")],
    config_file: ConfigOption = None,
    data_dir: Annotated[Optional[str], typer.Option("--data-dir", help="Directory for the durable backend")] = None,
):
    """Copy all data into another backend."""
    config = _load_config(config_file)
    try:
        target: StorageConfig = config.storage.with_backend(backend)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    if data_dir:
        target.options.durable.directory = data_dir

    async def action(factory: StorageFactory):
        await factory.switch_backend(target)
        return await factory.health_check()

    result = _run(config, action)
    console.print(f"[green]✓ Data copied to the {result.backend} backend ({result.status}).[/green]")
    console.print(
        "Update the storage backend in config.yaml or MEETING_SCHEDULER_STORAGE_BACKEND to keep using it."
    )


@app.command()
def version():
    """
    Show version information.
    """
    console.print(f"\n[bold cyan]meetingscheduler[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
