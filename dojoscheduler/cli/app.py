"""
Main CLI application using Typer.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Annotated

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.dynamo_store import DynamoStore
from ..adapters.memory_store import InMemoryStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import SchedulerError
from ..domain.models import Availability, Meeting, MeetingRequest
from ..domain.validation import validate_booking, validate_vocabulary
from ..services.booking import BookingService
from ..services.repository import SchedulerRepository
from ..services.statistics import StatisticsRecorder

app = typer.Typer(
    name="dojoscheduler",
    help="Publish availabilities, book meetings and inspect booking statistics",
    add_completion=False
)

console = Console()

DEFAULT_STATE_FILE = Path(".dojoscheduler_state.json")

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")]
MockOption = Annotated[bool, typer.Option("--mock", help="Use a local in-memory store instead of DynamoDB.")]
StateOption = Annotated[Path, typer.Option("--state", help="State file used by --mock.")]


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    """Load the config file, falling back to defaults if no default file exists."""
    config_path = config_file or get_default_config_path()
    if config_file is None and not config_path.exists():
        return AppConfig()
    return AppConfig.load_from_yaml(config_path)


@contextmanager
def _session(config_file: Optional[Path], mock: bool, state: Path) -> Iterator[tuple]:
    """
    Yield (config, repository, service, statistics) wired to the selected store.

    In mock mode the store is loaded from and saved back to ``state``.
    """
    config = _load_config(config_file)
    _configure_logging(config.log_level)

    if mock:
        store = InMemoryStore.load(state, config.tables.key_schema())
    else:
        store = DynamoStore.create(
            region=config.region,
            endpoint_url=config.endpoint_url,
            profile=config.aws_profile,
        )

    repository = SchedulerRepository(store, config.tables)
    statistics = StatisticsRecorder(
        repository,
        create_missing=config.statistics.create_missing_buckets,
    )
    if config.statistics.async_updates:
        service = BookingService.with_background_statistics(
            repository, statistics, max_workers=config.statistics.max_workers
        )
    else:
        service = BookingService(repository, statistics)

    try:
        with service:
            yield config, repository, service, statistics
    finally:
        if mock:
            store.save(state)


def _fail(exc: Exception) -> None:
    message = exc.public_message if isinstance(exc, SchedulerError) else str(exc)
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


def _parse_local(value: str, tz: str) -> str:
    """Parse 'YYYY-MM-DD HH:mm' in ``tz`` and return a UTC ISO string."""
    try:
        parsed = pendulum.from_format(value, "YYYY-MM-DD HH:mm", tz=tz)
    except ValueError as exc:
        raise typer.BadParameter(f"Expected YYYY-MM-DD HH:mm, got {value!r}") from exc
    return parsed.in_timezone("UTC").to_iso8601_string()


def _print_meeting(meeting: Meeting, tz: str) -> None:
    console.print(Panel.fit(
        f"[bold]Meeting:[/bold] {meeting.id}\n"
        f"[bold]Owner:[/bold] {meeting.owner} ({meeting.owner_cohort})\n"
        f"[bold]Participant:[/bold] {meeting.participant} ({meeting.participant_cohort})\n"
        f"[bold]Type:[/bold] {meeting.type}\n"
        f"[bold]When:[/bold] {meeting.time_range().in_timezone(tz)} ({meeting.time_range().duration_minutes()} min)\n"
        f"[bold]Status:[/bold] {meeting.status.value}",
        title="✓ Meeting"
    ))


def _counter_table(title: str, counters: dict) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Key", style="bold yellow")
    table.add_column("Count", justify="right")
    for key, count in sorted(counters.items()):
        table.add_row(key, str(count))
    return table


@app.command()
def seed_stats(
    config_file: ConfigOption = None,
    mock: MockOption = False,
    state: StateOption = DEFAULT_STATE_FILE,
):
    """
    Create the statistics records with every configured cohort and type.
    """
    try:
        with _session(config_file, mock, state) as (config, _, _, statistics):
            created = statistics.seed(config.cohorts, config.types)
    except (SchedulerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    for record, was_created in created.items():
        if was_created:
            console.print(f"[green]✓ {record} statistics created[/green]")
        else:
            console.print(f"[yellow]⊘ {record} statistics already exist[/yellow]")


@app.command()
def create_user(
    username: Annotated[str, typer.Argument(help="Unique username")],
    email: Annotated[str, typer.Option("--email", help="E-mail address")] = "",
    name: Annotated[str, typer.Option("--name", help="Display name")] = "",
    config_file: ConfigOption = None,
    mock: MockOption = False,
    state: StateOption = DEFAULT_STATE_FILE,
):
    """
    Create a user. Fails if the username is taken.
    """
    try:
        with _session(config_file, mock, state) as (_, repository, _, _):
            user = repository.create_user(username, email, name)
    except (SchedulerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"[green]✓ User {user.username} created[/green]")


@app.command()
def create_availability(
    owner: Annotated[str, typer.Option("--owner", help="Owner username")],
    owner_cohort: Annotated[str, typer.Option("--owner-cohort", help="Owner's cohort")],
    start: Annotated[str, typer.Option("--start", help="Start (YYYY-MM-DD HH:mm, local time)")],
    end: Annotated[str, typer.Option("--end", help="End (YYYY-MM-DD HH:mm, local time)")],
    types: Annotated[List[str], typer.Option("--type", "-t", help="Offered type (repeatable)")],
    cohorts: Annotated[List[str], typer.Option("--cohort", help="Cohort allowed to book (repeatable)")],
    location: Annotated[Optional[str], typer.Option("--location")] = None,
    description: Annotated[Optional[str], typer.Option("--description")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    state: StateOption = DEFAULT_STATE_FILE,
):
    """
    Publish a new availability.

    Examples:

        dojoscheduler create-availability --owner alice --owner-cohort 1200-1300 \\
            --start "2024-11-25 18:00" --end "2024-11-25 19:00" \\
            -t ENDGAME_SPARRING --cohort 1200-1300 --cohort 1300-1400 --mock
    """
    try:
        with _session(config_file, mock, state) as (config, _, service, _):
            availability = Availability.new(
                owner,
                owner_cohort=owner_cohort,
                start_time=_parse_local(start, config.timezone),
                end_time=_parse_local(end, config.timezone),
                types=types,
                cohorts=cohorts,
                location=location,
                description=description,
            )
            validate_vocabulary(availability, config.cohorts, config.types)
            service.create_availability(availability)
    except (SchedulerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"[green]✓ Availability created:[/green] {availability.owner} {availability.id}")


@app.command()
def show_availability(
    owner: Annotated[str, typer.Argument(help="Owner username")],
    availability_id: Annotated[str, typer.Argument(help="Availability id")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    state: StateOption = DEFAULT_STATE_FILE,
):
    """
    Show a single availability.
    """
    try:
        with _session(config_file, mock, state) as (config, repository, _, _):
            availability = repository.get_availability(owner, availability_id)
            tz = config.timezone
    except (SchedulerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(Panel.fit(
        f"[bold]Owner:[/bold] {availability.owner} ({availability.owner_cohort})\n"
        f"[bold]When:[/bold] {availability.time_range().in_timezone(tz)} ({availability.time_range().duration_minutes()} min)\n"
        f"[bold]Types:[/bold] {', '.join(availability.types)}\n"
        f"[bold]Cohorts:[/bold] {', '.join(availability.cohorts)}",
        title=availability.id
    ))


@app.command()
def book(
    owner: Annotated[str, typer.Argument(help="Owner username")],
    availability_id: Annotated[str, typer.Argument(help="Availability id")],
    participant: Annotated[str, typer.Option("--participant", "-p", help="Participant username")],
    participant_cohort: Annotated[str, typer.Option("--participant-cohort", help="Participant's cohort")],
    meeting_type: Annotated[str, typer.Option("--type", "-t", help="Requested type")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    state: StateOption = DEFAULT_STATE_FILE,
):
    """
    Book an availability. The availability is replaced by a meeting.
    """
    try:
        with _session(config_file, mock, state) as (config, repository, service, _):
            availability = repository.get_availability(owner, availability_id)
            request = MeetingRequest(
                participant=participant,
                participant_cohort=participant_cohort,
                type=meeting_type,
            )
            validate_booking(availability, request)
            meeting = service.book_availability(availability, request)
            tz = config.timezone
    except (SchedulerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    _print_meeting(meeting, tz)


@app.command()
def delete_availability(
    owner: Annotated[str, typer.Argument(help="Owner username")],
    availability_id: Annotated[str, typer.Argument(help="Availability id")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    state: StateOption = DEFAULT_STATE_FILE,
):
    """
    Delete an availability that has not been booked.
    """
    try:
        with _session(config_file, mock, state) as (_, _, service, _):
            service.delete_availability(owner, availability_id)
    except (SchedulerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"[green]✓ Availability {availability_id} deleted[/green]")


@app.command()
def cancel_meeting(
    meeting_id: Annotated[str, typer.Argument(help="Meeting id")],
    canceler: Annotated[str, typer.Option("--canceler", help="Username of the canceler")],
    canceler_cohort: Annotated[str, typer.Option("--canceler-cohort", help="Cohort of the canceler")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    state: StateOption = DEFAULT_STATE_FILE,
):
    """
    Cancel a meeting.
    """
    try:
        with _session(config_file, mock, state) as (config, _, service, _):
            meeting = service.cancel_meeting(meeting_id, canceler, canceler_cohort)
            tz = config.timezone
    except (SchedulerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    _print_meeting(meeting, tz)


@app.command()
def stats(
    config_file: ConfigOption = None,
    mock: MockOption = False,
    state: StateOption = DEFAULT_STATE_FILE,
):
    """
    Show the availability and meeting statistics.
    """
    try:
        with _session(config_file, mock, state) as (_, repository, _, _):
            availability_stats = repository.get_availability_stats()
            meeting_stats = repository.get_meeting_stats()
    except (SchedulerError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(Panel.fit(
        f"[bold]Availabilities:[/bold] created {availability_stats.created}, "
        f"deleted {availability_stats.deleted}, booked {availability_stats.booked}\n"
        f"[bold]Meetings:[/bold] created {meeting_stats.created}, canceled {meeting_stats.canceled}",
        title="Statistics"
    ))

    for title, counters in [
        ("Availabilities by owner cohort", availability_stats.owner_cohorts),
        ("Availabilities by bookable cohort", availability_stats.bookable_cohorts),
        ("Availabilities by type", availability_stats.types),
        ("Meetings by participant cohort", meeting_stats.participant_cohorts),
        ("Meetings by type", meeting_stats.types),
    ]:
        nonzero = {k: v for k, v in counters.items() if v}
        if nonzero:
            console.print(_counter_table(title, nonzero))


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]dojoscheduler[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
