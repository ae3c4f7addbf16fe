"""
Main CLI application using Typer.
"""

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import List, Optional, Annotated

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.panel import Panel

from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import GardenSlotsError
from ..domain.models import as_date
from ..domain.recurring import ScheduleProjector
from ..domain.slot_merger import SlotMerger
from ..adapters.geocoding import GoogleGeocoder, StaticGeocoder
from ..adapters.memory_store import InMemoryAvailabilityStore
from ..adapters.rest_store import RestAvailabilityStore
from ..services.booking_service import BookingService
from ..services.buffer_service import BufferService
from ..services.eligibility import EligibilityResolver
from ..services.merged_availability import MergedAvailabilityService
from ..services.recurring_schedule import RecurringScheduleService

app = typer.Typer(
    name="gardenslots",
    help="Merged gardener availability, eligibility and recurring schedules",
    add_completion=False
)

console = Console()

MOCK_DATA_FILE = Path(__file__).parent.parent / "adapters" / "mock_data.json"

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")]


def _setup(config_file: Optional[Path], verbose: bool) -> AppConfig:
    """Configure logging and load the application config."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose, show_path=False)],
        force=True,
    )
    config_path = config_file or get_default_config_path()
    return AppConfig.load_from_yaml(config_path)


def _build_store(config: AppConfig):
    storage = config.storage
    if storage.backend == "rest":
        return RestAvailabilityStore(
            base_url=storage.url,
            api_key=storage.api_key,
            timeout_seconds=storage.timeout_seconds,
        )
    return InMemoryAvailabilityStore.from_json(storage.data_file or MOCK_DATA_FILE)


def _build_geocoder(config: AppConfig):
    geocoding = config.geocoding
    if geocoding.provider == "google":
        return GoogleGeocoder(
            api_key=geocoding.api_key,
            timeout_seconds=geocoding.timeout_seconds,
            region=geocoding.region,
        )
    return StaticGeocoder(geocoding.static_locations)


def _clock(config: AppConfig):
    return lambda: pendulum.now(config.timezone)


def _parse_date(value: str, tz: str) -> date:
    try:
        return as_date(pendulum.from_format(value, "YYYY-MM-DD", tz=tz))
    except ValueError as e:
        raise ValueError(f"Fecha no válida '{value}', se espera YYYY-MM-DD") from e


def _merged_service(config: AppConfig, store) -> MergedAvailabilityService:
    return MergedAvailabilityService(
        store,
        merger=SlotMerger(config.working_day.to_domain()),
        clock=_clock(config),
        min_notice_hours=config.recurring.min_notice_hours,
        merge_timeout_seconds=config.search.merge_timeout_seconds,
        max_days_to_search=config.search.max_days_to_search,
        max_results=config.search.max_results,
    )


def _fail(error: Exception):
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


@app.command()
def slots(
    day: Annotated[str, typer.Argument(help="Fecha (YYYY-MM-DD)")],
    gardener: Annotated[List[str], typer.Option("--gardener", "-g", help="Gardener id (repeatable)")],
    client: Annotated[str, typer.Option("--client", help="Client id")],
    duration: Annotated[int, typer.Option("--duration", "-d", help="Job duration in hours")] = 1,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Show merged slots of several gardeners for one date.

    Examples:

        gardenslots slots 2024-06-10 -g g1 -g g2 --client c1 --duration 2
    """
    try:
        config = _setup(config_file, verbose)
        target = _parse_date(day, config.timezone)
        service = _merged_service(config, _build_store(config))

        merged = asyncio.run(service.compute_merged_slots(gardener, target, client, duration))

        console.print()
        if not merged:
            console.print(
                f"[yellow]⚠ No hay franjas libres el {target.isoformat()} "
                f"para {duration}h.[/yellow]"
            )
            return

        table = Table(
            title=f"Franjas libres el {target.isoformat()} ({duration}h)",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("Franja", style="bold yellow")
        table.add_column("Jardineros", style="dim")

        for slot in merged:
            table.add_row(slot.format_display(), ", ".join(slot.gardener_ids))

        console.print(table)
        console.print()

    except (GardenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command("next-days")
def next_days(
    start: Annotated[str, typer.Argument(help="Fecha de inicio (YYYY-MM-DD)")],
    gardener: Annotated[List[str], typer.Option("--gardener", "-g", help="Gardener id (repeatable)")],
    client: Annotated[str, typer.Option("--client", help="Client id")],
    duration: Annotated[int, typer.Option("--duration", "-d", help="Job duration in hours")] = 1,
    max_days: Annotated[Optional[int], typer.Option("--max-days", help="Days to scan")] = None,
    max_results: Annotated[Optional[int], typer.Option("--max-results", help="Days to return")] = None,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Find the next days on which the job fits.
    """
    try:
        config = _setup(config_file, verbose)
        start_date = _parse_date(start, config.timezone)
        service = _merged_service(config, _build_store(config))

        days = asyncio.run(service.next_available_days(
            gardener, start_date, client, duration,
            max_days_to_search=max_days, max_results=max_results,
        ))

        console.print()
        if not days:
            console.print(
                "[yellow]⚠ Sin disponibilidad en el horizonte de búsqueda.[/yellow]\n"
                "Pruebe un horizonte más largo o una duración más corta."
            )
            return

        console.print(f"[bold green]✓ {len(days)} día(s) con franjas libres:[/bold green]\n")
        for entry in days:
            console.print(f"[bold]{entry.date.isoformat()}[/bold]")
            for slot in entry.slots:
                console.print(f"  {slot.format_display()}")
        console.print()

    except (GardenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def eligible(
    service: Annotated[List[str], typer.Option("--service", "-s", help="Service id (repeatable)")],
    address: Annotated[str, typer.Option("--address", "-a", help="Client address")],
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    List gardeners offering all services within reach of an address.
    """
    try:
        config = _setup(config_file, verbose)
        resolver = EligibilityResolver(
            _build_store(config),
            _build_geocoder(config),
            default_work_radius_km=config.eligibility.default_work_radius_km,
            missing_location_policy=config.eligibility.missing_location_policy,
        )

        gardeners = asyncio.run(resolver.find_eligible(service, address))

        if not gardeners:
            console.print("[yellow]No se encontraron jardineros disponibles.[/yellow]")
            return

        table = Table(
            title="Jardineros disponibles",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("ID", style="bold yellow")
        table.add_column("Dirección", style="dim")
        table.add_column("Radio (km)", justify="right")

        default_radius = config.eligibility.default_work_radius_km
        for profile in gardeners:
            table.add_row(
                profile.user_id,
                profile.address or "-",
                f"{profile.effective_radius_km(default_radius):.1f}",
            )

        console.print()
        console.print(table)
        console.print()

    except (GardenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def suggest(
    day: Annotated[str, typer.Argument(help="Fecha (YYYY-MM-DD)")],
    gardener: Annotated[str, typer.Option("--gardener", "-g", help="Gardener id")],
    client: Annotated[str, typer.Option("--client", help="Client id")],
    start: Annotated[int, typer.Option("--start", help="Requested start hour")],
    duration: Annotated[int, typer.Option("--duration", "-d", help="Job duration in hours")] = 1,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Check a requested start hour and propose alternatives.
    """
    try:
        config = _setup(config_file, verbose)
        target = _parse_date(day, config.timezone)
        service = BufferService(_build_store(config), config.working_day.to_domain())

        async def run():
            check = await service.can_book_sequence(gardener, target, start, duration, client)
            alternatives = await service.suggest_alternative_slots(
                gardener, target, start, duration, client
            )
            return check, alternatives

        check, alternatives = asyncio.run(run())

        if check.can_book:
            console.print(f"[green]✓ {start:02d}:00 +{duration}h se puede reservar.[/green]")
        else:
            console.print(f"[red]✗ {start:02d}:00 +{duration}h:[/red] {check.reason}")

        if alternatives:
            console.print("Alternativas: " + ", ".join(f"{h:02d}:00" for h in alternatives))
        else:
            console.print("[yellow]No hay alternativas ese día.[/yellow]")

    except (GardenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def generate(
    gardener: Annotated[str, typer.Argument(help="Gardener id")],
    force: Annotated[bool, typer.Option("--force", help="Rewrite the whole window")] = False,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Materialize a gardener's recurring schedule.
    """
    try:
        config = _setup(config_file, verbose)
        service = RecurringScheduleService(
            _build_store(config),
            projector=ScheduleProjector(config.working_day.to_domain()),
            clock=_clock(config),
            weeks_to_maintain=config.recurring.weeks_to_maintain,
            min_notice_hours=config.recurring.min_notice_hours,
            trailing_margin_hours=config.bookings.trailing_margin_hours,
        )

        result = asyncio.run(service.generate_recurring_slots(gardener, force_regenerate=force))

        through = result.generated_through.isoformat() if result.generated_through else "-"
        lines = [
            f"[bold]Días escritos:[/bold] {len(result.writes)}",
            f"[bold]Generado hasta:[/bold] {through}",
        ]
        for day, hours in sorted(result.conflicts.items()):
            lines.append(
                f"[yellow]Ocupado {day.isoformat()}:[/yellow] "
                + ", ".join(f"{h:02d}:00" for h in hours)
            )

        console.print(Panel.fit("\n".join(lines), title=f"Horario recurrente {gardener}"))

    except (GardenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def pending(
    gardener: Annotated[str, typer.Argument(help="Gardener id")],
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    List a gardener's open booking requests.
    """
    try:
        config = _setup(config_file, verbose)
        service = BookingService(
            _build_store(config),
            clock=_clock(config),
            pending_ttl_hours=config.bookings.pending_ttl_hours,
            trailing_margin_hours=config.bookings.trailing_margin_hours,
            working_day=config.working_day.to_domain(),
        )

        pending_requests = asyncio.run(service.list_pending_requests(gardener))

        if not pending_requests:
            console.print("[yellow]No hay solicitudes pendientes.[/yellow]")
            return

        table = Table(
            title=f"Solicitudes pendientes de {gardener}",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("ID", style="dim")
        table.add_column("Fecha", style="bold yellow")
        table.add_column("Hora")
        table.add_column("Cliente")
        table.add_column("Precio", justify="right")
        table.add_column("Caduca")

        for booking in pending_requests:
            expiry = booking.effective_expiry()
            table.add_row(
                booking.id,
                booking.date.isoformat(),
                f"{booking.start_time} +{booking.duration_hours}h",
                booking.client_id,
                f"{booking.total_price:.2f} €",
                expiry.in_timezone(config.timezone).format("DD.MM.YYYY HH:mm") if expiry else "-",
            )

        console.print()
        console.print(table)
        console.print()

    except (GardenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]gardenslots[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
