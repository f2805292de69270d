"""Weather report command implementation."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from cropcare.cli.utils import OUTPUT_FORMAT_OPTION, OUTPUT_PATH_OPTION, OutputFormat, handle_json_output, run_with_app
from cropcare.models.weather import WeatherReport
from cropcare.runtime import CropCareApp

console = Console()

TIP_STYLES = {"warning": "red", "action": "yellow", "info": "cyan"}


def handle_table_output(report: WeatherReport, name: str | None) -> None:
    """Handle table format output."""
    current = report.current
    console.print(
        f"[bold]{name or 'Current location'}[/bold] | {current.temperature:.0f}°C "
        f"(feels {current.feels_like:.0f}°C) | {current.condition} | humidity {current.humidity:.0f}%"
    )

    if report.forecast:
        table = Table(title="Forecast", show_lines=False)
        table.add_column("Day")
        table.add_column("High", justify="right")
        table.add_column("Low", justify="right")
        table.add_column("Condition")
        table.add_column("Rain", justify="right")
        for day in report.forecast:
            table.add_row(day.day, f"{day.high:.0f}°", f"{day.low:.0f}°", day.condition, f"{day.precipitation:.0f}%")
        console.print(table)

    for alert in report.alerts:
        console.print(f"[bold red]⚠ {alert.title}[/bold red]: {alert.description}")
    for tip in report.farming_tips:
        console.print(f"[{TIP_STYLES[tip.type]}]• {tip.title}[/]: {tip.description}")


def show_weather(
    lat: Annotated[float, typer.Option("--lat", help="Latitude")],
    lon: Annotated[float, typer.Option("--lon", help="Longitude")],
    name: Annotated[str | None, typer.Option("--name", help="Location name")] = None,
    refresh: Annotated[bool, typer.Option("--refresh", help="Ignore the 30-minute cache")] = False,
    output_format: OUTPUT_FORMAT_OPTION = OutputFormat.TABLE,
    output_path: OUTPUT_PATH_OPTION = None,
) -> None:
    """Show weather and farming advice for a location."""

    async def _weather(app: CropCareApp) -> WeatherReport:
        await app.monitor.probe()
        return await app.weather.fetch(lat, lon, name, refresh=refresh)

    report = run_with_app(_weather, status="Fetching weather...")
    if output_format == OutputFormat.JSON:
        handle_json_output(report.model_dump(mode="json", by_alias=True), output_path)
    else:
        handle_table_output(report, name)
