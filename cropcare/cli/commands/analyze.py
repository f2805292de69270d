"""Analyze crop image command implementation."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from cropcare.cli.utils import (
    LANGUAGE_OPTION,
    OUTPUT_FORMAT_OPTION,
    OUTPUT_PATH_OPTION,
    OutputFormat,
    handle_json_output,
    run_with_app,
)
from cropcare.config import load_config
from cropcare.media.camera import Camera, GallerySource
from cropcare.media.images import format_file_size, validate_image
from cropcare.models.analysis import AnalysisResult, LocationData
from cropcare.runtime import CropCareApp

console = Console()
logger = logging.getLogger(__name__)

SEVERITY_STYLES = {"low": "green", "moderate": "yellow", "high": "red", "critical": "bold red"}


def handle_table_output(result: AnalysisResult) -> None:
    """Handle table format output."""
    analysis = result.analysis
    if result.queued:
        console.print(f"[yellow]⚠ Offline: analysis {analysis.id} queued, it will run when you are back online[/yellow]")
        return

    severity = analysis.severity_level.value if analysis.severity_level else "-"
    table = Table(title=f"Analysis {analysis.id}", show_lines=True)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("Crop", analysis.crop_type)
    table.add_row("Status", analysis.status.value)
    table.add_row("Prediction", analysis.disease_prediction or "-")
    table.add_row("Confidence", f"{(analysis.confidence_score or 0) * 100:.0f}%")
    table.add_row("Severity", f"[{SEVERITY_STYLES.get(severity, 'white')}]{severity}[/]")

    recommendation = result.recommendation
    if recommendation:
        table.add_row("Treatment", "\n".join(f"• {step}" for step in recommendation.treatment_steps) or "-")
        table.add_row("Precautions", "\n".join(f"• {step}" for step in recommendation.precautionary_measures) or "-")
        table.add_row("Products", "\n".join(f"• {step}" for step in recommendation.products_recommended) or "-")
        table.add_row("Expert tips", "\n".join(f"• {step}" for step in recommendation.expert_tips) or "-")
        table.add_row("Timeline", recommendation.timeline or "-")
    console.print(table)

    if result.is_healthy:
        console.print("[green]Your crop looks healthy! 🌱[/green]")


def analyze_image(
    image: Annotated[Path, typer.Argument(help="Path to a JPEG, PNG or WebP image", exists=True, dir_okay=False)],
    crop_type: Annotated[str, typer.Option("--crop", "-c", help="Crop type, e.g. 'tomato'")],
    lat: Annotated[float | None, typer.Option("--lat", help="Latitude where the photo was taken")] = None,
    lng: Annotated[float | None, typer.Option("--lng", help="Longitude where the photo was taken")] = None,
    language: LANGUAGE_OPTION = None,
    output_format: OUTPUT_FORMAT_OPTION = OutputFormat.TABLE,
    output_path: OUTPUT_PATH_OPTION = None,
) -> None:
    """Upload a crop photo, run disease analysis and show the recommendations.

    When the backend is unreachable the analysis is queued and completed by the
    next 'cropcare sync'.
    """
    config = load_config()
    if language:
        config.language = language
    location = LocationData(lat=lat, lng=lng) if lat is not None and lng is not None else None

    async def _analyze(app: CropCareApp) -> AnalysisResult:
        await app.monitor.probe()
        data = await Camera(GallerySource(image)).capture()
        image_format = validate_image(data)
        console.print(f"[dim]{image.name}: {image_format}, {format_file_size(len(data))}[/dim]")
        with console.status("[bold blue]Analyzing...[/bold blue]", spinner="dots"):
            return await app.pipeline.analyze(data, crop_type, location)

    result = run_with_app(_analyze, config)

    if output_format == OutputFormat.JSON:
        handle_json_output(result, output_path)
    else:
        handle_table_output(result)
