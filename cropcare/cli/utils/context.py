"""Runs a command body against a connected application."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console

from cropcare.config import Config, load_config
from cropcare.exceptions import ConfigurationError, CropCareError
from cropcare.runtime import CropCareApp

console = Console()

T = TypeVar("T")


def run_with_app(
    work: Callable[[CropCareApp], Awaitable[T]],
    config: Config | None = None,
    status: str = "Connecting...",
) -> T:
    """Connect, run ``work`` and always close the application.

    Errors from the library are printed and turned into exit code 1.
    """

    async def _run() -> T:
        with console.status(f"[bold blue]{status}[/bold blue]", spinner="dots"):
            app = await CropCareApp.from_config(config or load_config())
        try:
            return await work(app)
        finally:
            await app.aclose()

    try:
        return asyncio.run(_run())
    except ConfigurationError as e:
        console.print(f"[red]✗ {e}[/red]")
        console.print("[dim]Set CROPCARE_SUPABASE_URL and CROPCARE_SUPABASE_ANON_KEY (or a .env file).[/dim]")
        raise typer.Exit(1) from e
    except CropCareError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from e
