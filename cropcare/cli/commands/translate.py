"""Translate text command implementation."""

from typing import Annotated

import typer
from rich.console import Console

from cropcare.cli.utils import run_with_app
from cropcare.core.constants import SUPPORTED_LANGUAGES
from cropcare.runtime import CropCareApp
from cropcare.services.translation import detect_language

console = Console()


def translate_text(
    texts: Annotated[list[str], typer.Argument(help="Text to translate (several arguments are translated together)")],
    target: Annotated[str, typer.Option("--to", "-t", help=f"Target language ({', '.join(SUPPORTED_LANGUAGES)})")] = "hi",
    source: Annotated[str | None, typer.Option("--from", "-s", help="Source language (detected by the service if omitted)")] = None,
    detect: Annotated[bool, typer.Option("--detect", help="Only print the detected language")] = False,
) -> None:
    """Translate farming text between supported languages."""
    if detect:
        for text in texts:
            console.print(f"{detect_language(text)}\t{text}")
        return

    async def _translate(app: CropCareApp) -> list[str]:
        await app.monitor.probe()
        if len(texts) == 1:
            return [await app.translator.translate(texts[0], target, source)]
        return await app.translator.translate_batch(texts, target, source)

    for translated in run_with_app(_translate, status="Translating..."):
        console.print(translated)
