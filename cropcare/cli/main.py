"""Main CLI entry point for CropCare."""

import typer

from cropcare.cli.commands.analyze import analyze_image
from cropcare.cli.commands.cache import cache_app
from cropcare.cli.commands.chat import chat
from cropcare.cli.commands.sync import show_queue, sync_now
from cropcare.cli.commands.translate import translate_text
from cropcare.cli.commands.weather import show_weather
from cropcare.cli.utils import VERBOSE_OPTION, setup_logging

app = typer.Typer(
    name="cropcare",
    help="CropCare - Crop disease analysis and farming assistant that keeps working offline",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


@app.callback()
def callback(verbose: VERBOSE_OPTION = False) -> None:
    """
    CropCare CLI
    """
    setup_logging(verbose)


app.command("analyze", help="Analyze a crop photo and show treatment recommendations")(analyze_image)
app.command("chat", help="Chat with the farming assistant")(chat)
app.command("sync", help="Send queued changes and refresh the offline cache")(sync_now)
app.command("queue", help="List changes waiting to sync")(show_queue)
app.command("translate", help="Translate text between supported languages")(translate_text)
app.command("weather", help="Weather and farming tips for a location")(show_weather)
app.add_typer(cache_app, name="cache")


if __name__ == "__main__":
    app()
