"""Chat with the farming assistant."""

import asyncio
from typing import Annotated

import typer
from rich.console import Console

from cropcare.cli.utils import LANGUAGE_OPTION, run_with_app
from cropcare.config import load_config
from cropcare.exceptions import APIError, TransientNetworkError, ValidationError
from cropcare.models.chat import Role
from cropcare.runtime import CropCareApp
from cropcare.services.chat import AssistantChannel

console = Console()

EXIT_WORDS = {"exit", "quit", ":q"}


async def _ask(channel: AssistantChannel, message: str) -> None:
    try:
        sent = await channel.send(message)
    except (APIError, TransientNetworkError, ValidationError) as e:
        console.print(f"[red]✗ {channel.error or e}[/red]")
        return
    if sent is None:
        return
    reply = channel.transcript[-1]
    if reply.role == Role.ASSISTANT:
        console.print(f"[bold green]Assistant:[/bold green] {reply.content}")


def chat(
    message: Annotated[str | None, typer.Argument(help="Send one message and exit")] = None,
    history: Annotated[bool, typer.Option("--history", help="Show the saved conversation first")] = False,
    language: LANGUAGE_OPTION = None,
) -> None:
    """Talk to the CropCare assistant. Without a message, starts an interactive session."""
    config = load_config()
    if language:
        config.language = language

    async def _chat(app: CropCareApp) -> None:
        await app.monitor.probe()
        channel = app.chat

        if history:
            await channel.load_history()
        for entry in channel.transcript:
            label = "[bold cyan]You:[/bold cyan]" if entry.role == Role.USER else "[bold green]Assistant:[/bold green]"
            console.print(f"{label} {entry.content}")

        if message:
            await _ask(channel, message)
            return

        while True:
            text = await asyncio.to_thread(typer.prompt, "You", default="", show_default=False)
            if text.strip().lower() in EXIT_WORDS or not text.strip():
                break
            if text.strip() == "/retry":
                await channel.retry_last()
                continue
            if text.strip() == "/clear":
                channel.clear()
                console.print(f"[bold green]Assistant:[/bold green] {channel.transcript[0].content}")
                continue
            await _ask(channel, text)

    run_with_app(_chat, config)
