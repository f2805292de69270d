"""Shared output handlers for CLI commands."""

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from rich.console import Console
from rich.logging import RichHandler

console = Console()

JSON_INDENT = 2
QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "PIL", "supabase", "realtime", "websockets")


def setup_logging(verbose: bool = False) -> None:
    """Route log records through rich; INFO when verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=False)],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [to_jsonable(item) for item in data]
    return data


def handle_json_output(
    data: Any,
    output_path: Path | None,
    transformer: Callable[[Any], Any] | None = None,
) -> None:
    """Handle JSON format output.

    Args:
        data: Data to output (models are dumped in JSON mode)
        output_path: Optional file path to save output
        transformer: Optional function to transform data before serialization
    """
    output_data = transformer(data) if transformer else to_jsonable(data)
    json_content = json.dumps(output_data, indent=JSON_INDENT, default=str, ensure_ascii=False)

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json_content, encoding="utf-8")
        console.print(f"[bold green]✓ Saved to:[/bold green] {output_path}")
    else:
        print(json_content)
