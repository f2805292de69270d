"""Shared CLI options and enums for commands."""

from enum import StrEnum
from pathlib import Path
from typing import Annotated

import typer


class OutputFormat(StrEnum):
    """Supported output formats across commands."""

    TABLE = "table"
    JSON = "json"


OUTPUT_PATH_OPTION = Annotated[
    Path | None,
    typer.Option(
        "--output",
        "-o",
        help="Write JSON output to this file instead of stdout",
    ),
]

OUTPUT_FORMAT_OPTION = Annotated[
    OutputFormat,
    typer.Option(
        "--format",
        "-f",
        help="Output format",
        case_sensitive=False,
    ),
]

LANGUAGE_OPTION = Annotated[
    str | None,
    typer.Option(
        "--language",
        "-l",
        help="Response language (auto-detected from CROPCARE_LANGUAGE env var)",
    ),
]

VERBOSE_OPTION = Annotated[
    bool,
    typer.Option(
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
]
