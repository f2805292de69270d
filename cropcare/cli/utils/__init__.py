"""CLI utilities module."""

from cropcare.cli.utils.context import run_with_app
from cropcare.cli.utils.options import (
    LANGUAGE_OPTION,
    OUTPUT_FORMAT_OPTION,
    OUTPUT_PATH_OPTION,
    VERBOSE_OPTION,
    OutputFormat,
)
from cropcare.cli.utils.output import handle_json_output, setup_logging

__all__ = [
    "LANGUAGE_OPTION",
    "OUTPUT_FORMAT_OPTION",
    "OUTPUT_PATH_OPTION",
    "VERBOSE_OPTION",
    "OutputFormat",
    "handle_json_output",
    "run_with_app",
    "setup_logging",
]
