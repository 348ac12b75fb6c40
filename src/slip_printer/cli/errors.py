"""
Unified CLI Error Handling
==========================

Provides consistent error handling and exit codes for slipctl.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn, Optional

import click

from slip_printer.errors import ConfigError, DocumentError, PrinterError


class ExitCode(IntEnum):
    """Standard exit codes for slipctl."""
    SUCCESS = 0
    PRINTER_ERROR = 1    # Connection, write or print failure
    INVALID_ARGS = 2     # Invalid arguments, config or input files
    INTERNAL_ERROR = 3   # Unexpected internal error


def fail(message: str, code: ExitCode = ExitCode.PRINTER_ERROR) -> NoReturn:
    """Print ``message`` to stderr and exit with ``code``."""
    click.echo(message, err=True)
    sys.exit(code)


def handle_cli_exception(
    error: Exception,
    verbose: bool = False,
    error_type: Optional[str] = None
) -> NoReturn:
    """
    Unified exception handler for slipctl commands.

    Formats the error message appropriately, optionally prints traceback
    in verbose mode, and exits with the correct exit code.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors
        error_type: Optional prefix for the error message (e.g., "Print")

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    prefix = f"{error_type} error: " if error_type else "Error: "

    if isinstance(error, (ConfigError, DocumentError)):
        # Bad configuration or malformed input document
        click.echo(f"{prefix}{error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, PrinterError):
        click.echo(f"{prefix}{error}", err=True)
        sys.exit(ExitCode.PRINTER_ERROR)

    elif isinstance(error, click.BadParameter):
        # Invalid command-line arguments
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (FileNotFoundError, PermissionError)):
        # Missing or unreadable input files
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        # Unexpected internal error
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
