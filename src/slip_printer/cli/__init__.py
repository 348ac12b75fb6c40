"""
Slip Printer Command-Line Interface
===================================

This package provides the command-line tool for the slip printer:

- **slipctl**: connect to, diagnose and print on a serial thermal printer

The tool is a Click-based CLI application with help text and
consistent exit codes (see ``slip_printer.cli.errors``).
"""

__all__ = ["slipctl"]
