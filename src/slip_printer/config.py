"""
Slip Printer - Configuration
============================

Runtime configuration: state file locations, serial defaults and print
timing. Configuration can come from:
- Default values (defined here)
- Environment variables (``PrinterConfig.from_env``)
- Command-line options (applied by slipctl on top of the above)

Environment Variables
---------------------
SLIP_PRINTER_STATE_DIR      Directory for the connection record and grants
SLIP_PRINTER_BAUD           Default baud rate (9600)
SLIP_PRINTER_MAX_AGE_HOURS  Staleness window for the connection record (24)
SLIP_PRINTER_JOB_DELAY      Seconds between jobs in a batch print (5)
SLIP_PRINTER_ENCODING       Text encoding sent to the printer (utf-8)
SLIP_PRINTER_WRITE_TIMEOUT  pyserial write timeout in seconds (5)
"""

import codecs
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional, TypeVar

import click

from slip_printer.comms.serial import (
    DEFAULT_BAUD_RATE,
    DEFAULT_WRITE_TIMEOUT,
    NEGOTIATION_BAUD_RATES,
    VALID_BAUD_RATES,
)
from slip_printer.errors import ConfigError

APP_NAME = "slip-printer"

RECORD_FILENAME = "printer_connection.json"
GRANTS_FILENAME = "authorized_ports.json"

T = TypeVar("T")


def default_state_dir() -> Path:
    """Per-user application directory (platform specific)."""
    return Path(click.get_app_dir(APP_NAME))


@dataclass
class PrinterConfig:
    """
    Configuration for the printer service.

    Attributes:
        state_dir: Where the connection record and port grants live
        default_baud: Baud rate used by every connect path
        negotiation_bauds: Rates tried, in order, by baud negotiation
        max_record_age_hours: Connection records older than this are stale
        inter_job_delay: Seconds to wait between jobs of a batch print
        encoding: Codec used for text sent to the printer
        write_timeout: pyserial write timeout in seconds
    """

    state_dir: Path = field(default_factory=default_state_dir)
    default_baud: int = DEFAULT_BAUD_RATE
    negotiation_bauds: tuple[int, ...] = NEGOTIATION_BAUD_RATES
    max_record_age_hours: float = 24.0
    inter_job_delay: float = 5.0
    encoding: str = "utf-8"
    write_timeout: float = DEFAULT_WRITE_TIMEOUT

    def __post_init__(self) -> None:
        self.state_dir = Path(self.state_dir).expanduser()
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigError: If any value is out of range.
        """
        if self.default_baud not in VALID_BAUD_RATES:
            raise ConfigError(f"Unsupported baud rate: {self.default_baud}")
        for baud in self.negotiation_bauds:
            if baud not in VALID_BAUD_RATES:
                raise ConfigError(f"Unsupported negotiation baud rate: {baud}")
        if self.max_record_age_hours <= 0:
            raise ConfigError("max_record_age_hours must be positive")
        if self.inter_job_delay < 0:
            raise ConfigError("inter_job_delay cannot be negative")
        if self.write_timeout <= 0:
            raise ConfigError("write_timeout must be positive")
        try:
            codecs.lookup(self.encoding)
        except LookupError:
            raise ConfigError(f"Unknown encoding: {self.encoding}") from None

    # ─────────────────────────────────────────────────────────────────────────
    # Derived values
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def record_path(self) -> Path:
        return self.state_dir / RECORD_FILENAME

    @property
    def grants_path(self) -> Path:
        return self.state_dir / GRANTS_FILENAME

    @property
    def max_record_age(self) -> float:
        """Staleness window in seconds."""
        return self.max_record_age_hours * 3600

    # ─────────────────────────────────────────────────────────────────────────
    # Construction
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PrinterConfig":
        """
        Build a configuration from defaults plus environment overrides.

        Args:
            environ: Mapping to read instead of os.environ (for tests).

        Raises:
            ConfigError: If a variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        state_dir = env.get("SLIP_PRINTER_STATE_DIR")
        if state_dir:
            kwargs["state_dir"] = Path(state_dir)

        _read(env, "SLIP_PRINTER_BAUD", int, kwargs, "default_baud")
        _read(env, "SLIP_PRINTER_MAX_AGE_HOURS", float, kwargs, "max_record_age_hours")
        _read(env, "SLIP_PRINTER_JOB_DELAY", float, kwargs, "inter_job_delay")
        _read(env, "SLIP_PRINTER_WRITE_TIMEOUT", float, kwargs, "write_timeout")

        encoding = env.get("SLIP_PRINTER_ENCODING")
        if encoding:
            kwargs["encoding"] = encoding

        return cls(**kwargs)


def _read(
    env: Mapping[str, str],
    name: str,
    convert: Callable[[str], T],
    kwargs: dict,
    key: str,
) -> None:
    raw = env.get(name)
    if raw is None or raw == "":
        return
    try:
        kwargs[key] = convert(raw)
    except ValueError:
        raise ConfigError(f"{name}: cannot parse {raw!r}") from None
