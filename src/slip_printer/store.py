"""
Connection Persistence
======================

Durable single-slot storage for the last known good printer connection,
plus the list of ports the user has authorized.

Connection Record
-----------------
One JSON document, overwritten on every successful open:

    {
        "connected": true,
        "identity": {"vendorId": 1155, "productId": 22304,
                     "portName": "/dev/ttyACM0"},
        "savedIndex": 0,
        "timestamp": 1760870400.0
    }

``savedIndex`` is a zero-based index into the enumeration result at the
time of saving. Enumeration order is not guaranteed stable between runs,
so the index is a hint that is always re-validated by opening the port.

A record older than the staleness window (24 hours by default) is treated
as absent. A record that cannot be read or decoded is also treated as
absent: corruption is logged, never raised.
"""

import json
import logging
import math
import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Final, Optional

from slip_printer.comms.serial import PortInfo

# Configure module logger
logger = logging.getLogger(__name__)


# Default staleness window in seconds
DEFAULT_MAX_AGE: Final[float] = 24 * 60 * 60

# Fallback display name when the identity has no port name
UNKNOWN_PORT_NAME: Final[str] = "Connected Printer"


def write_json_atomic(path: Path, data: Any) -> None:
    """
    Write JSON to ``path`` through a temporary file and rename.

    A crash mid-write leaves either the old file or the new one, never
    a truncated document.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


# =============================================================================
# Connection Record
# =============================================================================

@dataclass(frozen=True)
class ConnectionIdentity:
    """
    Best-effort description of a printer port.

    Attributes:
        vendor_id: USB vendor id, when the port is USB
        product_id: USB product id, when the port is USB
        port_name: Device path or display name
    """

    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    port_name: str = UNKNOWN_PORT_NAME

    @classmethod
    def from_port_info(cls, info: PortInfo) -> "ConnectionIdentity":
        return cls(vendor_id=info.vid, product_id=info.pid, port_name=info.device)

    def matches(self, info: PortInfo) -> bool:
        """True when both USB ids are known and equal to the port's."""
        if self.vendor_id is None or self.product_id is None:
            return False
        return self.vendor_id == info.vid and self.product_id == info.pid

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendorId": self.vendor_id,
            "productId": self.product_id,
            "portName": self.port_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConnectionIdentity":
        vendor_id = data.get("vendorId")
        product_id = data.get("productId")
        for value in (vendor_id, product_id):
            if value is not None and not isinstance(value, int):
                raise ValueError(f"USB id must be an integer, got {value!r}")
        return cls(
            vendor_id=vendor_id,
            product_id=product_id,
            port_name=str(data.get("portName") or UNKNOWN_PORT_NAME),
        )


@dataclass(frozen=True)
class ConnectionRecord:
    """
    The persisted last-known-good connection.

    Attributes:
        connected: True when the record describes a live connection
        identity: Coarse port identity
        saved_index: Index into the enumeration result, -1 if unknown
        timestamp: Seconds since the epoch when the record was written
    """

    connected: bool
    identity: ConnectionIdentity = field(default_factory=ConnectionIdentity)
    saved_index: int = -1
    timestamp: float = field(default_factory=time.time)

    @property
    def saved_at(self) -> datetime:
        """Timestamp as a local datetime."""
        return datetime.fromtimestamp(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "identity": self.identity.to_dict(),
            "savedIndex": self.saved_index,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConnectionRecord":
        """
        Build a record from its JSON form.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError("record must be a JSON object")

        connected = data.get("connected")
        saved_index = data.get("savedIndex", -1)
        timestamp = data.get("timestamp")
        identity = data.get("identity") or {}

        if not isinstance(connected, bool):
            raise ValueError("'connected' must be a boolean")
        if isinstance(saved_index, bool) or not isinstance(saved_index, int):
            raise ValueError("'savedIndex' must be an integer")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("'timestamp' must be a number")
        if not math.isfinite(timestamp):
            raise ValueError(f"'timestamp' must be finite, got {timestamp!r}")
        if not isinstance(identity, dict):
            raise ValueError("'identity' must be an object")

        return cls(
            connected=connected,
            identity=ConnectionIdentity.from_dict(identity),
            saved_index=saved_index,
            timestamp=float(timestamp),
        )


class ConnectionStore:
    """
    Single-slot durable store for the connection record.

    This device family supports exactly one active printer at a time, so
    the store holds one record and every save overwrites it.

    Usage:
        store = ConnectionStore(Path("printer_connection.json"))
        store.save(ConnectionRecord(connected=True, saved_index=0))
        record = store.load()
        if record and store.is_fresh(record):
            ...
    """

    def __init__(
        self,
        path: Path,
        clock: Callable[[], float] = time.time,
        max_age: float = DEFAULT_MAX_AGE,
    ):
        """
        Initialize the store.

        Args:
            path: JSON file that holds the record.
            clock: Returns the current time in epoch seconds.
            max_age: Staleness window in seconds.
        """
        self.path = Path(path)
        self.clock = clock
        self.max_age = max_age

    def now(self) -> float:
        """Current time according to the store's clock."""
        return self.clock()

    def save(self, record: ConnectionRecord) -> None:
        """Overwrite the slot with ``record``."""
        write_json_atomic(self.path, record.to_dict())
        logger.debug(
            "Connection record saved: index=%d port=%s",
            record.saved_index, record.identity.port_name
        )

    def load(self) -> Optional[ConnectionRecord]:
        """
        Read the slot.

        Returns:
            The record, or None if nothing was saved or the file is
            unreadable. Corruption is logged and treated as absence.
        """
        if not self.path.exists():
            return None

        try:
            return ConnectionRecord.from_dict(_read_json(self.path))
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning("Ignoring unreadable connection record %s: %s", self.path, e)
            return None

    def clear(self) -> None:
        """Remove the record. Clearing an empty slot is a no-op."""
        try:
            self.path.unlink(missing_ok=True)
            logger.debug("Connection record cleared")
        except OSError as e:
            logger.warning("Failed to clear connection record: %s", e)

    def is_fresh(self, record: ConnectionRecord) -> bool:
        """Return True while ``record`` is younger than the staleness window."""
        return self.now() - record.timestamp < self.max_age


# =============================================================================
# Authorized Ports
# =============================================================================

class AuthorizedPorts:
    """
    Persistent list of ports the user has authorized.

    Order is the order of authorization; it defines enumeration order.
    Each entry stores the device path and, for USB ports, the ids and
    serial number so a device that moved to a new path can still be
    recognized.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> list[dict[str, Any]]:
        """Return the granted entries; unreadable files count as empty."""
        if not self.path.exists():
            return []
        try:
            entries = _read_json(self.path)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable port grants %s: %s", self.path, e)
            return []
        if not isinstance(entries, list):
            logger.warning("Ignoring malformed port grants %s", self.path)
            return []
        return [e for e in entries if isinstance(e, dict) and e.get("device")]

    def add(self, info: PortInfo) -> None:
        """Grant ``info``; an existing grant for the device is refreshed in place."""
        entry = {
            "device": info.device,
            "vid": info.vid,
            "pid": info.pid,
            "serialNumber": info.serial_number,
        }
        entries = self.load()
        for i, existing in enumerate(entries):
            if existing["device"] == info.device:
                entries[i] = entry
                break
        else:
            entries.append(entry)
        write_json_atomic(self.path, entries)

    def remove(self, device: str) -> None:
        entries = [e for e in self.load() if e["device"] != device]
        write_json_atomic(self.path, entries)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    @staticmethod
    def match(entry: dict[str, Any], present: list[PortInfo]) -> Optional[PortInfo]:
        """
        Find the present port that corresponds to a grant entry.

        Matches by device path first, then by USB serial number.
        """
        for info in present:
            if info.device == entry["device"]:
                return info

        serial_number = entry.get("serialNumber")
        if serial_number:
            for info in present:
                if (
                    info.serial_number == serial_number
                    and info.vid == entry.get("vid")
                    and info.pid == entry.get("pid")
                ):
                    return info

        return None
