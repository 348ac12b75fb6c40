"""
Transport Abstraction
=====================

This module defines the minimal capability the connection manager needs
from a serial transport, plus a pyserial-backed implementation.

Capability
----------
- ``enumerate()``: ports this process was previously authorized to use.
  No user interaction; an empty list is a normal result.
- ``request_new_port()``: ask the user to authorize a new port. Must be
  called as the direct continuation of a user action (a button press, a
  ``slipctl connect`` invocation).
- ``open(handle, params)``: open a port with explicit line parameters and
  return its readable/writable streams.
- ``close(handle)``: idempotent.

Writers
-------
A writable stream hands out at most one ``PortWriter`` at a time. While a
writer is live the stream is locked and ``get_writer()`` raises
WriterUnavailable. Closing the writer releases the lock.

Threading
---------
pyserial is blocking. SerialTransport runs every blocking call in a worker
thread with ``asyncio.to_thread`` so the event loop stays responsive while
bytes drain to the printer. The classes here are NOT safe to share across
event loops; the connection manager serializes all access.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import serial

from slip_printer.comms.serial import (
    DEFAULT_TIMEOUT,
    DEFAULT_WRITE_TIMEOUT,
    LineParameters,
    PortInfo,
    close_serial_port,
    list_serial_ports,
    open_serial_port,
    validate_port_settings,
)
from slip_printer.errors import (
    AuthorizationDenied,
    NoDeviceSelected,
    OpenFailed,
    WriteFailed,
    WriterUnavailable,
)
from slip_printer.store import AuthorizedPorts

# Configure module logger
logger = logging.getLogger(__name__)


# Chooser callback: receives the ports present on the system, returns the
# one the user picked, None when nothing was picked, or raises
# AuthorizationDenied when the user cancelled.
PortChooser = Callable[[list[PortInfo]], Optional[PortInfo]]


# =============================================================================
# Streams
# =============================================================================

class PortWriter:
    """
    Exclusive writer for an open port.

    Obtained from ``PortWritable.get_writer()``. Writes are forwarded to
    the underlying stream in call order.
    """

    def __init__(self, writable: "PortWritable"):
        self._writable = writable
        self._closed = False

    @property
    def closed(self) -> bool:
        """Return True once the writer has been released."""
        return self._closed

    async def write(self, data: bytes) -> None:
        """
        Write bytes to the device.

        Raises:
            WriteFailed: If the writer is closed or the device rejects
                the write.
        """
        if self._closed:
            raise WriteFailed("Writer is closed")
        await self._writable._write_bytes(bytes(data))

    async def close(self) -> None:
        """Flush and release the writer. Closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._writable._flush()
        finally:
            self._writable._release(self)


class PortWritable(ABC):
    """Writable side of an open port."""

    def __init__(self) -> None:
        self._writer: Optional[PortWriter] = None

    @property
    def locked(self) -> bool:
        """Return True while a writer is held."""
        return self._writer is not None

    def get_writer(self) -> PortWriter:
        """
        Acquire the exclusive writer.

        Raises:
            WriterUnavailable: If another writer is already held.
        """
        if self._writer is not None:
            raise WriterUnavailable("Writable stream is locked by another writer")
        self._writer = PortWriter(self)
        return self._writer

    def _release(self, writer: PortWriter) -> None:
        if self._writer is writer:
            self._writer = None

    @abstractmethod
    async def _write_bytes(self, data: bytes) -> None:
        """Send bytes to the device."""

    async def _flush(self) -> None:
        """Wait until buffered bytes have left the host."""


class PortReader(ABC):
    """Readable side of an open port."""

    @abstractmethod
    async def read(self, size: int = 1) -> bytes:
        """Read up to ``size`` bytes; returns b"" on timeout."""


@dataclass
class PortStreams:
    """Streams returned by ``Transport.open``. Either side may be None."""

    readable: Optional[PortReader]
    writable: Optional[PortWritable]


# =============================================================================
# Port Handles
# =============================================================================

class PortHandle:
    """
    Opaque reference to one serial endpoint.

    Handles are only created by a Transport. The same transport returns
    the same handle object for the same device for the life of the
    process, so handles can be compared with ``is``.

    Attributes:
        info: Descriptive information (device path, USB ids)
    """

    def __init__(self, info: PortInfo):
        self.info = info
        self._streams: Optional[PortStreams] = None
        self._params: Optional[LineParameters] = None

    @property
    def is_open(self) -> bool:
        """Return True while the port is open."""
        return self._streams is not None

    @property
    def readable(self) -> Optional[PortReader]:
        return self._streams.readable if self._streams else None

    @property
    def writable(self) -> Optional[PortWritable]:
        return self._streams.writable if self._streams else None

    @property
    def params(self) -> Optional[LineParameters]:
        """Line parameters the port is open with, or None when closed."""
        return self._params

    def __repr__(self) -> str:
        state = f"open at {self._params}" if self.is_open else "closed"
        return f"<{type(self).__name__} {self.info.device} {state}>"


# =============================================================================
# Transport Interface
# =============================================================================

class Transport(ABC):
    """
    Abstract serial transport.

    Any serial/USB abstraction with this shape can back the connection
    manager (tests use an in-memory implementation).
    """

    @abstractmethod
    async def enumerate(self) -> list[PortHandle]:
        """Return previously authorized ports. Never raises for 'no ports'."""

    @abstractmethod
    async def request_new_port(self) -> PortHandle:
        """
        Ask the user to authorize a new port.

        Raises:
            AuthorizationDenied: The user cancelled.
            NoDeviceSelected: Nothing was chosen.
        """

    @abstractmethod
    async def open(self, handle: PortHandle, params: LineParameters) -> PortStreams:
        """
        Open a port.

        Raises:
            OpenFailed: Device busy, parameters rejected, permission revoked.
        """

    @abstractmethod
    async def close(self, handle: PortHandle) -> None:
        """Close a port. Closing a closed handle is a no-op."""


# =============================================================================
# pyserial Implementation
# =============================================================================

class _SerialWritable(PortWritable):
    def __init__(self, port: serial.Serial):
        super().__init__()
        self._port = port

    async def _write_bytes(self, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._port.write, data)
        except (serial.SerialException, OSError) as e:
            raise WriteFailed(f"Write to {self._port.port} failed: {e}") from e

    async def _flush(self) -> None:
        try:
            await asyncio.to_thread(self._port.flush)
        except (serial.SerialException, OSError) as e:
            logger.warning("Error flushing %s: %s", self._port.port, e)


class _SerialReader(PortReader):
    def __init__(self, port: serial.Serial):
        self._port = port

    async def read(self, size: int = 1) -> bytes:
        return await asyncio.to_thread(self._port.read, size)


class SerialPortHandle(PortHandle):
    """PortHandle backed by a pyserial ``Serial`` object while open."""

    def __init__(self, info: PortInfo):
        super().__init__(info)
        self._serial: Optional[serial.Serial] = None

    def _attach(self, port: serial.Serial, params: LineParameters) -> PortStreams:
        self._serial = port
        self._params = params
        self._streams = PortStreams(
            readable=_SerialReader(port),
            writable=_SerialWritable(port),
        )
        return self._streams

    def _detach(self) -> Optional[serial.Serial]:
        port = self._serial
        self._serial = None
        self._streams = None
        self._params = None
        return port


class SerialTransport(Transport):
    """
    Transport over local serial ports via pyserial.

    Authorization is modelled with a persistent grant list: a port becomes
    "previously authorized" once the user picks it through the chooser,
    and stays so across program runs until revoked.

    Usage:
        transport = SerialTransport(
            grants_path=Path("~/.config/slip-printer/authorized_ports.json"),
            chooser=prompt_for_port,
        )
        handles = await transport.enumerate()
    """

    def __init__(
        self,
        grants_path: Path,
        chooser: Optional[PortChooser] = None,
        timeout: float = DEFAULT_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ):
        """
        Initialize the transport.

        Args:
            grants_path: JSON file holding authorized ports.
            chooser: Interactive port picker. Without one,
                request_new_port() always raises AuthorizationDenied.
            timeout: Read timeout passed to pyserial.
            write_timeout: Write timeout passed to pyserial.
        """
        self.grants = AuthorizedPorts(grants_path)
        self.chooser = chooser
        self.timeout = timeout
        self.write_timeout = write_timeout
        self._handles: dict[str, SerialPortHandle] = {}

    def _handle_for(self, info: PortInfo) -> SerialPortHandle:
        handle = self._handles.get(info.device)
        if handle is None:
            handle = SerialPortHandle(info)
            self._handles[info.device] = handle
        elif not handle.is_open:
            handle.info = info
        return handle

    async def enumerate(self) -> list[PortHandle]:
        present = await asyncio.to_thread(list_serial_ports)
        handles: list[PortHandle] = []

        for granted in self.grants.load():
            info = self.grants.match(granted, present)
            if info is not None:
                handles.append(self._handle_for(info))

        logger.debug(
            "Enumerated %d authorized port(s) of %d present",
            len(handles), len(present)
        )
        return handles

    async def request_new_port(self) -> PortHandle:
        if self.chooser is None:
            raise AuthorizationDenied(
                "No interactive port chooser is available"
            )

        present = await asyncio.to_thread(list_serial_ports)
        if not present:
            raise NoDeviceSelected("No serial ports found")

        choice = self.chooser(present)
        if choice is None:
            raise NoDeviceSelected()

        try:
            self.grants.add(choice)
        except OSError as e:
            # Usable for this session, just not remembered for the next one
            logger.warning("Could not save port authorization for %s: %s", choice.device, e)
        else:
            logger.info("Authorized port: %s", choice)
        return self._handle_for(choice)

    async def open(self, handle: PortHandle, params: LineParameters) -> PortStreams:
        if not isinstance(handle, SerialPortHandle):
            raise OpenFailed("handle does not belong to this transport")
        if handle.is_open:
            raise OpenFailed("port is already open", device=handle.info.device)

        port = await asyncio.to_thread(
            open_serial_port,
            handle.info.device,
            params,
            self.timeout,
            self.write_timeout,
        )
        if not validate_port_settings(port, params):
            logger.warning(
                "%s did not take %s; the printer may print garbage",
                handle.info.device, params
            )
        return handle._attach(port, params)

    async def close(self, handle: PortHandle) -> None:
        if not isinstance(handle, SerialPortHandle) or not handle.is_open:
            return
        port = handle._detach()
        await asyncio.to_thread(close_serial_port, port)

    def revoke(self, handle: PortHandle) -> None:
        """Remove one port from the authorized list."""
        self.grants.remove(handle.info.device)
        self._handles.pop(handle.info.device, None)

    def forget_all(self) -> None:
        """Remove every authorized port."""
        self.grants.clear()
        self._handles = {
            device: handle
            for device, handle in self._handles.items()
            if handle.is_open
        }
