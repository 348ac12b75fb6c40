"""
Connection Manager
==================

This module implements the printer connection state machine. One
ConnectionManager instance owns the process-wide session: the open port
handle, its exclusive writer and the index it was found at. All mutation
goes through its methods.

State Machine
-------------
    ┌──────┐  quick_reconnect / connect   ┌──────┐
    │ IDLE │ ───────────────────────────► │ OPEN │ ◄─┐ negotiate_baud
    └──────┘ ◄─────────────────────────── └──────┘ ──┘
       ▲        disconnect / force_reset      │
       │                                      │ write fails
       │        ┌──────────┐                  │
       └─────── │ DEGRADED │ ◄────────────────┘
   disconnect / └──────────┘
   force_reset / reconnect

- IDLE: nothing open
- OPEN: port open and the exclusive writer held
- DEGRADED: port open but no usable writer (reachable but unusable)

Candidate Scan
--------------
Quick reconnect and full connect both scan previously authorized ports:

1. The port at the saved index, if the index is within bounds
2. Every other enumerated port, in enumeration order

Each candidate is opened at the family default (9600 8N1, no flow control)
and its writer acquired. A port that opens but yields no writer is closed
and counted as a failed candidate. The first candidate that produces both
wins, and the index it was found at is saved.

Error Reporting
---------------
Printer absence is an ordinary runtime condition, so the public
operations never raise the connection taxonomy. Failures come back as a
ConnectionStatus whose ``code`` names the error class:

    status = await manager.quick_reconnect()
    if not status.connected:
        print(status.error)   # "NoPersistentConnection: ..."

Concurrency
-----------
Every transition and every write job runs under one asyncio.Lock, so two
transitions can never race an open and two jobs can never interleave
bytes on the wire.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Final, Iterable, Optional

from slip_printer.comms.serial import (
    NEGOTIATION_BAUD_RATES,
    LineParameters,
)
from slip_printer.comms.transport import PortHandle, PortWriter, Transport
from slip_printer.errors import (
    AllCandidatesFailed,
    ConnectionError,
    NoPersistentConnection,
    NotConnectedError,
    PrinterError,
    WriteFailed,
    WriterUnavailable,
)
from slip_printer.protocol.escpos import INITIALIZE
from slip_printer.store import ConnectionIdentity, ConnectionRecord, ConnectionStore

# Configure module logger
logger = logging.getLogger(__name__)


# Minimal write used to confirm a baud rate: initialize + a short line
NEGOTIATION_PROBE: Final[bytes] = INITIALIZE + b"Test\r\n"


# =============================================================================
# Status Types
# =============================================================================

class ConnectionState(Enum):
    """Live state of the connection session."""

    IDLE = "idle"
    OPEN = "open"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class ConnectionStatus:
    """
    Structured result of a connection operation.

    Attributes:
        connected: True when the session is OPEN after the operation
        error: "<code>: <message>" on failure, None on success
        code: Error class name from the connection taxonomy
        port_index: Enumeration index of the open port, -1 if unknown
        baud_rate: Baud rate the port is open at
    """

    connected: bool
    error: Optional[str] = None
    code: Optional[str] = None
    port_index: Optional[int] = None
    baud_rate: Optional[int] = None

    @classmethod
    def failure(cls, error: PrinterError) -> "ConnectionStatus":
        return cls(connected=False, error=f"{error.code}: {error}", code=error.code)


@dataclass(frozen=True)
class PersistentConnectionInfo:
    """Display information about the saved connection."""

    port_name: str
    connected_at: datetime


@dataclass(frozen=True)
class ConnectionDetails:
    """
    Diagnostic snapshot of the session.

    Attributes:
        status: Human-readable one-line summary
        state: Current ConnectionState
        has_port: A port handle is held
        has_writer: The exclusive writer is held
        readable: The port exposes a readable stream
        writable: The port exposes a writable stream
    """

    status: str
    state: ConnectionState
    has_port: bool
    has_writer: bool
    readable: bool
    writable: bool


# =============================================================================
# Connection Manager
# =============================================================================

class ConnectionManager:
    """
    Owner of the printer connection session.

    Usage:
        manager = ConnectionManager(transport, store)

        status = await manager.quick_reconnect()
        if not status.connected:
            status = await manager.connect()     # may prompt the user

        await manager.write_job([b"\\x1b@", b"Hello\\n"])
        await manager.disconnect()
    """

    def __init__(
        self,
        transport: Transport,
        store: ConnectionStore,
        params: Optional[LineParameters] = None,
        negotiation_bauds: Iterable[int] = NEGOTIATION_BAUD_RATES,
    ):
        """
        Initialize the manager.

        Args:
            transport: Serial transport used for every port operation.
            store: Persistence for the last known good connection.
            params: Line parameters for every connect path (9600 8N1).
            negotiation_bauds: Rates tried, in order, by negotiate_baud().
        """
        self.transport = transport
        self.store = store
        self.params = params or LineParameters()
        self.negotiation_bauds = tuple(negotiation_bauds)

        self._lock = asyncio.Lock()
        self._handle: Optional[PortHandle] = None
        self._writer: Optional[PortWriter] = None
        self._index: int = -1

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        if self._handle is None:
            return ConnectionState.IDLE
        if self._writer is None or self._writer.closed:
            return ConnectionState.DEGRADED
        return ConnectionState.OPEN

    @property
    def busy(self) -> bool:
        """Return True while a transition or write job is in flight."""
        return self._lock.locked()

    @property
    def handle(self) -> Optional[PortHandle]:
        return self._handle

    def is_connected(self) -> bool:
        return self.state is ConnectionState.OPEN

    def has_persistent_connection(self) -> bool:
        """Return True when a fresh, connected record is saved."""
        record = self.store.load()
        return bool(record and record.connected and self.store.is_fresh(record))

    def get_persistent_connection_info(self) -> Optional[PersistentConnectionInfo]:
        """Port name and save time of the fresh record, or None."""
        if not self.has_persistent_connection():
            return None
        record = self.store.load()
        if record is None:
            return None
        return PersistentConnectionInfo(
            port_name=record.identity.port_name,
            connected_at=record.saved_at,
        )

    def connection_details(self) -> ConnectionDetails:
        state = self.state
        handle = self._handle

        if state is ConnectionState.OPEN:
            summary = f"Connected to {handle.info.device} at {handle.params}"
        elif state is ConnectionState.DEGRADED:
            summary = f"Port {handle.info.device} open but writer unavailable"
        else:
            summary = "Not connected"

        return ConnectionDetails(
            status=summary,
            state=state,
            has_port=handle is not None,
            has_writer=state is ConnectionState.OPEN,
            readable=bool(handle and handle.readable is not None),
            writable=bool(handle and handle.writable is not None),
        )

    def _connected_status(self) -> ConnectionStatus:
        params = self._handle.params if self._handle else None
        return ConnectionStatus(
            connected=True,
            port_index=self._index,
            baud_rate=params.baud_rate if params else None,
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def quick_reconnect(self) -> ConnectionStatus:
        """
        Reconnect using only previously authorized ports.

        Never prompts the user. Requires a fresh saved record.

        Returns:
            ConnectionStatus; on failure ``code`` is NoPersistentConnection
            or AllCandidatesFailed.
        """
        async with self._lock:
            if self.is_connected():
                return self._connected_status()
            await self._teardown_degraded()

            try:
                record = self.store.load()
                if record is None or not record.connected:
                    raise NoPersistentConnection("No saved printer connection")
                if not self.store.is_fresh(record):
                    raise NoPersistentConnection("Saved printer connection has expired")

                ports = await self.transport.enumerate()
                if not ports:
                    raise NoPersistentConnection("No previously authorized ports found")

                await self._scan(ports, record.saved_index)
            except ConnectionError as e:
                logger.info("Quick reconnect failed: %s", e)
                return ConnectionStatus.failure(e)

            logger.info("Quick reconnect succeeded on port index %d", self._index)
            return self._connected_status()

    async def connect(self, force_prompt: bool = False) -> ConnectionStatus:
        """
        Connect, prompting the user for a port when no known port works.

        Must be called as the continuation of a user action because it
        may invoke the transport's port chooser.

        Args:
            force_prompt: Drop the current session and go straight to the
                port chooser, skipping the scan of known ports.

        Returns:
            ConnectionStatus for the attempt.
        """
        async with self._lock:
            if force_prompt:
                await self._force_teardown()
            elif self.is_connected():
                return self._connected_status()
            await self._teardown_degraded()

            try:
                if not force_prompt and await self._try_known_ports():
                    logger.info("Connected to a previously authorized port")
                    return self._connected_status()

                handle = await self.transport.request_new_port()
                await self._open_candidate(handle)

                # The chosen port may be absent from any earlier snapshot
                ports = await self.transport.enumerate()
                self._index = self._find_index(handle, ports)
                self._save()
            except ConnectionError as e:
                logger.info("Connect failed: %s", e)
                return ConnectionStatus.failure(e)

            logger.info("Connected to %s", self._handle.info.device)
            return self._connected_status()

    async def disconnect(self) -> ConnectionStatus:
        """
        Close the writer and port and clear the saved record.

        Idempotent. Errors while closing are logged and do not stop the
        teardown.
        """
        async with self._lock:
            await self._release(log_errors=True)
            self.store.clear()
            logger.info("Disconnected")
            return ConnectionStatus(connected=False)

    async def force_reset(self) -> ConnectionStatus:
        """
        Drop the in-memory session, ignoring every error.

        The saved record is kept so a quick reconnect can follow.
        """
        async with self._lock:
            await self._force_teardown()
            logger.info("Connection state reset")
            return ConnectionStatus(connected=False)

    async def negotiate_baud(self, probe: bytes = NEGOTIATION_PROBE) -> ConnectionStatus:
        """
        Find a baud rate the printer accepts.

        Diagnostic only, never run automatically. For each rate the held
        port is closed, reopened at that rate, its writer re-acquired and
        ``probe`` written. The first rate whose write completes is kept.
        When every rate fails the port is closed and the state is IDLE.

        Returns:
            ConnectionStatus with ``baud_rate`` set on success.
        """
        async with self._lock:
            handle = self._handle
            if handle is None:
                return ConnectionStatus.failure(NotConnectedError())
            index = self._index

            last_error: Optional[PrinterError] = None
            for baud in self.negotiation_bauds:
                await self._release(log_errors=False)
                logger.debug("Trying baud rate %d", baud)
                try:
                    await self._open_candidate(handle, self.params.with_baud(baud))
                    await self._writer.write(probe)
                except (ConnectionError, WriteFailed) as e:
                    logger.debug("Baud rate %d failed: %s", baud, e)
                    last_error = e
                    continue

                self._index = index
                logger.info("Printer responded at %d baud", baud)
                return self._connected_status()

            await self._release(log_errors=False)
            logger.warning("Baud negotiation failed on every rate")
            return ConnectionStatus.failure(
                AllCandidatesFailed(
                    len(self.negotiation_bauds),
                    last_error,
                    message="No baud rate produced a successful write",
                )
            )

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    async def write_job(self, chunks: Iterable[bytes]) -> None:
        """
        Write one job's chunks in order, exclusively.

        Raises:
            NotConnectedError: If the session is not OPEN.
            WriteFailed: If the device rejected a write. The writer is
                dropped and the session becomes DEGRADED.
        """
        async with self._lock:
            if not self.is_connected():
                raise NotConnectedError()
            try:
                for chunk in chunks:
                    await self._writer.write(chunk)
            except WriteFailed:
                logger.warning("Write failed, connection is degraded")
                await self._drop_writer()
                raise

    async def verify_connection(self) -> bool:
        """Send the initialization sequence; True if the write completes."""
        try:
            await self.write_job([INITIALIZE])
        except (NotConnectedError, WriteFailed) as e:
            logger.warning("Connection verification failed: %s", e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Internals (called with the lock held)
    # -------------------------------------------------------------------------

    async def _try_known_ports(self) -> bool:
        ports = await self.transport.enumerate()
        if not ports:
            return False

        saved_index = -1
        record = self.store.load()
        if record is not None and self.store.is_fresh(record):
            saved_index = record.saved_index

        try:
            await self._scan(ports, saved_index)
        except AllCandidatesFailed as e:
            logger.debug("Known ports exhausted: %s", e)
            return False
        return True

    async def _scan(self, ports: list[PortHandle], saved_index: int) -> None:
        """
        Try candidates in order; leave the session OPEN on the winner.

        Raises:
            AllCandidatesFailed: If no candidate produced a writer.
        """
        order = list(range(len(ports)))
        if 0 <= saved_index < len(ports):
            order.remove(saved_index)
            order.insert(0, saved_index)

        last_error: Optional[ConnectionError] = None
        for index in order:
            handle = ports[index]
            logger.debug("Trying port %d: %s", index, handle.info.device)
            try:
                await self._open_candidate(handle)
            except ConnectionError as e:
                logger.debug("Port %d failed: %s", index, e)
                last_error = e
                continue

            self._index = index
            self._save()
            return

        raise AllCandidatesFailed(len(order), last_error)

    async def _open_candidate(
        self,
        handle: PortHandle,
        params: Optional[LineParameters] = None,
    ) -> None:
        """
        Open ``handle`` and acquire its writer.

        A port that opens without a writer is closed before raising, so a
        failed candidate never stays open.

        Raises:
            OpenFailed: The transport refused to open the port.
            WriterUnavailable: The port opened but yielded no writer.
        """
        streams = await self.transport.open(handle, params or self.params)
        try:
            if streams.writable is None:
                raise WriterUnavailable()
            writer = streams.writable.get_writer()
        except WriterUnavailable:
            await self.transport.close(handle)
            raise

        self._handle = handle
        self._writer = writer

    def _save(self) -> None:
        record = ConnectionRecord(
            connected=True,
            identity=ConnectionIdentity.from_port_info(self._handle.info),
            saved_index=self._index,
            timestamp=self.store.now(),
        )
        try:
            self.store.save(record)
        except OSError as e:
            logger.warning("Could not save connection record: %s", e)

    @staticmethod
    def _find_index(handle: PortHandle, ports: list[PortHandle]) -> int:
        for index, candidate in enumerate(ports):
            if candidate is handle:
                return index

        identity = ConnectionIdentity.from_port_info(handle.info)
        for index, candidate in enumerate(ports):
            if identity.matches(candidate.info):
                return index

        return -1

    async def _drop_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is not None:
            try:
                await writer.close()
            except PrinterError as e:
                logger.debug("Error releasing writer: %s", e)

    async def _release(self, log_errors: bool) -> None:
        """Close writer then port, continuing past errors."""
        writer, handle = self._writer, self._handle
        self._writer = None
        self._handle = None
        self._index = -1

        if writer is not None:
            try:
                await writer.close()
            except (PrinterError, OSError) as e:
                if log_errors:
                    logger.warning("Error closing writer: %s", e)
        if handle is not None:
            try:
                await self.transport.close(handle)
            except (PrinterError, OSError) as e:
                if log_errors:
                    logger.warning("Error closing port: %s", e)

    async def _teardown_degraded(self) -> None:
        if self.state is ConnectionState.DEGRADED:
            logger.debug("Tearing down degraded session")
            await self._release(log_errors=False)

    async def _force_teardown(self) -> None:
        try:
            await self._release(log_errors=False)
        except Exception as e:
            logger.debug("Ignored error during reset: %s", e)
        finally:
            self._writer = None
            self._handle = None
            self._index = -1
