"""
Slip Printer Tests - Shared Fixtures
====================================

In-memory transport and helpers shared by the test modules.

FakeTransport behaves like a serial transport without hardware:
- ``authorized`` is what enumerate() returns
- ``available`` is what the port chooser may pick from
- Per-device failure sets decide which opens fail, which ports open
  without a writer and which baud rates reject writes

Every call is recorded so tests can assert on ordering.
"""

import asyncio
from typing import Callable, Optional

import pytest

from slip_printer.comms.serial import LineParameters, PortInfo
from slip_printer.comms.transport import (
    PortHandle,
    PortStreams,
    PortWritable,
    PortWriter,
    Transport,
)
from slip_printer.errors import NoDeviceSelected, OpenFailed, WriteFailed
from slip_printer.manager import ConnectionManager
from slip_printer.store import ConnectionStore


# ═══════════════════════════════════════════════════════════════════════════════
# FAKE TRANSPORT
# ═══════════════════════════════════════════════════════════════════════════════


class RecordingWritable(PortWritable):
    """Writable that records every chunk, optionally failing writes."""

    def __init__(self, log: list, fail_writes: bool = False, locked: bool = False):
        super().__init__()
        self.log = log
        self.fail_writes = fail_writes
        if locked:
            # Another writer already holds the stream
            self._writer = PortWriter(self)

    async def _write_bytes(self, data: bytes) -> None:
        if self.fail_writes:
            raise WriteFailed("device rejected write")
        # Yield to the loop between chunks so interleaving would be visible
        await asyncio.sleep(0)
        self.log.append(data)


def make_port(device: str, vid: Optional[int] = 0x0416, pid: Optional[int] = 0x5011) -> PortHandle:
    return PortHandle(PortInfo(device=device, description="USB Printer", vid=vid, pid=pid))


class FakeTransport(Transport):
    """Transport double with scripted behavior and a call log."""

    def __init__(self, authorized: Optional[list[PortHandle]] = None):
        self.authorized: list[PortHandle] = list(authorized or [])
        self.available: list[PortHandle] = []
        self.chooser: Optional[Callable[[list[PortHandle]], Optional[PortHandle]]] = None
        self.choose_error: Optional[Exception] = None

        self.fail_open: set[str] = set()
        self.no_writer: set[str] = set()
        self.fail_bauds: set[int] = set()
        self.write_fail_bauds: set[int] = set()

        self.calls: list[tuple] = []
        self.written: list[bytes] = []

    @property
    def open_attempts(self) -> list[tuple[str, int]]:
        return [(c[1], c[2]) for c in self.calls if c[0] == "open"]

    @property
    def request_count(self) -> int:
        return sum(1 for c in self.calls if c[0] == "request_new_port")

    async def enumerate(self) -> list[PortHandle]:
        self.calls.append(("enumerate",))
        return list(self.authorized)

    async def request_new_port(self) -> PortHandle:
        self.calls.append(("request_new_port",))
        if self.choose_error is not None:
            raise self.choose_error
        choice = self.chooser(self.available) if self.chooser else None
        if choice is None:
            raise NoDeviceSelected()
        if choice not in self.authorized:
            self.authorized.append(choice)
        return choice

    async def open(self, handle: PortHandle, params: LineParameters) -> PortStreams:
        device = handle.info.device
        self.calls.append(("open", device, params.baud_rate))

        if handle.is_open:
            raise OpenFailed("port is already open", device=device)
        if device in self.fail_open or params.baud_rate in self.fail_bauds:
            raise OpenFailed("device busy", device=device)

        writable = RecordingWritable(
            self.written,
            fail_writes=params.baud_rate in self.write_fail_bauds,
            locked=device in self.no_writer,
        )
        streams = PortStreams(readable=None, writable=writable)
        handle._streams = streams
        handle._params = params
        return streams

    async def close(self, handle: PortHandle) -> None:
        self.calls.append(("close", handle.info.device))
        handle._streams = None
        handle._params = None

    def forget_all(self) -> None:
        self.calls.append(("forget_all",))
        self.authorized = [h for h in self.authorized if h.is_open]


class FakeClock:
    """Settable clock for the connection store."""

    def __init__(self, now: float = 1_760_870_400.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def ports() -> list[PortHandle]:
    """Three authorized ports A, B, C."""
    return [make_port("/dev/ttyA"), make_port("/dev/ttyB"), make_port("/dev/ttyC")]


@pytest.fixture
def transport(ports) -> FakeTransport:
    return FakeTransport(authorized=ports)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock) -> ConnectionStore:
    return ConnectionStore(tmp_path / "printer_connection.json", clock=clock)


@pytest.fixture
def manager(transport, store) -> ConnectionManager:
    return ConnectionManager(transport, store)
