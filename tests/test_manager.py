"""
Tests for the Connection Manager
================================

Covers the connection state machine against the in-memory transport:

1. Quick reconnect: freshness, candidate ordering, never prompting
2. Full connect: reuse of known ports, chooser fallback, index discovery
3. Disconnect and force reset
4. Baud negotiation
5. Write jobs, degraded state and serialization
"""

import asyncio

import pytest

from slip_printer.errors import AuthorizationDenied
from slip_printer.manager import (
    NEGOTIATION_PROBE,
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)
from slip_printer.protocol.escpos import INITIALIZE
from slip_printer.store import ConnectionIdentity, ConnectionRecord

from conftest import make_port

HOUR = 60 * 60


def save_record(store, clock, saved_index: int, age: float = 0.0, port_name: str = "/dev/ttyA"):
    store.save(ConnectionRecord(
        connected=True,
        identity=ConnectionIdentity(0x0416, 0x5011, port_name),
        saved_index=saved_index,
        timestamp=clock.now - age,
    ))


# =============================================================================
# Persistent Connection Queries
# =============================================================================

class TestPersistentConnection:
    """Saved-record queries."""

    def test_no_record(self, manager):
        assert manager.has_persistent_connection() is False
        assert manager.get_persistent_connection_info() is None

    def test_fresh_record(self, manager, store, clock):
        save_record(store, clock, 0, age=HOUR, port_name="/dev/ttyUSB0")

        assert manager.has_persistent_connection() is True
        info = manager.get_persistent_connection_info()
        assert info.port_name == "/dev/ttyUSB0"

    def test_stale_record_is_absent(self, manager, store, clock):
        """Records older than 24 hours do not count, even if connected."""
        save_record(store, clock, 0, age=24 * HOUR + 1)

        assert manager.has_persistent_connection() is False
        assert manager.get_persistent_connection_info() is None

    def test_disconnected_record_is_absent(self, manager, store, clock):
        store.save(ConnectionRecord(connected=False, timestamp=clock.now))
        assert manager.has_persistent_connection() is False


# =============================================================================
# Quick Reconnect
# =============================================================================

class TestQuickReconnect:
    """Reconnect without user interaction."""

    @pytest.mark.asyncio
    async def test_no_record_fails_fast(self, manager, transport):
        status = await manager.quick_reconnect()

        assert status.connected is False
        assert status.code == "NoPersistentConnection"
        assert transport.request_count == 0
        assert transport.open_attempts == []

    @pytest.mark.asyncio
    async def test_stale_record_fails_fast(self, manager, transport, store, clock):
        save_record(store, clock, 0, age=25 * HOUR)

        status = await manager.quick_reconnect()

        assert status.code == "NoPersistentConnection"
        assert transport.open_attempts == []

    @pytest.mark.asyncio
    async def test_no_ports_leaves_store_unchanged(self, manager, transport, store, clock):
        save_record(store, clock, 1)
        before = store.path.read_text()
        transport.authorized = []

        status = await manager.quick_reconnect()

        assert status.connected is False
        assert status.error.startswith("NoPersistentConnection")
        assert transport.request_count == 0
        assert store.path.read_text() == before

    @pytest.mark.asyncio
    async def test_saved_index_tried_first(self, manager, transport, store, clock):
        """Saved index 2 with ports [A, B, C]: C, then A, then B."""
        save_record(store, clock, 2)
        transport.fail_open = {"/dev/ttyC", "/dev/ttyA"}

        status = await manager.quick_reconnect()

        assert status.connected is True
        assert [device for device, _ in transport.open_attempts] == [
            "/dev/ttyC", "/dev/ttyA", "/dev/ttyB",
        ]
        assert status.port_index == 1
        assert store.load().saved_index == 1

    @pytest.mark.asyncio
    async def test_out_of_range_index_uses_enumeration_order(self, manager, transport, store, clock):
        save_record(store, clock, 7)
        transport.fail_open = {"/dev/ttyA"}

        status = await manager.quick_reconnect()

        assert status.connected is True
        assert [d for d, _ in transport.open_attempts] == ["/dev/ttyA", "/dev/ttyB"]

    @pytest.mark.asyncio
    async def test_opens_at_default_baud(self, manager, transport, store, clock):
        save_record(store, clock, 0)

        status = await manager.quick_reconnect()

        assert transport.open_attempts == [("/dev/ttyA", 9600)]
        assert status.baud_rate == 9600

    @pytest.mark.asyncio
    async def test_port_without_writer_is_closed_and_skipped(self, manager, transport, store, clock):
        save_record(store, clock, 0)
        transport.no_writer = {"/dev/ttyA"}

        status = await manager.quick_reconnect()

        assert status.connected is True
        assert ("close", "/dev/ttyA") in transport.calls
        assert manager.handle.info.device == "/dev/ttyB"

    @pytest.mark.asyncio
    async def test_all_candidates_fail(self, manager, transport, store, clock):
        save_record(store, clock, 0)
        before = store.path.read_text()
        transport.fail_open = {"/dev/ttyA", "/dev/ttyB"}
        transport.no_writer = {"/dev/ttyC"}

        status = await manager.quick_reconnect()

        assert status.connected is False
        assert status.code == "AllCandidatesFailed"
        assert manager.state is ConnectionState.IDLE
        assert transport.request_count == 0
        assert store.path.read_text() == before

    @pytest.mark.asyncio
    async def test_already_connected(self, manager, transport, store, clock):
        save_record(store, clock, 0)
        await manager.quick_reconnect()
        opens = len(transport.open_attempts)

        status = await manager.quick_reconnect()

        assert status.connected is True
        assert len(transport.open_attempts) == opens


class TestReconnectScenario:
    """A saved port is reused directly on the next run."""

    @pytest.mark.asyncio
    async def test_single_port_round_trip(self, store, clock):
        from conftest import FakeTransport

        transport = FakeTransport(authorized=[make_port("/dev/ttyACM0")])
        manager = ConnectionManager(transport, store)
        save_record(store, clock, 0, age=2 * HOUR)

        status = await manager.quick_reconnect()

        assert status.connected is True
        assert transport.open_attempts == [("/dev/ttyACM0", 9600)]
        record = store.load()
        assert record.connected is True
        assert record.saved_index == 0
        assert record.timestamp == clock.now

        # Next run, within the hour
        await manager.force_reset()
        clock.advance(HOUR / 2)
        transport.calls.clear()

        status = await manager.quick_reconnect()

        assert status.connected is True
        assert transport.open_attempts == [("/dev/ttyACM0", 9600)]

    @pytest.mark.asyncio
    async def test_saved_index_reused_without_scanning(self, manager, transport, store, clock):
        save_record(store, clock, 1)
        await manager.quick_reconnect()
        await manager.force_reset()
        clock.advance(HOUR / 2)
        transport.calls.clear()

        await manager.quick_reconnect()

        assert transport.open_attempts == [("/dev/ttyB", 9600)]


# =============================================================================
# Full Connect
# =============================================================================

class TestConnect:
    """Connect with chooser fallback."""

    @pytest.mark.asyncio
    async def test_cancelled_chooser_with_no_ports(self, manager, transport, store):
        transport.authorized = []
        transport.choose_error = AuthorizationDenied()

        status = await manager.connect()

        assert status == ConnectionStatus(
            connected=False,
            error=status.error,
            code="AuthorizationDenied",
        )
        assert status.error.startswith("AuthorizationDenied")
        assert store.load() is None
        assert manager.state is ConnectionState.IDLE

    @pytest.mark.asyncio
    async def test_nothing_selected(self, manager, transport, store):
        transport.authorized = []

        status = await manager.connect()

        assert status.code == "NoDeviceSelected"
        assert store.load() is None

    @pytest.mark.asyncio
    async def test_reuses_known_port_without_prompting(self, manager, transport, store):
        status = await manager.connect()

        assert status.connected is True
        assert transport.request_count == 0
        assert store.load().saved_index == 0

    @pytest.mark.asyncio
    async def test_prompts_when_known_ports_fail(self, manager, transport, store, ports):
        new_port = make_port("/dev/ttyNEW", vid=0x04B8, pid=0x0202)
        transport.fail_open = {p.info.device for p in ports}
        transport.available = [new_port]
        transport.chooser = lambda available: available[0]

        status = await manager.connect()

        assert status.connected is True
        assert transport.request_count == 1
        assert manager.handle is new_port
        # Index comes from the enumeration taken after the open
        assert status.port_index == 3
        record = store.load()
        assert record.saved_index == 3
        assert record.identity.port_name == "/dev/ttyNEW"
        assert record.identity.vendor_id == 0x04B8

    @pytest.mark.asyncio
    async def test_chosen_port_open_failure(self, manager, transport, store):
        transport.authorized = []
        new_port = make_port("/dev/ttyBUSY")
        transport.available = [new_port]
        transport.chooser = lambda available: available[0]
        transport.fail_open = {"/dev/ttyBUSY"}

        status = await manager.connect()

        assert status.code == "OpenFailed"
        assert store.load() is None

    @pytest.mark.asyncio
    async def test_force_prompt_skips_known_ports(self, manager, transport, store, clock):
        save_record(store, clock, 0)
        await manager.quick_reconnect()
        transport.available = [transport.authorized[2]]
        transport.chooser = lambda available: available[0]
        transport.calls.clear()

        status = await manager.connect(force_prompt=True)

        assert status.connected is True
        assert transport.request_count == 1
        assert [d for d, _ in transport.open_attempts] == ["/dev/ttyC"]
        assert ("close", "/dev/ttyA") in transport.calls
        assert store.load().saved_index == 2

    def test_find_index_by_usb_identity(self, ports):
        chosen = make_port("/dev/ttyX", vid=0x1A86, pid=0x7523)
        same_device = make_port("/dev/ttyY", vid=0x1A86, pid=0x7523)

        assert ConnectionManager._find_index(chosen, ports) == -1
        assert ConnectionManager._find_index(chosen, ports + [same_device]) == 3
        assert ConnectionManager._find_index(ports[1], ports) == 1


# =============================================================================
# Disconnect and Reset
# =============================================================================

class TestDisconnect:
    """Teardown paths."""

    @pytest.mark.asyncio
    async def test_disconnect_when_idle_is_noop(self, manager):
        first = await manager.disconnect()
        second = await manager.disconnect()

        assert first.connected is False and first.error is None
        assert second.connected is False and second.error is None
        assert manager.state is ConnectionState.IDLE

    @pytest.mark.asyncio
    async def test_disconnect_closes_and_clears(self, manager, transport, store):
        await manager.connect()

        await manager.disconnect()

        assert manager.state is ConnectionState.IDLE
        assert ("close", "/dev/ttyA") in transport.calls
        assert store.load() is None
        assert not transport.authorized[0].is_open

    @pytest.mark.asyncio
    async def test_force_reset_keeps_record(self, manager, transport, store):
        await manager.connect()

        await manager.force_reset()

        assert manager.state is ConnectionState.IDLE
        assert manager.is_connected() is False
        assert store.load() is not None
        assert not transport.authorized[0].is_open

    @pytest.mark.asyncio
    async def test_force_reset_ignores_close_errors(self, manager, transport):
        await manager.connect()

        async def broken_close(handle):
            raise OSError("device vanished")

        transport.close = broken_close
        await manager.force_reset()

        assert manager.state is ConnectionState.IDLE


# =============================================================================
# Baud Negotiation
# =============================================================================

class TestNegotiateBaud:
    """Diagnostic baud-rate search."""

    @pytest.mark.asyncio
    async def test_requires_open_port(self, manager):
        status = await manager.negotiate_baud()
        assert status.code == "NotConnectedError"

    @pytest.mark.asyncio
    async def test_keeps_first_rate_that_writes(self, manager, transport):
        await manager.connect()
        transport.calls.clear()
        transport.write_fail_bauds = {9600}
        transport.fail_bauds = {115200}

        status = await manager.negotiate_baud()

        assert status.connected is True
        assert status.baud_rate == 38400
        assert status.port_index == 0
        assert [baud for _, baud in transport.open_attempts] == [9600, 115200, 38400]
        assert manager.handle.params.baud_rate == 38400
        assert transport.written[-1] == NEGOTIATION_PROBE

    @pytest.mark.asyncio
    async def test_every_rate_fails(self, manager, transport):
        await manager.connect()
        transport.write_fail_bauds = {9600, 115200, 38400, 19200, 57600, 4800, 2400}

        status = await manager.negotiate_baud()

        assert status.connected is False
        assert status.code == "AllCandidatesFailed"
        assert manager.state is ConnectionState.IDLE
        assert not transport.authorized[0].is_open


# =============================================================================
# Writing
# =============================================================================

class TestWriteJob:
    """Exclusive, ordered writes."""

    @pytest.mark.asyncio
    async def test_write_requires_connection(self, manager):
        from slip_printer.errors import NotConnectedError

        with pytest.raises(NotConnectedError):
            await manager.write_job([b"x"])

    @pytest.mark.asyncio
    async def test_verify_connection(self, manager, transport):
        await manager.connect()

        assert await manager.verify_connection() is True
        assert transport.written == [INITIALIZE]

    @pytest.mark.asyncio
    async def test_verify_when_idle(self, manager):
        assert await manager.verify_connection() is False

    @pytest.mark.asyncio
    async def test_write_failure_degrades(self, manager, transport, store, clock):
        from slip_printer.errors import WriteFailed

        await manager.connect()
        manager._writer._writable.fail_writes = True

        with pytest.raises(WriteFailed):
            await manager.write_job([b"abc"])

        assert manager.state is ConnectionState.DEGRADED
        details = manager.connection_details()
        assert details.has_port is True
        assert details.has_writer is False

        # Reconnecting tears the degraded session down first
        status = await manager.quick_reconnect()
        assert status.connected is True
        assert manager.state is ConnectionState.OPEN

    @pytest.mark.asyncio
    async def test_concurrent_jobs_do_not_interleave(self, manager, transport):
        await manager.connect()
        first = [b"A1", b"A2", b"A3", b"A4"]
        second = [b"B1", b"B2", b"B3", b"B4"]

        await asyncio.gather(manager.write_job(first), manager.write_job(second))

        written = transport.written
        assert written in (first + second, second + first)

    @pytest.mark.asyncio
    async def test_connection_details_when_open(self, manager):
        await manager.connect()

        details = manager.connection_details()

        assert details.state is ConnectionState.OPEN
        assert details.has_writer is True
        assert details.writable is True
        assert details.readable is False
        assert "/dev/ttyA" in details.status
