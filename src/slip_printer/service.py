"""
Printer Service
===============

High-level facade that ties the connection manager to the document
templates. This is the entry point applications use:

    service = create_service(PrinterConfig.from_env(), chooser=pick_port)

    await service.auto_reconnect()
    result = await service.print_order_record(receipt)
    if not result.success:
        print(result.error)

Print entry points never raise for printer failures; they return a
PrintResult. Batches are an async generator of JobResult values with a
cooperative delay between jobs so each slip can be torn off before the
next one starts:

    async for job in service.print_batch(documents):
        print(f"{job.position}/{job.total}: {'ok' if job.success else job.error}")
"""

import logging
from asyncio import sleep
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence

from slip_printer.comms.serial import LineParameters
from slip_printer.comms.transport import PortChooser, SerialTransport
from slip_printer.config import PrinterConfig
from slip_printer.errors import NotConnectedError, PrinterError
from slip_printer.manager import ConnectionManager, ConnectionStatus
from slip_printer.protocol.documents import (
    AssignmentSlip,
    BagLabel,
    OrderRecordReceipt,
    PrintDocument,
    SalesReceipt,
    assignment_slip,
    bag_label,
    order_record_receipt,
    printer_test_page,
    render,
    sales_receipt,
)
from slip_printer.protocol.escpos import EscPosEncoder
from slip_printer.protocol.probes import PROTOCOL_PROBES, SIMPLE_TEST, ProbeStage
from slip_printer.store import ConnectionStore

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrintResult:
    """Outcome of one print job."""

    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one diagnostic stage."""

    name: str
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class JobResult:
    """
    Outcome of one job within a batch.

    Attributes:
        position: 1-based position of the job in the batch
        total: Number of jobs in the batch
        template: Template name of the printed document
        success: True when every byte was written
        error: "<code>: <message>" on failure
    """

    position: int
    total: int
    template: str
    success: bool
    error: Optional[str] = None


class PrinterService:
    """
    Print entry points on top of a ConnectionManager.

    The service adds no connection state of its own; the manager's lock
    keeps jobs from different callers from interleaving.
    """

    def __init__(self, manager: ConnectionManager, config: Optional[PrinterConfig] = None):
        self.manager = manager
        self.config = config or PrinterConfig()

    # -------------------------------------------------------------------------
    # Connection shortcuts
    # -------------------------------------------------------------------------

    def is_connected(self) -> bool:
        return self.manager.is_connected()

    async def auto_reconnect(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ) -> ConnectionStatus:
        """
        Quick-reconnect with bounded retries and exponential backoff.

        Attempt ``n`` (n > 1) waits ``base_delay * 2 ** (n - 2)`` seconds
        first. A connection only counts once verify_connection() succeeds.
        Gives up immediately when there is no fresh saved connection,
        since retrying cannot change that.

        Returns:
            Status of the last attempt.
        """
        status = ConnectionStatus(connected=False)

        for attempt in range(1, max_retries + 1):
            if attempt > 1:
                delay = base_delay * 2 ** (attempt - 2)
                logger.debug("Waiting %.1fs before reconnect attempt %d", delay, attempt)
                await sleep(delay)

            logger.info("Auto-reconnect attempt %d/%d", attempt, max_retries)
            status = await self.manager.quick_reconnect()

            if status.connected:
                if await self.manager.verify_connection():
                    logger.info("Auto-reconnect succeeded on attempt %d", attempt)
                    return status
                # Keep the saved record so the next attempt can use it
                await self.manager.force_reset()
                status = ConnectionStatus(
                    connected=False,
                    error="WriteFailed: printer connected but not responding",
                    code="WriteFailed",
                )
            elif status.code == "NoPersistentConnection":
                break

        logger.info("Auto-reconnect gave up: %s", status.error)
        return status

    # -------------------------------------------------------------------------
    # Printing
    # -------------------------------------------------------------------------

    async def print_document(self, document: PrintDocument) -> PrintResult:
        """Render ``document`` and write it as one exclusive job."""
        if not self.manager.is_connected():
            error = NotConnectedError()
            return PrintResult(success=False, error=f"{error.code}: {error}")

        chunks = render(document, EscPosEncoder(self.config.encoding))
        try:
            await self.manager.write_job(chunks)
        except PrinterError as e:
            logger.error("Printing %s failed: %s", document.template, e)
            return PrintResult(success=False, error=f"{e.code}: {e}")

        logger.info("Printed %s (%d directives)", document.template, len(chunks))
        return PrintResult(success=True)

    async def print_assignment_slip(self, slip: AssignmentSlip) -> PrintResult:
        return await self.print_document(assignment_slip(slip))

    async def print_bag_label(self, label: BagLabel) -> PrintResult:
        return await self.print_document(bag_label(label))

    async def print_order_record(self, receipt: OrderRecordReceipt) -> PrintResult:
        return await self.print_document(order_record_receipt(receipt))

    async def print_sales_receipt(self, receipt: SalesReceipt) -> PrintResult:
        return await self.print_document(sales_receipt(receipt))

    async def print_test_page(self) -> PrintResult:
        return await self.print_document(printer_test_page())

    async def print_batch(
        self,
        documents: Sequence[PrintDocument],
        delay: Optional[float] = None,
        stop_on_error: bool = True,
    ) -> AsyncIterator[JobResult]:
        """
        Print documents back to back, yielding one result per job.

        Waits ``delay`` seconds (config.inter_job_delay by default)
        between jobs, never after the last one. Leaving the ``async for``
        loop cancels the remaining jobs.

        Args:
            documents: Documents in print order.
            delay: Seconds between jobs.
            stop_on_error: End the batch after the first failed job.
        """
        delay = self.config.inter_job_delay if delay is None else delay
        total = len(documents)

        for position, document in enumerate(documents, start=1):
            logger.info("Printing job %d of %d", position, total)
            result = await self.print_document(document)

            yield JobResult(
                position=position,
                total=total,
                template=document.template,
                success=result.success,
                error=result.error,
            )

            if not result.success and stop_on_error:
                logger.warning("Batch stopped after job %d of %d", position, total)
                return

            if position < total:
                logger.debug("Waiting %.1fs before next job", delay)
                await sleep(delay)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    async def send_simple_test(self) -> list[ProbeResult]:
        """Write the initialization, raw text, line ending and feed stages."""
        return await self._run_probes(SIMPLE_TEST)

    async def try_protocols(self) -> list[ProbeResult]:
        """Write one test line in each of ESC/POS, raw text, CPCL, ZPL and ASCII."""
        return await self._run_probes(PROTOCOL_PROBES)

    async def _run_probes(self, stages: Sequence[ProbeStage]) -> list[ProbeResult]:
        """
        Write each stage as its own job, stopping at the first failure.

        Returns:
            One result per stage attempted.
        """
        results: list[ProbeResult] = []

        for stage in stages:
            try:
                await self.manager.write_job(stage.chunks)
            except PrinterError as e:
                logger.warning("Diagnostic stage %r failed: %s", stage.name, e)
                results.append(ProbeResult(stage.name, False, f"{e.code}: {e}"))
                break

            logger.debug("Diagnostic stage %r sent", stage.name)
            results.append(ProbeResult(stage.name, True))
            if stage.pause:
                await sleep(stage.pause)

        return results


def create_service(
    config: Optional[PrinterConfig] = None,
    chooser: Optional[PortChooser] = None,
) -> PrinterService:
    """
    Wire a PrinterService to the pyserial transport and on-disk store.

    Args:
        config: Configuration (from the environment when omitted).
        chooser: Interactive port picker used by connect().
    """
    config = config or PrinterConfig.from_env()

    transport = SerialTransport(
        grants_path=config.grants_path,
        chooser=chooser,
        write_timeout=config.write_timeout,
    )
    store = ConnectionStore(config.record_path, max_age=config.max_record_age)
    manager = ConnectionManager(
        transport,
        store,
        params=LineParameters(baud_rate=config.default_baud),
        negotiation_bauds=config.negotiation_bauds,
    )
    return PrinterService(manager, config)
