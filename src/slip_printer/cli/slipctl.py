"""
slipctl - Slip Printer Command-Line Interface
=============================================

This module implements the command-line interface for the serial thermal
printer. It connects to the printer, keeps the "last known good" port so
later runs reconnect without asking, and prints slips.

Connection Model
----------------
Each slipctl run is a new process, so the live session only lasts for one
command. What persists between runs is:

- The list of ports you authorized with ``slipctl connect``
- The connection record (which port worked, and when)

Print commands quick-reconnect first, which never prompts. When that
fails they ask you to run ``slipctl connect`` again.

Usage Examples
--------------
List serial ports:
    $ slipctl ports

Choose a printer (prompts for a port the first time):
    $ slipctl connect
    $ slipctl connect --choose        # always show the port list

Print:
    $ slipctl test-page
    $ slipctl print bag --order-id 42 --customer "Nadeesha" --bags 3
    $ slipctl print batch orders.json

Diagnose:
    $ slipctl status
    $ slipctl negotiate
    $ slipctl diagnose --protocols

Exit Codes
----------
0 - Success
1 - Connection or print error
2 - Invalid arguments or configuration error
3 - Internal error
"""

import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click

from slip_printer import __version__
from slip_printer.cli.errors import ExitCode, fail, handle_cli_exception
from slip_printer.comms.serial import PortInfo, format_port_list, list_serial_ports
from slip_printer.config import PrinterConfig
from slip_printer.errors import AuthorizationDenied, NotConnectedError, PrinterError
from slip_printer.manager import ConnectionStatus
from slip_printer.protocol.documents import (
    AssignmentSlip,
    BagLabel,
    OrderRecordReceipt,
    PrintDocument,
    SalesReceipt,
    assignment_slip,
    bag_label,
    order_record_receipt,
    order_records_from_json,
    printer_test_page,
    sales_receipt,
)
from slip_printer.service import PrinterService, PrintResult, ProbeResult, create_service

# Configure logging
logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores common options and lazily builds the printer service.
    """

    def __init__(self) -> None:
        self.state_dir: Optional[Path] = None
        self.verbose: bool = False
        self.preview: bool = False
        self._config: Optional[PrinterConfig] = None
        self._service: Optional[PrinterService] = None

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.WARNING
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    @property
    def config(self) -> PrinterConfig:
        if self._config is None:
            config = PrinterConfig.from_env()
            if self.state_dir is not None:
                config = dataclasses.replace(config, state_dir=self.state_dir)
            self._config = config
        return self._config

    @property
    def service(self) -> PrinterService:
        if self._service is None:
            self._service = create_service(self.config, chooser=prompt_for_port)
        return self._service

    def run(self, operation: Callable[[PrinterService], Awaitable[T]]) -> T:
        """
        Run one async operation against the service.

        The port is released afterwards without clearing the saved
        connection, so the next slipctl run can quick-reconnect.
        """
        async def runner() -> T:
            service = self.service
            try:
                return await operation(service)
            finally:
                await service.manager.force_reset()

        try:
            return asyncio.run(runner())
        except Exception as e:
            handle_cli_exception(e, verbose=self.verbose)


pass_context = click.make_pass_decorator(Context, ensure=True)


def prompt_for_port(ports: list[PortInfo]) -> Optional[PortInfo]:
    """
    Interactive port chooser used by ``connect``.

    Raises:
        AuthorizationDenied: If the user aborts the prompt.
    """
    click.echo("Available serial ports:")
    click.echo(format_port_list(ports))
    try:
        index = click.prompt(
            "Select printer port",
            type=click.IntRange(0, len(ports) - 1),
            default=0 if len(ports) == 1 else None,
        )
    except click.Abort:
        raise AuthorizationDenied() from None
    return ports[index]


def describe(status: ConnectionStatus, service: PrinterService) -> str:
    handle = service.manager.handle
    device = handle.info.device if handle else "printer"
    index = "unknown" if status.port_index is None or status.port_index < 0 else status.port_index
    return f"Connected to {device} (port index {index}, {status.baud_rate} baud)"


async def require_connection(service: PrinterService) -> ConnectionStatus:
    """Quick-reconnect or raise NotConnectedError with a hint."""
    status = await service.manager.quick_reconnect()
    if not status.connected:
        raise NotConnectedError(
            f"Printer not connected ({status.error}). Run 'slipctl connect' first."
        )
    return status


def print_one(ctx: Context, document: PrintDocument) -> None:
    """Preview or print a single document."""
    if ctx.preview:
        for line in document.lines:
            click.echo(line)
        return

    async def operation(service: PrinterService) -> PrintResult:
        await require_connection(service)
        return await service.print_document(document)

    result = ctx.run(operation)
    if not result.success:
        fail(f"Print failed: {result.error}")
    click.echo(f"Printed {document.template.replace('_', ' ')}.")


def load_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except UnicodeDecodeError as e:
        fail(f"Error: {path} is not UTF-8 text: {e}", ExitCode.INVALID_ARGS)
    except json.JSONDecodeError as e:
        fail(f"Error: {path} is not valid JSON: {e}", ExitCode.INVALID_ARGS)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the saved connection and authorized ports",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.version_option(version=__version__, prog_name="slipctl")
@pass_context
def main(ctx: Context, state_dir: Optional[Path], verbose: bool) -> None:
    """
    Connect to and print on a serial ESC/POS thermal printer.

    Run 'slipctl connect' once to choose the printer port. Later
    commands reconnect to it automatically.
    """
    ctx.state_dir = state_dir
    ctx.verbose = verbose
    ctx.setup_logging()

    try:
        ctx.config
    except PrinterError as e:
        handle_cli_exception(e, verbose=verbose, error_type="Configuration")


# =============================================================================
# Port Commands
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
@pass_context
def ports(ctx: Context, detailed: bool) -> None:
    """
    List available serial ports.

    Ports you have authorized with 'slipctl connect' are listed after
    the ports present on the system.

    Example:
        slipctl ports
        slipctl ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Connect the printer's USB cable and power it on")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    granted = ctx.service.manager.transport.grants.load()
    if granted:
        click.echo("\nAuthorized ports:")
        for entry in granted:
            click.echo(f"  {entry['device']}")


@main.command()
@click.option(
    "--choose",
    is_flag=True,
    help="Always show the port list, even when a known port works",
)
@pass_context
def connect(ctx: Context, choose: bool) -> None:
    """
    Connect to the printer, asking for a port if needed.

    Previously authorized ports are tried first. When none of them
    works you are asked to pick a port; the choice is remembered.
    """
    async def operation(service: PrinterService) -> tuple[ConnectionStatus, str]:
        status = await service.manager.connect(force_prompt=choose)
        return status, describe(status, service) if status.connected else ""

    status, summary = ctx.run(operation)
    if not status.connected:
        fail(f"Connection failed: {status.error}")
    click.echo(summary)


@main.command()
@pass_context
def reconnect(ctx: Context) -> None:
    """
    Reconnect to the saved printer without prompting.

    Fails when no connection was saved in the last 24 hours.
    """
    async def operation(service: PrinterService) -> tuple[ConnectionStatus, str]:
        status = await service.manager.quick_reconnect()
        return status, describe(status, service) if status.connected else ""

    status, summary = ctx.run(operation)
    if not status.connected:
        fail(f"Reconnect failed: {status.error}")
    click.echo(summary)


@main.command()
@pass_context
def disconnect(ctx: Context) -> None:
    """Close the printer port and forget the saved connection."""
    ctx.run(lambda service: service.manager.disconnect())
    click.echo("Disconnected. Saved connection cleared.")


@main.command()
@click.option(
    "--forget-ports",
    is_flag=True,
    help="Also remove every authorized port",
)
@pass_context
def reset(ctx: Context, forget_ports: bool) -> None:
    """
    Reset the connection session.

    The saved connection is kept, so 'slipctl reconnect' still works.
    With --forget-ports the authorized port list and the saved
    connection are cleared, and the next 'slipctl connect' asks for a
    port again.
    """
    ctx.run(lambda service: service.manager.force_reset())
    if forget_ports:
        manager = ctx.service.manager
        manager.transport.forget_all()
        manager.store.clear()
        click.echo("Connection reset. Authorized ports and saved connection forgotten.")
    else:
        click.echo("Connection reset.")


@main.command()
@click.option(
    "--check",
    is_flag=True,
    help="Also reconnect and send an initialization command",
)
@pass_context
def status(ctx: Context, check: bool) -> None:
    """Show the saved connection and, with --check, test it."""
    manager = ctx.service.manager
    info = manager.get_persistent_connection_info()

    if info is None:
        click.echo("Saved connection: none")
    else:
        click.echo(f"Saved connection: {info.port_name}")
        click.echo(f"Connected at:     {info.connected_at:%Y-%m-%d %H:%M:%S}")

    if not check:
        return

    async def operation(service: PrinterService) -> tuple[str, bool]:
        await require_connection(service)
        working = await service.manager.verify_connection()
        return service.manager.connection_details().status, working

    summary, working = ctx.run(operation)
    click.echo(f"Status:           {summary}")
    if not working:
        fail("Printer connected but not responding.")
    click.echo("Printer is responding.")


@main.command()
@pass_context
def negotiate(ctx: Context) -> None:
    """
    Find the baud rate the printer is set to.

    Reopens the saved printer port at each common rate and sends a short
    test line until one succeeds. Watch the printer for the test output.
    """
    async def operation(service: PrinterService) -> ConnectionStatus:
        await require_connection(service)
        return await service.manager.negotiate_baud()

    status = ctx.run(operation)
    if not status.connected:
        fail(f"Baud negotiation failed: {status.error}")
    click.echo(f"Printer accepted {status.baud_rate} baud.")


@main.command()
@click.option(
    "--protocols",
    is_flag=True,
    help="Send ESC/POS, raw text, CPCL, ZPL and ASCII test lines instead",
)
@pass_context
def diagnose(ctx: Context, protocols: bool) -> None:
    """
    Send diagnostic output to a printer that stays silent.

    The default simple test sends two initialization sequences, raw
    text, three line-ending styles and a paper feed. With --protocols
    one test line is sent per printer language; whichever prints shows
    the language the printer speaks.
    """
    async def operation(service: PrinterService) -> list[ProbeResult]:
        await require_connection(service)
        if protocols:
            return await service.try_protocols()
        return await service.send_simple_test()

    results = ctx.run(operation)
    for result in results:
        if result.success:
            click.echo(f"  sent    {result.name}")
        else:
            click.echo(f"  FAILED  {result.name}: {result.error}")

    if not all(result.success for result in results):
        fail("Diagnostic stopped at a failed stage.")
    click.echo("Diagnostic sent. Check what the printer printed.")


@main.command("test-page")
@pass_context
def test_page(ctx: Context) -> None:
    """Print a short page confirming the printer works."""
    print_one(ctx, printer_test_page())


# =============================================================================
# Print Commands
# =============================================================================

@main.group("print")
@click.option(
    "--preview",
    is_flag=True,
    help="Show the slip text instead of printing",
)
@pass_context
def print_group(ctx: Context, preview: bool) -> None:
    """Print slips and receipts."""
    ctx.preview = preview


@print_group.command("assignment")
@click.option("--tracking", required=True, help="Tracking ID")
@click.option("--item", required=True, help="Item name")
@click.option("--wash-type", required=True, help="Wash type")
@click.option("--process", "processes", multiple=True, help="Process (repeatable)")
@click.option("--assigned-to", required=True, help="Machine or operator")
@click.option("--quantity", type=int, required=True, help="Quantity")
@pass_context
def print_assignment(
    ctx: Context,
    tracking: str,
    item: str,
    wash_type: str,
    processes: tuple[str, ...],
    assigned_to: str,
    quantity: int,
) -> None:
    """Print a machine assignment slip."""
    slip = AssignmentSlip(
        tracking_number=tracking,
        item_name=item,
        wash_type=wash_type,
        process_types=processes,
        assigned_to=assigned_to,
        quantity=quantity,
    )
    print_one(ctx, assignment_slip(slip))


@print_group.command("bag")
@click.option("--order-id", type=int, required=True, help="Order reference number")
@click.option("--customer", required=True, help="Customer name")
@click.option("--bags", default="", help="Number of bags")
@click.option("--quantity", default="", help="Quantity")
@pass_context
def print_bag(ctx: Context, order_id: int, customer: str, bags: str, quantity: str) -> None:
    """Print a bag label."""
    label = BagLabel(
        order_id=order_id,
        customer_name=customer,
        number_of_bags=bags,
        quantity=quantity,
    )
    print_one(ctx, bag_label(label))


@print_group.command("order")
@click.option("--order-id", type=int, required=True, help="Order ID")
@click.option("--customer", required=True, help="Customer name")
@click.option("--item", required=True, help="Item name")
@click.option("--quantity", type=int, required=True, help="Quantity")
@click.option("--wash-type", default="", help="Wash type")
@click.option("--process", "processes", multiple=True, help="Process (repeatable)")
@click.option("--tracking", default=None, help="Tracking number")
@click.option("--remaining", is_flag=True, help="Record remaining quantity")
@pass_context
def print_order(
    ctx: Context,
    order_id: int,
    customer: str,
    item: str,
    quantity: int,
    wash_type: str,
    processes: tuple[str, ...],
    tracking: Optional[str],
    remaining: bool,
) -> None:
    """Print an order record."""
    receipt = OrderRecordReceipt(
        order_id=order_id,
        customer_name=customer,
        item_name=item,
        quantity=quantity,
        wash_type=wash_type,
        process_types=processes,
        tracking_number=tracking,
        is_remaining=remaining,
    )
    print_one(ctx, order_record_receipt(receipt))


@print_group.command("receipt")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@pass_context
def print_receipt(ctx: Context, file: str) -> None:
    """
    Print a sales receipt described by a JSON FILE.

    Example FILE:

    \b
        {"companyName": "AMSRAL", "address": "...", "phone": "...",
         "orderNumber": "1001", "date": "2026-10-19", "time": "14:03",
         "customerName": "...", "customerPhone": "...",
         "items": [{"name": "Shirt", "quantity": 2, "price": 3.5}],
         "subtotal": 7.0, "tax": 0.7, "total": 7.7}
    """
    try:
        receipt = SalesReceipt.from_dict(load_json(file))
    except PrinterError as e:
        handle_cli_exception(e, verbose=ctx.verbose)
    print_one(ctx, sales_receipt(receipt))


@print_group.command("batch")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--delay",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds between slips (default: 5)",
)
@pass_context
def print_batch(ctx: Context, file: str, delay: Optional[float]) -> None:
    """
    Print a JSON FILE holding a list of order records.

    Each record uses the keys orderId, customerName, itemName, quantity,
    washType, processTypes and optionally trackingNumber and
    isRemaining. Slips are printed one at a time with a pause between
    them so each can be torn off.
    """
    try:
        records = order_records_from_json(load_json(file))
    except PrinterError as e:
        handle_cli_exception(e, verbose=ctx.verbose)

    documents = [order_record_receipt(record) for record in records]
    if not documents:
        click.echo("Nothing to print.")
        return

    if ctx.preview:
        for document in documents:
            for line in document.lines:
                click.echo(line)
            click.echo()
        return

    async def operation(service: PrinterService) -> int:
        await require_connection(service)
        failures = 0
        async for job in service.print_batch(documents, delay=delay):
            if job.success:
                click.echo(f"[{job.position}/{job.total}] printed")
            else:
                failures += 1
                click.echo(f"[{job.position}/{job.total}] failed: {job.error}", err=True)
        return failures

    failures = ctx.run(operation)
    if failures:
        fail("Batch print stopped after a failed slip.")
    click.echo(f"All {len(documents)} order records printed.")


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
