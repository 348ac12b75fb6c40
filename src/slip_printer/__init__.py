"""
Slip Printer - Serial Thermal Printer Connectivity
==================================================

This package drives ESC/POS receipt printers attached over a serial
port (USB CDC, USB-serial bridge or Bluetooth rfcomm). It covers the
connectivity and command layer only:

- **comms**: pyserial transport and the user-authorized port list
- **store**: persisted "last known good" connection record
- **manager**: connection state machine (quick reconnect, connect,
  disconnect, reset, baud negotiation)
- **protocol**: ESC/POS encoder, slip templates and renderer
- **service**: print entry points and batch printing

Quick Start
-----------
    >>> import asyncio
    >>> from slip_printer import create_service, BagLabel
    >>> service = create_service()
    >>> async def main():
    ...     status = await service.manager.quick_reconnect()
    ...     if status.connected:
    ...         await service.print_bag_label(BagLabel(42, "Nadeesha", "3", "25"))
    >>> asyncio.run(main())

Or use the command-line tool:
    $ slipctl connect
    $ slipctl print bag --order-id 42 --customer Nadeesha --bags 3
    $ slipctl disconnect

Version History
---------------
1.0.0 - Initial release
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from slip_printer.errors import (
    PrinterError,
    ConfigError,
    CommsError,
    ConnectionError as PrinterConnectionError,  # Avoid collision with builtin
    AuthorizationDenied,
    NoDeviceSelected,
    OpenFailed,
    WriterUnavailable,
    NoPersistentConnection,
    AllCandidatesFailed,
    NotConnectedError,
    WriteFailed,
    DocumentError,
)

from slip_printer.comms import (
    LineParameters,
    PortInfo,
    PortHandle,
    SerialTransport,
    Transport,
    list_serial_ports,
)

from slip_printer.config import PrinterConfig
from slip_printer.store import ConnectionIdentity, ConnectionRecord, ConnectionStore

from slip_printer.manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
    PersistentConnectionInfo,
)

from slip_printer.protocol import (
    AssignmentSlip,
    BagLabel,
    EscPosEncoder,
    OrderRecordReceipt,
    PrintDocument,
    ReceiptItem,
    SalesReceipt,
    render,
)

from slip_printer.service import (
    JobResult,
    PrintResult,
    PrinterService,
    ProbeResult,
    create_service,
)

__all__ = [
    "__version__",
    # Errors
    "PrinterError",
    "ConfigError",
    "CommsError",
    "PrinterConnectionError",
    "AuthorizationDenied",
    "NoDeviceSelected",
    "OpenFailed",
    "WriterUnavailable",
    "NoPersistentConnection",
    "AllCandidatesFailed",
    "NotConnectedError",
    "WriteFailed",
    "DocumentError",
    # Transport
    "LineParameters",
    "PortInfo",
    "PortHandle",
    "Transport",
    "SerialTransport",
    "list_serial_ports",
    # Configuration and persistence
    "PrinterConfig",
    "ConnectionIdentity",
    "ConnectionRecord",
    "ConnectionStore",
    # Connection manager
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "PersistentConnectionInfo",
    # Documents
    "AssignmentSlip",
    "BagLabel",
    "OrderRecordReceipt",
    "ReceiptItem",
    "SalesReceipt",
    "PrintDocument",
    "EscPosEncoder",
    "render",
    # Service
    "PrinterService",
    "PrintResult",
    "JobResult",
    "ProbeResult",
    "create_service",
]
