"""
Slip Printer Communication Module
=================================

Serial transport for the printer. Two layers:

- **serial**: pyserial utilities (port listing, line parameters, opening
  and closing ports with readable error messages)
- **transport**: the asynchronous Transport abstraction the connection
  manager is written against, and its pyserial implementation

Quick Start
-----------
    from slip_printer.comms import SerialTransport, LineParameters

    transport = SerialTransport(grants_path, chooser=pick_port)
    handles = await transport.enumerate()
    streams = await transport.open(handles[0], LineParameters())
    writer = streams.writable.get_writer()
    await writer.write(b"\\x1b@Hello\\n")
    await writer.close()
    await transport.close(handles[0])

Serial Settings
---------------
- Baud rate: 9600 (other rates only through baud negotiation)
- 8 data bits, no parity, 1 stop bit
- No flow control

Error Handling
--------------
Failures raise subclasses of `CommsError` from `slip_printer.errors`:
`OpenFailed`, `AuthorizationDenied`, `NoDeviceSelected`,
`WriterUnavailable` and `WriteFailed`.

Thread Safety
-------------
Blocking pyserial calls run in worker threads, but the transport objects
themselves belong to one event loop. Share them only through a
ConnectionManager.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Serial port utilities
from slip_printer.comms.serial import (
    DEFAULT_BAUD_RATE,
    DEFAULT_TIMEOUT,
    DEFAULT_WRITE_TIMEOUT,
    NEGOTIATION_BAUD_RATES,
    VALID_BAUD_RATES,
    LineParameters,
    PortInfo,
    close_serial_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
    validate_port_settings,
)

# Transport abstraction
from slip_printer.comms.transport import (
    PortChooser,
    PortHandle,
    PortReader,
    PortStreams,
    PortWritable,
    PortWriter,
    SerialPortHandle,
    SerialTransport,
    Transport,
)

__all__ = [
    # Serial
    "VALID_BAUD_RATES",
    "DEFAULT_BAUD_RATE",
    "NEGOTIATION_BAUD_RATES",
    "DEFAULT_TIMEOUT",
    "DEFAULT_WRITE_TIMEOUT",
    "LineParameters",
    "PortInfo",
    "list_serial_ports",
    "open_serial_port",
    "close_serial_port",
    "validate_port_settings",
    "format_port_list",
    # Transport
    "Transport",
    "PortHandle",
    "PortStreams",
    "PortReader",
    "PortWritable",
    "PortWriter",
    "PortChooser",
    "SerialPortHandle",
    "SerialTransport",
]
