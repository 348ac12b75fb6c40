"""
Serial Port Utilities for Thermal Printers
==========================================

This module provides utilities for managing serial port connections
to ESC/POS receipt printers. It handles:

- Port enumeration
- Line parameter definition and validation
- Opening and closing ports with helpful error messages
- Platform-independent operation

Hardware Notes
--------------
Most 58mm/80mm receipt printers expose a USB CDC or USB-serial bridge
(CH340, CP210x, FTDI, PL2303). Bluetooth printers appear as an rfcomm
serial device once paired.

Serial Port Settings
--------------------
This printer family uses:
- Baud Rate: 9600 by default (firmware may be set to another rate)
- Data Bits: 8
- Parity: None
- Stop Bits: 1
- Flow Control: None

Only the baud rate is ever varied. When the real rate is unknown the
connection manager walks NEGOTIATION_BAUD_RATES in order.
"""

import logging
from dataclasses import dataclass, replace
from typing import Final, Optional

import serial
import serial.tools.list_ports

from slip_printer.errors import OpenFailed

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Baud rates accepted by open_serial_port
VALID_BAUD_RATES: Final[tuple[int, ...]] = (
    2400, 4800, 9600, 19200, 38400, 57600, 115200,
)

# Family default, used by every connection path
DEFAULT_BAUD_RATE: Final[int] = 9600

# Order in which baud negotiation tries rates
NEGOTIATION_BAUD_RATES: Final[tuple[int, ...]] = (
    9600, 115200, 38400, 19200, 57600, 4800, 2400,
)

# Default read timeout in seconds
DEFAULT_TIMEOUT: Final[float] = 1.0

# Default write timeout in seconds (bounds a write on device removal)
DEFAULT_WRITE_TIMEOUT: Final[float] = 5.0

# USB Vendor IDs for common printer interfaces and USB-serial bridges
USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x0403: "FTDI",           # Future Technology Devices International
    0x10C4: "Silicon Labs",   # Silicon Labs CP210x
    0x067B: "Prolific",       # Prolific Technology
    0x1A86: "QinHeng",        # QinHeng Electronics (CH340)
    0x04B8: "Epson",
    0x0416: "Winbond",        # Common in generic thermal printers
    0x0483: "STMicro",        # Common in generic thermal printers
}


# =============================================================================
# Line Parameters
# =============================================================================

@dataclass(frozen=True)
class LineParameters:
    """
    Framing settings used to open a port.

    For this device family everything except the baud rate is fixed.
    The other fields exist so the full set is visible in logs and can
    be validated against an open port.

    Attributes:
        baud_rate: Bits per second
        data_bits: Always 8
        stop_bits: Always 1
        parity: Always "none"
        flow_control: Always "none"
    """

    baud_rate: int = DEFAULT_BAUD_RATE
    data_bits: int = 8
    stop_bits: int = 1
    parity: str = "none"
    flow_control: str = "none"

    def with_baud(self, baud_rate: int) -> "LineParameters":
        """Return a copy with a different baud rate."""
        return replace(self, baud_rate=baud_rate)

    def __str__(self) -> str:
        """Format as the usual '9600 8N1' shorthand."""
        parity = self.parity[0].upper()
        return f"{self.baud_rate} {self.data_bits}{parity}{self.stop_bits}"


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    Information about an available serial port.

    Attributes:
        device: System device path (e.g., '/dev/ttyUSB0', 'COM3')
        description: Human-readable description from the driver
        manufacturer: Device manufacturer (if available)
        product: Product name (if available)
        serial_number: Device serial number (if available)
        vid: USB Vendor ID (None for non-USB ports)
        pid: USB Product ID (None for non-USB ports)
    """

    device: str
    description: str = ""
    manufacturer: Optional[str] = None
    product: Optional[str] = None
    serial_number: Optional[str] = None
    vid: Optional[int] = None
    pid: Optional[int] = None

    @property
    def is_usb(self) -> bool:
        """Return True if this is a USB device."""
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        """Return the vendor name for known USB vendors."""
        if self.vid is not None:
            return USB_VENDOR_IDS.get(self.vid)
        return None

    def __str__(self) -> str:
        """Format port info for display."""
        parts = [self.device]
        if self.description:
            parts.append(f"- {self.description}")
        if self.vendor_name:
            parts.append(f"({self.vendor_name})")
        return " ".join(parts)


# =============================================================================
# Port Enumeration
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """
    List all serial ports currently present on the system.

    Returns:
        List of PortInfo objects describing available ports. An empty
        list is a normal result.
    """
    ports = []

    for port in serial.tools.list_ports.comports():
        info = PortInfo(
            device=port.device,
            description=port.description or "",
            manufacturer=port.manufacturer,
            product=port.product,
            serial_number=port.serial_number,
            vid=port.vid,
            pid=port.pid,
        )
        ports.append(info)
        logger.debug(
            "Found port: %s (vid=%s, pid=%s)",
            port.device,
            f"{port.vid:04X}" if port.vid else "N/A",
            f"{port.pid:04X}" if port.pid else "N/A",
        )

    return ports


# =============================================================================
# Port Configuration
# =============================================================================

def open_serial_port(
    device: str,
    params: Optional[LineParameters] = None,
    timeout: float = DEFAULT_TIMEOUT,
    write_timeout: float = DEFAULT_WRITE_TIMEOUT,
) -> serial.Serial:
    """
    Open and configure a serial port for the printer.

    Args:
        device: Serial port device path (e.g., '/dev/ttyUSB0', 'COM3').
        params: Line parameters. Defaults to 9600 8N1, no flow control.
        timeout: Read timeout in seconds.
        write_timeout: Write timeout in seconds.

    Returns:
        Configured and opened serial.Serial object.

    Raises:
        OpenFailed: If the port cannot be opened or the parameters
            are rejected.

    Note:
        The caller is responsible for closing the port when done.
    """
    params = params or LineParameters()

    if params.baud_rate not in VALID_BAUD_RATES:
        valid_str = ", ".join(str(b) for b in VALID_BAUD_RATES)
        raise OpenFailed(
            f"invalid baud rate {params.baud_rate} (valid rates: {valid_str})",
            device=device,
        )

    logger.info("Opening serial port: %s at %s", device, params)

    try:
        port = serial.Serial(
            port=device,
            baudrate=params.baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            write_timeout=write_timeout,
            xonxoff=False,      # No software flow control
            rtscts=False,       # No hardware flow control
            dsrdtr=False,       # No DTR/DSR handshaking
        )

        # Flush any pending data
        port.reset_input_buffer()
        port.reset_output_buffer()

        logger.debug("Port opened: %s (timeout=%.1f)", device, timeout)
        return port

    except (serial.SerialException, ValueError) as e:
        error_msg = str(e)

        if "Permission denied" in error_msg:
            raise OpenFailed(
                "permission denied. You may need to add your user to the "
                "'dialout' group: sudo usermod -a -G dialout $USER",
                device=device,
            ) from e
        elif "No such file" in error_msg or "not found" in error_msg.lower():
            raise OpenFailed(
                "port not found. Use 'slipctl ports' to list available ports.",
                device=device,
            ) from e
        elif "busy" in error_msg.lower() or "in use" in error_msg.lower():
            raise OpenFailed(
                "port is busy. Close any other programs using the port.",
                device=device,
            ) from e
        else:
            raise OpenFailed(error_msg or type(e).__name__, device=device) from e


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """
    Safely close a serial port.

    Flushes pending output and ignores errors during close, so it can
    be called on a port whose device has already been unplugged.

    Args:
        port: Serial port object to close.
    """
    if port is None:
        return

    try:
        if port.is_open:
            port.flush()
            port.close()
            logger.debug("Serial port closed")
    except (serial.SerialException, OSError) as e:
        logger.warning("Error closing serial port: %s", e)


# =============================================================================
# Port Validation
# =============================================================================

def validate_port_settings(
    port: serial.Serial,
    params: Optional[LineParameters] = None,
) -> bool:
    """
    Validate that an open port matches the expected line parameters.

    Args:
        port: Serial port object to validate.
        params: Expected parameters (default 9600 8N1).

    Returns:
        True if settings are correct, False otherwise.

    Note:
        This only checks settings, it doesn't verify that the printer
        actually understands them.
    """
    params = params or LineParameters()

    if not port.is_open:
        logger.warning("Port is not open")
        return False

    issues = []

    if port.baudrate != params.baud_rate:
        issues.append(f"baud rate is {port.baudrate}, expected {params.baud_rate}")

    if port.bytesize != serial.EIGHTBITS:
        issues.append(f"data bits is {port.bytesize}, expected 8")

    if port.parity != serial.PARITY_NONE:
        issues.append(f"parity is {port.parity}, expected none")

    if port.stopbits != serial.STOPBITS_ONE:
        issues.append(f"stop bits is {port.stopbits}, expected 1")

    if port.xonxoff:
        issues.append("XON/XOFF flow control should be disabled")

    if port.rtscts:
        issues.append("RTS/CTS flow control should be disabled")

    if issues:
        for issue in issues:
            logger.warning("Port setting issue: %s", issue)
        return False

    return True


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """
    Format a list of ports for display to the user.

    Args:
        ports: List of PortInfo objects to format.
        verbose: If True, include additional details.

    Returns:
        Formatted string with one port per line.
    """
    if not ports:
        return "No serial ports found."

    lines = []
    for index, port in enumerate(ports):
        if verbose:
            line = f"  [{index}] {port.device}"
            if port.description:
                line += f"\n    Description: {port.description}"
            if port.manufacturer:
                line += f"\n    Manufacturer: {port.manufacturer}"
            if port.product:
                line += f"\n    Product: {port.product}"
            if port.vid is not None:
                line += f"\n    USB VID:PID: {port.vid:04X}:{port.pid or 0:04X}"
                if port.vendor_name:
                    line += f" ({port.vendor_name})"
            if port.serial_number:
                line += f"\n    Serial: {port.serial_number}"
            lines.append(line)
        else:
            lines.append(f"  [{index}] {port}")

    return "\n".join(lines)
