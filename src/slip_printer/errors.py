"""
Slip Printer Error Hierarchy
============================

This module defines the exception hierarchy for the whole package.
All exceptions inherit from PrinterError, allowing callers to catch all
printer-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
PrinterError (base)
├── ConfigError - invalid configuration value
├── CommsError (serial communication)
│   ├── ConnectionError - cannot acquire or open the printer
│   │   ├── AuthorizationDenied - user cancelled the port chooser
│   │   ├── NoDeviceSelected - chooser finished without a device
│   │   ├── OpenFailed - port busy, parameters rejected, permission revoked
│   │   ├── WriterUnavailable - port open but no exclusive writer
│   │   └── NoPersistentConnection - nothing to quickly reconnect to
│   │       └── AllCandidatesFailed - every enumerated port was tried
│   ├── NotConnectedError - operation needs an open connection
│   └── WriteFailed - bytes could not be written to the device
└── DocumentError - a print document could not be built

Error Codes
-----------
Every exception exposes a ``code`` attribute equal to its class name.
The connection manager reports failures as ``ConnectionStatus`` values
instead of raising, and uses ``code`` to tell callers which branch of
the taxonomy they hit:

    status = await manager.connect()
    if status.code == "AuthorizationDenied":
        ...  # offer the connect button again
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class PrinterError(Exception):
    """
    Base exception for all slip printer errors.

    All exceptions in the package inherit from this class:

        try:
            await transport.open(handle, params)
        except PrinterError as e:
            print(f"Error ({e.code}): {e}")
    """

    @property
    def code(self) -> str:
        """Taxonomy name of this error (the class name)."""
        return type(self).__name__


class ConfigError(PrinterError):
    """
    Invalid configuration.

    Raised when an environment variable or option cannot be parsed
    into the type the configuration expects.
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(PrinterError):
    """Base exception for serial communication errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot connect to the printer.

    Base class for every failure of the acquisition path. Raised by
    the transport; caught by the connection manager and converted into
    a ConnectionStatus.
    """
    pass


class AuthorizationDenied(ConnectionError):
    """
    The user declined or cancelled device selection.

    Not retryable within the same call. The next user action (for
    example pressing the connect button again) may retry.
    """

    def __init__(self, message: str = "Port selection was cancelled"):
        super().__init__(message)


class NoDeviceSelected(ConnectionError):
    """
    The port chooser completed without choosing a device.

    Also raised when no serial device is present to choose from.
    """

    def __init__(self, message: str = "No serial port was selected"):
        super().__init__(message)


class OpenFailed(ConnectionError):
    """
    The port could not be opened.

    Raised when:
    - The device is busy (opened by another program)
    - The line parameters were rejected by the driver
    - Permission to the device was revoked or never granted
    - The device disappeared

    Attributes:
        reason: Short explanation suitable for display
        device: Device path of the port, when known
    """

    def __init__(self, reason: str, device: Optional[str] = None):
        self.reason = reason
        self.device = device
        if device:
            message = f"Cannot open {device}: {reason}"
        else:
            message = f"Cannot open port: {reason}"
        super().__init__(message)


class WriterUnavailable(ConnectionError):
    """
    The port is open but an exclusive writer could not be obtained.

    This is the "degraded" condition: reachable but unusable. The
    connection manager treats it as a failed candidate.
    """

    def __init__(self, message: str = "Could not get writer for printer"):
        super().__init__(message)


class NoPersistentConnection(ConnectionError):
    """
    Quick reconnect has nothing to work with.

    Raised when no connection record was saved, the record is older
    than the staleness window, or no previously authorized port exists.
    """
    pass


class AllCandidatesFailed(NoPersistentConnection):
    """
    Every candidate port was tried and none produced a usable writer.

    Attributes:
        attempts: Number of candidate ports tried
        last_error: The error raised by the last candidate, if any
    """

    def __init__(
        self,
        attempts: int,
        last_error: Optional[BaseException] = None,
        message: str = "",
    ):
        self.attempts = attempts
        self.last_error = last_error
        if not message:
            message = f"All {attempts} candidate port(s) failed"
            if last_error is not None:
                message += f" (last error: {last_error})"
        super().__init__(message)


class NotConnectedError(CommsError):
    """
    Operation requires an open connection.

    Raised when printing or negotiating while the manager is idle or
    degraded.
    """

    def __init__(self, message: str = "Printer not connected"):
        super().__init__(message)


class WriteFailed(CommsError):
    """
    Writing to the device failed.

    Raised when the serial driver reports an error or a write timeout
    while a job is being sent.
    """
    pass


# =============================================================================
# Document Exceptions
# =============================================================================

class DocumentError(PrinterError):
    """
    A print document could not be built.

    Raised when template fields are missing or have the wrong shape,
    for example a batch file entry without an order id.
    """
    pass
