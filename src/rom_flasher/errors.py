"""Exception hierarchy shared by the transport, engine and CLI."""

from typing import Optional


class FlasherError(Exception):
    """Base error for rom_flasher."""


class TransportError(FlasherError):
    """Serial transport open/write/read failure."""


class UnsupportedTransport(TransportError):
    """Host has no usable serial capability for the requested port."""


class ConnectDenied(TransportError):
    """The OS or user refused access to the serial device."""


class NotWritable(TransportError):
    """Write attempted on a closed handle."""


class NotReadable(TransportError):
    """Read attempted on a closed handle or a released read cursor."""


class ReadTimeout(TransportError):
    """No bytes arrived within the read timeout."""


class NotConnected(FlasherError):
    """Flash requested while the engine is not in the connected state."""


class FlashInProgress(NotConnected):
    """Flash requested while another flash is running on the same engine."""


class FrameError(FlasherError):
    """Raised when decoding a malformed bootloader frame."""


class WritePermissionError(FlasherError):
    """
    Raised when a write operation is not permitted.

    Attributes:
        reason: Human-readable explanation of why write was denied
        details: Additional context (port, region, etc.)
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)
