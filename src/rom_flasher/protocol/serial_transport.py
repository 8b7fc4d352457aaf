"""
Serial Transport Layer

Handles the byte-oriented serial connection used to talk to the ROM loader.

This module provides:
- The transport contract the engine depends on (Transport / Reader protocols)
- A pyserial implementation supporting device paths and pyserial URLs
- Mapping of pyserial failures onto the rom_flasher error taxonomy
"""

import errno
import logging
from typing import Optional, Protocol

import serial

from rom_flasher.errors import (
    ConnectDenied,
    NotReadable,
    NotWritable,
    ReadTimeout,
    TransportError,
    UnsupportedTransport,
)

logger = logging.getLogger(__name__)

_DENIED_ERRNOS = {errno.EACCES, errno.EPERM, errno.EBUSY}


class Reader(Protocol):
    """Read cursor over an open transport handle."""

    def read(self, timeout: float) -> bytes:
        """Block until at least one byte arrives or timeout elapses."""

    def cancel(self) -> None:
        """Release the cursor, aborting a blocked read where supported."""


class Transport(Protocol):
    """Byte-oriented serial connection consumed by FlashingEngine."""

    @property
    def is_open(self) -> bool:
        """Whether the handle is currently open."""

    def open(self, baudrate: int) -> None:
        """Acquire the device and configure the baud rate."""

    def write(self, data: bytes) -> None:
        """Send bytes in order."""

    def reader(self) -> Reader:
        """Return a read cursor for the open handle."""

    def close(self) -> None:
        """Release the handle. Closing twice is a no-op."""


def _is_access_denied(exc: serial.SerialException) -> bool:
    if getattr(exc, "errno", None) in _DENIED_ERRNOS:
        return True
    text = str(exc).lower()
    return "access is denied" in text or "permission denied" in text


class SerialReader:
    """
    Read cursor bound to one pyserial handle.

    Acquired lazily by the engine on first read and held until the
    handle is torn down.
    """

    def __init__(self, ser: serial.SerialBase, port: str):
        self._ser = ser
        self._port = port
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def read(self, timeout: float) -> bytes:
        """
        Receive whatever bytes are pending (at least one).

        Args:
            timeout: Seconds to wait for the first byte

        Raises:
            NotReadable: If the cursor was released or the port closed
            ReadTimeout: If nothing arrived within timeout
            TransportError: On pyserial I/O failure
        """
        if self._released or not self._ser.is_open:
            raise NotReadable("Port not readable")

        try:
            self._ser.timeout = timeout
            data = self._ser.read(max(1, self._ser.in_waiting))
        except serial.SerialException as e:
            raise TransportError(f"Read error on {self._port}: {e}") from e

        if not data:
            raise ReadTimeout(f"Read timeout after {timeout:.3f}s on {self._port}")

        logger.debug(f"<<< {data.hex().upper()}")
        return data

    def cancel(self) -> None:
        """Release the cursor; safe to call more than once."""
        if self._released:
            return
        self._released = True
        if self._ser.is_open and hasattr(self._ser, "cancel_read"):
            self._ser.cancel_read()
        logger.debug(f"Released reader on {self._port}")


class SerialTransport:
    """
    pyserial-backed transport for the ROM loader.

    Example:
        transport = SerialTransport(port="/dev/ttyUSB0")
        transport.open(115200)
        transport.write(frame)
        data = transport.reader().read(timeout=1.0)
        transport.close()
    """

    def __init__(
        self,
        port: str,
        timeout: float = 1.0,
        write_timeout: float = 2.0,
        rtscts: bool = False,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port or pyserial URL (e.g., "/dev/ttyUSB0", "COM3", "loop://")
            timeout: Default read timeout in seconds (default 1.0)
            write_timeout: Write timeout in seconds (default 2.0)
            rtscts: Enable RTS/CTS hardware flow control (default False)
        """
        self.port = port
        self.timeout = timeout
        self.write_timeout = write_timeout
        self.rtscts = rtscts
        self.baudrate: Optional[int] = None
        self.ser: Optional[serial.SerialBase] = None

    @property
    def is_open(self) -> bool:
        return bool(self.ser is not None and self.ser.is_open)

    def open(self, baudrate: int) -> None:
        """
        Open serial port at the given baud rate (8N1).

        Raises:
            UnsupportedTransport: If the port scheme is not supported
            ConnectDenied: If access to the device is refused
            TransportError: If the port cannot be opened for any other reason
        """
        if self.is_open:
            raise TransportError(f"Port {self.port} is already open")

        try:
            ser = serial.serial_for_url(
                self.port,
                do_not_open=True,
                baudrate=baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
                write_timeout=self.write_timeout,
                rtscts=self.rtscts,
            )
        except ValueError as e:
            raise UnsupportedTransport(f"Serial transport unavailable for {self.port}: {e}") from e

        try:
            ser.open()
        except serial.SerialException as e:
            if _is_access_denied(e):
                raise ConnectDenied(f"Access to {self.port} denied: {e}") from e
            raise TransportError(f"Cannot open port {self.port}: {e}") from e

        ser.reset_input_buffer()
        ser.reset_output_buffer()

        self.ser = ser
        self.baudrate = baudrate
        logger.debug(
            f"Opened {self.port} at {baudrate} bps "
            f"(timeout={self.timeout}s, rtscts={self.rtscts})"
        )

    def write(self, data: bytes) -> None:
        """
        Send raw bytes to the device.

        Raises:
            NotWritable: If the port is not open
            TransportError: If the write fails or is incomplete
        """
        if not self.is_open:
            raise NotWritable("Port not writable")

        try:
            written = self.ser.write(data)
            self.ser.flush()
        except serial.SerialTimeoutException as e:
            raise TransportError(f"Write timeout on {self.port}: {e}") from e
        except serial.SerialException as e:
            raise TransportError(f"Write error on {self.port}: {e}") from e

        if written is not None and written != len(data):
            raise TransportError(f"Incomplete write: sent {written}/{len(data)} bytes")
        logger.debug(f">>> {data[:32].hex().upper()}" + ("..." if len(data) > 32 else ""))

    def reader(self) -> SerialReader:
        """
        Create a read cursor for the open handle.

        Raises:
            NotReadable: If the port is not open
        """
        if not self.is_open:
            raise NotReadable("Port not readable")
        return SerialReader(self.ser, self.port)

    def close(self) -> None:
        """Close serial port."""
        if self.ser is not None and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")
        self.ser = None
