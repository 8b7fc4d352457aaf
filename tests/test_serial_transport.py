"""Tests for the pyserial transport, using the loop:// URL handler."""

import errno

import pytest
import serial

from rom_flasher.core.engine import FlashingEngine
from rom_flasher.core.pacing import PacingPolicy
from rom_flasher.errors import (
    ConnectDenied,
    NotReadable,
    NotWritable,
    ReadTimeout,
    TransportError,
    UnsupportedTransport,
)
from rom_flasher.protocol.rom_loader import build_flash_frames
from rom_flasher.protocol.serial_transport import SerialTransport


@pytest.fixture
def loop_transport():
    transport = SerialTransport("loop://", timeout=0.2)
    transport.open(115200)
    yield transport
    transport.close()


class _FailingSerial:
    """Stand-in for serial_for_url(..., do_not_open=True) whose open() fails."""

    is_open = False

    def __init__(self, exc):
        self._exc = exc

    def open(self):
        raise self._exc


class TestOpen:
    """Open failures map onto the error taxonomy."""

    def test_loopback_opens(self, loop_transport):
        assert loop_transport.is_open
        assert loop_transport.baudrate == 115200

    def test_unknown_url_scheme_unsupported(self):
        transport = SerialTransport("nosuchproto://device")
        with pytest.raises(UnsupportedTransport):
            transport.open(9600)
        assert not transport.is_open

    def test_permission_denied(self, monkeypatch):
        exc = serial.SerialException(errno.EACCES, "could not open port /dev/ttyUSB0: Permission denied")
        monkeypatch.setattr(serial, "serial_for_url", lambda *args, **kwargs: _FailingSerial(exc))
        with pytest.raises(ConnectDenied):
            SerialTransport("/dev/ttyUSB0").open(115200)

    def test_windows_access_denied_message(self, monkeypatch):
        exc = serial.SerialException("could not open port 'COM3': PermissionError(13, 'Access is denied.')")
        monkeypatch.setattr(serial, "serial_for_url", lambda *args, **kwargs: _FailingSerial(exc))
        with pytest.raises(ConnectDenied):
            SerialTransport("COM3").open(115200)

    def test_missing_device_is_generic_error(self, monkeypatch):
        exc = serial.SerialException(errno.ENOENT, "could not open port /dev/ttyUSB9: No such file")
        monkeypatch.setattr(serial, "serial_for_url", lambda *args, **kwargs: _FailingSerial(exc))
        with pytest.raises(TransportError) as info:
            SerialTransport("/dev/ttyUSB9").open(115200)
        assert not isinstance(info.value, ConnectDenied)

    def test_open_twice_rejected(self, loop_transport):
        with pytest.raises(TransportError):
            loop_transport.open(115200)


class TestReadWrite:
    """Loopback write/read behavior."""

    def test_write_then_read(self, loop_transport):
        loop_transport.write(b"\x04\x00")
        assert loop_transport.reader().read(0.5) == b"\x04\x00"

    def test_read_timeout(self, loop_transport):
        with pytest.raises(ReadTimeout):
            loop_transport.reader().read(0.05)

    def test_cancelled_reader_not_readable(self, loop_transport):
        reader = loop_transport.reader()
        reader.cancel()
        reader.cancel()
        assert reader.released
        with pytest.raises(NotReadable):
            reader.read(0.05)


class TestClose:
    """Close is idempotent and closes both halves."""

    def test_double_close(self):
        transport = SerialTransport("loop://")
        transport.open(9600)
        transport.close()
        transport.close()
        assert not transport.is_open

    def test_write_after_close(self):
        transport = SerialTransport("loop://")
        transport.open(9600)
        transport.close()
        with pytest.raises(NotWritable):
            transport.write(b"\x00")
        with pytest.raises(NotReadable):
            transport.reader()

    def test_never_opened(self):
        transport = SerialTransport("loop://")
        transport.close()
        with pytest.raises(NotWritable):
            transport.write(b"\x00")


class TestEngineOverLoopback:
    """End-to-end flash over a loopback port echoes the exact frame stream."""

    def test_frames_echo(self):
        image = bytes(range(256)) + b"\xC3" * 44
        expected = b"".join(build_flash_frames(image, 0x10000))

        engine = FlashingEngine(SerialTransport("loop://", timeout=0.2), pacing=PacingPolicy.immediate())
        engine.connect(115200)
        try:
            engine.flash_firmware(image, offset=0x10000)
            received = b""
            while len(received) < len(expected):
                received += engine.read(timeout=0.5)
        finally:
            engine.disconnect()

        assert received == expected
        assert engine.state.progress.percentage == 100
        assert not engine.state.connected
