"""Shared fakes for engine and workflow tests."""

from typing import List, Optional

import pytest

from rom_flasher.core.engine import FlashingEngine
from rom_flasher.core.pacing import PacingPolicy
from rom_flasher.errors import NotReadable, NotWritable, ReadTimeout, TransportError


class FakeReader:
    def __init__(self, transport: "FakeTransport") -> None:
        self.transport = transport
        self.released = False

    def read(self, timeout: float) -> bytes:
        if self.released or not self.transport.is_open:
            raise NotReadable("Port not readable")
        if not self.transport.incoming:
            raise ReadTimeout(f"Read timeout after {timeout:.3f}s")
        return self.transport.incoming.pop(0)

    def cancel(self) -> None:
        self.released = True
        self.transport.events.append("cancel")


class FakeTransport:
    """In-memory transport recording every frame written."""

    def __init__(
        self,
        fail_on_write: Optional[int] = None,
        open_error: Optional[Exception] = None,
    ) -> None:
        self.fail_on_write = fail_on_write
        self.open_error = open_error
        self.writes: List[bytes] = []
        self.incoming: List[bytes] = []
        self.events: List[str] = []
        self.baudrate: Optional[int] = None
        self.readers: List[FakeReader] = []
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, baudrate: int) -> None:
        if self.open_error is not None:
            raise self.open_error
        self._open = True
        self.baudrate = baudrate
        self.events.append("open")

    def write(self, data: bytes) -> None:
        if not self._open:
            raise NotWritable("Port not writable")
        if self.fail_on_write == len(self.writes) + 1:
            raise TransportError("write failed")
        self.writes.append(bytes(data))

    def reader(self) -> FakeReader:
        if not self._open:
            raise NotReadable("Port not readable")
        reader = FakeReader(self)
        self.readers.append(reader)
        return reader

    def close(self) -> None:
        self._open = False
        self.events.append("close")


class RecordingPacing(PacingPolicy):
    """Pacing that records requested waits instead of sleeping."""

    def __init__(self) -> None:
        self.waits: List[float] = []
        super().__init__(sleep=self.waits.append)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def pacing() -> RecordingPacing:
    return RecordingPacing()


@pytest.fixture
def engine(transport: FakeTransport, pacing: RecordingPacing) -> FlashingEngine:
    return FlashingEngine(transport, pacing=pacing)


@pytest.fixture
def connected_engine(engine: FlashingEngine) -> FlashingEngine:
    engine.connect()
    return engine
