"""
Flashing engine: connection lifecycle, BEGIN/DATA/END sequencing, progress
and the audit log.

One engine owns one transport. Operations are expected to be driven by a
single controlling thread; the only concurrent call supported is
disconnect() from another thread, which aborts an in-flight flash through a
write failure on the next frame. All observable state is published as an
immutable EngineState snapshot.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple, Union

from rom_flasher.core.pacing import PacingPolicy
from rom_flasher.core.state import (
    EngineState,
    LogCategory,
    LogEntry,
    ProgressTracker,
    SessionState,
    LogSink,
)
from rom_flasher.errors import FlashInProgress, FlasherError, NotConnected
from rom_flasher.protocol.rom_loader import (
    CHUNK_SIZE,
    chunk_image,
    encode_flash_begin,
    encode_flash_data,
    encode_flash_end,
)
from rom_flasher.protocol.serial_transport import Reader, Transport

logger = logging.getLogger(__name__)

DEFAULT_BAUD_RATE = 115200
DEFAULT_FLASH_OFFSET = 0x10000
MAX_U32 = 0xFFFFFFFF

StateListener = Callable[[EngineState], None]

_LOG_LEVELS = {
    LogCategory.INFO: logging.INFO,
    LogCategory.SUCCESS: logging.INFO,
    LogCategory.WARNING: logging.WARNING,
    LogCategory.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class FlashJob:
    """
    One flash operation: the image, its flash address and the chunk size.

    Raises:
        ValueError: If offset or image length do not fit the 32-bit frame fields
    """
    image: bytes
    offset: int = DEFAULT_FLASH_OFFSET
    chunk_size: int = CHUNK_SIZE

    def __post_init__(self) -> None:
        if self.offset < 0 or self.offset > MAX_U32:
            raise ValueError(f"Flash offset out of range: {self.offset}")
        if len(self.image) > MAX_U32:
            raise ValueError(f"Image too large: {len(self.image)} bytes")
        if self.chunk_size <= 0 or self.chunk_size > CHUNK_SIZE:
            raise ValueError(f"Chunk size must be 1..{CHUNK_SIZE}, got {self.chunk_size}")

    @property
    def total(self) -> int:
        return len(self.image)

    def chunks(self) -> Iterator[Tuple[int, bytes]]:
        return chunk_image(self.image, self.chunk_size)


class FlashingEngine:
    """
    Drives the ROM loader flash sequence over a Transport.

    Example:
        engine = FlashingEngine(SerialTransport("/dev/ttyUSB0"))
        engine.connect(115200)
        try:
            engine.flash_firmware(image, offset=0x10000)
        finally:
            engine.disconnect()
    """

    def __init__(
        self,
        transport: Transport,
        pacing: Optional[PacingPolicy] = None,
        chunk_size: int = CHUNK_SIZE,
    ):
        self._transport = transport
        self._pacing = pacing or PacingPolicy()
        self._chunk_size = chunk_size
        self._lock = threading.Lock()
        self._session = SessionState.DISCONNECTED
        self._tracker = ProgressTracker()
        self._sink = LogSink()
        self._error: Optional[str] = None
        self._reader: Optional[Reader] = None
        self._listeners: List[StateListener] = []
        self._state = EngineState()

    @property
    def state(self) -> EngineState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener called with every new snapshot.

        Returns:
            Callable that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # -- logging -----------------------------------------------------------

    def add_log(
        self,
        message: str,
        category: Union[LogCategory, str] = LogCategory.INFO,
    ) -> LogEntry:
        """Append an entry to the engine log (usable by external collaborators)."""
        category = LogCategory(category)
        with self._lock:
            snapshot = self._record(message, category)
        self._notify(snapshot)
        return snapshot.logs[-1]

    def clear_logs(self) -> None:
        with self._lock:
            self._sink.clear()
            snapshot = self._snapshot()
        self._notify(snapshot)

    # -- connection --------------------------------------------------------

    def connect(self, baudrate: int = DEFAULT_BAUD_RATE) -> None:
        """
        Open the transport at the given baud rate.

        Raises:
            ValueError: If baudrate is not a positive integer
            FlasherError: If already connected
            TransportError: If the transport cannot be opened
        """
        try:
            if isinstance(baudrate, bool) or not isinstance(baudrate, int) or baudrate <= 0:
                raise ValueError(f"Baud rate must be a positive integer, got {baudrate!r}")
            with self._lock:
                if self._session is not SessionState.DISCONNECTED:
                    raise FlasherError("Already connected to device")
            self._transport.open(baudrate)
        except Exception as exc:
            message = _describe(exc, "Failed to connect")
            with self._lock:
                self._error = message
                snapshot = self._record(f"Connection failed: {message}", LogCategory.ERROR)
            self._notify(snapshot)
            raise

        with self._lock:
            self._session = SessionState.CONNECTED
            self._error = None
            self._reader = None
            snapshot = self._record(f"Connected to device at {baudrate} baud", LogCategory.SUCCESS)
        self._notify(snapshot)

    def disconnect(self) -> None:
        """
        Release the read cursor, then close the transport.

        Always ends disconnected with a log entry. A failure while releasing
        or closing is recorded and re-raised after the state change.
        """
        with self._lock:
            reader, self._reader = self._reader, None

        failure: Optional[Exception] = None
        if reader is not None:
            try:
                reader.cancel()
            except Exception as exc:
                failure = exc
        try:
            if self._transport.is_open:
                self._transport.close()
        except Exception as exc:
            failure = failure or exc

        with self._lock:
            self._session = SessionState.DISCONNECTED
            if failure is not None:
                self._error = _describe(failure, "Failed to disconnect")
                self._record(f"Disconnect error: {self._error}", LogCategory.ERROR)
            snapshot = self._record("Disconnected from device", LogCategory.INFO)
        self._notify(snapshot)

        if failure is not None:
            raise failure

    def read(self, timeout: float = 1.0) -> bytes:
        """
        Read pending bytes from the device, acquiring the reader on first use.

        Raises:
            NotReadable: If the transport is closed
            ReadTimeout: If nothing arrived in time
        """
        try:
            with self._lock:
                if self._reader is None:
                    self._reader = self._transport.reader()
                reader = self._reader
            return reader.read(timeout)
        except Exception as exc:
            message = _describe(exc, "Read failed")
            with self._lock:
                self._error = message
                snapshot = self._record(f"Read error: {message}", LogCategory.ERROR)
            self._notify(snapshot)
            raise

    # -- flashing ----------------------------------------------------------

    def flash_firmware(self, image: bytes, offset: int = DEFAULT_FLASH_OFFSET) -> None:
        """
        Flash a raw image at the given device address.

        Sends FLASH_BEGIN, one FLASH_DATA per 256-byte chunk, then FLASH_END,
        with fixed settle delays from the pacing policy. Any failure aborts
        the remaining frames; there is no retry or resume.

        Raises:
            NotConnected: If the engine is not connected
            FlashInProgress: If another flash is running on this engine
            ValueError: If offset or image size do not fit the frame fields
            TransportError: If a frame cannot be written
        """
        job, snapshot = self._enter_flashing(image, offset)

        completed = False
        try:
            self._notify(snapshot)
            self._transport.write(encode_flash_begin(job.total, job.offset))
            self._pacing.after_begin()

            for _, chunk in job.chunks():
                self._transport.write(encode_flash_data(chunk))
                self._pacing.after_chunk()
                with self._lock:
                    progress = self._tracker.advance(len(chunk))
                    snapshot = self._record(f"Flashed {progress.current}/{progress.total} bytes")
                self._notify(snapshot)

            self._transport.write(encode_flash_end())
            self._pacing.after_end()
            completed = True
        except Exception as exc:
            message = _describe(exc, "Flash failed")
            with self._lock:
                self._leave_flashing()
                self._error = message
                snapshot = self._record(f"Flash error: {message}", LogCategory.ERROR)
            self._notify(snapshot)
            raise
        finally:
            if not completed:
                with self._lock:
                    self._leave_flashing()

        with self._lock:
            self._leave_flashing()
            self._tracker.complete()
            snapshot = self._record("Firmware flash completed successfully!", LogCategory.SUCCESS)
        self._notify(snapshot)

    def _enter_flashing(self, image: bytes, offset: int) -> Tuple[FlashJob, EngineState]:
        """
        Check preconditions and move to FLASHING in one step.

        Rejections are logged, published and raised here. On success the
        caller publishes the returned snapshot.
        """
        rejection: Optional[Exception] = None
        with self._lock:
            if self._session is SessionState.FLASHING:
                # error field belongs to the running job
                rejection = FlashInProgress("A firmware flash is already in progress")
                snapshot = self._record(f"Flash rejected: {rejection}", LogCategory.ERROR)
            elif self._session is not SessionState.CONNECTED:
                self._error = "Not connected to device"
                rejection = NotConnected(self._error)
                snapshot = self._record(f"Flash error: {self._error}", LogCategory.ERROR)
            else:
                try:
                    job = FlashJob(image=bytes(image), offset=offset, chunk_size=self._chunk_size)
                except ValueError as exc:
                    self._error = _describe(exc, "Invalid flash job")
                    rejection = exc
                    snapshot = self._record(f"Flash error: {self._error}", LogCategory.ERROR)
                else:
                    self._session = SessionState.FLASHING
                    self._error = None
                    self._tracker.start(job.total)
                    self._record("Starting firmware flash...")
                    self._record(f"File size: {job.total} bytes")
                    snapshot = self._record(f"Flash offset: 0x{job.offset:x}")
        if rejection is not None:
            self._notify(snapshot)
            raise rejection
        return job, snapshot

    def _leave_flashing(self) -> None:
        # disconnect() may have moved the session on already
        if self._session is SessionState.FLASHING:
            self._session = SessionState.CONNECTED
            self._state = self._snapshot()

    # -- snapshot plumbing -------------------------------------------------

    def _record(self, message: str, category: LogCategory = LogCategory.INFO) -> EngineState:
        """Append a log entry and rebuild the snapshot. Caller holds the lock."""
        self._sink.append(message, category)
        logger.log(_LOG_LEVELS[category], message)
        return self._snapshot()

    def _snapshot(self) -> EngineState:
        self._state = EngineState(
            session=self._session,
            progress=self._tracker.progress,
            logs=self._sink.entries(),
            error=self._error,
        )
        return self._state

    def _notify(self, snapshot: EngineState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(snapshot)


def _describe(exc: BaseException, fallback: str) -> str:
    return str(exc) or fallback
