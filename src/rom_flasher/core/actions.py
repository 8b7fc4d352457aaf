"""
Core workflow actions for ROM Flasher.

Functions here wire file loading, write gating, the serial transport and the
flashing engine together, and report through OperationResult. Front ends
call into this module rather than driving the engine themselves.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

from rom_flasher.core.engine import DEFAULT_BAUD_RATE, DEFAULT_FLASH_OFFSET, FlashingEngine
from rom_flasher.core.pacing import PacingPolicy
from rom_flasher.core.results import OperationResult
from rom_flasher.core.safety import SafetyContext, require_write_permission
from rom_flasher.core.state import EngineState, LogCategory, Progress
from rom_flasher.errors import FlasherError
from rom_flasher.protocol.rom_loader import CHUNK_SIZE, build_flash_frames
from rom_flasher.protocol.serial_transport import SerialTransport, Transport

logger = logging.getLogger(__name__)

FIRMWARE_SUFFIX = ".bin"


def load_firmware(path: str) -> bytes:
    """
    Read a raw firmware image from disk.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a .bin image
    """
    image_path = Path(path)
    if not image_path.is_file():
        raise FileNotFoundError(f"Firmware file not found: {path}")
    if image_path.suffix.lower() != FIRMWARE_SUFFIX:
        raise ValueError(f"Please select a {FIRMWARE_SUFFIX} firmware file (got '{image_path.name}')")
    return image_path.read_bytes()


def describe_firmware(name: str, size: int) -> str:
    return f"File selected: {name} ({size / 1024:.2f} KB)"


def flash_region(offset: int, length: int) -> str:
    return f"0x{offset:06X}-0x{offset + length:06X}"


def plan_flash(image: bytes, offset: int = DEFAULT_FLASH_OFFSET) -> OperationResult:
    """
    Describe the frames a flash would send, without touching a device.

    Returns:
        OperationResult with metadata["frame_count"], ["data_frames"],
        ["wire_bytes"] and hashes["sha256"]
    """
    frames = build_flash_frames(image, offset)
    result = OperationResult.success(
        operation="plan_flash",
        region=flash_region(offset, len(image)),
        bytes_len=len(image),
    )
    result.hashes["sha256"] = hashlib.sha256(image).hexdigest()
    result.metadata["frame_count"] = len(frames)
    result.metadata["data_frames"] = len(frames) - 2
    result.metadata["wire_bytes"] = sum(len(frame) for frame in frames)
    result.metadata["offset"] = offset
    if not image:
        result.add_warning("Image is empty; only BEGIN and END frames would be sent")
    return result


def dump_frame_artifacts(image: bytes, offset: int, output_dir: str) -> Path:
    """
    Write the encoded frame stream and a manifest for protocol comparisons.

    Returns:
        Path to manifest.json
    """
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    frames = build_flash_frames(image, offset)
    (out_dir / "image.bin").write_bytes(image)
    (out_dir / "frames.bin").write_bytes(b"".join(frames))

    manifest = {
        "image_bytes": len(image),
        "offset": f"0x{offset:X}",
        "chunk_size": CHUNK_SIZE,
        "frame_count": len(frames),
        "begin_hex": frames[0].hex(),
        "end_hex": frames[-1].hex(),
        "image_sha256": hashlib.sha256(image).hexdigest(),
        "frames_sha256": hashlib.sha256(b"".join(frames)).hexdigest(),
    }
    manifest_path = out_dir / "manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    return manifest_path


def flash_firmware_file(
    port: str,
    image_path: str,
    safety_ctx: SafetyContext,
    baudrate: int = DEFAULT_BAUD_RATE,
    offset: int = DEFAULT_FLASH_OFFSET,
    pacing: Optional[PacingPolicy] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    transport: Optional[Transport] = None,
) -> OperationResult:
    """
    Flash a firmware file through a fresh engine and report the outcome.

    The transport is always disconnected afterwards, whether the flash
    succeeded or not.

    Args:
        port: Serial port or pyserial URL
        image_path: Path to a .bin image
        safety_ctx: Safety context for gating
        baudrate: Serial baud rate
        offset: Target flash address
        pacing: Frame pacing (default fixed delays)
        progress_cb: Optional progress callback(bytes_sent, total)
        transport: Transport override (default SerialTransport(port))

    Returns:
        OperationResult; flasher failures are reported in result.errors

    Raises:
        WritePermissionError: If safety check fails
        FileNotFoundError / ValueError: If the image cannot be loaded
    """
    image = load_firmware(image_path)
    region = flash_region(offset, len(image))

    require_write_permission(
        safety_ctx,
        port=port,
        target_region=region,
        bytes_length=len(image),
        offset=offset,
    )

    if safety_ctx.simulate:
        result = plan_flash(image, offset)
        result.port = port
        result.add_warning("Simulation only: no data was written")
        return result

    engine = FlashingEngine(transport or SerialTransport(port), pacing=pacing)
    engine.add_log(describe_firmware(Path(image_path).name, len(image)), LogCategory.SUCCESS)

    if progress_cb:
        last_progress = Progress()

        def _on_state(state: EngineState) -> None:
            nonlocal last_progress
            if state.progress != last_progress:
                last_progress = state.progress
                progress_cb(state.progress.current, state.progress.total)

        engine.subscribe(_on_state)

    errors: List[str] = []
    try:
        engine.connect(baudrate)
    except FlasherError as exc:
        errors.append(str(exc))
    else:
        try:
            engine.flash_firmware(image, offset)
        except FlasherError as exc:
            errors.append(str(exc))
        finally:
            try:
                engine.disconnect()
            except FlasherError as exc:
                errors.append(f"Disconnect failed: {exc}")

    result = OperationResult.success(
        operation="flash_firmware",
        region=region,
        bytes_len=len(image),
        port=port,
    )
    for error in errors:
        result.add_error(error)
    if errors:
        logger.debug(f"flash_firmware failed: {'; '.join(errors)}")

    state = engine.state
    result.hashes["sha256"] = hashlib.sha256(image).hexdigest()
    result.metadata["baudrate"] = baudrate
    result.metadata["offset"] = offset
    result.metadata["progress"] = state.to_dict()["progress"]
    result.logs = [entry.format() for entry in state.logs]
    return result
