"""
ROM Bootloader Frame Encoding

Encodes the three flash commands understood by the vendor ROM loader:

1. FLASH_BEGIN (0x02): announce image size and target flash address
2. FLASH_DATA  (0x03): one length-prefixed chunk of the image (<= 256 bytes)
3. FLASH_END   (0x04): finish, with a reboot flag (always "stay in loader")

Frames are fire-and-forget: there is no SYNC handshake, no checksum and no
acknowledgement read-back. Pacing between frames is handled by the caller
(see rom_flasher.core.pacing). This is a known limitation compared to
production flashing tools.
"""

import struct
from typing import Iterator, List, Tuple

from rom_flasher.errors import FrameError

# Protocol constants
SYNC_WORD = 0x07  # defined by the loader, not used by this flow
CMD_FLASH_BEGIN = 0x02
CMD_FLASH_DATA = 0x03
CMD_FLASH_END = 0x04

CHUNK_SIZE = 256
FLASH_BEGIN_LEN = 16
FLASH_DATA_HEADER_LEN = 4
FLASH_END_LEN = 2

# cmd | 7 reserved bytes | image_len u32 LE | offset u32 LE
_BEGIN_STRUCT = struct.Struct("<B7xII")
# cmd | chunk_len u16 LE | reserved
_DATA_HEADER_STRUCT = struct.Struct("<BHx")
# cmd | reboot flag
_END_STRUCT = struct.Struct("<BB")


def encode_flash_begin(image_len: int, offset: int) -> bytes:
    """
    Build a FLASH_BEGIN frame.

    Frame format (16 bytes):
    [ 0x02 | 00 x7 | image_len (u32 LE) | offset (u32 LE) ]

    Args:
        image_len: Total firmware image length in bytes
        offset: Target flash address

    Returns:
        Complete frame as bytes
    """
    return _BEGIN_STRUCT.pack(CMD_FLASH_BEGIN, image_len, offset)


def encode_flash_data(chunk: bytes) -> bytes:
    """
    Build a FLASH_DATA frame.

    Frame format:
    [ 0x03 | len (u16 LE) | 00 | chunk... ]

    The chunking loop guarantees len(chunk) <= CHUNK_SIZE.
    """
    return _DATA_HEADER_STRUCT.pack(CMD_FLASH_DATA, len(chunk)) + bytes(chunk)


def encode_flash_end(reboot: bool = False) -> bytes:
    """Build a FLASH_END frame: [ 0x04 | reboot flag ]."""
    return _END_STRUCT.pack(CMD_FLASH_END, 1 if reboot else 0)


def chunk_image(image: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[Tuple[int, bytes]]:
    """
    Split image bytes into (buffer_offset, chunk) tuples in transfer order.

    The final chunk is short when the image length is not chunk-aligned;
    it is never padded.
    """
    for start in range(0, len(image), chunk_size):
        yield start, bytes(image[start:start + chunk_size])


def build_flash_frames(image: bytes, offset: int, chunk_size: int = CHUNK_SIZE) -> List[bytes]:
    """
    Build the complete, ordered frame list for one flash job.

    Returns:
        [BEGIN, DATA..., END]
    """
    frames = [encode_flash_begin(len(image), offset)]
    frames.extend(encode_flash_data(chunk) for _, chunk in chunk_image(image, chunk_size))
    frames.append(encode_flash_end())
    return frames


def decode_flash_begin(frame: bytes) -> Tuple[int, int]:
    """
    Parse a FLASH_BEGIN frame.

    Returns:
        Tuple of (image_len, offset)
    """
    if len(frame) != FLASH_BEGIN_LEN:
        raise FrameError(f"FLASH_BEGIN must be {FLASH_BEGIN_LEN} bytes, got {len(frame)}")
    cmd, image_len, offset = _BEGIN_STRUCT.unpack(frame)
    if cmd != CMD_FLASH_BEGIN:
        raise FrameError(f"Not a FLASH_BEGIN frame (cmd=0x{cmd:02X})")
    return image_len, offset


def decode_flash_data(frame: bytes) -> bytes:
    """Parse a FLASH_DATA frame and return its chunk."""
    if len(frame) < FLASH_DATA_HEADER_LEN:
        raise FrameError(f"FLASH_DATA frame too short ({len(frame)} bytes)")
    cmd, length = _DATA_HEADER_STRUCT.unpack_from(frame)
    if cmd != CMD_FLASH_DATA:
        raise FrameError(f"Not a FLASH_DATA frame (cmd=0x{cmd:02X})")
    chunk = frame[FLASH_DATA_HEADER_LEN:]
    if len(chunk) != length:
        raise FrameError(
            f"FLASH_DATA length mismatch: header says {length}, payload has {len(chunk)}"
        )
    return bytes(chunk)


def decode_flash_end(frame: bytes) -> bool:
    """Parse a FLASH_END frame and return the reboot flag."""
    if len(frame) != FLASH_END_LEN:
        raise FrameError(f"FLASH_END must be {FLASH_END_LEN} bytes, got {len(frame)}")
    cmd, reboot = _END_STRUCT.unpack(frame)
    if cmd != CMD_FLASH_END:
        raise FrameError(f"Not a FLASH_END frame (cmd=0x{cmd:02X})")
    return reboot != 0
