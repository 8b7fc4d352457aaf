"""Device protocol layer - serial transport and ROM loader framing."""

from .serial_transport import (
    Reader,
    SerialReader,
    SerialTransport,
    Transport,
)
from .rom_loader import (
    CHUNK_SIZE,
    CMD_FLASH_BEGIN,
    CMD_FLASH_DATA,
    CMD_FLASH_END,
    build_flash_frames,
    chunk_image,
    decode_flash_begin,
    decode_flash_data,
    decode_flash_end,
    encode_flash_begin,
    encode_flash_data,
    encode_flash_end,
)

__all__ = [
    # Transport
    "Transport",
    "Reader",
    "SerialTransport",
    "SerialReader",
    # ROM loader framing
    "CHUNK_SIZE",
    "CMD_FLASH_BEGIN",
    "CMD_FLASH_DATA",
    "CMD_FLASH_END",
    "build_flash_frames",
    "chunk_image",
    "decode_flash_begin",
    "decode_flash_data",
    "decode_flash_end",
    "encode_flash_begin",
    "encode_flash_data",
    "encode_flash_end",
]
