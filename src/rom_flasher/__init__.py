"""
ROM Flasher - load raw firmware images onto a microcontroller over serial

Drives the vendor ROM bootloader's FLASH_BEGIN / FLASH_DATA / FLASH_END
sequence with progress tracking and a bounded audit log.
"""

__version__ = "0.1.0"

from rom_flasher.protocol import SerialTransport
from rom_flasher.core.engine import FlashingEngine
from rom_flasher.core.state import EngineState

__all__ = [
    "SerialTransport",
    "FlashingEngine",
    "EngineState",
    "__version__",
]
