"""
Core module for ROM Flasher.

This module provides the single source of truth for:
- The flashing engine and its state snapshot (engine.py, state.py)
- Frame pacing (pacing.py)
- Write gating / confirmation (safety.py)
- Offset and baud rate parsing (parsing.py)
- Result objects (results.py)
- File-level flash workflows (actions.py)
"""

from .engine import (
    DEFAULT_BAUD_RATE,
    DEFAULT_FLASH_OFFSET,
    FlashJob,
    FlashingEngine,
)
from .state import (
    LOG_CAPACITY,
    EngineState,
    LogCategory,
    LogEntry,
    LogSink,
    Progress,
    ProgressTracker,
    SessionState,
)
from .pacing import PacingPolicy
from .safety import SafetyContext, require_write_permission, CONFIRMATION_TOKEN
from .parsing import parse_offset, parse_baudrate, COMMON_BAUD_RATES
from .results import OperationResult
from .actions import (
    load_firmware,
    plan_flash,
    dump_frame_artifacts,
    flash_firmware_file,
)

__all__ = [
    # Engine
    "DEFAULT_BAUD_RATE",
    "DEFAULT_FLASH_OFFSET",
    "FlashJob",
    "FlashingEngine",
    # State
    "LOG_CAPACITY",
    "EngineState",
    "LogCategory",
    "LogEntry",
    "LogSink",
    "Progress",
    "ProgressTracker",
    "SessionState",
    # Pacing
    "PacingPolicy",
    # Safety
    "SafetyContext",
    "require_write_permission",
    "CONFIRMATION_TOKEN",
    # Parsing
    "parse_offset",
    "parse_baudrate",
    "COMMON_BAUD_RATES",
    # Results
    "OperationResult",
    # Actions
    "load_firmware",
    "plan_flash",
    "dump_frame_artifacts",
    "flash_firmware_file",
]
