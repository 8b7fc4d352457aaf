"""
Frame pacing between bootloader commands.

The ROM loader flow sends no acknowledgements, so the engine waits fixed
amounts of time instead: after FLASH_BEGIN for the erase, between FLASH_DATA
frames, and after FLASH_END for finalization. Keeping those waits here lets a
response-driven handshake replace them without touching framing or state.
"""

import time
from dataclasses import dataclass, field
from typing import Callable

BEGIN_SETTLE_S = 0.100
CHUNK_DELAY_S = 0.050
END_SETTLE_S = 0.500


def _no_sleep(_seconds: float) -> None:
    return None


@dataclass
class PacingPolicy:
    begin_settle: float = BEGIN_SETTLE_S
    chunk_delay: float = CHUNK_DELAY_S
    end_settle: float = END_SETTLE_S
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def immediate(cls) -> "PacingPolicy":
        """Pacing with every wait disabled (loopback and tests)."""
        return cls(begin_settle=0.0, chunk_delay=0.0, end_settle=0.0, sleep=_no_sleep)

    def after_begin(self) -> None:
        self._wait(self.begin_settle)

    def after_chunk(self) -> None:
        self._wait(self.chunk_delay)

    def after_end(self) -> None:
        self._wait(self.end_settle)

    def _wait(self, seconds: float) -> None:
        if seconds > 0:
            self.sleep(seconds)
