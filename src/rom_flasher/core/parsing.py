"""
Centralized parsing helpers for operator-supplied offsets and baud rates.

The engine only takes integers; front ends parse user text with these.
"""

from typing import Optional

COMMON_BAUD_RATES = (9600, 115200, 230400, 460800, 921600)


def parse_offset(value: Optional[str]) -> Optional[int]:
    """
    Parse a flash offset from string. Offsets are always hexadecimal.

    Accepts:
        - Bare hex: "10000" or "3f0000"
        - Hex with 0x prefix: "0x10000" or "0X10000"
        - Hex with h suffix: "10000h" or "10000H"
        - None or empty for "use the default"

    Returns:
        Parsed integer offset, or None if value is None or empty.

    Raises:
        ValueError: If value cannot be parsed or is negative.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    digits = value[:-1] if value.lower().endswith("h") else value
    try:
        parsed = int(digits, 16)
    except ValueError:
        raise ValueError(
            f"Invalid offset '{value}'. Use hex (10000, 0x10000 or 10000h)."
        )

    if parsed < 0:
        raise ValueError(f"Invalid offset '{value}'. Flash offsets cannot be negative.")
    return parsed


def parse_baudrate(value: str) -> int:
    """
    Parse a baud rate. Any positive integer is accepted.

    Raises:
        ValueError: If value is not a positive integer.
    """
    try:
        baud = int(value.strip())
    except ValueError:
        raise ValueError(f"Invalid baud rate '{value}'. Common values: {format_baud_rates()}.")
    if baud <= 0:
        raise ValueError(f"Invalid baud rate '{value}'. Baud rate must be positive.")
    return baud


def format_baud_rates() -> str:
    return ", ".join(str(baud) for baud in COMMON_BAUD_RATES)
