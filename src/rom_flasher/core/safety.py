"""
Safety context and write gating for flash operations.

Every real write to a device goes through require_write_permission so the
CLI and any other front end enforce identical confirmation rules.
"""

import sys
from dataclasses import dataclass
from typing import Optional, Callable

from rom_flasher.errors import WritePermissionError

# Confirmation token required for non-interactive writes
CONFIRMATION_TOKEN = "WRITE"


@dataclass
class SafetyContext:
    """
    Safety context for write operations.

    Attributes:
        write_enabled: Whether the --write flag was provided
        confirmation_token: For non-interactive mode, must match CONFIRMATION_TOKEN
        interactive: Whether the front end can prompt for confirmation
        simulate: Whether this is a dry run (nothing is written)
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    simulate: bool = False

    # The CLI sets these to prompt/display functions
    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None

    def to_details_dict(
        self,
        port: str = "",
        target_region: str = "",
        bytes_length: int = 0,
        offset: Optional[int] = None,
    ) -> dict:
        """Create a details dictionary for display."""
        details = {
            "port": port,
            "target_region": target_region,
            "bytes_length": bytes_length,
        }
        if offset is not None:
            details["offset"] = f"0x{offset:06X}"
        return details


def require_write_permission(
    ctx: SafetyContext,
    port: str = "",
    target_region: str = "",
    bytes_length: int = 0,
    offset: Optional[int] = None,
) -> None:
    """
    Enforce write permission rules.

    Rules enforced:
    1. Simulation is always allowed (no actual write)
    2. Write must be explicitly enabled
    3. A confirmation token, when present, must match exactly
    4. Otherwise the user is prompted interactively

    Raises:
        WritePermissionError: If write is not permitted
    """
    details = ctx.to_details_dict(port, target_region, bytes_length, offset)

    if ctx.simulate:
        return

    if not ctx.write_enabled:
        raise WritePermissionError(
            "Write operation requires explicit permission. CLI: use --write flag.",
            details=details,
        )

    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return

    if not ctx.interactive:
        raise WritePermissionError(
            "Non-interactive mode requires confirmation_token.",
            details=details,
        )

    if ctx.show_details:
        ctx.show_details(details)

    if ctx.prompt_confirmation is None:
        raise WritePermissionError(
            "Interactive confirmation required but no prompt handler set. "
            "Provide confirmation_token for non-interactive mode.",
            details=details,
        )

    user_input = ctx.prompt_confirmation(
        f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
    )
    if user_input.strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError(
            "Confirmation failed. Write aborted by user.",
            details=details,
        )


def create_cli_safety_context(
    write_flag: bool,
    simulate: bool = False,
    confirmation_token: Optional[str] = None,
) -> SafetyContext:
    """
    Create a SafetyContext configured for CLI usage.

    Interactive only when stdin is a TTY and no token was given.
    """
    interactive = sys.stdin.isatty() and confirmation_token is None

    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirmation_token,
        interactive=interactive,
        simulate=simulate,
    )
