"""
ROM Flasher CLI

Command-line interface for flashing raw firmware images through the ROM
bootloader, with dry runs and explicit write confirmation.
"""

import sys
import logging
from typing import List, Optional

import serial.tools.list_ports
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn, DownloadColumn

from rom_flasher import __version__
from rom_flasher.core.actions import (
    dump_frame_artifacts,
    flash_firmware_file,
    flash_region,
    load_firmware,
    plan_flash,
)
from rom_flasher.core.engine import DEFAULT_BAUD_RATE, DEFAULT_FLASH_OFFSET
from rom_flasher.core.parsing import (
    format_baud_rates,
    parse_baudrate as _parse_baudrate_core,
    parse_offset as _parse_offset_core,
)
from rom_flasher.core.results import OperationResult
from rom_flasher.core.safety import (
    CONFIRMATION_TOKEN,
    SafetyContext,
    create_cli_safety_context,
    require_write_permission,
)
from rom_flasher.errors import WritePermissionError
from rom_flasher.protocol.rom_loader import (
    CMD_FLASH_BEGIN,
    CMD_FLASH_DATA,
    CMD_FLASH_END,
    build_flash_frames,
)

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("rom_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="ROM Flasher - load raw firmware over the serial ROM bootloader")

_FRAME_NAMES = {
    CMD_FLASH_BEGIN: "FLASH_BEGIN",
    CMD_FLASH_DATA: "FLASH_DATA",
    CMD_FLASH_END: "FLASH_END",
}
_LOG_STYLES = {
    "info": "blue",
    "success": "green",
    "warning": "yellow",
    "error": "red",
}


def print_header(text: str) -> None:
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def parse_offset(value: Optional[str]) -> Optional[int]:
    """
    CLI wrapper around core.parsing.parse_offset that converts
    ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        return _parse_offset_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_baudrate(value: str) -> int:
    try:
        return _parse_baudrate_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def print_result_logs(result: OperationResult, limit: int = 12) -> None:
    """Print the tail of the engine log captured in a result."""
    if not result.logs:
        return
    console.print(f"\n[bold]Engine log[/bold] (last {min(limit, len(result.logs))} of {len(result.logs)}):")
    for line in result.logs[-limit:]:
        style = next(
            (style for category, style in _LOG_STYLES.items() if f"[{category}]" in line),
            None,
        )
        console.print(line, style=style, markup=False, highlight=False)


def confirm_write_with_details(
    write_flag: bool,
    port: str,
    target_region: str,
    bytes_length: int,
    offset: Optional[int] = None,
    confirm_token: Optional[str] = None,
) -> SafetyContext:
    """
    Require explicit --write flag AND typed confirmation before flashing.

    Supports three modes:
    1. Non-interactive (script): --confirm WRITE provided, no prompts
    2. Interactive (TTY): prompts user for typed confirmation
    3. Non-interactive without token: errors with remediation

    Returns:
        Non-interactive SafetyContext carrying the token the operator gave,
        for the flash workflow to check again without prompting

    Raises:
        typer.Abort: If confirmation fails or write not permitted
    """
    if confirm_token is not None:
        ctx = create_cli_safety_context(write_flag, confirmation_token=confirm_token)
        try:
            require_write_permission(
                ctx,
                port=port,
                target_region=target_region,
                bytes_length=bytes_length,
                offset=offset,
            )
            print_success("Non-interactive confirmation accepted. Proceeding with flash...")
            return ctx
        except WritePermissionError as e:
            if "token mismatch" in str(e).lower():
                print_error(f"Confirmation token mismatch. Expected: --confirm {CONFIRMATION_TOKEN}")
            else:
                print_error(str(e))
            raise typer.Abort()

    if not sys.stdin.isatty():
        console.print()
        print_error("Non-interactive environment detected but no confirmation token provided.")
        console.print()
        console.print("[bold]For scripted/non-interactive use, provide:[/bold]")
        console.print(f"  --write --confirm {CONFIRMATION_TOKEN}")
        console.print()
        console.print("[bold]Example:[/bold]")
        console.print(
            f"  rom-flasher flash firmware.bin --port /dev/ttyUSB0 --write --confirm {CONFIRMATION_TOKEN}"
        )
        raise typer.Abort()

    def show_details(details: dict) -> None:
        console.print()
        console.print(Panel(
            f"[bold yellow]⚠️  FLASH CONFIRMATION REQUIRED[/bold yellow]\n\n"
            f"Port:          {details.get('port', '')}\n"
            f"Target:        {details.get('target_region', 'Unknown')}\n"
            f"Bytes:         {details.get('bytes_length', 0):,}\n"
            + (f"Offset:        {details.get('offset', '')}\n" if details.get('offset') else "") +
            f"\n[bold]Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort:[/bold]",
            title="Firmware Flash",
            expand=False,
        ))

    answers: List[str] = []

    def prompt_confirmation(prompt_text: str) -> str:
        answer = typer.prompt("Confirm")
        answers.append(answer)
        return answer

    ctx = SafetyContext(
        write_enabled=write_flag,
        interactive=True,
        prompt_confirmation=prompt_confirmation,
        show_details=show_details,
    )

    try:
        require_write_permission(
            ctx,
            port=port,
            target_region=target_region,
            bytes_length=bytes_length,
            offset=offset,
        )
    except WritePermissionError as e:
        print_warning(str(e))
        raise typer.Abort()

    print_success("Confirmation accepted. Proceeding with flash...")
    return create_cli_safety_context(write_flag, confirmation_token=answers[-1])


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine and wire-level debug logs"),
) -> None:
    """ROM Flasher - load raw firmware over the serial ROM bootloader."""
    if verbose:
        logger.setLevel(logging.DEBUG)


@app.command()
def version() -> None:
    """Print the installed version."""
    console.print(f"rom-flasher {__version__}")


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list(serial.tools.list_ports.comports())
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Description", style="green")
    table.add_column("Hardware ID", style="magenta")

    for port in ports_list:
        table.add_row(port.device, port.description or "-", port.hwid or "-")

    console.print(table)


@app.command()
def frames(
    image_path: str = typer.Argument(..., help="Firmware image (.bin)"),
    offset: str = typer.Option(f"0x{DEFAULT_FLASH_OFFSET:X}", "--offset", "-o", help="Flash offset in hex (10000, 0x10000 or 10000h)"),
    limit: int = typer.Option(8, "--limit", "-n", help="Number of frames to list"),
    output_dir: Optional[str] = typer.Option(None, "--out", help="Write frames.bin and manifest.json here"),
) -> None:
    """
    Show the bootloader frames a flash would send, without a device.
    """
    flash_offset = parse_offset(offset)
    if flash_offset is None:
        flash_offset = DEFAULT_FLASH_OFFSET

    try:
        image = load_firmware(image_path)
    except (FileNotFoundError, ValueError) as e:
        print_error(str(e))
        sys.exit(1)

    print_header("Frame Plan")
    frame_list = build_flash_frames(image, flash_offset)

    table = Table(title=f"{len(frame_list)} frames, region {flash_region(flash_offset, len(image))}")
    table.add_column("#", style="dim")
    table.add_column("Command", style="cyan")
    table.add_column("Length", style="green")
    table.add_column("Head", style="yellow")

    shown = frame_list[:limit]
    for i, frame in enumerate(shown):
        table.add_row(str(i), _FRAME_NAMES.get(frame[0], f"0x{frame[0]:02X}"), str(len(frame)), frame[:16].hex(" "))
    if len(frame_list) > len(shown):
        last = frame_list[-1]
        table.add_row("…", "", "", "")
        table.add_row(str(len(frame_list) - 1), _FRAME_NAMES[last[0]], str(len(last)), last.hex(" "))
    console.print(table)

    if output_dir:
        manifest_path = dump_frame_artifacts(image, flash_offset, output_dir)
        print_success(f"Frame artifacts written to {manifest_path.parent}")


@app.command()
def flash(
    image_path: str = typer.Argument(..., help="Firmware image (.bin)"),
    port: Optional[str] = typer.Option(
        None, "--port", "-p", envvar="ROM_FLASHER_PORT",
        help="Serial port or pyserial URL (e.g., /dev/ttyUSB0, COM3, loop://)",
    ),
    baud: str = typer.Option(
        str(DEFAULT_BAUD_RATE), "--baud", "-b",
        help=f"Baud rate (common: {format_baud_rates()})",
    ),
    offset: str = typer.Option(f"0x{DEFAULT_FLASH_OFFSET:X}", "--offset", "-o", help="Flash offset in hex (10000, 0x10000 or 10000h)"),
    write: bool = typer.Option(False, "--write", help="Actually flash the device (default is a dry run)"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Confirmation token for scripts ({CONFIRMATION_TOKEN})"),
) -> None:
    """
    Flash a raw firmware image through the ROM bootloader.

    Without --write this only shows what would be sent.
    """
    baudrate = parse_baudrate(baud)
    flash_offset = parse_offset(offset)
    if flash_offset is None:
        flash_offset = DEFAULT_FLASH_OFFSET

    print_header("Firmware Flash")

    try:
        image = load_firmware(image_path)
    except (FileNotFoundError, ValueError) as e:
        print_error(str(e))
        sys.exit(1)

    region = flash_region(flash_offset, len(image))
    console.print(f"Image:   {image_path} ({len(image):,} bytes)")
    console.print(f"Region:  {region}")
    console.print(f"Baud:    {baudrate}")

    if not write:
        result = plan_flash(image, flash_offset)
        console.print(f"Frames:  {result.metadata['frame_count']} ({result.metadata['wire_bytes']:,} bytes on the wire)")
        for warning in result.warnings:
            print_warning(warning)
        print_warning("Dry run: nothing was sent. Add --write to flash the device.")
        return

    if not port:
        print_error("--port is required with --write (or set ROM_FLASHER_PORT)")
        sys.exit(1)

    ctx = confirm_write_with_details(
        write_flag=write,
        port=port,
        target_region=region,
        bytes_length=len(image),
        offset=flash_offset,
        confirm_token=confirm,
    )

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        DownloadColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Flashing...", total=max(len(image), 1))

        def on_progress(current: int, total: int) -> None:
            progress.update(task, completed=current)

        result = flash_firmware_file(
            port,
            image_path,
            ctx,
            baudrate=baudrate,
            offset=flash_offset,
            progress_cb=on_progress,
        )
        if result.ok and not image:
            progress.update(task, completed=1)

    print_result_logs(result)
    console.print()
    console.print(result.to_summary())

    if not result.ok:
        print_error("Flash failed")
        sys.exit(1)
    print_success("Firmware flashed")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
