"""
CH559 Flasher CLI

Command-line interface for the WCH CH559 USB bootloader with write gating.
"""

import sys
import logging
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from ch559_flasher import __version__
from ch559_flasher.chips import CH559
from ch559_flasher.protocol.usb_transport import DEFAULT_TIMEOUT_MS

# Import from core module for unified logic
from ch559_flasher.core.parsing import (
    parse_int as _parse_int_core,
    parse_byte as _parse_byte_core,
    load_firmware,
)
from ch559_flasher.core.safety import (
    SafetyContext,
    WritePermissionError,
    CONFIRMATION_TOKEN,
)
from ch559_flasher.core.results import OperationResult
from ch559_flasher.core.actions import (
    usb_transport_factory,
    detect_device as core_detect_device,
    erase_flash as core_erase_flash,
    erase_data_flash as core_erase_data_flash,
    flash_firmware as core_flash_firmware,
    verify_firmware as core_verify_firmware,
    read_data_flash as core_read_data_flash,
    write_data_flash as core_write_data_flash,
    write_config_byte as core_write_config_byte,
    boot_device as core_boot_device,
)
from ch559_flasher.core.messages import (
    WarningItem,
    MessageLevel,
    result_to_warnings,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("ch559_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="CH559 USB bootloader flasher")

# Global options, filled in by the app callback
state = {
    "timeout_ms": DEFAULT_TIMEOUT_MS,
    "verbose": False,
}


@app.callback()
def main_options(
    timeout: int = typer.Option(
        DEFAULT_TIMEOUT_MS, "--timeout", "-t", help="USB transfer timeout in milliseconds"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every frame sent and received"),
) -> None:
    """CH559 USB bootloader flasher."""
    state["timeout_ms"] = timeout
    state["verbose"] = verbose
    if verbose:
        logger.setLevel(logging.DEBUG)


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with optional remediation."""
    if warning.level == MessageLevel.ERROR:
        style = "red"
        icon = "❌"
    elif warning.level == MessageLevel.WARN:
        style = "yellow"
        icon = "⚠️"
    else:
        style = "blue"
        icon = "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.remediation:
        console.print(f"   → {warning.remediation}", style="cyan")


def parse_int(value: Optional[str], label: str) -> Optional[int]:
    """
    Parse an integer option.

    CLI wrapper around core.parsing.parse_int that converts ValueError to
    typer.BadParameter for proper CLI error handling.
    """
    try:
        return _parse_int_core(value, label)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_byte(value: str, label: str) -> int:
    try:
        return _parse_byte_core(value, label)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _transport_factory():
    return usb_transport_factory(state["timeout_ms"])


def make_safety_context(
    write_flag: bool,
    confirm_token: Optional[str],
    dry_run: bool = False,
    risk_acknowledged: bool = False,
) -> SafetyContext:
    """
    Build the SafetyContext passed to core write actions.

    Supports three modes:
    1. Non-interactive (script): --confirm WRITE provided, no prompts
    2. Interactive (TTY): prompts user for typed confirmation
    3. Non-interactive without token: core refuses with remediation
    """

    def show_details(details: dict) -> None:
        console.print()
        console.print(Panel(
            f"[bold yellow]⚠️  WRITE CONFIRMATION REQUIRED[/bold yellow]\n\n"
            f"Operation:     {details.get('operation', 'Unknown')}\n"
            f"Target:        {details.get('target_region', 'Unknown')}\n"
            f"Bytes:         {details.get('bytes_length', 0):,}\n"
            + "".join(f"Warning:       {w}\n" for w in details.get("warnings", []))
            + f"\n[bold]Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort:[/bold]",
            title="Flash Write Operation",
            expand=False,
        ))

    def prompt_confirmation(prompt_text: str) -> str:
        return typer.prompt("Confirm")

    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirm_token,
        interactive=confirm_token is None and sys.stdin.isatty(),
        simulate=dry_run,
        risk_acknowledged=risk_acknowledged,
        prompt_confirmation=prompt_confirmation,
        show_details=show_details,
    )


def report_permission_error(exc: WritePermissionError) -> None:
    """Explain why a write was refused and how to proceed."""
    message = str(exc)
    if "requires explicit permission" in message:
        print_error("Write operation requires --write flag.")
        console.print("This is a safety measure to prevent accidental writes to the chip.")
        details = exc.details
        if details:
            console.print()
            console.print(f"  Operation:     {details.get('operation', '')}")
            console.print(f"  Target:        {details.get('target_region', '')}")
            console.print(f"  Bytes:         {details.get('bytes_length', 0):,}")
    elif "token mismatch" in message.lower():
        print_error(f"Confirmation token mismatch. Expected: --confirm {CONFIRMATION_TOKEN}")
    elif "non-interactive" in message.lower():
        print_error("Non-interactive environment detected but no confirmation token provided.")
        console.print()
        console.print("[bold]For scripted/non-interactive use, provide:[/bold]")
        console.print(f"  --write --confirm {CONFIRMATION_TOKEN}")
    else:
        print_error(message)


def report_result(result: OperationResult, output_json: bool = False) -> None:
    """Print an OperationResult and exit non-zero if it failed."""
    if output_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        console.print(result.to_summary())
        for warning in result_to_warnings(result):
            print_structured_warning(warning, verbose=state["verbose"])
        if result.ok:
            print_success(f"{result.operation} complete")
    if not result.ok:
        sys.exit(1)


def run_with_progress(action, *args, output_json: bool = False, **kwargs) -> OperationResult:
    """Run a core action, rendering its step progress as Rich progress bars."""
    if output_json:
        return action(*args, **kwargs)

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        tasks = {}

        def on_progress(step: str, fraction: float) -> None:
            if step not in tasks:
                tasks[step] = progress.add_task(f"{step}...", total=1.0)
            progress.update(tasks[step], completed=fraction)

        return action(*args, progress_cb=on_progress, **kwargs)


def _gated(action, *args, **kwargs) -> OperationResult:
    try:
        return action(*args, **kwargs)
    except WritePermissionError as e:
        report_permission_error(e)
        raise typer.Exit(1)


def _load_or_exit(path: str, max_size: int) -> bytes:
    try:
        return load_firmware(path, max_size=max_size)
    except (FileNotFoundError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command()
def info(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Show the CH559 flash layout and bootloader USB identity."""
    if output_json:
        console.print_json(json.dumps(CH559.to_dict()))
        return

    print_header(f"CH559 Flasher {__version__}")
    table = Table(title=CH559.name)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    for key, value in CH559.to_dict().items():
        table.add_row(key.replace("_", " ").title(), str(value))
    table.add_row("USB Id", "4348:55e0")
    console.print(table)


@app.command()
def detect(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Connect to the bootloader and show chip id and bootloader version."""
    if not output_json:
        print_header("Detect Chip")

    result = core_detect_device(transport_factory=_transport_factory())
    if output_json or not result.ok:
        report_result(result, output_json)
        return

    table = Table(title="Bootloader Identification")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Chip", CH559.name)
    table.add_row("Chip Id", f"0x{result.chip_id:02X}")
    table.add_row("Bootloader", result.bootloader_version)
    table.add_row(
        "Config Write",
        "Supported" if result.config_write_supported else "Not supported",
    )
    console.print(table)
    print_success("Chip detected")


@app.command()
def erase(
    data: bool = typer.Option(False, "--data", help="Also erase data flash"),
    write: bool = typer.Option(False, "--write", help="Required flag to enable erasing"),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help="Non-interactive confirmation token (must be 'WRITE')",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Check options only, send nothing"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Erase code flash (and optionally data flash)."""
    if not output_json:
        print_header("Erase Flash")

    ctx = make_safety_context(write, confirm, dry_run)
    result = _gated(
        core_erase_flash,
        ctx,
        include_data=data,
        transport_factory=_transport_factory(),
    )
    report_result(result, output_json)


@app.command()
def flash(
    firmware: str = typer.Argument(..., help="Raw .bin firmware image"),
    no_erase: bool = typer.Option(False, "--no-erase", help="Skip erasing code flash first"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip verification after writing"),
    boot: bool = typer.Option(False, "--boot", help="Start the application when done"),
    write: bool = typer.Option(False, "--write", help="Required flag to enable actual write"),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help="Non-interactive confirmation token (must be 'WRITE')",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Check the image only, send nothing"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """
    Complete workflow: connect -> erase -> write -> verify -> (boot).
    """
    if not output_json:
        print_header("Flash Firmware")

    image = _load_or_exit(firmware, CH559.code_flash_size)
    if not output_json:
        console.print(f"Image: {firmware} ({len(image):,} bytes)")

    ctx = make_safety_context(write, confirm, dry_run)
    result = _gated(
        run_with_progress,
        core_flash_firmware,
        image,
        ctx,
        erase=not no_erase,
        verify=not no_verify,
        boot=boot,
        transport_factory=_transport_factory(),
        output_json=output_json,
    )
    report_result(result, output_json)


@app.command()
def verify(
    firmware: str = typer.Argument(..., help="Raw .bin firmware image"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Compare code flash with an image without writing."""
    if not output_json:
        print_header("Verify Firmware")

    image = _load_or_exit(firmware, CH559.code_flash_size)
    result = run_with_progress(
        core_verify_firmware,
        image,
        transport_factory=_transport_factory(),
        output_json=output_json,
    )
    report_result(result, output_json)


@app.command("erase-data")
def erase_data(
    write: bool = typer.Option(False, "--write", help="Required flag to enable erasing"),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help="Non-interactive confirmation token (must be 'WRITE')",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Check options only, send nothing"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Erase data flash only."""
    if not output_json:
        print_header("Erase Data Flash")

    ctx = make_safety_context(write, confirm, dry_run)
    result = _gated(
        core_erase_data_flash,
        ctx,
        transport_factory=_transport_factory(),
    )
    report_result(result, output_json)


@app.command("write-data")
def write_data(
    input_path: str = typer.Argument(..., help="Binary file to store in data flash"),
    no_erase: bool = typer.Option(False, "--no-erase", help="Skip erasing data flash first"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip read-back after writing"),
    write: bool = typer.Option(False, "--write", help="Required flag to enable actual write"),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help="Non-interactive confirmation token (must be 'WRITE')",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Check the file only, send nothing"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Write a file to data flash, starting at its first byte."""
    if not output_json:
        print_header("Write Data Flash")

    data = _load_or_exit(input_path, CH559.data_flash_size)
    ctx = make_safety_context(write, confirm, dry_run)
    result = _gated(
        run_with_progress,
        core_write_data_flash,
        data,
        ctx,
        erase=not no_erase,
        verify=not no_verify,
        transport_factory=_transport_factory(),
        output_json=output_json,
    )
    report_result(result, output_json)


@app.command("read-data")
def read_data(
    length: Optional[str] = typer.Option(
        None,
        "--length",
        "-l",
        help="Bytes to read: decimal (256), hex (0x100), or suffix (100h). Default: all",
    ),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Save the bytes to this file"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Read data flash and save or print it."""
    if not output_json:
        print_header("Read Data Flash")

    try:
        length_int = parse_int(length, "length")
    except typer.BadParameter as e:
        print_error(str(e))
        raise typer.Exit(1)

    result = run_with_progress(
        core_read_data_flash,
        length_int,
        transport_factory=_transport_factory(),
        output_json=output_json,
    )

    if result.ok and out:
        Path(out).write_bytes(result.data)
        result.saved_to = out
    if result.ok and not out and not output_json:
        data = result.data
        for offset in range(0, len(data), 16):
            row = data[offset:offset + 16]
            console.print(f"{CH559.data_flash_base + offset:04X}  {row.hex(' ')}")
    report_result(result, output_json)


@app.command()
def boot(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Leave the bootloader and start the application."""
    if not output_json:
        print_header("Boot Application")

    result = core_boot_device(transport_factory=_transport_factory())
    report_result(result, output_json)


@app.command("write-config")
def write_config(
    high_byte: str = typer.Argument(..., help="Config high byte, e.g. 0x4E"),
    risk: bool = typer.Option(
        False,
        "--i-understand-config-risk",
        help="Acknowledge that a wrong byte can lock out the bootloader",
    ),
    write: bool = typer.Option(False, "--write", help="Required flag to enable actual write"),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help="Non-interactive confirmation token (must be 'WRITE')",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Check options only, send nothing"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """
    Rewrite the config high byte (bootloader 2.31 / 2.40 only).

    A wrong value can leave the chip unable to enter the bootloader.
    """
    if not output_json:
        print_header("Write Config Byte")

    try:
        value = parse_byte(high_byte, "config byte")
    except typer.BadParameter as e:
        print_error(str(e))
        raise typer.Exit(1)

    ctx = make_safety_context(write, confirm, dry_run, risk_acknowledged=risk)
    result = _gated(
        core_write_config_byte,
        value,
        ctx,
        transport_factory=_transport_factory(),
    )
    report_result(result, output_json)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()
