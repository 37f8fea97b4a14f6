"""
Core workflow actions for the CH559 flasher.

This module exposes the functions the CLI calls. Each one opens a session,
does its work, closes the transport and reports an OperationResult. All
destructive operations go through the safety context for gating.
"""

import hashlib
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from ..chips import CH559, ChipConfig
from ..protocol import FlasherError, FlasherSession, Transport
from ..protocol.usb_transport import DEFAULT_TIMEOUT_MS, UsbTransport
from .results import OperationResult
from .safety import SafetyContext, require_write_permission

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], Transport]
StepProgress = Callable[[str, float], None]


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "ch559_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def usb_transport_factory(timeout_ms: int = DEFAULT_TIMEOUT_MS) -> TransportFactory:
    """Factory producing unopened UsbTransport instances."""
    return lambda: UsbTransport(timeout_ms=timeout_ms)


@contextmanager
def _connected_session(
    result: OperationResult,
    transport_factory: Optional[TransportFactory],
    chip: ChipConfig,
) -> Iterator[FlasherSession]:
    """
    Connect a session and keep result in step with it.

    Device identity and the short-block count are copied into result when
    the block exits, whether or not the work inside succeeded.
    """
    factory = transport_factory or usb_transport_factory()
    with FlasherSession(factory(), chip=chip) as session:
        try:
            session.connect()
            yield session
        finally:
            result.record_session(session)


def _step(progress_cb: Optional[StepProgress], name: str) -> Optional[Callable[[float], None]]:
    if progress_cb is None:
        return None
    return lambda fraction: progress_cb(name, fraction)


def _run(result: OperationResult, logs, work: Callable[[], None]) -> OperationResult:
    """Run work, turning device errors into a failed result."""
    try:
        work()
    except FlasherError as e:
        logger.exception(f"{result.operation} failed")
        result.add_error(str(e))
    if result.short_blocks_accepted:
        result.add_warning(
            f"Bootloader answered 0xFE for a short final block "
            f"({result.short_blocks_accepted}x); treated as success"
        )
    result.logs = logs
    return result


def _simulated(result: OperationResult, logs) -> OperationResult:
    result.simulated = True
    result.add_warning("Simulation mode - nothing was sent to the device")
    result.logs = logs
    return result


def detect_device(
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
) -> OperationResult:
    """
    Connect to the bootloader and report chip id and bootloader version.

    Returns:
        OperationResult with chip_id and bootloader_version filled in
    """
    result = OperationResult(operation="detect")

    def work():
        with _connected_session(result, transport_factory, chip):
            pass

    with _capture_logs() as logs:
        return _run(result, logs, work)


def erase_flash(
    safety_ctx: SafetyContext,
    include_data: bool = False,
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
) -> OperationResult:
    """
    Erase code flash, and optionally data flash.

    Raises:
        WritePermissionError: If safety check fails
    """
    region = chip.code_region + (f", {chip.data_region}" if include_data else "")
    result = OperationResult(operation="erase", region=region)
    require_write_permission(safety_ctx, "erase", target_region=region)

    def work():
        with _connected_session(result, transport_factory, chip) as session:
            session.erase()
            result.steps.append("erase")
            if include_data:
                session.erase_data()
                result.steps.append("erase_data")

    with _capture_logs() as logs:
        if safety_ctx.simulate:
            return _simulated(result, logs)
        return _run(result, logs, work)


def erase_data_flash(
    safety_ctx: SafetyContext,
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
) -> OperationResult:
    """
    Erase data flash only. Code flash is left untouched.

    Raises:
        WritePermissionError: If safety check fails
    """
    result = OperationResult(operation="erase_data", region=chip.data_region)
    require_write_permission(safety_ctx, "erase_data", target_region=chip.data_region)

    def work():
        with _connected_session(result, transport_factory, chip) as session:
            session.erase_data()
            result.steps.append("erase_data")

    with _capture_logs() as logs:
        if safety_ctx.simulate:
            return _simulated(result, logs)
        return _run(result, logs, work)


def flash_firmware(
    firmware: bytes,
    safety_ctx: SafetyContext,
    erase: bool = True,
    verify: bool = True,
    boot: bool = False,
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
    progress_cb: Optional[StepProgress] = None,
) -> OperationResult:
    """
    Complete flash workflow: connect -> erase -> write -> verify -> boot.

    Args:
        firmware: Raw image for code flash, starting at address 0
        safety_ctx: Safety context for gating
        erase: Erase code flash before writing
        verify: Verify the image after writing
        boot: Start the application when done
        transport_factory: Produces the transport (default: USB)
        chip: Target geometry
        progress_cb: Optional callback(step_name, fraction)

    Returns:
        OperationResult with complete operation status

    Raises:
        WritePermissionError: If safety check fails
    """
    result = OperationResult(
        operation="flash_firmware",
        region=f"0x0000-0x{max(len(firmware) - 1, 0):04X}",
        bytes_len=len(firmware),
        sha256=hashlib.sha256(firmware).hexdigest(),
    )
    if not firmware:
        result.add_error("Firmware image is empty")
        return result
    if len(firmware) > chip.code_flash_size:
        result.add_error(
            f"Firmware is {len(firmware):,} bytes, larger than "
            f"{chip.code_flash_size:,} bytes of code flash"
        )
        return result

    require_write_permission(
        safety_ctx,
        "flash_firmware",
        target_region=result.region,
        bytes_length=len(firmware),
    )

    def work():
        with _connected_session(result, transport_factory, chip) as session:
            if erase:
                session.erase()
                result.steps.append("erase")
            session.write_whole(firmware, progress_cb=_step(progress_cb, "Writing"))
            result.steps.append("write")
            if verify:
                result.verified = False
                session.verify_whole(firmware, progress_cb=_step(progress_cb, "Verifying"))
                result.verified = True
                result.steps.append("verify")
            if boot:
                session.boot()
                result.steps.append("boot")

    with _capture_logs() as logs:
        if safety_ctx.simulate:
            return _simulated(result, logs)
        _run(result, logs, work)
        if result.ok and not verify:
            result.add_warning("Image was written without verification")
        return result


def verify_firmware(
    firmware: bytes,
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
    progress_cb: Optional[StepProgress] = None,
) -> OperationResult:
    """Compare code flash with an image without writing anything."""
    result = OperationResult(
        operation="verify_firmware",
        region=f"0x0000-0x{max(len(firmware) - 1, 0):04X}",
        bytes_len=len(firmware),
        sha256=hashlib.sha256(firmware).hexdigest(),
    )
    if len(firmware) > chip.code_flash_size:
        result.add_error(f"Image does not fit in {chip.code_flash_size:,} bytes of code flash")
        return result

    def work():
        with _connected_session(result, transport_factory, chip) as session:
            result.verified = False
            session.verify_whole(firmware, progress_cb=_step(progress_cb, "Verifying"))
            result.verified = True
            result.steps.append("verify")

    with _capture_logs() as logs:
        return _run(result, logs, work)


def read_data_flash(
    length: Optional[int] = None,
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
    progress_cb: Optional[StepProgress] = None,
) -> OperationResult:
    """
    Read data flash from its start.

    Returns:
        OperationResult with data holding the bytes read
    """
    result = OperationResult(operation="read_data_flash", region=chip.data_region)
    size = chip.data_flash_size if length is None else length
    if not 0 < size <= chip.data_flash_size:
        result.add_error(f"Read length {size} outside data flash size {chip.data_flash_size}")
        return result

    def work():
        with _connected_session(result, transport_factory, chip) as session:
            data = session.read_data_whole(size, progress_cb=_step(progress_cb, "Reading"))
            result.steps.append("read_data")
            result.data = data
            result.bytes_len = len(data)
            result.sha256 = hashlib.sha256(data).hexdigest()
            if data == b"\xFF" * len(data):
                result.add_warning("Data flash is blank (all 0xFF)")

    with _capture_logs() as logs:
        return _run(result, logs, work)


def write_data_flash(
    data: bytes,
    safety_ctx: SafetyContext,
    erase: bool = True,
    verify: bool = True,
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
    progress_cb: Optional[StepProgress] = None,
) -> OperationResult:
    """
    Write bytes to data flash from its start, reading them back when verify is set.

    Raises:
        WritePermissionError: If safety check fails
    """
    base = chip.data_flash_base
    result = OperationResult(
        operation="write_data_flash",
        region=f"0x{base:04X}-0x{base + max(len(data) - 1, 0):04X}",
        bytes_len=len(data),
        sha256=hashlib.sha256(data).hexdigest(),
    )
    if not data or len(data) > chip.data_flash_size:
        result.add_error(
            f"{len(data)} bytes do not fit in data flash ({chip.data_flash_size} bytes)"
        )
        return result

    require_write_permission(
        safety_ctx,
        "write_data_flash",
        target_region=result.region,
        bytes_length=len(data),
    )

    def work():
        with _connected_session(result, transport_factory, chip) as session:
            if erase:
                session.erase_data()
                result.steps.append("erase_data")
            session.write_data_whole(data, progress_cb=_step(progress_cb, "Writing"))
            result.steps.append("write_data")
            if verify:
                readback = session.read_data_whole(
                    len(data), progress_cb=_step(progress_cb, "Reading back")
                )
                result.steps.append("read_data")
                result.verified = readback == data
                if not result.verified:
                    result.add_error("Data flash readback verify mismatch")

    with _capture_logs() as logs:
        if safety_ctx.simulate:
            return _simulated(result, logs)
        return _run(result, logs, work)


def write_config_byte(
    high_byte: int,
    safety_ctx: SafetyContext,
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
) -> OperationResult:
    """
    Rewrite the config high byte. Supported on bootloader 2.31 and 2.40.

    Never retried: a failed attempt is reported and left to the user.

    Raises:
        WritePermissionError: If safety check fails (requires risk acknowledgement)
    """
    result = OperationResult(
        operation="write_config",
        region=f"config byte 0x{high_byte:02X}",
        bytes_len=1,
    )
    safety_ctx.add_warning("A wrong config byte can lock the chip out of the bootloader")
    require_write_permission(safety_ctx, "write_config", target_region=result.region, risky=True)

    def work():
        with _connected_session(result, transport_factory, chip) as session:
            session.write_config(high_byte)
            result.steps.append("write_config")

    with _capture_logs() as logs:
        if safety_ctx.simulate:
            return _simulated(result, logs)
        _run(result, logs, work)
        result.add_warning("Config write carries a lockout risk; power cycle the chip to apply")
        return result


def boot_device(
    transport_factory: Optional[TransportFactory] = None,
    chip: ChipConfig = CH559,
) -> OperationResult:
    """Leave the bootloader and start the application already in flash."""
    result = OperationResult(operation="boot")

    def work():
        with _connected_session(result, transport_factory, chip) as session:
            session.boot()
            result.steps.append("boot")

    with _capture_logs() as logs:
        return _run(result, logs, work)
