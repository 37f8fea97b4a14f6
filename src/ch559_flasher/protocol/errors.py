"""
Exception taxonomy for the CH559 bootloader protocol.

Every error raised by the protocol layer derives from FlasherError and
carries the operation it belongs to, plus the device result code where the
bootloader reported one.
"""

from enum import Enum
from typing import Optional


class Operation(Enum):
    """Bootloader operations, used to tag errors and log lines."""
    CLAIM = "claim"
    DETECT = "detect"
    IDENTIFY = "identify"
    BOOTKEY = "bootkey"
    ERASE = "erase"
    ERASE_DATA = "erase_data"
    WRITE = "write"
    VERIFY = "verify"
    WRITE_DATA = "write_data"
    READ_DATA = "read_data"
    BOOT = "boot"
    WRITE_CONFIG = "write_config"


class FailureReason(Enum):
    """Why a connection attempt left the session in the FAILED state."""
    CLAIM_FAILED = "claim_failed"
    DETECT_FAILED = "detect_failed"
    IDENTIFY_FAILED = "identify_failed"
    UNKNOWN_BOOTLOADER = "unknown_bootloader"
    BOOTKEY_ERROR = "bootkey_error"
    REQUEST_ERROR = "request_error"
    RESPONSE_ERROR = "response_error"


class FlasherError(Exception):
    """
    Base class for all flasher errors.

    Attributes:
        op: Operation that failed (None for codec-level errors)
        code: Result byte reported by the device, if any
    """

    def __init__(
        self,
        message: str,
        op: Optional[Operation] = None,
        code: Optional[int] = None,
    ):
        self.op = op
        self.code = code
        super().__init__(message)


class TransportError(FlasherError):
    """Raised by the USB transport when a bulk transfer cannot complete"""
    pass


class RequestError(FlasherError):
    """Writing a command frame to the device failed"""

    def __init__(self, op: Operation, detail: str = ""):
        message = f"{op.value}: request failed"
        if detail:
            message += f" ({detail})"
        super().__init__(message, op=op)


class ResponseError(FlasherError):
    """Reading the reply to a command frame failed or came back short"""

    def __init__(self, op: Operation, detail: str = ""):
        message = f"{op.value}: response failed"
        if detail:
            message += f" ({detail})"
        super().__init__(message, op=op)


# Connection sequence

class ClaimFailed(FlasherError):
    """USB device could not be opened or its interface claimed"""

    def __init__(self, detail: str):
        super().__init__(f"Cannot claim bootloader interface: {detail}", op=Operation.CLAIM)


class DetectFailed(FlasherError):
    """Detect request did not echo the expected magic byte"""

    def __init__(self, code: Optional[int]):
        shown = "nothing" if code is None else f"0x{code:02X}"
        super().__init__(
            f"Chip not detected: expected 0x59, got {shown}",
            op=Operation.DETECT,
            code=code,
        )


class IdentifyFailed(FlasherError):
    """Identify reply was too short to carry version and checksum bytes"""

    def __init__(self, detail: str):
        super().__init__(f"Identify failed: {detail}", op=Operation.IDENTIFY)


class UnknownBootloaderVersion(FlasherError):
    """Identify reply carried a bootloader version outside 2.3x / 2.4x"""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Unknown bootloader version {version}", op=Operation.IDENTIFY)


class BootkeyError(FlasherError):
    """Bootkey reply did not acknowledge with the chip id"""

    def __init__(self, code: Optional[int], chip_id: int):
        shown = "nothing" if code is None else f"0x{code:02X}"
        super().__init__(
            f"Bootkey rejected: expected 0x{chip_id:02X}, got {shown}",
            op=Operation.BOOTKEY,
            code=code,
        )


# Flash operations

class InvalidLength(FlasherError):
    """Payload exceeds the 56 byte capacity of one command frame"""

    def __init__(self, length: int, limit: int):
        self.length = length
        super().__init__(f"Payload of {length} bytes exceeds frame capacity of {limit}")


class OperationFailed(FlasherError):
    """Device returned a nonzero result for a write or verify range"""

    def __init__(self, op: Operation, code: int, address: int):
        self.address = address
        super().__init__(
            f"{op.value} failed at 0x{address:04X} (result 0x{code:02X})",
            op=op,
            code=code,
        )


class EraseError(FlasherError):
    """Code flash erase was rejected"""

    def __init__(self, code: int):
        super().__init__(f"Erase failed (result 0x{code:02X})", op=Operation.ERASE, code=code)


class EraseDataError(FlasherError):
    """Data flash erase was rejected"""

    def __init__(self, code: int):
        super().__init__(
            f"Data flash erase failed (result 0x{code:02X})",
            op=Operation.ERASE_DATA,
            code=code,
        )


class ReadDataFailed(FlasherError):
    """Data flash read was rejected"""

    def __init__(self, code: int, address: int):
        self.address = address
        super().__init__(
            f"Data flash read failed at 0x{address:04X} (result 0x{code:02X})",
            op=Operation.READ_DATA,
            code=code,
        )


class UnsupportedBootloaderVersion(FlasherError):
    """No config frame layout is known for this bootloader version"""

    def __init__(self, version: Optional[str]):
        self.version = version
        super().__init__(
            f"Config write not supported on bootloader {version or 'unknown'}",
            op=Operation.WRITE_CONFIG,
        )


class ConfigWriteError(FlasherError):
    """Device rejected the config write"""

    def __init__(self, code: int):
        super().__init__(
            f"Config write failed (result 0x{code:02X})",
            op=Operation.WRITE_CONFIG,
            code=code,
        )


class NotReady(FlasherError):
    """Operation requested before the session reached INITIALIZED"""

    def __init__(self, op: Operation, state: str):
        self.state = state
        super().__init__(
            f"{op.value}: session not ready (state {state})",
            op=op,
        )
