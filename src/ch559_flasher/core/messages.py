"""
Standardized warning and message system for the CH559 flasher.

Provides structured warning items with stable codes so CLI output and JSON
reports describe the same condition the same way.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, Dict, Any

if TYPE_CHECKING:
    from .results import OperationResult


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Device / connection
    W_DEVICE_NOT_FOUND = "W_DEVICE_NOT_FOUND"
    W_DETECT_FAILED = "W_DETECT_FAILED"
    W_BOOTLOADER_UNKNOWN = "W_BOOTLOADER_UNKNOWN"
    W_BOOTKEY_REJECTED = "W_BOOTKEY_REJECTED"
    W_USB_ERROR = "W_USB_ERROR"

    # Flash
    W_ERASE_FAILED = "W_ERASE_FAILED"
    W_WRITE_FAILED = "W_WRITE_FAILED"
    W_VERIFY_MISMATCH = "W_VERIFY_MISMATCH"
    W_SIZE_MISMATCH = "W_SIZE_MISMATCH"
    W_SHORT_BLOCK_ACCEPTED = "W_SHORT_BLOCK_ACCEPTED"

    # Safety
    W_WRITE_DISABLED = "W_WRITE_DISABLED"
    W_CONFIG_RISK = "W_CONFIG_RISK"
    W_SIMULATED = "W_SIMULATED"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


# Default remediation hints for each warning code
WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_DEVICE_NOT_FOUND:
        "Hold the boot button (or pull D+ high) while plugging in the chip. "
        "On Linux, check udev permissions for 4348:55e0.",
    WarningCode.W_DETECT_FAILED:
        "The device answered but is not a CH559. Check the target chip.",
    WarningCode.W_BOOTLOADER_UNKNOWN:
        "Only bootloader versions 2.3x and 2.4x are supported.",
    WarningCode.W_BOOTKEY_REJECTED:
        "Re-enter the bootloader and try again.",
    WarningCode.W_USB_ERROR:
        "Check the USB cable and that no other tool holds the device.",
    WarningCode.W_ERASE_FAILED:
        "Re-enter the bootloader and retry the erase.",
    WarningCode.W_WRITE_FAILED:
        "Erase the flash before writing, then retry.",
    WarningCode.W_VERIFY_MISMATCH:
        "Flash content does not match the image. Erase and write again.",
    WarningCode.W_SIZE_MISMATCH:
        "Image does not fit the target region.",
    WarningCode.W_SHORT_BLOCK_ACCEPTED:
        "Bootloaders 2.3x report 0xFE for a short final block; it was accepted.",
    WarningCode.W_WRITE_DISABLED:
        "Add --write to perform actual writes.",
    WarningCode.W_CONFIG_RISK:
        "A wrong config byte can lock you out of the bootloader.",
    WarningCode.W_SIMULATED:
        "No actual write was performed. Drop --dry-run to write.",
    WarningCode.W_UNKNOWN:
        "Re-run with --verbose for the full USB trace.",
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }


def classify_message(message: str) -> WarningCode:
    """Map a warning or error string to its stable code."""
    msg = message.lower()

    if "lockout" in msg or "enter the bootloader" in msg:
        return WarningCode.W_CONFIG_RISK
    if "no bootloader found" in msg or "cannot claim" in msg:
        return WarningCode.W_DEVICE_NOT_FOUND
    if "not detected" in msg:
        return WarningCode.W_DETECT_FAILED
    if "bootloader version" in msg or "not supported on bootloader" in msg:
        return WarningCode.W_BOOTLOADER_UNKNOWN
    if "bootkey" in msg:
        return WarningCode.W_BOOTKEY_REJECTED
    if "request failed" in msg or "response failed" in msg:
        return WarningCode.W_USB_ERROR
    if "erase" in msg and "fail" in msg:
        return WarningCode.W_ERASE_FAILED
    if "verify" in msg:
        return WarningCode.W_VERIFY_MISMATCH
    if "write" in msg and "fail" in msg:
        return WarningCode.W_WRITE_FAILED
    if "do not fit" in msg or "larger than" in msg:
        return WarningCode.W_SIZE_MISMATCH
    if "0xfe" in msg:
        return WarningCode.W_SHORT_BLOCK_ACCEPTED
    if "simulation" in msg or "dry run" in msg:
        return WarningCode.W_SIMULATED
    if "permission" in msg or "--write" in msg:
        return WarningCode.W_WRITE_DISABLED
    return WarningCode.W_UNKNOWN


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """
    Convert Result object's warnings and errors to WarningItem list.

    Args:
        result: OperationResult from core operations

    Returns:
        List of WarningItem objects
    """
    items = [
        WarningItem(MessageLevel.WARN, classify_message(msg), msg)
        for msg in result.warnings
    ]
    items.extend(
        WarningItem(MessageLevel.ERROR, classify_message(err), err)
        for err in result.errors
    )
    return items
