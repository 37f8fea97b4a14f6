"""
Core module for CH559 Flasher.

This module provides the single source of truth for:
- Write gating / confirmation (safety.py)
- Address, byte and firmware parsing (parsing.py)
- Result objects (results.py)
- Connect/erase/write/verify/boot workflows (actions.py)
- Standardized warnings/messages (messages.py)

The CLI calls into this module rather than implementing its own logic.
"""

from .safety import SafetyContext, require_write_permission, WritePermissionError
from .parsing import parse_int, parse_byte, load_firmware
from .results import OperationResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    classify_message,
    result_to_warnings,
)
from .actions import (
    usb_transport_factory,
    detect_device,
    erase_flash,
    erase_data_flash,
    flash_firmware,
    verify_firmware,
    read_data_flash,
    write_data_flash,
    write_config_byte,
    boot_device,
)

__all__ = [
    # Safety
    "SafetyContext",
    "require_write_permission",
    "WritePermissionError",
    # Parsing
    "parse_int",
    "parse_byte",
    "load_firmware",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "classify_message",
    "result_to_warnings",
    # Actions
    "usb_transport_factory",
    "detect_device",
    "erase_flash",
    "erase_data_flash",
    "flash_firmware",
    "verify_firmware",
    "read_data_flash",
    "write_data_flash",
    "write_config_byte",
    "boot_device",
]
