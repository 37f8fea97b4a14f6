"""Tests for warning classification."""

from ch559_flasher.core.messages import (
    MessageLevel,
    WarningCode,
    classify_message,
    result_to_warnings,
)
from ch559_flasher.core.results import OperationResult


def test_classify_known_messages():
    assert classify_message("Cannot claim bootloader interface: busy") == WarningCode.W_DEVICE_NOT_FOUND
    assert classify_message("Chip not detected: expected 0x59, got 0x00") == WarningCode.W_DETECT_FAILED
    assert classify_message("Unknown bootloader version 1.00") == WarningCode.W_BOOTLOADER_UNKNOWN
    assert classify_message("verify failed at 0x0038 (result 0x01)") == WarningCode.W_VERIFY_MISMATCH
    assert classify_message("write failed at 0x0000 (result 0x01)") == WarningCode.W_WRITE_FAILED
    assert classify_message("Config write carries a lockout risk") == WarningCode.W_CONFIG_RISK
    assert classify_message("something odd") == WarningCode.W_UNKNOWN


def test_result_to_warnings_levels_and_remediation():
    result = OperationResult(operation="erase")
    result.add_error("Erase failed (result 0x01)")
    result.add_warning("Simulation mode - nothing was sent to the device")

    items = result_to_warnings(result)

    assert [item.level for item in items] == [MessageLevel.WARN, MessageLevel.ERROR]
    assert items[0].code == WarningCode.W_SIMULATED
    assert items[1].code == WarningCode.W_ERASE_FAILED
    assert items[1].remediation
    assert items[1].to_dict()["code"] == "W_ERASE_FAILED"


def test_short_block_warning_classified():
    message = "Bootloader answered 0xFE for a short final block (1x); treated as success"
    assert classify_message(message) == WarningCode.W_SHORT_BLOCK_ACCEPTED
