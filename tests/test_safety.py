"""Tests for write gating rules."""

import pytest

from ch559_flasher.core.safety import (
    CONFIRMATION_TOKEN,
    SafetyContext,
    WritePermissionError,
    require_write_permission,
)


def test_simulation_always_allowed():
    require_write_permission(SafetyContext(simulate=True), "flash_firmware", risky=True)


def test_write_flag_required():
    with pytest.raises(WritePermissionError) as exc_info:
        require_write_permission(SafetyContext(confirmation_token="WRITE"), "erase")
    assert "--write" in str(exc_info.value)
    assert exc_info.value.details["operation"] == "erase"


def test_token_accepted_case_insensitive():
    ctx = SafetyContext(write_enabled=True, confirmation_token=" write ", interactive=False)
    require_write_permission(ctx, "erase")


def test_token_mismatch():
    ctx = SafetyContext(write_enabled=True, confirmation_token="YES", interactive=False)
    with pytest.raises(WritePermissionError, match="token mismatch"):
        require_write_permission(ctx, "erase")


def test_risky_needs_acknowledgement_even_with_token():
    ctx = SafetyContext(write_enabled=True, confirmation_token=CONFIRMATION_TOKEN)
    with pytest.raises(WritePermissionError, match="Acknowledge the risk"):
        require_write_permission(ctx, "write_config", risky=True)

    ctx.risk_acknowledged = True
    require_write_permission(ctx, "write_config", risky=True)


def test_interactive_prompt():
    shown = []
    ctx = SafetyContext(
        write_enabled=True,
        interactive=True,
        prompt_confirmation=lambda text: "WRITE",
        show_details=shown.append,
    )
    require_write_permission(ctx, "flash_firmware", target_region="0x0000-0x00FF", bytes_length=256)
    assert shown[0]["bytes_length"] == 256


def test_interactive_prompt_declined():
    ctx = SafetyContext(write_enabled=True, interactive=True, prompt_confirmation=lambda text: "no")
    with pytest.raises(WritePermissionError, match="aborted"):
        require_write_permission(ctx, "erase")


def test_non_interactive_without_token():
    ctx = SafetyContext(write_enabled=True, interactive=False)
    with pytest.raises(WritePermissionError, match="Non-interactive"):
        require_write_permission(ctx, "erase")
