"""Tests for OperationResult reporting."""

from ch559_flasher.core.results import OperationResult
from ch559_flasher.protocol import FlasherSession

from fakes import FakeTransport, handshake_replies


def test_record_session_copies_identity():
    session = FlasherSession(FakeTransport(handshake_replies(version=(2, 4, 0))))
    session.connect()
    result = OperationResult(operation="detect")

    result.record_session(session)

    assert result.chip == "CH559 (bootloader 2.40)"
    assert result.chip_id == 0x59
    assert result.bootloader_version == "2.40"
    assert result.config_write_supported
    assert result.short_blocks_accepted == 0


def test_record_session_before_connect_leaves_result_blank():
    result = OperationResult(operation="detect")
    result.record_session(FlasherSession(FakeTransport()))

    assert result.chip == ""
    assert result.chip_id is None
    assert not result.config_write_supported


def test_add_error_fails_result():
    result = OperationResult(operation="erase")
    result.add_warning("Simulation mode - nothing was sent to the device")
    assert result.ok

    result.add_error("Erase failed (result 0x01)")

    assert not result.ok
    assert result.to_summary().splitlines()[0] == "erase: FAILED"


def test_summary_lists_filled_fields_only():
    result = OperationResult(
        operation="flash_firmware",
        region="0x0000-0x0063",
        bytes_len=100,
        steps=["erase", "write", "verify"],
        verified=True,
        simulated=True,
    )

    lines = result.to_summary().splitlines()

    assert lines[0] == "flash_firmware: OK (dry run)"
    assert "  Steps:    erase -> write -> verify" in lines
    assert "  Verified: yes" in lines
    assert not any(line.lstrip().startswith("SHA-256") for line in lines)


def test_to_dict_is_json_ready():
    result = OperationResult(
        operation="read_data_flash",
        bootloader_version="2.31",
        data=b"\x01\xff",
    )

    out = result.to_dict()

    assert out["data"] == "01ff"
    assert out["config_write_supported"] is True
    assert out["short_blocks_accepted"] == 0
    assert "metadata" not in out
