"""Tests for core workflows: gating, sequencing and result reporting."""

import hashlib

import pytest
from unittest.mock import MagicMock

from ch559_flasher.core.actions import (
    boot_device,
    detect_device,
    erase_data_flash,
    erase_flash,
    flash_firmware,
    read_data_flash,
    verify_firmware,
    write_config_byte,
    write_data_flash,
)
from ch559_flasher.core.safety import SafetyContext, WritePermissionError

from fakes import FakeTransport, data_reply, handshake_replies, status_reply


def confirmed() -> SafetyContext:
    return SafetyContext(write_enabled=True, confirmation_token="WRITE", interactive=False)


def factory_for(transport):
    return MagicMock(return_value=transport)


class TestDetect:

    def test_detect_reports_identity(self):
        transport = FakeTransport(handshake_replies(version=(2, 4, 0)))
        result = detect_device(transport_factory=factory_for(transport))

        assert result.ok
        assert result.chip_id == 0x59
        assert result.bootloader_version == "2.40"
        assert result.config_write_supported
        assert "CH559" in result.chip
        assert transport.closed

    def test_detect_failure_is_result_not_exception(self):
        transport = FakeTransport(fail_open=True)
        result = detect_device(transport_factory=factory_for(transport))

        assert not result.ok
        assert "Cannot claim" in result.errors[0]


class TestFlashFirmware:

    def test_requires_write_flag_before_touching_device(self):
        factory = MagicMock()
        with pytest.raises(WritePermissionError):
            flash_firmware(b"\x00" * 10, SafetyContext(), transport_factory=factory)
        factory.assert_not_called()

    def test_simulation_sends_nothing(self):
        factory = MagicMock()
        result = flash_firmware(
            b"\x00" * 10,
            SafetyContext(simulate=True),
            transport_factory=factory,
        )
        assert result.ok
        assert result.simulated
        factory.assert_not_called()

    def test_full_sequence(self):
        firmware = bytes(range(100))
        replies = handshake_replies() + [status_reply(0x00)] * 5
        transport = FakeTransport(replies)
        steps = []

        result = flash_firmware(
            firmware,
            confirmed(),
            boot=True,
            transport_factory=factory_for(transport),
            progress_cb=lambda step, fraction: steps.append((step, fraction)),
        )

        assert result.ok, result.errors
        assert result.steps == ["erase", "write", "verify", "boot"]
        assert result.sha256 == hashlib.sha256(firmware).hexdigest()
        opcodes = [frame[0] for frame in transport.writes[3:]]
        assert opcodes == [0xA4, 0xA5, 0xA5, 0xA6, 0xA6, 0xA2]
        assert ("Writing", 1.0) in steps
        assert ("Verifying", 1.0) in steps
        assert transport.closed

    def test_write_failure_reported_and_transport_closed(self):
        replies = handshake_replies() + [status_reply(0x00), status_reply(0x01)]
        transport = FakeTransport(replies)

        result = flash_firmware(
            bytes(100),
            confirmed(),
            transport_factory=factory_for(transport),
        )

        assert not result.ok
        assert "write failed at 0x0000" in result.errors[0]
        assert result.steps == ["erase"]
        assert transport.closed

    def test_short_tail_0xfe_warns_only_when_accepted(self):
        replies = handshake_replies() + [status_reply(0x00)] * 4 + [status_reply(0xFE)]
        transport = FakeTransport(replies)

        result = flash_firmware(bytes(100), confirmed(), transport_factory=factory_for(transport))

        assert result.ok, result.errors
        assert result.verified is True
        assert result.short_blocks_accepted == 1
        assert any("0xFE" in w for w in result.warnings)

    def test_clean_flash_has_no_0xfe_warning(self):
        transport = FakeTransport(handshake_replies() + [status_reply(0x00)] * 5)

        result = flash_firmware(bytes(100), confirmed(), transport_factory=factory_for(transport))

        assert result.ok, result.errors
        assert result.short_blocks_accepted == 0
        assert not any("0xFE" in w for w in result.warnings)

    def test_short_tail_0xfe_fails_on_240(self):
        replies = handshake_replies(version=(2, 4, 0)) + [status_reply(0x00)] * 2 + [status_reply(0xFE)]
        transport = FakeTransport(replies)

        result = flash_firmware(bytes(100), confirmed(), transport_factory=factory_for(transport))

        assert not result.ok
        assert result.steps == ["erase"]
        assert not any("0xFE" in w for w in result.warnings)

    def test_oversized_image(self):
        result = flash_firmware(bytes(0xF001), confirmed(), transport_factory=MagicMock())
        assert not result.ok
        assert "larger than" in result.errors[0]


def test_verify_firmware_mismatch():
    transport = FakeTransport(handshake_replies() + [status_reply(0x00), status_reply(0x01)])
    result = verify_firmware(bytes(100), transport_factory=factory_for(transport))

    assert not result.ok
    assert "verify failed at 0x0038" in result.errors[0]


def test_erase_with_data():
    transport = FakeTransport(handshake_replies() + [status_reply(0x00)] * 2)
    result = erase_flash(confirmed(), include_data=True, transport_factory=factory_for(transport))

    assert result.ok
    assert [frame[0] for frame in transport.writes[3:]] == [0xA4, 0xA9]


def test_verify_empty_image_sends_no_ranges():
    transport = FakeTransport(handshake_replies())
    result = verify_firmware(b"", transport_factory=factory_for(transport))

    assert result.ok, result.errors
    assert len(transport.writes) == 3


def test_erase_data_flash_leaves_code_flash_alone():
    transport = FakeTransport(handshake_replies() + [status_reply(0x00)])
    result = erase_data_flash(confirmed(), transport_factory=factory_for(transport))

    assert result.ok, result.errors
    assert result.steps == ["erase_data"]
    assert [frame[0] for frame in transport.writes[3:]] == [0xA9]


def test_erase_data_flash_requires_write_flag():
    factory = MagicMock()
    with pytest.raises(WritePermissionError):
        erase_data_flash(SafetyContext(), transport_factory=factory)
    factory.assert_not_called()


def test_read_data_flash_blank_warning():
    transport = FakeTransport(handshake_replies() + [data_reply(b"\xff" * 16)])
    result = read_data_flash(16, transport_factory=factory_for(transport))

    assert result.ok
    assert result.data == b"\xff" * 16
    assert any("blank" in w for w in result.warnings)
    assert result.to_dict()["data"] == "ff" * 16


def test_write_data_flash_readback_mismatch():
    data = b"\x01\x02\x03\x04"
    replies = handshake_replies() + [
        status_reply(0x00),                 # erase data
        status_reply(0x00),                 # write
        data_reply(b"\x01\x02\x03\x00"),    # read back
    ]
    transport = FakeTransport(replies)
    result = write_data_flash(data, confirmed(), transport_factory=factory_for(transport))

    assert not result.ok
    assert result.verified is False


def test_write_config_requires_risk_acknowledgement():
    factory = MagicMock()
    with pytest.raises(WritePermissionError):
        write_config_byte(0x4E, confirmed(), transport_factory=factory)
    factory.assert_not_called()


def test_write_config_success():
    transport = FakeTransport(handshake_replies() + [status_reply(0x00)])
    ctx = confirmed()
    ctx.risk_acknowledged = True

    result = write_config_byte(0x4E, ctx, transport_factory=factory_for(transport))

    assert result.ok
    assert transport.writes[-1][14] == 0x4E


def test_boot_device():
    transport = FakeTransport(handshake_replies())
    result = boot_device(transport_factory=factory_for(transport))

    assert result.ok
    assert transport.writes[-1] == bytes([0xA2, 0x01, 0x00, 0x01])
