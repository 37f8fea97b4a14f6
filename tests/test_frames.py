"""Tests for bootloader frame construction and reply parsing."""

import pytest

from ch559_flasher.chips import CH559
from ch559_flasher.protocol import (
    IdentifyFailed,
    InvalidLength,
    UnknownBootloaderVersion,
    UnsupportedBootloaderVersion,
)
from ch559_flasher.protocol.frames import (
    CMD_READ_DATA,
    CMD_WRITE,
    CMD_WRITE_DATA,
    CONFIG_FRAME_TEMPLATES,
    MAX_PAYLOAD,
    build_boot_frame,
    build_bootkey_frame,
    build_config_frame,
    build_detect_frame,
    build_erase_data_frame,
    build_erase_frame,
    build_identify_frame,
    build_range_frame,
    chunk_firmware,
    compute_identify_checksum,
    format_version,
    mix_chip_id,
    padded_length,
    parse_result_code,
    parse_version,
)

from fakes import identify_reply, status_reply


def test_detect_frame_bytes() -> None:
    frame = build_detect_frame()
    assert frame[:5] == bytes([0xA1, 0x12, 0x00, 0x59, 0x11])
    assert frame[5:] == b"MCU ISP & WCH.CN"
    assert len(frame) == 21


def test_identify_and_boot_frames() -> None:
    assert build_identify_frame() == bytes([0xA7, 0x02, 0x00, 0x1F, 0x00])
    assert build_boot_frame() == bytes([0xA2, 0x01, 0x00, 0x01])


def test_range_frame_short_payload_is_padded_and_mixed() -> None:
    """Three bytes pad to eight; index 7 carries 0xFF ^ chip id."""
    frame = build_range_frame(CMD_WRITE, 0x1234, b"\x01\x02\x03", chip_id=0x59)
    assert frame[:8] == bytes([0xA5, 0x0D, 0x00, 0x34, 0x12, 0x00, 0x00, 0x03])
    assert frame[8:] == bytes([0x01, 0x02, 0x03, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF ^ 0x59])


def test_range_frame_full_payload() -> None:
    payload = bytes(range(MAX_PAYLOAD))
    frame = build_range_frame(CMD_WRITE_DATA, 0x0000, payload, chip_id=0x59)
    assert len(frame) == 8 + MAX_PAYLOAD
    assert frame[0] == CMD_WRITE_DATA
    assert frame[1] == MAX_PAYLOAD + 5
    assert frame[7] == MAX_PAYLOAD
    body = frame[8:]
    for i, value in enumerate(body):
        expected = payload[i] ^ 0x59 if i % 8 == 7 else payload[i]
        assert value == expected


def test_range_frame_rejects_oversized_payload() -> None:
    with pytest.raises(InvalidLength):
        build_range_frame(CMD_WRITE, 0, bytes(MAX_PAYLOAD + 1), chip_id=0x59)


def test_range_frame_rejects_address_outside_16_bits() -> None:
    with pytest.raises(ValueError):
        build_range_frame(CMD_WRITE, 0x10000, b"\x00", chip_id=0x59)


def test_read_data_frame_has_count_and_no_payload() -> None:
    frame = build_range_frame(CMD_READ_DATA, 0x0038, b"", chip_id=0x59, length=16)
    assert frame == bytes([0xAB, 0x05, 0x00, 0x38, 0x00, 0x00, 0x00, 0x10])


def test_mix_chip_id_is_self_inverse() -> None:
    data = bytes(range(48))
    assert mix_chip_id(mix_chip_id(data, 0x59), 0x59) == data
    assert mix_chip_id(data, 0x00) == data


def test_padded_length_rounds_to_eight() -> None:
    assert padded_length(0) == 0
    assert padded_length(1) == 8
    assert padded_length(8) == 8
    assert padded_length(57) == 64


def test_bootkey_frame_repeats_checksum() -> None:
    frame = build_bootkey_frame(0xA0)
    assert len(frame) == 0x33
    assert frame[:3] == bytes([0xA3, 0x30, 0x00])
    assert set(frame[3:]) == {0xA0}


def test_erase_frames() -> None:
    assert build_erase_frame(60) == bytes([0xA4, 0x01, 0x00, 0x3C])
    assert build_erase_data_frame() == bytes([0xA9, 0x01, 0x00, 0x01])
    with pytest.raises(ValueError):
        build_erase_frame(0)


@pytest.mark.parametrize("version", ["2.31", "2.40"])
def test_config_frame_places_high_byte(version) -> None:
    frame = build_config_frame(version, 0x4E)
    template = CONFIG_FRAME_TEMPLATES[version]
    assert len(frame) == 17
    assert frame[14] == 0x4E
    assert frame[:14] == template[:14]
    assert frame[15:] == template[15:]


@pytest.mark.parametrize(
    "version, high, expected",
    [
        ("2.40", 0x12, "a8 0e 00 07 00 ff ff ff ff 23 00 00 00 f6 12 ff 97"),
        ("2.31", 0x12, "a8 0e 00 07 00 ff ff ff ff 03 00 00 00 ff 12 00 00"),
        ("2.31", 0x4E, "a8 0e 00 07 00 ff ff ff ff 03 00 00 00 ff 4e 00 00"),
    ],
)
def test_config_frame_bytes(version, high, expected) -> None:
    assert build_config_frame(version, high) == bytes.fromhex(expected)


def test_config_frame_unknown_version() -> None:
    with pytest.raises(UnsupportedBootloaderVersion):
        build_config_frame("2.41", 0x4E)
    with pytest.raises(UnsupportedBootloaderVersion):
        build_config_frame(None, 0x4E)


def test_parse_version_accepts_2x_bootloaders() -> None:
    assert parse_version(identify_reply((2, 3, 1))) == (2, 3, 1)
    assert parse_version(identify_reply((2, 4, 0))) == (2, 4, 0)
    assert format_version(2, 3, 1) == "2.31"


@pytest.mark.parametrize("version", [(1, 3, 1), (2, 5, 0), (3, 0, 0)])
def test_parse_version_rejects_unknown(version) -> None:
    with pytest.raises(UnknownBootloaderVersion):
        parse_version(identify_reply(version))


def test_parse_version_short_reply() -> None:
    with pytest.raises(IdentifyFailed):
        parse_version(bytes(10))


def test_identify_checksum_truncates_to_eight_bits() -> None:
    assert compute_identify_checksum(identify_reply(key=(0x10, 0x20, 0x30, 0x40))) == 0xA0
    assert compute_identify_checksum(identify_reply(key=(0xFF, 0xFF, 0xFF, 0xFF))) == 0xFC


def test_parse_result_code_reads_offset_four() -> None:
    assert parse_result_code(status_reply(0x59)) == 0x59


def test_chunk_firmware_offsets_and_tail() -> None:
    chunks = chunk_firmware(bytes(120))
    assert [offset for offset, _ in chunks] == [0, 56, 112]
    assert [len(chunk) for _, chunk in chunks] == [56, 56, 8]


def test_data_flash_base_comes_from_chip_config() -> None:
    import ch559_flasher.protocol as protocol
    from ch559_flasher.protocol import frames

    assert not hasattr(frames, "DATA_FLASH_BASE")
    assert "DATA_FLASH_BASE" not in protocol.__all__
    assert CH559.data_flash_base == 0xF000
    assert CH559.data_region == "0xF000-0xF3FF"
