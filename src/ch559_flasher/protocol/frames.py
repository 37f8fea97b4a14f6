"""
CH559 USB Bootloader Frame Codec

Pure translation between operation parameters and wire bytes for the WCH
v2 USB bootloader (CH55x family, bootloader 2.3x / 2.4x).

Range frame layout (write / verify / data write / data read):
[ opcode | len | 0x00 | addr_lo | addr_hi | 0x00 | 0x00 | count | payload... ]

- len is the padded payload length + 5
- payload is right-padded with 0xFF to a multiple of 8 bytes
- every 8th padded payload byte (index % 8 == 7) is XORed with the chip id
- at most 0x38 (56) payload bytes fit in one frame

Replies carry the result code at offset 4 (0 = success); data reads carry
the requested bytes from offset 6.
"""

from typing import Dict, List, Optional, Tuple

from .errors import (
    IdentifyFailed,
    InvalidLength,
    UnknownBootloaderVersion,
    UnsupportedBootloaderVersion,
)

# Opcodes
CMD_DETECT = 0xA1
CMD_BOOT = 0xA2
CMD_BOOTKEY = 0xA3
CMD_ERASE = 0xA4
CMD_WRITE = 0xA5
CMD_VERIFY = 0xA6
CMD_IDENTIFY = 0xA7
CMD_WRITE_CONFIG = 0xA8
CMD_ERASE_DATA = 0xA9
CMD_WRITE_DATA = 0xAA
CMD_READ_DATA = 0xAB

# Frame geometry
MAX_PAYLOAD = 0x38
HEADER_SIZE = 8
PAD_BYTE = 0xFF
RESULT_OFFSET = 4
READ_DATA_OFFSET = 6
STATUS_REPLY_SIZE = 6
IDENTIFY_REPLY_SIZE = 30

# Detect request: header followed by "MCU ISP & WCH.CN"
DETECT_MAGIC = b"MCU ISP & WCH.CN"
DETECT_FRAME = bytes([CMD_DETECT, 0x12, 0x00, 0x59, 0x11]) + DETECT_MAGIC
DETECT_ECHO = 0x59

IDENTIFY_FRAME = bytes([CMD_IDENTIFY, 0x02, 0x00, 0x1F, 0x00])
VERSION_OFFSETS = (19, 20, 21)
CHECKSUM_OFFSETS = range(22, 26)
KNOWN_MAJOR = 2
KNOWN_MINORS = (3, 4)

BOOTKEY_SIZE = 0x33
BOOT_FRAME = bytes([CMD_BOOT, 0x01, 0x00, 0x01])

DATA_ERASE_BLOCKS = 0x01

# Config frame templates, keyed by bootloader version. Byte 14 carries the
# caller-supplied high byte.
CONFIG_HIGH_BYTE_OFFSET = 14
CONFIG_FRAME_TEMPLATES: Dict[str, bytes] = {
    "2.31": bytes([
        CMD_WRITE_CONFIG, 0x0E, 0x00, 0x07, 0x00, 0xFF, 0xFF, 0xFF, 0xFF,
        0x03, 0x00, 0x00, 0x00, 0xFF, 0x00, 0x00, 0x00,
    ]),
    "2.40": bytes([
        CMD_WRITE_CONFIG, 0x0E, 0x00, 0x07, 0x00, 0xFF, 0xFF, 0xFF, 0xFF,
        0x23, 0x00, 0x00, 0x00, 0xF6, 0x00, 0xFF, 0x97,
    ]),
}


def padded_length(size: int) -> int:
    """Round size up to the next multiple of 8."""
    return (size + 7) & ~7


def mix_chip_id(data: bytes, chip_id: int) -> bytes:
    """
    XOR chip_id into every 8th byte (index % 8 == 7) of a padded payload.

    The transform is its own inverse.
    """
    return bytes(
        b ^ chip_id if i % 8 == 7 else b
        for i, b in enumerate(data)
    )


def build_range_frame(
    opcode: int,
    address: int,
    payload: bytes,
    chip_id: int,
    length: Optional[int] = None,
) -> bytes:
    """
    Build an addressed range frame.

    Args:
        opcode: CMD_WRITE, CMD_VERIFY, CMD_WRITE_DATA or CMD_READ_DATA
        address: 16-bit target address (little-endian on the wire)
        payload: Up to MAX_PAYLOAD bytes
        chip_id: Chip id learned during detect, mixed into the payload
        length: Value for the count byte; defaults to len(payload).
            Data reads pass the number of bytes requested.

    Returns:
        Complete frame as bytes

    Raises:
        InvalidLength: If payload or length exceeds MAX_PAYLOAD
    """
    if len(payload) > MAX_PAYLOAD:
        raise InvalidLength(len(payload), MAX_PAYLOAD)
    count = len(payload) if length is None else length
    if count > MAX_PAYLOAD:
        raise InvalidLength(count, MAX_PAYLOAD)
    if not 0 <= address <= 0xFFFF:
        raise ValueError(f"Address out of range: 0x{address:X}")

    size = padded_length(len(payload))
    padded = bytes(payload) + bytes([PAD_BYTE]) * (size - len(payload))

    frame = bytearray([
        opcode,
        size + 5,
        0x00,
        address & 0xFF,          # addr low
        (address >> 8) & 0xFF,   # addr high
        0x00,
        0x00,
        count & 0xFF,
    ])
    frame.extend(mix_chip_id(padded, chip_id))
    return bytes(frame)


def build_detect_frame() -> bytes:
    return DETECT_FRAME


def build_identify_frame() -> bytes:
    return IDENTIFY_FRAME


def build_bootkey_frame(checksum: int) -> bytes:
    """Bootkey frame: a3 30 00 followed by the identify checksum repeated."""
    frame = bytearray([checksum & 0xFF]) * BOOTKEY_SIZE
    frame[0] = CMD_BOOTKEY
    frame[1] = BOOTKEY_SIZE - 3
    frame[2] = 0x00
    return bytes(frame)


def build_erase_frame(block_count: int) -> bytes:
    if not 0 < block_count <= 0xFF:
        raise ValueError(f"Erase block count out of range: {block_count}")
    return bytes([CMD_ERASE, 0x01, 0x00, block_count])


def build_erase_data_frame() -> bytes:
    return bytes([CMD_ERASE_DATA, 0x01, 0x00, DATA_ERASE_BLOCKS])


def build_boot_frame() -> bytes:
    return BOOT_FRAME


def build_config_frame(version: Optional[str], high_byte: int) -> bytes:
    """
    Build the config write frame for a given bootloader version.

    Raises:
        UnsupportedBootloaderVersion: If no layout is known for version
    """
    template = CONFIG_FRAME_TEMPLATES.get(version or "")
    if template is None:
        raise UnsupportedBootloaderVersion(version)
    if not 0 <= high_byte <= 0xFF:
        raise ValueError(f"Config byte out of range: {high_byte}")
    frame = bytearray(template)
    frame[CONFIG_HIGH_BYTE_OFFSET] = high_byte
    return bytes(frame)


def parse_result_code(response: bytes) -> int:
    return response[RESULT_OFFSET]


def parse_version(response: bytes) -> Tuple[int, int, int]:
    """
    Extract (major, minor, patch) from an identify reply.

    Raises:
        IdentifyFailed: If the reply is too short
        UnknownBootloaderVersion: Unless major is 2 and minor is 3 or 4
    """
    if len(response) <= max(VERSION_OFFSETS):
        raise IdentifyFailed(f"reply too short for version ({len(response)} bytes)")
    major, minor, patch = (response[i] for i in VERSION_OFFSETS)
    if major != KNOWN_MAJOR or minor not in KNOWN_MINORS:
        raise UnknownBootloaderVersion(format_version(major, minor, patch))
    return major, minor, patch


def format_version(major: int, minor: int, patch: int) -> str:
    """Bootloader versions print as major.minorpatch, e.g. 2.31."""
    return f"{major}.{minor}{patch}"


def compute_identify_checksum(response: bytes) -> int:
    """Sum of identify reply bytes 22..25, truncated to 8 bits."""
    if len(response) < CHECKSUM_OFFSETS.stop:
        raise IdentifyFailed(f"reply too short for checksum ({len(response)} bytes)")
    return sum(response[i] for i in CHECKSUM_OFFSETS) & 0xFF


def chunk_firmware(
    data: bytes,
    chunk_size: int = MAX_PAYLOAD,
) -> List[Tuple[int, bytes]]:
    """
    Split a buffer into (offset, chunk) tuples for range frames.

    Returns:
        List[(offset, chunk)] covering data in order; the last chunk may be short
    """
    if not 0 < chunk_size <= MAX_PAYLOAD:
        raise InvalidLength(chunk_size, MAX_PAYLOAD)
    return [
        (offset, data[offset:offset + chunk_size])
        for offset in range(0, len(data), chunk_size)
    ]
