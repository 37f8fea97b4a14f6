"""
Centralized parsing helpers for addresses, byte values and firmware files.

The CLI imports these helpers rather than re-implementing them.
"""

from pathlib import Path
from typing import Optional


def parse_int(value: Optional[str], label: str = "value") -> Optional[int]:
    """
    Parse an integer from string, supporting multiple formats.

    Accepts:
        - Decimal: "4096"
        - Hex with 0x prefix: "0x1000" or "0X1000"
        - Hex with h suffix: "1000h" or "1000H"
        - None or blank for "not given"

    Returns:
        Parsed integer, or None if value is None or empty.

    Raises:
        ValueError: If value cannot be parsed.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            return int(value, 16)
        if value.lower().endswith("h"):
            return int(value[:-1], 16)
        return int(value)
    except ValueError:
        raise ValueError(
            f"Invalid {label} '{value}'. Use decimal (4096), hex (0x1000), or suffix (1000h)."
        )


def parse_byte(value: str, label: str = "byte") -> int:
    """Parse a single byte value (0-255) in any parse_int format."""
    parsed = parse_int(value, label)
    if parsed is None or not 0 <= parsed <= 0xFF:
        raise ValueError(f"Invalid {label} '{value}'. Expected a value between 0x00 and 0xFF.")
    return parsed


def load_firmware(path: str, max_size: Optional[int] = None) -> bytes:
    """
    Read a raw binary firmware image.

    Args:
        path: Path to a .bin file
        max_size: Reject images larger than this many bytes

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the image is empty or too large
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Firmware file not found: {path}")

    data = file_path.read_bytes()
    if not data:
        raise ValueError(f"Firmware file is empty: {path}")
    if max_size is not None and len(data) > max_size:
        raise ValueError(
            f"Firmware is {len(data):,} bytes, larger than {max_size:,} bytes of flash"
        )
    return data
