"""
Chip configuration for the CH559 bootloader target.

Single source of truth for flash geometry used by the session (default
erase size), the core workflows (image size checks) and the CLI.
"""

from dataclasses import dataclass
from typing import Dict, Any


@dataclass(frozen=True)
class ChipConfig:
    """
    Flash geometry of a bootloader target.

    Attributes:
        name: Marketing name
        chip_id: Id echoed by the detect request
        code_flash_size: Bytes of application flash, addressed from 0
        erase_blocks: 1 KiB blocks cleared by a full code erase
        data_flash_base: Absolute address of data flash
        data_flash_size: Bytes of data flash, addressed from data_flash_base
        bootloader_address: Where the bootloader itself lives
    """
    name: str
    chip_id: int
    code_flash_size: int
    erase_blocks: int
    data_flash_base: int
    data_flash_size: int
    bootloader_address: int

    @property
    def code_region(self) -> str:
        return f"0x0000-0x{self.code_flash_size - 1:04X}"

    @property
    def data_region(self) -> str:
        end = self.data_flash_base + self.data_flash_size - 1
        return f"0x{self.data_flash_base:04X}-0x{end:04X}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "name": self.name,
            "chip_id": f"0x{self.chip_id:02X}",
            "code_flash": self.code_region,
            "code_flash_size": self.code_flash_size,
            "erase_blocks": self.erase_blocks,
            "data_flash": self.data_region,
            "data_flash_size": self.data_flash_size,
            "bootloader_address": f"0x{self.bootloader_address:04X}",
        }


CH559 = ChipConfig(
    name="CH559",
    chip_id=0x59,
    code_flash_size=0xF000,
    erase_blocks=60,
    data_flash_base=0xF000,
    data_flash_size=0x400,
    bootloader_address=0xF400,
)
