"""
CH559 Flasher - USB bootloader client for the WCH CH559 microcontroller

Detect, erase, write, verify and boot over the factory USB bootloader.
"""

__version__ = "0.1.0"

from ch559_flasher.chips import CH559, ChipConfig
from ch559_flasher.protocol import FlasherSession, FlasherError

__all__ = [
    "CH559",
    "ChipConfig",
    "FlasherSession",
    "FlasherError",
    "__version__",
]
