"""
CH55x USB Bootloader Transport Layer

Handles low-level bulk transfers with the WCH USB bootloader.

This module provides:
- Device lookup by vendor/product id
- Kernel driver detach and configuration
- IN/OUT endpoint discovery on the first interface
- Bulk write/read with timeout and error wrapping
"""

import logging
from typing import Optional

try:
    import usb.core
    import usb.util
except ImportError:
    raise ImportError("PyUSB required: pip install pyusb")

from .errors import TransportError

logger = logging.getLogger(__name__)

# WCH bootloader USB identity
VENDOR_ID = 0x4348
PRODUCT_ID = 0x55E0
DEFAULT_TIMEOUT_MS = 2000


class UsbTransport:
    """
    Bulk-transfer transport for the CH55x USB bootloader.

    Example:
        transport = UsbTransport()
        transport.open()
        transport.write(frame)
        reply = transport.read(6)
        transport.close()
    """

    def __init__(
        self,
        vendor_id: int = VENDOR_ID,
        product_id: int = PRODUCT_ID,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        """
        Initialize transport layer.

        Args:
            vendor_id: USB vendor id (default WCH 0x4348)
            product_id: USB product id (default bootloader 0x55E0)
            timeout_ms: Bulk transfer timeout in milliseconds
        """
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.timeout_ms = timeout_ms
        self.dev: Optional["usb.core.Device"] = None
        self.ep_in = None
        self.ep_out = None

    @property
    def is_open(self) -> bool:
        return self.dev is not None and self.ep_in is not None and self.ep_out is not None

    def open(self) -> None:
        """
        Find the bootloader, claim its first interface and record endpoints.

        Raises:
            TransportError: If the device is missing or cannot be configured
        """
        dev = usb.core.find(idVendor=self.vendor_id, idProduct=self.product_id)
        if dev is None:
            raise TransportError(
                f"No bootloader found at {self.vendor_id:04x}:{self.product_id:04x}. "
                "Is the chip in bootloader mode?"
            )

        try:
            try:
                if dev.is_kernel_driver_active(0):
                    dev.detach_kernel_driver(0)
            except NotImplementedError:
                # Not available on every backend (e.g. Windows)
                pass
            dev.set_configuration()
            cfg = dev.get_active_configuration()
            intf = cfg[(0, 0)]
            usb.util.claim_interface(dev, intf)
        except usb.core.USBError as e:
            raise TransportError(f"Cannot configure device: {e}")

        self.ep_out = usb.util.find_descriptor(
            intf,
            custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress)
            == usb.util.ENDPOINT_OUT,
        )
        self.ep_in = usb.util.find_descriptor(
            intf,
            custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress)
            == usb.util.ENDPOINT_IN,
        )
        if self.ep_out is None or self.ep_in is None:
            usb.util.dispose_resources(dev)
            raise TransportError("Bootloader interface is missing a bulk IN/OUT endpoint")

        self.dev = dev
        logger.debug(
            f"Opened {self.vendor_id:04x}:{self.product_id:04x} "
            f"(in=0x{self.ep_in.bEndpointAddress:02X}, "
            f"out=0x{self.ep_out.bEndpointAddress:02X}, timeout={self.timeout_ms}ms)"
        )

    def close(self) -> None:
        """Release the interface and device handle."""
        if self.dev is not None:
            usb.util.dispose_resources(self.dev)
            logger.debug(f"Closed {self.vendor_id:04x}:{self.product_id:04x}")
        self.dev = None
        self.ep_in = None
        self.ep_out = None

    def write(self, data: bytes) -> None:
        """
        Send one bulk OUT transfer.

        Raises:
            TransportError: If the transfer fails or is incomplete
        """
        if not self.is_open:
            raise TransportError("USB device not open")

        try:
            written = self.ep_out.write(data, self.timeout_ms)
        except usb.core.USBError as e:
            raise TransportError(f"Write error: {e}")
        if written != len(data):
            raise TransportError(f"Incomplete write: sent {written}/{len(data)} bytes")

    def read(self, max_len: int) -> bytes:
        """
        Receive one bulk IN transfer of up to max_len bytes.

        Raises:
            TransportError: If the transfer fails or times out
        """
        if not self.is_open:
            raise TransportError("USB device not open")

        try:
            data = self.ep_in.read(max_len, self.timeout_ms)
        except usb.core.USBTimeoutError:
            raise TransportError("Bootloader did not respond (timeout)")
        except usb.core.USBError as e:
            raise TransportError(f"Read error: {e}")
        return bytes(data)

