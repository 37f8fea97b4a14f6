"""Scripted in-memory transport for exercising the session without hardware."""

from typing import List, Optional, Sequence, Union

from ch559_flasher.protocol import TransportError

Reply = Union[bytes, Exception]


def status_reply(code: int) -> bytes:
    """Six-byte status reply carrying code at offset 4."""
    return bytes([0x00, 0x00, 0x00, 0x00, code, 0x00])


def identify_reply(version=(2, 3, 1), key=(0x10, 0x20, 0x30, 0x40)) -> bytes:
    """Thirty-byte identify reply with version at 19..21 and key bytes at 22..25."""
    reply = bytearray(30)
    reply[19:22] = bytes(version)
    reply[22:26] = bytes(key)
    return bytes(reply)


def data_reply(data: bytes, code: int = 0) -> bytes:
    return status_reply(code) + data


def handshake_replies(chip_id: int = 0x59, version=(2, 3, 1)) -> List[bytes]:
    """Replies for a successful detect -> identify -> bootkey sequence."""
    return [status_reply(chip_id), identify_reply(version), status_reply(chip_id)]


class FakeTransport:
    """Records every frame written and answers reads from a script."""

    def __init__(
        self,
        replies: Optional[Sequence[Reply]] = None,
        fail_open: bool = False,
        fail_write: bool = False,
    ):
        self.replies = list(replies or [])
        self.fail_open = fail_open
        self.fail_write = fail_write
        self.writes: List[bytes] = []
        self.read_sizes: List[int] = []
        self.opened = False
        self.closed = False

    def open(self) -> None:
        if self.fail_open:
            raise TransportError("No bootloader found at 4348:55e0")
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def write(self, data: bytes) -> None:
        if self.fail_write:
            raise TransportError("Write error: pipe")
        self.writes.append(bytes(data))

    def read(self, max_len: int) -> bytes:
        self.read_sizes.append(max_len)
        if not self.replies:
            raise TransportError("Bootloader did not respond (timeout)")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply
