"""
Command executor: one write plus one read per bootloader command.
"""

import logging
from typing import Protocol

from .errors import Operation, RequestError, ResponseError, TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the session and executor need from a transport."""

    def open(self) -> None: ...

    def close(self) -> None: ...

    def write(self, data: bytes) -> None: ...

    def read(self, max_len: int) -> bytes: ...


class CommandExecutor:
    """
    Pairs a frame with its expected reply size and performs the round trip.

    No retries happen here: a single transport failure is raised
    immediately as RequestError or ResponseError tagged with the operation.
    """

    def __init__(self, transport: Transport):
        self.transport = transport

    def execute(self, op: Operation, frame: bytes, expected_len: int) -> bytes:
        """
        Send frame and read the reply.

        Args:
            op: Operation tag for errors and logs
            frame: Complete command frame
            expected_len: Reply size in bytes; 0 means no reply is solicited

        Returns:
            Reply bytes (b"" when expected_len is 0)

        Raises:
            RequestError: If the write fails
            ResponseError: If the read fails or returns fewer than expected_len bytes
        """
        try:
            self.transport.write(frame)
        except TransportError as e:
            raise RequestError(op, str(e)) from e
        logger.debug(f"{op.value} >>> {frame.hex()}")

        if expected_len == 0:
            return b""

        try:
            response = self.transport.read(expected_len)
        except TransportError as e:
            raise ResponseError(op, str(e)) from e
        logger.debug(f"{op.value} <<< {response.hex()}")

        if len(response) < expected_len:
            raise ResponseError(
                op,
                f"short reply: expected {expected_len} bytes, got {len(response)}",
            )
        return bytes(response[:expected_len])
