"""
CH559 Bootloader Session

Sequences the connection handshake and gates every flash operation on a
completed handshake.

Connection sequence:
1. Open transport, claim interface          -> (failure: claim_failed)
2. Detect request, reply byte 4 must be 0x59  -> DETECTED
3. Identify, parse bootloader version       -> IDENTIFIED
4. Bootkey filled with identify checksum,
   reply byte 4 must equal the chip id      -> INITIALIZED

Any failure leaves the session FAILED; a new session is needed to retry.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..chips import CH559, ChipConfig
from .errors import (
    BootkeyError,
    ClaimFailed,
    ConfigWriteError,
    DetectFailed,
    EraseDataError,
    EraseError,
    FailureReason,
    FlasherError,
    IdentifyFailed,
    NotReady,
    Operation,
    OperationFailed,
    ReadDataFailed,
    RequestError,
    ResponseError,
    TransportError,
    UnknownBootloaderVersion,
)
from .executor import CommandExecutor, Transport
from .frames import (
    CMD_READ_DATA,
    CMD_VERIFY,
    CMD_WRITE,
    CMD_WRITE_DATA,
    DETECT_ECHO,
    IDENTIFY_REPLY_SIZE,
    MAX_PAYLOAD,
    READ_DATA_OFFSET,
    STATUS_REPLY_SIZE,
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
    parse_result_code,
    parse_version,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Result code 2.3x bootloaders report for a final block shorter than 56 bytes
SHORT_BLOCK_CODE = 0xFE
SHORT_BLOCK_VERSIONS = "2.3"


class SessionState(Enum):
    """Connection lifecycle of a FlasherSession."""
    DISCONNECTED = "disconnected"
    DETECTED = "detected"
    IDENTIFIED = "identified"
    INITIALIZED = "initialized"
    FAILED = "failed"


_NEXT_STATE = {
    SessionState.DISCONNECTED: SessionState.DETECTED,
    SessionState.DETECTED: SessionState.IDENTIFIED,
    SessionState.IDENTIFIED: SessionState.INITIALIZED,
}

_FAILURE_REASONS = (
    (DetectFailed, FailureReason.DETECT_FAILED),
    (UnknownBootloaderVersion, FailureReason.UNKNOWN_BOOTLOADER),
    (IdentifyFailed, FailureReason.IDENTIFY_FAILED),
    (BootkeyError, FailureReason.BOOTKEY_ERROR),
    (RequestError, FailureReason.REQUEST_ERROR),
    (ResponseError, FailureReason.RESPONSE_ERROR),
)


class FlashRegion(Enum):
    """Flash address space targeted by a range operation."""
    CODE = "code"
    DATA = "data"


@dataclass(frozen=True)
class DeviceIdentity:
    """What the bootloader told us about itself during connect()."""
    chip_id: int
    bootloader_version: str


class FlasherSession:
    """
    Programming session with one CH559 bootloader.

    The session owns its transport for its whole lifetime. Operations are
    synchronous and never overlap; sharing a session between threads is
    not supported.

    Example:
        with FlasherSession(UsbTransport()) as session:
            session.connect()
            session.erase()
            session.write_whole(firmware, progress_cb=print)
            session.verify_whole(firmware)
            session.boot()
    """

    def __init__(
        self,
        transport: Transport,
        chip: ChipConfig = CH559,
    ):
        """
        Initialize session.

        Args:
            transport: Unopened transport; connect() opens it
            chip: Flash geometry of the target
        """
        self.transport = transport
        self.chip = chip
        self.short_blocks_accepted = 0
        self._executor = CommandExecutor(transport)
        self._state = SessionState.DISCONNECTED
        self._failure: Optional[FailureReason] = None
        self._identity: Optional[DeviceIdentity] = None
        self._opened = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> Optional[FailureReason]:
        """Why the session is FAILED, None otherwise."""
        return self._failure

    @property
    def identity(self) -> Optional[DeviceIdentity]:
        return self._identity

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.INITIALIZED

    def _transition(self, new_state: SessionState) -> None:
        if _NEXT_STATE.get(self._state) is not new_state:
            raise RuntimeError(f"Illegal transition {self._state.value} -> {new_state.value}")
        logger.debug(f"Session {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _fail(self, reason: FailureReason) -> None:
        logger.debug(f"Session {self._state.value} -> failed ({reason.value})")
        self._state = SessionState.FAILED
        self._failure = reason

    def _require_ready(self, op: Operation) -> DeviceIdentity:
        if self._state is not SessionState.INITIALIZED or self._identity is None:
            raise NotReady(op, self._state.value)
        return self._identity

    # Connection

    def connect(self) -> DeviceIdentity:
        """
        Open the transport and run detect -> identify -> bootkey.

        Returns:
            DeviceIdentity of the connected chip

        Raises:
            NotReady: If the session was already used for a connection attempt
            ClaimFailed: If the USB interface cannot be claimed
            DetectFailed, IdentifyFailed, UnknownBootloaderVersion,
            BootkeyError, RequestError, ResponseError: Handshake failures
        """
        if self._state is not SessionState.DISCONNECTED:
            raise NotReady(Operation.CLAIM, self._state.value)

        try:
            self.transport.open()
        except TransportError as e:
            self._fail(FailureReason.CLAIM_FAILED)
            raise ClaimFailed(str(e)) from e
        self._opened = True

        try:
            chip_id = self._detect()
            self._transition(SessionState.DETECTED)

            version, checksum = self._identify()
            self._transition(SessionState.IDENTIFIED)

            self._send_bootkey(chip_id, checksum)
        except FlasherError as e:
            for error_type, reason in _FAILURE_REASONS:
                if isinstance(e, error_type):
                    self._fail(reason)
                    break
            else:
                self._fail(FailureReason.IDENTIFY_FAILED)
            raise

        self._identity = DeviceIdentity(chip_id=chip_id, bootloader_version=version)
        self._transition(SessionState.INITIALIZED)
        logger.info(f"Connected: chip 0x{chip_id:02X}, bootloader {version}")
        return self._identity

    def _detect(self) -> int:
        logger.info("Detecting chip...")
        response = self._executor.execute(
            Operation.DETECT, build_detect_frame(), STATUS_REPLY_SIZE
        )
        code = parse_result_code(response)
        if code != DETECT_ECHO:
            raise DetectFailed(code)
        return code

    def _identify(self):
        logger.info("Reading bootloader version...")
        response = self._executor.execute(
            Operation.IDENTIFY, build_identify_frame(), IDENTIFY_REPLY_SIZE
        )
        version = format_version(*parse_version(response))
        checksum = compute_identify_checksum(response)
        logger.debug(f"Bootloader {version}, key checksum 0x{checksum:02X}")
        return version, checksum

    def _send_bootkey(self, chip_id: int, checksum: int) -> None:
        logger.info("Sending bootkey...")
        response = self._executor.execute(
            Operation.BOOTKEY, build_bootkey_frame(checksum), STATUS_REPLY_SIZE
        )
        code = parse_result_code(response)
        if code != chip_id:
            raise BootkeyError(code, chip_id)

    def close(self) -> None:
        """Release the transport if connect() opened it."""
        if self._opened:
            self.transport.close()
            self._opened = False

    def __enter__(self) -> "FlasherSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Erase

    def erase(self, block_count: Optional[int] = None) -> None:
        """
        Erase code flash.

        Args:
            block_count: 1 KiB blocks to erase (default: chip.erase_blocks)

        Raises:
            EraseError: If the device reports a nonzero result
        """
        self._require_ready(Operation.ERASE)
        count = block_count if block_count is not None else self.chip.erase_blocks
        logger.info(f"Erasing {count} code flash blocks...")
        response = self._executor.execute(
            Operation.ERASE, build_erase_frame(count), STATUS_REPLY_SIZE
        )
        code = parse_result_code(response)
        if code != 0:
            raise EraseError(code)

    def erase_data(self) -> None:
        """Erase the data flash region."""
        self._require_ready(Operation.ERASE_DATA)
        logger.info("Erasing data flash...")
        response = self._executor.execute(
            Operation.ERASE_DATA, build_erase_data_frame(), STATUS_REPLY_SIZE
        )
        code = parse_result_code(response)
        if code != 0:
            raise EraseDataError(code)

    # Range operations

    def _run_range(
        self,
        op: Operation,
        opcode: int,
        address: int,
        payload: bytes,
        chip_id: int,
        allow_short_block: bool = False,
    ) -> None:
        frame = build_range_frame(opcode, address, payload, chip_id)
        response = self._executor.execute(op, frame, STATUS_REPLY_SIZE)
        code = parse_result_code(response)
        if code == 0:
            return
        if allow_short_block and code == SHORT_BLOCK_CODE:
            logger.info(f"{op.value} at 0x{address:04X}: short final block answered 0xFE, accepted")
            self.short_blocks_accepted += 1
            return
        raise OperationFailed(op, code, address)

    def write_range(
        self,
        address: int,
        data: bytes,
        region: FlashRegion = FlashRegion.CODE,
    ) -> None:
        """
        Write up to 56 bytes at address.

        Args:
            address: Code flash address, or offset into data flash for DATA
            data: Payload (max 56 bytes)
            region: CODE or DATA

        Raises:
            InvalidLength: If data exceeds 56 bytes
            OperationFailed: If the device reports a nonzero result
        """
        if region is FlashRegion.DATA:
            op, opcode = Operation.WRITE_DATA, CMD_WRITE_DATA
        else:
            op, opcode = Operation.WRITE, CMD_WRITE
        identity = self._require_ready(op)
        self._run_range(op, opcode, address, data, identity.chip_id)

    def verify_range(
        self,
        address: int,
        data: bytes,
        region: FlashRegion = FlashRegion.CODE,
    ) -> None:
        """
        Ask the device to compare up to 56 bytes of code flash at address.

        Raises:
            InvalidLength: If data exceeds 56 bytes
            OperationFailed: If the device reports a mismatch
        """
        identity = self._require_ready(Operation.VERIFY)
        if region is not FlashRegion.CODE:
            raise ValueError("The bootloader only verifies code flash; read data flash back instead")
        self._run_range(Operation.VERIFY, CMD_VERIFY, address, data, identity.chip_id)

    def read_data_range(self, address: int, length: int) -> bytes:
        """
        Read up to 56 bytes of data flash.

        Args:
            address: Offset into data flash
            length: Bytes to read (1-56)

        Returns:
            The bytes read

        Raises:
            InvalidLength: If length exceeds 56
            ReadDataFailed: If the device reports a nonzero result
        """
        identity = self._require_ready(Operation.READ_DATA)
        if length <= 0:
            raise ValueError(f"Read length must be positive, got {length}")
        frame = build_range_frame(CMD_READ_DATA, address, b"", identity.chip_id, length=length)
        response = self._executor.execute(
            Operation.READ_DATA, frame, READ_DATA_OFFSET + length
        )
        code = parse_result_code(response)
        if code != 0:
            raise ReadDataFailed(code, address)
        return response[READ_DATA_OFFSET:READ_DATA_OFFSET + length]

    # Whole-buffer operations

    def _check_fits(self, data: bytes, region: FlashRegion) -> None:
        limit = self.chip.data_flash_size if region is FlashRegion.DATA else self.chip.code_flash_size
        if len(data) > limit:
            raise ValueError(
                f"{len(data)} bytes do not fit in {region.value} flash ({limit} bytes)"
            )

    def _apply_whole(
        self,
        op: Operation,
        opcode: int,
        data: bytes,
        identity: DeviceIdentity,
        progress_cb: Optional[ProgressCallback],
    ) -> None:
        # An empty buffer means zero range operations
        total = len(data)
        tolerate_short_block = identity.bootloader_version.startswith(SHORT_BLOCK_VERSIONS)
        for offset, chunk in chunk_firmware(data):
            is_short_tail = len(chunk) < MAX_PAYLOAD and offset + len(chunk) == total
            self._run_range(
                op,
                opcode,
                offset,
                chunk,
                identity.chip_id,
                allow_short_block=tolerate_short_block and is_short_tail,
            )
            if progress_cb:
                progress_cb((offset + len(chunk)) / total)

    def write_whole(
        self,
        firmware: bytes,
        progress_cb: Optional[ProgressCallback] = None,
        region: FlashRegion = FlashRegion.CODE,
    ) -> None:
        """
        Write a whole image from address 0 in 56-byte chunks.

        Stops at the first chunk the device rejects. An empty image sends
        nothing. On 2.3x bootloaders a short final chunk answered with 0xFE
        counts as written.

        Args:
            firmware: Image bytes
            progress_cb: Optional callback(fraction_complete) after each chunk
            region: CODE or DATA

        Raises:
            OperationFailed: On the first rejected chunk
        """
        if region is FlashRegion.DATA:
            op, opcode = Operation.WRITE_DATA, CMD_WRITE_DATA
        else:
            op, opcode = Operation.WRITE, CMD_WRITE
        identity = self._require_ready(op)
        self._check_fits(firmware, region)
        logger.info(f"Writing {len(firmware)} bytes to {region.value} flash...")
        self._apply_whole(op, opcode, firmware, identity, progress_cb)

    def verify_whole(
        self,
        firmware: bytes,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Verify a whole image against code flash in 56-byte chunks.

        Raises:
            OperationFailed: On the first mismatching chunk
        """
        identity = self._require_ready(Operation.VERIFY)
        self._check_fits(firmware, FlashRegion.CODE)
        logger.info(f"Verifying {len(firmware)} bytes...")
        self._apply_whole(Operation.VERIFY, CMD_VERIFY, firmware, identity, progress_cb)

    def write_data_whole(
        self,
        data: bytes,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        self.write_whole(data, progress_cb, region=FlashRegion.DATA)

    def read_data_whole(
        self,
        length: Optional[int] = None,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Read data flash from offset 0 in 56-byte chunks.

        Args:
            length: Bytes to read (default: whole data flash)
            progress_cb: Optional callback(fraction_complete) after each chunk
        """
        self._require_ready(Operation.READ_DATA)
        total = self.chip.data_flash_size if length is None else length
        if not 0 < total <= self.chip.data_flash_size:
            raise ValueError(
                f"Read length {total} outside data flash size {self.chip.data_flash_size}"
            )
        logger.info(f"Reading {total} bytes of data flash...")
        out = bytearray()
        for offset in range(0, total, MAX_PAYLOAD):
            size = min(MAX_PAYLOAD, total - offset)
            out.extend(self.read_data_range(offset, size))
            if progress_cb:
                progress_cb(len(out) / total)
        return bytes(out)

    # Boot and config

    def boot(self) -> None:
        """Leave the bootloader and start the application. No reply is expected."""
        self._require_ready(Operation.BOOT)
        logger.info("Starting application...")
        self._executor.execute(Operation.BOOT, build_boot_frame(), 0)

    def write_config(self, high_byte: int) -> None:
        """
        Rewrite the config high byte (bootloader 2.31 and 2.40 only).

        This can leave the chip unable to enter the bootloader again. It is
        never retried.

        Raises:
            UnsupportedBootloaderVersion: On any other bootloader version,
                before anything is sent
            ConfigWriteError: If the device reports a nonzero result
        """
        identity = self._require_ready(Operation.WRITE_CONFIG)
        frame = build_config_frame(identity.bootloader_version, high_byte)
        logger.warning(
            f"Writing config byte 0x{high_byte:02X} (bootloader {identity.bootloader_version})"
        )
        response = self._executor.execute(Operation.WRITE_CONFIG, frame, STATUS_REPLY_SIZE)
        code = parse_result_code(response)
        if code != 0:
            raise ConfigWriteError(code)
