"""Bootloader protocol layer - frame codec, executor, session and USB transport."""

from .errors import (
    FlasherError,
    TransportError,
    RequestError,
    ResponseError,
    ClaimFailed,
    DetectFailed,
    IdentifyFailed,
    UnknownBootloaderVersion,
    BootkeyError,
    InvalidLength,
    OperationFailed,
    EraseError,
    EraseDataError,
    ReadDataFailed,
    UnsupportedBootloaderVersion,
    ConfigWriteError,
    NotReady,
    Operation,
    FailureReason,
)
from .frames import (
    MAX_PAYLOAD,
    CONFIG_FRAME_TEMPLATES,
    build_range_frame,
    mix_chip_id,
    parse_version,
    compute_identify_checksum,
)
from .executor import CommandExecutor, Transport
from .session import (
    FlasherSession,
    SessionState,
    FlashRegion,
    DeviceIdentity,
    ProgressCallback,
)

__all__ = [
    # Errors
    "FlasherError",
    "TransportError",
    "RequestError",
    "ResponseError",
    "ClaimFailed",
    "DetectFailed",
    "IdentifyFailed",
    "UnknownBootloaderVersion",
    "BootkeyError",
    "InvalidLength",
    "OperationFailed",
    "EraseError",
    "EraseDataError",
    "ReadDataFailed",
    "UnsupportedBootloaderVersion",
    "ConfigWriteError",
    "NotReady",
    "Operation",
    "FailureReason",
    # Codec
    "MAX_PAYLOAD",
    "CONFIG_FRAME_TEMPLATES",
    "build_range_frame",
    "mix_chip_id",
    "parse_version",
    "compute_identify_checksum",
    # Session
    "CommandExecutor",
    "Transport",
    "FlasherSession",
    "SessionState",
    "FlashRegion",
    "DeviceIdentity",
    "ProgressCallback",
]
