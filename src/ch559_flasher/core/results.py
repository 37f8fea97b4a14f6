"""
Outcome of a core workflow.

One OperationResult describes what a workflow asked of the bootloader, what
the device reported about itself, and which session steps completed before
it stopped. The CLI renders it as text or as --json.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..protocol import FlasherSession
from ..protocol.frames import CONFIG_FRAME_TEMPLATES


@dataclass
class OperationResult:
    """
    Report of one workflow run.

    Attributes:
        operation: Workflow name (e.g. "flash_firmware", "read_data_flash")
        ok: False once any error was recorded
        chip: Label such as "CH559 (bootloader 2.31)", empty before connect
        chip_id: Id echoed by the detect request
        bootloader_version: Version string from identify, e.g. "2.40"
        region: Flash range touched, e.g. "0x0000-0x0FFF"
        bytes_len: Bytes sent to or read from the device
        sha256: Digest of the image written/verified or of the data read
        steps: Session calls that completed, in order
        verified: True/False once a verify or read-back ran, None otherwise
        simulated: Dry run; nothing was sent
        short_blocks_accepted: 0xFE answers taken as success on a short tail
        data: Bytes read from data flash
        saved_to: File the read data was written to
    """
    operation: str
    ok: bool = True
    chip: str = ""
    chip_id: Optional[int] = None
    bootloader_version: Optional[str] = None
    region: str = ""
    bytes_len: int = 0
    sha256: Optional[str] = None
    steps: List[str] = field(default_factory=list)
    verified: Optional[bool] = None
    simulated: bool = False
    short_blocks_accepted: int = 0
    data: Optional[bytes] = None
    saved_to: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def config_write_supported(self) -> bool:
        return self.bootloader_version in CONFIG_FRAME_TEMPLATES

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Record an error; the result is failed from here on."""
        self.errors.append(message)
        self.ok = False

    def record_session(self, session: FlasherSession) -> None:
        """Copy what connect() learned about the device."""
        identity = session.identity
        if identity is None:
            return
        self.chip = f"{session.chip.name} (bootloader {identity.bootloader_version})"
        self.chip_id = identity.chip_id
        self.bootloader_version = identity.bootloader_version
        self.short_blocks_accepted = session.short_blocks_accepted

    def to_summary(self) -> str:
        """Plain-text report for the terminal; warnings and errors are listed separately."""
        lines = [f"{self.operation}: {'OK' if self.ok else 'FAILED'}"]
        if self.simulated:
            lines[0] += " (dry run)"

        fields = (
            ("Chip", self.chip),
            ("Region", self.region),
            ("Bytes", f"{self.bytes_len:,}" if self.bytes_len else ""),
            ("Steps", " -> ".join(self.steps)),
            ("Verified", "" if self.verified is None else ("yes" if self.verified else "NO")),
            ("SHA-256", self.sha256 or ""),
            ("Saved to", self.saved_to or ""),
        )
        lines.extend(f"  {label + ':':<10}{value}" for label, value in fields if value)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict; data is hex encoded."""
        out = asdict(self)
        if self.data is not None:
            out["data"] = self.data.hex()
        if self.bootloader_version is not None:
            out["config_write_supported"] = self.config_write_supported
        return out
