"""
Safety context and write gating for flash operations.

Centralizes all confirmation rules so every destructive operation (erase,
write, data flash write, config write) is gated the same way.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Callable

# Confirmation token required for non-interactive writes
CONFIRMATION_TOKEN = "WRITE"


class WritePermissionError(Exception):
    """
    Raised when a write operation is not permitted.

    Attributes:
        reason: Human-readable explanation of why write was denied
        details: Additional context (operation, region, etc.)
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    Safety context for write operations.

    Attributes:
        write_enabled: Whether the --write flag was provided
        confirmation_token: For non-interactive mode, must match CONFIRMATION_TOKEN
        interactive: Whether the UI can prompt for confirmation
        simulate: Whether this is a dry run (nothing is sent to the device)
        risk_acknowledged: Explicit opt-in for operations that can brick the chip
        warnings: List of warning messages accumulated during operation
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    simulate: bool = False
    risk_acknowledged: bool = False
    warnings: List[str] = field(default_factory=list)

    # Callbacks for interactive prompts, set by the CLI
    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None

    def add_warning(self, message: str) -> None:
        """Add a warning to the context."""
        self.warnings.append(message)

    def to_details_dict(
        self,
        operation: str,
        target_region: str = "",
        bytes_length: int = 0,
    ) -> dict:
        """Create a details dictionary for display."""
        details = {
            "operation": operation,
            "target_region": target_region,
            "bytes_length": bytes_length,
        }
        if self.warnings:
            details["warnings"] = self.warnings
        return details


def require_write_permission(
    ctx: SafetyContext,
    operation: str,
    target_region: str = "",
    bytes_length: int = 0,
    risky: bool = False,
) -> None:
    """
    Enforce write permission rules.

    Rules enforced:
    1. If simulate mode: always allowed (no actual write)
    2. If write not enabled: raise with instructions
    3. If the operation is risky: require explicit risk acknowledgement
    4. If confirmation token present: must match exactly
    5. If interactive: prompt user for confirmation

    Args:
        ctx: Safety context with all required information
        operation: Name of the operation being gated
        target_region: Description of target flash region
        bytes_length: Number of bytes to write
        risky: True for operations that may leave the chip unrecoverable

    Raises:
        WritePermissionError: If write is not permitted
    """
    details = ctx.to_details_dict(operation, target_region, bytes_length)

    # Rule 1: Simulation mode is always allowed
    if ctx.simulate:
        return

    # Rule 2: Write must be explicitly enabled
    if not ctx.write_enabled:
        raise WritePermissionError(
            "Write operation requires explicit permission. "
            "CLI: use --write flag.",
            details=details,
        )

    # Rule 3: Risky operations need a second, separate opt-in
    if risky and not ctx.risk_acknowledged:
        raise WritePermissionError(
            f"{operation} may leave the chip unable to enter the bootloader. "
            "Acknowledge the risk explicitly to proceed.",
            details=details,
        )

    # Rule 4: Token-based confirmation for non-interactive
    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return

    # Rule 5: Interactive confirmation required
    if ctx.interactive:
        if ctx.show_details:
            ctx.show_details(details)

        if ctx.prompt_confirmation:
            user_input = ctx.prompt_confirmation(
                f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
            )
            if user_input.strip().upper() != CONFIRMATION_TOKEN:
                raise WritePermissionError(
                    "Confirmation failed. Write aborted by user.",
                    details=details,
                )
        else:
            # No prompt callback set - we cannot confirm interactively
            raise WritePermissionError(
                "Interactive confirmation required but no prompt handler set. "
                "Provide confirmation_token for non-interactive mode.",
                details=details,
            )
    else:
        raise WritePermissionError(
            "Non-interactive mode requires confirmation_token.",
            details=details,
        )
