"""Error types shared by the token CLI commands."""

from __future__ import annotations

from typing import Any


class TokenCliError(Exception):
    """Base error carrying a stable machine code for the command layer."""

    code = "token_cli_error"
    exit_code = 1

    def __init__(self, message: str, action_hint: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.action_hint = action_hint
        self.details = details or {}


class InvalidAmountError(TokenCliError):
    """Amount text is not a valid non-negative decimal number."""

    code = "invalid_amount"
    exit_code = 2


class AmountOverflowError(TokenCliError):
    """Converted minimal-unit amount does not fit in uint256."""

    code = "amount_overflow"
    exit_code = 2


class InvalidAddressError(TokenCliError):
    """Address does not decode to exactly 20 bytes."""

    code = "invalid_address"
    exit_code = 2


class AmountTooLargeError(TokenCliError):
    """Amount does not fit in a 32-byte big-endian word."""

    code = "amount_too_large"
    exit_code = 2


class InvalidPrecisionError(TokenCliError):
    code = "invalid_precision"
    exit_code = 2


class InvalidPrivateKeyError(TokenCliError):
    code = "invalid_private_key"
    exit_code = 2


class ConfigError(TokenCliError):
    """Environment configuration is malformed."""

    code = "config_invalid"


class ChainError(TokenCliError):
    """A node interaction through Foundry failed."""

    code = "chain_error"


class SubprocessTimeout(ChainError):
    """A subprocess operation timed out (cast call/send, forge create)."""

    code = "chain_timeout"

    def __init__(self, kind: str, timeout_sec: int, cmd: list[str]):
        super().__init__(f"Timed out after {timeout_sec}s running: {cmd[0]} {cmd[1] if len(cmd) > 1 else ''}".rstrip())
        self.kind = kind
        self.timeout_sec = timeout_sec
        self.cmd = cmd
