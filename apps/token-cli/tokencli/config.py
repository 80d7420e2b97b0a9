"""Environment-driven settings. Values are read on each call."""

from __future__ import annotations

import logging
import os
import re

from tokencli.errors import ConfigError

DEFAULT_ETHCLIENT = "http://127.0.0.1:8545"
DEFAULT_CAST_CALL_TIMEOUT_SEC = 30
DEFAULT_CAST_SEND_TIMEOUT_SEC = 90


def _env_timeout_sec(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    if not re.fullmatch(r"[0-9]+", raw):
        raise ConfigError(f"{name} must be an integer number of seconds.", details={"variable": name})
    value = int(raw)
    if value < 1:
        raise ConfigError(f"{name} must be >= 1.", details={"variable": name})
    return value


def cast_call_timeout_sec() -> int:
    return _env_timeout_sec("TOKENCLI_CAST_CALL_TIMEOUT_SEC", DEFAULT_CAST_CALL_TIMEOUT_SEC)


def cast_send_timeout_sec() -> int:
    return _env_timeout_sec("TOKENCLI_CAST_SEND_TIMEOUT_SEC", DEFAULT_CAST_SEND_TIMEOUT_SEC)


def default_ethclient() -> str:
    return (os.environ.get("TOKENCLI_ETHCLIENT") or "").strip() or DEFAULT_ETHCLIENT


def env_private_key() -> str | None:
    return (os.environ.get("TOKENCLI_PRIVATE_KEY") or "").strip() or None


def log_level(verbose: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    raw = (os.environ.get("TOKENCLI_LOG_LEVEL") or "").strip().upper()
    if not raw:
        return logging.WARNING
    level = logging.getLevelName(raw)
    if not isinstance(level, int):
        raise ConfigError(f"TOKENCLI_LOG_LEVEL '{raw}' is not a logging level.", details={"variable": "TOKENCLI_LOG_LEVEL"})
    return level
