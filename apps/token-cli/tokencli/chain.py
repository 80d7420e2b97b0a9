"""Node access through Foundry's ``cast`` and ``forge`` binaries.

Every method here is a single subprocess round trip. Failures raise
``ChainError`` and are never retried: the command layer reports them and
stops, so a transfer is either submitted once or not at all.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any

from tokencli import config
from tokencli.errors import ChainError, SubprocessTimeout
from tokencli.payload import to_checksum_address

logger = logging.getLogger(__name__)

TOKEN_SOURCE = pathlib.Path(__file__).resolve().parent / "contracts" / "Token.sol"
TOKEN_CONTRACT_NAME = "Token"
# Hardcoded in Token.sol.
TOKEN_DECIMALS = 9

_BIN_ENV = {"cast": "TOKENCLI_CAST_BIN", "forge": "TOKENCLI_FORGE_BIN"}


def find_foundry_bin(tool: str) -> str | None:
    explicit = (os.environ.get(_BIN_ENV.get(tool, "")) or "").strip()
    if explicit:
        path = pathlib.Path(explicit).expanduser()
        return str(path) if path.is_file() and os.access(path, os.X_OK) else None
    # ~/.foundry/bin is where foundryup installs, and is often not on PATH.
    search = [
        (os.environ.get("FOUNDRY_BIN") or "").strip(),
        os.environ.get("PATH", ""),
        str(pathlib.Path.home() / ".foundry" / "bin"),
    ]
    return shutil.which(tool, path=os.pathsep.join(entry for entry in search if entry))


def require_foundry_bin(tool: str) -> str:
    found = find_foundry_bin(tool)
    if not found:
        raise ChainError(
            f"Missing dependency: {tool}.",
            f"Install Foundry and ensure `{tool}` is on PATH or set {_BIN_ENV.get(tool, 'FOUNDRY_BIN')}.",
            {"dependency": tool},
        )
    return found


def _redact(cmd: list[str]) -> list[str]:
    redacted = list(cmd)
    for i, part in enumerate(redacted[:-1]):
        if part == "--private-key":
            redacted[i + 1] = "<redacted>"
    return redacted


def _run_subprocess(cmd: list[str], *, timeout_sec: int, kind: str) -> subprocess.CompletedProcess[str]:
    logger.debug("Running %s: %s", kind, " ".join(_redact(cmd)))
    try:
        return subprocess.run(cmd, text=True, capture_output=True, timeout=timeout_sec)
    except subprocess.TimeoutExpired as exc:
        raise SubprocessTimeout(kind=kind, timeout_sec=timeout_sec, cmd=_redact(cmd)) from exc


def _checked_stdout(proc: subprocess.CompletedProcess[str], what: str) -> str:
    if proc.returncode != 0:
        stderr = (proc.stderr or "").strip()
        stdout = (proc.stdout or "").strip()
        logger.debug("%s exited with %s", what, proc.returncode)
        raise ChainError(stderr or stdout or f"{what} failed.", details={"operation": what})
    return (proc.stdout or "").strip()


# cast appends a scientific-notation hint to large values: "20000000000000000000000 [2e22]".
_UINT_OUTPUT = re.compile(r"(0x[0-9a-fA-F]+|[0-9]+)(?:\s+\[[^\]]*\])?")


def parse_uint_text(value: str) -> int:
    match = _UINT_OUTPUT.fullmatch(value.strip())
    if not match:
        raise ChainError(f"Unable to parse uint value: '{value}'.")
    token = match.group(1)
    return int(token, 16) if token.startswith("0x") else int(token)


def _last_line(output: str) -> str:
    lines = output.strip().splitlines()
    return lines[-1] if lines else ""


def _parse_string_output(output: str) -> str:
    # cast may return quoted strings, or raw tokens depending on version.
    trimmed = output.strip()
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] == '"':
        try:
            return str(json.loads(trimmed))
        except json.JSONDecodeError:
            return trimmed[1:-1]
    return trimmed


def _last_json_object(output: str) -> dict[str, Any] | None:
    trimmed = (output or "").strip()
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        parsed = None
        # forge prints compiler progress ahead of its JSON summary.
        for line in reversed(trimmed.splitlines()):
            line = line.strip()
            if line.startswith("{"):
                try:
                    parsed = json.loads(line)
                except json.JSONDecodeError:
                    continue
                break
    return parsed if isinstance(parsed, dict) else None


def extract_tx_hash(output: str) -> str:
    trimmed = (output or "").strip()
    if not trimmed:
        raise ChainError("Transaction submission returned empty output.")
    parsed = _last_json_object(trimmed)
    if parsed is not None:
        for key in ("transactionHash", "txHash", "hash"):
            value = parsed.get(key)
            if isinstance(value, str) and re.fullmatch(r"0x[a-fA-F0-9]{64}", value):
                return value

    match = re.search(r"0x[a-fA-F0-9]{64}", trimmed)
    if match:
        return match.group(0)
    raise ChainError("Transaction submission output did not include a transaction hash.")


@dataclass(frozen=True)
class TransactionPlan:
    """An unsigned legacy transaction, fully specified before signing."""

    sender: str
    to: str
    data: bytes
    nonce: int
    gas_price: int
    gas_limit: int
    chain_id: int
    value: int = 0

    @property
    def data_hex(self) -> str:
        return "0x" + self.data.hex()


@dataclass(frozen=True)
class Deployment:
    address: str
    tx_hash: str
    deployer: str | None = None


class Node:
    """A remote chain node reached through ``cast --rpc-url``."""

    def __init__(self, rpc_url: str):
        self.rpc_url = rpc_url

    def __repr__(self) -> str:
        return f"<Node {self.rpc_url}>"

    def cast(self, action: str, *args: str, kind: str = "cast_call") -> str:
        cast_bin = require_foundry_bin("cast")
        timeout = config.cast_send_timeout_sec() if kind == "cast_send" else config.cast_call_timeout_sec()
        cmd = [cast_bin, action, "--rpc-url", self.rpc_url, *args]
        proc = _run_subprocess(cmd, timeout_sec=timeout, kind=kind)
        return _checked_stdout(proc, f"cast {action}")

    def pending_nonce(self, address: str) -> int:
        return parse_uint_text(_last_line(self.cast("nonce", address, "--block", "pending")))

    def gas_price(self) -> int:
        return parse_uint_text(_last_line(self.cast("gas-price")))

    def chain_id(self) -> int:
        return parse_uint_text(_last_line(self.cast("chain-id")))

    def estimate_gas(self, sender: str, to: str, data: bytes) -> int:
        return parse_uint_text(_last_line(self.cast("estimate", "--from", sender, to, "0x" + data.hex())))

    def plan_call(self, sender: str, to: str, data: bytes) -> TransactionPlan:
        """Collect nonce, gas price, gas limit and chain id for a contract call."""
        nonce = self.pending_nonce(sender)
        gas_price = self.gas_price()
        gas_limit = self.estimate_gas(sender, to, data)
        chain_id = self.chain_id()
        plan = TransactionPlan(
            sender=sender,
            to=to,
            data=data,
            nonce=nonce,
            gas_price=gas_price,
            gas_limit=gas_limit,
            chain_id=chain_id,
        )
        logger.info(
            "Planned call to %s: nonce=%s gasPrice=%s gasLimit=%s chainId=%s",
            to,
            nonce,
            gas_price,
            gas_limit,
            chain_id,
        )
        return plan

    def send_raw_call(self, plan: TransactionPlan, private_key_hex: str) -> dict[str, Any]:
        output = self.cast(
            "send",
            "--json",
            "--legacy",
            "--private-key",
            private_key_hex,
            "--nonce",
            str(plan.nonce),
            "--gas-price",
            str(plan.gas_price),
            "--gas-limit",
            str(plan.gas_limit),
            "--chain",
            str(plan.chain_id),
            "--value",
            str(plan.value),
            plan.to,
            plan.data_hex,
            kind="cast_send",
        )
        tx_hash = extract_tx_hash(output)
        receipt = _last_json_object(output) or {}
        if receipt.get("status") is None:
            raise ChainError(
                "Transaction receipt has no status; the transfer outcome cannot be confirmed.",
                "Look the transaction hash up on the node before retrying.",
                {"txHash": tx_hash},
            )
        status = str(receipt["status"]).lower()
        if status not in {"0x1", "1"}:
            raise ChainError(
                f"On-chain receipt indicates failure status '{status}'.",
                "Check the sender's token balance and the token address.",
                {"txHash": tx_hash},
            )
        receipt.setdefault("transactionHash", tx_hash)
        return receipt

    def deploy_token(self, name: str, symbol: str, supply: int, private_key_hex: str) -> Deployment:
        forge_bin = require_foundry_bin("forge")
        cmd = [
            forge_bin,
            "create",
            f"{TOKEN_SOURCE}:{TOKEN_CONTRACT_NAME}",
            "--rpc-url",
            self.rpc_url,
            "--private-key",
            private_key_hex,
            "--broadcast",
            "--json",
            "--constructor-args",
            name,
            symbol,
            str(supply),
        ]
        proc = _run_subprocess(cmd, timeout_sec=config.cast_send_timeout_sec(), kind="forge_create")
        output = _checked_stdout(proc, "forge create")
        parsed = _last_json_object(output)
        if parsed is None or not isinstance(parsed.get("deployedTo"), str):
            raise ChainError("forge create output did not include the deployed address.")
        deployer = parsed.get("deployer")
        return Deployment(
            address=to_checksum_address(parsed["deployedTo"]),
            tx_hash=extract_tx_hash(output),
            deployer=deployer if isinstance(deployer, str) else None,
        )


class TokenContract:
    """Read-only view of an ERC20 contract."""

    def __init__(self, address: str, node: Node):
        self.address = address
        self.node = node

    def __repr__(self) -> str:
        return f"<TokenContract {self.address} via {self.node.rpc_url}>"

    def _call(self, signature: str, *args: str) -> str:
        return self.node.cast("call", self.address, signature, *args)

    def name(self) -> str:
        return _parse_string_output(self._call("name()(string)"))

    def symbol(self) -> str:
        return _parse_string_output(self._call("symbol()(string)"))

    def decimals(self) -> int:
        return parse_uint_text(_last_line(self._call("decimals()(uint8)")))

    def total_supply(self) -> int:
        return parse_uint_text(_last_line(self._call("totalSupply()(uint256)")))

    def balance_of(self, owner: str) -> int:
        return parse_uint_text(_last_line(self._call("balanceOf(address)(uint256)", owner)))
