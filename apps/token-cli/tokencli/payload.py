"""Hand-assembled calldata for ERC20 ``transfer(address,uint256)``.

The EVM calling convention packs every argument into a 32-byte word, so the
transfer payload is always::

    selector (4) | 12 zero bytes + address (32) | big-endian amount (32)
"""

from __future__ import annotations

import re

from Crypto.Hash import keccak

from tokencli.errors import AmountTooLargeError, InvalidAddressError

WORD_SIZE = 32
ADDRESS_SIZE = 20
SELECTOR_SIZE = 4
TRANSFER_SIGNATURE = "transfer(address,uint256)"


def keccak256(data: bytes) -> bytes:
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def method_selector(signature: str) -> bytes:
    """First four bytes of keccak-256 over the canonical method signature."""
    return keccak256(signature.encode("ascii"))[:SELECTOR_SIZE]


TRANSFER_SELECTOR = method_selector(TRANSFER_SIGNATURE)


def _strip_hex_prefix(value: str) -> str:
    trimmed = value.strip()
    if trimmed[:2] in {"0x", "0X"}:
        return trimmed[2:]
    return trimmed


def _checksum_hex(hex_lower: str) -> str:
    address_hash = keccak256(hex_lower.encode("ascii")).hex()
    return "".join(ch.upper() if int(address_hash[i], 16) >= 8 else ch for i, ch in enumerate(hex_lower))


def decode_address(value: str) -> bytes:
    """Decode a hex address into its 20 raw bytes.

    Mixed-case input is treated as EIP-55 checksummed and must verify.
    """
    if not isinstance(value, str):
        raise InvalidAddressError(f"Address must be a hex string, got {type(value).__name__}.")
    hex_part = _strip_hex_prefix(value)
    if not re.fullmatch(r"[0-9a-fA-F]*", hex_part) or len(hex_part) % 2:
        raise InvalidAddressError(
            f"Address '{value}' is not valid hex.",
            "Use a 0x-prefixed 20-byte hex address.",
            {"address": value},
        )
    raw = bytes.fromhex(hex_part)
    if len(raw) != ADDRESS_SIZE:
        raise InvalidAddressError(
            f"Address must be {ADDRESS_SIZE} bytes, got {len(raw)}.",
            "Use a 0x-prefixed 20-byte hex address.",
            {"address": value},
        )
    if hex_part != hex_part.lower() and hex_part != hex_part.upper():
        if _checksum_hex(hex_part.lower()) != hex_part:
            raise InvalidAddressError(
                f"Address '{value}' fails its EIP-55 checksum.",
                "Check the address for typos or pass it in all lower case.",
                {"address": value},
            )
    return raw


def to_checksum_address(value: str | bytes) -> str:
    raw = value if isinstance(value, bytes) else decode_address(value)
    if len(raw) != ADDRESS_SIZE:
        raise InvalidAddressError(f"Address must be {ADDRESS_SIZE} bytes, got {len(raw)}.")
    return "0x" + _checksum_hex(raw.hex())


def is_address(value: str) -> bool:
    try:
        decode_address(value)
    except InvalidAddressError:
        return False
    return True


def encode_uint256(amount: int) -> bytes:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise AmountTooLargeError(f"Amount must be an integer, got {amount!r}.")
    if amount < 0:
        raise AmountTooLargeError("Amount must not be negative.", details={"amount": str(amount)})
    length = (amount.bit_length() + 7) // 8
    if length > WORD_SIZE:
        raise AmountTooLargeError(
            f"Amount needs {length} bytes, more than the {WORD_SIZE}-byte word.",
            details={"amount": str(amount)},
        )
    return amount.to_bytes(WORD_SIZE, byteorder="big")


def build_transfer_payload(selector: bytes, destination: str | bytes, amount: int) -> bytes:
    if len(selector) != SELECTOR_SIZE:
        raise ValueError(f"Method selector must be {SELECTOR_SIZE} bytes, got {len(selector)}.")
    address = decode_address(destination) if isinstance(destination, str) else bytes(destination)
    if len(address) != ADDRESS_SIZE:
        raise InvalidAddressError(
            f"Destination must be {ADDRESS_SIZE} bytes, got {len(address)}.",
            details={"destination": address.hex()},
        )
    padded_address = address.rjust(WORD_SIZE, b"\x00")
    return bytes(selector) + padded_address + encode_uint256(amount)


def build_transfer_call(destination: str | bytes, amount: int) -> bytes:
    return build_transfer_payload(TRANSFER_SELECTOR, destination, amount)
