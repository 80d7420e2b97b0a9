from __future__ import annotations

import re

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from tokencli.errors import InvalidPrivateKeyError
from tokencli.payload import keccak256, to_checksum_address


def normalize_private_key(value: str | None) -> str:
    stripped = (value or "").strip()
    if stripped[:2] in {"0x", "0X"}:
        stripped = stripped[2:]
    if not re.fullmatch(r"[a-fA-F0-9]{64}", stripped):
        raise InvalidPrivateKeyError(
            "Signing key must be 32 bytes of hex (64 characters).",
            "Pass the account private key, not its public address.",
        )
    return stripped.lower()


def derive_address(private_key_hex: str) -> str:
    private_value = int.from_bytes(bytes.fromhex(private_key_hex), byteorder="big")
    try:
        # cryptography validates private key range for secp256k1.
        private_key = ec.derive_private_key(private_value, ec.SECP256K1())
    except ValueError as exc:
        raise InvalidPrivateKeyError("Signing key is outside the secp256k1 range.") from exc
    public_key_bytes = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return to_checksum_address(keccak256(public_key_bytes[1:])[-20:])
