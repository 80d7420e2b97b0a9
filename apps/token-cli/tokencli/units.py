"""Exact conversion between human token amounts and on-chain minimal units.

All arithmetic is done on integers. A ``Decimal`` is only used to parse the
user's text, never to compute the scaled result, so no context precision or
float rounding can leak into the amount that ends up on chain.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from tokencli.errors import AmountOverflowError, InvalidAmountError, InvalidPrecisionError

UINT256_MAX = 2**256 - 1
MAX_PRECISION = 255


def _check_precision(precision: int) -> int:
    if isinstance(precision, bool) or not isinstance(precision, int):
        raise InvalidPrecisionError(f"Token decimals must be an integer, got {precision!r}.")
    if precision < 0 or precision > MAX_PRECISION:
        raise InvalidPrecisionError(f"Token decimals must be 0..{MAX_PRECISION}.", details={"decimals": precision})
    return precision


def _parse_decimal(raw: str | int | Decimal) -> Decimal:
    if isinstance(raw, bool):
        raise InvalidAmountError(f"Invalid amount '{raw}'.")
    if isinstance(raw, int):
        value = Decimal(raw)
    elif isinstance(raw, Decimal):
        value = raw
    else:
        trimmed = str(raw).strip()
        if not trimmed:
            raise InvalidAmountError("Amount must not be empty.")
        if "e" in trimmed.lower():
            raise InvalidAmountError(
                "Scientific notation is not supported for amounts.",
                "Use a plain decimal string such as 1.5.",
                {"amount": trimmed},
            )
        # Decimal() also takes underscores and non-ASCII digits; only plain
        # ASCII decimals are unambiguous amounts.
        if not re.fullmatch(r"[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)", trimmed):
            raise InvalidAmountError(
                f"Invalid amount format '{raw}'.",
                "Use a plain decimal string such as 1.5.",
                {"amount": trimmed},
            )
        try:
            value = Decimal(trimmed)
        except InvalidOperation as exc:
            raise InvalidAmountError(f"Invalid amount format '{raw}'.", details={"amount": trimmed}) from exc
    if not value.is_finite():
        raise InvalidAmountError(f"Amount must be finite, got '{raw}'.")
    if value.is_signed() and value != 0:
        raise InvalidAmountError("Amount must not be negative.", details={"amount": str(raw)})
    return value


def parse_amount(raw: str | int | Decimal) -> Decimal:
    """Validate amount syntax and sign without knowing the token's decimals."""
    return _parse_decimal(raw)


def to_minimal_units(decimal: str | int | Decimal, precision: int) -> int:
    """Convert a human amount to minimal units, truncating toward zero.

    ``to_minimal_units("1.5", 6)`` is ``1500000``; digits beyond ``precision``
    are dropped, so ``to_minimal_units("0.0000001", 6)`` is ``0``.
    """
    precision = _check_precision(precision)
    value = _parse_decimal(decimal)
    _, digits, exponent = value.as_tuple()
    coefficient = int("".join(str(d) for d in digits) or "0")
    shift = int(exponent) + precision
    if coefficient and len(str(coefficient)) + shift > len(str(UINT256_MAX)):
        raise AmountOverflowError(
            "Amount is too large (exceeds uint256).",
            details={"amount": str(decimal), "decimals": precision},
        )
    if shift >= 0:
        units = coefficient * 10**shift
    elif -shift > len(digits):
        # Every digit falls below the smallest unit.
        units = 0
    else:
        units = coefficient // 10 ** (-shift)
    if units > UINT256_MAX:
        raise AmountOverflowError(
            "Amount is too large (exceeds uint256).",
            details={"amount": str(decimal), "decimals": precision},
        )
    return units


def to_decimal(minimal: int, precision: int) -> str:
    """Render minimal units as an exact decimal string without exponent."""
    precision = _check_precision(precision)
    if isinstance(minimal, bool) or not isinstance(minimal, int):
        raise InvalidAmountError(f"Minimal-unit amount must be an integer, got {minimal!r}.")
    if minimal < 0:
        raise InvalidAmountError("Minimal-unit amount must not be negative.")
    if precision == 0 or minimal == 0:
        return str(minimal)
    s = str(minimal)
    if len(s) <= precision:
        s = s.rjust(precision + 1, "0")
    whole = s[:-precision]
    frac = s[-precision:].rstrip("0")
    if not frac:
        return whole
    return f"{whole}.{frac}"


def format_pretty(minimal: int, precision: int, max_frac: int = 6) -> str:
    # Display only; the fractional part is cut, not rounded.
    raw = to_decimal(minimal, precision)
    if "." in raw:
        whole, frac = raw.split(".", 1)
        frac = frac[:max_frac].rstrip("0")
    else:
        whole, frac = raw, ""
    whole = f"{int(whole):,}"
    return f"{whole}.{frac}" if frac else whole


def parse_whole_number(raw: str, label: str = "amount") -> int:
    trimmed = str(raw or "").strip()
    if not re.fullmatch(r"[0-9]+", trimmed):
        raise InvalidAmountError(
            f"The {label} must be a whole non-negative number, got '{raw}'.",
            f"Pass the {label} as a base-10 integer, e.g. 1000000.",
            {label: raw},
        )
    return int(trimmed)
