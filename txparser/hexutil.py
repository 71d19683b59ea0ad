"""Hexadecimal quantity helpers for JSON-RPC payloads.

Ethereum-style nodes encode integers as ``0x``-prefixed hex strings. Block
payloads come from an untrusted remote node, so the helpers used on the
scanning path (:func:`parse_int` and :func:`to_decimal_string`) never raise:
malformed input collapses to zero. :func:`decode_leading_byte` is the strict
variant for callers that need to tell a bad field apart from a zero one.
"""

from __future__ import annotations

import binascii
from typing import Any

# Values wider than 256 bits keep only their least-significant 64 hex digits.
MAX_HEX_DIGITS = 64

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


class HexDecodeError(ValueError):
    """Raised when a hex field cannot be decoded."""


def _strip_prefix(value: str) -> str:
    if value[:2] in ("0x", "0X"):
        return value[2:]
    return value


def _is_hex(digits: str) -> bool:
    return bool(digits) and all(ch in _HEX_DIGITS for ch in digits)


def parse_int(value: Any) -> int:
    """Parse a hex quantity such as ``"0x1b4"``; returns ``0`` when malformed."""

    if not isinstance(value, str):
        return 0
    digits = _strip_prefix(value)
    if not _is_hex(digits):
        return 0
    return int(digits, 16)


def decode_leading_byte(value: str) -> int:
    """Decode ``value`` as bytes and return the first one.

    Odd-length input is left-padded with a zero nibble.

    Raises:
        HexDecodeError: if ``value`` is empty or not valid hex.
    """

    digits = _strip_prefix(value)
    if not digits:
        raise HexDecodeError("empty hex string")
    if len(digits) % 2 == 1:
        digits = "0" + digits
    try:
        decoded = binascii.unhexlify(digits)
    except (binascii.Error, ValueError) as exc:
        raise HexDecodeError(f"invalid hex string: {value!r}") from exc
    if not decoded:
        return 0
    return decoded[0]


def to_decimal_string(value: Any) -> str:
    """Render a hex quantity as a base-10 string, capped to 256 bits."""

    if not isinstance(value, str):
        return "0"
    digits = _strip_prefix(value)
    if not digits:
        return "0"
    if len(digits) > MAX_HEX_DIGITS:
        digits = digits[-MAX_HEX_DIGITS:]
    if not _is_hex(digits):
        return "0"
    return str(int(digits, 16))


def encode_block_number(number: int) -> str:
    """Encode a block number as a minimal ``0x``-prefixed lowercase quantity."""

    if number < 0:
        raise ValueError(f"block number must be non-negative: {number}")
    return hex(number)
