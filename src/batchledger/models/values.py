"""Primitive value types shared by every component.

Identities are plain strings. Bytes32 values (external ids, content
hashes, anchors, roots) are carried as lowercase ``0x``-prefixed hex
strings of exactly 64 digits so that equality is plain string equality.
"""

from __future__ import annotations

import re

from batchledger.errors import BadInputError


ZERO_ADDRESS = "0x" + "0" * 40
ZERO_BYTES32 = "0x" + "0" * 64

_HEX_RE = re.compile(r"^[0-9a-f]*$")


def is_zero_identity(identity: str | None) -> bool:
    """True for None, blank strings and the all-zero address."""
    if identity is None:
        return True
    ident = identity.strip()
    return not ident or ident.lower() == ZERO_ADDRESS


def to_bytes32(value: str | bytes | int | None) -> str:
    """Normalise a 256-bit value to canonical hex.

    Accepts hex strings with or without ``0x`` (short values are
    left-padded, as a uint256 would be), raw bytes of up to 32 bytes,
    and non-negative ints. None becomes the zero value.

    Raises:
        BadInputError: If the value is not valid hex or exceeds 256 bits.
    """
    if value is None:
        return ZERO_BYTES32
    if isinstance(value, bytes):
        if len(value) > 32:
            raise BadInputError(f"Bytes32 value too long: {len(value)} bytes")
        return "0x" + value.hex().rjust(64, "0")
    if isinstance(value, int):
        if value < 0 or value.bit_length() > 256:
            raise BadInputError(f"Bytes32 value out of range: {value}")
        return f"0x{value:064x}"

    digits = value.strip().lower().removeprefix("0x").removeprefix("sha256:")
    if not _HEX_RE.match(digits) or len(digits) > 64:
        raise BadInputError(f"Malformed bytes32 value: {value!r}")
    return "0x" + digits.rjust(64, "0")


def is_zero_bytes32(value: str | bytes | int | None) -> bool:
    return to_bytes32(value) == ZERO_BYTES32
