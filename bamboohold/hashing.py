"""
BambooHold Hashing

All digests are SHA-256. Handle identifiers and addresses are rendered as
0x-prefixed lowercase hex so they can be compared as plain strings.
"""

import hashlib
from typing import Union


def sha256_hex(data: Union[bytes, str]) -> str:
    """SHA-256 of the input as lowercase hex (no prefix)."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def handle_id(*parts: Union[bytes, str]) -> str:
    """
    Derive a 32-byte handle identifier from its inputs.

    The parts are length-prefixed before hashing so that ("ab", "c") and
    ("a", "bc") never collide.

    Returns:
        Identifier in the form "0x" + 64 hex digits
    """
    h = hashlib.sha256()
    for part in parts:
        if isinstance(part, str):
            part = part.encode('utf-8')
        h.update(len(part).to_bytes(4, "big"))
        h.update(part)
    return "0x" + h.hexdigest()


def address_from_public_key(public_key: bytes) -> str:
    """
    Derive a principal address from an Ed25519 verify key.

    The address is the last 20 bytes of SHA-256(public_key), 0x-prefixed.
    """
    return "0x" + sha256_hex(public_key)[-40:]
