"""
Encoding and clock helpers shared by the service and its tools.
"""

import base64
import binascii
import time


def now_epoch() -> int:
    return int(time.time())


def b64e(raw: bytes) -> str:
    return base64.b64encode(raw).decode('ascii')


def b64d(text: str) -> bytes:
    """
    Strict base64 decode.

    Raises:
        ValueError: if `text` is not canonical base64
    """
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64: {e}") from e
