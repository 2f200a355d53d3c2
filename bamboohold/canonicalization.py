"""
BambooHold Canonical Encoding

Everything that gets signed or hashed (disclosure statements, input proofs,
signed request envelopes) is first reduced to one byte string so that two
parties holding the same logical object always sign the same bytes.
"""

import json
from typing import Any, Dict, List, Union


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to its canonical JSON byte encoding.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order)
    - Compact form, no whitespace between tokens
    - UTF-8 without BOM
    - Arrays and tuples keep their order
    - bytes are rendered as 0x-prefixed lowercase hex
    - Floats are refused; every signed quantity in BambooHold is an integer

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    canonical = _canonicalize_value(obj)
    return json.dumps(canonical, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def _canonicalize_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    elif isinstance(value, float):
        raise ValueError("Cannot canonicalize float; use integers or strings")
    elif isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    elif isinstance(value, dict):
        return _canonicalize_object(value)
    elif isinstance(value, (list, tuple)):
        return _canonicalize_array(value)
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _canonicalize_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    for key in obj:
        if not isinstance(key, str):
            raise ValueError(f"Object keys must be strings, got {type(key)}")
    return {k: _canonicalize_value(obj[k]) for k in sorted(obj.keys())}


def _canonicalize_array(arr: Union[List, tuple]) -> List:
    return [_canonicalize_value(item) for item in arr]
