"""
BambooHold Ciphertext Handle Model

A handle is an opaque reference to an encrypted scalar held by the
coprocessor. Nothing in this module ever sees a plaintext: a handle is an
identifier plus the bit-width it was created with.

Handle equality is identity equality. Two encryptions of the same plaintext
produce two different handles, and a handle's width is fixed at creation.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List


HANDLE_PATTERN = re.compile(r'^0x[0-9a-f]{64}$')
ADDRESS_PATTERN = re.compile(r'^0x[0-9a-f]{40}$')


class EncryptedType(int, Enum):
    """Encrypted scalar types, valued by their bit-width."""
    EBOOL = 1
    EUINT8 = 8
    EUINT16 = 16
    EUINT32 = 32

    @property
    def bits(self) -> int:
        return int(self.value)

    @property
    def max_value(self) -> int:
        return (1 << self.value) - 1

    @property
    def type_name(self) -> str:
        return "ebool" if self is EncryptedType.EBOOL else f"euint{self.value}"

    @classmethod
    def from_name(cls, name: str) -> 'EncryptedType':
        for t in cls:
            if t.type_name == name:
                return t
        raise ValueError(f"Unknown encrypted type: {name}")


def normalize_address(address: str, field_name: str = "address") -> str:
    """
    Validate a principal or contract address and return it lowercased.

    Raises:
        ValueError: if the address is not 0x followed by 40 hex digits
    """
    if not isinstance(address, str):
        raise ValueError(f"{field_name} must be a string")
    value = address.strip().lower()
    if not ADDRESS_PATTERN.match(value):
        raise ValueError(f"Invalid {field_name} '{address}': must be 0x followed by 40 hex digits")
    return value


@dataclass(frozen=True)
class Handle:
    """Opaque reference to an encrypted value of a fixed width."""
    id: str
    type: EncryptedType

    def __post_init__(self):
        if not isinstance(self.id, str) or not HANDLE_PATTERN.match(self.id):
            raise ValueError(f"Invalid handle id '{self.id}': must be 0x followed by 64 lowercase hex digits")
        if not isinstance(self.type, EncryptedType):
            raise ValueError(f"Invalid handle type: {self.type!r}")

    @property
    def width(self) -> int:
        return self.type.bits

    def to_dict(self) -> Dict[str, Any]:
        return {"handle": self.id, "type": self.type.type_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Handle':
        missing = [f for f in ("handle", "type") if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")
        return cls(id=str(data["handle"]).lower(), type=EncryptedType.from_name(data["type"]))

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True)
class ExternalInput:
    """
    Encrypted inputs as produced by the client-side toolkit.

    The proof binds the handles to one contract and one user; the substrate
    must verify it before treating any of the handles as valid.
    """
    handles: List[Handle]
    input_proof: str
    contract_address: str
    user_address: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handles": [h.to_dict() for h in self.handles],
            "input_proof": self.input_proof,
            "contract_address": self.contract_address,
            "user_address": self.user_address,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExternalInput':
        return cls(
            handles=[Handle.from_dict(h) for h in data.get("handles", [])],
            input_proof=data.get("input_proof", ""),
            contract_address=data.get("contract_address", ""),
            user_address=data.get("user_address", ""),
        )
