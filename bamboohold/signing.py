"""
BambooHold Wallet Signing

The wallet is the principal's key-holding agent. It signs fully formed
payloads and never exposes raw key material to the rest of the system.

Uses Ed25519 (RFC 8032). A principal's address is derived from its verify
key, so anyone holding a signature and the public key can check both the
signature and the identity it claims.
"""

import base64
import binascii
import threading
from abc import ABC, abstractmethod
from typing import Optional, Union

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .hashing import address_from_public_key


class Signer(ABC):
    """Key-holding agent of a principal."""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @property
    @abstractmethod
    def public_key(self) -> bytes:
        pass

    @abstractmethod
    def sign(self, payload: bytes) -> str:
        """Sign payload bytes and return the base64 signature."""
        pass

    @property
    def public_key_b64(self) -> str:
        return base64.b64encode(self.public_key).decode('ascii')


class Wallet(Signer):
    """
    Ed25519 wallet for local use, the CLI and tests.

    `signature_count` counts signatures produced, so callers can assert how
    many prompts a flow would have shown the user.
    """

    def __init__(self, private_key: Optional[bytes] = None):
        self._sk = SigningKey(private_key) if private_key else SigningKey.generate()
        self._address = address_from_public_key(bytes(self._sk.verify_key))
        self._lock = threading.Lock()
        self.signature_count = 0

    @classmethod
    def from_b64(cls, private_key_b64: str) -> 'Wallet':
        return cls(base64.b64decode(private_key_b64))

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return bytes(self._sk.verify_key)

    def export_private_key_b64(self) -> str:
        """Raw seed for key files written by the keygen tools."""
        return base64.b64encode(bytes(self._sk)).decode('ascii')

    def sign(self, payload: bytes) -> str:
        if not isinstance(payload, (bytes, bytearray)):
            raise TypeError("payload must be bytes")
        sig = self._sk.sign(bytes(payload)).signature
        with self._lock:
            self.signature_count += 1
        return base64.b64encode(sig).decode('ascii')

    def __repr__(self) -> str:
        return f"Wallet(address={self._address!r})"


def decode_public_key(public_key: Union[bytes, str]) -> bytes:
    """
    Accept a raw 32-byte key or its base64 form.

    Raises:
        ValueError: if the key is not 32 bytes of Ed25519 public key
    """
    if isinstance(public_key, str):
        try:
            public_key = base64.b64decode(public_key, validate=True)
        except binascii.Error as e:
            raise ValueError("public key is not valid base64") from e
    if len(public_key) != 32:
        raise ValueError(f"public key must be 32 bytes, got {len(public_key)}")
    return bytes(public_key)


def verify_signature(payload: bytes, signature_b64: str, public_key: Union[bytes, str]) -> bool:
    """Verify an Ed25519 signature. Returns False on any malformed input."""
    try:
        key = VerifyKey(decode_public_key(public_key))
        key.verify(payload, base64.b64decode(signature_b64, validate=True))
        return True
    except (BadSignatureError, binascii.Error, ValueError, TypeError):
        return False
