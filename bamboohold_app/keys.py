"""
Key management module for the BambooHold service.

Loads the reference coprocessor's key material (network key and
input-verifier key) and verifies the signed envelopes that carry every
mutating request.

Envelope format:
    {
        "principal": "0x...",            # address derived from public_key_b64
        "public_key_b64": "...",         # Ed25519 verify key
        "issued_at": 1700000000,
        "nonce": "hex",
        "body": {...},
        "sig_b64": "..."                 # over canonical envelope minus sig_b64
    }
"""

import json
import os
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from nacl.secret import SecretBox
from nacl.signing import SigningKey

from bamboohold import NonceStore, Signer, address_from_public_key, canonicalize, verify_signature
from bamboohold.signing import decode_public_key

from .util import b64d, b64e


@dataclass(frozen=True)
class KeyMaterial:
    """Secrets of the reference coprocessor."""
    network_key: bytes
    input_signing_key: bytes
    input_kid: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KeyMaterial':
        return cls(
            network_key=b64d(data["network_key_b64"]),
            input_signing_key=b64d(data["input_signing_key_b64"]),
            input_kid=data.get("input_kid", "input-verifier-01"),
        )


def generate_key_material(input_kid: str = "input-verifier-01") -> Dict[str, Any]:
    """Fresh key material in its JSON file form."""
    input_key = SigningKey.generate()
    return {
        "network_key_b64": b64e(secrets.token_bytes(SecretBox.KEY_SIZE)),
        "input_kid": input_kid,
        "input_signing_key_b64": b64e(bytes(input_key)),
        "input_verify_key_b64": b64e(bytes(input_key.verify_key)),
    }


def write_key_material(path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Write key material to `path`, generating it if not given."""
    data = data or generate_key_material()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return data


class EnvelopeError(Exception):
    """A signed envelope failed verification; `code` is the HTTP detail."""

    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(message)


def envelope_payload(envelope: Dict[str, Any]) -> bytes:
    body = {k: v for k, v in envelope.items() if k != "sig_b64"}
    return canonicalize(body)


def sign_envelope(
    signer: Signer,
    body: Dict[str, Any],
    issued_at: Optional[int] = None,
    nonce: Optional[str] = None
) -> Dict[str, Any]:
    """Build a signed envelope for `body` (client side: tools and tests)."""
    envelope = {
        "principal": signer.address,
        "public_key_b64": signer.public_key_b64,
        "issued_at": int(time.time()) if issued_at is None else issued_at,
        "nonce": nonce or secrets.token_hex(16),
        "body": body,
    }
    envelope["sig_b64"] = signer.sign(envelope_payload(envelope))
    return envelope


def verify_envelope(
    envelope: Dict[str, Any],
    nonce_store: NonceStore,
    now: int,
    freshness: int,
    max_skew: int
) -> str:
    """
    Verify a signed envelope and consume its nonce.

    Returns:
        The authenticated principal address

    Raises:
        EnvelopeError: with one of INVALID_PUBLIC_KEY, PRINCIPAL_KEY_MISMATCH,
            MISSING_ISSUED_AT, STALE_REQUEST, INVALID_SIGNATURE, REPLAY
    """
    try:
        public_key = decode_public_key(envelope.get("public_key_b64", ""))
    except ValueError as e:
        raise EnvelopeError("INVALID_PUBLIC_KEY", str(e)) from e

    principal = str(envelope.get("principal", "")).lower()
    if address_from_public_key(public_key) != principal:
        raise EnvelopeError("PRINCIPAL_KEY_MISMATCH", "principal does not match public key")

    issued_at = int(envelope.get("issued_at", 0))
    if issued_at <= 0:
        raise EnvelopeError("MISSING_ISSUED_AT", "issued_at is required")
    if (now - issued_at) > (freshness + max_skew) or (issued_at - now) > max_skew:
        raise EnvelopeError("STALE_REQUEST", "issued_at is outside the freshness window")

    if not verify_signature(envelope_payload(envelope), envelope.get("sig_b64", ""), public_key):
        raise EnvelopeError("INVALID_SIGNATURE", "envelope signature is invalid")

    if not nonce_store.insert(f"env:{envelope.get('nonce', '')}", issued_at + freshness + max_skew, now):
        raise EnvelopeError("REPLAY", "envelope nonce has already been used")

    return principal
