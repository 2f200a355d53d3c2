"""
BambooHold Decryption Oracle

The oracle is the only party able to turn a handle back into a plaintext.
It answers a batch request only when the whole batch is covered by one
valid, signed, unexpired statement and every handle carries a grant for both
the requesting user and the owning contract.

Checks are applied in this order, and the first failure ends the request:
1. Request shape (non-empty batch, every contract listed in the statement)
2. Validity window (not started, or lapsed)
3. Signer key bound to the user address
4. Ed25519 signature over the statement's signing payload
5. Nonce replay
6. Per-handle authorization

Plaintexts never travel in the clear: each one is sealed to the statement's
ephemeral X25519 public key (PyNaCl SealedBox).
"""

import base64
import binascii
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from nacl.public import PublicKey, SealedBox

from .acl import AccessControlList
from .coprocessor import Coprocessor
from .errors import SessionExpired, StatementRejected
from .handles import Handle, normalize_address
from .hashing import address_from_public_key
from .signing import decode_public_key, verify_signature
from .statement import DisclosureStatement

logger = logging.getLogger(__name__)

PLAINTEXT_BYTES = 8


@dataclass(frozen=True)
class DecryptionPair:
    """One handle to disclose and the contract that owns it."""
    handle: Handle
    contract_address: str

    def to_dict(self) -> Dict[str, Any]:
        return {**self.handle.to_dict(), "contract_address": self.contract_address}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DecryptionPair':
        return cls(
            handle=Handle.from_dict(data),
            contract_address=normalize_address(data.get("contract_address", ""), "contract_address")
        )


@dataclass(frozen=True)
class DecryptionRequest:
    pairs: List[DecryptionPair]
    statement: DisclosureStatement
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pairs": [p.to_dict() for p in self.pairs],
            "statement": self.statement.to_dict(),
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DecryptionRequest':
        return cls(
            pairs=[DecryptionPair.from_dict(p) for p in data.get("pairs", [])],
            statement=DisclosureStatement.from_dict(data["statement"]),
            signature=data.get("signature", ""),
        )


@dataclass
class DecryptionResponse:
    """
    Oracle answer.

    `plaintexts` maps handle id -> base64 sealed plaintext. `denied` maps
    handle id -> reason; when it is non-empty `plaintexts` is empty, since a
    batch is answered all or nothing.
    """
    plaintexts: Dict[str, str] = field(default_factory=dict)
    denied: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"plaintexts": dict(self.plaintexts), "denied": dict(self.denied)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DecryptionResponse':
        return cls(
            plaintexts=dict(data.get("plaintexts", {})),
            denied=dict(data.get("denied", {}))
        )


class NonceStore(ABC):
    """Replay protection for statement nonces."""

    @abstractmethod
    def insert(self, nonce: str, expires_at: int, now: Optional[int] = None) -> bool:
        """
        Remember a nonce until `expires_at`.

        Nonces that expired before `now` (default: wall-clock time) are
        forgotten first, so callers with their own clock must pass it.

        Returns:
            True if the nonce was unused, False if it was already seen
        """
        pass

    @abstractmethod
    def cleanup_expired(self, now: Optional[int] = None) -> int:
        pass


class InMemoryNonceStore(NonceStore):
    """
    In-memory nonce store for development/testing.

    WARNING: Not persistent across restarts.
    """

    def __init__(self):
        self._nonces: Dict[str, int] = {}
        self._lock = threading.Lock()

    def insert(self, nonce: str, expires_at: int, now: Optional[int] = None) -> bool:
        now = int(time.time()) if now is None else now
        with self._lock:
            expired = [n for n, exp in self._nonces.items() if exp < now]
            for n in expired:
                del self._nonces[n]
            if nonce in self._nonces:
                return False
            self._nonces[nonce] = expires_at
            return True

    def cleanup_expired(self, now: Optional[int] = None) -> int:
        now = int(time.time()) if now is None else now
        with self._lock:
            expired = [n for n, exp in self._nonces.items() if exp < now]
            for n in expired:
                del self._nonces[n]
            return len(expired)


class DecryptionOracle(ABC):
    """Interface of the external decryption oracle."""

    @abstractmethod
    def user_decrypt(self, request: DecryptionRequest) -> DecryptionResponse:
        """
        Disclose a batch of handles to the statement's ephemeral key.

        Raises:
            StatementRejected: malformed batch, bad signature, replayed nonce
            SessionExpired: the statement's validity window has lapsed
        """
        pass


class KmsDecryptionOracle(DecryptionOracle):
    """
    Reference oracle backed by the coprocessor's network key.

    Usage:
        oracle = KmsDecryptionOracle(coprocessor, registry.acl)
        response = oracle.user_decrypt(request)
    """

    def __init__(
        self,
        coprocessor: Coprocessor,
        acl: AccessControlList,
        nonce_store: Optional[NonceStore] = None,
        clock: Callable[[], float] = time.time,
        max_clock_skew_seconds: int = 300,
        max_duration_days: int = 365
    ):
        self.coprocessor = coprocessor
        self.acl = acl
        self.nonce_store = nonce_store or InMemoryNonceStore()
        self.clock = clock
        self.max_clock_skew_seconds = max_clock_skew_seconds
        self.max_duration_days = max_duration_days

    def user_decrypt(self, request: DecryptionRequest) -> DecryptionResponse:
        statement = request.statement
        now = int(self.clock())

        self._check_shape(request)
        self._check_window(statement, now)
        self._check_signer(statement, request.signature)

        if not self.nonce_store.insert(statement.nonce, statement.expires_at, now):
            logger.warning("statement nonce replayed by %s", statement.user_address)
            raise StatementRejected("Statement nonce has already been used")

        denied = {}
        for pair in request.pairs:
            if not self.acl.is_authorized(pair.handle, statement.user_address):
                denied[pair.handle.id] = "user is not authorized for this handle"
            elif not self.acl.is_authorized(pair.handle, pair.contract_address):
                denied[pair.handle.id] = "contract is not authorized for this handle"
        if denied:
            logger.warning(
                "disclosure denied for %s: %d of %d handle(s)",
                statement.user_address, len(denied), len(request.pairs)
            )
            return DecryptionResponse(denied=denied)

        for pair in request.pairs:
            if self.coprocessor.type_of(pair.handle.id) is not pair.handle.type:
                raise StatementRejected(
                    f"Handle {pair.handle.id} is not a stored {pair.handle.type.type_name}"
                )

        box = SealedBox(PublicKey(base64.b64decode(statement.public_key)))
        plaintexts = {}
        for pair in request.pairs:
            value = self.coprocessor.reveal(pair.handle)
            sealed = box.encrypt(value.to_bytes(PLAINTEXT_BYTES, "big"))
            plaintexts[pair.handle.id] = base64.b64encode(sealed).decode('ascii')
        logger.info("disclosed %d handle(s) to %s", len(plaintexts), statement.user_address)
        return DecryptionResponse(plaintexts=plaintexts)

    def _check_shape(self, request: DecryptionRequest) -> None:
        if not request.pairs:
            raise StatementRejected("Empty decryption batch")
        allowed = set(request.statement.contract_addresses)
        for pair in request.pairs:
            if pair.contract_address not in allowed:
                raise StatementRejected(
                    f"Contract {pair.contract_address} is not covered by the statement"
                )
        try:
            key = base64.b64decode(request.statement.public_key, validate=True)
        except binascii.Error as e:
            raise StatementRejected("Ephemeral public key is not valid base64") from e
        if len(key) != PublicKey.SIZE:
            raise StatementRejected("Ephemeral public key has the wrong size")

    def _check_window(self, statement: DisclosureStatement, now: int) -> None:
        if statement.duration_days <= 0 or statement.duration_days > self.max_duration_days:
            raise StatementRejected(
                f"Statement duration must be between 1 and {self.max_duration_days} days"
            )
        if statement.start_timestamp > now + self.max_clock_skew_seconds:
            raise StatementRejected("Statement validity window starts in the future")
        if now > statement.expires_at:
            raise SessionExpired()

    def _check_signer(self, statement: DisclosureStatement, signature: str) -> None:
        try:
            signer_key = decode_public_key(statement.signer_public_key)
        except ValueError as e:
            raise StatementRejected(f"Invalid signer key: {e}") from e
        if address_from_public_key(signer_key) != statement.user_address:
            raise StatementRejected("Signer key does not match the user address")
        if not verify_signature(statement.signing_payload(), signature, signer_key):
            raise StatementRejected("Statement signature is invalid")
