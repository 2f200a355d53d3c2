"""
BambooHold Coprocessor Boundary

The coprocessor is the external encryption toolkit: it turns raw values into
handles, proves that a handle was honestly formed, and evaluates the small
closed set of encrypted operations the classifier needs (add, scalar
multiply, cast, compare-with-constant, select).

Architecture:
    Client toolkit    -> encrypt_values / EncryptedInputBuilder
    Substrate         -> verify_input, add, mul, cast, ge, select, trivial_encrypt
    Decryption oracle -> reveal   (KMS only, never the substrate)

MockCoprocessor is the reference implementation used by the CLI, the HTTP
service and the tests. Ciphertexts are sealed under a network key with
XSalsa20-Poly1305 (PyNaCl SecretBox) and input proofs are Ed25519 signatures
of an input-verifier key. Encrypted arithmetic is modular in the operand
width, as in the real toolkit.
"""

import base64
import binascii
import json
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.secret import SecretBox
from nacl.signing import SigningKey, VerifyKey
from nacl.utils import random as random_bytes

from .canonicalization import canonicalize
from .errors import ProofRejected
from .handles import EncryptedType, ExternalInput, Handle, normalize_address
from .hashing import handle_id


PROOF_VERSION = 1


class CiphertextStore(ABC):
    """Storage for sealed ciphertexts, keyed by handle id."""

    @abstractmethod
    def put(self, handle_id: str, enc_type: EncryptedType, ciphertext: bytes) -> None:
        pass

    @abstractmethod
    def get(self, handle_id: str) -> Optional[Tuple[EncryptedType, bytes]]:
        pass


class InMemoryCiphertextStore(CiphertextStore):
    """
    In-memory ciphertext storage for development/testing.

    WARNING: Not persistent across restarts.
    """

    def __init__(self):
        self._items: Dict[str, Tuple[EncryptedType, bytes]] = {}
        self._lock = threading.Lock()

    def put(self, handle_id: str, enc_type: EncryptedType, ciphertext: bytes) -> None:
        with self._lock:
            self._items[handle_id] = (enc_type, ciphertext)

    def get(self, handle_id: str) -> Optional[Tuple[EncryptedType, bytes]]:
        with self._lock:
            return self._items.get(handle_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class Coprocessor(ABC):
    """Interface of the external encryption toolkit."""

    def create_encrypted_input(self, contract_address: str, user_address: str) -> 'EncryptedInputBuilder':
        """Start building a batch of encrypted inputs bound to (contract, user)."""
        return EncryptedInputBuilder(self, contract_address, user_address)

    @abstractmethod
    def encrypt_values(
        self,
        contract_address: str,
        user_address: str,
        values: Sequence[Tuple[int, EncryptedType]]
    ) -> ExternalInput:
        """Encrypt raw values and produce an integrity proof covering all of them."""
        pass

    @abstractmethod
    def verify_input(
        self,
        handles: Sequence[Handle],
        input_proof: str,
        contract_address: str,
        user_address: str
    ) -> List[Handle]:
        """
        Accept externally encrypted handles.

        Raises:
            ProofRejected: if the proof does not cover these handles for
                this (contract, user) pair
        """
        pass

    @abstractmethod
    def trivial_encrypt(self, value: int, enc_type: EncryptedType) -> Handle:
        pass

    @abstractmethod
    def add(self, a: Handle, b: Handle) -> Handle:
        pass

    @abstractmethod
    def mul(self, a: Handle, scalar: int) -> Handle:
        pass

    @abstractmethod
    def cast(self, a: Handle, enc_type: EncryptedType) -> Handle:
        pass

    @abstractmethod
    def ge(self, a: Handle, scalar: int) -> Handle:
        """Encrypted a >= scalar, as an EBOOL handle."""
        pass

    @abstractmethod
    def select(self, condition: Handle, if_true: Handle, if_false: Handle) -> Handle:
        """Encrypted condition ? if_true : if_false."""
        pass

    @abstractmethod
    def type_of(self, handle_id: str) -> Optional[EncryptedType]:
        """Declared width of a stored handle, or None if it is unknown."""
        pass

    @abstractmethod
    def reveal(self, handle: Handle) -> int:
        """Decrypt a handle. Reserved for the decryption oracle."""
        pass


class EncryptedInputBuilder:
    """
    Client-side accumulator for values to encrypt in one proof.

    Usage:
        ext = coprocessor.create_encrypted_input(contract, user) \\
            .add16(45).add16(30).add16(50).encrypt()
    """

    def __init__(self, coprocessor: Coprocessor, contract_address: str, user_address: str):
        self._coprocessor = coprocessor
        self._contract_address = normalize_address(contract_address, "contract_address")
        self._user_address = normalize_address(user_address, "user_address")
        self._values: List[Tuple[int, EncryptedType]] = []

    def add(self, value, enc_type: EncryptedType) -> 'EncryptedInputBuilder':
        if isinstance(value, bool) and enc_type is not EncryptedType.EBOOL:
            raise ValueError(f"{enc_type.type_name} value must be an integer, not bool")
        value = int(value)
        if value < 0 or value > enc_type.max_value:
            raise ValueError(f"Value {value} does not fit in {enc_type.type_name}")
        self._values.append((value, enc_type))
        return self

    def add8(self, value: int) -> 'EncryptedInputBuilder':
        return self.add(value, EncryptedType.EUINT8)

    def add16(self, value: int) -> 'EncryptedInputBuilder':
        return self.add(value, EncryptedType.EUINT16)

    def add32(self, value: int) -> 'EncryptedInputBuilder':
        return self.add(value, EncryptedType.EUINT32)

    def encrypt(self) -> ExternalInput:
        if not self._values:
            raise ValueError("Nothing to encrypt")
        return self._coprocessor.encrypt_values(self._contract_address, self._user_address, self._values)


class MockCoprocessor(Coprocessor):
    """
    Reference coprocessor for local development and tests.

    Plaintexts only exist transiently inside this object while an operation
    is evaluated; what leaves it is a handle. `operations` counts every
    evaluated operation so callers can assert what a computation did.
    """

    def __init__(
        self,
        network_key: Optional[bytes] = None,
        input_signing_key: Optional[bytes] = None,
        input_kid: str = "input-verifier-01",
        store: Optional[CiphertextStore] = None
    ):
        self._box = SecretBox(network_key or random_bytes(SecretBox.KEY_SIZE))
        self._input_sk = SigningKey(input_signing_key) if input_signing_key else SigningKey.generate()
        self._input_kid = input_kid
        self._trusted_input_keys: Dict[str, VerifyKey] = {input_kid: self._input_sk.verify_key}
        self._store = store or InMemoryCiphertextStore()
        self._lock = threading.Lock()
        self.operations: Counter = Counter()

    @property
    def input_verify_key(self) -> bytes:
        return bytes(self._input_sk.verify_key)

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def _seal(self, value: int, enc_type: EncryptedType) -> Handle:
        value = value & enc_type.max_value
        ciphertext = bytes(self._box.encrypt(value.to_bytes(4, "big")))
        handle = Handle(id=handle_id(ciphertext, enc_type.type_name), type=enc_type)
        self._store.put(handle.id, enc_type, ciphertext)
        return handle

    def _open(self, handle: Handle) -> int:
        entry = self._store.get(handle.id)
        if entry is None:
            raise ValueError(f"Unknown handle: {handle.id}")
        stored_type, ciphertext = entry
        if stored_type != handle.type:
            raise TypeError(
                f"Handle {handle.id} is {stored_type.type_name}, not {handle.type.type_name}"
            )
        try:
            return int.from_bytes(self._box.decrypt(ciphertext), "big")
        except CryptoError as e:
            raise ValueError(f"Ciphertext for {handle.id} failed authentication") from e

    def _record(self, op: str) -> None:
        with self._lock:
            self.operations[op] += 1

    # ------------------------------------------------------------------
    # Toolkit side
    # ------------------------------------------------------------------

    def encrypt_values(self, contract_address, user_address, values) -> ExternalInput:
        contract_address = normalize_address(contract_address, "contract_address")
        user_address = normalize_address(user_address, "user_address")
        handles = []
        for value, enc_type in values:
            if value < 0 or value > enc_type.max_value:
                raise ValueError(f"Value {value} does not fit in {enc_type.type_name}")
            handles.append(self._seal(value, enc_type))
        self._record("encrypt")

        payload = {
            "v": PROOF_VERSION,
            "contract_address": contract_address,
            "user_address": user_address,
            "handles": [h.to_dict() for h in handles],
        }
        sig = self._input_sk.sign(canonicalize(payload)).signature
        proof = {
            "kid": self._input_kid,
            "payload": payload,
            "sig_b64": base64.b64encode(sig).decode('ascii'),
        }
        return ExternalInput(
            handles=handles,
            input_proof=base64.b64encode(canonicalize(proof)).decode('ascii'),
            contract_address=contract_address,
            user_address=user_address,
        )

    # ------------------------------------------------------------------
    # Substrate side
    # ------------------------------------------------------------------

    def verify_input(self, handles, input_proof, contract_address, user_address) -> List[Handle]:
        try:
            proof = json.loads(base64.b64decode(input_proof, validate=True))
            kid = proof["kid"]
            payload = proof["payload"]
            sig = base64.b64decode(proof["sig_b64"], validate=True)
        except (binascii.Error, ValueError, KeyError, TypeError) as e:
            raise ProofRejected(f"Malformed input proof: {e}") from e

        verify_key = self._trusted_input_keys.get(kid)
        if verify_key is None:
            raise ProofRejected(f"Unknown input verifier key: {kid}")
        try:
            verify_key.verify(canonicalize(payload), sig)
        except (BadSignatureError, ValueError) as e:
            raise ProofRejected("Input proof signature is invalid") from e

        if payload.get("v") != PROOF_VERSION:
            raise ProofRejected(f"Unsupported proof version: {payload.get('v')}")
        if payload.get("contract_address") != contract_address.lower():
            raise ProofRejected("Input proof is bound to a different contract")
        if payload.get("user_address") != user_address.lower():
            raise ProofRejected("Input proof is bound to a different user")

        covered = {(h.get("handle"), h.get("type")) for h in payload.get("handles", [])}
        for handle in handles:
            if (handle.id, handle.type.type_name) not in covered:
                raise ProofRejected(f"Handle {handle.id} is not covered by the input proof")
            if self._store.get(handle.id) is None:
                raise ProofRejected(f"Handle {handle.id} has no ciphertext")
        self._record("verify_input")
        return list(handles)

    def trivial_encrypt(self, value, enc_type) -> Handle:
        if value < 0 or value > enc_type.max_value:
            raise ValueError(f"Value {value} does not fit in {enc_type.type_name}")
        self._record("trivial_encrypt")
        return self._seal(value, enc_type)

    def add(self, a, b) -> Handle:
        if a.type != b.type:
            raise TypeError(f"add: operand widths differ ({a.type.type_name}, {b.type.type_name})")
        if a.type is EncryptedType.EBOOL:
            raise TypeError("add: ebool operands are not supported")
        self._record("add")
        return self._seal(self._open(a) + self._open(b), a.type)

    def mul(self, a, scalar) -> Handle:
        if a.type is EncryptedType.EBOOL:
            raise TypeError("mul: ebool operands are not supported")
        if scalar < 0 or scalar > a.type.max_value:
            raise ValueError(f"mul: scalar {scalar} does not fit in {a.type.type_name}")
        self._record("mul")
        return self._seal(self._open(a) * scalar, a.type)

    def cast(self, a, enc_type) -> Handle:
        if enc_type is EncryptedType.EBOOL or a.type is EncryptedType.EBOOL:
            raise TypeError("cast: ebool casts are not supported")
        self._record("cast")
        return self._seal(self._open(a), enc_type)

    def ge(self, a, scalar) -> Handle:
        if a.type is EncryptedType.EBOOL:
            raise TypeError("ge: ebool operands are not supported")
        if scalar < 0 or scalar > a.type.max_value:
            raise ValueError(f"ge: scalar {scalar} does not fit in {a.type.type_name}")
        self._record("ge")
        return self._seal(1 if self._open(a) >= scalar else 0, EncryptedType.EBOOL)

    def select(self, condition, if_true, if_false) -> Handle:
        if condition.type is not EncryptedType.EBOOL:
            raise TypeError(f"select: condition must be ebool, got {condition.type.type_name}")
        if if_true.type != if_false.type:
            raise TypeError(
                f"select: branch widths differ ({if_true.type.type_name}, {if_false.type.type_name})"
            )
        self._record("select")
        chosen = if_true if self._open(condition) else if_false
        return self._seal(self._open(chosen), if_true.type)

    def type_of(self, handle_id) -> Optional[EncryptedType]:
        entry = self._store.get(handle_id)
        return entry[0] if entry else None

    def reveal(self, handle) -> int:
        self._record("reveal")
        return self._open(handle)
