"""
BambooHold Disclosure Protocol

Client side of the batched, time-boxed disclosure handshake:

    INIT -> KEYPAIR_GENERATED -> STATEMENT_BUILT -> SIGNED -> SUBMITTED
         -> RESOLVED | FAILED

One session serves exactly one request. It generates a fresh X25519
keypair, builds one statement covering the whole batch, collects exactly
one signature from the principal's signer and exchanges the statement with
the oracle. The batch resolves all or nothing: a missing or denied handle
fails the whole request.

FAILED is reachable from every non-terminal state. A failed session keeps
nothing: the ephemeral key is dropped and a retry starts a new session.
The protocol itself never retries.
"""

import base64
import logging
import secrets
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, SealedBox

from .errors import (
    BambooHoldError,
    DisclosureDenied,
    DisclosureFailed,
    DisclosureIncomplete,
    FailureReason,
    SessionExpired,
    StatementRejected,
)
from .handles import Handle, normalize_address
from .oracle import DecryptionOracle, DecryptionPair, DecryptionRequest, DecryptionResponse
from .signing import Signer
from .statement import DEFAULT_POLICY, DisclosurePolicy, DisclosureStatement

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    INIT = "INIT"
    KEYPAIR_GENERATED = "KEYPAIR_GENERATED"
    STATEMENT_BUILT = "STATEMENT_BUILT"
    SIGNED = "SIGNED"
    SUBMITTED = "SUBMITTED"
    RESOLVED = "RESOLVED"
    FAILED = "FAILED"


_NEXT_STATE = {
    SessionState.INIT: SessionState.KEYPAIR_GENERATED,
    SessionState.KEYPAIR_GENERATED: SessionState.STATEMENT_BUILT,
    SessionState.STATEMENT_BUILT: SessionState.SIGNED,
    SessionState.SIGNED: SessionState.SUBMITTED,
    SessionState.SUBMITTED: SessionState.RESOLVED,
}


class DisclosureSession:
    """
    State of one disclosure request.

    Steps must be called in protocol order; calling one out of order raises
    RuntimeError without touching the session.
    """

    def __init__(
        self,
        handles: List[Handle],
        contract_address: str,
        policy: DisclosurePolicy = DEFAULT_POLICY,
        clock: Callable[[], float] = time.time
    ):
        if not handles:
            raise ValueError("A disclosure session needs at least one handle")
        self.handles = list(handles)
        self.contract_address = normalize_address(contract_address, "contract_address")
        self.policy = policy
        self.clock = clock
        self.state = SessionState.INIT
        self.statement: Optional[DisclosureStatement] = None
        self.signature: Optional[str] = None
        self.failure: Optional[DisclosureFailed] = None
        self._private_key: Optional[PrivateKey] = None

    def _require(self, expected: SessionState) -> None:
        if self.state is not expected:
            raise RuntimeError(f"Session is in state {self.state.value}, expected {expected.value}")

    def _advance(self, expected: SessionState) -> None:
        self._require(expected)
        self.state = _NEXT_STATE[expected]

    def fail(self, error: DisclosureFailed) -> DisclosureFailed:
        """Move to FAILED, remembering the last state reached, and drop all secrets."""
        if error.state is None:
            error.state = self.state.value
        self.state = SessionState.FAILED
        self.failure = error
        self.discard()
        return error

    def discard(self) -> None:
        self._private_key = None
        self.signature = None

    @property
    def terminal(self) -> bool:
        return self.state in (SessionState.RESOLVED, SessionState.FAILED)

    def generate_keypair(self) -> None:
        self._require(SessionState.INIT)
        self._private_key = PrivateKey.generate()
        self._advance(SessionState.INIT)

    def build_statement(self, signer: Signer) -> DisclosureStatement:
        self._require(SessionState.KEYPAIR_GENERATED)
        statement = DisclosureStatement(
            public_key=base64.b64encode(bytes(self._private_key.public_key)).decode('ascii'),
            contract_addresses=[self.contract_address],
            user_address=signer.address,
            signer_public_key=signer.public_key_b64,
            start_timestamp=int(self.clock()),
            duration_days=self.policy.duration_days,
            nonce=secrets.token_hex(16),
            domain=self.policy.domain(),
        )
        self._advance(SessionState.KEYPAIR_GENERATED)
        self.statement = statement
        return statement

    def sign(self, signer: Signer) -> str:
        self._require(SessionState.STATEMENT_BUILT)
        signature = signer.sign(self.statement.signing_payload())
        self._advance(SessionState.STATEMENT_BUILT)
        self.signature = signature
        return signature

    def request(self) -> DecryptionRequest:
        return DecryptionRequest(
            pairs=[DecryptionPair(handle=h, contract_address=self.contract_address) for h in self.handles],
            statement=self.statement,
            signature=self.signature,
        )

    def submit(self, oracle: DecryptionOracle) -> DecryptionResponse:
        self._require(SessionState.SIGNED)
        if self.statement.is_expired(self.clock()):
            raise SessionExpired(state=self.state.value)
        request = self.request()
        self._advance(SessionState.SIGNED)
        return oracle.user_decrypt(request)

    def resolve(self, response: DecryptionResponse) -> Dict[str, int]:
        """
        Turn the oracle's answer into handle id -> plaintext.

        Raises:
            DisclosureDenied: the oracle refused one or more handles
            DisclosureIncomplete: a requested handle is missing from the answer
            SessionExpired: the statement lapsed while the request was in flight
            DisclosureFailed: a sealed plaintext could not be opened
        """
        self._require(SessionState.SUBMITTED)
        if response.denied:
            raise DisclosureDenied(response.denied, state=self.state.value)
        missing = [h.id for h in self.handles if h.id not in response.plaintexts]
        if missing:
            raise DisclosureIncomplete(missing, state=self.state.value)
        if self.statement.is_expired(self.clock()):
            raise SessionExpired(state=self.state.value)

        box = SealedBox(self._private_key)
        values = {}
        for handle in self.handles:
            try:
                sealed = base64.b64decode(response.plaintexts[handle.id], validate=True)
                values[handle.id] = int.from_bytes(box.decrypt(sealed), "big")
            except (CryptoError, ValueError) as e:
                raise DisclosureFailed(
                    FailureReason.UNSEAL_FAILED,
                    f"could not open plaintext for {handle.id}",
                    self.state.value
                ) from e
        self._advance(SessionState.SUBMITTED)
        self.discard()
        return values


class DisclosureClient:
    """
    Runs disclosure sessions for one principal.

    Usage:
        client = DisclosureClient(oracle, wallet)
        values = client.disclose([score, tier], registry.address)
        values[score.id]  # plaintext int
    """

    def __init__(
        self,
        oracle: DecryptionOracle,
        signer: Signer,
        policy: DisclosurePolicy = DEFAULT_POLICY,
        clock: Callable[[], float] = time.time
    ):
        self.oracle = oracle
        self.signer = signer
        self.policy = policy
        self.clock = clock

    def disclose(self, handles: Iterable[Handle], contract_address: str) -> Dict[str, int]:
        """
        Disclose a batch of handles with a single signature.

        Returns:
            Mapping handle id -> plaintext for every requested handle. An
            empty batch returns {} without asking for a signature.

        Raises:
            DisclosureFailed (or a subclass) when the session fails
        """
        handles = list(handles)
        if not handles:
            return {}
        try:
            contract_address = normalize_address(contract_address, "contract_address")
        except ValueError as e:
            raise DisclosureFailed(FailureReason.INVALID_REQUEST, str(e), SessionState.INIT.value) from e

        session = DisclosureSession(handles, contract_address, self.policy, self.clock)
        try:
            return self._run(session)
        except DisclosureFailed as e:
            raise session.fail(e)
        finally:
            session.discard()

    def _run(self, session: DisclosureSession) -> Dict[str, int]:
        session.generate_keypair()
        session.build_statement(self.signer)

        try:
            session.sign(self.signer)
        except Exception as e:
            logger.warning("signer failed: %s", e)
            raise DisclosureFailed(FailureReason.SIGNER_ERROR, str(e), session.state.value) from e

        try:
            response = session.submit(self.oracle)
        except SessionExpired:
            raise
        except StatementRejected as e:
            raise DisclosureFailed(FailureReason.STATEMENT_REJECTED, str(e), session.state.value) from e
        except OSError as e:
            raise DisclosureFailed(FailureReason.ORACLE_UNREACHABLE, str(e), session.state.value) from e
        except BambooHoldError as e:
            raise DisclosureFailed(FailureReason.STATEMENT_REJECTED, str(e), session.state.value) from e
        except Exception as e:
            logger.warning("oracle failed: %s: %s", type(e).__name__, e)
            raise DisclosureFailed(FailureReason.ORACLE_ERROR, str(e), session.state.value) from e

        values = session.resolve(response)
        logger.info("disclosed %d handle(s) for %s", len(values), self.signer.address)
        return values
