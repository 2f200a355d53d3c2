"""
BambooHold Risk Registry

The substrate contract: the ingress and egress surface of the system.

    submit(caller, emotional, social, sleep, input_proof) -> record index

A submission is accepted only after the coprocessor has verified the input
proof for (registry, caller). The classifier then runs on the handles, and
the five handles plus a public timestamp are appended to the caller's
history in one transaction that also issues every grant.

All getters return handles or public numbers. Plaintexts are only ever
obtained through the decryption oracle.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .acl import AccessControlList
from .classifier import DEFAULT_MODEL, RiskModel, classify
from .coprocessor import Coprocessor
from .errors import Unauthorized
from .handles import Handle, normalize_address
from .records import ClassificationRecord, RecordLedger, Summary
from .store import InMemoryLedgerStore, LedgerStore

logger = logging.getLogger(__name__)

RECORD_SUBMITTED = "RecordSubmitted"
CLASSIFICATION_UPDATED = "ClassificationUpdated"


@dataclass(frozen=True)
class RegistryEvent:
    """Observable event emitted by a successful submission."""
    name: str
    principal: str
    timestamp: int
    index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"event": self.name, "principal": self.principal, "timestamp": self.timestamp}
        if self.index is not None:
            data["index"] = self.index
        return data


class RiskRegistry:
    """
    Confidential risk classification contract.

    Usage:
        registry = RiskRegistry(contract_address, coprocessor)
        ext = coprocessor.create_encrypted_input(registry.address, wallet.address) \\
            .add16(45).add16(30).add16(50).encrypt()
        index = registry.submit(wallet.address, *ext.handles, ext.input_proof)
    """

    def __init__(
        self,
        address: str,
        coprocessor: Coprocessor,
        store: Optional[LedgerStore] = None,
        model: RiskModel = DEFAULT_MODEL,
        clock: Callable[[], float] = time.time
    ):
        self.address = normalize_address(address, "contract_address")
        self.coprocessor = coprocessor
        self.store = store if store is not None else InMemoryLedgerStore()
        self.acl = AccessControlList(self.store)
        self.ledger = RecordLedger(self.store, self.acl, self.address)
        self.model = model
        self.clock = clock
        self._events: List[RegistryEvent] = []
        self._listeners: List[Callable[[RegistryEvent], None]] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[RegistryEvent], None]) -> None:
        self._listeners.append(listener)

    @property
    def events(self) -> List[RegistryEvent]:
        with self._lock:
            return list(self._events)

    def _emit(self, event: RegistryEvent) -> None:
        with self._lock:
            self._events.append(event)
        for listener in self._listeners:
            listener(event)

    # ------------------------------------------------------------------
    # Ingress
    # ------------------------------------------------------------------

    def submit(
        self,
        caller: str,
        emotional: Handle,
        social: Handle,
        sleep: Handle,
        input_proof: str
    ) -> int:
        """
        Classify three encrypted signals and store the result.

        Returns:
            Index of the new record in the caller's history

        Raises:
            ProofRejected: if the input proof does not verify
        """
        caller = normalize_address(caller, "caller")
        emotional, social, sleep = self.coprocessor.verify_input(
            [emotional, social, sleep], input_proof, self.address, caller
        )
        result = classify(self.coprocessor, emotional, social, sleep, self.model)
        timestamp = int(self.clock())

        with self.store.transaction():
            for handle in (emotional, social, sleep, result.score, result.tier):
                self.acl.allow_creator(handle, self.address)
            index = self.ledger.append(
                caller, emotional, social, sleep, result.score, result.tier, timestamp
            )

        logger.info("submission %d accepted for %s", index, caller)
        self._emit(RegistryEvent(RECORD_SUBMITTED, caller, timestamp, index))
        self._emit(RegistryEvent(CLASSIFICATION_UPDATED, caller, timestamp))
        return index

    # ------------------------------------------------------------------
    # Egress
    # ------------------------------------------------------------------

    def get_risk_score(self, principal: str) -> Handle:
        return self.ledger.latest(principal).score

    def get_tier(self, principal: str) -> Handle:
        return self.ledger.latest(principal).tier

    def get_latest(self, principal: str) -> ClassificationRecord:
        return self.ledger.latest(principal)

    def get_at(self, principal: str, index: int) -> ClassificationRecord:
        return self.ledger.get(principal, index)

    def get_count(self, principal: str) -> int:
        return self.ledger.count(principal)

    def get_history(self, principal: str) -> List[ClassificationRecord]:
        return self.ledger.history(principal)

    def get_summary(self, principal: str) -> Summary:
        return self.ledger.summary(principal)

    def submission_count(self, principal: str) -> int:
        return self.ledger.submission_count(principal)

    # ------------------------------------------------------------------
    # Re-authorization
    # ------------------------------------------------------------------

    def reauthorize(self, caller: str, index: int, owner: Optional[str] = None) -> int:
        """
        Re-issue grants on one record of `owner` (default: the caller).

        A caller acting on someone else's record must already hold a grant on
        every handle of that record.

        Raises:
            IndexOutOfBounds: if the record does not exist
            Unauthorized: if the caller holds no rights on the record
        """
        caller = normalize_address(caller, "caller")
        owner = normalize_address(owner, "owner") if owner else caller
        record = self.ledger.get(owner, index)
        if owner != caller:
            self._require_rights(caller, record)
        return self.ledger.reauthorize(owner, index)

    def reauthorize_all(self, caller: str) -> int:
        """Re-issue grants on every record of the caller."""
        return self.ledger.reauthorize_all(normalize_address(caller, "caller"))

    def _require_rights(self, caller: str, record: ClassificationRecord) -> None:
        for handle in record.handles():
            if not self.acl.is_authorized(handle, caller):
                logger.warning("reauthorization rejected: %s holds no rights on %s", caller, handle.id)
                raise Unauthorized(
                    f"{caller} is not allowed to reauthorize this record",
                    handle=handle.id,
                    principal=caller
                )
