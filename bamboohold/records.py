"""
BambooHold Record Ledger

Append-only per-principal history of classification records, with a
"latest" projection and a submission counter.

Invariants:
- History order is the commit order of the principal's appends
- latest(principal) is always the last element of the history
- submission_count(principal) == count(principal) at all times
- Records are never modified or deleted; only new grants are added on
  their handles
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from .acl import AccessControlList
from .errors import IndexOutOfBounds, NoSubmission
from .handles import EncryptedType, Handle, normalize_address
from .store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationRecord:
    """One classification run: three encrypted inputs, two encrypted outputs."""
    emotional: Handle
    social: Handle
    sleep: Handle
    score: Handle
    tier: Handle
    timestamp: int

    def __post_init__(self):
        expected = (
            ("emotional", EncryptedType.EUINT16),
            ("social", EncryptedType.EUINT16),
            ("sleep", EncryptedType.EUINT16),
            ("score", EncryptedType.EUINT32),
            ("tier", EncryptedType.EUINT8),
        )
        for name, enc_type in expected:
            handle = getattr(self, name)
            if not isinstance(handle, Handle) or handle.type is not enc_type:
                raise TypeError(f"{name} must be a {enc_type.type_name} handle")
        if isinstance(self.timestamp, bool) or not isinstance(self.timestamp, int) or self.timestamp < 0:
            raise ValueError("timestamp must be a non-negative integer")

    def handles(self) -> List[Handle]:
        """The five handles in disclosure order: emotional, social, sleep, score, tier."""
        return [self.emotional, self.social, self.sleep, self.score, self.tier]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emotional": self.emotional.to_dict(),
            "social": self.social.to_dict(),
            "sleep": self.sleep.to_dict(),
            "score": self.score.to_dict(),
            "tier": self.tier.to_dict(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClassificationRecord':
        return cls(
            emotional=Handle.from_dict(data["emotional"]),
            social=Handle.from_dict(data["social"]),
            sleep=Handle.from_dict(data["sleep"]),
            score=Handle.from_dict(data["score"]),
            tier=Handle.from_dict(data["tier"]),
            timestamp=int(data["timestamp"]),
        )


@dataclass(frozen=True)
class Summary:
    """Public per-principal statistics."""
    total_submissions: int
    last_timestamp: int

    def to_dict(self) -> Dict[str, int]:
        return {"total_submissions": self.total_submissions, "last_timestamp": self.last_timestamp}


class RecordLedger:
    """
    Per-principal classification history.

    Every append grants disclosure rights on all five handles to the
    submitting principal and to the substrate. The substrate is the granting
    caller, so it must already hold rights on the handles it stores.
    """

    def __init__(self, store: LedgerStore, acl: AccessControlList, substrate: str):
        self.store = store
        self.acl = acl
        self.substrate = normalize_address(substrate, "substrate")

    def append(
        self,
        principal: str,
        emotional: Handle,
        social: Handle,
        sleep: Handle,
        score: Handle,
        tier: Handle,
        timestamp: int
    ) -> int:
        """
        Store a new record, all or nothing.

        Returns:
            The record's 0-based index in the principal's history

        Raises:
            Unauthorized: if the substrate holds no rights on a handle
        """
        principal = normalize_address(principal, "principal")
        record = ClassificationRecord(
            emotional=emotional,
            social=social,
            sleep=sleep,
            score=score,
            tier=tier,
            timestamp=timestamp
        )
        with self.store.transaction():
            index = self.store.append_record(principal, record)
            submissions = self.store.increment_submissions(principal)
            if submissions != index + 1:
                raise RuntimeError(
                    f"Submission counter ({submissions}) diverged from history length ({index + 1})"
                )
            self._authorize(principal, record)
        logger.info("record %d appended for %s", index, principal)
        return index

    def _authorize(self, principal: str, record: ClassificationRecord) -> int:
        return self.acl.grant_many(record.handles(), [principal, self.substrate], caller=self.substrate)

    def get(self, principal: str, index: int) -> ClassificationRecord:
        principal = normalize_address(principal, "principal")
        length = self.store.record_count(principal)
        if index < 0 or index >= length:
            raise IndexOutOfBounds(principal, index, length)
        return self.store.get_record(principal, index)

    def latest(self, principal: str) -> ClassificationRecord:
        principal = normalize_address(principal, "principal")
        record = self.store.last_record(principal)
        if record is None:
            raise NoSubmission(principal)
        return record

    def count(self, principal: str) -> int:
        return self.store.record_count(normalize_address(principal, "principal"))

    def submission_count(self, principal: str) -> int:
        return self.store.submission_count(normalize_address(principal, "principal"))

    def history(self, principal: str) -> List[ClassificationRecord]:
        return self.store.records(normalize_address(principal, "principal"))

    def summary(self, principal: str) -> Summary:
        principal = normalize_address(principal, "principal")
        last = self.store.last_record(principal)
        return Summary(
            total_submissions=self.store.submission_count(principal),
            last_timestamp=last.timestamp if last is not None else 0
        )

    def reauthorize(self, principal: str, index: int) -> int:
        """
        Re-issue grants on one record's handles.

        Operational recovery path for records whose grants were issued under
        an incomplete policy. Idempotent.

        Returns:
            Number of grants that were missing and have been written
        """
        record = self.get(principal, index)
        principal = normalize_address(principal, "principal")
        with self.store.transaction():
            added = self._authorize(principal, record)
        logger.info("record %d reauthorized for %s (%d new grants)", index, principal, added)
        return added

    def reauthorize_all(self, principal: str) -> int:
        """Re-issue grants on every record of the principal, all or nothing."""
        principal = normalize_address(principal, "principal")
        added = 0
        with self.store.transaction():
            for record in self.store.records(principal):
                added += self._authorize(principal, record)
        logger.info("all records reauthorized for %s (%d new grants)", principal, added)
        return added
