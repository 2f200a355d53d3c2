"""
BambooHold Client

Principal-side facade over the registry, the coprocessor toolkit and the
disclosure protocol. It is the only place where raw signals enter and where
disclosed plaintexts are turned into user-facing values.

Every read that shows plaintexts costs exactly one disclosure session, and
therefore exactly one signature, no matter how many handles it covers.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .classifier import RiskTier, display_score
from .coprocessor import Coprocessor
from .disclosure import DisclosureClient
from .errors import NoSubmission
from .oracle import DecryptionOracle
from .records import ClassificationRecord, Summary
from .registry import RiskRegistry
from .signing import Signer
from .statement import DEFAULT_POLICY, DisclosurePolicy

logger = logging.getLogger(__name__)


class RecordStatus(str, Enum):
    """Distinguishes "never submitted" from "submitted but still sealed"."""
    NEVER_SUBMITTED = "NEVER_SUBMITTED"
    SEALED = "SEALED"


@dataclass(frozen=True)
class CurrentStatus:
    score: int
    tier: RiskTier

    @property
    def display_score(self) -> int:
        return display_score(self.score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "display_score": self.display_score,
            "tier": int(self.tier),
            "tier_label": self.tier.label,
        }


@dataclass(frozen=True)
class DecryptedRecord:
    """The five plaintexts of one record plus its public timestamp."""
    emotional: int
    social: int
    sleep: int
    score: int
    tier: RiskTier
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emotional": self.emotional,
            "social": self.social,
            "sleep": self.sleep,
            "score": self.score,
            "display_score": display_score(self.score),
            "tier": int(self.tier),
            "tier_label": self.tier.label,
            "timestamp": self.timestamp,
        }


class RiskClient:
    """
    One principal's view of a registry.

    Usage:
        client = RiskClient(registry, coprocessor, wallet, oracle)
        client.submit(45, 30, 50)
        client.current_status()   # CurrentStatus(score=1590, tier=MODERATE)
    """

    def __init__(
        self,
        registry: RiskRegistry,
        coprocessor: Coprocessor,
        signer: Signer,
        oracle: DecryptionOracle,
        policy: DisclosurePolicy = DEFAULT_POLICY,
        clock: Callable[[], float] = time.time
    ):
        self.registry = registry
        self.coprocessor = coprocessor
        self.signer = signer
        self.disclosure = DisclosureClient(oracle, signer, policy, clock)

    @property
    def address(self) -> str:
        return self.signer.address

    def submit(self, emotional: int, social: int, sleep: int) -> int:
        """
        Validate, encrypt and submit three raw signals.

        Raises:
            ValueError: if a signal is outside 0..100
            ProofRejected: if the registry refuses the encrypted input
        """
        self.registry.model.validate_inputs(emotional, social, sleep)
        encrypted = self.coprocessor.create_encrypted_input(self.registry.address, self.address) \
            .add16(emotional).add16(social).add16(sleep).encrypt()
        emotional_h, social_h, sleep_h = encrypted.handles
        return self.registry.submit(self.address, emotional_h, social_h, sleep_h, encrypted.input_proof)

    def status(self) -> RecordStatus:
        if self.registry.get_count(self.address) == 0:
            return RecordStatus.NEVER_SUBMITTED
        return RecordStatus.SEALED

    def current_status(self) -> CurrentStatus:
        """
        Disclose the latest score and tier in one batch.

        Raises:
            NoSubmission: before the first submit
        """
        record = self.registry.get_latest(self.address)
        values = self.disclosure.disclose([record.score, record.tier], self.registry.address)
        return CurrentStatus(score=values[record.score.id], tier=RiskTier(values[record.tier.id]))

    def decrypt_record(self, index: Optional[int] = None) -> DecryptedRecord:
        """Disclose all five values of one record (default: the latest)."""
        if index is None:
            record = self.registry.get_latest(self.address)
        else:
            record = self.registry.get_at(self.address, index)
        values = self.disclosure.disclose(record.handles(), self.registry.address)
        return _decrypted(record, values)

    def history(self, limit: Optional[int] = None) -> List[ClassificationRecord]:
        """Encrypted records, oldest first; `limit` keeps only the most recent ones."""
        records = self.registry.get_history(self.address)
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    def decrypt_history(self, limit: Optional[int] = None) -> List[DecryptedRecord]:
        """Disclose every value of the selected records in a single batch."""
        records = self.history(limit)
        handles = [h for record in records for h in record.handles()]
        values = self.disclosure.disclose(handles, self.registry.address)
        return [_decrypted(record, values) for record in records]

    def summary(self) -> Summary:
        return self.registry.get_summary(self.address)

    def tier_distribution(self, limit: int = 10) -> Dict[RiskTier, int]:
        """Tier counts over the most recent `limit` records, disclosed in one batch."""
        records = self.history(limit)
        distribution = {tier: 0 for tier in RiskTier}
        if not records:
            return distribution
        values = self.disclosure.disclose([r.tier for r in records], self.registry.address)
        counts = Counter(RiskTier(values[r.tier.id]) for r in records)
        distribution.update(counts)
        return distribution

    def reauthorize_all(self) -> int:
        if self.registry.get_count(self.address) == 0:
            raise NoSubmission(self.address)
        return self.registry.reauthorize_all(self.address)


def _decrypted(record: ClassificationRecord, values: Dict[str, int]) -> DecryptedRecord:
    return DecryptedRecord(
        emotional=values[record.emotional.id],
        social=values[record.social.id],
        sleep=values[record.sleep.id],
        score=values[record.score.id],
        tier=RiskTier(values[record.tier.id]),
        timestamp=record.timestamp,
    )
