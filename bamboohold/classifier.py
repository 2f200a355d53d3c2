"""
BambooHold Risk Classifier

Turns three encrypted signals into an encrypted composite score and an
encrypted tier label. Every step is an encrypted operation on handles;
the classifier never sees a plaintext and never takes a plaintext branch.

    total = emotional*12 + social*10 + sleep*15      (scaled x10, 0..3700)
    score = euint32(total)
    tier  = total >= 1850 ? 2 : (total >= 1110 ? 1 : 0)

The thresholds are 50% and 30% of the maximum scaled total. The tier is
computed with two nested encrypted selects because its predicates are
themselves ciphertexts.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Tuple

from .coprocessor import Coprocessor
from .handles import EncryptedType, Handle


class RiskTier(IntEnum):
    """Three-valued classification ("caution window")."""
    SAFE = 0
    MODERATE = 1
    HIGH = 2

    @property
    def label(self) -> str:
        return {0: "Safe", 1: "Moderate", 2: "High"}[self.value]


@dataclass(frozen=True)
class RiskModel:
    """
    Integer weights and thresholds of the classifier.

    Weights are the real weights (1.2, 1.0, 1.5) scaled by 10 so the whole
    computation stays in unsigned integers.
    """
    emotional_weight: int = 12
    social_weight: int = 10
    sleep_weight: int = 15
    moderate_threshold: int = 1110
    high_threshold: int = 1850
    max_input: int = 100

    def __post_init__(self):
        if min(self.emotional_weight, self.social_weight, self.sleep_weight) < 0:
            raise ValueError("Weights must be non-negative")
        if not 0 < self.moderate_threshold <= self.high_threshold:
            raise ValueError("Thresholds must satisfy 0 < moderate <= high")
        if self.max_total > EncryptedType.EUINT16.max_value:
            raise ValueError(f"Maximum scaled total {self.max_total} overflows euint16")

    @property
    def max_total(self) -> int:
        return (self.emotional_weight + self.social_weight + self.sleep_weight) * self.max_input

    def validate_inputs(self, emotional: int, social: int, sleep: int) -> None:
        """
        Range check for raw signals, done by the caller before encryption.

        Raises:
            ValueError: if any signal is outside 0..max_input
        """
        for name, value in (("emotional", emotional), ("social", social), ("sleep", sleep)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")
            if value < 0 or value > self.max_input:
                raise ValueError(f"{name} must be between 0 and {self.max_input}, got {value}")


DEFAULT_MODEL = RiskModel()


@dataclass(frozen=True)
class Classification:
    """Encrypted classifier output."""
    score: Handle
    tier: Handle


def classify(
    coprocessor: Coprocessor,
    emotional: Handle,
    social: Handle,
    sleep: Handle,
    model: RiskModel = DEFAULT_MODEL
) -> Classification:
    """
    Classify three encrypted euint16 signals.

    Returns:
        Classification with a euint32 score (real risk x10) and a euint8 tier

    Raises:
        TypeError: if any input is not a euint16 handle
    """
    for name, handle in (("emotional", emotional), ("social", social), ("sleep", sleep)):
        if handle.type is not EncryptedType.EUINT16:
            raise TypeError(f"{name} must be euint16, got {handle.type.type_name}")

    weighted_emotional = coprocessor.mul(emotional, model.emotional_weight)
    weighted_social = coprocessor.mul(social, model.social_weight)
    weighted_sleep = coprocessor.mul(sleep, model.sleep_weight)
    total = coprocessor.add(coprocessor.add(weighted_emotional, weighted_social), weighted_sleep)

    score = coprocessor.cast(total, EncryptedType.EUINT32)

    high_risk = coprocessor.ge(total, model.high_threshold)
    moderate_risk = coprocessor.ge(total, model.moderate_threshold)

    high = coprocessor.trivial_encrypt(RiskTier.HIGH, EncryptedType.EUINT8)
    moderate = coprocessor.trivial_encrypt(RiskTier.MODERATE, EncryptedType.EUINT8)
    safe = coprocessor.trivial_encrypt(RiskTier.SAFE, EncryptedType.EUINT8)
    tier = coprocessor.select(high_risk, high, coprocessor.select(moderate_risk, moderate, safe))

    return Classification(score=score, tier=tier)


def tier_for_total(total: int, model: RiskModel = DEFAULT_MODEL) -> RiskTier:
    """Plaintext tier of a scaled total, for display and tests."""
    if total >= model.high_threshold:
        return RiskTier.HIGH
    if total >= model.moderate_threshold:
        return RiskTier.MODERATE
    return RiskTier.SAFE


def reference_classify(
    emotional: int,
    social: int,
    sleep: int,
    model: RiskModel = DEFAULT_MODEL
) -> Tuple[int, RiskTier]:
    """
    Plaintext mirror of `classify`.

    Only for local previews and for checking disclosed results; the
    encrypted path never calls it.
    """
    total = (
        emotional * model.emotional_weight
        + social * model.social_weight
        + sleep * model.sleep_weight
    )
    return total, tier_for_total(total, model)


def display_score(score: int) -> int:
    """Disclosed score in human units (score / 10, half rounded up)."""
    return (score + 5) // 10
