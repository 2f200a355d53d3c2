"""
BambooHold Confidential Risk Classification

Version: 1.0.0

A principal submits three private signals (emotional fluctuation, social
fatigue, sleep debt; each 0-100) and receives a private composite score and
a private tier label. Neither the signals nor the outputs ever appear in
plaintext to a third party, including the substrate that computes them.

Architecture:
- Handles reference encrypted values held by an external coprocessor
- The classifier combines handles with encrypted arithmetic and selects only
- The record ledger keeps an append-only history per principal and grants
  the principal and the substrate rights on every stored handle
- The disclosure protocol recovers a batch of plaintexts with one signature

Usage:
    from bamboohold import (
        KmsDecryptionOracle,
        MockCoprocessor,
        RiskClient,
        RiskRegistry,
        Wallet,
    )

    coprocessor = MockCoprocessor()
    registry = RiskRegistry(contract_address, coprocessor)
    oracle = KmsDecryptionOracle(coprocessor, registry.acl)
    client = RiskClient(registry, coprocessor, Wallet(), oracle)

    client.submit(45, 30, 50)
    status = client.current_status()   # one signature, score + tier
    status.tier.label                  # "Moderate"
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    BambooHoldError,
    Unauthorized,
    NoSubmission,
    IndexOutOfBounds,
    ProofRejected,
    StatementRejected,
    FailureReason,
    DisclosureFailed,
    DisclosureIncomplete,
    DisclosureDenied,
    SessionExpired,
)

# Canonicalization and hashing
from .canonicalization import canonicalize
from .hashing import handle_id, address_from_public_key

# Handles and coprocessor
from .handles import EncryptedType, Handle, ExternalInput, normalize_address
from .coprocessor import (
    Coprocessor,
    CiphertextStore,
    InMemoryCiphertextStore,
    EncryptedInputBuilder,
    MockCoprocessor,
)

# Ledgers
from .store import LedgerStore, InMemoryLedgerStore
from .acl import AccessControlList
from .records import ClassificationRecord, RecordLedger, Summary

# Classifier
from .classifier import (
    RiskTier,
    RiskModel,
    DEFAULT_MODEL,
    Classification,
    classify,
    reference_classify,
    tier_for_total,
    display_score,
)

# Substrate contract
from .registry import RiskRegistry, RegistryEvent

# Signing and disclosure
from .signing import Signer, Wallet, verify_signature
from .statement import DisclosurePolicy, DisclosureStatement, DEFAULT_POLICY
from .oracle import (
    DecryptionOracle,
    KmsDecryptionOracle,
    DecryptionPair,
    DecryptionRequest,
    DecryptionResponse,
    NonceStore,
    InMemoryNonceStore,
)
from .disclosure import DisclosureClient, DisclosureSession, SessionState

# Client
from .client import RiskClient, RecordStatus, CurrentStatus, DecryptedRecord


__all__ = [
    # Version
    "__version__",

    # Errors
    "BambooHoldError",
    "Unauthorized",
    "NoSubmission",
    "IndexOutOfBounds",
    "ProofRejected",
    "StatementRejected",
    "FailureReason",
    "DisclosureFailed",
    "DisclosureIncomplete",
    "DisclosureDenied",
    "SessionExpired",

    # Canonicalization
    "canonicalize",

    # Hashing
    "handle_id",
    "address_from_public_key",

    # Handles
    "EncryptedType",
    "Handle",
    "ExternalInput",
    "normalize_address",

    # Coprocessor
    "Coprocessor",
    "CiphertextStore",
    "InMemoryCiphertextStore",
    "EncryptedInputBuilder",
    "MockCoprocessor",

    # Ledgers
    "LedgerStore",
    "InMemoryLedgerStore",
    "AccessControlList",
    "ClassificationRecord",
    "RecordLedger",
    "Summary",

    # Classifier
    "RiskTier",
    "RiskModel",
    "DEFAULT_MODEL",
    "Classification",
    "classify",
    "reference_classify",
    "tier_for_total",
    "display_score",

    # Registry
    "RiskRegistry",
    "RegistryEvent",

    # Signing
    "Signer",
    "Wallet",
    "verify_signature",

    # Disclosure
    "DisclosurePolicy",
    "DisclosureStatement",
    "DEFAULT_POLICY",
    "DecryptionOracle",
    "KmsDecryptionOracle",
    "DecryptionPair",
    "DecryptionRequest",
    "DecryptionResponse",
    "NonceStore",
    "InMemoryNonceStore",
    "DisclosureClient",
    "DisclosureSession",
    "SessionState",

    # Client
    "RiskClient",
    "RecordStatus",
    "CurrentStatus",
    "DecryptedRecord",
]
