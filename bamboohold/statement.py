"""
BambooHold Disclosure Statement

A disclosure statement is the one thing a principal signs to obtain
plaintexts. It binds the session's ephemeral public key to a set of
contracts, the principal's identity and a validity window, under a domain
separator so that a signature collected for disclosure can never be
replayed as a signature over anything else.

Signing payload (canonical JSON):
    {
        "domain": {"name", "version", "chain_id", "verifying_contract"},
        "primary_type": "UserDecryptRequestVerification",
        "message": {public_key, contract_addresses, user_address,
                    signer_public_key, start_timestamp, duration_days, nonce}
    }
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .canonicalization import canonicalize
from .handles import normalize_address

SECONDS_PER_DAY = 86400
PRIMARY_TYPE = "UserDecryptRequestVerification"


@dataclass(frozen=True)
class DisclosurePolicy:
    """Tunable parameters of the disclosure handshake."""
    duration_days: int = 365
    chain_id: int = 31337
    domain_name: str = "BambooHoldDecryption"
    domain_version: str = "1"
    verifying_contract: Optional[str] = None

    def __post_init__(self):
        if self.duration_days <= 0:
            raise ValueError("duration_days must be positive")

    def domain(self) -> Dict[str, Any]:
        domain = {
            "name": self.domain_name,
            "version": self.domain_version,
            "chain_id": self.chain_id,
        }
        if self.verifying_contract:
            domain["verifying_contract"] = normalize_address(self.verifying_contract, "verifying_contract")
        return domain


DEFAULT_POLICY = DisclosurePolicy()


@dataclass(frozen=True)
class DisclosureStatement:
    """Time-boxed authorization for the oracle to disclose to one ephemeral key."""
    public_key: str
    contract_addresses: List[str]
    user_address: str
    signer_public_key: str
    start_timestamp: int
    duration_days: int
    nonce: str
    domain: Dict[str, Any]

    @property
    def expires_at(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def message(self) -> Dict[str, Any]:
        return {
            "public_key": self.public_key,
            "contract_addresses": list(self.contract_addresses),
            "user_address": self.user_address,
            "signer_public_key": self.signer_public_key,
            "start_timestamp": self.start_timestamp,
            "duration_days": self.duration_days,
            "nonce": self.nonce,
        }

    def signing_payload(self) -> bytes:
        """The exact bytes the principal signs."""
        return canonicalize({
            "domain": self.domain,
            "primary_type": PRIMARY_TYPE,
            "message": self.message(),
        })

    def to_dict(self) -> Dict[str, Any]:
        return {**self.message(), "domain": dict(self.domain)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DisclosureStatement':
        required = [
            "public_key", "contract_addresses", "user_address", "signer_public_key",
            "start_timestamp", "duration_days", "nonce", "domain",
        ]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")
        return cls(
            public_key=data["public_key"],
            contract_addresses=[
                normalize_address(a, "contract_address") for a in data["contract_addresses"]
            ],
            user_address=normalize_address(data["user_address"], "user_address"),
            signer_public_key=data["signer_public_key"],
            start_timestamp=int(data["start_timestamp"]),
            duration_days=int(data["duration_days"]),
            nonce=str(data["nonce"]),
            domain=dict(data["domain"]),
        )
