"""
BambooHold Error Taxonomy

Every failure the core can raise derives from BambooHoldError so that the
service layer can map the whole family onto HTTP responses in one place.

Ledger mutations fail atomically: when one of these is raised from inside a
store transaction, nothing the transaction wrote survives.
"""

from enum import Enum
from typing import Optional


class BambooHoldError(Exception):
    """Base class for all BambooHold errors."""


class Unauthorized(BambooHoldError):
    """
    A principal tried to act on a handle it holds no grant for.

    Raised when a grant is attempted by a principal that neither holds
    disclosure rights on the handle nor created it, and when disclosure is
    requested for a handle lacking a grant.
    """

    def __init__(self, message: str, handle: Optional[str] = None, principal: Optional[str] = None):
        self.handle = handle
        self.principal = principal
        super().__init__(message)


class NoSubmission(BambooHoldError):
    """A per-principal read was made before the principal's first submit."""

    def __init__(self, principal: str):
        self.principal = principal
        super().__init__("No metrics submitted yet")


class IndexOutOfBounds(BambooHoldError):
    """History index is negative or >= the principal's history length."""

    def __init__(self, principal: str, index: int, length: int):
        self.principal = principal
        self.index = index
        self.length = length
        super().__init__(f"Index out of bounds: {index} (history length {length})")


class ProofRejected(BambooHoldError):
    """The integrity proof accompanying encrypted inputs did not verify."""


class StatementRejected(BambooHoldError):
    """The decryption oracle refused a disclosure statement."""


class FailureReason(str, Enum):
    """Why a disclosure session ended in the FAILED state."""
    INVALID_REQUEST = "INVALID_REQUEST"
    SIGNER_ERROR = "SIGNER_ERROR"
    ORACLE_UNREACHABLE = "ORACLE_UNREACHABLE"
    ORACLE_ERROR = "ORACLE_ERROR"
    STATEMENT_REJECTED = "STATEMENT_REJECTED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    UNAUTHORIZED = "UNAUTHORIZED"
    INCOMPLETE = "INCOMPLETE"
    UNSEAL_FAILED = "UNSEAL_FAILED"


class DisclosureFailed(BambooHoldError):
    """
    A disclosure session reached the FAILED state.

    Carries the reason and the last state the session reached before failing.
    The caller decides whether to retry; a retry always starts a new session.
    """

    def __init__(self, reason: FailureReason, message: str, state: Optional[str] = None):
        self.reason = reason
        self.state = state
        super().__init__(f"{reason.value}: {message}")


class DisclosureIncomplete(DisclosureFailed):
    """The oracle answered with fewer plaintexts than handles requested."""

    def __init__(self, missing, state: Optional[str] = None):
        self.missing = list(missing)
        super().__init__(
            FailureReason.INCOMPLETE,
            f"oracle response is missing {len(self.missing)} handle(s)",
            state
        )


class SessionExpired(DisclosureFailed):
    """The statement's validity window lapsed before disclosure completed."""

    def __init__(self, message: str = "statement validity window has lapsed", state: Optional[str] = None):
        super().__init__(FailureReason.SESSION_EXPIRED, message, state)


class DisclosureDenied(DisclosureFailed, Unauthorized):
    """The oracle refused one or more handles for lack of a grant."""

    def __init__(self, denied, state: Optional[str] = None):
        self.denied = dict(denied)
        self.handle = next(iter(self.denied), None)
        self.principal = None
        DisclosureFailed.__init__(
            self,
            FailureReason.UNAUTHORIZED,
            f"{len(self.denied)} handle(s) not authorized for disclosure",
            state
        )
