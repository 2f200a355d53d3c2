"""
BambooHold Authorization Ledger

Tracks, per ciphertext handle, which principals may request disclosure of its
plaintext. Encrypted values are otherwise permanently opaque, even to the
principal who submitted them.

Rules:
- The creator of a handle holds a grant from creation time
- A principal holding a grant may extend it to another principal
- Anyone else attempting a grant is rejected with Unauthorized
- Grants are additive and idempotent; there is no revocation
"""

import logging
from typing import Iterable, List, Union

from .errors import Unauthorized
from .handles import Handle, normalize_address
from .store import LedgerStore

logger = logging.getLogger(__name__)

HandleRef = Union[Handle, str]


def _handle_key(handle: HandleRef) -> str:
    return handle.id if isinstance(handle, Handle) else str(handle).lower()


class AccessControlList:
    """
    Grant-only access control over handles.

    Usage:
        acl = AccessControlList(store)
        acl.allow_creator(handle, contract_address)
        acl.grant(handle, user_address, caller=contract_address)
        acl.is_authorized(handle, user_address)  # True
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def allow_creator(self, handle: HandleRef, creator: str) -> bool:
        """
        Record the creation-time grant of a freshly produced handle.

        A handle counts as fresh while nobody holds a grant on it. Repeating
        the call for a creator that already holds its grant is a no-op.

        Raises:
            Unauthorized: if the handle already has grantees and `creator`
                is not one of them
        """
        key = _handle_key(handle)
        creator = normalize_address(creator, "creator")
        with self.store.transaction():
            if self.store.has_grant(key, creator):
                return False
            if self.store.grantees(key):
                logger.warning("creator grant rejected: %s already owned, not by %s", key, creator)
                raise Unauthorized(
                    f"{key} already exists; {creator} cannot claim it as creator",
                    handle=key,
                    principal=creator
                )
            self.store.add_grant(key, creator)
        logger.debug("creator grant %s -> %s", key, creator)
        return True

    def grant(self, handle: HandleRef, principal: str, caller: str) -> bool:
        """
        Allow `principal` to request disclosure of `handle`.

        Returns:
            True if a new grant was written, False if it already held

        Raises:
            Unauthorized: if `caller` holds no grant on `handle`
        """
        key = _handle_key(handle)
        principal = normalize_address(principal, "principal")
        caller = normalize_address(caller, "caller")
        with self.store.transaction():
            if not self.store.has_grant(key, caller):
                logger.warning("grant rejected: %s holds no rights on %s", caller, key)
                raise Unauthorized(
                    f"{caller} is not allowed to grant access to {key}",
                    handle=key,
                    principal=caller
                )
            added = self.store.add_grant(key, principal)
        if added:
            logger.debug("grant %s -> %s by %s", key, principal, caller)
        return added

    def grant_many(self, handles: Iterable[HandleRef], principals: Iterable[str], caller: str) -> int:
        """
        Grant every principal on every handle, all or nothing.

        Returns:
            Number of grants that were new
        """
        handles = list(handles)
        principals = list(principals)
        added = 0
        with self.store.transaction():
            for handle in handles:
                for principal in principals:
                    if self.grant(handle, principal, caller):
                        added += 1
        return added

    def is_authorized(self, handle: HandleRef, principal: str) -> bool:
        try:
            principal = normalize_address(principal, "principal")
        except ValueError:
            return False
        return self.store.has_grant(_handle_key(handle), principal)

    def grants_for(self, handle: HandleRef) -> List[str]:
        """Principals holding a grant on `handle`, sorted (audit)."""
        return self.store.grantees(_handle_key(handle))
