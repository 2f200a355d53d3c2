"""
BambooHold Ledger Store

The authorization ledger and the record ledger share one store object so that
a classification run can write its record, bump the submission counter and
issue all of its grants as a single atomic transaction.

Implementations must be:
- Serially consistent (one mutation at a time per store)
- Atomic (a failed transaction leaves no partial writes)
- Re-entrant (transactions may nest; an inner failure rolls back only the
  inner writes, an outer failure rolls back everything)
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set


class LedgerStore(ABC):
    """Abstract storage for grants, per-principal histories and counters."""

    @abstractmethod
    def transaction(self):
        """Context manager making every write inside it atomic."""
        pass

    # Grants

    @abstractmethod
    def add_grant(self, handle_id: str, principal: str) -> bool:
        """
        Record a grant.

        Returns:
            True if the grant is new, False if it already existed
        """
        pass

    @abstractmethod
    def has_grant(self, handle_id: str, principal: str) -> bool:
        pass

    @abstractmethod
    def grantees(self, handle_id: str) -> List[str]:
        pass

    # Histories

    @abstractmethod
    def append_record(self, principal: str, record: Any) -> int:
        """Append a record to the principal's history and return its index."""
        pass

    @abstractmethod
    def get_record(self, principal: str, index: int) -> Optional[Any]:
        pass

    @abstractmethod
    def last_record(self, principal: str) -> Optional[Any]:
        pass

    @abstractmethod
    def record_count(self, principal: str) -> int:
        pass

    @abstractmethod
    def records(self, principal: str) -> List[Any]:
        pass

    # Counters

    @abstractmethod
    def increment_submissions(self, principal: str) -> int:
        pass

    @abstractmethod
    def submission_count(self, principal: str) -> int:
        pass


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory ledger store for development/testing.

    WARNING: Not persistent across restarts.

    Atomicity comes from an undo journal: every write inside a transaction
    pushes the closure that reverses it, and a failing transaction replays
    its part of the journal backwards.
    """

    def __init__(self):
        self._grants: Dict[str, Set[str]] = {}
        self._history: Dict[str, List[Any]] = {}
        self._submissions: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._undo: Optional[List[Callable[[], None]]] = None
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator['InMemoryLedgerStore']:
        with self._lock:
            if self._depth == 0:
                self._undo = []
            mark = len(self._undo)
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._rollback_to(mark)
                raise
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._undo = None

    def _rollback_to(self, mark: int) -> None:
        while len(self._undo) > mark:
            self._undo.pop()()

    def _journal(self, undo: Callable[[], None]) -> None:
        self._undo.append(undo)

    def add_grant(self, handle_id: str, principal: str) -> bool:
        with self.transaction():
            holders = self._grants.get(handle_id)
            if holders is None:
                holders = self._grants[handle_id] = set()
                self._journal(lambda: self._grants.pop(handle_id, None))
            if principal in holders:
                return False
            holders.add(principal)
            self._journal(lambda: holders.discard(principal))
            return True

    def has_grant(self, handle_id: str, principal: str) -> bool:
        with self._lock:
            return principal in self._grants.get(handle_id, ())

    def grantees(self, handle_id: str) -> List[str]:
        with self._lock:
            return sorted(self._grants.get(handle_id, ()))

    def append_record(self, principal: str, record: Any) -> int:
        with self.transaction():
            history = self._history.get(principal)
            if history is None:
                history = self._history[principal] = []
                self._journal(lambda: self._history.pop(principal, None))
            history.append(record)
            self._journal(history.pop)
            return len(history) - 1

    def get_record(self, principal: str, index: int) -> Optional[Any]:
        with self._lock:
            history = self._history.get(principal, [])
            if 0 <= index < len(history):
                return history[index]
            return None

    def last_record(self, principal: str) -> Optional[Any]:
        with self._lock:
            history = self._history.get(principal)
            return history[-1] if history else None

    def record_count(self, principal: str) -> int:
        with self._lock:
            return len(self._history.get(principal, ()))

    def records(self, principal: str) -> List[Any]:
        with self._lock:
            return list(self._history.get(principal, ()))

    def increment_submissions(self, principal: str) -> int:
        with self.transaction():
            previous = self._submissions.get(principal)
            self._submissions[principal] = (previous or 0) + 1
            if previous is None:
                self._journal(lambda: self._submissions.pop(principal, None))
            else:
                self._journal(lambda: self._submissions.__setitem__(principal, previous))
            return self._submissions[principal]

    def submission_count(self, principal: str) -> int:
        with self._lock:
            return self._submissions.get(principal, 0)
