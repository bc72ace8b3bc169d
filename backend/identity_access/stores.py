"""
In-memory stores for development and tests: UniqueIndex and InMemoryIdentityStore.

Why: Exercise the identity core without Postgres. The semantics mirror the
DB-backed store: unique columns reject duplicates, a session write replaces the
previous row in one step, grants are a set keyed by (internal_id, class_id).

Concurrency: A lock serializes every write so each one is atomic, standing in
for the single-statement guarantees of the database.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple
import threading

from .domain import ACCOUNTS_SCOPE, DuplicateIdentifier, EmailTaken, SESSIONS_SCOPE, Scope, SessionRecord


class UniqueIndex:
    """Values claimed per scope, standing in for unique column constraints."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: Dict[Scope, Set[str]] = {}

    def occurrences(self, scope: Scope, value: str) -> int:
        with self._lock:
            return 1 if value in self._values.get(scope, ()) else 0

    def claim(self, scope: Scope, value: str) -> None:
        with self._lock:
            taken = self._values.setdefault(scope, set())
            if value in taken:
                raise DuplicateIdentifier(scope)
            taken.add(value)

    def release(self, scope: Scope, value: str) -> None:
        with self._lock:
            self._values.get(scope, set()).discard(value)


class InMemoryIdentityStore:
    """Accounts, sessions and edit grants held in process memory."""

    def __init__(self, index: Optional[UniqueIndex] = None) -> None:
        self.index = index or UniqueIndex()
        self._lock = threading.Lock()
        self._accounts: Dict[str, Tuple[Optional[str], Optional[str]]] = {}
        self._emails: Dict[str, str] = {}
        self._sessions: Dict[str, SessionRecord] = {}
        # dict preserves grant order; values unused
        self._grants: Dict[Tuple[str, str], None] = {}

    # --- Accounts -------------------------------------------------------------
    def create_account(self, internal_id: str, email: Optional[str] = None, password_hash: Optional[str] = None) -> str:
        with self._lock:
            if email is not None and email in self._emails:
                raise EmailTaken(email)
            self.index.claim(ACCOUNTS_SCOPE, internal_id)
            self._accounts[internal_id] = (email, password_hash)
            if email is not None:
                self._emails[email] = internal_id
        return internal_id

    def get_credentials(self, email: str) -> Optional[Tuple[str, Optional[str]]]:
        """Return `(internal_id, password_hash)` for `email`, or None."""
        with self._lock:
            internal_id = self._emails.get(email)
            if internal_id is None:
                return None
            return internal_id, self._accounts[internal_id][1]

    # --- Sessions -------------------------------------------------------------
    def get_session(self, internal_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._sessions.get(internal_id)

    def put_session(self, record: SessionRecord) -> None:
        with self._lock:
            self.index.claim(SESSIONS_SCOPE, record.token)
            previous = self._sessions.get(record.internal_id)
            if previous is not None:
                self.index.release(SESSIONS_SCOPE, previous.token)
            self._sessions[record.internal_id] = record

    def delete_session(self, internal_id: str) -> None:
        with self._lock:
            previous = self._sessions.pop(internal_id, None)
            if previous is not None:
                self.index.release(SESSIONS_SCOPE, previous.token)

    # --- Edit grants ----------------------------------------------------------
    def add_grant(self, internal_id: str, class_id: str) -> None:
        with self._lock:
            self._grants.setdefault((internal_id, class_id), None)

    def remove_grant(self, internal_id: str, class_id: str) -> None:
        with self._lock:
            self._grants.pop((internal_id, class_id), None)

    def remove_grants_for_class(self, class_id: str) -> None:
        with self._lock:
            for key in [k for k in self._grants if k[1] == class_id]:
                del self._grants[key]

    def has_grant(self, internal_id: str, class_id: str) -> bool:
        with self._lock:
            return (internal_id, class_id) in self._grants

    def list_grants(self, internal_id: str) -> List[str]:
        with self._lock:
            return [cid for (iid, cid) in self._grants if iid == internal_id]

    def count_grants(self, internal_id: str, class_id: str) -> int:
        with self._lock:
            return sum(1 for key in self._grants if key == (internal_id, class_id))

    # --- Uniqueness -----------------------------------------------------------
    def occurrences(self, scope: Scope, value: str) -> int:
        return self.index.occurrences(scope, value)


__all__ = ["UniqueIndex", "InMemoryIdentityStore"]
