"""
Accounts: mint a unique `internal_id`, store credentials, check passwords.

Behavior:
- Emails are compared case-insensitively; they are stored stripped and lowercased.
- Passwords are kept only as salted hashes (werkzeug.security). An account
  created without a password can never authenticate with one.
- `authenticate` returns the account id or None. It does not issue a session;
  the caller hands the id to `TokenStore.issue`.

Security: Unknown emails still pay for one hash check so response timing does
not reveal which emails are registered.
"""
from __future__ import annotations

from typing import Optional, Protocol, Tuple
import logging

from werkzeug.security import check_password_hash, generate_password_hash

from .domain import ACCOUNTS_SCOPE
from .identifiers import IdentifierAllocator

_log = logging.getLogger("gradebook.identity_access")

DEFAULT_ID_LENGTH = 16

_dummy_hash: Optional[str] = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _unknown_account_hash() -> str:
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = generate_password_hash("unknown-account")
    return _dummy_hash


class AccountBackend(Protocol):
    def create_account(self, internal_id: str, email: Optional[str] = None, password_hash: Optional[str] = None) -> str:
        ...

    def get_credentials(self, email: str) -> Optional[Tuple[str, Optional[str]]]:
        ...


class AccountService:
    def __init__(self, backend: AccountBackend, allocator: IdentifierAllocator, *, id_length: int = DEFAULT_ID_LENGTH) -> None:
        self._backend = backend
        self._allocator = allocator
        self._id_length = id_length

    def create_account(self, email: Optional[str] = None, password: Optional[str] = None) -> str:
        """Create an account and return its new `internal_id`.

        Raises:
            EmailTaken: another account already uses `email`.
            AllocationExhausted: no unique id was found.
            StorageError: the account row could not be written.
        """
        normalized = normalize_email(email) if email else None
        password_hash = generate_password_hash(password) if password else None
        internal_id = self._allocator.insert_with_unique_id(
            ACCOUNTS_SCOPE,
            self._id_length,
            lambda candidate: self._backend.create_account(candidate, normalized, password_hash),
        )
        _log.info("account created id_tail=%s", internal_id[-6:])
        return internal_id

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Return the `internal_id` whose credentials match, else None."""
        credentials = self._backend.get_credentials(normalize_email(email))
        if credentials is None:
            check_password_hash(_unknown_account_hash(), password)
            return None
        internal_id, password_hash = credentials
        if not password_hash or not check_password_hash(password_hash, password):
            _log.info("authentication failed id_tail=%s", internal_id[-6:])
            return None
        return internal_id


__all__ = ["DEFAULT_ID_LENGTH", "normalize_email", "AccountService"]
