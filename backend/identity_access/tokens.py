"""
Session token issuance and verification.

Why: Every gradebook handler receives `(internal_id, token)` and must know
whether that pair is a live session before touching any data. Issuance and
verification live here so handlers stay thin and the verdicts stay consistent.

Behavior:
- One live session per account. Issuing overwrites the previous session, so a
  superseded token is rejected as `INVALID_TOKEN`.
- Verification is a pure read. It never extends `expires_at`; renewal means
  issuing again.
- Storage faults surface as `STORAGE_FAILURE`, never as a denial.

Security: Tokens are compared in constant time and never logged.
"""
from __future__ import annotations

from typing import Callable, Optional, Protocol, Tuple
import logging
import secrets
import time

from .domain import AuthResult, SESSIONS_SCOPE, SessionRecord, StorageError
from .identifiers import IdentifierAllocator

_log = logging.getLogger("gradebook.identity_access")

DEFAULT_TTL_SECONDS = 86400
DEFAULT_TOKEN_LENGTH = 32


def _now() -> int:
    return int(time.time())


def _tail(internal_id: str) -> str:
    return (internal_id or "")[-6:]


class SessionBackend(Protocol):
    def get_session(self, internal_id: str) -> Optional[SessionRecord]:
        ...

    def put_session(self, record: SessionRecord) -> None:
        """Atomically create or replace the session row for `record.internal_id`.

        Raises `DuplicateIdentifier` when `record.token` is already in use.
        """
        ...

    def delete_session(self, internal_id: str) -> None:
        ...


class TokenStore:
    """Issue and invalidate session tokens."""

    def __init__(
        self,
        backend: SessionBackend,
        allocator: IdentifierAllocator,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        token_length: int = DEFAULT_TOKEN_LENGTH,
        clock: Callable[[], int] = _now,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._backend = backend
        self._allocator = allocator
        self._ttl = ttl_seconds
        self._token_length = token_length
        self._clock = clock

    def issue(self, internal_id: str, *, request_id: Optional[str] = None) -> SessionRecord:
        """Mint a fresh token for `internal_id`, replacing any previous one.

        Retried issuance: when `request_id` matches the request that produced
        the current live session, that session is returned as is instead of
        invalidating a token the client may already hold.

        Raises:
            StorageError: the session could not be read or written.
            AllocationExhausted: no unique token was found.
        """
        if not internal_id:
            raise ValueError("internal_id is required")
        now = self._clock()
        if request_id:
            current = self._backend.get_session(internal_id)
            if current is not None and current.request_id == request_id and not current.is_expired(now):
                _log.debug("issue replayed for request; returning live session id_tail=%s", _tail(internal_id))
                return current

        def _persist(token: str) -> SessionRecord:
            record = SessionRecord(
                internal_id=internal_id,
                token=token,
                issued_at=now,
                expires_at=now + self._ttl,
                request_id=request_id,
            )
            self._backend.put_session(record)
            return record

        record = self._allocator.insert_with_unique_id(SESSIONS_SCOPE, self._token_length, _persist)
        _log.info("session issued id_tail=%s expires_at=%s", _tail(internal_id), record.expires_at)
        return record

    def invalidate(self, internal_id: str) -> None:
        """Drop the session for `internal_id` (logout). Idempotent."""
        self._backend.delete_session(internal_id)
        _log.info("session invalidated id_tail=%s", _tail(internal_id))


class TokenVerifier:
    """Map a claimed `(internal_id, token)` pair to an `AuthResult`."""

    def __init__(self, backend: SessionBackend, *, clock: Callable[[], int] = _now) -> None:
        self._backend = backend
        self._clock = clock

    def verify(self, internal_id: str, claimed_token: str) -> AuthResult:
        result, _ = self.lookup(internal_id, claimed_token)
        return result

    def lookup(self, internal_id: str, claimed_token: str) -> Tuple[AuthResult, Optional[StorageError]]:
        """Return the verdict together with the storage error behind `STORAGE_FAILURE`."""
        try:
            record = self._backend.get_session(internal_id)
        except StorageError as exc:
            _log.warning("session lookup failed: %s", exc.__class__.__name__)
            return AuthResult.STORAGE_FAILURE, exc
        if record is None:
            return AuthResult.NO_TOKEN_ISSUED, None
        if not secrets.compare_digest(str(record.token).encode(), str(claimed_token or "").encode()):
            return AuthResult.INVALID_TOKEN, None
        if record.is_expired(self._clock()):
            return AuthResult.TOKEN_EXPIRED, None
        return AuthResult.VALID, None


__all__ = [
    "DEFAULT_TTL_SECONDS",
    "DEFAULT_TOKEN_LENGTH",
    "SessionBackend",
    "TokenStore",
    "TokenVerifier",
]
