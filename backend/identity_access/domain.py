"""
Identity domain types: uniqueness scopes, verdicts, session records, errors.

Why:
- Verification outcomes are a closed set of named variants. Callers branch on
  members, never on small integers, and an unknown member is a server fault.
- Keep table/column names in one place so allocator, stores and migrations
  agree on the uniqueness scopes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import re

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")
_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


@dataclass(frozen=True)
class Scope:
    """A (table, column) pair within which identifier values must be unique."""

    table: str
    column: str

    def __post_init__(self) -> None:
        # Names are interpolated into SQL by the DB store; reject anything odd early.
        if not _TABLE_RE.match(self.table or ""):
            raise ValueError("Invalid table name")
        if not _IDENT_RE.match(self.column or ""):
            raise ValueError("Invalid column name")

    def __str__(self) -> str:
        return f"{self.table}.{self.column}"


ACCOUNTS_SCOPE = Scope("accounts", "internal_id")
SESSIONS_SCOPE = Scope("sessions", "token")
CLASSES_SCOPE = Scope("classes", "class_id")
CATEGORIES_SCOPE = Scope("categories", "category_id")
ASSIGNMENTS_SCOPE = Scope("assignments", "assignment_id")
TERMS_SCOPE = Scope("terms", "term_id")


def is_valid_identifier(name: str) -> bool:
    return bool(_IDENT_RE.match(name or ""))


class AuthResult(Enum):
    VALID = "valid"
    NO_TOKEN_ISSUED = "no_token_issued"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    STORAGE_FAILURE = "storage_failure"


class EditPermission(Enum):
    GRANTED = "granted"
    DENIED = "denied"
    STORAGE_FAILURE = "storage_failure"


@dataclass(frozen=True)
class SessionRecord:
    internal_id: str
    token: str
    issued_at: int
    expires_at: int
    request_id: Optional[str] = None

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at


class StorageError(Exception):
    """Raised when a storage round trip could not be completed."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class DuplicateIdentifier(Exception):
    """Raised when an insert collides with an existing value in a uniqueness scope."""

    def __init__(self, scope: Scope):
        super().__init__(f"duplicate value in {scope}")
        self.scope = scope


class EmailTaken(Exception):
    """Raised when an account is created for an email that already has one."""

    def __init__(self, email: str):
        super().__init__("email already registered")
        self.email = email


class AllocationExhausted(Exception):
    """Raised when no unique identifier was found within the retry budget."""

    def __init__(self, scope: Scope, attempts: int):
        super().__init__(f"no unique value for {scope} after {attempts} attempts")
        self.scope = scope
        self.attempts = attempts


__all__ = [
    "Scope",
    "ACCOUNTS_SCOPE",
    "SESSIONS_SCOPE",
    "CLASSES_SCOPE",
    "CATEGORIES_SCOPE",
    "ASSIGNMENTS_SCOPE",
    "TERMS_SCOPE",
    "is_valid_identifier",
    "AuthResult",
    "EditPermission",
    "SessionRecord",
    "StorageError",
    "DuplicateIdentifier",
    "EmailTaken",
    "AllocationExhausted",
]
