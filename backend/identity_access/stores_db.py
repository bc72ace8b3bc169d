"""
Database-backed identity store for production use (Postgres).

Why: Sessions and grants must survive restarts and be shared by every worker
process. The relational store is the system of record; all serialization is
left to its constraints and single-statement atomicity.

Behavior:
- Short-lived connection per call, like the other psycopg repos.
- `put_session` is a single upsert, so concurrent issuance for one account
  resolves as last-write-wins without partially written rows.
- A unique-constraint violation on an id is reported as `DuplicateIdentifier`
  so the allocator can retry; one on `accounts.email` is `EmailTaken`. Every
  other driver error becomes `StorageError`.

Security: Table and column names come from validated `Scope` objects and a
validated schema name; values are always passed as parameters.
"""
from __future__ import annotations

from typing import List, Optional, Tuple
import logging
import os

import psycopg
from psycopg import Error as DatabaseError
from psycopg.errors import UniqueViolation

from .domain import (
    ACCOUNTS_SCOPE,
    DuplicateIdentifier,
    EmailTaken,
    SESSIONS_SCOPE,
    Scope,
    SessionRecord,
    StorageError,
    is_valid_identifier,
)

_log = logging.getLogger("gradebook.storage")

# named in migrations/0001_identity_core.sql
EMAIL_CONSTRAINT = "accounts_email_key"


def resolve_dsn(dsn: Optional[str] = None) -> str:
    value = dsn or os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL", "")
    if not value:
        raise RuntimeError("No database DSN provided for DBIdentityStore")
    return value


def _storage_error(exc: Exception) -> StorageError:
    _log.warning("identity store query failed: %s", exc.__class__.__name__)
    return StorageError(f"{exc.__class__.__name__}: {exc}")


class DBIdentityStore:
    """Postgres-backed accounts, sessions and edit grants.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Falls back to `DATABASE_URL` or
        `SUPABASE_DB_URL`.
    schema:
        Schema holding the identity tables. Defaults to `public`.
    """

    def __init__(self, dsn: str | None = None, *, schema: str = "public") -> None:
        self._dsn = resolve_dsn(dsn)
        if not is_valid_identifier(schema):
            raise ValueError("Invalid schema name")
        self._schema = schema

    def _table(self, name: str) -> str:
        return name if "." in name else f"{self._schema}.{name}"

    # --- Uniqueness -----------------------------------------------------------
    def occurrences(self, scope: Scope, value: str) -> int:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"select count(*) from {self._table(scope.table)} where {scope.column} = %s",
                        (value,),
                    )
                    row = cur.fetchone()
        except DatabaseError as exc:
            raise _storage_error(exc) from exc
        return int(row[0]) if row else 0

    # --- Accounts -------------------------------------------------------------
    def create_account(self, internal_id: str, email: Optional[str] = None, password_hash: Optional[str] = None) -> str:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"insert into {self._table(ACCOUNTS_SCOPE.table)} (internal_id, email, password_hash) "
                        "values (%s, %s, %s)",
                        (internal_id, email, password_hash),
                    )
        except UniqueViolation as exc:
            if getattr(exc.diag, "constraint_name", None) == EMAIL_CONSTRAINT:
                raise EmailTaken(email or "") from exc
            raise DuplicateIdentifier(ACCOUNTS_SCOPE) from exc
        except DatabaseError as exc:
            raise _storage_error(exc) from exc
        return internal_id

    def get_credentials(self, email: str) -> Optional[Tuple[str, Optional[str]]]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"select internal_id, password_hash from {self._table(ACCOUNTS_SCOPE.table)} where email = %s",
                        (email,),
                    )
                    row = cur.fetchone()
        except DatabaseError as exc:
            raise _storage_error(exc) from exc
        if not row:
            return None
        return row[0], row[1]

    # --- Sessions -------------------------------------------------------------
    def get_session(self, internal_id: str) -> Optional[SessionRecord]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "select internal_id, token, extract(epoch from issued_at)::bigint, "
                        "extract(epoch from expires_at)::bigint, request_id "
                        f"from {self._table(SESSIONS_SCOPE.table)} where internal_id = %s",
                        (internal_id,),
                    )
                    row = cur.fetchone()
        except DatabaseError as exc:
            raise _storage_error(exc) from exc
        if not row:
            return None
        return SessionRecord(
            internal_id=row[0],
            token=row[1],
            issued_at=int(row[2]),
            expires_at=int(row[3]),
            request_id=row[4],
        )

    def put_session(self, record: SessionRecord) -> None:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"insert into {self._table(SESSIONS_SCOPE.table)} "
                        "(internal_id, token, issued_at, expires_at, request_id) "
                        "values (%s, %s, to_timestamp(%s), to_timestamp(%s), %s) "
                        "on conflict (internal_id) do update set token = excluded.token, "
                        "issued_at = excluded.issued_at, expires_at = excluded.expires_at, "
                        "request_id = excluded.request_id",
                        (record.internal_id, record.token, record.issued_at, record.expires_at, record.request_id),
                    )
        except UniqueViolation as exc:
            raise DuplicateIdentifier(SESSIONS_SCOPE) from exc
        except DatabaseError as exc:
            raise _storage_error(exc) from exc

    def delete_session(self, internal_id: str) -> None:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"delete from {self._table(SESSIONS_SCOPE.table)} where internal_id = %s",
                        (internal_id,),
                    )
        except DatabaseError as exc:
            raise _storage_error(exc) from exc

    # --- Edit grants ----------------------------------------------------------
    def add_grant(self, internal_id: str, class_id: str) -> None:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"insert into {self._table('edit_permissions')} (internal_id, class_id) "
                        "values (%s, %s) on conflict do nothing",
                        (internal_id, class_id),
                    )
        except DatabaseError as exc:
            raise _storage_error(exc) from exc

    def remove_grant(self, internal_id: str, class_id: str) -> None:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"delete from {self._table('edit_permissions')} where internal_id = %s and class_id = %s",
                        (internal_id, class_id),
                    )
        except DatabaseError as exc:
            raise _storage_error(exc) from exc

    def remove_grants_for_class(self, class_id: str) -> None:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"delete from {self._table('edit_permissions')} where class_id = %s",
                        (class_id,),
                    )
        except DatabaseError as exc:
            raise _storage_error(exc) from exc

    def has_grant(self, internal_id: str, class_id: str) -> bool:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"select exists (select 1 from {self._table('edit_permissions')} "
                        "where internal_id = %s and class_id = %s)",
                        (internal_id, class_id),
                    )
                    row = cur.fetchone()
        except DatabaseError as exc:
            raise _storage_error(exc) from exc
        return bool(row and row[0])

    def list_grants(self, internal_id: str) -> List[str]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"select class_id from {self._table('edit_permissions')} "
                        "where internal_id = %s order by created_at asc, class_id",
                        (internal_id,),
                    )
                    rows = cur.fetchall() or []
        except DatabaseError as exc:
            raise _storage_error(exc) from exc
        return [r[0] for r in rows]


__all__ = ["DBIdentityStore", "resolve_dsn"]
