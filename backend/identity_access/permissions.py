"""
Per-class edit permissions.

Why: A valid session only proves who the caller is. Mutations on a class (and
everything scoped to it) additionally require an explicit grant row for
(internal_id, class_id). Ownership recorded anywhere else is never consulted.

Security: `check` answers `DENIED` both for unknown classes and for classes
that only other accounts may edit, so callers cannot learn whether a class exists.
"""
from __future__ import annotations

from typing import List, Optional, Protocol, Tuple
import logging

from .domain import EditPermission, StorageError

_log = logging.getLogger("gradebook.identity_access")


class PermissionBackend(Protocol):
    def add_grant(self, internal_id: str, class_id: str) -> None:
        ...

    def remove_grant(self, internal_id: str, class_id: str) -> None:
        ...

    def remove_grants_for_class(self, class_id: str) -> None:
        ...

    def has_grant(self, internal_id: str, class_id: str) -> bool:
        ...

    def list_grants(self, internal_id: str) -> List[str]:
        ...


class PermissionRegistry:
    def __init__(self, backend: PermissionBackend) -> None:
        self._backend = backend

    def grant(self, internal_id: str, class_id: str) -> None:
        """Allow `internal_id` to edit `class_id`. Granting twice is a no-op."""
        self._backend.add_grant(internal_id, class_id)

    def revoke(self, internal_id: str, class_id: str) -> None:
        """Remove the grant if present. Revoking a missing grant is a no-op."""
        self._backend.remove_grant(internal_id, class_id)

    def revoke_class(self, class_id: str) -> None:
        """Remove every grant on `class_id`; used when the class is deleted."""
        self._backend.remove_grants_for_class(class_id)

    def check(self, internal_id: str, class_id: str) -> EditPermission:
        result, _ = self.lookup(internal_id, class_id)
        return result

    def lookup(self, internal_id: str, class_id: str) -> Tuple[EditPermission, Optional[StorageError]]:
        try:
            allowed = self._backend.has_grant(internal_id, class_id)
        except StorageError as exc:
            _log.warning("permission lookup failed: %s", exc.__class__.__name__)
            return EditPermission.STORAGE_FAILURE, exc
        return (EditPermission.GRANTED if allowed else EditPermission.DENIED), None

    def list_classes_for(self, internal_id: str) -> List[str]:
        """Return the class ids `internal_id` holds grants for, oldest grant first.

        Read paths use this to restrict what a caller can see, so today a grant
        governs visibility as well as edit rights.
        """
        return self._backend.list_grants(internal_id)


__all__ = ["PermissionBackend", "PermissionRegistry"]
