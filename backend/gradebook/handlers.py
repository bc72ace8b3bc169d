"""
Gradebook request handlers on top of the identity core.

Why: Every session-bound handler follows the same gate before touching data:
  1. payload validated (400 `ERR_MISSING_ARGS` / `ERR_INVALID_ARGS`, core not consulted),
  2. session verified (401 per denial kind, 500 on storage faults),
  3. class-scoped mutations hold an edit grant (403, or 500 on storage faults),
  4. only then the read/write, minting new ids through the allocator.

`create_user` and `authenticate_user` stop after step 1; authentication is what
issues the session the other handlers verify.

Responses are `(status, body)` pairs; transport and serialization belong to
whatever adapter calls these handlers.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type, TypeVar
import logging

from pydantic import BaseModel, ValidationError

from identity_access.domain import (
    ASSIGNMENTS_SCOPE,
    AllocationExhausted,
    AuthResult,
    CATEGORIES_SCOPE,
    CLASSES_SCOPE,
    EditPermission,
    EmailTaken,
    Scope,
    StorageError,
    TERMS_SCOPE,
)
from identity_access.wiring import IdentityCore

from .payloads import (
    AuthenticateUserPayload,
    ClassScopedPayload,
    CreateAssignmentPayload,
    CreateCategoryPayload,
    CreateClassPayload,
    CreateGradePayload,
    CreateTermPayload,
    CreateUserPayload,
    DeleteTermPayload,
    ModifyClassPayload,
    SessionPayload,
    ShareClassPayload,
    invalid_fields,
    missing_fields,
)
from .repo import GradebookRepo

_log = logging.getLogger("gradebook.handlers")

Response = Tuple[int, Dict[str, Any]]
P = TypeVar("P", bound=BaseModel)


def _fail(status: int, error: str, message: str, details: Any = None) -> Response:
    body: Dict[str, Any] = {"success": False, "error": error, "message": message}
    if details is not None:
        body["details"] = details
    return status, body


def _ok(message: Optional[str] = None, **payload: Any) -> Response:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    body.update(payload)
    return 200, body


def missing_args(fields: Any = None) -> Response:
    return _fail(400, "ERR_MISSING_ARGS", "The request is missing required arguments.", fields)


def invalid_args(details: Any = None) -> Response:
    return _fail(400, "ERR_INVALID_ARGS", "The request contains invalid arguments.", details)


def storage_fault(error: Optional[Exception]) -> Response:
    detail = getattr(error, "detail", None) or (str(error) if error else None)
    return _fail(500, "DBG_ERR_SQL_QUERY", "Unable to perform query.", detail)


def auth_failure(result: AuthResult, error: Optional[StorageError] = None) -> Response:
    """Map a non-VALID verification outcome to its response."""
    if result is AuthResult.STORAGE_FAILURE:
        return storage_fault(error)
    elif result is AuthResult.NO_TOKEN_ISSUED:
        return _fail(401, "ERR_TOKEN_NOT_AVAILABLE", "A token has not been created for this user.")
    elif result is AuthResult.INVALID_TOKEN:
        return _fail(401, "ERR_INVALID_TOKEN", "The token is invalid.")
    elif result is AuthResult.TOKEN_EXPIRED:
        return _fail(401, "ERR_TOKEN_EXPIRED", "Token expired; please renew.")
    # Unknown outcome (or VALID passed here): a server bug, never a verdict.
    _log.error("unexpected verification outcome: %r", result)
    return _fail(500, "ERR_TOKEN_VERIFY", "Unable to verify token due to server-side malfunction.")


def permission_failure(result: EditPermission, error: Optional[StorageError] = None) -> Response:
    if result is EditPermission.STORAGE_FAILURE:
        return storage_fault(error)
    elif result is EditPermission.DENIED:
        return _fail(403, "ERR_EDIT_PERMISSION", "User does not have edit permissions for this class.")
    _log.error("unexpected permission outcome: %r", result)
    return _fail(500, "ERR_PERMISSION_VERIFY", "Unable to verify permissions due to server-side malfunction.")


def allocation_fault(exc: AllocationExhausted) -> Response:
    return _fail(500, "ERR_ID_ALLOCATION", "Unable to allocate a unique identifier.", str(exc))


def parse_payload(model: Type[P], body: Any) -> Tuple[Optional[P], Optional[Response]]:
    """Validate `body` against `model`; on failure return the 400 response instead."""
    try:
        return model.model_validate(body), None
    except ValidationError as exc:
        missing = missing_fields(exc)
        if missing:
            return None, missing_args(missing)
        return None, invalid_args(invalid_fields(exc))


class GradebookHandlers:
    def __init__(self, core: IdentityCore, repo: GradebookRepo) -> None:
        self._core = core
        self._repo = repo

    @property
    def core(self) -> IdentityCore:
        return self._core

    def _authorize(self, model: Type[P], body: Any, *, class_scoped: bool = False) -> Tuple[Optional[P], Optional[Response]]:
        """Validate, verify the session and (optionally) the edit grant.

        Returns the payload, or an error response when the request must stop.
        """
        payload, error = parse_payload(model, body)
        if error:
            return None, error
        result, storage_error = self._core.verifier.lookup(payload.internal_id, payload.token)
        if result is not AuthResult.VALID:
            return None, auth_failure(result, storage_error)
        if class_scoped:
            permission, storage_error = self._core.permissions.lookup(payload.internal_id, payload.class_id)
            if permission is not EditPermission.GRANTED:
                _log.info("edit denied id_tail=%s", payload.internal_id[-6:])
                return None, permission_failure(permission, storage_error)
        return payload, None

    def _new_id(self, scope: Scope, insert: Callable[[str], Any]) -> Any:
        return self._core.allocator.insert_with_unique_id(scope, self._core.identifier_length, insert)

    # --- Accounts and sessions ----------------------------------------------------
    def create_user(self, body: Mapping[str, Any]) -> Response:
        payload, error = parse_payload(CreateUserPayload, body)
        if error:
            return error
        try:
            internal_id = self._core.accounts.create_account(payload.email, payload.password)
        except EmailTaken:
            return _fail(409, "ERR_EMAIL_TAKEN", "An account with this email already exists.")
        except AllocationExhausted as exc:
            return allocation_fault(exc)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully created user.", internal_id=internal_id)

    def authenticate_user(self, body: Mapping[str, Any]) -> Response:
        """Check email and password; on success issue (or replay) the session token."""
        payload, error = parse_payload(AuthenticateUserPayload, body)
        if error:
            return error
        try:
            internal_id = self._core.accounts.authenticate(payload.email, payload.password)
            if internal_id is None:
                return _fail(401, "ERR_INVALID_CREDENTIALS", "The email or password is incorrect.")
            record = self._core.tokens.issue(internal_id, request_id=payload.request_id)
        except AllocationExhausted as exc:
            return allocation_fault(exc)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok(
            "Successfully authenticated.",
            internal_id=record.internal_id,
            token=record.token,
            expires_at=record.expires_at,
        )

    def logout(self, body: Mapping[str, Any]) -> Response:
        payload, denied = self._authorize(SessionPayload, body)
        if denied:
            return denied
        try:
            self._core.tokens.invalidate(payload.internal_id)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully logged out.")

    # --- Classes ----------------------------------------------------------------
    def get_classes(self, body: Mapping[str, Any]) -> Response:
        """Return the caller's gradebook: every class it holds a grant for, in grant order."""
        payload, denied = self._authorize(SessionPayload, body)
        if denied:
            return denied
        gradebook: Dict[str, Dict[str, Any]] = {"classes": {}}
        try:
            class_ids = self._core.permissions.list_classes_for(payload.internal_id)
            for class_id in class_ids:
                data = self._repo.get_class(class_id)
                if data is None:
                    # grant outlived its class; nothing to show
                    continue
                gradebook["classes"][class_id] = data
        except StorageError as exc:
            return storage_fault(exc)
        return _ok(gradebook=gradebook)

    def create_class(self, body: Mapping[str, Any]) -> Response:
        payload, denied = self._authorize(CreateClassPayload, body)
        if denied:
            return denied

        def _insert(candidate: str) -> str:
            self._repo.insert_class(
                candidate,
                class_name=payload.class_name,
                class_code=payload.class_code,
                color=payload.color,
                weight=payload.weight,
            )
            return candidate

        try:
            class_id = self._new_id(CLASSES_SCOPE, _insert)
        except AllocationExhausted as exc:
            return allocation_fault(exc)
        except StorageError as exc:
            return storage_fault(exc)
        try:
            self._core.permissions.grant(payload.internal_id, class_id)
        except StorageError as exc:
            # without the creator's grant the class is unreachable; undo it
            _log.warning("creator grant failed; removing class: %s", exc.__class__.__name__)
            try:
                self._repo.delete_class(class_id)
            except StorageError:
                _log.exception("orphaned class could not be removed")
            return storage_fault(exc)
        return _ok("Successfully created class.", class_id=class_id)

    def modify_class(self, body: Mapping[str, Any]) -> Response:
        """Replace the class row wholesale; omitted optional fields are cleared."""
        payload, denied = self._authorize(ModifyClassPayload, body, class_scoped=True)
        if denied:
            return denied
        try:
            self._repo.replace_class(
                payload.class_id,
                class_name=payload.class_name,
                class_code=payload.class_code,
                color=payload.color,
                weight=payload.weight,
            )
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully modified class.")

    def delete_class(self, body: Mapping[str, Any]) -> Response:
        payload, denied = self._authorize(ClassScopedPayload, body, class_scoped=True)
        if denied:
            return denied
        try:
            # revoke before delete so no grant outlives its class
            self._core.permissions.revoke_class(payload.class_id)
            self._repo.delete_class(payload.class_id)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully deleted class.")

    def share_class(self, body: Mapping[str, Any]) -> Response:
        """Grant edit rights on a class to another account (caller needs a grant too)."""
        payload, denied = self._authorize(ShareClassPayload, body, class_scoped=True)
        if denied:
            return denied
        try:
            self._core.permissions.grant(payload.grantee_id, payload.class_id)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully shared class.")

    def unshare_class(self, body: Mapping[str, Any]) -> Response:
        payload, denied = self._authorize(ShareClassPayload, body, class_scoped=True)
        if denied:
            return denied
        try:
            self._core.permissions.revoke(payload.grantee_id, payload.class_id)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully revoked access to class.")

    # --- Categories, grades, assignments --------------------------------------------
    def create_category(self, body: Mapping[str, Any]) -> Response:
        payload, denied = self._authorize(CreateCategoryPayload, body, class_scoped=True)
        if denied:
            return denied

        def _insert(candidate: str) -> str:
            self._repo.insert_category(
                candidate,
                payload.class_id,
                category_name=payload.category_name,
                drop_count=payload.drop_count,
                weight=payload.weight,
            )
            return candidate

        try:
            category_id = self._new_id(CATEGORIES_SCOPE, _insert)
        except AllocationExhausted as exc:
            return allocation_fault(exc)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully created category.", category_id=category_id)

    def create_grade(self, body: Mapping[str, Any]) -> Response:
        """Add a grade to the class's scale; grade ids are chosen by the client."""
        payload, denied = self._authorize(CreateGradePayload, body, class_scoped=True)
        if denied:
            return denied
        try:
            created = self._repo.insert_grade(
                payload.class_id,
                payload.grade_id,
                min_score=payload.min_score,
                max_score=payload.max_score,
                credit=payload.credit,
            )
        except StorageError as exc:
            return storage_fault(exc)
        if not created:
            return _fail(409, "ERR_GRADE_EXISTS", "The class already defines this grade.")
        return _ok("Successfully created grade.", grade_id=payload.grade_id)

    def create_assignment(self, body: Mapping[str, Any]) -> Response:
        payload, denied = self._authorize(CreateAssignmentPayload, body, class_scoped=True)
        if denied:
            return denied
        fields = payload.assignment_fields()

        def _insert(candidate: str) -> Optional[str]:
            if self._repo.insert_assignment(candidate, payload.class_id, payload.category_id, **fields):
                return candidate
            return None

        try:
            assignment_id = self._new_id(ASSIGNMENTS_SCOPE, _insert)
        except AllocationExhausted as exc:
            return allocation_fault(exc)
        except StorageError as exc:
            return storage_fault(exc)
        if assignment_id is None:
            return _fail(404, "ERR_CATEGORY_NOT_FOUND", "The category does not belong to this class.")
        return _ok("Successfully created assignment.", assignment_id=assignment_id)

    # --- Terms ------------------------------------------------------------------
    def create_term(self, body: Mapping[str, Any]) -> Response:
        payload, denied = self._authorize(CreateTermPayload, body)
        if denied:
            return denied

        def _insert(candidate: str) -> str:
            self._repo.insert_term(
                candidate,
                payload.internal_id,
                term_name=payload.term_name,
                start_date=payload.start_date,
                end_date=payload.end_date,
            )
            return candidate

        try:
            term_id = self._new_id(TERMS_SCOPE, _insert)
        except AllocationExhausted as exc:
            return allocation_fault(exc)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully created term.", term_id=term_id)

    def delete_term(self, body: Mapping[str, Any]) -> Response:
        """Delete a term owned by the caller.

        Terms belong to an account rather than a class, so ownership is part of
        the delete filter instead of an edit-grant lookup. Deleting a term the
        caller does not own is a silent no-op.
        """
        payload, denied = self._authorize(DeleteTermPayload, body)
        if denied:
            return denied
        try:
            self._repo.delete_term(payload.term_id, payload.internal_id)
        except StorageError as exc:
            return storage_fault(exc)
        return _ok("Successfully deleted term.")


__all__ = [
    "Response",
    "missing_args",
    "invalid_args",
    "storage_fault",
    "auth_failure",
    "permission_failure",
    "allocation_fault",
    "parse_payload",
    "GradebookHandlers",
]
