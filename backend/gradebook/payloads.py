"""
Request payload models for the gradebook handlers.

Why: Field presence and types are checked once, before the identity core is
consulted. A payload that fails validation becomes a 400 in the handler layer;
nothing downstream sees unconverted client input.

Missing fields and explicit nulls for required fields both count as missing
(`ERR_MISSING_ARGS`); anything present but malformed is `ERR_INVALID_ARGS`.
"""
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


def _strip_or_none(v):
    if isinstance(v, str):
        s = v.strip()
        return s or None
    return v


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


# --- Accounts ---------------------------------------------------------------------

class CreateUserPayload(_Payload):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=256)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v: str) -> str:
        v = v.strip()
        local, sep, domain = v.partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("email must look like name@domain.tld")
        return v


class AuthenticateUserPayload(_Payload):
    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=256)
    # retried logins carrying the same id get the live session back
    request_id: str | None = Field(default=None, max_length=128)


# --- Session-bound requests -------------------------------------------------------

class SessionPayload(_Payload):
    internal_id: str = Field(..., min_length=1, max_length=64)
    token: str = Field(..., min_length=1, max_length=256)


class ClassScopedPayload(SessionPayload):
    class_id: str = Field(..., min_length=1, max_length=64)


class CreateClassPayload(SessionPayload):
    class_name: str = Field(..., min_length=1, max_length=200)
    class_code: str | None = Field(default=None, max_length=32)
    color: int | None = None
    weight: float | None = Field(default=None, ge=0)

    @field_validator("class_code", mode="before")
    @classmethod
    def _normalize_code(cls, v):
        return _strip_or_none(v)


class ModifyClassPayload(CreateClassPayload):
    class_id: str = Field(..., min_length=1, max_length=64)


class ShareClassPayload(ClassScopedPayload):
    grantee_id: str = Field(..., min_length=1, max_length=64)


class CreateCategoryPayload(ClassScopedPayload):
    category_name: str = Field(..., min_length=1, max_length=200)
    drop_count: int = Field(default=0, ge=0)
    weight: float | None = Field(default=None, ge=0)

    @field_validator("drop_count", mode="before")
    @classmethod
    def _default_drop_count(cls, v):
        return 0 if v is None else v


class CreateGradePayload(ClassScopedPayload):
    grade_id: str = Field(..., min_length=1, max_length=16)
    min_score: float
    max_score: float | None = None
    credit: float | None = None

    @model_validator(mode="after")
    def _score_range(self):
        if self.max_score is not None and self.max_score < self.min_score:
            raise ValueError("max_score must not be below min_score")
        return self


class CreateAssignmentPayload(ClassScopedPayload):
    category_id: str = Field(..., min_length=1, max_length=64)
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=4000)
    grade_id: str | None = Field(default=None, max_length=16)
    act_score: float | None = None
    max_score: float | None = None
    weight: float | None = Field(default=None, ge=0)
    penalty: float | None = None
    assign_date: int | None = None
    due_date: int | None = None
    graded_date: int | None = None

    @field_validator("title", "description", "grade_id", mode="before")
    @classmethod
    def _normalize_text(cls, v):
        return _strip_or_none(v)

    def assignment_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"internal_id", "token", "class_id", "category_id"})


class CreateTermPayload(SessionPayload):
    term_name: str = Field(..., min_length=1, max_length=200)
    start_date: int | None = None
    end_date: int | None = None

    @model_validator(mode="after")
    def _date_order(self):
        if self.start_date is not None and self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class DeleteTermPayload(SessionPayload):
    term_id: str = Field(..., min_length=1, max_length=64)


def missing_fields(exc: ValidationError) -> List[str]:
    """Names of required fields that were absent or null."""
    names: List[str] = []
    for err in exc.errors():
        if err.get("type") == "missing" or ("input" in err and err["input"] is None and err.get("loc")):
            names.append(".".join(str(part) for part in err.get("loc", ())))
    return names


def invalid_fields(exc: ValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in err.get("loc", ())) or "body", "reason": err.get("msg", "")}
        for err in exc.errors()
    ]


__all__ = [
    "CreateUserPayload",
    "AuthenticateUserPayload",
    "SessionPayload",
    "ClassScopedPayload",
    "CreateClassPayload",
    "ModifyClassPayload",
    "ShareClassPayload",
    "CreateCategoryPayload",
    "CreateGradePayload",
    "CreateAssignmentPayload",
    "CreateTermPayload",
    "DeleteTermPayload",
    "missing_fields",
    "invalid_fields",
]
