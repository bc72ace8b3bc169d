"""
DBGradebookRepo against a scripted fake psycopg driver.

Checks the payload shape built from the class queries, numeric mapping,
and that unique violations on inserts surface as DuplicateIdentifier.
"""
from __future__ import annotations

from decimal import Decimal
import types

import pytest
from psycopg import OperationalError
from psycopg.errors import UniqueViolation

from gradebook import repo_db as mod
from identity_access.domain import ASSIGNMENTS_SCOPE, CLASSES_SCOPE, DuplicateIdentifier, StorageError, TERMS_SCOPE


class _ScriptedCursor:
    """Returns queued result sets in order; records every statement."""

    def __init__(self, state: dict):
        self._state = state
        self._rows: list = []

    def execute(self, sql, params=None):
        self._state["executed"].append((" ".join(sql.split()), params))
        error = self._state.get("raise")
        if error is not None:
            raise error
        self._rows = self._state["results"].pop(0) if self._state["results"] else []

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    def __init__(self, state: dict):
        self._state = state

    def cursor(self):
        return _ScriptedCursor(self._state)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def _install_fake_psycopg(monkeypatch: pytest.MonkeyPatch, *results, error=None) -> dict:
    state = {"results": list(results), "executed": [], "raise": error}

    def fake_connect(dsn: str, autocommit: bool | None = None):  # signature-compatible
        return _FakeConn(state)

    monkeypatch.setattr(mod, "psycopg", types.SimpleNamespace(connect=fake_connect))
    return state


def test_get_class_builds_gradebook_payload(monkeypatch: pytest.MonkeyPatch):
    _install_fake_psycopg(
        monkeypatch,
        [("Algebra", "MATH-1", 3, Decimal("1.50"))],
        [("cat1", "Homework", 1, Decimal("0.25")), ("cat2", "Exams", 0, None)],
        [("A", Decimal("90"), Decimal("100"), Decimal("4.0"))],
        [("as1", "cat1", "Worksheet 1", None, None, Decimal("9"), Decimal("10"), None, None, None, 1_700_100_000, None)],
    )
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    data = repo.get_class("class42")

    assert data == {
        "name": "Algebra",
        "code": "MATH-1",
        "color": 3,
        "weight": 1.5,
        "grade_scale": {"A": {"min_score": 90.0, "max_score": 100.0, "credit": 4.0}},
        "categories": {
            "cat1": {
                "category_name": "Homework",
                "drop_count": 1,
                "weight": 0.25,
                "assignments": {
                    "as1": {
                        "title": "Worksheet 1",
                        "description": None,
                        "grade_id": None,
                        "act_score": 9.0,
                        "max_score": 10.0,
                        "weight": None,
                        "penalty": None,
                        "assign_date": None,
                        "due_date": 1_700_100_000,
                        "graded_date": None,
                    }
                },
            },
            "cat2": {"category_name": "Exams", "drop_count": 0, "weight": None, "assignments": {}},
        },
    }
    assert list(data["categories"]) == ["cat1", "cat2"]


def test_get_class_returns_none_for_missing_row(monkeypatch: pytest.MonkeyPatch):
    state = _install_fake_psycopg(monkeypatch, [])
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    assert repo.get_class("missing") is None
    assert len(state["executed"]) == 1


def test_replace_class_is_an_upsert(monkeypatch: pytest.MonkeyPatch):
    state = _install_fake_psycopg(monkeypatch)
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    repo.replace_class("class42", class_name="Physics", class_code=None, color=None, weight=None)

    sql, params = state["executed"][0]
    assert "on conflict (class_id) do update" in sql
    assert params == ("class42", "Physics", None, None, None)


def test_insert_unique_violation_maps_to_duplicate(monkeypatch: pytest.MonkeyPatch):
    _install_fake_psycopg(monkeypatch, error=UniqueViolation("duplicate key"))
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    with pytest.raises(DuplicateIdentifier) as excinfo:
        repo.insert_class("class42", class_name="x", class_code=None, color=None, weight=None)
    assert excinfo.value.scope == CLASSES_SCOPE

    with pytest.raises(DuplicateIdentifier) as excinfo:
        repo.insert_term("t1", "u1", term_name="Fall", start_date=None, end_date=None)
    assert excinfo.value.scope == TERMS_SCOPE


def test_driver_errors_map_to_storage_error(monkeypatch: pytest.MonkeyPatch):
    _install_fake_psycopg(monkeypatch, error=OperationalError("server closed the connection"))
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    with pytest.raises(StorageError) as excinfo:
        repo.get_class("class42")
    assert excinfo.value.detail.startswith("OperationalError")
    with pytest.raises(StorageError):
        repo.delete_class("class42")


def test_delete_term_reports_whether_a_row_was_removed(monkeypatch: pytest.MonkeyPatch):
    state = _install_fake_psycopg(monkeypatch, [("t1",)], [])
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    assert repo.delete_term("t1", "u1") is True
    assert repo.delete_term("t1", "u2") is False
    assert state["executed"][1][1] == ("t1", "u2")


def test_insert_grade_reports_existing_label(monkeypatch: pytest.MonkeyPatch):
    state = _install_fake_psycopg(monkeypatch, [("A",)], [])
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    assert repo.insert_grade("class42", "A", min_score=90.0, max_score=None, credit=4.0) is True
    assert repo.insert_grade("class42", "A", min_score=85.0, max_score=None, credit=4.0) is False
    sql, params = state["executed"][0]
    assert "on conflict (class_id, grade_id) do nothing" in sql
    assert params == ("class42", "A", 90.0, None, 4.0)


def test_insert_assignment_checks_category_belongs_to_class(monkeypatch: pytest.MonkeyPatch):
    state = _install_fake_psycopg(monkeypatch, [("as1",)], [])
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    assert repo.insert_assignment("as1", "class42", "cat1", title="Quiz", due_date=1_700_100_000) is True
    assert repo.insert_assignment("as2", "class42", "foreign", title="Quiz") is False

    sql, params = state["executed"][0]
    assert "where exists (select 1 from public.categories where category_id = %s and class_id = %s)" in sql
    assert params[:4] == ("as1", "class42", "cat1", "Quiz")
    assert params[11] == 1_700_100_000
    assert params[-2:] == ("cat1", "class42")


def test_assignment_id_collision_maps_to_duplicate(monkeypatch: pytest.MonkeyPatch):
    _install_fake_psycopg(monkeypatch, error=UniqueViolation("duplicate key"))
    repo = mod.DBGradebookRepo(dsn="fake://dsn")

    with pytest.raises(DuplicateIdentifier) as excinfo:
        repo.insert_assignment("as1", "class42", "cat1")
    assert excinfo.value.scope == ASSIGNMENTS_SCOPE
