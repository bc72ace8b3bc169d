"""
Postgres-backed gradebook repository (classes, categories, grade scales, assignments, terms).

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Returns plain dicts shaped like the gradebook payload.
- Authorization is not checked here. Handlers verify the session and the edit
  grant before calling in.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

import psycopg
from psycopg import Error as DatabaseError
from psycopg.errors import UniqueViolation

from identity_access.domain import (
    ASSIGNMENTS_SCOPE,
    CATEGORIES_SCOPE,
    CLASSES_SCOPE,
    DuplicateIdentifier,
    Scope,
    StorageError,
    TERMS_SCOPE,
)
from identity_access.stores_db import resolve_dsn


def _number(value: Any) -> Optional[float]:
    # numeric columns arrive as Decimal
    if value is None:
        return None
    if isinstance(value, Decimal):
        return float(value)
    return value


def _error(exc: Exception) -> StorageError:
    return StorageError(f"{exc.__class__.__name__}: {exc}")


class DBGradebookRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        self._dsn = resolve_dsn(dsn)

    def _insert(self, scope: Scope, sql: str, params: tuple, *, returning: bool = False) -> Optional[tuple]:
        row = None
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    if returning:
                        row = cur.fetchone()
        except UniqueViolation as exc:
            raise DuplicateIdentifier(scope) from exc
        except DatabaseError as exc:
            raise _error(exc) from exc
        return row

    # --- Classes ----------------------------------------------------------------
    def insert_class(self, class_id, *, class_name, class_code, color, weight) -> None:
        self._insert(
            CLASSES_SCOPE,
            "insert into public.classes (class_id, class_name, class_code, color, weight) values (%s, %s, %s, %s, %s)",
            (class_id, class_name, class_code, color, weight),
        )

    def replace_class(self, class_id, *, class_name, class_code, color, weight) -> None:
        self._insert(
            CLASSES_SCOPE,
            """
            insert into public.classes (class_id, class_name, class_code, color, weight)
            values (%s, %s, %s, %s, %s)
            on conflict (class_id) do update set class_name = excluded.class_name,
                class_code = excluded.class_code, color = excluded.color, weight = excluded.weight
            """,
            (class_id, class_name, class_code, color, weight),
        )

    def delete_class(self, class_id) -> None:
        # categories and grade_scales cascade on the class foreign key
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute("delete from public.classes where class_id = %s", (class_id,))
        except DatabaseError as exc:
            raise _error(exc) from exc

    def get_class(self, class_id) -> Optional[Dict[str, Any]]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "select class_name, class_code, color, weight from public.classes where class_id = %s",
                        (class_id,),
                    )
                    row = cur.fetchone()
                    if not row:
                        return None
                    cur.execute(
                        """
                        select category_id, category_name, drop_count, weight
                        from public.categories where class_id = %s
                        order by created_at asc, category_id
                        """,
                        (class_id,),
                    )
                    categories = cur.fetchall() or []
                    cur.execute(
                        """
                        select grade_id, min_score, max_score, credit
                        from public.grade_scales where class_id = %s
                        order by min_score desc, grade_id
                        """,
                        (class_id,),
                    )
                    grades = cur.fetchall() or []
                    cur.execute(
                        """
                        select assignment_id, category_id, title, description, grade_id,
                               act_score, max_score, weight, penalty,
                               extract(epoch from assign_date)::bigint,
                               extract(epoch from due_date)::bigint,
                               extract(epoch from graded_date)::bigint
                        from public.assignments where class_id = %s
                        order by created_at asc, assignment_id
                        """,
                        (class_id,),
                    )
                    assignments = cur.fetchall() or []
        except DatabaseError as exc:
            raise _error(exc) from exc
        by_category: Dict[str, Dict[str, Any]] = {}
        for a in assignments:
            by_category.setdefault(a[1], {})[a[0]] = {
                "title": a[2],
                "description": a[3],
                "grade_id": a[4],
                "act_score": _number(a[5]),
                "max_score": _number(a[6]),
                "weight": _number(a[7]),
                "penalty": _number(a[8]),
                "assign_date": a[9],
                "due_date": a[10],
                "graded_date": a[11],
            }
        return {
            "name": row[0],
            "code": row[1],
            "color": row[2],
            "weight": _number(row[3]),
            "grade_scale": {
                g[0]: {"min_score": _number(g[1]), "max_score": _number(g[2]), "credit": _number(g[3])}
                for g in grades
            },
            "categories": {
                c[0]: {
                    "category_name": c[1],
                    "drop_count": c[2],
                    "weight": _number(c[3]),
                    "assignments": by_category.get(c[0], {}),
                }
                for c in categories
            },
        }

    # --- Categories -------------------------------------------------------------
    def insert_category(self, category_id, class_id, *, category_name, drop_count, weight) -> None:
        self._insert(
            CATEGORIES_SCOPE,
            "insert into public.categories (category_id, class_id, category_name, drop_count, weight) "
            "values (%s, %s, %s, %s, %s)",
            (category_id, class_id, category_name, drop_count, weight),
        )

    # --- Grade scale ------------------------------------------------------------
    def insert_grade(self, class_id, grade_id, *, min_score, max_score, credit) -> bool:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        insert into public.grade_scales (class_id, grade_id, min_score, max_score, credit)
                        values (%s, %s, %s, %s, %s)
                        on conflict (class_id, grade_id) do nothing
                        returning grade_id
                        """,
                        (class_id, grade_id, min_score, max_score, credit),
                    )
                    row = cur.fetchone()
        except DatabaseError as exc:
            raise _error(exc) from exc
        return row is not None

    # --- Assignments ------------------------------------------------------------
    def insert_assignment(self, assignment_id, class_id, category_id, **fields) -> bool:
        # the category must belong to the class the caller was authorized for
        row = self._insert(
            ASSIGNMENTS_SCOPE,
            """
            insert into public.assignments (assignment_id, class_id, category_id, title, description,
                grade_id, act_score, max_score, weight, penalty, assign_date, due_date, graded_date)
            select %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                to_timestamp(%s), to_timestamp(%s), to_timestamp(%s)
            where exists (select 1 from public.categories where category_id = %s and class_id = %s)
            returning assignment_id
            """,
            (
                assignment_id,
                class_id,
                category_id,
                fields.get("title"),
                fields.get("description"),
                fields.get("grade_id"),
                fields.get("act_score"),
                fields.get("max_score"),
                fields.get("weight"),
                fields.get("penalty"),
                fields.get("assign_date"),
                fields.get("due_date"),
                fields.get("graded_date"),
                category_id,
                class_id,
            ),
            returning=True,
        )
        return row is not None

    # --- Terms ------------------------------------------------------------------
    def insert_term(self, term_id, internal_id, *, term_name, start_date, end_date) -> None:
        self._insert(
            TERMS_SCOPE,
            "insert into public.terms (term_id, internal_id, term_name, start_date, end_date) "
            "values (%s, %s, %s, to_timestamp(%s), to_timestamp(%s))",
            (term_id, internal_id, term_name, start_date, end_date),
        )

    def delete_term(self, term_id, internal_id) -> bool:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "delete from public.terms where term_id = %s and internal_id = %s returning term_id",
                        (term_id, internal_id),
                    )
                    row = cur.fetchone()
        except DatabaseError as exc:
            raise _error(exc) from exc
        return row is not None


__all__ = ["DBGradebookRepo"]
