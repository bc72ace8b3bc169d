"""
Gradebook repository port and its in-memory implementation.

The in-memory repo shares the identity core's `UniqueIndex`, so ids minted by
the allocator are claimed in the same place the allocator checks.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Protocol
import threading

from identity_access.domain import ASSIGNMENTS_SCOPE, CATEGORIES_SCOPE, CLASSES_SCOPE, TERMS_SCOPE
from identity_access.stores import UniqueIndex


class GradebookRepo(Protocol):
    def insert_class(self, class_id: str, *, class_name: str, class_code: Optional[str], color: Optional[int], weight: Optional[float]) -> None:
        ...

    def replace_class(self, class_id: str, *, class_name: str, class_code: Optional[str], color: Optional[int], weight: Optional[float]) -> None:
        """Overwrite the class row, creating it when missing."""
        ...

    def delete_class(self, class_id: str) -> None:
        ...

    def get_class(self, class_id: str) -> Optional[Dict[str, Any]]:
        ...

    def insert_category(self, category_id: str, class_id: str, *, category_name: str, drop_count: int, weight: Optional[float]) -> None:
        ...

    def insert_grade(self, class_id: str, grade_id: str, *, min_score: float, max_score: Optional[float], credit: Optional[float]) -> bool:
        """Add a grade to the class scale; False when the class already defines `grade_id`."""
        ...

    def insert_assignment(self, assignment_id: str, class_id: str, category_id: str, **fields: Any) -> bool:
        """Add an assignment; False when `category_id` is not a category of `class_id`."""
        ...

    def insert_term(self, term_id: str, internal_id: str, *, term_name: Optional[str], start_date: Optional[int], end_date: Optional[int]) -> None:
        ...

    def delete_term(self, term_id: str, internal_id: str) -> bool:
        ...


class InMemoryGradebookRepo:
    def __init__(self, index: UniqueIndex) -> None:
        self._index = index
        self._lock = threading.Lock()
        self._classes: Dict[str, Dict[str, Any]] = {}
        self._grades: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._categories: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._assignments: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._terms: Dict[str, Dict[str, Any]] = {}

    def insert_class(self, class_id, *, class_name, class_code, color, weight) -> None:
        with self._lock:
            self._index.claim(CLASSES_SCOPE, class_id)
            self._classes[class_id] = {
                "name": class_name,
                "code": class_code,
                "color": color,
                "weight": weight,
            }

    def replace_class(self, class_id, *, class_name, class_code, color, weight) -> None:
        with self._lock:
            if class_id not in self._classes:
                self._index.claim(CLASSES_SCOPE, class_id)
            self._classes[class_id] = {
                "name": class_name,
                "code": class_code,
                "color": color,
                "weight": weight,
            }

    def delete_class(self, class_id) -> None:
        with self._lock:
            if self._classes.pop(class_id, None) is not None:
                self._index.release(CLASSES_SCOPE, class_id)
            self._grades.pop(class_id, None)
            for category_id in self._categories.pop(class_id, {}):
                self._index.release(CATEGORIES_SCOPE, category_id)
                for assignment_id in self._assignments.pop(category_id, {}):
                    self._index.release(ASSIGNMENTS_SCOPE, assignment_id)

    def get_class(self, class_id) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._classes.get(class_id)
            if row is None:
                return None
            categories = self._categories.get(class_id, {})
            return {
                **row,
                "grade_scale": {gid: dict(g) for gid, g in self._grades.get(class_id, {}).items()},
                "categories": {
                    cid: {
                        **c,
                        "assignments": {aid: dict(a) for aid, a in self._assignments.get(cid, {}).items()},
                    }
                    for cid, c in categories.items()
                },
            }

    def insert_category(self, category_id, class_id, *, category_name, drop_count, weight) -> None:
        with self._lock:
            self._index.claim(CATEGORIES_SCOPE, category_id)
            self._categories.setdefault(class_id, {})[category_id] = {
                "category_name": category_name,
                "drop_count": drop_count,
                "weight": weight,
            }

    def insert_grade(self, class_id, grade_id, *, min_score, max_score, credit) -> bool:
        with self._lock:
            scale = self._grades.setdefault(class_id, {})
            if grade_id in scale:
                return False
            scale[grade_id] = {"min_score": min_score, "max_score": max_score, "credit": credit}
            return True

    def insert_assignment(self, assignment_id, class_id, category_id, **fields) -> bool:
        with self._lock:
            if category_id not in self._categories.get(class_id, {}):
                return False
            self._index.claim(ASSIGNMENTS_SCOPE, assignment_id)
            self._assignments.setdefault(category_id, {})[assignment_id] = dict(fields)
            return True

    def insert_term(self, term_id, internal_id, *, term_name, start_date, end_date) -> None:
        with self._lock:
            self._index.claim(TERMS_SCOPE, term_id)
            self._terms[term_id] = {
                "internal_id": internal_id,
                "term_name": term_name,
                "start_date": start_date,
                "end_date": end_date,
            }

    def delete_term(self, term_id, internal_id) -> bool:
        with self._lock:
            term = self._terms.get(term_id)
            if term is None or term["internal_id"] != internal_id:
                return False
            del self._terms[term_id]
            self._index.release(TERMS_SCOPE, term_id)
            return True

    def has_term(self, term_id: str) -> bool:
        with self._lock:
            return term_id in self._terms


__all__ = ["GradebookRepo", "InMemoryGradebookRepo"]
