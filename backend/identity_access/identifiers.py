"""
Collision-aware identifier allocation.

Why: Every row (accounts, sessions, classes, terms, ...) carries an opaque
random id. Randomness alone does not guarantee uniqueness, so each candidate is
checked against its (table, column) scope and regenerated on collision.

Behavior:
- The retry loop is bounded; running out of attempts raises
  `AllocationExhausted` instead of spinning forever.
- Checking and inserting are two round trips. Two callers can be handed the
  same candidate in between, so the column carries a unique constraint and
  `insert_with_unique_id` treats a constraint hit as "allocate again".
"""
from __future__ import annotations

from typing import Callable, Protocol, TypeVar
import logging
import secrets
import string

from .domain import AllocationExhausted, DuplicateIdentifier, Scope

ALPHABET = string.ascii_letters + string.digits
DEFAULT_MAX_ATTEMPTS = 10

_log = logging.getLogger("gradebook.identity_access")

T = TypeVar("T")


def generate_random_string(length: int) -> str:
    """Return `length` characters drawn uniformly from ALPHABET."""
    if length < 1:
        raise ValueError("length must be >= 1")
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


class UniquenessChecker(Protocol):
    def occurrences(self, scope: Scope, value: str) -> int:
        ...


class IdentifierAllocator:
    """Hand out identifiers that are unused in a scope at allocation time.

    Parameters
    ----------
    checker:
        Reports how many rows in a scope already hold a value.
    max_attempts:
        Upper bound on candidates tried per call (check and insert collisions
        share the budget).
    generator:
        Produces a candidate of a given length. Tests inject deterministic ones.
    """

    def __init__(
        self,
        checker: UniquenessChecker,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        generator: Callable[[int], str] = generate_random_string,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._checker = checker
        self._max_attempts = max_attempts
        self._generate = generator

    def allocate(self, scope: Scope, length: int) -> str:
        """Return a value with zero occurrences in `scope`.

        Raises `AllocationExhausted` after `max_attempts` collisions. Storage
        errors from the checker propagate unchanged.
        """
        value, _ = self._allocate(scope, length, self._max_attempts)
        return value

    def insert_with_unique_id(self, scope: Scope, length: int, insert: Callable[[str], T]) -> T:
        """Allocate a value and hand it to `insert`, retrying on constraint hits.

        `insert` must raise `DuplicateIdentifier` when the store rejects the
        value because a concurrent caller claimed it first. Any other error
        propagates.
        """
        remaining = self._max_attempts
        while remaining > 0:
            value, used = self._allocate(scope, length, remaining)
            remaining -= used
            try:
                return insert(value)
            except DuplicateIdentifier:
                _log.debug("insert collided in %s; allocating again", scope)
                continue
        _log.warning("identifier allocation exhausted for %s after %s attempts", scope, self._max_attempts)
        raise AllocationExhausted(scope, self._max_attempts)

    def _allocate(self, scope: Scope, length: int, budget: int) -> tuple[str, int]:
        for attempt in range(1, budget + 1):
            candidate = self._generate(length)
            if self._checker.occurrences(scope, candidate) == 0:
                return candidate, attempt
            _log.debug("candidate collided in %s (attempt %s)", scope, attempt)
        _log.warning("identifier allocation exhausted for %s after %s attempts", scope, self._max_attempts)
        raise AllocationExhausted(scope, self._max_attempts)


__all__ = [
    "ALPHABET",
    "DEFAULT_MAX_ATTEMPTS",
    "generate_random_string",
    "UniquenessChecker",
    "IdentifierAllocator",
]
