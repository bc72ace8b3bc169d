"""
IdentifierAllocator: bounded regenerate-until-unique and the allocate/insert race.

Focus: a returned identifier never duplicates a value still held in its scope,
even when concurrent callers check before either inserts.
"""
from __future__ import annotations

import itertools
import threading

import pytest

from identity_access.domain import (
    AllocationExhausted,
    CLASSES_SCOPE,
    DuplicateIdentifier,
    Scope,
    StorageError,
)
from identity_access.identifiers import ALPHABET, IdentifierAllocator, generate_random_string
from identity_access.stores import UniqueIndex


class _TakenChecker:
    """Reports a fixed set of values as already present."""

    def __init__(self, taken):
        self.taken = set(taken)
        self.calls = 0

    def occurrences(self, scope, value):
        self.calls += 1
        return 1 if value in self.taken else 0


def _sequence(*values):
    it = iter(values)
    return lambda length: next(it)


def test_random_string_has_requested_length_and_alphabet():
    value = generate_random_string(24)
    assert len(value) == 24
    assert set(value) <= set(ALPHABET)


def test_random_string_rejects_non_positive_length():
    with pytest.raises(ValueError):
        generate_random_string(0)


def test_allocate_skips_values_already_in_scope():
    checker = _TakenChecker({"AAAA", "BBBB"})
    allocator = IdentifierAllocator(checker, generator=_sequence("AAAA", "BBBB", "CCCC"))

    assert allocator.allocate(CLASSES_SCOPE, 4) == "CCCC"
    assert checker.calls == 3


def test_allocate_gives_up_after_max_attempts():
    checker = _TakenChecker({"AAAA"})
    generated = []

    def gen(length):
        generated.append("AAAA")
        return "AAAA"

    allocator = IdentifierAllocator(checker, max_attempts=5, generator=gen)
    with pytest.raises(AllocationExhausted) as excinfo:
        allocator.allocate(CLASSES_SCOPE, 4)

    assert len(generated) == 5
    assert excinfo.value.scope == CLASSES_SCOPE
    assert excinfo.value.attempts == 5


def test_allocate_propagates_storage_errors():
    class _Broken:
        def occurrences(self, scope, value):
            raise StorageError("connection refused")

    allocator = IdentifierAllocator(_Broken())
    with pytest.raises(StorageError):
        allocator.allocate(CLASSES_SCOPE, 8)


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        IdentifierAllocator(UniqueIndex(), max_attempts=0)


def test_scope_rejects_unsafe_names():
    with pytest.raises(ValueError):
        Scope("classes; drop table x", "class_id")
    with pytest.raises(ValueError):
        Scope("classes", "class id")
    assert str(Scope("public.classes", "class_id")) == "public.classes.class_id"


def test_insert_collision_triggers_reallocation():
    """A stale uniqueness read is caught by the constraint and retried."""
    index = UniqueIndex()

    class _StaleChecker:
        def occurrences(self, scope, value):
            return 0

    allocator = IdentifierAllocator(_StaleChecker(), generator=_sequence("dup", "dup", "fresh"))

    def insert(candidate):
        index.claim(CLASSES_SCOPE, candidate)
        return candidate

    first = allocator.insert_with_unique_id(CLASSES_SCOPE, 3, insert)
    second = allocator.insert_with_unique_id(CLASSES_SCOPE, 3, insert)

    assert (first, second) == ("dup", "fresh")


def test_insert_collisions_share_the_retry_budget():
    allocator = IdentifierAllocator(UniqueIndex(), max_attempts=3)
    calls = []

    def insert(candidate):
        calls.append(candidate)
        raise DuplicateIdentifier(CLASSES_SCOPE)

    with pytest.raises(AllocationExhausted):
        allocator.insert_with_unique_id(CLASSES_SCOPE, 8, insert)
    assert len(calls) == 3


def test_insert_errors_other_than_duplicates_propagate():
    allocator = IdentifierAllocator(UniqueIndex())

    def insert(candidate):
        raise StorageError("disk full")

    with pytest.raises(StorageError):
        allocator.insert_with_unique_id(CLASSES_SCOPE, 8, insert)


def test_concurrent_allocation_never_double_inserts():
    """Many threads racing on a tiny id space: every successful insert is distinct."""
    index = UniqueIndex()
    scope = Scope("terms", "term_id")
    # length 2 gives 3844 values, so collisions happen constantly
    allocator = IdentifierAllocator(index, max_attempts=60)
    results: list[str] = []
    results_lock = threading.Lock()
    errors: list[BaseException] = []
    start = threading.Barrier(8)

    def insert(candidate):
        index.claim(scope, candidate)
        return candidate

    def worker():
        start.wait()
        try:
            for _ in range(100):
                value = allocator.insert_with_unique_id(scope, 2, insert)
                with results_lock:
                    results.append(value)
        except BaseException as exc:  # surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(results) == 800
    assert len(set(results)) == 800
    assert all(index.occurrences(scope, v) == 1 for v in results)


def test_concurrent_callers_handed_the_same_candidate_both_succeed_distinctly():
    """Both threads check before either inserts; the loser retries instead of failing."""
    index = UniqueIndex()
    candidates = itertools.chain(["same", "same"], (f"id{n}" for n in itertools.count()))
    gen_lock = threading.Lock()
    checked = threading.Barrier(2)

    def gen(length):
        with gen_lock:
            return next(candidates)

    class _RacyChecker:
        def occurrences(self, scope, value):
            count = index.occurrences(scope, value)
            if value == "same":
                # hold both callers between check and insert
                checked.wait(timeout=5)
            return count

    allocator = IdentifierAllocator(_RacyChecker(), generator=gen)
    out: list[str] = []

    def insert(candidate):
        index.claim(CLASSES_SCOPE, candidate)
        return candidate

    def worker():
        out.append(allocator.insert_with_unique_id(CLASSES_SCOPE, 4, insert))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(out) == ["id0", "same"]
