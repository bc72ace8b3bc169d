"""
Pytest configuration for backend tests.

Why: Make `identity_access` and `gradebook` importable from a plain checkout
and give every test a fresh in-memory identity core on a controllable clock,
so expiry can be asserted without sleeping.
"""
import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[1]
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(BACKEND_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

from identity_access.config import IdentityConfig  # noqa: E402
from identity_access.wiring import build_identity_core  # noqa: E402


class FakeClock:
    """Callable clock returning epoch seconds; tests move it forward explicitly."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


TEST_TTL_SECONDS = 3600


def memory_config(**overrides) -> IdentityConfig:
    values = dict(
        backend="memory",
        dsn=None,
        session_ttl_seconds=TEST_TTL_SECONDS,
        session_token_length=32,
        identifier_length=16,
        allocation_max_attempts=10,
    )
    values.update(overrides)
    return IdentityConfig(**values)


@pytest.fixture(autouse=True)
def _clear_identity_env(monkeypatch: pytest.MonkeyPatch):
    """Keep developer shells from leaking backend/DSN settings into tests."""
    for name in (
        "IDENTITY_BACKEND",
        "DATABASE_URL",
        "SUPABASE_DB_URL",
        "SESSION_TTL_SECONDS",
        "SESSION_TOKEN_LENGTH",
        "IDENTIFIER_LENGTH",
        "ID_ALLOCATION_MAX_ATTEMPTS",
        "GRADEBOOK_ENV",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def core(clock: FakeClock):
    return build_identity_core(memory_config(), clock=clock)
