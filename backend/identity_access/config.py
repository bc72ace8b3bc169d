"""
Configuration for the identity core.

Intent:
    Read every knob of the identity core (backend selection, session lifetime,
    token/id lengths, allocation retry budget) in one place and validate it
    eagerly, so a bad value aborts startup instead of surfacing mid-request.

Behavior:
    - `backend/.env` is loaded when present; real environment variables win.
    - Out-of-range or non-integer values raise `ValueError` naming the variable.
    - `ensure_secure_config_on_startup()` refuses unsafe settings in prod-like
      environments (`GRADEBOOK_ENV`).
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os

from dotenv import load_dotenv

_DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"

BACKENDS = frozenset({"memory", "db"})


@dataclass(frozen=True)
class IdentityConfig:
    backend: str  # "memory" | "db"
    dsn: Optional[str]
    session_ttl_seconds: int
    session_token_length: int
    identifier_length: int
    allocation_max_attempts: int


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < minimum or value > maximum:
        raise ValueError(f"{name} out of range ({minimum}..{maximum}), got: {value}")
    return value


def load_identity_config(*, load_env_file: bool = True) -> IdentityConfig:
    if load_env_file and _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=False)

    backend = (os.getenv("IDENTITY_BACKEND") or "memory").strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"IDENTITY_BACKEND must be one of {sorted(BACKENDS)}, got: {backend!r}")
    dsn = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL") or None
    if backend == "db" and not dsn:
        raise ValueError("IDENTITY_BACKEND=db requires DATABASE_URL or SUPABASE_DB_URL")

    return IdentityConfig(
        backend=backend,
        dsn=dsn,
        session_ttl_seconds=_int_env("SESSION_TTL_SECONDS", 86400, minimum=60, maximum=31536000),
        session_token_length=_int_env("SESSION_TOKEN_LENGTH", 32, minimum=16, maximum=128),
        identifier_length=_int_env("IDENTIFIER_LENGTH", 16, minimum=8, maximum=64),
        allocation_max_attempts=_int_env("ID_ALLOCATION_MAX_ATTEMPTS", 10, minimum=1, maximum=100),
    )


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in {"prod", "production", "stage", "staging"}


def ensure_secure_config_on_startup(config: IdentityConfig) -> None:
    """Fail fast on unsafe production configuration.

    Checks (prod/stage only):
    - Sessions must live in the database, not in process memory.
    - DATABASE_URL must not explicitly disable TLS.
    """
    if not _is_prod_like(os.getenv("GRADEBOOK_ENV", "dev")):
        return
    if config.backend != "db":
        raise SystemExit("Refusing to start: IDENTITY_BACKEND must be 'db' in production/staging.")
    if config.dsn and "sslmode=disable" in config.dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require."
        )


__all__ = ["IdentityConfig", "load_identity_config", "ensure_secure_config_on_startup"]
