"""
Configuration for the lesson parts backend.

Intent:
    Single place for the environment variables the parts store reads. Values
    are resolved at call time so tests can monkeypatch the environment without
    reloading modules.

Behavior:
    - get_database_dsn(): LESSONS_DATABASE_URL → DATABASE_URL → local dev DSN.
      Prod-like environments never fall back to the dev DSN.
    - get_store_backend(): "db" (default) or "memory".
    - get_title_max_length(): clamped to the 200 character contract maximum.
    - ensure_secure_config_on_startup(): refuses obviously insecure prod DSNs.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os
from typing import Optional


TITLE_MAX_LENGTH_DEFAULT = 200
STORE_BACKENDS = ("db", "memory")


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def get_environment() -> str:
    return (os.getenv("LESSONS_ENV") or "dev").strip().lower()


def _default_dev_dsn() -> str:
    host = os.getenv("TEST_DB_HOST", "127.0.0.1")
    port = os.getenv("TEST_DB_PORT", "54322")
    return f"postgresql://postgres:postgres@{host}:{port}/postgres"


def get_database_dsn() -> str:
    """Resolve the DSN for the parts store.

    Env:
        LESSONS_DATABASE_URL, DATABASE_URL – explicit DSNs, first one wins.
        TEST_DB_HOST / TEST_DB_PORT – host/port of the local dev fallback.
    """
    for name in ("LESSONS_DATABASE_URL", "DATABASE_URL"):
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    if _is_prod_like(get_environment()):
        raise RuntimeError("LESSONS_DATABASE_URL must be set in production environments")
    return _default_dev_dsn()


def get_store_backend() -> str:
    """Return the configured store backend ("db" or "memory")."""
    backend = (os.getenv("LESSONS_STORE_BACKEND") or "db").strip().lower()
    if backend not in STORE_BACKENDS:
        raise RuntimeError(f"Unsupported LESSONS_STORE_BACKEND: {backend!r}")
    return backend


def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_title_max_length() -> int:
    """Maximum part title length (default/clamped 200 characters)."""
    return _parse_int_env(
        "LESSONS_TITLE_MAX_LENGTH",
        TITLE_MAX_LENGTH_DEFAULT,
        contract_max=TITLE_MAX_LENGTH_DEFAULT,
    )


def ensure_secure_config_on_startup(dsn: Optional[str] = None) -> None:
    """Fail fast on insecure production configuration.

    Development remains permissive. In prod-like environments the DSN (an
    explicit `dsn` wins over env) must be set and must not disable TLS.
    """
    if not _is_prod_like(get_environment()):
        return
    dsn = (dsn or os.getenv("LESSONS_DATABASE_URL") or os.getenv("DATABASE_URL") or "").strip()
    if not dsn:
        raise SystemExit("Refusing to start: LESSONS_DATABASE_URL is unset in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: database DSN contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )


__all__ = [
    "TITLE_MAX_LENGTH_DEFAULT",
    "STORE_BACKENDS",
    "get_environment",
    "get_database_dsn",
    "get_store_backend",
    "get_title_max_length",
    "ensure_secure_config_on_startup",
]
