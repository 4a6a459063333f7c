"""
Wiring helpers for the parts service.

Why:
    Callers (request handlers, maintenance tools) obtain the service the same
    way. The store is chosen by `LESSONS_STORE_BACKEND` and built lazily so
    importing this module never touches the database.

Tests can call `set_store` to swap in an isolated store.
"""
from __future__ import annotations

import logging
from typing import Optional

from lessons.config import ensure_secure_config_on_startup, get_store_backend
from lessons.repo_memory import InMemoryPartStore
from lessons.services.parts import PartStoreProtocol, PartsService

logger = logging.getLogger("lessons.wiring")

_STORE: Optional[PartStoreProtocol] = None


def build_default_store(dsn: Optional[str] = None) -> PartStoreProtocol:
    """Build the store selected by configuration."""
    backend = get_store_backend()
    if backend == "memory":
        logger.info("Parts store wired: in-memory")
        return InMemoryPartStore()
    ensure_secure_config_on_startup(dsn)
    from lessons.repo_db import DBPartStore

    store = DBPartStore(dsn=dsn)
    logger.info("Parts store wired: Postgres")
    return store


def get_store() -> PartStoreProtocol:
    global _STORE
    if _STORE is None:
        _STORE = build_default_store()
    return _STORE


def set_store(store: Optional[PartStoreProtocol]) -> None:
    """Allow tests to swap the parts store implementation (None resets)."""
    global _STORE
    _STORE = store


def get_parts_service() -> PartsService:
    return PartsService(get_store())


__all__ = ["build_default_store", "get_store", "set_store", "get_parts_service"]
