"""
In-memory store for lesson parts (tests and local offline work).

Design:
    - Dict-backed; `transaction()` holds a store-wide re-entrant lock for the
      whole unit of work, so transactions are serializable.
    - Rollback restores a snapshot taken when the transaction began.
    - Mirrors the Postgres constraints: `(lesson_id, title)` is checked on every
      write, `(lesson_id, position)` only at commit (deferred), so in-place
      renumbering may pass through transient duplicates.
"""
from __future__ import annotations

import copy
import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Set
from uuid import uuid4

from lessons.errors import PartConflictError, PartNotFoundError, PositionInvariantError
from lessons.models import Part


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _MemoryPartSession:
    def __init__(self, parts: Dict[str, Part]) -> None:
        self._parts = parts
        self.touched_lessons: Set[str] = set()

    def lock_lesson(self, lesson_id: str) -> None:
        # Transactions already hold the store-wide lock.
        return None

    def _siblings(self, lesson_id: str) -> List[Part]:
        items = [p for p in self._parts.values() if p.lesson_id == lesson_id]
        items.sort(key=lambda p: (p.position, p.id))
        return items

    def get_part(self, part_id: str) -> Optional[Part]:
        part = self._parts.get(part_id)
        return replace(part) if part else None

    def find_part_by_title(self, lesson_id: str, title: str) -> Optional[Part]:
        for part in self._siblings(lesson_id):
            if part.title == title:
                return replace(part)
        return None

    def find_part_by_position(self, lesson_id: str, position: int) -> Optional[Part]:
        position = int(position)
        for part in self._siblings(lesson_id):
            if part.position == position:
                return replace(part)
        return None

    def count_parts(self, lesson_id: str) -> int:
        return len(self._siblings(lesson_id))

    def list_parts(self, lesson_id: str) -> List[Part]:
        return [replace(p) for p in self._siblings(lesson_id)]

    def list_parts_after(self, lesson_id: str, position: int) -> List[Part]:
        return [replace(p) for p in self._siblings(lesson_id) if p.position > int(position)]

    def _check_title(self, part: Part) -> None:
        for other in self._siblings(part.lesson_id):
            if other.id != part.id and other.title == part.title:
                raise PartConflictError()

    def insert_part(self, lesson_id: str, title: str, position: int, body_md: Optional[str]) -> Part:
        now = _now()
        part = Part(
            id=str(uuid4()),
            lesson_id=lesson_id,
            title=title,
            position=position,
            body_md=body_md,
            created_at=now,
            updated_at=now,
        )
        self._check_title(part)
        self._parts[part.id] = part
        self.touched_lessons.add(lesson_id)
        return replace(part)

    def save_part(self, part: Part) -> Part:
        if part.id not in self._parts:
            raise PartNotFoundError()
        self._check_title(part)
        stored = replace(part, updated_at=_now())
        self._parts[part.id] = stored
        self.touched_lessons.add(stored.lesson_id)
        return replace(stored)

    def delete_part(self, part_id: str) -> bool:
        part = self._parts.pop(part_id, None)
        if part is None:
            return False
        self.touched_lessons.add(part.lesson_id)
        return True

    def check_deferred(self) -> None:
        for lesson_id in self.touched_lessons:
            counts = Counter(p.position for p in self._siblings(lesson_id))
            if any(n > 1 for n in counts.values()):
                raise PositionInvariantError(
                    "position_conflict",
                    lesson_id=lesson_id,
                    positions=sorted(counts.elements()),
                )


class InMemoryPartStore:
    """Process-local part store with serializable transactions."""

    def __init__(self) -> None:
        self._parts: Dict[str, Part] = {}
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[_MemoryPartSession]:
        with self._lock:
            snapshot = copy.deepcopy(self._parts)
            session = _MemoryPartSession(self._parts)
            try:
                yield session
                session.check_deferred()
            except BaseException:
                self._parts.clear()
                self._parts.update(snapshot)
                raise


__all__ = ["InMemoryPartStore"]
