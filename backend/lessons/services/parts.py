"""Lesson parts service layer (Clean Architecture boundary).

Why:
    Parts of a lesson are ordered. This service owns the invariants that keep
    that order consistent: positions of one lesson are always exactly 1..N and
    titles are unique within a lesson. Stores only persist; every rule lives
    here so it can be unit-tested against the in-memory store.

Concurrency:
    Every mutating use case runs in a single store transaction and takes the
    per-lesson gate (`lock_lesson`) before the reads its writes depend on.
    Writers always take the lesson gate before touching rows, so add, update
    and delete on the same lesson serialize without deadlocking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, ContextManager, List, Mapping, Optional, Protocol, Tuple

from lessons.errors import PartConflictError, PartNotFoundError, PositionInvariantError
from lessons.models import Part, PartCreate, PartUpdate

logger = logging.getLogger("lessons.parts")


class PartSessionProtocol(Protocol):
    def lock_lesson(self, lesson_id: str) -> None:
        ...

    def get_part(self, part_id: str) -> Optional[Part]:
        ...

    def find_part_by_title(self, lesson_id: str, title: str) -> Optional[Part]:
        ...

    def find_part_by_position(self, lesson_id: str, position: int) -> Optional[Part]:
        ...

    def count_parts(self, lesson_id: str) -> int:
        ...

    def list_parts(self, lesson_id: str) -> List[Part]:
        ...

    def list_parts_after(self, lesson_id: str, position: int) -> List[Part]:
        ...

    def insert_part(self, lesson_id: str, title: str, position: int, body_md: Optional[str]) -> Part:
        ...

    def save_part(self, part: Part) -> Part:
        ...

    def delete_part(self, part_id: str) -> bool:
        ...


class PartStoreProtocol(Protocol):
    def transaction(self) -> ContextManager[PartSessionProtocol]:
        ...


def _tail(value: str) -> str:
    return (value or "")[-6:]


@dataclass
class PartsService:
    """Use cases for lesson parts (framework-independent)."""

    store: PartStoreProtocol

    # --- Mutations -------------------------------------------------------------
    def add_part(self, new_part: PartCreate | Mapping[str, Any]) -> Part:
        """Append a part at the end of its lesson.

        Raises:
            PartConflictError: a sibling already uses the title; nothing is created.
            ValueError: invalid input, or a caller-supplied position.
        """
        data = PartCreate.parse(new_part)
        with self.store.transaction() as tx:
            tx.lock_lesson(data.lesson_id)
            if tx.find_part_by_title(data.lesson_id, data.title) is not None:
                raise PartConflictError()
            position = tx.count_parts(data.lesson_id) + 1
            part = tx.insert_part(data.lesson_id, data.title, position, data.body_md)
        logger.info("part added lesson=%s part=%s position=%s", _tail(part.lesson_id), _tail(part.id), part.position)
        return part

    def update_part(self, part_id: str, changes: PartUpdate | Mapping[str, Any]) -> Part:
        """Merge `changes` onto an existing part.

        `position` and `lesson_id` are read-only here. A new title must still be
        unique among the other parts of the lesson.
        """
        update = PartUpdate.parse(changes).changes()
        with self.store.transaction() as tx:
            part = self._load_locked(tx, part_id)
            if not update:
                return part
            title = update.get("title")
            if title is not None and title != part.title:
                clash = tx.find_part_by_title(part.lesson_id, title)
                if clash is not None and clash.id != part.id:
                    raise PartConflictError()
            saved = tx.save_part(replace(part, **update))
        return saved

    def delete_part(self, part_id: str) -> None:
        """Delete a part and compact the positions of the parts after it.

        Behavior:
            - Deleting the last part needs no further writes.
            - Otherwise every sibling with a higher position moves down by one,
              in ascending order.
            - Delete and compaction share one transaction; a failure rolls back
              both, so a half-compacted lesson is never committed.
        """
        with self.store.transaction() as tx:
            part = self._load_locked(tx, part_id)
            quantity = tx.count_parts(part.lesson_id)
            tx.delete_part(part.id)
            if part.position == quantity:
                logger.info("part deleted lesson=%s part=%s (last position)", _tail(part.lesson_id), _tail(part.id))
                return
            followers = tx.list_parts_after(part.lesson_id, part.position)
            for follower in followers:
                tx.save_part(replace(follower, position=follower.position - 1))
        logger.info(
            "part deleted lesson=%s part=%s position=%s compacted=%d",
            _tail(part.lesson_id),
            _tail(part.id),
            part.position,
            len(followers),
        )

    # --- Lookups ---------------------------------------------------------------
    def get_part(self, part_id: str) -> Part:
        with self.store.transaction() as tx:
            part = tx.get_part(part_id)
        if part is None:
            raise PartNotFoundError()
        return part

    def find_part_by_title(self, title: str, lesson_id: str) -> Part:
        with self.store.transaction() as tx:
            part = tx.find_part_by_title(lesson_id, (title or "").strip())
        if part is None:
            raise PartNotFoundError()
        return part

    def find_part_by_position(self, lesson_id: str, position: int) -> Optional[Part]:
        """Return the part at `position`, or None when the slot is empty."""
        with self.store.transaction() as tx:
            return tx.find_part_by_position(lesson_id, position)

    def get_part_id_by_position(self, lesson_id: str, position: int) -> str:
        part = self.find_part_by_position(lesson_id, position)
        if part is None:
            raise PartNotFoundError()
        return part.id

    def list_parts(self, lesson_id: str) -> List[Part]:
        with self.store.transaction() as tx:
            return tx.list_parts(lesson_id)

    def count_parts(self, lesson_id: str) -> int:
        """Number of parts in the lesson, which is also its highest position."""
        with self.store.transaction() as tx:
            return tx.count_parts(lesson_id)

    # --- Invariant tooling -----------------------------------------------------
    def verify_positions(self, lesson_id: str) -> int:
        """Return N when positions are exactly 1..N, else raise PositionInvariantError."""
        with self.store.transaction() as tx:
            positions = sorted(p.position for p in tx.list_parts(lesson_id))
        if positions != list(range(1, len(positions) + 1)):
            logger.warning("position invariant violated lesson=%s positions=%s", _tail(lesson_id), positions)
            raise PositionInvariantError(lesson_id=lesson_id, positions=positions)
        return len(positions)

    def plan_repair(self, lesson_id: str) -> List[Tuple[Part, int]]:
        """List `(part, target_position)` for every part `repair_positions` would move.

        Read-only; nothing is written.
        """
        with self.store.transaction() as tx:
            return self._repair_moves(tx.list_parts(lesson_id))

    def repair_positions(self, lesson_id: str) -> List[Part]:
        """Renumber a lesson to 1..N ordered by (position, id).

        Returns the parts whose position changed. Running it on a consistent
        lesson changes nothing.
        """
        changed: List[Part] = []
        with self.store.transaction() as tx:
            tx.lock_lesson(lesson_id)
            for part, target in self._repair_moves(tx.list_parts(lesson_id)):
                changed.append(tx.save_part(replace(part, position=target)))
        if changed:
            logger.info("positions repaired lesson=%s changed=%d", _tail(lesson_id), len(changed))
        return changed

    # --- Helpers ---------------------------------------------------------------
    @staticmethod
    def _repair_moves(parts: List[Part]) -> List[Tuple[Part, int]]:
        ordered = sorted(parts, key=lambda p: (p.position, p.id))
        return [(part, idx) for idx, part in enumerate(ordered, start=1) if part.position != idx]

    @staticmethod
    def _load_locked(tx: PartSessionProtocol, part_id: str) -> Part:
        """Fetch a part, take its lesson gate, then re-read the locked state."""
        part = tx.get_part(part_id)
        if part is None:
            raise PartNotFoundError()
        tx.lock_lesson(part.lesson_id)
        part = tx.get_part(part_id)
        if part is None:
            raise PartNotFoundError()
        return part


__all__ = ["PartsService", "PartStoreProtocol", "PartSessionProtocol"]
