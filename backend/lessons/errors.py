"""Error kinds raised by the lesson parts domain.

The classes subclass the builtin exceptions the teaching services already use
(`ValueError`, `LookupError`) so callers that map those to 409/404 keep working.
The first argument is always a short machine-readable code.
"""
from __future__ import annotations

from typing import Optional, Sequence


class PartConflictError(ValueError):
    """A sibling in the same lesson already uses the title."""

    def __init__(self, code: str = "part_title_conflict") -> None:
        super().__init__(code)
        self.code = code


class PartNotFoundError(LookupError):
    """No part matches the given id, title or position."""

    def __init__(self, code: str = "part_not_found") -> None:
        super().__init__(code)
        self.code = code


class PositionInvariantError(RuntimeError):
    """Positions of a lesson are not exactly 1..N.

    `positions` holds the observed positions (sorted) when known.
    """

    def __init__(
        self,
        code: str = "position_invariant_violated",
        *,
        lesson_id: Optional[str] = None,
        positions: Sequence[int] = (),
    ) -> None:
        super().__init__(code)
        self.code = code
        self.lesson_id = lesson_id
        self.positions = list(positions)


__all__ = ["PartConflictError", "PartNotFoundError", "PositionInvariantError"]
