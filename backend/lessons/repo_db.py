"""
Postgres-backed store for lesson parts.

Design:
    - Minimal psycopg3 usage; each transaction opens a short-lived connection
      and commits once at the end. Any exception rolls the whole unit back.
    - `lock_lesson` takes a transaction-scoped advisory lock keyed by the lesson
      id, the gate that serializes writers of one lesson.
    - `public.lesson_parts` enforces `unique (lesson_id, title)` immediately and
      `unique (lesson_id, position)` deferred to commit, so compaction and the
      repair pass can renumber rows in place.
    - Returns `Part` dataclasses; no ORM.

Security:
    - Prod-like environments refuse the `postgres` superuser DSN.
"""
from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple
from urllib.parse import urlparse
from uuid import UUID

import psycopg
from psycopg.errors import UniqueViolation

from lessons.config import _is_prod_like, get_database_dsn, get_environment
from lessons.errors import PartConflictError, PartNotFoundError, PositionInvariantError
from lessons.models import Part

logger = logging.getLogger("lessons.repo_db")

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
TITLE_CONSTRAINT = "lesson_parts_lesson_id_title_key"
POSITION_CONSTRAINT = "lesson_parts_lesson_id_position_key"

_PART_COLUMNS_SQL = """
    id::text,
    lesson_id,
    title,
    position,
    body_md,
    to_char(created_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"'),
    to_char(updated_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')
"""


def _row_to_part(row: Tuple) -> Part:
    return Part(
        id=row[0],
        lesson_id=row[1],
        title=row[2],
        position=int(row[3]),
        body_md=row[4],
        created_at=row[5],
        updated_at=row[6],
    )


def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


def _map_unique_violation(exc: Exception) -> Exception:
    diag = getattr(exc, "diag", None)
    constraint = getattr(diag, "constraint_name", None) or ""
    if constraint == TITLE_CONSTRAINT:
        return PartConflictError()
    if constraint == POSITION_CONSTRAINT:
        return PositionInvariantError("position_conflict")
    return exc


class _DBPartSession:
    def __init__(self, cur) -> None:
        self._cur = cur

    def lock_lesson(self, lesson_id: str) -> None:
        self._cur.execute(
            "select pg_advisory_xact_lock(hashtextextended(%s::text, 0))",
            (f"lesson_parts:{lesson_id}",),
        )

    def _fetch_one(self, where_sql: str, params: tuple) -> Optional[Part]:
        self._cur.execute(
            f"select {_PART_COLUMNS_SQL} from public.lesson_parts where {where_sql}",
            params,
        )
        row = self._cur.fetchone()
        return _row_to_part(row) if row else None

    def _fetch_all(self, where_sql: str, params: tuple) -> List[Part]:
        self._cur.execute(
            f"""
            select {_PART_COLUMNS_SQL}
            from public.lesson_parts
            where {where_sql}
            order by position asc, id
            """,
            params,
        )
        return [_row_to_part(r) for r in (self._cur.fetchall() or [])]

    def get_part(self, part_id: str) -> Optional[Part]:
        if not _is_uuid(part_id):
            return None
        return self._fetch_one("id = %s", (part_id,))

    def find_part_by_title(self, lesson_id: str, title: str) -> Optional[Part]:
        return self._fetch_one("lesson_id = %s and title = %s", (lesson_id, title))

    def find_part_by_position(self, lesson_id: str, position: int) -> Optional[Part]:
        return self._fetch_one("lesson_id = %s and position = %s", (lesson_id, int(position)))

    def count_parts(self, lesson_id: str) -> int:
        self._cur.execute("select count(*) from public.lesson_parts where lesson_id = %s", (lesson_id,))
        return int(self._cur.fetchone()[0])

    def list_parts(self, lesson_id: str) -> List[Part]:
        return self._fetch_all("lesson_id = %s", (lesson_id,))

    def list_parts_after(self, lesson_id: str, position: int) -> List[Part]:
        return self._fetch_all("lesson_id = %s and position > %s", (lesson_id, int(position)))

    def insert_part(self, lesson_id: str, title: str, position: int, body_md: Optional[str]) -> Part:
        self._cur.execute(
            f"""
            insert into public.lesson_parts (lesson_id, title, position, body_md)
            values (%s, %s, %s, %s)
            returning {_PART_COLUMNS_SQL}
            """,
            (lesson_id, title, int(position), body_md),
        )
        row = self._cur.fetchone()
        if row is None:
            raise RuntimeError("lesson_parts insert returned no row")
        return _row_to_part(row)

    def save_part(self, part: Part) -> Part:
        self._cur.execute(
            f"""
            update public.lesson_parts
            set title = %s,
                body_md = %s,
                position = %s,
                updated_at = now()
            where id = %s
            returning {_PART_COLUMNS_SQL}
            """,
            (part.title, part.body_md, int(part.position), part.id),
        )
        row = self._cur.fetchone()
        if row is None:
            raise PartNotFoundError()
        return _row_to_part(row)

    def delete_part(self, part_id: str) -> bool:
        if not _is_uuid(part_id):
            return False
        self._cur.execute("delete from public.lesson_parts where id = %s returning id", (part_id,))
        return self._cur.fetchone() is not None


class DBPartStore:
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Initialize a Postgres-backed part store.

        Parameters:
            dsn: Optional explicit DSN. When omitted, resolves from env via
                 `lessons.config.get_database_dsn()`.

        Behavior:
            - Rejects the `postgres` superuser DSN in prod-like environments.
            - Does not open a connection eagerly; connections are per-transaction.
        """
        self._dsn = dsn or get_database_dsn()
        user = self._dsn_username(self._dsn)
        if user == "postgres" and _is_prod_like(get_environment()):
            raise RuntimeError(
                "DBPartStore refuses the postgres superuser DSN in production. "
                "Set LESSONS_DATABASE_URL to an application role."
            )

    @staticmethod
    def _dsn_username(dsn: str) -> str:
        try:
            p = urlparse(dsn)
            if p.username:
                return p.username
        except ValueError:
            pass
        m = re.search(r"\buser\s*=\s*([^\s]+)", dsn or "")
        return m.group(1) if m else ""

    @contextmanager
    def transaction(self) -> Iterator[_DBPartSession]:
        """Run one unit of work on a fresh connection; commit on success."""
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    yield _DBPartSession(cur)
                conn.commit()
        except UniqueViolation as exc:
            mapped = _map_unique_violation(exc)
            if mapped is exc:
                raise
            logger.warning("lesson_parts unique violation: %s", getattr(exc.diag, "constraint_name", None))
            raise mapped from exc

    def ensure_schema(self) -> None:
        """Create `public.lesson_parts` and its constraints when missing (idempotent)."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
            conn.commit()


__all__ = ["DBPartStore", "SCHEMA_PATH", "TITLE_CONSTRAINT", "POSITION_CONSTRAINT"]
