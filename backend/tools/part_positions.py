"""Check and repair the position sequence of a lesson's parts.

Why:
    Deletes compact positions inside one transaction, but rows written by
    older tooling or manual SQL can still leave gaps or duplicates. This
    utility reports such lessons and renumbers them to 1..N.

Usage:
    python -m backend.tools.part_positions check --lesson-id <id>
    python -m backend.tools.part_positions repair --lesson-id <id> [--dry-run]

Notes:
    - `check` exits with status 1 when the lesson is inconsistent.
    - `repair` is idempotent; `--dry-run` only reports.
    - The DSN defaults to LESSONS_DATABASE_URL / DATABASE_URL; the store is
      built through `lessons.wiring`, so LESSONS_STORE_BACKEND and the
      production TLS guard apply here too.
"""

from __future__ import annotations

import logging
from typing import Optional

import click

from lessons import wiring
from lessons.errors import PositionInvariantError
from lessons.services.parts import PartsService

logger = logging.getLogger("lessons.tools.part_positions")


def _build_service(db_dsn: Optional[str]) -> PartsService:
    return PartsService(wiring.build_default_store(dsn=db_dsn))


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--db-dsn", default=None, help="DSN of the lessons database (defaults to env).")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, db_dsn: Optional[str], verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db_dsn"] = db_dsn


@cli.command()
@click.option("--lesson-id", required=True, help="Lesson whose parts are checked.")
@click.pass_context
def check(ctx: click.Context, lesson_id: str) -> None:
    """Verify that positions are exactly 1..N."""
    service = _build_service(ctx.obj.get("db_dsn"))
    try:
        count = service.verify_positions(lesson_id)
    except PositionInvariantError as exc:
        click.echo(f"Lesson {lesson_id}: inconsistent positions {exc.positions}", err=True)
        ctx.exit(1)
    click.echo(f"Lesson {lesson_id}: {count} parts, positions OK")


@cli.command()
@click.option("--lesson-id", required=True, help="Lesson whose parts are renumbered.")
@click.option("--dry-run", is_flag=True, default=False, help="Report the planned changes without writing.")
@click.pass_context
def repair(ctx: click.Context, lesson_id: str, dry_run: bool) -> None:
    """Renumber positions to 1..N ordered by (position, id)."""
    service = _build_service(ctx.obj.get("db_dsn"))
    if dry_run:
        planned = service.plan_repair(lesson_id)
        for part, target in planned:
            click.echo(f"  {part.title!r}: {part.position} -> {target}")
        click.echo(f"Dry-run: {len(planned)} parts would change; no writes were made.")
        return
    changed = service.repair_positions(lesson_id)
    for part in changed:
        click.echo(f"  {part.title!r}: now at {part.position}")
    click.echo(f"Repaired lesson {lesson_id}: {len(changed)} parts changed.")


if __name__ == "__main__":  # pragma: no cover
    cli()
