"""CLI for checking/repairing lesson part positions (no database needed).

The command builds its service through `_build_service`; tests swap that for
an in-memory store seeded with a broken sequence.
"""
from __future__ import annotations

from dataclasses import replace

import pytest
from click.testing import CliRunner

from lessons.repo_memory import InMemoryPartStore
from lessons.services.parts import PartsService
from tools import part_positions


@pytest.fixture
def broken_service(monkeypatch: pytest.MonkeyPatch) -> PartsService:
    store = InMemoryPartStore()
    service = PartsService(store)
    ids = [service.add_part({"lesson_id": "lesson-1", "title": t}).id for t in "ABC"]
    with store.transaction() as tx:
        tx.save_part(replace(tx.get_part(ids[2]), position=5))
        tx.save_part(replace(tx.get_part(ids[1]), position=3))
    seen = {}

    def _build(db_dsn):
        seen["db_dsn"] = db_dsn
        return service

    monkeypatch.setattr(part_positions, "_build_service", _build)
    service.seen = seen  # type: ignore[attr-defined]
    return service


def test_check_reports_inconsistent_lesson(broken_service: PartsService):
    result = CliRunner().invoke(part_positions.cli, ["--db-dsn", "postgresql://x@h/db", "check", "--lesson-id", "lesson-1"])
    assert result.exit_code == 1
    assert "inconsistent positions [1, 3, 5]" in result.output
    assert broken_service.seen["db_dsn"] == "postgresql://x@h/db"  # type: ignore[attr-defined]


def test_repair_dry_run_does_not_write(broken_service: PartsService):
    result = CliRunner().invoke(part_positions.cli, ["repair", "--lesson-id", "lesson-1", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "'B': 3 -> 2" in result.output
    assert "'C': 5 -> 3" in result.output
    assert "2 parts would change" in result.output
    assert sorted(p.position for p in broken_service.list_parts("lesson-1")) == [1, 3, 5]


def test_repair_then_check_succeeds(broken_service: PartsService):
    runner = CliRunner()
    result = runner.invoke(part_positions.cli, ["repair", "--lesson-id", "lesson-1"])
    assert result.exit_code == 0, result.output
    assert "2 parts changed" in result.output

    result = runner.invoke(part_positions.cli, ["check", "--lesson-id", "lesson-1"])
    assert result.exit_code == 0
    assert "3 parts, positions OK" in result.output


def test_repair_dry_run_uses_the_service_plan(broken_service: PartsService, monkeypatch: pytest.MonkeyPatch):
    calls = []
    original = broken_service.plan_repair

    def plan_repair(lesson_id):
        calls.append(lesson_id)
        return original(lesson_id)

    monkeypatch.setattr(broken_service, "plan_repair", plan_repair)
    result = CliRunner().invoke(part_positions.cli, ["repair", "--lesson-id", "lesson-1", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert calls == ["lesson-1"]


def test_cli_refuses_tls_disabled_dsn_in_prod(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LESSONS_ENV", "prod")
    result = CliRunner().invoke(
        part_positions.cli,
        ["--db-dsn", "postgresql://app@h/db?sslmode=disable", "repair", "--lesson-id", "lesson-1"],
    )
    assert result.exit_code != 0
    assert "sslmode=disable" in result.output


def test_cli_honors_memory_store_backend(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LESSONS_STORE_BACKEND", "memory")
    result = CliRunner().invoke(part_positions.cli, ["check", "--lesson-id", "lesson-1"])
    assert result.exit_code == 0, result.output
    assert "0 parts, positions OK" in result.output
