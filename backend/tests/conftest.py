"""
Pytest configuration for backend tests.

Why: Tests import `lessons` and `tools` straight from `backend/`, whether or
not the package is installed. Database-backed tests opt in via their own
reachability check and skip otherwise.
"""
import os
import sys
from pathlib import Path

import pytest

# Load .env only when the DB suite is explicitly enabled.
if os.getenv("RUN_DB_TESTS", "0") == "1":
    from dotenv import load_dotenv

    load_dotenv()

REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture(autouse=True)
def _reset_lessons_env(monkeypatch: pytest.MonkeyPatch):
    """Keep configuration toggles from leaking between tests.

    Behavior:
        - Forces a dev environment and default title limit.
        - Resets the wired store so each test builds its own.
    """
    monkeypatch.setenv("LESSONS_ENV", "dev")
    monkeypatch.delenv("LESSONS_TITLE_MAX_LENGTH", raising=False)
    monkeypatch.delenv("LESSONS_STORE_BACKEND", raising=False)
    from lessons import wiring

    wiring.set_store(None)
    yield
    wiring.set_store(None)
