"""Shared test fixtures.

Usage:
    uv run pytest tests/

Fixtures:
    now                - Fixed, timezone-aware reference time.
    manager            - RepertoireManager on a temporary SQLite database.
    alice / bob        - User ids with both repertoires already created.
    enable_validation  - Sets OPENING_DRILL_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest

from repertoire.manager import RepertoireManager


# ---------------------------------------------------------------------------
# Time and storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def now() -> datetime:
    """Fixed review clock; pass it explicitly to every time-aware call."""
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def manager(tmp_path) -> RepertoireManager:
    """RepertoireManager backed by a throwaway database."""
    return RepertoireManager(tmp_path / "repertoire.db")


@pytest.fixture()
def alice(manager) -> str:
    manager.ensure_repertoires("alice")
    return "alice"


@pytest.fixture()
def bob(manager) -> str:
    manager.ensure_repertoires("bob")
    return "bob"


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set OPENING_DRILL_VALIDATE=1 for the test.

    Restores the original env var value after the test.
    """
    original = os.environ.get("OPENING_DRILL_VALIDATE")
    os.environ["OPENING_DRILL_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("OPENING_DRILL_VALIDATE", None)
    else:
        os.environ["OPENING_DRILL_VALIDATE"] = original
