"""
Test fixtures for the Study Rank service.

Provides app, client, clock and db fixtures with file-based SQLite.
The app's rank clock is a FixedClock so decay tests control time directly.
"""

from __future__ import annotations

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

# 2026-01-01T00:00:00Z in epoch milliseconds
START_MS = 1_767_225_600_000


@pytest.fixture
def clock():
    from rank import FixedClock
    return FixedClock(START_MS)


@pytest.fixture
def app(tmp_path, clock):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "RANK_CLOCK": clock,
    })

    with app.app_context():
        from database import init_db, run_migrations

        init_db()
        run_migrations()
        app._db_initialized = True

        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    from database import get_db
    yield get_db()


@pytest.fixture
def seed_rank(app):
    """Write a rank record directly: seed_rank("alice", "Gold", 2, 100, last_activity)."""
    from rank import ActivityState, Rank, RankTier
    from rank_store import RankStoreDB

    def _seed(profile_key, tier="Bronze", level=1, xp=0, last_activity=START_MS, last_demotion=None):
        RankStoreDB(profile_key).save(
            Rank(RankTier(tier), level, xp),
            ActivityState(last_activity, last_demotion),
        )

    return _seed
