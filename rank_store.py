"""
Rank persistence — SQLite-backed and JSON-file-backed stores.

Both stores hold one record per profile key (rank + decay clock) and share
the same interface: load / save / clear / exists. Loading never fails:
missing or malformed records fall back to a fresh Bronze 1 profile.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from database import get_db
from rank import (
    ActivityState,
    Rank,
    RankStateError,
    default_state,
    migrate_legacy_stats,
    now_ms,
)

logger = logging.getLogger(__name__)


class RankStore(Protocol):
    profile_key: str

    def load(self, now: Optional[int] = None) -> tuple[Rank, ActivityState]: ...
    def save(self, rank: Rank, activity: ActivityState) -> None: ...
    def clear(self) -> None: ...
    def exists(self) -> bool: ...


# ── SQLite ────────────────────────────────────────────────────────

class RankStoreDB:
    """DB-backed rank record for one profile."""

    def __init__(self, profile_key: str):
        self.profile_key = profile_key

    def _row(self):
        db = get_db()
        return db.execute(
            "SELECT * FROM rank_profiles WHERE profile_key=?", (self.profile_key,)
        ).fetchone()

    def exists(self) -> bool:
        return self._row() is not None

    def load(self, now: Optional[int] = None) -> tuple[Rank, ActivityState]:
        now = now_ms() if now is None else now
        r = self._row()
        if r is None:
            return default_state(now)
        try:
            rank = Rank.from_dict({
                "tier": r["tier"], "level": r["level"], "currentXP": r["current_xp"],
            })
            activity = ActivityState.from_dict({
                "lastActivityDate": r["last_activity_date"],
                "lastDemotionDate": r["last_demotion_date"],
            })
        except RankStateError as e:
            logger.warning("Malformed rank record for %s, resetting: %s", self.profile_key, e)
            return default_state(now)
        return rank, activity

    def save(self, rank: Rank, activity: ActivityState) -> None:
        db = get_db()
        stamp = datetime.now().isoformat()
        db.execute(
            "INSERT INTO rank_profiles (profile_key, tier, level, current_xp, "
            "last_activity_date, last_demotion_date, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(profile_key) DO UPDATE SET tier=excluded.tier, "
            "level=excluded.level, current_xp=excluded.current_xp, "
            "last_activity_date=excluded.last_activity_date, "
            "last_demotion_date=excluded.last_demotion_date, "
            "updated_at=excluded.updated_at",
            (self.profile_key, rank.tier.value, rank.level, rank.current_xp,
             activity.last_activity_date, activity.last_demotion_date, stamp, stamp),
        )
        db.commit()

    def clear(self) -> None:
        db = get_db()
        db.execute("DELETE FROM rank_profiles WHERE profile_key=?", (self.profile_key,))
        db.commit()

    @staticmethod
    def all_keys() -> list[str]:
        db = get_db()
        rows = db.execute("SELECT profile_key FROM rank_profiles ORDER BY profile_key").fetchall()
        return [r["profile_key"] for r in rows]


# ── JSON file ─────────────────────────────────────────────────────

class RankStoreJSON:
    """Rank record kept in a JSON key-value file, keyed by profile.

    Each entry has the shape ``{"rank": {...}, "lastActivityDate": ...,
    "lastDemotionDate": ...}``. Entries saved before tiers existed carry only
    an ``xp`` total and are migrated on load.
    """

    def __init__(self, path: Path | str, profile_key: str):
        self.path = Path(path)
        self.profile_key = profile_key

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Unreadable rank file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))

    def exists(self) -> bool:
        return self.profile_key in self._read_all()

    def load(self, now: Optional[int] = None) -> tuple[Rank, ActivityState]:
        now = now_ms() if now is None else now
        entry = self._read_all().get(self.profile_key)
        if entry is None:
            return default_state(now)
        try:
            if "rank" not in entry:
                return migrate_legacy_stats(entry, now)
            return Rank.from_dict(entry["rank"]), ActivityState.from_dict(entry)
        except (RankStateError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Malformed rank entry for %s, resetting: %s", self.profile_key, e)
            return default_state(now)

    def save(self, rank: Rank, activity: ActivityState) -> None:
        data = self._read_all()
        data[self.profile_key] = {"rank": rank.to_dict(), **activity.to_dict()}
        self._write_all(data)

    def clear(self) -> None:
        data = self._read_all()
        if data.pop(self.profile_key, None) is not None:
            self._write_all(data)
