"""
Challenges — goal-based XP rewards layered on top of qualifying activities.

Each challenge tracks progress toward a goal for one activity type. The
reward is paid exactly once, on the update that reaches the goal; further
updates to a completed challenge are ignored until the profile is reset.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from database import get_db


@dataclass(frozen=True)
class Challenge:
    id: str
    title: str
    description: str
    goal: int
    xp_reward: int
    type: str


CHALLENGES: tuple[Challenge, ...] = (
    Challenge("7_day_lockin", "7-Day Lock-In", "Study for 7 days in a row", 7, 500, "streak"),
    Challenge("100_cards", "Card Collector", "Review 100 flashcards this week", 100, 300, "flashcard"),
    Challenge("focus_today", "Deep Work Day", "Complete 3 focus sessions today", 3, 200, "focus"),
)

CHALLENGE_TYPES = frozenset({"flashcard", "focus", "streak", "planner"})


@dataclass
class ChallengeProgress:
    challenge: Challenge
    progress: int = 0
    completed: bool = False
    completed_at: Optional[int] = None

    @property
    def progress_pct(self) -> int:
        return min(100, int(self.progress * 100 / self.challenge.goal))

    def to_dict(self) -> dict:
        c = self.challenge
        return {
            "id": c.id,
            "title": c.title,
            "description": c.description,
            "type": c.type,
            "goal": c.goal,
            "xp_reward": c.xp_reward,
            "progress": self.progress,
            "progress_pct": self.progress_pct,
            "is_completed": self.completed,
            "completed_at": self.completed_at,
        }


class ChallengeStoreDB:
    """Per-profile challenge progress in the challenge_progress table."""

    def __init__(self, profile_key: str):
        self.profile_key = profile_key

    def _rows(self) -> dict[str, dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM challenge_progress WHERE profile_key=?", (self.profile_key,)
        ).fetchall()
        return {r["challenge_id"]: dict(r) for r in rows}

    def all(self) -> list[ChallengeProgress]:
        rows = self._rows()
        result = []
        for c in CHALLENGES:
            r = rows.get(c.id)
            if r is None:
                result.append(ChallengeProgress(c))
            else:
                result.append(ChallengeProgress(
                    c, r["progress"], bool(r["completed"]), r["completed_at"],
                ))
        return result

    def advance(self, challenge_type: str, increment: int, now: int) -> list[ChallengeProgress]:
        """Add progress to every open challenge of this type.

        Returns the challenges this update completed.
        """
        if challenge_type not in CHALLENGE_TYPES:
            raise ValueError(f"Unknown challenge type: {challenge_type}")
        if increment < 1:
            raise ValueError("increment must be a positive integer")

        db = get_db()
        stamp = datetime.now().isoformat()
        completed = []
        for entry in self.all():
            if entry.challenge.type != challenge_type or entry.completed:
                continue
            entry.progress = min(entry.progress + increment, entry.challenge.goal)
            if entry.progress >= entry.challenge.goal:
                entry.completed = True
                entry.completed_at = now
                completed.append(entry)
            db.execute(
                "INSERT OR REPLACE INTO challenge_progress (profile_key, challenge_id, "
                "progress, completed, completed_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                (self.profile_key, entry.challenge.id, entry.progress,
                 1 if entry.completed else 0, entry.completed_at, stamp),
            )
        db.commit()
        return completed

    def clear(self) -> None:
        db = get_db()
        db.execute("DELETE FROM challenge_progress WHERE profile_key=?", (self.profile_key,))
        db.commit()
