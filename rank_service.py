"""
Rank Service — load, apply, save and notify for one profile.

Wraps the pure engine in rank.py with persistence (rank_store.py), challenge
progress (challenges.py) and the notification sink (notifications.py). Each
read-modify-write runs under a per-profile lock so request threads and the
background decay sweep never interleave on the same record.

Saves and notifications are best-effort: a storage failure is logged and the
computed result is still returned to the caller.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import weakref
from typing import TYPE_CHECKING, Any, Optional

import rank as engine
from rank import (
    ActivityState,
    DecayResult,
    Rank,
    RankEvent,
    RankEventKind,
    SystemClock,
    XPResult,
)

if TYPE_CHECKING:
    from challenges import ChallengeProgress, ChallengeStoreDB
    from notifications import NotificationStoreDB
    from rank_store import RankStore

logger = logging.getLogger(__name__)

# Qualifying activities and the XP each one earns.
XP_AWARDS = {
    "focus_session_complete": 100,
    "flashcard_review": 5,
    "mistake_logged": 0,
}

# Activities that also advance a challenge type by one step.
ACTIVITY_CHALLENGES = {
    "focus_session_complete": "focus",
    "flashcard_review": "flashcard",
}

PROFILE_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")

# Entries vanish once no thread holds or waits on the lock.
_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _lock_for(profile_key: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(profile_key)
        if lock is None:
            lock = threading.Lock()
            _locks[profile_key] = lock
        return lock


def snapshot(rank: Rank, activity: ActivityState, now: int) -> dict[str, Any]:
    """JSON-ready view of a profile's rank."""
    hours = activity.hours_inactive(now)
    return {
        "tier": rank.tier.value,
        "level": rank.level,
        "label": rank.label,
        "current_xp": rank.current_xp,
        "xp_per_level": rank.xp_per_level,
        "xp_to_next_level": rank.xp_to_next_level,
        "progress_pct": rank.progress_pct,
        "is_ascendant": rank.is_ascendant,
        "last_activity_date": activity.last_activity_date,
        "last_demotion_date": activity.last_demotion_date,
        "hours_inactive": round(hours, 2),
        "at_risk": engine.DECAY_WARNING_HOURS <= hours < engine.DECAY_DEMOTION_HOURS,
    }


class RankService:
    def __init__(
        self,
        profile_key: str,
        store: Optional[RankStore] = None,
        sink: Optional[NotificationStoreDB] = None,
        clock=None,
        challenges: Optional[ChallengeStoreDB] = None,
    ):
        if store is None:
            from rank_store import RankStoreDB
            store = RankStoreDB(profile_key)
        if sink is None:
            from notifications import NotificationStoreDB
            sink = NotificationStoreDB(profile_key)
        if challenges is None:
            from challenges import ChallengeStoreDB
            challenges = ChallengeStoreDB(profile_key)
        self.profile_key = profile_key
        self.store = store
        self.sink = sink
        self.challenges = challenges
        self.clock = clock or SystemClock()
        self._log_extra = {"profile_key": profile_key}

    # --- Internal ---

    def _load(self, now: int) -> tuple[Rank, ActivityState]:
        # Unknown profiles read as defaults; the row is written on first mutation.
        return self.store.load(now)

    def _persist(self, rank: Rank, activity: ActivityState) -> None:
        try:
            self.store.save(rank, activity)
        except (sqlite3.Error, OSError) as e:
            logger.warning(
                "Failed to save rank for %s: %s", self.profile_key, e, extra=self._log_extra,
            )

    def _notify(self, event: Optional[RankEvent], now: int) -> None:
        if event is None or self.sink is None:
            return
        try:
            self.sink.notify(event, now)
        except (sqlite3.Error, OSError) as e:
            logger.warning(
                "Failed to record %s for %s: %s", event.kind.value, self.profile_key, e,
                extra=self._log_extra,
            )

    def _clear_warning(self) -> None:
        dismiss_type = getattr(self.sink, "dismiss_type", None)
        if dismiss_type is None:
            return
        try:
            cleared = dismiss_type(RankEventKind.DECAY_WARNING.value)
        except (sqlite3.Error, OSError) as e:
            logger.warning(
                "Failed to clear decay warning for %s: %s", self.profile_key, e,
                extra=self._log_extra,
            )
            return
        if cleared:
            logger.info("Cleared decay warning for %s", self.profile_key, extra=self._log_extra)

    def _advance(self, challenge_type: str, increment: int, now: int) -> list[ChallengeProgress]:
        try:
            return self.challenges.advance(challenge_type, increment, now)
        except sqlite3.Error as e:
            logger.warning(
                "Failed to update %s challenges for %s: %s", challenge_type, self.profile_key, e,
                extra=self._log_extra,
            )
            return []

    def _apply(
        self, amount: int, challenge_type: Optional[str] = None, increment: int = 1,
    ) -> tuple[XPResult, list[ChallengeProgress]]:
        """Qualifying activity: award XP, advance challenges, reset the decay clock."""
        now = self.clock.now()
        with _lock_for(self.profile_key):
            before, activity = self._load(now)
            result = engine.gain_xp(amount, before)
            rank, events = result.rank, list(result.events)
            completed = self._advance(challenge_type, increment, now) if challenge_type else []
            for entry in completed:
                bonus = engine.gain_xp(entry.challenge.xp_reward, rank)
                rank = bonus.rank
                events.extend(bonus.events)
            activity = engine.record_activity(now, activity)
            self._persist(rank, activity)

        for entry in completed:
            logger.info(
                "%s completed challenge %s (+%d XP)",
                self.profile_key, entry.challenge.id, entry.challenge.xp_reward,
                extra=self._log_extra,
            )
        if events:
            logger.info(
                "%s: +%d XP, %s -> %s", self.profile_key, amount, before.label, rank.label,
                extra=self._log_extra,
            )
        self._clear_warning()
        for event in events:
            self._notify(event, now)
        return XPResult(rank, events), completed

    # --- Operations ---

    def status(self) -> dict[str, Any]:
        now = self.clock.now()
        with _lock_for(self.profile_key):
            rank, activity = self._load(now)
        return snapshot(rank, activity, now)

    def check_decay(self) -> DecayResult:
        now = self.clock.now()
        with _lock_for(self.profile_key):
            rank, activity = self._load(now)
            result = engine.check_decay(now, activity, rank)
            if result.demoted:
                self._persist(result.rank, result.activity)
                logger.info(
                    "Demoted %s from %s to %s after %.1fh inactive",
                    self.profile_key, rank.label, result.rank.label,
                    activity.hours_inactive(now),
                    extra=self._log_extra,
                )
        self._notify(result.demotion, now)
        self._notify(result.warning, now)
        return result

    def record_activity(self) -> ActivityState:
        """Reset the decay clock and clear any pending decay warning."""
        now = self.clock.now()
        with _lock_for(self.profile_key):
            rank, activity = self._load(now)
            activity = engine.record_activity(now, activity)
            self._persist(rank, activity)
        self._clear_warning()
        return activity

    def gain_xp(self, amount: int) -> XPResult:
        """Award XP for a qualifying activity; also resets the decay clock."""
        return self._apply(amount)[0]

    def award(self, activity_name: str) -> XPResult:
        """Apply a catalogued activity and advance its challenge, if any."""
        if activity_name not in XP_AWARDS:
            raise ValueError(f"Unknown activity: {activity_name}")
        return self._apply(XP_AWARDS[activity_name], ACTIVITY_CHALLENGES.get(activity_name))[0]

    def advance_challenge(
        self, challenge_type: str, increment: int = 1,
    ) -> tuple[XPResult, list[ChallengeProgress]]:
        """Add challenge progress. A completed challenge pays its reward once."""
        from challenges import CHALLENGE_TYPES

        if challenge_type not in CHALLENGE_TYPES:
            raise ValueError(f"Unknown challenge type: {challenge_type}")
        if increment < 1:
            raise ValueError("increment must be a positive integer")
        return self._apply(0, challenge_type, increment)

    def challenge_status(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.challenges.all()]

    def reset(self) -> None:
        with _lock_for(self.profile_key):
            self.store.clear()
            for extra_store in (self.sink, self.challenges):
                if extra_store is not None and hasattr(extra_store, "clear"):
                    extra_store.clear()
        logger.info("Reset rank profile %s", self.profile_key, extra=self._log_extra)
