"""
Rank Engine — tiered rank, XP progression and inactivity decay.

Tiers run Bronze → Silver → Gold → Elite → Ascendant, each with three levels
(Ascendant has one). XP fills a per-tier bar; crossing it levels up and
resets XP to zero. Sustained inactivity demotes one step per day once the
72-hour mark is passed.

Everything here is pure: callers pass in the current time and persist the
returned state themselves (see rank_service.py).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

MAX_LEVEL = 3

HOUR_MS = 60 * 60 * 1000
DECAY_WARNING_HOURS = 48
DECAY_DEMOTION_HOURS = 72
DEMOTION_COOLDOWN_HOURS = 24


class RankStateError(ValueError):
    """Persisted rank or activity data is malformed."""


def now_ms() -> int:
    return int(time.time() * 1000)


# ── Tiers ─────────────────────────────────────────────────────────

class RankTier(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    ELITE = "Elite"
    ASCENDANT = "Ascendant"

    @property
    def config(self) -> RankConfig:
        return RANK_CONFIG[self]

    @property
    def xp_per_level(self) -> int:
        return RANK_CONFIG[self].xp_per_level

    @property
    def next_tier(self) -> Optional[RankTier]:
        return RANK_CONFIG[self].next_tier

    @property
    def prev_tier(self) -> Optional[RankTier]:
        return _PREV_TIER[self]

    @property
    def max_level(self) -> int:
        return 1 if self is RankTier.ASCENDANT else MAX_LEVEL


@dataclass(frozen=True)
class RankConfig:
    xp_per_level: int
    next_tier: Optional[RankTier]
    color: str = ""
    icon: str = ""


RANK_CONFIG: dict[RankTier, RankConfig] = {
    RankTier.BRONZE: RankConfig(1000, RankTier.SILVER, "orange", "bronze"),
    RankTier.SILVER: RankConfig(2000, RankTier.GOLD, "slate", "silver"),
    RankTier.GOLD: RankConfig(5000, RankTier.ELITE, "amber", "gold"),
    RankTier.ELITE: RankConfig(20000, RankTier.ASCENDANT, "rose", "elite"),
    RankTier.ASCENDANT: RankConfig(0, None, "indigo", "ascendant"),
}

_PREV_TIER: dict[RankTier, Optional[RankTier]] = {
    RankTier.BRONZE: None,
    RankTier.SILVER: RankTier.BRONZE,
    RankTier.GOLD: RankTier.SILVER,
    RankTier.ELITE: RankTier.GOLD,
    RankTier.ASCENDANT: RankTier.ELITE,
}


# ── State ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Rank:
    tier: RankTier = RankTier.BRONZE
    level: int = 1
    current_xp: int = 0

    @property
    def is_ascendant(self) -> bool:
        return self.tier is RankTier.ASCENDANT

    @property
    def xp_per_level(self) -> int:
        return self.tier.xp_per_level

    @property
    def xp_to_next_level(self) -> int:
        """XP still needed for the next level (0 when Ascendant)."""
        if self.is_ascendant:
            return 0
        return self.xp_per_level - self.current_xp

    @property
    def progress_pct(self) -> int:
        if self.is_ascendant or self.xp_per_level <= 0:
            return 100
        return min(100, int(self.current_xp / self.xp_per_level * 100))

    @property
    def label(self) -> str:
        if self.is_ascendant:
            return self.tier.value
        return f"{self.tier.value} {self.level}"

    def to_dict(self) -> dict:
        return {"tier": self.tier.value, "level": self.level, "currentXP": self.current_xp}

    @staticmethod
    def from_dict(data: dict) -> Rank:
        """Parse a persisted rank, raising RankStateError if it breaks an invariant."""
        if not isinstance(data, dict):
            raise RankStateError(f"rank must be an object, got {type(data).__name__}")
        try:
            tier = RankTier(data["tier"])
        except (KeyError, ValueError) as e:
            raise RankStateError(f"invalid tier: {data.get('tier')!r}") from e

        level = data.get("level", 1)
        xp = data.get("currentXP", data.get("current_xp", 0))
        if not _is_int(level) or not _is_int(xp):
            raise RankStateError("level and currentXP must be integers")
        if not 1 <= level <= tier.max_level:
            raise RankStateError(f"level {level} out of range for {tier.value}")
        if xp < 0:
            raise RankStateError("currentXP cannot be negative")
        if tier is RankTier.ASCENDANT:
            xp = 0
        elif xp >= tier.xp_per_level:
            raise RankStateError(f"currentXP {xp} not below {tier.value} threshold")
        return Rank(tier=tier, level=level, current_xp=xp)


@dataclass(frozen=True)
class ActivityState:
    last_activity_date: int
    last_demotion_date: Optional[int] = None

    def hours_inactive(self, now: int) -> float:
        """Hours since the last qualifying activity, clamped at zero for clock skew."""
        return max(0, now - self.last_activity_date) / HOUR_MS

    def to_dict(self) -> dict:
        return {
            "lastActivityDate": self.last_activity_date,
            "lastDemotionDate": self.last_demotion_date,
        }

    @staticmethod
    def from_dict(data: dict) -> ActivityState:
        if not isinstance(data, dict):
            raise RankStateError("activity state must be an object")
        last_activity = data.get("lastActivityDate")
        last_demotion = data.get("lastDemotionDate")
        if not _is_int(last_activity):
            raise RankStateError("lastActivityDate must be an integer timestamp")
        if last_demotion is not None and not _is_int(last_demotion):
            raise RankStateError("lastDemotionDate must be an integer timestamp")
        return ActivityState(last_activity, last_demotion)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def default_state(now: int) -> tuple[Rank, ActivityState]:
    """Fresh profile: Bronze 1, no XP, decay clock starting now."""
    return Rank(), ActivityState(last_activity_date=now)


def migrate_legacy_stats(data: dict, now: int) -> tuple[Rank, ActivityState]:
    """Upgrade saved stats from before tiers existed (a flat ``xp`` total).

    Old profiles start at Bronze 1 with their XP carried over, clamped below
    the Bronze threshold, and a fresh decay clock.
    """
    xp = data.get("xp", 0)
    if not _is_int(xp) or xp < 0:
        xp = 0
    xp = min(xp, RankTier.BRONZE.xp_per_level - 1)
    return Rank(current_xp=xp), ActivityState(last_activity_date=now)


# ── Events ────────────────────────────────────────────────────────

class RankEventKind(str, Enum):
    LEVEL_UP = "level_up"
    TIER_UP = "tier_up"
    ASCENDED = "ascended"
    DECAY_WARNING = "decay_warning"
    DEMOTED = "demoted"


@dataclass(frozen=True)
class RankEvent:
    kind: RankEventKind
    tier: RankTier
    level: int

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "tier": self.tier.value, "level": self.level}


@dataclass(frozen=True)
class XPResult:
    rank: Rank
    events: list[RankEvent] = field(default_factory=list)


@dataclass(frozen=True)
class DecayResult:
    rank: Rank
    activity: ActivityState
    demotion: Optional[RankEvent] = None
    warning: Optional[RankEvent] = None

    @property
    def demoted(self) -> bool:
        return self.demotion is not None


# ── Operations ────────────────────────────────────────────────────

def gain_xp(amount: int, rank: Rank) -> XPResult:
    """Add XP, applying at most one level-up or tier-up.

    Excess XP past the threshold is discarded: 1050 XP against a 1000 bar
    lands on the next level with 0, not 50.
    """
    if amount < 0:
        raise ValueError("XP amount cannot be negative")
    if amount == 0 or rank.is_ascendant:
        return XPResult(rank)

    new_xp = rank.current_xp + amount
    if new_xp < rank.xp_per_level:
        return XPResult(replace(rank, current_xp=new_xp))

    if rank.level < MAX_LEVEL:
        new_rank = Rank(rank.tier, rank.level + 1, 0)
        return XPResult(new_rank, [RankEvent(RankEventKind.LEVEL_UP, new_rank.tier, new_rank.level)])

    next_tier = rank.tier.next_tier
    if next_tier is None:
        return XPResult(rank)

    new_rank = Rank(next_tier, 1, 0)
    kind = RankEventKind.ASCENDED if next_tier is RankTier.ASCENDANT else RankEventKind.TIER_UP
    return XPResult(new_rank, [RankEvent(kind, next_tier, 1)])


def demote(rank: Rank) -> Rank:
    """One step down. Bronze 1 is the floor and comes back unchanged."""
    if rank.is_ascendant:
        return Rank(RankTier.ELITE, MAX_LEVEL, 0)
    if rank.level > 1:
        return Rank(rank.tier, rank.level - 1, 0)
    prev_tier = rank.tier.prev_tier
    if prev_tier is not None:
        return Rank(prev_tier, MAX_LEVEL, 0)
    return rank


def check_decay(now: int, activity: ActivityState, rank: Rank) -> DecayResult:
    """Warn between 48 and 72 hours of inactivity, demote once a day beyond."""
    hours = activity.hours_inactive(now)

    if DECAY_WARNING_HOURS <= hours < DECAY_DEMOTION_HOURS:
        return DecayResult(
            rank, activity,
            warning=RankEvent(RankEventKind.DECAY_WARNING, rank.tier, rank.level),
        )

    if hours < DECAY_DEMOTION_HOURS:
        return DecayResult(rank, activity)

    last_demotion = activity.last_demotion_date
    if last_demotion is not None and now - last_demotion < DEMOTION_COOLDOWN_HOURS * HOUR_MS:
        return DecayResult(rank, activity)

    new_rank = demote(rank)
    if new_rank == rank:
        return DecayResult(rank, activity)

    # lastActivityDate is left alone: only real activity stops the clock.
    return DecayResult(
        new_rank,
        replace(activity, last_demotion_date=now),
        demotion=RankEvent(RankEventKind.DEMOTED, new_rank.tier, new_rank.level),
    )


def record_activity(now: int, activity: ActivityState) -> ActivityState:
    return replace(activity, last_activity_date=now)


# ── Clocks ────────────────────────────────────────────────────────

class SystemClock:
    def now(self) -> int:
        return now_ms()


class FixedClock:
    """Manually advanced clock for tests and replays."""

    def __init__(self, start: int) -> None:
        self._now = start

    def now(self) -> int:
        return self._now

    def set(self, value: int) -> None:
        self._now = value

    def advance(self, hours: float = 0, ms: int = 0) -> int:
        self._now += int(hours * HOUR_MS) + ms
        return self._now
