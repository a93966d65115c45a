"""
Rank notifications — turns engine events into user-facing messages.

The engine emits tagged RankEvents; this module renders them to text and
keeps them in the notifications table so the UI can show and dismiss them.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from database import get_db
from rank import RankEvent, RankEventKind, RankTier, now_ms


def render_event(event: RankEvent) -> tuple[str, str]:
    """Return (title, body) for a rank event."""
    label = event.tier.value if event.tier is RankTier.ASCENDANT else f"{event.tier.value} {event.level}"
    kind = event.kind
    if kind is RankEventKind.LEVEL_UP:
        return f"Rank Up! {label}", "Keep the momentum going."
    if kind is RankEventKind.TIER_UP:
        return f"TIER UP! Welcome to {event.tier.value}", "A new tier, a new bar to fill."
    if kind is RankEventKind.ASCENDED:
        return "ASCENDED! You have reached the pinnacle.", "Maintain activity to hold this rank."
    if kind is RankEventKind.DECAY_WARNING:
        return (
            "You're about to lose a level.",
            "Study today to maintain your rank.",
        )
    if kind is RankEventKind.DEMOTED:
        return (
            f"Rank Decreased to {label}.",
            "Consistency is required to maintain mastery.",
        )
    raise ValueError(f"Unknown rank event kind: {kind!r}")


def message_for(event: Optional[RankEvent]) -> Optional[str]:
    """Single-line message for API responses, or None."""
    if event is None:
        return None
    title, body = render_event(event)
    return f"{title} {body}"


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).isoformat()


@dataclass
class Notification:
    id: str
    type: str
    title: str
    body: str
    created_at: str
    read: bool = False
    dismissed: bool = False
    data: dict = field(default_factory=dict)


class NotificationStoreDB:
    """DB-backed notification sink for one profile."""

    def __init__(self, profile_key: str):
        self.profile_key = profile_key

    def add(self, notif: Notification) -> None:
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO notifications (id, profile_key, type, title, body, "
            "created_at, read, dismissed, data) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (notif.id, self.profile_key, notif.type, notif.title, notif.body,
             notif.created_at, 1 if notif.read else 0, 1 if notif.dismissed else 0,
             json.dumps(notif.data)),
        )
        db.commit()

    def notify(self, event: RankEvent, now: Optional[int] = None) -> Optional[Notification]:
        """Persist a rank event. Decay warnings are kept to one per day."""
        now = now_ms() if now is None else now
        created_at = _iso(now)
        if event.kind is RankEventKind.DECAY_WARNING:
            if self.has_today(event.kind.value, now):
                return None
            notif_id = f"{event.kind.value}_{self.profile_key}_{created_at[:10]}"
        else:
            notif_id = f"{event.kind.value}_{secrets.token_hex(6)}"
        title, body = render_event(event)
        notif = Notification(
            id=notif_id,
            type=event.kind.value,
            title=title,
            body=body,
            created_at=created_at,
            data=event.to_dict(),
        )
        self.add(notif)
        return notif

    def unread_count(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) as cnt FROM notifications WHERE profile_key=? AND read=0 AND dismissed=0",
            (self.profile_key,),
        ).fetchone()
        return row["cnt"] if row else 0

    def recent(self, n: int = 20) -> list[Notification]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM notifications WHERE profile_key=? AND dismissed=0 "
            "ORDER BY created_at DESC LIMIT ?",
            (self.profile_key, n),
        ).fetchall()
        return [self._row_to_notif(r) for r in rows]

    def has_today(self, notif_type: str, now: Optional[int] = None) -> bool:
        db = get_db()
        today = _iso(now_ms() if now is None else now)[:10]
        row = db.execute(
            "SELECT 1 FROM notifications WHERE profile_key=? AND type=? AND created_at LIKE ?",
            (self.profile_key, notif_type, f"{today}%"),
        ).fetchone()
        return row is not None

    def mark_read(self, notif_id: str) -> None:
        db = get_db()
        db.execute(
            "UPDATE notifications SET read=1 WHERE id=? AND profile_key=?",
            (notif_id, self.profile_key),
        )
        db.commit()

    def mark_all_read(self) -> None:
        db = get_db()
        db.execute("UPDATE notifications SET read=1 WHERE profile_key=?", (self.profile_key,))
        db.commit()

    def dismiss(self, notif_id: str) -> None:
        db = get_db()
        db.execute(
            "UPDATE notifications SET dismissed=1 WHERE id=? AND profile_key=?",
            (notif_id, self.profile_key),
        )
        db.commit()

    def dismiss_type(self, notif_type: str) -> int:
        """Dismiss every open notification of one type. Returns how many."""
        db = get_db()
        cur = db.execute(
            "UPDATE notifications SET dismissed=1 WHERE profile_key=? AND type=? AND dismissed=0",
            (self.profile_key, notif_type),
        )
        db.commit()
        return cur.rowcount

    def clear(self) -> None:
        db = get_db()
        db.execute("DELETE FROM notifications WHERE profile_key=?", (self.profile_key,))
        db.commit()

    def _row_to_notif(self, r) -> Notification:
        return Notification(
            id=r["id"], type=r["type"], title=r["title"], body=r["body"],
            created_at=r["created_at"], read=bool(r["read"]),
            dismissed=bool(r["dismissed"]), data=json.loads(r["data"]),
        )
