"""Tests for RankService persistence, notifications and locking."""

from __future__ import annotations

import gc
import logging
import sqlite3
import threading

import pytest

from rank import ActivityState, FixedClock, Rank, RankEventKind, RankTier
from rank_service import XP_AWARDS, RankService, _lock_for, _locks
from rank_store import RankStoreDB, RankStoreJSON
from notifications import NotificationStoreDB

T0 = 1_767_225_600_000


class _FailingStore(RankStoreJSON):
    def save(self, rank, activity):
        raise sqlite3.OperationalError("disk I/O error")


class _ListSink:
    def __init__(self):
        self.events = []

    def notify(self, event, now=None):
        self.events.append(event)


class TestFirstUse:
    def test_read_does_not_create_profile(self, app, clock):
        service = RankService("newbie", clock=clock)
        status = service.status()
        assert status["tier"] == "Bronze"
        assert status["level"] == 1
        assert status["current_xp"] == 0
        assert status["last_activity_date"] == clock.now()
        service.check_decay()
        assert not RankStoreDB("newbie").exists()
        assert RankStoreDB.all_keys() == []

    def test_first_mutation_creates_profile(self, app, clock):
        RankService("newbie", clock=clock).record_activity()
        assert RankStoreDB("newbie").exists()
        assert RankStoreDB("newbie").load()[1].last_activity_date == clock.now()


class TestGainXP:
    def test_level_up_persisted_and_notified(self, app, clock, seed_rank):
        seed_rank("alice", "Bronze", 1, 950)
        result = RankService("alice", clock=clock).gain_xp(100)
        assert result.rank == Rank(RankTier.BRONZE, 2, 0)
        assert RankStoreDB("alice").load()[0] == Rank(RankTier.BRONZE, 2, 0)
        notes = NotificationStoreDB("alice").recent()
        assert [n.type for n in notes] == ["level_up"]
        assert notes[0].title == "Rank Up! Bronze 2"

    def test_gain_resets_decay_clock(self, app, clock, seed_rank):
        seed_rank("alice", "Gold", 1, 0, last_activity=T0)
        clock.advance(hours=60)
        RankService("alice", clock=clock).gain_xp(10)
        _, activity = RankStoreDB("alice").load()
        assert activity.last_activity_date == clock.now()

    def test_ascendant_gain_is_noop_for_rank(self, app, clock, seed_rank):
        seed_rank("top", "Ascendant", 1, 0)
        result = RankService("top", clock=clock).gain_xp(5000)
        assert result.rank == Rank(RankTier.ASCENDANT, 1, 0)
        assert result.events == []
        assert NotificationStoreDB("top").recent() == []

    def test_negative_amount_raises(self, app, clock):
        with pytest.raises(ValueError):
            RankService("alice", clock=clock).gain_xp(-10)

    def test_award_uses_catalogue(self, app, clock, seed_rank):
        seed_rank("alice", "Bronze", 1, 0)
        RankService("alice", clock=clock).award("focus_session_complete")
        assert RankStoreDB("alice").load()[0].current_xp == XP_AWARDS["focus_session_complete"]

    def test_award_unknown_activity(self, app, clock):
        with pytest.raises(ValueError):
            RankService("alice", clock=clock).award("juggling")

    def test_mistake_logged_only_resets_clock(self, app, clock, seed_rank):
        seed_rank("alice", "Silver", 2, 70, last_activity=T0)
        clock.advance(hours=50)
        RankService("alice", clock=clock).award("mistake_logged")
        rank, activity = RankStoreDB("alice").load()
        assert rank == Rank(RankTier.SILVER, 2, 70)
        assert activity.last_activity_date == clock.now()

    def test_flashcard_review_pays_five(self, app, clock, seed_rank):
        seed_rank("alice", "Bronze", 1, 0)
        result = RankService("alice", clock=clock).award("flashcard_review")
        assert result.rank.current_xp == 5
        assert XP_AWARDS["flashcard_review"] == 5


class TestCheckDecay:
    def test_demotion_persisted_once(self, app, clock, seed_rank):
        seed_rank("idle", "Gold", 2, 400, last_activity=T0)
        clock.advance(hours=73)
        service = RankService("idle", clock=clock)
        first = service.check_decay()
        second = service.check_decay()
        assert first.demoted
        assert not second.demoted
        rank, activity = RankStoreDB("idle").load()
        assert rank == Rank(RankTier.GOLD, 1, 0)
        assert activity.last_demotion_date == clock.now()
        assert activity.last_activity_date == T0
        types = [n.type for n in NotificationStoreDB("idle").recent()]
        assert types == ["demoted"]

    def test_warning_notified_once_per_day(self, app, clock, seed_rank):
        seed_rank("idle", "Gold", 2, 400, last_activity=T0)
        clock.advance(hours=50)
        service = RankService("idle", clock=clock)
        assert service.check_decay().warning is not None
        assert service.check_decay().warning is not None
        types = [n.type for n in NotificationStoreDB("idle").recent()]
        assert types == ["decay_warning"]

    def test_activity_then_check_has_no_warning(self, app, clock, seed_rank):
        seed_rank("idle", "Gold", 2, 400, last_activity=T0)
        clock.advance(hours=50)
        service = RankService("idle", clock=clock)
        service.record_activity()
        result = service.check_decay()
        assert result.warning is None
        assert service.status()["at_risk"] is False

    def test_record_activity_dismisses_stored_warning(self, app, clock, seed_rank):
        seed_rank("idle", "Gold", 2, 400, last_activity=T0)
        clock.advance(hours=49)
        service = RankService("idle", clock=clock)
        service.check_decay()
        store = NotificationStoreDB("idle")
        assert [n.type for n in store.recent()] == ["decay_warning"]

        service.record_activity()
        assert store.recent() == []
        assert store.unread_count() == 0

    def test_gain_xp_dismisses_stored_warning(self, app, clock, seed_rank):
        seed_rank("idle", "Gold", 2, 400, last_activity=T0)
        clock.advance(hours=60)
        service = RankService("idle", clock=clock)
        service.check_decay()
        service.gain_xp(10)
        assert NotificationStoreDB("idle").recent() == []

    def test_clock_skew_never_demotes(self, app, clock, seed_rank):
        seed_rank("skewed", "Elite", 1, 0, last_activity=T0 + 500 * 3_600_000)
        result = RankService("skewed", clock=clock).check_decay()
        assert not result.demoted
        assert result.warning is None


class TestBestEffortPersistence:
    def test_failed_save_still_returns_result(self, tmp_path):
        store = _FailingStore(tmp_path / "stats.json", "alice")
        sink = _ListSink()
        service = RankService("alice", store=store, sink=sink, clock=FixedClock(T0))
        result = service.gain_xp(1000)
        assert result.rank == Rank(RankTier.BRONZE, 2, 0)
        assert [e.kind for e in sink.events] == [RankEventKind.LEVEL_UP]

    def test_json_store_backend(self, tmp_path):
        clock = FixedClock(T0)
        store = RankStoreJSON(tmp_path / "stats.json", "alice")
        service = RankService("alice", store=store, sink=_ListSink(), clock=clock)
        service.gain_xp(400)
        clock.advance(hours=72)
        result = service.check_decay()
        assert not result.demoted  # Bronze 1 floor
        assert store.load() == (Rank(RankTier.BRONZE, 1, 400), ActivityState(T0))


class TestConcurrency:
    def test_parallel_gains_do_not_lose_updates(self, tmp_path):
        store = RankStoreJSON(tmp_path / "stats.json", "alice")
        clock = FixedClock(T0)
        errors = []

        def worker():
            try:
                service = RankService("alice", store=store, sink=_ListSink(), clock=clock)
                for _ in range(10):
                    service.gain_xp(1)
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store.load()[0].current_xp == 80


class TestChallenges:
    @staticmethod
    def _progress(service, challenge_id):
        return next(c for c in service.challenge_status() if c["id"] == challenge_id)

    def test_focus_session_advances_focus_challenge(self, app, clock, seed_rank):
        seed_rank("alice", "Bronze", 1, 0)
        service = RankService("alice", clock=clock)
        service.award("focus_session_complete")
        service.award("focus_session_complete")
        focus = self._progress(service, "focus_today")
        assert focus["progress"] == 2
        assert focus["is_completed"] is False
        assert RankStoreDB("alice").load()[0].current_xp == 200

    def test_reward_paid_once_on_completion(self, app, clock, seed_rank):
        seed_rank("alice", "Bronze", 1, 0)
        service = RankService("alice", clock=clock)
        for _ in range(3):
            service.award("focus_session_complete")
        assert RankStoreDB("alice").load()[0].current_xp == 3 * 100 + 200

        service.award("focus_session_complete")
        assert RankStoreDB("alice").load()[0].current_xp == 4 * 100 + 200
        focus = self._progress(service, "focus_today")
        assert focus["progress"] == 3
        assert focus["is_completed"] is True
        assert focus["completed_at"] == clock.now()

    def test_completion_reward_can_level_up(self, app, clock, seed_rank):
        seed_rank("alice", "Bronze", 1, 900)
        result, completed = RankService("alice", clock=clock).advance_challenge("focus", 3)
        assert [c.challenge.id for c in completed] == ["focus_today"]
        assert result.rank == Rank(RankTier.BRONZE, 2, 0)
        assert [e.kind for e in result.events] == [RankEventKind.LEVEL_UP]
        assert [n.type for n in NotificationStoreDB("alice").recent()] == ["level_up"]

    def test_progress_capped_at_goal(self, app, clock, seed_rank):
        seed_rank("alice", "Bronze", 1, 0)
        service = RankService("alice", clock=clock)
        _, completed = service.advance_challenge("streak", 50)
        assert [c.challenge.id for c in completed] == ["7_day_lockin"]
        assert self._progress(service, "7_day_lockin")["progress"] == 7
        assert RankStoreDB("alice").load()[0].current_xp == 500

    def test_type_without_challenges_still_counts_as_activity(self, app, clock, seed_rank):
        seed_rank("alice", "Gold", 1, 0, last_activity=T0)
        clock.advance(hours=30)
        _, completed = RankService("alice", clock=clock).advance_challenge("planner")
        assert completed == []
        assert RankStoreDB("alice").load()[1].last_activity_date == clock.now()

    @pytest.mark.parametrize("challenge_type, increment", [("napping", 1), ("focus", 0), ("focus", -2)])
    def test_invalid_progress_rejected(self, app, clock, challenge_type, increment):
        with pytest.raises(ValueError):
            RankService("alice", clock=clock).advance_challenge(challenge_type, increment)


class TestProfileLocks:
    def test_lock_shared_while_held_and_dropped_after(self):
        lock = _lock_for("ephemeral")
        assert _lock_for("ephemeral") is lock
        del lock
        gc.collect()
        assert "ephemeral" not in _locks


class TestLogging:
    def test_service_log_lines_carry_profile_key(self, app, clock, seed_rank, caplog):
        seed_rank("alice", "Bronze", 1, 950)
        with caplog.at_level(logging.INFO, logger="rank_service"):
            service = RankService("alice", clock=clock)
            service.gain_xp(100)
            service.reset()
        records = [r for r in caplog.records if r.name == "rank_service"]
        assert len(records) == 2
        assert all(r.profile_key == "alice" for r in records)


class TestReset:
    def test_reset_clears_rank_notifications_and_challenges(self, app, clock, seed_rank):
        seed_rank("alice", "Bronze", 1, 999)
        service = RankService("alice", clock=clock)
        service.gain_xp(1)
        service.award("focus_session_complete")
        service.reset()
        assert not RankStoreDB("alice").exists()
        assert NotificationStoreDB("alice").recent() == []
        assert all(c["progress"] == 0 for c in service.challenge_status())
