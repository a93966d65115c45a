"""
Centralized Scheduler — Registers periodic background jobs.

Jobs:
  - Rank decay sweep (every DECAY_SWEEP_MINUTES, default 60)
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)


def sweep_decay(app, clock=None) -> dict[str, int]:
    """Run the decay check for every stored profile.

    Safe to call at any cadence: a profile is demoted at most once per 24h.
    Returns counts of profiles checked, demoted and warned.
    """
    from database import ensure_db
    from rank_service import RankService
    from rank_store import RankStoreDB

    counts = {"checked": 0, "demoted": 0, "warned": 0}
    with app.app_context():
        ensure_db(app)
        for key in RankStoreDB.all_keys():
            try:
                result = RankService(key, clock=clock).check_decay()
            except sqlite3.Error as e:
                logger.error("Decay check failed for %s: %s", key, e, extra={"profile_key": key})
                continue
            counts["checked"] += 1
            if result.demoted:
                counts["demoted"] += 1
            if result.warning is not None:
                counts["warned"] += 1
    if counts["demoted"] or counts["warned"]:
        logger.info(
            "Decay sweep: %(checked)d checked, %(demoted)d demoted, %(warned)d warned", counts,
        )
    return counts


def init_scheduler(app):
    """Start a background scheduler for the decay sweep.

    Returns the scheduler instance.
    """
    from apscheduler.schedulers.background import BackgroundScheduler

    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        func=sweep_decay,
        args=[app],
        trigger="interval",
        minutes=app.config.get("DECAY_SWEEP_MINUTES", 60),
        id="rank_decay_sweep",
        replace_existing=True,
    )
    scheduler.start()
    app.logger.info("Scheduler started (rank decay sweep)")
    return scheduler
