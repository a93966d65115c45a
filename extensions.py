"""
Shared Flask extensions (rate limiter) and the background scheduler handle.

Kept in one module so blueprints can import them without circular imports.
"""

from __future__ import annotations

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, default_limits=["200 per hour"])


class SchedulerManager:
    """Holds the running BackgroundScheduler, if any."""

    _scheduler = None

    @classmethod
    def get(cls):
        return cls._scheduler

    @classmethod
    def set(cls, scheduler) -> None:
        cls._scheduler = scheduler

    @classmethod
    def shutdown(cls) -> None:
        if cls._scheduler is not None:
            cls._scheduler.shutdown(wait=False)
            cls._scheduler = None
