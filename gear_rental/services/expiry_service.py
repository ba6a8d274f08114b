"""
Background expiry of unclaimed reservations.

Each reservation deadline becomes a one-off APScheduler ``date`` job; an
``interval`` job sweeps for overdue rentals once at start-up and then
periodically, catching anything the process missed (e.g. reservations made
before a restart). Both paths end in idempotent manager calls that re-check
the rental status, so double firing is harmless.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler

EXPIRY_LOGGER = logging.getLogger("gear_rental.expiry")

SWEEP_JOB_ID = "rental-expiry-sweep"
EXPIRE_JOB_PREFIX = "rental-expiry:"


class ExpiryScheduler:
    def __init__(
        self,
        expire_fn: Callable[[str], bool],
        sweep_fn: Callable[[], int],
        sweep_interval_seconds: float = 60.0,
        scheduler: BackgroundScheduler | None = None,
    ):
        self._expire_fn = expire_fn
        self._sweep_fn = sweep_fn
        self._sweep_interval = max(float(sweep_interval_seconds), 1.0)
        # Deadlines missed while the worker was busy still fire; the manager re-checks them.
        self._scheduler = scheduler or BackgroundScheduler(
            job_defaults={"misfire_grace_time": None, "coalesce": True, "max_instances": 1}
        )

    @property
    def pending_count(self) -> int:
        return len([job for job in self._scheduler.get_jobs() if job.id.startswith(EXPIRE_JOB_PREFIX)])

    @property
    def is_running(self) -> bool:
        return self._scheduler.running

    def job_for(self, code: str):
        return self._scheduler.get_job(f"{EXPIRE_JOB_PREFIX}{code}")

    def schedule(self, code: str, due_at: datetime | None) -> None:
        if due_at is None:
            return
        self._scheduler.add_job(
            self.expire,
            "date",
            run_date=due_at,
            args=[code],
            id=f"{EXPIRE_JOB_PREFIX}{code}",
            replace_existing=True,
        )

    def expire(self, code: str) -> bool:
        try:
            return bool(self._expire_fn(code))
        except Exception:
            EXPIRY_LOGGER.exception("Expiry failed code=%s", code)
            return False

    def sweep(self) -> int:
        try:
            count = self._sweep_fn()
        except Exception:
            EXPIRY_LOGGER.exception("Expiry sweep failed")
            return 0
        EXPIRY_LOGGER.debug("Expiry sweep finished expired=%s", count)
        return count

    def start(self) -> None:
        if self.is_running:
            return
        # next_run_time=now gives the start-up recovery sweep.
        self._scheduler.add_job(
            self.sweep,
            "interval",
            seconds=self._sweep_interval,
            next_run_time=datetime.now(),
            id=SWEEP_JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        EXPIRY_LOGGER.info("Expiry scheduler started sweep_interval=%ss", self._sweep_interval)

    def stop(self, wait: bool = True) -> None:
        if not self.is_running:
            return
        self._scheduler.shutdown(wait=wait)
        EXPIRY_LOGGER.info("Expiry scheduler stopped")
