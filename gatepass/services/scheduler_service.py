"""
Gate Pass Service
Leave scheduler: periodic driver of the auto-activation engine.

A single daemon thread runs one tick immediately on start and then one
per interval. Each tick runs the engine inside an app context; a failing
tick is logged and recorded, and the loop carries on with the next one.

Architecture:
    - LeaveScheduler: owned object, stored in app.extensions["leave_scheduler"]
    - Ticks are serialised; a manual run_now() never overlaps a timed tick
    - Every tick updates the ScheduledJob row for operators
    - Every tick also sweeps expired entries out of the read cache
    - stop() cancels future ticks only; an in-flight tick completes
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable

from flask import Flask, current_app

from gatepass.models import db
from gatepass.models.scheduling import ScheduledJob
from gatepass.services.auto_activation import AutoActivationEngine, build_engine
from gatepass.services.cache_service import EXTENSION_KEY as CACHE_EXTENSION_KEY

logger = logging.getLogger(__name__)

EXTENSION_KEY = "leave_scheduler"
JOB_NAME = "leave_auto_activation"
DEFAULT_INTERVAL_SECONDS = 60


class SchedulerState(str, enum.Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


class LeaveScheduler:
    """Runs ``engine.run_once()`` on a fixed period in a background thread."""

    def __init__(
        self,
        app: Flask,
        engine_factory: Callable[[Flask], AutoActivationEngine] = build_engine,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.app = app
        self.engine_factory = engine_factory
        self.interval_seconds = interval_seconds

        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None

        self.tick_count = 0
        self.last_run_at: datetime | None = None
        self.last_run: dict | None = None

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            running = self._thread is not None and self._thread.is_alive()
        return SchedulerState.RUNNING if running else SchedulerState.STOPPED

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start ticking. Returns False if already running."""
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            # Fresh event per run so a thread from an earlier start()/stop()
            # cycle can never be revived.
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._loop, args=(stop_event,),
                name="leave-scheduler", daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            # Started under the lock so a concurrent start() sees it alive.
            thread.start()
        logger.info("Leave scheduler started (interval=%ss)", self.interval_seconds)
        return True

    def stop(self, join: bool = True, timeout: float | None = None) -> bool:
        """Cancel future ticks. Returns False if it was not running."""
        with self._state_lock:
            thread, stop_event = self._thread, self._stop_event
            self._thread = None
            self._stop_event = None
        if thread is None:
            return False
        stop_event.set()
        if join and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Leave scheduler stopped")
        return True

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.run_now()
            stop_event.wait(self.interval_seconds)

    # ── Ticks ────────────────────────────────────────────────────────────

    def run_now(self) -> dict:
        """Run one tick synchronously. Never raises.

        Returns:
            Dict with status, duration_ms, result or error, and the
            number of expired cache entries swept.
        """
        with self._tick_lock:
            start = time.monotonic()
            result = None
            error = None
            status = "success"

            try:
                with self.app.app_context():
                    engine = self.engine_factory(self.app)
                    result = engine.run_once()
            except Exception as exc:
                status = "failed"
                error = str(exc)
                logger.exception("Leave auto-activation tick failed: %s", exc)

            duration_ms = int((time.monotonic() - start) * 1000)
            self._record(status, duration_ms, result, error)
            swept = self._sweep_cache()

            run = {
                "job_name": JOB_NAME,
                "status": status,
                "duration_ms": duration_ms,
                "result": result,
                "error": error,
                "cache_swept": swept,
            }
            self.tick_count += 1
            self.last_run_at = datetime.now(timezone.utc)
            self.last_run = run
            return run

    def _sweep_cache(self) -> int:
        """Drop expired read-cache entries. Returns the count removed."""
        cache = self.app.extensions.get(CACHE_EXTENSION_KEY)
        if cache is None:
            return 0
        swept = cache.cleanup_expired()
        if swept:
            logger.debug("Read cache swept %d expired entries", swept)
        return swept

    def _record(self, status, duration_ms, result, error) -> None:
        try:
            with self.app.app_context():
                job = ScheduledJob.query.filter_by(job_name=JOB_NAME).first()
                if job is None:
                    job = ScheduledJob(
                        job_name=JOB_NAME,
                        description="Grant passes for leave windows in progress; expire elapsed windows",
                    )
                    db.session.add(job)
                job.interval_seconds = int(self.interval_seconds)
                job.record_run(status=status, duration_ms=duration_ms, result=result, error=error)
                db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", JOB_NAME)
            with self.app.app_context():
                db.session.rollback()

    def status(self) -> dict:
        return {
            "job_name": JOB_NAME,
            "state": self.state.value,
            "interval_seconds": self.interval_seconds,
            "tick_count": self.tick_count,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run": self.last_run,
        }


def get_job_record() -> dict | None:
    """Persisted run history of the auto-activation job, if it has ever run."""
    job = ScheduledJob.query.filter_by(job_name=JOB_NAME).first()
    return job.to_dict() if job else None


def init_leave_scheduler(app: Flask) -> LeaveScheduler:
    """Create the app's scheduler and start it when enabled."""
    scheduler = LeaveScheduler(
        app,
        build_engine,
        app.config.get("LEAVE_SCHEDULER_INTERVAL_SECONDS", DEFAULT_INTERVAL_SECONDS),
    )
    app.extensions[EXTENSION_KEY] = scheduler
    if app.config.get("LEAVE_SCHEDULER_ENABLED"):
        scheduler.start()
    return scheduler


def get_leave_scheduler() -> LeaveScheduler:
    return current_app.extensions[EXTENSION_KEY]
