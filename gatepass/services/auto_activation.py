"""
Gate Pass Service
Leave auto-activation engine.

One run walks every ACTIVE leave window:

    - elapsed window (past its final end)  -> mark EXPIRED, grant nothing
    - window occurring right now           -> grant a pass to every roster
                                              subject that is not excluded and
                                              holds no OPEN/OUT pass
    - otherwise                            -> nothing this run

Subjects that already hold a pass are skipped, which is the steady state on
every tick after the first, so running the engine repeatedly grants nothing
new. A failure for one subject is logged and skipped; only a failure to
read the leave windows themselves propagates.

``grant_window`` is the manual variant for a single window: it grants right
away regardless of the daily hours, optionally under another sponsor.

Usage:
    engine = AutoActivationEngine(tz_name="Asia/Kolkata")
    engine.run_once()   # {"windows_processed": 1, "passes_granted": 240, ...}
    engine.grant_window(7, sponsor_id=12, sponsor_name="Mentor A")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo

from gatepass.core.exceptions import ConflictError, InvalidStateError
from gatepass.models import db
from gatepass.models.leave import LeaveStatus, LeaveWindow
from gatepass.services import leave_service, pass_store
from gatepass.services.audit_service import record_activity
from gatepass.services.pass_service import grant_pass
from gatepass.services.roster_service import list_eligible_subjects

logger = logging.getLogger(__name__)


def _empty_results() -> dict[str, int]:
    return {
        "windows_processed": 0,
        "passes_granted": 0,
        "windows_expired": 0,
        "subjects_skipped": 0,
        "errors": 0,
    }


@dataclass
class _WindowPlan:
    """Plain-value snapshot of a window, immune to session rollbacks mid-run."""

    id: int
    created_by: int
    created_by_name: str
    purpose: str
    expected_return_at: datetime
    excluded: set[int] = field(default_factory=set)
    elapsed: bool = False
    occurring: bool = False

    @classmethod
    def from_window(cls, window: LeaveWindow, local_now: datetime, tz: ZoneInfo) -> "_WindowPlan":
        return cls(
            id=window.id,
            created_by=window.created_by,
            created_by_name=window.created_by_name,
            purpose=window.derived_purpose(),
            expected_return_at=window.final_end().replace(tzinfo=tz).astimezone(timezone.utc),
            excluded=window.excluded_subject_ids,
            elapsed=window.has_elapsed(local_now),
            occurring=window.occurs_at(local_now),
        )


class AutoActivationEngine:
    """Derives passes from leave windows. Must run inside an app context."""

    def __init__(
        self,
        roster: Callable[[], Iterable[Any]] = list_eligible_subjects,
        tz_name: str = "UTC",
    ):
        self.roster = roster
        self.tz = ZoneInfo(tz_name)

    def local_now(self, now: datetime | None = None) -> datetime:
        """Naive wall-clock time in the leave timezone. Naive input is taken as local."""
        if now is None:
            now = datetime.now(timezone.utc)
        if now.tzinfo is None:
            return now
        return now.astimezone(self.tz).replace(tzinfo=None)

    def run_once(self, now: datetime | None = None) -> dict[str, int]:
        """Process every ACTIVE window once.

        Raises:
            StoreUnavailableError: the leave windows could not be read.
        """
        local_now = self.local_now(now)
        results = _empty_results()

        windows = leave_service.list_active_windows()
        plans = [_WindowPlan.from_window(w, local_now, self.tz) for w in windows]

        subjects = None
        roster_failed = False
        for plan in plans:
            if plan.elapsed:
                self._expire(plan, results)
                continue
            if not plan.occurring or roster_failed:
                continue

            if subjects is None:
                subjects = self._load_roster(results)
                if subjects is None:
                    # Keep walking so elapsed windows still expire.
                    roster_failed = True
                    continue
            results["windows_processed"] += 1
            self._activate(plan, subjects, results)

        logger.info("Leave auto-activation: %s", results)
        return results

    def grant_window(
        self,
        window_id: int,
        *,
        sponsor_id: int | None = None,
        sponsor_name: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, int]:
        """Grant passes for one ACTIVE window right away, ignoring its daily hours.

        The sponsor defaults to the window creator. Subjects that are excluded
        or already hold a pass are skipped, as in a scheduled run.

        Raises:
            NotFoundError: no window with this id.
            InvalidStateError: the window has EXPIRED.
        """
        window = leave_service.get_leave_window(window_id)
        if window.status != LeaveStatus.ACTIVE:
            raise InvalidStateError("LeaveWindow", window_id, window.status.value, "grant")
        plan = _WindowPlan.from_window(window, self.local_now(now), self.tz)
        if sponsor_id is not None:
            plan.created_by = sponsor_id
        if sponsor_name:
            plan.created_by_name = sponsor_name

        results = _empty_results()
        subjects = self._load_roster(results)
        if subjects is not None:
            results["windows_processed"] = 1
            self._activate(plan, subjects, results)
        logger.info("Leave window %s manual grant: %s", window_id, results)
        return results

    # ── Steps ────────────────────────────────────────────────────────────

    def _load_roster(self, results) -> list | None:
        try:
            return list(self.roster())
        except Exception:
            db.session.rollback()
            results["errors"] += 1
            logger.exception("Leave auto-activation could not read the roster")
            return None

    def _expire(self, plan: _WindowPlan, results) -> None:
        try:
            if leave_service.expire_window(plan.id):
                results["windows_expired"] += 1
                record_activity(None, plan.created_by, "LEAVE_EXPIRE",
                                {"leave_window_id": plan.id})
                logger.info("Leave window %s expired", plan.id)
        except Exception:
            db.session.rollback()
            results["errors"] += 1
            logger.exception("Failed to expire leave window %s", plan.id)

    def _activate(self, plan: _WindowPlan, subjects: list, results) -> None:
        try:
            holders = pass_store.subjects_with_active_pass()
        except Exception:
            db.session.rollback()
            results["errors"] += 1
            logger.exception("Leave window %s: could not read open passes", plan.id)
            return

        granted = 0
        for subject in subjects:
            try:
                subject_id = int(subject)
                if subject_id in plan.excluded:
                    continue
                if subject_id in holders:
                    results["subjects_skipped"] += 1
                    continue
                grant_pass(
                    subject_id,
                    plan.created_by,
                    plan.created_by_name,
                    plan.purpose,
                    plan.expected_return_at,
                    leave_window_id=plan.id,
                )
                holders.add(subject_id)
                granted += 1
            except ConflictError:
                # Granted by someone else since the holders snapshot.
                results["subjects_skipped"] += 1
            except Exception:
                db.session.rollback()
                results["errors"] += 1
                logger.exception("Leave window %s: grant failed for subject %r", plan.id, subject)

        results["passes_granted"] += granted
        if granted:
            logger.info("Leave window %s: granted %d passes", plan.id, granted)


def build_engine(app) -> AutoActivationEngine:
    """Engine configured from the app's settings."""
    return AutoActivationEngine(tz_name=app.config.get("LEAVE_TIMEZONE", "UTC"))
