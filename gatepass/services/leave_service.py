"""
Gate Pass Service
Leave window store.

Administrators create and delete windows and edit their exclusion lists;
the auto-activation engine only reads them and moves elapsed windows from
ACTIVE to EXPIRED.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select, update

from gatepass.core.exceptions import NotFoundError, ValidationError
from gatepass.models import db
from gatepass.models.leave import (
    DEFAULT_LEAVE_REASON,
    LeaveExclusion,
    LeaveStatus,
    LeaveWindow,
    parse_clock_time,
)
from gatepass.models.roster import Student
from gatepass.services.cache_service import PASS_KEY_PREFIX, get_read_cache
from gatepass.services.pass_store import store_operation

logger = logging.getLogger(__name__)


def _parse_date(name, value, errors):
    if isinstance(value, date):
        return value
    if not value:
        errors[name] = "required"
        return None
    try:
        # Accept full timestamps too; only the calendar day matters.
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        errors[name] = "must be an ISO date (YYYY-MM-DD)"
        return None


def _parse_time(name, value, errors):
    if value in (None, ""):
        errors[name] = "required"
        return None
    try:
        return parse_clock_time(value)
    except ValueError:
        errors[name] = "must be HH:MM"
        return None


def _normalise_subject_ids(subject_ids) -> list[int]:
    if subject_ids is None:
        return []
    if not isinstance(subject_ids, (list, tuple, set)):
        raise ValidationError("excluded_subjects must be a list of subject ids",
                              details={"excluded_subjects": "must be a list"})
    try:
        ids = sorted({int(s) for s in subject_ids})
    except (TypeError, ValueError):
        raise ValidationError("excluded_subjects must contain integer ids",
                              details={"excluded_subjects": "must contain integers"}) from None
    if ids:
        known = set(db.session.execute(
            select(Student.id).where(Student.id.in_(ids))
        ).scalars().all())
        unknown = [i for i in ids if i not in known]
        if unknown:
            raise ValidationError(f"Unknown subjects in exclusions: {unknown}",
                                  details={"excluded_subjects": f"unknown ids {unknown}"})
    return ids


# ── Reads ────────────────────────────────────────────────────────────────


def get_leave_window(window_id: int) -> LeaveWindow:
    with store_operation("get_leave_window"):
        window = db.session.get(LeaveWindow, window_id)
    if window is None:
        raise NotFoundError(resource="LeaveWindow", resource_id=window_id)
    return window


def list_leave_windows(status: str | None = None) -> list[LeaveWindow]:
    stmt = select(LeaveWindow).order_by(LeaveWindow.created_at.desc(), LeaveWindow.id.desc())
    if status:
        try:
            stmt = stmt.where(LeaveWindow.status == LeaveStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown leave status: {status}",
                                  details={"status": "must be ACTIVE or EXPIRED"}) from None
    with store_operation("list_leave_windows"):
        return db.session.execute(stmt).scalars().all()


def list_active_windows() -> list[LeaveWindow]:
    """ACTIVE windows, oldest first. Raises StoreUnavailableError on connectivity loss."""
    with store_operation("list_active_windows"):
        return db.session.execute(
            select(LeaveWindow)
            .where(LeaveWindow.status == LeaveStatus.ACTIVE)
            .order_by(LeaveWindow.start_date, LeaveWindow.id)
        ).scalars().all()


# ── Writes ───────────────────────────────────────────────────────────────


def create_leave_window(data: dict) -> LeaveWindow:
    """Create an ACTIVE leave window with its exclusion list.

    Body keys: start_date, end_date, start_time, end_time, created_by,
    created_by_name, reason?, excluded_subjects?
    """
    errors: dict[str, str] = {}
    start_date = _parse_date("start_date", data.get("start_date"), errors)
    end_date = _parse_date("end_date", data.get("end_date"), errors)
    start_time = _parse_time("start_time", data.get("start_time"), errors)
    end_time = _parse_time("end_time", data.get("end_time"), errors)

    created_by = data.get("created_by")
    if created_by is None or created_by == "" or isinstance(created_by, bool):
        errors["created_by"] = "required"
    else:
        try:
            created_by = int(created_by)
        except (TypeError, ValueError):
            errors["created_by"] = "must be an integer"
    created_by_name = (data.get("created_by_name") or "").strip()
    if not created_by_name:
        errors["created_by_name"] = "required"

    if start_date and end_date and end_date < start_date:
        errors["end_date"] = "must not be before start_date"
    if errors:
        raise ValidationError(
            f"Missing or invalid fields: {', '.join(sorted(errors))}", details=errors,
        )

    with store_operation("create_leave_window"):
        excluded = _normalise_subject_ids(data.get("excluded_subjects"))
        window = LeaveWindow(
            start_date=start_date,
            end_date=end_date,
            start_time=start_time,
            end_time=end_time,
            reason=(data.get("reason") or "").strip() or DEFAULT_LEAVE_REASON,
            created_by=created_by,
            created_by_name=created_by_name,
            status=LeaveStatus.ACTIVE,
        )
        window.exclusions = [
            LeaveExclusion(subject_id=sid, excluded_by=created_by) for sid in excluded
        ]
        db.session.add(window)
        db.session.commit()

    logger.info("Leave window %s created: %s..%s %s-%s, %d excluded",
                window.id, start_date, end_date, start_time, end_time, len(excluded))
    return window


def set_exclusions(window_id: int, subject_ids, updated_by: int | None = None) -> LeaveWindow:
    """Replace a window's exclusion list."""
    window = get_leave_window(window_id)
    with store_operation("set_exclusions"):
        ids = _normalise_subject_ids(subject_ids)
        # Delete old rows first; the unit of work would otherwise INSERT
        # before DELETE and trip the (window, subject) unique constraint.
        window.exclusions.clear()
        db.session.flush()
        window.exclusions = [
            LeaveExclusion(subject_id=sid, excluded_by=updated_by) for sid in ids
        ]
        db.session.commit()
    logger.info("Leave window %s exclusions replaced: %d subjects", window_id, len(ids))
    return window


def expire_window(window_id: int) -> bool:
    """ACTIVE -> EXPIRED. Returns False if the window was no longer ACTIVE."""
    with store_operation("expire_window"):
        result = db.session.execute(
            update(LeaveWindow)
            .where(LeaveWindow.id == window_id, LeaveWindow.status == LeaveStatus.ACTIVE)
            .values(status=LeaveStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    return result.rowcount > 0


def delete_leave_window(window_id: int) -> None:
    """Delete a window with its exclusions.

    Passes it granted survive; their ``leave_window_id`` is set to NULL by
    the foreign key, so every cached pass list is dropped.
    """
    window = get_leave_window(window_id)
    with store_operation("delete_leave_window"):
        db.session.delete(window)
        db.session.commit()
    get_read_cache().invalidate_prefix(PASS_KEY_PREFIX)
    logger.info("Leave window %s deleted", window_id)
