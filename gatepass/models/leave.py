"""
Gate Pass Service
Leave window models.

Models:
    - LeaveWindow: recurring daily time window bounded by a date range.
    - LeaveExclusion: one subject excluded from a window's auto-granted passes.

A window "occurs" every day from ``start_date`` to ``end_date`` between
``start_time`` and ``end_time``. A window whose ``start_time`` is later than
its ``end_time`` runs overnight and ends on the following morning.

All times are naive wall-clock values in the institution's timezone
(``LEAVE_TIMEZONE``); callers convert "now" before asking.
"""

import enum
from datetime import date, datetime, time, timedelta, timezone

from gatepass.models import db, iso_utc


class LeaveStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


DEFAULT_LEAVE_REASON = "Monthly Leave"


class LeaveWindow(db.Model):
    """Administrator-defined leave window used to bulk-derive passes."""

    __tablename__ = "leave_windows"
    __table_args__ = (
        db.CheckConstraint("start_date <= end_date", name="ck_leave_windows_date_range"),
        db.Index("idx_leave_windows_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    reason = db.Column(db.String(200), nullable=False, default=DEFAULT_LEAVE_REASON)

    created_by = db.Column(db.Integer, nullable=False,
                           comment="Staff id; becomes the sponsor of auto-granted passes")
    created_by_name = db.Column(db.String(150), nullable=False)
    status = db.Column(
        db.Enum(LeaveStatus, name="leave_status", native_enum=False, length=10),
        nullable=False,
        default=LeaveStatus.ACTIVE,
    )

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    exclusions = db.relationship(
        "LeaveExclusion",
        backref="leave_window",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # ── Schedule helpers ─────────────────────────────────────────────────

    @property
    def runs_overnight(self) -> bool:
        return self.start_time > self.end_time

    @property
    def excluded_subject_ids(self) -> set[int]:
        return {e.subject_id for e in self.exclusions}

    def final_end(self) -> datetime:
        """Wall-clock moment the last daily occurrence ends."""
        end = datetime.combine(self.end_date, self.end_time)
        if self.runs_overnight:
            end += timedelta(days=1)
        return end

    def has_elapsed(self, now: datetime) -> bool:
        return now > self.final_end()

    def occurs_at(self, now: datetime) -> bool:
        """True when *now* falls inside one of the window's daily occurrences."""
        if self.has_elapsed(now):
            return False
        now_t = now.time()
        if not self.runs_overnight:
            return (self.start_date <= now.date() <= self.end_date
                    and self.start_time <= now_t <= self.end_time)
        # Overnight: the evening part belongs to today, the morning part to yesterday.
        if now_t >= self.start_time:
            return self.start_date <= now.date() <= self.end_date
        if now_t <= self.end_time:
            occurrence_day: date = now.date() - timedelta(days=1)
            return self.start_date <= occurrence_day <= self.end_date
        return False

    def derived_purpose(self) -> str:
        return f"{self.reason} ({self.start_date.isoformat()} - {self.end_date.isoformat()})"

    def to_dict(self, include_exclusions=True):
        d = {
            "id": self.id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_by_name": self.created_by_name,
            "status": self.status.value if self.status else None,
            "created_at": iso_utc(self.created_at),
        }
        if include_exclusions:
            d["exclusions"] = sorted(self.excluded_subject_ids)
        return d

    def __repr__(self):
        status = self.status.value if self.status else None
        return f"<LeaveWindow {self.id}: {self.start_date}..{self.end_date} [{status}]>"


class LeaveExclusion(db.Model):
    """A subject marked ineligible for passes under one leave window."""

    __tablename__ = "leave_exclusions"
    __table_args__ = (
        db.UniqueConstraint("leave_window_id", "subject_id",
                            name="uq_leave_exclusions_window_subject"),
    )

    id = db.Column(db.Integer, primary_key=True)
    leave_window_id = db.Column(
        db.Integer,
        db.ForeignKey("leave_windows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_id = db.Column(
        db.Integer,
        db.ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    excluded_by = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(200), nullable=True, default="Marked ineligible by admin")
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<LeaveExclusion window={self.leave_window_id} subject={self.subject_id}>"


def parse_clock_time(value) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``; ``time`` instances pass through."""
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value).strip())
