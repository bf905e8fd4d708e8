"""
Gate Pass Service
Pass domain model.

Models:
    - GatePass: one egress authorization for one subject, append-only.

State machine (PASS_TRANSITIONS):
    OPEN   -> OUT | CLOSED
    OUT    -> CLOSED
    CLOSED -> (terminal)

At most one OPEN/OUT pass per subject is enforced by the partial unique
index ``uq_gate_passes_one_active_per_subject``; the insert of a second
active pass fails inside the database regardless of any pre-check.
"""

import enum
from datetime import datetime, timezone

from gatepass.models import db, iso_utc


class PassStatus(str, enum.Enum):
    OPEN = "OPEN"
    OUT = "OUT"
    CLOSED = "CLOSED"


ACTIVE_PASS_STATUSES = (PassStatus.OPEN, PassStatus.OUT)

PASS_TRANSITIONS = {
    PassStatus.OPEN:   [PassStatus.OUT, PassStatus.CLOSED],
    PassStatus.OUT:    [PassStatus.CLOSED],
    PassStatus.CLOSED: [],
}


class GatePass(db.Model):
    """
    A temporary-egress authorization.

    Rows are never deleted; returning a pass only moves it to CLOSED and
    stamps ``closed_at`` so the table doubles as the movement history.
    """

    __tablename__ = "gate_passes"
    __table_args__ = (
        db.Index(
            "uq_gate_passes_one_active_per_subject",
            "subject_id",
            unique=True,
            sqlite_where=db.text("status IN ('OPEN', 'OUT')"),
            postgresql_where=db.text("status IN ('OPEN', 'OUT')"),
        ),
        db.Index("idx_gate_passes_subject_issued", "subject_id", "issued_at"),
        db.Index("idx_gate_passes_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(
        db.Integer,
        db.ForeignKey("students.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Roster subject holding the pass",
    )
    sponsor_id = db.Column(db.Integer, nullable=False,
                           comment="Staff member who granted the pass")
    sponsor_name = db.Column(db.String(150), nullable=False)
    purpose = db.Column(db.Text, nullable=False)
    status = db.Column(
        db.Enum(PassStatus, name="pass_status", native_enum=False, length=10),
        nullable=False,
        default=PassStatus.OPEN,
    )
    leave_window_id = db.Column(
        db.Integer,
        db.ForeignKey("leave_windows.id", ondelete="SET NULL"),
        nullable=True,
        comment="Leave window that auto-granted this pass; null for manual grants",
    )

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False,
                          default=lambda: datetime.now(timezone.utc))
    expected_return_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_PASS_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "sponsor_id": self.sponsor_id,
            "sponsor_name": self.sponsor_name,
            "purpose": self.purpose,
            "status": self.status.value if self.status else None,
            "leave_window_id": self.leave_window_id,
            "issued_at": iso_utc(self.issued_at),
            "expected_return_at": iso_utc(self.expected_return_at),
            "closed_at": iso_utc(self.closed_at),
        }

    def __repr__(self):
        status = self.status.value if self.status else None
        return f"<GatePass {self.id}: subject={self.subject_id} [{status}]>"
