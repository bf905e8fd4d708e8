"""
Gate Pass Service
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of pass lifecycle events.
"""

import json
from datetime import UTC, datetime

from gatepass.models import db, iso_utc


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "GRANT",
    "RETURN",
    "MARK_OUT",
    "LEAVE_EXPIRE",
}


class AuditLog(db.Model):
    """
    One row per lifecycle action.

    ``subject_id`` is null for events that are not about a single subject
    (e.g. a leave window expiring); ``details_json`` carries the pass or
    window ids involved.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_subject", "subject_id"),
        db.Index("idx_audit_actor", "actor_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, nullable=True)
    actor_id = db.Column(
        db.Integer, nullable=True,
        comment="Staff id; null for scheduler-driven events without a sponsor",
    )
    action = db.Column(db.String(30), nullable=False,
                       comment="GRANT | RETURN | MARK_OUT | LEAVE_EXPIRE")
    details_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        """Deserialise *details_json* to a Python dict."""
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "details": self.details,
            "timestamp": iso_utc(self.timestamp),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} subject={self.subject_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    action: str,
    subject_id: int | None = None,
    actor_id: int | None = None,
    details: dict | None = None,
    timestamp: datetime | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    log = AuditLog(
        subject_id=subject_id,
        actor_id=actor_id,
        action=action,
        details_json=json.dumps(details or {}, default=str),
        timestamp=timestamp or datetime.now(UTC),
    )
    db.session.add(log)
    db.session.flush()
    return log
