"""
Gate Pass Service
Activity log collaborator.

``record_activity`` is fire-and-forget: it runs after the triggering
operation has committed, in its own small transaction, and a failure to
write the row is logged and rolled back without reaching the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime

from gatepass.models import db
from gatepass.models.audit import AuditLog, write_audit

logger = logging.getLogger(__name__)


def record_activity(
    subject_id: int | None,
    actor_id: int | None,
    action: str,
    details: dict | None = None,
    timestamp: datetime | None = None,
) -> AuditLog | None:
    """Append an audit row and commit it. Returns None if it could not be written."""
    try:
        log = write_audit(
            action=action,
            subject_id=subject_id,
            actor_id=actor_id,
            details=details,
            timestamp=timestamp,
        )
        db.session.commit()
        return log
    except Exception:
        logger.exception("Audit write failed: action=%s subject=%s", action, subject_id)
        db.session.rollback()
        return None


def list_activity(subject_id: int | None = None, limit: int = 100) -> list[AuditLog]:
    q = AuditLog.query
    if subject_id is not None:
        q = q.filter_by(subject_id=subject_id)
    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
