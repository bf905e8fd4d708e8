"""
Gate Pass Service
Pass store: record-level access to ``gate_passes``.

Every function here is atomic for a single record:
    - create_pass: INSERT guarded by the partial unique index on active
      passes, so a second OPEN/OUT pass for a subject is rejected by the
      database even when two grants race past their pre-checks.
    - close_pass / mark_pass_out: conditional UPDATE ... WHERE status IN (...),
      so a pass can leave a state only once.

Functions flush but do not commit; the lifecycle service owns the
transaction. A rejected create rolls the session back before raising.
Connectivity failures surface as StoreUnavailableError.

Usage:
    from gatepass.services import pass_store

    gp = pass_store.create_pass(subject_id=42, sponsor_id=7,
                                sponsor_name="Mentor A", purpose="clinic visit")
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from gatepass.core.exceptions import ConflictError, NotFoundError, StoreUnavailableError
from gatepass.models import db
from gatepass.models.gate_pass import (
    ACTIVE_PASS_STATUSES,
    PASS_TRANSITIONS,
    GatePass,
    PassStatus,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def store_operation(operation: str):
    """Translate connectivity failures into StoreUnavailableError."""
    try:
        yield
    except OperationalError as exc:
        db.session.rollback()
        logger.error("Pass store %s failed: %s", operation, exc)
        raise StoreUnavailableError(operation, exc) from exc


# ── Reads ────────────────────────────────────────────────────────────────


def get_pass(pass_id: int) -> GatePass | None:
    with store_operation("get_pass"):
        return db.session.get(GatePass, pass_id)


def find_open_or_out(subject_id: int) -> GatePass | None:
    """Return the subject's OPEN/OUT pass, if any."""
    with store_operation("find_open_or_out"):
        return db.session.execute(
            select(GatePass).where(
                GatePass.subject_id == subject_id,
                GatePass.status.in_(ACTIVE_PASS_STATUSES),
            ).limit(1)
        ).scalars().first()


def subjects_with_active_pass() -> set[int]:
    """Return the subject ids that currently hold an OPEN/OUT pass."""
    with store_operation("subjects_with_active_pass"):
        return set(db.session.execute(
            select(GatePass.subject_id).where(GatePass.status.in_(ACTIVE_PASS_STATUSES))
        ).scalars().all())


def list_by_subject(subject_id: int) -> list[GatePass]:
    """All passes of one subject, newest first."""
    with store_operation("list_by_subject"):
        return db.session.execute(
            select(GatePass)
            .where(GatePass.subject_id == subject_id)
            .order_by(GatePass.issued_at.desc(), GatePass.id.desc())
        ).scalars().all()


def list_open() -> list[GatePass]:
    """All OPEN/OUT passes, newest first."""
    with store_operation("list_open"):
        return db.session.execute(
            select(GatePass)
            .where(GatePass.status.in_(ACTIVE_PASS_STATUSES))
            .order_by(GatePass.issued_at.desc(), GatePass.id.desc())
        ).scalars().all()


# ── Writes ───────────────────────────────────────────────────────────────


def create_pass(
    *,
    subject_id: int,
    sponsor_id: int,
    sponsor_name: str,
    purpose: str,
    expected_return_at: datetime | None = None,
    leave_window_id: int | None = None,
) -> GatePass:
    """Insert a new OPEN pass.

    Raises:
        ConflictError: the subject already holds an OPEN/OUT pass (raised by
            the unique index, independent of any caller pre-check).
    """
    gp = GatePass(
        subject_id=subject_id,
        sponsor_id=sponsor_id,
        sponsor_name=sponsor_name,
        purpose=purpose,
        status=PassStatus.OPEN,
        issued_at=_utcnow(),
        expected_return_at=expected_return_at,
        leave_window_id=leave_window_id,
    )
    with store_operation("create_pass"):
        try:
            db.session.add(gp)
            db.session.flush()
        except IntegrityError as exc:
            # The failed INSERT aborts the transaction on PostgreSQL.
            db.session.rollback()
            if find_open_or_out(subject_id) is not None:
                raise ConflictError(
                    "Pass", "subject_id", subject_id,
                    message="subject already holds an open pass",
                ) from exc
            raise
    return gp


def _transition(pass_id: int, to_status: PassStatus, **values) -> GatePass:
    from_statuses = [s for s, targets in PASS_TRANSITIONS.items() if to_status in targets]
    result = db.session.execute(
        update(GatePass)
        .where(GatePass.id == pass_id, GatePass.status.in_(from_statuses))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(resource="Pass", resource_id=pass_id)
    return db.session.get(GatePass, pass_id, populate_existing=True)


def close_pass(pass_id: int) -> GatePass:
    """Move an OPEN/OUT pass to CLOSED and stamp ``closed_at``.

    Raises:
        NotFoundError: no such pass, or it is already CLOSED.
    """
    with store_operation("close_pass"):
        return _transition(pass_id, PassStatus.CLOSED, closed_at=_utcnow())


def mark_pass_out(pass_id: int) -> GatePass:
    """Move an OPEN pass to OUT.

    Raises:
        NotFoundError: no such pass, or it is not OPEN.
    """
    with store_operation("mark_pass_out"):
        return _transition(pass_id, PassStatus.OUT)
