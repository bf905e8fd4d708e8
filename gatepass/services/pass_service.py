"""
Gate Pass Service
Pass lifecycle service: grants, checkpoint exits, returns and dashboard reads.

Transitions (see gatepass.models.gate_pass.PASS_TRANSITIONS):
    grant_pass   ->            OPEN
    mark_out     OPEN       -> OUT
    return_pass  OPEN | OUT -> CLOSED

Every successful mutation commits, then synchronously invalidates the
cache keys it made stale, then records an audit event, and only then
returns to the caller.

Usage:
    from gatepass.services.pass_service import grant_pass, return_pass

    gp = grant_pass(subject_id=42, sponsor_id=7, sponsor_name="Mentor A",
                    purpose="clinic visit")
    return_pass(gp.id)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from gatepass.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from gatepass.models import db
from gatepass.models.gate_pass import GatePass, PassStatus
from gatepass.services import pass_store
from gatepass.services.audit_service import record_activity
from gatepass.services.cache_service import (
    OPEN_PASSES_KEY,
    get_read_cache,
    pass_keys_for_subject,
    subject_passes_key,
)
from gatepass.services.pass_store import store_operation
from gatepass.services.roster_service import subject_exists

logger = logging.getLogger(__name__)


# ── Input coercion ───────────────────────────────────────────────────────


def _coerce_id(name: str, value, errors: dict) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        errors[name] = "required"
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        errors[name] = "must be an integer"
        return None


def _coerce_text(name: str, value, errors: dict) -> str | None:
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        errors[name] = "required"
        return None
    return text


def _coerce_datetime(name: str, value, errors: dict) -> datetime | None:
    """Parse to an aware UTC datetime; naive input is taken as UTC."""
    if value in (None, ""):
        return None
    if not isinstance(value, datetime):
        try:
            value = datetime.fromisoformat(str(value))
        except ValueError:
            errors[name] = "must be an ISO-8601 timestamp"
            return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _commit(operation: str) -> None:
    with store_operation(operation):
        db.session.commit()


# ═════════════════════════════════════════════════════════════════════════
# Grant
# ═════════════════════════════════════════════════════════════════════════


def grant_pass(
    subject_id,
    sponsor_id,
    sponsor_name,
    purpose,
    expected_return_at=None,
    *,
    actor_id: int | None = None,
    leave_window_id: int | None = None,
) -> GatePass:
    """Open a new pass for a subject.

    Raises:
        ValidationError: a required field is missing or malformed, or the
            subject is not on the roster.
        ConflictError: the subject already holds an OPEN/OUT pass.
        StoreUnavailableError: the database could not be reached.
    """
    errors: dict[str, str] = {}
    subject_id = _coerce_id("subject_id", subject_id, errors)
    sponsor_id = _coerce_id("sponsor_id", sponsor_id, errors)
    sponsor_name = _coerce_text("sponsor_name", sponsor_name, errors)
    purpose = _coerce_text("purpose", purpose, errors)
    expected_return_at = _coerce_datetime("expected_return_at", expected_return_at, errors)
    if errors:
        raise ValidationError(
            f"Invalid pass request: {', '.join(sorted(errors))}", details=errors,
        )

    with store_operation("grant_pass"):
        if not subject_exists(subject_id):
            raise ValidationError(
                f"Unknown subject {subject_id}", details={"subject_id": "not on roster"},
            )

    existing = pass_store.find_open_or_out(subject_id)
    if existing is not None:
        raise ConflictError(
            "Pass", "subject_id", subject_id,
            message="subject already holds an open pass",
        )

    # The unique index re-checks inside the INSERT; a racing grant that
    # passed the lookup above fails here with ConflictError.
    gp = pass_store.create_pass(
        subject_id=subject_id,
        sponsor_id=sponsor_id,
        sponsor_name=sponsor_name,
        purpose=purpose,
        expected_return_at=expected_return_at,
        leave_window_id=leave_window_id,
    )
    _commit("grant_pass")
    get_read_cache().invalidate_many(pass_keys_for_subject(subject_id))

    record_activity(
        subject_id,
        actor_id if actor_id is not None else sponsor_id,
        "GRANT",
        {"pass_id": gp.id, "purpose": purpose, "leave_window_id": leave_window_id},
        timestamp=gp.issued_at,
    )
    logger.info("Pass %s granted: subject=%s sponsor=%s", gp.id, subject_id, sponsor_id)
    return gp


# ═════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════


def _load(pass_id: int) -> GatePass:
    gp = pass_store.get_pass(pass_id)
    if gp is None:
        raise NotFoundError(resource="Pass", resource_id=pass_id)
    return gp


def _current_status(pass_id: int) -> str:
    db.session.rollback()
    gp = pass_store.get_pass(pass_id)
    return gp.status.value if gp is not None else "missing"


def return_pass(pass_id: int, *, actor_id: int | None = None) -> GatePass:
    """Close an OPEN/OUT pass and stamp ``closed_at``.

    Raises:
        NotFoundError: no pass with this id.
        InvalidStateError: the pass is already CLOSED (a second return is an
            error, never a silent success).
    """
    gp = _load(pass_id)
    if gp.status == PassStatus.CLOSED:
        raise InvalidStateError("Pass", pass_id, gp.status.value, "return")

    try:
        gp = pass_store.close_pass(pass_id)
    except NotFoundError:
        # Lost a race against a concurrent return.
        raise InvalidStateError("Pass", pass_id, _current_status(pass_id), "return") from None
    _commit("return_pass")
    get_read_cache().invalidate_many(pass_keys_for_subject(gp.subject_id))

    record_activity(
        gp.subject_id,
        actor_id,
        "RETURN",
        {"pass_id": gp.id},
        timestamp=gp.closed_at,
    )
    logger.info("Pass %s returned: subject=%s", gp.id, gp.subject_id)
    return gp


def mark_out(pass_id: int, *, actor_id: int | None = None) -> GatePass:
    """Record that the holder of an OPEN pass has left through the checkpoint.

    Raises:
        NotFoundError: no pass with this id.
        InvalidStateError: the pass is not OPEN.
    """
    gp = _load(pass_id)
    if gp.status != PassStatus.OPEN:
        raise InvalidStateError("Pass", pass_id, gp.status.value, "mark out")

    try:
        gp = pass_store.mark_pass_out(pass_id)
    except NotFoundError:
        raise InvalidStateError("Pass", pass_id, _current_status(pass_id), "mark out") from None
    _commit("mark_out")
    get_read_cache().invalidate_many(pass_keys_for_subject(gp.subject_id))

    record_activity(gp.subject_id, actor_id, "MARK_OUT", {"pass_id": gp.id})
    logger.info("Pass %s marked OUT: subject=%s", gp.id, gp.subject_id)
    return gp


# ═════════════════════════════════════════════════════════════════════════
# Reads (through the cache)
# ═════════════════════════════════════════════════════════════════════════


def get_pass(pass_id: int) -> dict:
    return _load(pass_id).to_dict()


def list_open_passes() -> list[dict]:
    """OPEN/OUT passes, newest first."""
    return get_read_cache().get_or_load(
        OPEN_PASSES_KEY,
        lambda: [gp.to_dict() for gp in pass_store.list_open()],
    )


def list_subject_passes(subject_id: int) -> list[dict]:
    """Every pass of one subject, newest first."""
    return get_read_cache().get_or_load(
        subject_passes_key(subject_id),
        lambda: [gp.to_dict() for gp in pass_store.list_by_subject(subject_id)],
    )
