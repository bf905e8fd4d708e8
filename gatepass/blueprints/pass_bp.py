"""
Gate Pass Service
Pass blueprint: grants, checkpoint exits, returns and dashboard reads.

Endpoints:
    POST /api/v1/passes                           grant a pass (201)
    GET  /api/v1/passes/open                      all OPEN/OUT passes
    GET  /api/v1/passes/<id>                      single pass
    POST /api/v1/passes/<id>/out                  holder left through the checkpoint
    POST /api/v1/passes/<id>/return               close the pass
    GET  /api/v1/subjects/<id>/passes             pass history of one subject
    GET  /api/v1/activity                         audit trail
"""

from flask import Blueprint, jsonify, request

from gatepass.blueprints import json_body, register_error_handlers
from gatepass.core.exceptions import ValidationError
from gatepass.services import pass_service
from gatepass.services.audit_service import list_activity

pass_bp = Blueprint("passes", __name__, url_prefix="/api/v1")
register_error_handlers(pass_bp)


def _actor_id(data: dict) -> int | None:
    actor = data.get("actor_id")
    if actor in (None, ""):
        return None
    try:
        return int(actor)
    except (TypeError, ValueError):
        raise ValidationError("actor_id must be an integer",
                              details={"actor_id": "must be an integer"}) from None


# ── Grant ────────────────────────────────────────────────────────────────────

@pass_bp.route("/passes", methods=["POST"])
def grant():
    """
    Grant a pass.

    Body:
        subject_id, sponsor_id, sponsor_name, purpose   required
        expected_return_at                              ISO-8601, optional
        actor_id                                        defaults to sponsor_id
    """
    data = json_body()
    gp = pass_service.grant_pass(
        data.get("subject_id"),
        data.get("sponsor_id"),
        data.get("sponsor_name"),
        data.get("purpose"),
        data.get("expected_return_at"),
        actor_id=_actor_id(data),
    )
    return jsonify(gp.to_dict()), 201


# ── Reads ────────────────────────────────────────────────────────────────────

@pass_bp.route("/passes/open", methods=["GET"])
def list_open():
    passes = pass_service.list_open_passes()
    return jsonify({"passes": passes, "total": len(passes)})


@pass_bp.route("/passes/<int:pass_id>", methods=["GET"])
def get_pass(pass_id):
    return jsonify(pass_service.get_pass(pass_id))


@pass_bp.route("/subjects/<int:subject_id>/passes", methods=["GET"])
def list_by_subject(subject_id):
    passes = pass_service.list_subject_passes(subject_id)
    return jsonify({"subject_id": subject_id, "passes": passes, "total": len(passes)})


# ── Transitions ──────────────────────────────────────────────────────────────

@pass_bp.route("/passes/<int:pass_id>/out", methods=["POST"])
def mark_out(pass_id):
    gp = pass_service.mark_out(pass_id, actor_id=_actor_id(json_body()))
    return jsonify(gp.to_dict())


@pass_bp.route("/passes/<int:pass_id>/return", methods=["POST"])
def return_pass(pass_id):
    gp = pass_service.return_pass(pass_id, actor_id=_actor_id(json_body()))
    return jsonify(gp.to_dict())


# ── Activity ─────────────────────────────────────────────────────────────────

@pass_bp.route("/activity", methods=["GET"])
def activity():
    """
    Audit trail, newest first.

    Query params:
        subject_id   filter by subject
        limit        max rows (default 100, max 500)
    """
    subject_id = request.args.get("subject_id", type=int)
    limit = request.args.get("limit", 100, type=int)
    if limit < 1:
        raise ValidationError("limit must be positive", details={"limit": "must be >= 1"})
    logs = list_activity(subject_id=subject_id, limit=min(limit, 500))
    return jsonify({"activity": [log.to_dict() for log in logs], "total": len(logs)})
