"""
Gate Pass Service
Leave blueprint: leave windows, their exclusions and the auto-activation job.

Endpoints:
    GET    /api/v1/leave-windows                     list (?status=ACTIVE|EXPIRED)
    POST   /api/v1/leave-windows                     create (201)
    GET    /api/v1/leave-windows/<id>                single window with exclusions
    DELETE /api/v1/leave-windows/<id>                delete a window and its exclusions
    PUT    /api/v1/leave-windows/<id>/exclusions     replace the exclusion list
    POST   /api/v1/leave-windows/<id>/grant          grant passes for one window now
    POST   /api/v1/leave-windows/auto-activate       run auto-activation now

    GET    /api/v1/scheduler                         scheduler state + last run
    POST   /api/v1/scheduler/start                   start periodic ticks
    POST   /api/v1/scheduler/stop                    cancel future ticks
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from gatepass.blueprints import json_body, register_error_handlers
from gatepass.core.exceptions import ValidationError
from gatepass.services import leave_service
from gatepass.services.auto_activation import build_engine
from gatepass.services.scheduler_service import get_job_record, get_leave_scheduler

logger = logging.getLogger(__name__)

# An in-flight tick is allowed to finish before /scheduler/stop answers
STOP_TIMEOUT_SECONDS = 10

leave_bp = Blueprint("leave", __name__, url_prefix="/api/v1")
register_error_handlers(leave_bp)


# ═════════════════════════════════════════════════════════════════════════
# Leave windows
# ═════════════════════════════════════════════════════════════════════════


@leave_bp.route("/leave-windows", methods=["GET"])
def list_windows():
    windows = leave_service.list_leave_windows(status=request.args.get("status"))
    return jsonify({
        "leave_windows": [w.to_dict() for w in windows],
        "total": len(windows),
    })


@leave_bp.route("/leave-windows", methods=["POST"])
def create_window():
    """
    Create an ACTIVE leave window.

    Body:
        start_date, end_date           YYYY-MM-DD
        start_time, end_time           HH:MM (start later than end = overnight)
        created_by, created_by_name    sponsor of the derived passes
        reason                         optional, default "Monthly Leave"
        excluded_subjects              optional list of subject ids
    """
    window = leave_service.create_leave_window(json_body())
    return jsonify(window.to_dict()), 201


@leave_bp.route("/leave-windows/<int:window_id>", methods=["GET"])
def get_window(window_id):
    return jsonify(leave_service.get_leave_window(window_id).to_dict())


@leave_bp.route("/leave-windows/<int:window_id>/exclusions", methods=["PUT"])
def replace_exclusions(window_id):
    data = json_body()
    window = leave_service.set_exclusions(
        window_id,
        data.get("excluded_subjects", []),
        updated_by=data.get("updated_by"),
    )
    return jsonify(window.to_dict())


@leave_bp.route("/leave-windows/<int:window_id>", methods=["DELETE"])
def delete_window(window_id):
    """Delete a window and its exclusions; passes it granted are kept."""
    leave_service.delete_leave_window(window_id)
    return jsonify({"deleted": True})


@leave_bp.route("/leave-windows/<int:window_id>/grant", methods=["POST"])
def grant_window(window_id):
    """
    Grant passes to every eligible subject of one window, now.

    Body (optional):
        sponsor_id, sponsor_name    override the window creator as sponsor
    """
    data = json_body()
    sponsor_id = data.get("sponsor_id")
    if sponsor_id not in (None, ""):
        try:
            sponsor_id = int(sponsor_id)
        except (TypeError, ValueError):
            raise ValidationError("sponsor_id must be an integer",
                                  details={"sponsor_id": "must be an integer"}) from None
    else:
        sponsor_id = None
    sponsor_name = data.get("sponsor_name")
    sponsor_name = (sponsor_name.strip() or None) if isinstance(sponsor_name, str) else None

    result = build_engine(current_app).grant_window(
        window_id, sponsor_id=sponsor_id, sponsor_name=sponsor_name,
    )
    return jsonify(result)


@leave_bp.route("/leave-windows/auto-activate", methods=["POST"])
def auto_activate():
    """Run one auto-activation pass synchronously and return its counts."""
    result = build_engine(current_app).run_once()
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════
# Scheduler control
# ═════════════════════════════════════════════════════════════════════════


def _scheduler_payload(**extra):
    payload = get_leave_scheduler().status()
    payload["job"] = get_job_record()
    payload.update(extra)
    return payload


@leave_bp.route("/scheduler", methods=["GET"])
def scheduler_status():
    return jsonify(_scheduler_payload())


@leave_bp.route("/scheduler/start", methods=["POST"])
def scheduler_start():
    started = get_leave_scheduler().start()
    return jsonify(_scheduler_payload(changed=started))


@leave_bp.route("/scheduler/stop", methods=["POST"])
def scheduler_stop():
    stopped = get_leave_scheduler().stop(join=True, timeout=STOP_TIMEOUT_SECONDS)
    return jsonify(_scheduler_payload(changed=stopped))
