"""
Leave window, auto-activation and scheduler API tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from gatepass.models.leave import LeaveExclusion
from gatepass.services.scheduler_service import get_leave_scheduler

BASE = "/api/v1"


def _window_body(**overrides):
    body = {
        "start_date": "2026-03-01",
        "end_date": "2026-03-03",
        "start_time": "09:00",
        "end_time": "17:00",
        "created_by": 900,
        "created_by_name": "Warden Rao",
    }
    body.update(overrides)
    return body


# ═════════════════════════════════════════════════════════════════════════════
# Leave windows
# ═════════════════════════════════════════════════════════════════════════════


class TestLeaveWindowsAPI:
    def test_create(self, client, make_student):
        a, b = make_student(), make_student()
        res = client.post(f"{BASE}/leave-windows",
                          json=_window_body(excluded_subjects=[b.id, a.id], reason="Holi"))
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "ACTIVE"
        assert data["reason"] == "Holi"
        assert data["start_time"] == "09:00"
        assert data["exclusions"] == sorted([a.id, b.id])

    def test_create_defaults_reason(self, client):
        data = client.post(f"{BASE}/leave-windows", json=_window_body()).get_json()
        assert data["reason"] == "Monthly Leave"
        assert data["exclusions"] == []

    def test_create_accepts_timestamps_for_dates(self, client):
        res = client.post(f"{BASE}/leave-windows", json=_window_body(
            start_date="2026-03-01T00:00:00.000Z", end_date="2026-03-03T00:00:00.000Z",
        ))
        assert res.status_code == 201
        assert res.get_json()["end_date"] == "2026-03-03"

    def test_missing_fields(self, client):
        res = client.post(f"{BASE}/leave-windows", json={"start_date": "2026-03-01"})
        assert res.status_code == 400
        details = res.get_json()["details"]
        assert set(details) == {"end_date", "start_time", "end_time",
                                "created_by", "created_by_name"}

    @pytest.mark.parametrize("field, value", [
        ("start_date", "03/01/2026"),
        ("start_time", "9am"),
        ("end_time", "25:00"),
        ("created_by", "warden"),
    ])
    def test_malformed_field(self, client, field, value):
        res = client.post(f"{BASE}/leave-windows", json=_window_body(**{field: value}))
        assert res.status_code == 400
        assert field in res.get_json()["details"]

    def test_end_before_start(self, client):
        res = client.post(f"{BASE}/leave-windows",
                          json=_window_body(start_date="2026-03-05", end_date="2026-03-01"))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"end_date": "must not be before start_date"}

    def test_unknown_excluded_subject(self, client):
        res = client.post(f"{BASE}/leave-windows", json=_window_body(excluded_subjects=[777]))
        assert res.status_code == 400

    def test_exclusions_must_be_a_list(self, client):
        res = client.post(f"{BASE}/leave-windows", json=_window_body(excluded_subjects="1,2"))
        assert res.status_code == 400

    def test_get_and_list(self, client):
        window_id = client.post(f"{BASE}/leave-windows", json=_window_body()).get_json()["id"]
        assert client.get(f"{BASE}/leave-windows/{window_id}").get_json()["id"] == window_id

        data = client.get(f"{BASE}/leave-windows").get_json()
        assert data["total"] == 1
        assert client.get(f"{BASE}/leave-windows?status=EXPIRED").get_json()["total"] == 0
        assert client.get(f"{BASE}/leave-windows?status=ACTIVE").get_json()["total"] == 1

    def test_list_bad_status(self, client):
        assert client.get(f"{BASE}/leave-windows?status=PAUSED").status_code == 400

    def test_get_unknown_window(self, client):
        assert client.get(f"{BASE}/leave-windows/404").status_code == 404

    def test_replace_exclusions(self, client, make_student):
        a, b = make_student(), make_student()
        window_id = client.post(f"{BASE}/leave-windows",
                                json=_window_body(excluded_subjects=[a.id])).get_json()["id"]

        res = client.put(f"{BASE}/leave-windows/{window_id}/exclusions",
                         json={"excluded_subjects": [b.id], "updated_by": 901})
        assert res.status_code == 200
        assert res.get_json()["exclusions"] == [b.id]

        # Same set again must not trip the (window, subject) unique constraint
        res = client.put(f"{BASE}/leave-windows/{window_id}/exclusions",
                         json={"excluded_subjects": [b.id, a.id]})
        assert res.get_json()["exclusions"] == sorted([a.id, b.id])

    def test_clear_exclusions(self, client, student):
        window_id = client.post(f"{BASE}/leave-windows",
                                json=_window_body(excluded_subjects=[student.id])).get_json()["id"]
        res = client.put(f"{BASE}/leave-windows/{window_id}/exclusions",
                         json={"excluded_subjects": []})
        assert res.get_json()["exclusions"] == []

    def test_replace_exclusions_unknown_window(self, client):
        res = client.put(f"{BASE}/leave-windows/999/exclusions", json={"excluded_subjects": []})
        assert res.status_code == 404

    def test_delete_window_keeps_its_passes(self, client, make_student):
        a, b = make_student(), make_student()
        window_id = client.post(f"{BASE}/leave-windows",
                                json=_window_body(excluded_subjects=[b.id])).get_json()["id"]
        client.post(f"{BASE}/leave-windows/{window_id}/grant")
        # Warm the cached lists that carry leave_window_id
        (cached,) = client.get(f"{BASE}/passes/open").get_json()["passes"]
        assert cached["leave_window_id"] == window_id
        client.get(f"{BASE}/subjects/{a.id}/passes")

        res = client.delete(f"{BASE}/leave-windows/{window_id}")
        assert res.status_code == 200
        assert res.get_json() == {"deleted": True}
        assert client.get(f"{BASE}/leave-windows/{window_id}").status_code == 404
        assert LeaveExclusion.query.count() == 0

        (open_pass,) = client.get(f"{BASE}/passes/open").get_json()["passes"]
        assert open_pass["subject_id"] == a.id
        assert open_pass["status"] == "OPEN"
        assert open_pass["leave_window_id"] is None
        history = client.get(f"{BASE}/subjects/{a.id}/passes").get_json()["passes"]
        assert history[0]["leave_window_id"] is None

    def test_delete_unknown_window(self, client):
        assert client.delete(f"{BASE}/leave-windows/404").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Manual grant for one window
# ═════════════════════════════════════════════════════════════════════════════


class TestWindowGrantAPI:
    def test_grants_eligible_subjects_now(self, client, make_student):
        holder, eligible, excluded = make_student(), make_student(), make_student()
        client.post(f"{BASE}/passes", json={
            "subject_id": holder.id, "sponsor_id": 7,
            "sponsor_name": "Mentor A", "purpose": "clinic visit",
        })
        # A manual grant ignores the window dates and daily hours
        window_id = client.post(f"{BASE}/leave-windows", json=_window_body(
            excluded_subjects=[excluded.id],
        )).get_json()["id"]

        res = client.post(f"{BASE}/leave-windows/{window_id}/grant",
                          json={"sponsor_id": 55, "sponsor_name": "Mentor B"})
        assert res.status_code == 200
        result = res.get_json()
        assert result["windows_processed"] == 1
        assert result["passes_granted"] == 1
        assert result["subjects_skipped"] == 1
        assert result["errors"] == 0

        (gp,) = client.get(f"{BASE}/subjects/{eligible.id}/passes").get_json()["passes"]
        assert gp["sponsor_id"] == 55
        assert gp["sponsor_name"] == "Mentor B"
        assert gp["leave_window_id"] == window_id
        assert gp["purpose"] == "Monthly Leave (2026-03-01 - 2026-03-03)"
        assert client.get(f"{BASE}/subjects/{excluded.id}/passes").get_json()["total"] == 0

    def test_sponsor_defaults_to_window_creator(self, client, student):
        window_id = client.post(f"{BASE}/leave-windows", json=_window_body()).get_json()["id"]
        assert client.post(f"{BASE}/leave-windows/{window_id}/grant").status_code == 200

        (gp,) = client.get(f"{BASE}/subjects/{student.id}/passes").get_json()["passes"]
        assert gp["sponsor_id"] == 900
        assert gp["sponsor_name"] == "Warden Rao"

    def test_second_grant_skips_everyone(self, client, student):
        window_id = client.post(f"{BASE}/leave-windows", json=_window_body()).get_json()["id"]
        client.post(f"{BASE}/leave-windows/{window_id}/grant")
        again = client.post(f"{BASE}/leave-windows/{window_id}/grant").get_json()
        assert again["passes_granted"] == 0
        assert again["subjects_skipped"] == 1

    def test_unknown_window_is_404(self, client):
        assert client.post(f"{BASE}/leave-windows/999/grant").status_code == 404

    def test_expired_window_is_409(self, client, student):
        from gatepass.services import leave_service

        window_id = client.post(f"{BASE}/leave-windows", json=_window_body()).get_json()["id"]
        leave_service.expire_window(window_id)
        res = client.post(f"{BASE}/leave-windows/{window_id}/grant")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_bad_sponsor_id_is_400(self, client):
        window_id = client.post(f"{BASE}/leave-windows", json=_window_body()).get_json()["id"]
        res = client.post(f"{BASE}/leave-windows/{window_id}/grant", json={"sponsor_id": "x"})
        assert res.status_code == 400
        assert res.get_json()["details"] == {"sponsor_id": "must be an integer"}


# ═════════════════════════════════════════════════════════════════════════════
# Auto-activation trigger
# ═════════════════════════════════════════════════════════════════════════════


def _window_covering_now():
    today = datetime.now(timezone.utc).date()
    return _window_body(
        start_date=(today - timedelta(days=1)).isoformat(),
        end_date=(today + timedelta(days=1)).isoformat(),
        start_time="00:00",
        end_time="23:59:59",
    )


class TestAutoActivateAPI:
    def test_trigger_grants_and_is_idempotent(self, client, make_student):
        a, b, c = make_student(), make_student(), make_student()
        client.post(f"{BASE}/leave-windows", json=_window_covering_now() | {
            "excluded_subjects": [c.id],
        })

        res = client.post(f"{BASE}/leave-windows/auto-activate")
        assert res.status_code == 200
        first = res.get_json()
        assert first["passes_granted"] == 2
        assert first["windows_processed"] == 1

        second = client.post(f"{BASE}/leave-windows/auto-activate").get_json()
        assert second["passes_granted"] == 0
        assert second["subjects_skipped"] == 2

        open_ids = {p["subject_id"] for p in client.get(f"{BASE}/passes/open").get_json()["passes"]}
        assert open_ids == {a.id, b.id}

    def test_trigger_expires_past_window(self, client, student):
        window_id = client.post(f"{BASE}/leave-windows", json=_window_body(
            start_date="2020-01-01", end_date="2020-01-02",
        )).get_json()["id"]

        result = client.post(f"{BASE}/leave-windows/auto-activate").get_json()
        assert result["windows_expired"] == 1
        assert client.get(f"{BASE}/leave-windows/{window_id}").get_json()["status"] == "EXPIRED"

    def test_window_store_outage_is_503(self, client, monkeypatch):
        from gatepass.core.exceptions import StoreUnavailableError
        from gatepass.services import leave_service

        def unavailable():
            raise StoreUnavailableError("list_active_windows")

        monkeypatch.setattr(leave_service, "list_active_windows", unavailable)
        assert client.post(f"{BASE}/leave-windows/auto-activate").status_code == 503


# ═════════════════════════════════════════════════════════════════════════════
# Scheduler control
# ═════════════════════════════════════════════════════════════════════════════


class _IdleEngine:
    def run_once(self, now=None):
        return {"windows_processed": 0, "passes_granted": 0, "windows_expired": 0,
                "subjects_skipped": 0, "errors": 0}


class TestSchedulerAPI:
    def test_status(self, client):
        data = client.get(f"{BASE}/scheduler").get_json()
        assert data["state"] == "STOPPED"
        assert data["job_name"] == "leave_auto_activation"

    def test_start_and_stop(self, client, monkeypatch):
        scheduler = get_leave_scheduler()
        monkeypatch.setattr(scheduler, "engine_factory", lambda _app: _IdleEngine())
        # Keep the background thread off the shared in-memory connection
        monkeypatch.setattr(scheduler, "_record", lambda *args: None)
        try:
            res = client.post(f"{BASE}/scheduler/start")
            assert res.status_code == 200
            assert res.get_json()["changed"] is True
            assert res.get_json()["state"] == "RUNNING"

            assert client.post(f"{BASE}/scheduler/start").get_json()["changed"] is False

            res = client.post(f"{BASE}/scheduler/stop")
            assert res.get_json()["changed"] is True
            assert res.get_json()["state"] == "STOPPED"
            assert client.post(f"{BASE}/scheduler/stop").get_json()["changed"] is False
        finally:
            scheduler.stop(join=True, timeout=5)


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════


class TestHealthAPI:
    def test_ready(self, client):
        assert client.get(f"{BASE}/health/ready").get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get(f"{BASE}/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["read_cache"]["status"] == "ok"
        assert checks["leave_scheduler"]["status"] == "STOPPED"
