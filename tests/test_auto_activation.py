"""
Leave auto-activation engine tests.

Covers:
    1. Granting for a window in progress (sponsor, purpose, expected return)
    2. Idempotency across repeated runs
    3. Exclusions, inactive students and subjects already holding a pass
    4. Expiry of elapsed windows
    5. Overnight windows and timezone conversion
    6. Per-subject failure isolation; window-store failure propagation
"""

from datetime import date, datetime, time, timezone

import pytest

from gatepass.core.exceptions import StoreUnavailableError
from gatepass.models import db
from gatepass.models.audit import AuditLog
from gatepass.models.gate_pass import GatePass, PassStatus
from gatepass.models.leave import LeaveStatus, LeaveWindow
from gatepass.services import leave_service, pass_service
from gatepass.services.auto_activation import AutoActivationEngine

# Inside the default fixture window (2026-03-01..03, 09:00-17:00)
DURING = datetime(2026, 3, 2, 10, 0)


@pytest.fixture()
def engine():
    return AutoActivationEngine(tz_name="UTC")


@pytest.fixture()
def roster(make_student):
    return [make_student() for _ in range(3)]


def _passes_for(subject_id):
    return GatePass.query.filter_by(subject_id=subject_id).all()


# ═════════════════════════════════════════════════════════════════════════════
# Granting
# ═════════════════════════════════════════════════════════════════════════════


class TestGranting:
    def test_grants_every_eligible_subject(self, engine, roster, make_window):
        window = make_window()
        result = engine.run_once(now=DURING)

        assert result["windows_processed"] == 1
        assert result["passes_granted"] == 3
        assert result["errors"] == 0
        for s in roster:
            (gp,) = _passes_for(s.id)
            assert gp.status == PassStatus.OPEN
            assert gp.leave_window_id == window.id

    def test_derived_pass_fields(self, engine, student, make_window):
        make_window(reason="Diwali Break")
        engine.run_once(now=DURING)

        (gp,) = _passes_for(student.id)
        assert gp.sponsor_id == 900
        assert gp.sponsor_name == "Warden Rao"
        assert gp.purpose == "Diwali Break (2026-03-01 - 2026-03-03)"
        assert gp.expected_return_at.replace(tzinfo=None) == datetime(2026, 3, 3, 17, 0)

    def test_default_reason(self, engine, student, make_window):
        make_window()
        engine.run_once(now=DURING)
        assert _passes_for(student.id)[0].purpose.startswith("Monthly Leave (")

    def test_grants_are_audited(self, engine, student, make_window):
        window = make_window()
        engine.run_once(now=DURING)
        log = AuditLog.query.filter_by(action="GRANT").one()
        assert log.actor_id == 900
        assert log.details["leave_window_id"] == window.id

    def test_second_run_grants_nothing(self, engine, roster, make_window):
        make_window()
        engine.run_once(now=DURING)
        again = engine.run_once(now=DURING.replace(hour=11))

        assert again["passes_granted"] == 0
        assert again["subjects_skipped"] == 3
        assert GatePass.query.count() == 3

    def test_returned_subject_is_granted_again(self, engine, student, make_window):
        """A subject who returned mid-window gets a fresh pass on the next run."""
        make_window()
        engine.run_once(now=DURING)
        pass_service.return_pass(_passes_for(student.id)[0].id)

        result = engine.run_once(now=DURING.replace(hour=12))
        assert result["passes_granted"] == 1
        statuses = sorted(gp.status.value for gp in _passes_for(student.id))
        assert statuses == ["CLOSED", "OPEN"]

    def test_open_list_reflects_auto_grants(self, engine, roster, make_window):
        assert pass_service.list_open_passes() == []
        make_window()
        engine.run_once(now=DURING)
        assert len(pass_service.list_open_passes()) == 3


# ═════════════════════════════════════════════════════════════════════════════
# Eligibility
# ═════════════════════════════════════════════════════════════════════════════


class TestEligibility:
    def test_excluded_subject_never_granted(self, engine, roster, make_window):
        excluded = roster[1]
        make_window(excluded_subjects=[excluded.id])

        result = engine.run_once(now=DURING)
        engine.run_once(now=DURING.replace(hour=15))

        assert result["passes_granted"] == 2
        assert _passes_for(excluded.id) == []

    def test_exclusion_added_later_applies_to_next_run(self, engine, roster, make_window):
        window = make_window()
        leave_service.set_exclusions(window.id, [roster[0].id])
        engine.run_once(now=DURING)
        assert _passes_for(roster[0].id) == []

    def test_inactive_student_not_granted(self, engine, make_student, make_window):
        active = make_student()
        inactive = make_student(is_active=False)
        make_window()
        engine.run_once(now=DURING)
        assert len(_passes_for(active.id)) == 1
        assert _passes_for(inactive.id) == []

    def test_manual_pass_holder_is_skipped(self, engine, roster, make_window):
        manual = pass_service.grant_pass(roster[0].id, 7, "Mentor A", "clinic")
        make_window()

        result = engine.run_once(now=DURING)
        assert result["passes_granted"] == 2
        assert result["subjects_skipped"] == 1
        assert [gp.id for gp in _passes_for(roster[0].id)] == [manual.id]

    def test_outside_daily_hours_does_nothing(self, engine, roster, make_window):
        window = make_window()
        result = engine.run_once(now=datetime(2026, 3, 2, 18, 0))
        assert result["windows_processed"] == 0
        assert GatePass.query.count() == 0
        assert db.session.get(LeaveWindow, window.id).status == LeaveStatus.ACTIVE

    def test_before_start_date_does_nothing(self, engine, roster, make_window):
        make_window()
        result = engine.run_once(now=datetime(2026, 2, 28, 10, 0))
        assert result["passes_granted"] == 0

    def test_two_windows_grant_each_subject_once(self, engine, roster, make_window):
        make_window()
        make_window(reason="Sports Meet", created_by=901, created_by_name="Coach Iyer")
        result = engine.run_once(now=DURING)
        assert result["windows_processed"] == 2
        assert result["passes_granted"] == 3
        assert GatePass.query.count() == 3


# ═════════════════════════════════════════════════════════════════════════════
# Expiry
# ═════════════════════════════════════════════════════════════════════════════


class TestExpiry:
    def test_elapsed_window_expires_without_granting(self, engine, roster, make_window):
        window = make_window()
        result = engine.run_once(now=datetime(2026, 3, 3, 17, 1))

        assert result["windows_expired"] == 1
        assert result["passes_granted"] == 0
        assert db.session.get(LeaveWindow, window.id).status == LeaveStatus.EXPIRED
        log = AuditLog.query.filter_by(action="LEAVE_EXPIRE").one()
        assert log.details == {"leave_window_id": window.id}

    def test_last_minute_still_grants(self, engine, student, make_window):
        make_window()
        result = engine.run_once(now=datetime(2026, 3, 3, 17, 0))
        assert result["passes_granted"] == 1

    def test_expired_window_is_ignored_afterwards(self, engine, roster, make_window):
        make_window()
        engine.run_once(now=datetime(2026, 3, 4, 9, 0))
        result = engine.run_once(now=datetime(2026, 3, 4, 9, 1))
        assert result == {
            "windows_processed": 0,
            "passes_granted": 0,
            "windows_expired": 0,
            "subjects_skipped": 0,
            "errors": 0,
        }

    def test_expiry_leaves_existing_passes_alone(self, engine, student, make_window):
        make_window()
        engine.run_once(now=DURING)
        engine.run_once(now=datetime(2026, 3, 5, 9, 0))
        assert _passes_for(student.id)[0].status == PassStatus.OPEN


# ═════════════════════════════════════════════════════════════════════════════
# Overnight windows & timezone
# ═════════════════════════════════════════════════════════════════════════════


class TestSchedule:
    @pytest.mark.parametrize("now, expected", [
        (datetime(2026, 3, 1, 23, 0), True),    # first evening
        (datetime(2026, 3, 2, 5, 59), True),    # first morning
        (datetime(2026, 3, 2, 12, 0), False),   # daytime gap
        (datetime(2026, 3, 3, 22, 30), True),   # last evening
        (datetime(2026, 3, 4, 6, 0), True),     # last morning, final minute
        (datetime(2026, 3, 1, 5, 0), False),    # morning before the first evening
    ])
    def test_overnight_occurrence(self, now, expected):
        window = LeaveWindow(
            start_date=date(2026, 3, 1), end_date=date(2026, 3, 3),
            start_time=time(22, 0), end_time=time(6, 0),
            reason="Night Out", created_by=1, created_by_name="W",
        )
        assert window.runs_overnight
        assert window.occurs_at(now) is expected

    def test_overnight_final_end_is_next_morning(self):
        window = LeaveWindow(
            start_date=date(2026, 3, 1), end_date=date(2026, 3, 3),
            start_time=time(22, 0), end_time=time(6, 0),
            reason="Night Out", created_by=1, created_by_name="W",
        )
        assert window.final_end() == datetime(2026, 3, 4, 6, 0)
        assert not window.has_elapsed(datetime(2026, 3, 4, 6, 0))
        assert window.has_elapsed(datetime(2026, 3, 4, 6, 1))

    def test_overnight_window_grants_after_midnight(self, engine, student, make_window):
        make_window(start_time="22:00", end_time="06:00")
        result = engine.run_once(now=datetime(2026, 3, 2, 2, 0))
        assert result["passes_granted"] == 1
        (gp,) = _passes_for(student.id)
        assert gp.expected_return_at.replace(tzinfo=None) == datetime(2026, 3, 4, 6, 0)

    def test_local_now_converts_aware_time(self):
        engine = AutoActivationEngine(tz_name="Asia/Kolkata")
        utc = datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)
        assert engine.local_now(utc) == datetime(2026, 3, 2, 9, 30)

    def test_naive_now_is_taken_as_local(self):
        engine = AutoActivationEngine(tz_name="Asia/Kolkata")
        assert engine.local_now(DURING) == DURING

    def test_window_evaluated_in_leave_timezone(self, student, make_window):
        engine = AutoActivationEngine(tz_name="Asia/Kolkata")
        make_window()
        # 03:00 UTC is 08:30 in Kolkata, before the 09:00 start
        early = engine.run_once(now=datetime(2026, 3, 2, 3, 0, tzinfo=timezone.utc))
        assert early["passes_granted"] == 0
        # 04:00 UTC is 09:30 in Kolkata
        later = engine.run_once(now=datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc))
        assert later["passes_granted"] == 1
        (gp,) = _passes_for(student.id)
        # 17:00 Kolkata on the last day, stored in UTC
        assert gp.expected_return_at.replace(tzinfo=None) == datetime(2026, 3, 3, 11, 30)


# ═════════════════════════════════════════════════════════════════════════════
# Failure handling
# ═════════════════════════════════════════════════════════════════════════════


class TestFailures:
    def test_malformed_roster_entry_is_skipped(self, make_student, make_window):
        a, b = make_student(), make_student()
        engine = AutoActivationEngine(roster=lambda: [a.id, "not-an-id", None, b.id])
        make_window()

        result = engine.run_once(now=DURING)
        assert result["passes_granted"] == 2
        assert result["errors"] == 2

    def test_unknown_roster_subject_is_an_error(self, student, make_window):
        engine = AutoActivationEngine(roster=lambda: [999, student.id])
        make_window()
        result = engine.run_once(now=DURING)
        assert result["errors"] == 1
        assert result["passes_granted"] == 1

    def test_one_failing_grant_does_not_stop_the_rest(self, engine, roster, make_window, monkeypatch):
        from gatepass.services import auto_activation

        real_grant = auto_activation.grant_pass
        victim = roster[1].id

        def flaky_grant(subject_id, *args, **kwargs):
            if subject_id == victim:
                raise RuntimeError("transient failure")
            return real_grant(subject_id, *args, **kwargs)

        monkeypatch.setattr(auto_activation, "grant_pass", flaky_grant)
        make_window()
        result = engine.run_once(now=DURING)

        assert result["passes_granted"] == 2
        assert result["errors"] == 1
        assert _passes_for(victim) == []

        # Next run picks the subject up
        monkeypatch.setattr(auto_activation, "grant_pass", real_grant)
        retry = engine.run_once(now=DURING.replace(hour=11))
        assert retry["passes_granted"] == 1

    def test_roster_failure_is_counted_not_raised(self, make_window):
        def broken_roster():
            raise RuntimeError("roster offline")

        engine = AutoActivationEngine(roster=broken_roster)
        make_window()
        result = engine.run_once(now=DURING)
        assert result["errors"] == 1
        assert result["passes_granted"] == 0

    def test_roster_failure_still_expires_later_windows(self, make_window):
        def broken_roster():
            raise RuntimeError("roster offline")

        engine = AutoActivationEngine(roster=broken_roster)
        make_window(start_date="2026-02-20", end_date="2026-03-05")
        old = make_window(start_date="2026-03-01", end_date="2026-03-01")
        result = engine.run_once(now=DURING)

        assert result["errors"] == 1
        assert result["windows_expired"] == 1
        assert db.session.get(LeaveWindow, old.id).status == LeaveStatus.EXPIRED

    def test_window_store_failure_propagates(self, engine, monkeypatch):
        def unavailable():
            raise StoreUnavailableError("list_active_windows")

        monkeypatch.setattr(leave_service, "list_active_windows", unavailable)
        with pytest.raises(StoreUnavailableError):
            engine.run_once(now=DURING)
