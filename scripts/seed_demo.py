#!/usr/bin/env python3
"""
Gate Pass Service demo seed.

A small hostel roster, one manual pass and a leave window covering today,
so the dashboards and the auto-activation job have something to show.

Usage:
    python scripts/seed_demo.py              # add to the current DB
    python scripts/seed_demo.py --reset      # drop and recreate tables first
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone

sys.path.insert(0, ".")

from gatepass import create_app
from gatepass.core.exceptions import ConflictError
from gatepass.models import db
from gatepass.models.roster import Student
from gatepass.services.leave_service import create_leave_window
from gatepass.services.pass_service import grant_pass

ROSTER = [
    ("HST-1001", "Aarav Menon", "11-A"),
    ("HST-1002", "Diya Kulkarni", "11-A"),
    ("HST-1003", "Kabir Shah", "11-B"),
    ("HST-1004", "Meera Pillai", "12-A"),
    ("HST-1005", "Rohan Das", "12-A"),
    ("HST-1006", "Sana Qureshi", "12-B"),
]


def seed_roster():
    students = []
    for admission, name, class_name in ROSTER:
        s = Student.query.filter_by(admission_number=admission).first()
        if s is None:
            s = Student(admission_number=admission, name=name, class_name=class_name)
            db.session.add(s)
        students.append(s)
    db.session.commit()
    return students


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="drop and recreate all tables")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.reset:
            db.drop_all()
            db.create_all()

        students = seed_roster()
        print(f"  Roster: {len(students)} students")

        try:
            manual = grant_pass(students[0].id, 501, "Ms. Fernandes", "Dental appointment",
                                datetime.now(timezone.utc) + timedelta(hours=3))
            print(f"  Manual pass #{manual.id} for {students[0].name}")
        except ConflictError:
            print(f"  {students[0].name} already holds an open pass")

        today = datetime.now(timezone.utc).date()
        window = create_leave_window({
            "start_date": today.isoformat(),
            "end_date": (today + timedelta(days=2)).isoformat(),
            "start_time": "08:00",
            "end_time": "20:00",
            "reason": "Monthly Leave",
            "created_by": 900,
            "created_by_name": "Warden Rao",
            "excluded_subjects": [students[-1].id],
        })
        print(f"  Leave window #{window.id}: {window.start_date}..{window.end_date}, "
              f"{len(window.exclusions)} excluded")


if __name__ == "__main__":
    main()
