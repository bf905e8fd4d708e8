"""
Gate Pass Service
Roster collaborator.

The pass lifecycle only needs two things from the roster: whether a subject
exists, and which subjects are eligible for leave passes.
"""

from sqlalchemy import select

from gatepass.models import db
from gatepass.models.roster import Student


def list_eligible_subjects() -> list[int]:
    """Ids of all active students, ascending."""
    return list(db.session.execute(
        select(Student.id).where(Student.is_active.is_(True)).order_by(Student.id)
    ).scalars().all())


def subject_exists(subject_id: int) -> bool:
    return db.session.get(Student, subject_id) is not None
