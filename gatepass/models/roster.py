"""
Gate Pass Service
Roster model.

Models:
    - Student: minimal roster row referenced by passes and leave exclusions.

Roster management itself lives outside this service; only the columns the
pass lifecycle reads are mapped here.
"""

from datetime import datetime, timezone

from gatepass.models import db


class Student(db.Model):
    """A roster subject who can hold a gate pass."""

    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    admission_number = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(150), nullable=False)
    class_name = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True,
                          comment="Inactive students are never auto-granted passes")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "admission_number": self.admission_number,
            "name": self.name,
            "class_name": self.class_name,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Student {self.id}: {self.admission_number}>"
