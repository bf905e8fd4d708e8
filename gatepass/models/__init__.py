"""
Gate Pass Service
Shared SQLAlchemy handle.

Every model module imports ``db`` from here; the application factory binds
it to the app with ``db.init_app(app)``.
"""

from datetime import timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def iso_utc(value):
    """ISO-8601 with an explicit offset; naive values are stored UTC.

    SQLite drops tzinfo from ``DateTime(timezone=True)`` columns on read.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
