"""
TimestampedModel — Abstract base class for release-planning tables.

Adds:
  - String UUID primary key
  - created_at / updated_at columns (updated_at doubles as the
    optimistic-concurrency token on aggregate roots)
"""

import uuid
from datetime import datetime, timezone

from release_planner.models import db


def _uuid():
    """Generate a new UUID4 string for primary keys."""
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class TimestampedModel(db.Model):
    """Abstract base for tables with a UUID key and audit timestamps."""
    __abstract__ = True

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    def touch(self):
        """Advance updated_at even when only child rows changed."""
        self.updated_at = _utcnow()
