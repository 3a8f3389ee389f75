"""
SessionScopedModel: Abstract base class for waste-walk-scoped tables.

Every artefact of the future-state pipeline (agent runs, solution cards,
future-state versions, waves, comparison snapshots) belongs to exactly one
waste-walk session. This adds:
  - session_id FK column with index (cascade on session delete)
  - shared uuid / utc helpers
"""

import uuid
from datetime import datetime, timezone

from leanflow.models import db


def new_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(value):
    """Serialize an optional datetime for to_dict()."""
    return value.isoformat() if value else None


class SessionScopedModel(db.Model):
    """Abstract base for session-scoped tables."""
    __abstract__ = True

    session_id = db.Column(
        db.String(36),
        db.ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
