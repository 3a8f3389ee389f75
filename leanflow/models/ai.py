"""
Lean Future-State Studio
AI domain models.

Models:
    - AgentRun: one invocation of an external generation capability.
      Doubles as the fingerprint cache (succeeded runs) and the audit trail.

Lifecycle: queued → running → succeeded | failed. A run is never mutated
after it reaches a terminal status.
"""

from leanflow.models import db
from leanflow.models.base import SessionScopedModel, iso, new_uuid, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

AGENT_TYPES = {"synthesis", "solutions", "sequencing", "design"}
RUN_STATUSES = {"queued", "running", "succeeded", "failed"}
TERMINAL_STATUSES = {"succeeded", "failed"}


class AgentRun(SessionScopedModel):
    """
    Invocation record of an agent.

    At most one succeeded run per (session, agent_type, input_hash) is
    authoritative for cache hits: lookups always take the most recent one.
    """

    __tablename__ = "agent_runs"
    __table_args__ = (
        db.Index("idx_agent_runs_lookup", "session_id", "agent_type", "input_hash", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    agent_type = db.Column(db.String(20), nullable=False,
                           comment="synthesis | solutions | sequencing | design")
    input_hash = db.Column(db.String(64), nullable=False, comment="Input fingerprint")
    inputs = db.Column(db.JSON, nullable=True)
    outputs = db.Column(db.JSON, nullable=True, comment="Validated structured output")
    model = db.Column(db.String(80), nullable=True)
    provider = db.Column(db.String(30), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="queued",
                       comment="queued | running | succeeded | failed")
    error = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def duration_ms(self) -> int | None:
        if not self.started_at or not self.completed_at:
            return None
        # SQLite hands back naive datetimes; compare on the naive UTC wall clock
        delta = self.completed_at.replace(tzinfo=None) - self.started_at.replace(tzinfo=None)
        return int(delta.total_seconds() * 1000)

    def to_dict(self, include_payload: bool = False):
        d = {
            "id": self.id,
            "session_id": self.session_id,
            "agent_type": self.agent_type,
            "input_hash": self.input_hash,
            "model": self.model,
            "provider": self.provider,
            "status": self.status,
            "error": self.error,
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }
        if include_payload:
            d["inputs"] = self.inputs
            d["outputs"] = self.outputs
        return d

    def __repr__(self):
        return f"<AgentRun {self.id} {self.agent_type} {self.status}>"
