"""
Lean Future-State Studio
Current-state process models.

Models:
    - Process: a mapped business process (current state)
    - ProcessStep: one step on the current-state map (swimlane + timing)
    - StepConnection: directed connection between two steps
    - WasteWalkSession: bounded waste-observation activity over a process
    - WasteType: DOWNTIME waste taxonomy entry

These tables are maintained by the mapping and session CRUD screens; the
future-state pipeline only reads them.
"""

from leanflow.models import db
from leanflow.models.base import new_uuid, utcnow

STEP_TYPES = {"action", "decision", "start", "end", "subprocess"}
SESSION_STATUSES = {"draft", "active", "completed", "archived"}

# DOWNTIME: the eight core Lean waste categories
WASTE_CATEGORIES = {
    "defects", "overproduction", "waiting", "non_utilized_talent",
    "transportation", "inventory", "motion", "extra_processing",
}


class Process(db.Model):
    """A business process whose current state is mapped as steps + connections."""

    __tablename__ = "processes"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    steps = db.relationship(
        "ProcessStep", back_populates="process", lazy="select",
        cascade="all, delete-orphan", order_by="ProcessStep.order_index",
    )

    def __repr__(self):
        return f"<Process {self.id} {self.name!r}>"


class ProcessStep(db.Model):
    """A current-state step. Future-state nodes point back here for provenance."""

    __tablename__ = "process_steps"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    process_id = db.Column(
        db.String(36), db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    lane = db.Column(db.String(100), nullable=False, comment="Swimlane: role or department")
    step_type = db.Column(db.String(20), nullable=False, default="action",
                          comment="action | decision | start | end | subprocess")
    order_index = db.Column(db.Integer, nullable=False, default=0)
    position_x = db.Column(db.Float, nullable=True)
    position_y = db.Column(db.Float, nullable=True)
    lead_time_minutes = db.Column(db.Integer, nullable=True)
    cycle_time_minutes = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    process = db.relationship("Process", back_populates="steps")


class StepConnection(db.Model):
    """Directed current-state connection between two process steps."""

    __tablename__ = "step_connections"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    process_id = db.Column(
        db.String(36), db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    source_step_id = db.Column(
        db.String(36), db.ForeignKey("process_steps.id", ondelete="CASCADE"), nullable=False,
    )
    target_step_id = db.Column(
        db.String(36), db.ForeignKey("process_steps.id", ondelete="CASCADE"), nullable=False,
    )
    label = db.Column(db.String(255), nullable=True)


class WasteWalkSession(db.Model):
    """
    A waste walk: facilitators tag waste observations against one process.

    Identity is immutable once created. Owns solution cards, agent runs,
    future-state versions, implementation waves and comparison snapshots.
    """

    __tablename__ = "sessions"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    process_id = db.Column(
        db.String(36), db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active",
                       comment="draft | active | completed | archived")
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    process = db.relationship("Process")

    def __repr__(self):
        return f"<WasteWalkSession {self.id} {self.name!r}>"


class WasteType(db.Model):
    """DOWNTIME waste taxonomy entry used to tag observations and information flows."""

    __tablename__ = "waste_types"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    code = db.Column(db.String(20), nullable=False, unique=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(40), nullable=True,
                         comment="DOWNTIME category, e.g. waiting, motion")
    description = db.Column(db.Text, nullable=True)
