"""
Lean Future-State Studio
Future-state graph models.

Models:
    - FutureState: a named, versioned snapshot of a redesigned process
    - FutureStateNode: a step of the redesigned process (revision-counted)
    - FutureStateEdge: directed relation between two nodes of one version

Version numbers are monotonic per session and backed by a unique
constraint. Graph content is append-only across versions: a redesign
creates a new version, it never rewrites an old one.
"""

from leanflow.models import db
from leanflow.models.base import SessionScopedModel, iso, new_uuid, utcnow

FUTURE_STATE_STATUSES = {"draft", "locked"}
NODE_ACTIONS = {"eliminate", "modify", "create", "unchanged"}


class FutureState(SessionScopedModel):
    """One version of the redesigned process for a session."""

    __tablename__ = "future_states"
    __table_args__ = (
        db.UniqueConstraint("session_id", "version", name="uq_future_state_session_version"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    process_id = db.Column(
        db.String(36), db.ForeignKey("processes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False, comment="max(version)+1 per session")
    status = db.Column(db.String(20), nullable=False, default="draft", comment="draft | locked")
    parent_version_id = db.Column(
        db.String(36), db.ForeignKey("future_states.id", ondelete="SET NULL"),
        nullable=True, comment="Version this one was duplicated from",
    )
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utcnow)

    nodes = db.relationship(
        "FutureStateNode", lazy="select", cascade="all, delete-orphan", passive_deletes=True,
        order_by="FutureStateNode.sequence",
    )
    edges = db.relationship(
        "FutureStateEdge", lazy="select", cascade="all, delete-orphan", passive_deletes=True,
        order_by="FutureStateEdge.order_index",
    )

    @property
    def is_locked(self) -> bool:
        return self.status == "locked"

    def to_dict(self, include_graph: bool = False):
        d = {
            "id": self.id,
            "session_id": self.session_id,
            "process_id": self.process_id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "status": self.status,
            "is_locked": self.is_locked,
            "parent_version_id": self.parent_version_id,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_graph:
            d["nodes"] = [n.to_dict() for n in self.nodes]
            d["edges"] = [e.to_dict() for e in self.edges]
        return d

    def __repr__(self):
        return f"<FutureState {self.id} v{self.version} {self.status}>"


class FutureStateNode(db.Model):
    """
    A step of the redesigned process.

    ``revision`` is the optimistic-concurrency counter: every successful
    update increments it by exactly one.
    """

    __tablename__ = "future_state_nodes"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    future_state_id = db.Column(
        db.String(36), db.ForeignKey("future_states.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sequence = db.Column(db.Integer, nullable=False, default=0,
                         comment="Position of the node in the designer output")
    source_step_id = db.Column(
        db.String(36), db.ForeignKey("process_steps.id", ondelete="SET NULL"),
        nullable=True, comment="Provenance: current-state step this node derives from",
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    lane = db.Column(db.String(100), nullable=False)
    step_type = db.Column(db.String(20), nullable=False, default="action")
    lead_time_minutes = db.Column(db.Integer, nullable=True)
    cycle_time_minutes = db.Column(db.Integer, nullable=True)
    position_x = db.Column(db.Float, nullable=False, default=0)
    position_y = db.Column(db.Float, nullable=False, default=0)
    action = db.Column(db.String(20), nullable=False, default="unchanged",
                       comment="eliminate | modify | create | unchanged")
    modified_fields = db.Column(db.JSON, nullable=False, default=dict)
    linked_solution_id = db.Column(
        db.String(36), db.ForeignKey("solution_cards.id", ondelete="SET NULL"),
        nullable=True,
    )
    revision = db.Column(db.Integer, nullable=False, default=1)
    updated_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "future_state_id": self.future_state_id,
            "source_step_id": self.source_step_id,
            "name": self.name,
            "description": self.description,
            "lane": self.lane,
            "step_type": self.step_type,
            "lead_time_minutes": self.lead_time_minutes,
            "cycle_time_minutes": self.cycle_time_minutes,
            "position_x": self.position_x,
            "position_y": self.position_y,
            "action": self.action,
            "modified_fields": self.modified_fields or {},
            "linked_solution_id": self.linked_solution_id,
            "revision": self.revision,
            "updated_by": self.updated_by,
            "updated_at": iso(self.updated_at),
        }


class FutureStateEdge(db.Model):
    """Directed edge. No self-loops, at most one edge per ordered node pair."""

    __tablename__ = "future_state_edges"
    __table_args__ = (
        db.UniqueConstraint(
            "future_state_id", "source_node_id", "target_node_id",
            name="uq_future_state_edge_pair",
        ),
        db.CheckConstraint("source_node_id <> target_node_id", name="ck_future_state_edge_no_self_loop"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    future_state_id = db.Column(
        db.String(36), db.ForeignKey("future_states.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    source_node_id = db.Column(
        db.String(36), db.ForeignKey("future_state_nodes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    target_node_id = db.Column(
        db.String(36), db.ForeignKey("future_state_nodes.id", ondelete="CASCADE"),
        nullable=False,
    )
    label = db.Column(db.String(255), nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0,
                            comment="Ordering among edges leaving the same source")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "future_state_id": self.future_state_id,
            "source_node_id": self.source_node_id,
            "target_node_id": self.target_node_id,
            "label": self.label,
            "order_index": self.order_index,
        }
