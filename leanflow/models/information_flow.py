"""
Lean Future-State Studio
Information flow models.

Models:
    - InformationFlow: data/document/approval/system/notification exchange
      between two current-state steps (state_type=current) or two
      future-state nodes (state_type=future)
    - FlowWasteLink: waste types tagged on a flow
    - FlowComparisonSnapshot: cached current-vs-future diff for one
      (session, future state) pair

Quality: three 1-5 sub-scores; the composite ``quality_score`` is their sum
(3-15) with a missing sub-score counted as 3.
"""

from leanflow.models import db
from leanflow.models.base import SessionScopedModel, iso, new_uuid, utcnow

FLOW_TYPES = {"data", "document", "approval", "system", "notification"}
FLOW_STATUSES = {"active", "deprecated", "proposed"}
STATE_TYPES = {"current", "future"}
QUALITY_SUBSCORES = ("completeness_score", "accuracy_score", "timeliness_score")
DEFAULT_SUBSCORE = 3


class InformationFlow(db.Model):
    """An information exchange on either side of the redesign."""

    __tablename__ = "information_flows"
    __table_args__ = (
        db.Index("idx_flows_process_state", "process_id", "state_type"),
        db.Index("idx_flows_future_state", "future_state_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    process_id = db.Column(
        db.String(36), db.ForeignKey("processes.id", ondelete="CASCADE"), nullable=True,
    )
    future_state_id = db.Column(
        db.String(36), db.ForeignKey("future_states.id", ondelete="CASCADE"), nullable=True,
    )
    state_type = db.Column(db.String(10), nullable=False, default="current",
                           comment="current | future")

    source_step_id = db.Column(
        db.String(36), db.ForeignKey("process_steps.id", ondelete="CASCADE"), nullable=True,
    )
    target_step_id = db.Column(
        db.String(36), db.ForeignKey("process_steps.id", ondelete="CASCADE"), nullable=True,
    )
    source_node_id = db.Column(
        db.String(36), db.ForeignKey("future_state_nodes.id", ondelete="CASCADE"), nullable=True,
    )
    target_node_id = db.Column(
        db.String(36), db.ForeignKey("future_state_nodes.id", ondelete="CASCADE"), nullable=True,
    )

    name = db.Column(db.String(255), nullable=False, comment="Sole cross-state matching key")
    description = db.Column(db.Text, nullable=True)
    flow_type = db.Column(db.String(20), nullable=False, default="data",
                          comment="data | document | approval | system | notification")
    status = db.Column(db.String(20), nullable=False, default="active",
                       comment="active | deprecated | proposed")

    volume_per_day = db.Column(db.Integer, nullable=True)
    frequency = db.Column(db.String(50), nullable=True)
    is_automated = db.Column(db.Boolean, nullable=False, default=False)
    is_real_time = db.Column(db.Boolean, nullable=False, default=False)

    completeness_score = db.Column(db.Integer, nullable=True)
    accuracy_score = db.Column(db.Integer, nullable=True)
    timeliness_score = db.Column(db.Integer, nullable=True)
    quality_score = db.Column(db.Integer, nullable=True, comment="Sum of sub-scores, 3-15")

    metadata_json = db.Column("metadata", db.JSON, nullable=False, default=dict)
    revision = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utcnow)

    waste_links = db.relationship(
        "FlowWasteLink", lazy="select", cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def waste_types(self) -> list[dict]:
        return [
            {"id": link.waste_type_id, "name": link.waste_type.name if link.waste_type else None}
            for link in self.waste_links
        ]

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "future_state_id": self.future_state_id,
            "state_type": self.state_type,
            "source_step_id": self.source_step_id,
            "target_step_id": self.target_step_id,
            "source_node_id": self.source_node_id,
            "target_node_id": self.target_node_id,
            "name": self.name,
            "description": self.description,
            "flow_type": self.flow_type,
            "status": self.status,
            "volume_per_day": self.volume_per_day,
            "frequency": self.frequency,
            "is_automated": self.is_automated,
            "is_real_time": self.is_real_time,
            "completeness_score": self.completeness_score,
            "accuracy_score": self.accuracy_score,
            "timeliness_score": self.timeliness_score,
            "quality_score": self.quality_score,
            "waste_types": self.waste_types,
            "metadata": self.metadata_json or {},
            "revision": self.revision,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<InformationFlow {self.id} {self.state_type} {self.name!r}>"


class FlowWasteLink(db.Model):
    __tablename__ = "flow_waste_links"
    __table_args__ = (
        db.UniqueConstraint("flow_id", "waste_type_id", name="uq_flow_waste"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    flow_id = db.Column(
        db.String(36), db.ForeignKey("information_flows.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    waste_type_id = db.Column(
        db.String(36), db.ForeignKey("waste_types.id", ondelete="CASCADE"), nullable=False,
    )
    notes = db.Column(db.Text, nullable=True)

    waste_type = db.relationship("WasteType", lazy="joined")


class FlowComparisonSnapshot(SessionScopedModel):
    """Cached diff result. Regeneration replaces the row for the pair."""

    __tablename__ = "flow_comparison_snapshots"
    __table_args__ = (
        db.UniqueConstraint("session_id", "future_state_id", name="uq_flow_comparison_pair"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    future_state_id = db.Column(
        db.String(36), db.ForeignKey("future_states.id", ondelete="CASCADE"), nullable=False,
    )
    current_flows_count = db.Column(db.Integer, nullable=False, default=0)
    future_flows_count = db.Column(db.Integer, nullable=False, default=0)
    eliminated_flows = db.Column(db.Integer, nullable=False, default=0)
    added_flows = db.Column(db.Integer, nullable=False, default=0)
    modified_flows = db.Column(db.Integer, nullable=False, default=0)
    unchanged_flows = db.Column(db.Integer, nullable=False, default=0)
    avg_quality_improvement = db.Column(db.Float, nullable=False, default=0.0)
    waste_reduction_count = db.Column(db.Integer, nullable=False, default=0)
    comparison_data = db.Column(db.JSON, nullable=False, default=dict,
                                comment="eliminated / added / modified / unchanged item lists")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "future_state_id": self.future_state_id,
            "current_flows_count": self.current_flows_count,
            "future_flows_count": self.future_flows_count,
            "eliminated_flows": self.eliminated_flows,
            "added_flows": self.added_flows,
            "modified_flows": self.modified_flows,
            "unchanged_flows": self.unchanged_flows,
            "avg_quality_improvement": self.avg_quality_improvement,
            "waste_reduction_count": self.waste_reduction_count,
            "comparison_data": self.comparison_data or {},
            "created_at": iso(self.created_at),
        }
