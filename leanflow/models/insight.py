"""
Lean Future-State Studio
Waste observations and insight themes.

Models:
    - Observation: a waste tag recorded against one current-state step
      during a waste walk, with optional DOWNTIME waste types.
    - InsightTheme: a cluster of observations produced by the synthesis
      stage; links back to the observations, steps and waste types it
      was derived from.

Themes are replaced wholesale by each fresh synthesis run.
"""

from leanflow.models import db
from leanflow.models.base import SessionScopedModel, iso, new_uuid, utcnow

THEME_CONFIDENCES = {"high", "medium", "low"}
THEME_STATUSES = {"draft", "confirmed", "rejected"}


class Observation(SessionScopedModel):
    """Waste observed at a current-state step."""

    __tablename__ = "observations"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    step_id = db.Column(
        db.String(36), db.ForeignKey("process_steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    notes = db.Column(db.Text, nullable=True)
    priority_score = db.Column(db.Float, nullable=True,
                               comment="frequency x impact x ease weight")
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    step = db.relationship("ProcessStep")
    waste_links = db.relationship(
        "ObservationWasteLink", lazy="select", cascade="all, delete-orphan",
    )

    @property
    def waste_type_ids(self) -> list[str]:
        return [link.waste_type_id for link in self.waste_links]

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "step_id": self.step_id,
            "notes": self.notes,
            "priority_score": self.priority_score,
            "waste_type_ids": self.waste_type_ids,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Observation {self.id} step={self.step_id}>"


class ObservationWasteLink(db.Model):
    __tablename__ = "observation_waste_links"
    __table_args__ = (
        db.UniqueConstraint("observation_id", "waste_type_id", name="uq_observation_waste"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    observation_id = db.Column(
        db.String(36), db.ForeignKey("observations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    waste_type_id = db.Column(
        db.String(36), db.ForeignKey("waste_types.id", ondelete="CASCADE"), nullable=False,
    )
    waste_type = db.relationship("WasteType")


class InsightTheme(SessionScopedModel):
    """A named pattern of waste with its supporting evidence."""

    __tablename__ = "insight_themes"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    name = db.Column(db.String(255), nullable=False)
    summary = db.Column(db.Text, nullable=True)
    confidence = db.Column(db.String(10), nullable=False, default="medium",
                           comment="high | medium | low")
    root_cause_hypotheses = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default="draft",
                       comment="draft | confirmed | rejected")
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utcnow)

    observation_links = db.relationship(
        "ThemeObservation", lazy="select", cascade="all, delete-orphan",
    )
    step_links = db.relationship("ThemeStep", lazy="select", cascade="all, delete-orphan")
    waste_links = db.relationship("ThemeWasteType", lazy="select", cascade="all, delete-orphan")

    @property
    def observation_ids(self) -> list[str]:
        return [link.observation_id for link in self.observation_links]

    @property
    def step_ids(self) -> list[str]:
        return [link.step_id for link in self.step_links]

    @property
    def waste_type_ids(self) -> list[str]:
        return [link.waste_type_id for link in self.waste_links]

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "summary": self.summary,
            "confidence": self.confidence,
            "root_cause_hypotheses": self.root_cause_hypotheses or [],
            "status": self.status,
            "observation_ids": self.observation_ids,
            "step_ids": self.step_ids,
            "waste_type_ids": self.waste_type_ids,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<InsightTheme {self.id} {self.name!r}>"


class ThemeObservation(db.Model):
    __tablename__ = "insight_theme_observations"
    __table_args__ = (
        db.UniqueConstraint("theme_id", "observation_id", name="uq_theme_observation"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    theme_id = db.Column(
        db.String(36), db.ForeignKey("insight_themes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    observation_id = db.Column(
        db.String(36), db.ForeignKey("observations.id", ondelete="CASCADE"), nullable=False,
    )


class ThemeStep(db.Model):
    __tablename__ = "insight_theme_steps"
    __table_args__ = (
        db.UniqueConstraint("theme_id", "step_id", name="uq_theme_step"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    theme_id = db.Column(
        db.String(36), db.ForeignKey("insight_themes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(
        db.String(36), db.ForeignKey("process_steps.id", ondelete="CASCADE"), nullable=False,
    )


class ThemeWasteType(db.Model):
    __tablename__ = "insight_theme_waste_types"
    __table_args__ = (
        db.UniqueConstraint("theme_id", "waste_type_id", name="uq_theme_waste_type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    theme_id = db.Column(
        db.String(36), db.ForeignKey("insight_themes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    waste_type_id = db.Column(
        db.String(36), db.ForeignKey("waste_types.id", ondelete="CASCADE"), nullable=False,
    )
