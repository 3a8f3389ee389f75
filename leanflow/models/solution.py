"""
Lean Future-State Studio
Solution card models.

A SolutionCard is a proposed change produced by the Solutions stage (AI or
manual). Only ``accepted`` cards feed the sequencing planner and the
future-state designer.
"""

from leanflow.models import db
from leanflow.models.base import SessionScopedModel, iso, new_uuid, utcnow

SOLUTION_BUCKETS = {"eliminate", "modify", "create"}
SOLUTION_STATUSES = {"draft", "accepted", "rejected"}
EFFORT_LEVELS = {"low", "medium", "high"}


class SolutionCard(SessionScopedModel):
    """Proposed process change with effort, risks and affected steps."""

    __tablename__ = "solution_cards"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    bucket = db.Column(db.String(20), nullable=False, comment="eliminate | modify | create")
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    expected_impact = db.Column(db.Text, nullable=True)
    effort_level = db.Column(db.String(10), nullable=True, comment="low | medium | high")
    risks = db.Column(db.JSON, nullable=False, default=list)
    dependencies = db.Column(db.JSON, nullable=False, default=list,
                             comment="Solution ids this card depends on (free-form hint)")
    recommended_wave = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft",
                       comment="draft | accepted | rejected")
    revision = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utcnow)

    steps = db.relationship(
        "SolutionStep", lazy="select", cascade="all, delete-orphan",
    )
    theme_links = db.relationship("SolutionTheme", lazy="select", cascade="all, delete-orphan")
    observation_links = db.relationship(
        "SolutionObservation", lazy="select", cascade="all, delete-orphan",
    )

    @property
    def step_ids(self) -> list[str]:
        return [link.step_id for link in self.steps]

    @property
    def theme_ids(self) -> list[str]:
        return [link.theme_id for link in self.theme_links]

    @property
    def observation_ids(self) -> list[str]:
        return [link.observation_id for link in self.observation_links]

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "bucket": self.bucket,
            "title": self.title,
            "description": self.description,
            "expected_impact": self.expected_impact,
            "effort_level": self.effort_level,
            "risks": self.risks or [],
            "dependencies": self.dependencies or [],
            "recommended_wave": self.recommended_wave,
            "status": self.status,
            "revision": self.revision,
            "step_ids": self.step_ids,
            "theme_ids": self.theme_ids,
            "observation_ids": self.observation_ids,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<SolutionCard {self.id} {self.status}>"


class SolutionStep(db.Model):
    """Link table: which current-state steps a solution card affects."""

    __tablename__ = "solution_steps"
    __table_args__ = (
        db.UniqueConstraint("solution_id", "step_id", name="uq_solution_step"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    solution_id = db.Column(
        db.String(36), db.ForeignKey("solution_cards.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(
        db.String(36), db.ForeignKey("process_steps.id", ondelete="CASCADE"),
        nullable=False,
    )


class SolutionTheme(db.Model):
    """Link table: insight themes a solution card addresses."""

    __tablename__ = "solution_themes"
    __table_args__ = (
        db.UniqueConstraint("solution_id", "theme_id", name="uq_solution_theme"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    solution_id = db.Column(
        db.String(36), db.ForeignKey("solution_cards.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    theme_id = db.Column(
        db.String(36), db.ForeignKey("insight_themes.id", ondelete="CASCADE"), nullable=False,
    )


class SolutionObservation(db.Model):
    """Link table: observations cited as evidence for a solution card."""

    __tablename__ = "solution_observations"
    __table_args__ = (
        db.UniqueConstraint("solution_id", "observation_id", name="uq_solution_observation"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    solution_id = db.Column(
        db.String(36), db.ForeignKey("solution_cards.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    observation_id = db.Column(
        db.String(36), db.ForeignKey("observations.id", ondelete="CASCADE"), nullable=False,
    )
