"""
Lean Future-State Studio
Implementation sequencing models.

Models:
    - ImplementationWave: ordered implementation phase of a session
    - WaveSolution: ordered link wave → accepted solution card
    - SolutionDependency: "solution depends on solution" edge
    - ImplementationItem: concrete work item planned inside a wave
    - ImplementationDependency: "item depends on item" edge

Everything here is rebuilt wholesale by each sequencing run: rows have no
independent history and manual edits survive only until the next run.
"""

from leanflow.models import db
from leanflow.models.base import SessionScopedModel, iso, new_uuid, utcnow

ITEM_STATUSES = {"planned", "in_progress", "done", "blocked"}


class ImplementationWave(SessionScopedModel):
    """An ordered phase (e.g. "0-30 Days") holding an ordered list of solutions."""

    __tablename__ = "implementation_waves"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    name = db.Column(db.String(255), nullable=False)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    start_estimate = db.Column(db.String(100), nullable=True)
    end_estimate = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    solution_links = db.relationship(
        "WaveSolution", lazy="select", cascade="all, delete-orphan", passive_deletes=True,
        order_by="WaveSolution.order_index",
    )

    @property
    def solution_ids(self) -> list[str]:
        return [link.solution_id for link in self.solution_links]

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "order_index": self.order_index,
            "start_estimate": self.start_estimate,
            "end_estimate": self.end_estimate,
            "solution_ids": self.solution_ids,
            "created_at": iso(self.created_at),
        }


class WaveSolution(db.Model):
    __tablename__ = "wave_solutions"
    __table_args__ = (
        db.UniqueConstraint("wave_id", "solution_id", name="uq_wave_solution"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    wave_id = db.Column(
        db.String(36), db.ForeignKey("implementation_waves.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    solution_id = db.Column(
        db.String(36), db.ForeignKey("solution_cards.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    order_index = db.Column(db.Integer, nullable=False, default=0)


class SolutionDependency(SessionScopedModel):
    """``solution_id`` cannot start before ``depends_on_solution_id`` is done."""

    __tablename__ = "solution_dependencies"
    __table_args__ = (
        db.UniqueConstraint("solution_id", "depends_on_solution_id", name="uq_solution_dependency"),
        db.CheckConstraint("solution_id <> depends_on_solution_id", name="ck_solution_dependency_distinct"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    solution_id = db.Column(
        db.String(36), db.ForeignKey("solution_cards.id", ondelete="CASCADE"), nullable=False,
    )
    depends_on_solution_id = db.Column(
        db.String(36), db.ForeignKey("solution_cards.id", ondelete="CASCADE"), nullable=False,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "solution_id": self.solution_id,
            "depends_on_solution_id": self.depends_on_solution_id,
        }


class ImplementationItem(SessionScopedModel):
    """A concrete piece of work planned inside a wave, optionally tied to a solution."""

    __tablename__ = "implementation_items"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    wave_id = db.Column(
        db.String(36), db.ForeignKey("implementation_waves.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    solution_id = db.Column(
        db.String(36), db.ForeignKey("solution_cards.id", ondelete="SET NULL"), nullable=True,
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    owner = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="planned",
                       comment="planned | in_progress | done | blocked")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "wave_id": self.wave_id,
            "solution_id": self.solution_id,
            "title": self.title,
            "description": self.description,
            "owner": self.owner,
            "status": self.status,
        }


class ImplementationDependency(db.Model):
    __tablename__ = "implementation_dependencies"
    __table_args__ = (
        db.UniqueConstraint("item_id", "depends_on_item_id", name="uq_implementation_dependency"),
        db.CheckConstraint("item_id <> depends_on_item_id", name="ck_implementation_dependency_distinct"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    item_id = db.Column(
        db.String(36), db.ForeignKey("implementation_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    depends_on_item_id = db.Column(
        db.String(36), db.ForeignKey("implementation_items.id", ondelete="CASCADE"),
        nullable=False,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "depends_on_item_id": self.depends_on_item_id,
        }
