"""Sequencing service: implementation waves and dependency graph.

Each successful sequencing run (fresh or served from cache) DESTRUCTIVELY
rebuilds the session's plan: waves, wave links, implementation items,
their dependencies and solution dependencies are deleted and re-inserted
from the agent output. Manual reassignments made between runs are lost.
Callers must warn users before re-running.

Rules:
  - db.session.commit() happens only in service modules.
  - The rebuild is one transaction: either the old plan or the new one.
  - Output references to anything that is not an accepted solution of the
    session are skipped and logged.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select

from leanflow.ai.orchestrator import run_agent
from leanflow.ai.prompts import build_sequencing_prompt
from leanflow.ai.schemas import SequencingOutput
from leanflow.core.exceptions import ConflictError, NotFoundError, UpstreamError, ValidationError
from leanflow.models import db
from leanflow.models.sequencing import (
    ITEM_STATUSES,
    ImplementationDependency,
    ImplementationItem,
    ImplementationWave,
    SolutionDependency,
    WaveSolution,
)
from leanflow.models.solution import SolutionCard
from leanflow.services.solution_service import get_session_or_404, list_accepted_solutions

logger = logging.getLogger(__name__)


def _sequencing_inputs(session_id: str) -> dict:
    solutions = list_accepted_solutions(session_id)
    if not solutions:
        raise ValidationError("Sequencing requires at least one accepted solution",
                              details={"session_id": session_id})
    return {
        "solutions": [
            {
                "id": s.id,
                "bucket": s.bucket,
                "title": s.title,
                "description": s.description or "",
                "effort_level": s.effort_level,
                "recommended_wave": s.recommended_wave,
                "dependencies": list(s.dependencies or []),
                "step_ids": s.step_ids,
            }
            for s in solutions
        ]
    }


def run_sequencing_agent(session_id: str, force_rerun: bool = False, user_id: str | None = None,
                         orchestrator=None) -> dict:
    """Run the sequencing agent and rebuild the session's plan from its output.

    Returns:
        {"success", "run_id", "cached", "data", "model", "provider"}

    Raises:
        NotFoundError: Unknown session.
        ValidationError: No accepted solutions.
        UpstreamError: The agent call or its output validation failed.
    """
    session = get_session_or_404(session_id)
    inputs = _sequencing_inputs(session.id)

    result = run_agent(session.id, "sequencing", inputs, build_sequencing_prompt,
                       force_rerun=force_rerun, user_id=user_id, orchestrator=orchestrator)
    if not result.success:
        raise UpstreamError("sequencing", result.error or "Sequencing agent failed",
                            run_id=result.run_id)

    rebuild_sequencing_plan(session.id, result.data)
    return result.to_dict()


def rebuild_sequencing_plan(session_id: str, output: dict) -> list[ImplementationWave]:
    """Replace the session's waves and dependencies with ``output``.

    Waves are inserted in ``order_index`` order; each wave's solution links
    keep the position they had in the agent's list.
    """
    try:
        plan = SequencingOutput.model_validate(output)
    except ValueError as exc:
        raise ValidationError("Sequencing output is malformed", details={"error": str(exc)}) from exc

    log_ctx = {"session_id": session_id}
    accepted = {s.id for s in list_accepted_solutions(session_id)}

    wave_ids = select(ImplementationWave.id).where(ImplementationWave.session_id == session_id)
    item_ids = select(ImplementationItem.id).where(ImplementationItem.session_id == session_id)
    db.session.execute(delete(WaveSolution).where(WaveSolution.wave_id.in_(wave_ids)))
    db.session.execute(delete(ImplementationDependency).where(
        ImplementationDependency.item_id.in_(item_ids)
        | ImplementationDependency.depends_on_item_id.in_(item_ids)
    ))
    db.session.execute(delete(ImplementationItem).where(ImplementationItem.session_id == session_id))
    db.session.execute(delete(SolutionDependency).where(SolutionDependency.session_id == session_id))
    db.session.execute(delete(ImplementationWave).where(ImplementationWave.session_id == session_id))
    logger.info("Sequencing plan cleared for rebuild", extra=log_ctx)

    waves = []
    placed: set[str] = set()
    for planned in sorted(plan.waves, key=lambda w: w.order_index):
        wave = ImplementationWave(
            session_id=session_id,
            name=planned.name,
            order_index=planned.order_index,
            start_estimate=planned.start_estimate,
            end_estimate=planned.end_estimate,
        )
        db.session.add(wave)
        db.session.flush()

        position = 0
        for solution_id in planned.solution_ids:
            if solution_id not in accepted:
                logger.warning("Skipping unknown solution %s in wave %r", solution_id, planned.name,
                               extra=log_ctx)
                continue
            if solution_id in placed:
                logger.warning("Solution %s already placed in an earlier wave", solution_id,
                               extra=log_ctx)
                continue
            placed.add(solution_id)
            db.session.add(WaveSolution(wave_id=wave.id, solution_id=solution_id,
                                        order_index=position))
            position += 1
        waves.append(wave)

    seen: set[tuple[str, str]] = set()
    for dep in plan.dependencies:
        pair = (dep.solution_id, dep.depends_on_solution_id)
        if dep.solution_id not in accepted or dep.depends_on_solution_id not in accepted:
            logger.warning("Skipping dependency %s -> %s: unknown solution", *pair, extra=log_ctx)
            continue
        if dep.solution_id == dep.depends_on_solution_id:
            logger.warning("Skipping self-dependency on %s", dep.solution_id, extra=log_ctx)
            continue
        if pair in seen:
            continue
        seen.add(pair)
        db.session.add(SolutionDependency(
            session_id=session_id,
            solution_id=dep.solution_id,
            depends_on_solution_id=dep.depends_on_solution_id,
        ))

    db.session.commit()
    logger.info("Sequencing plan rebuilt: %d waves, %d dependencies", len(waves), len(seen),
                extra=log_ctx)
    return waves


def get_sequencing_plan(session_id: str) -> dict:
    """Waves (ordered, with ordered solution ids), dependencies and items of a session."""
    get_session_or_404(session_id)
    waves = db.session.execute(
        select(ImplementationWave)
        .where(ImplementationWave.session_id == session_id)
        .order_by(ImplementationWave.order_index, ImplementationWave.created_at)
    ).scalars()
    deps = db.session.execute(
        select(SolutionDependency).where(SolutionDependency.session_id == session_id)
    ).scalars()
    items = list(db.session.execute(
        select(ImplementationItem)
        .where(ImplementationItem.session_id == session_id)
        .order_by(ImplementationItem.created_at)
    ).scalars())
    item_deps = []
    if items:
        item_deps = db.session.execute(
            select(ImplementationDependency)
            .where(ImplementationDependency.item_id.in_([i.id for i in items]))
        ).scalars()
    return {
        "session_id": session_id,
        "waves": [w.to_dict() for w in waves],
        "dependencies": [d.to_dict() for d in deps],
        "items": [i.to_dict() for i in items],
        "item_dependencies": [d.to_dict() for d in item_deps],
    }


def _get_wave(session_id: str, wave_id: str) -> ImplementationWave:
    wave = db.session.get(ImplementationWave, wave_id)
    if wave is None or wave.session_id != session_id:
        raise NotFoundError(resource="ImplementationWave", resource_id=wave_id)
    return wave


def reassign_solution(session_id: str, solution_id: str, target_wave_id: str) -> ImplementationWave:
    """Move a solution into another wave (appended last).

    Manual reassignment; the next sequencing run discards it.
    """
    get_session_or_404(session_id)
    target = _get_wave(session_id, target_wave_id)
    card = db.session.get(SolutionCard, solution_id)
    if card is None or card.session_id != session_id:
        raise NotFoundError(resource="SolutionCard", resource_id=solution_id)

    session_waves = select(ImplementationWave.id).where(ImplementationWave.session_id == session_id)
    db.session.execute(delete(WaveSolution).where(
        WaveSolution.solution_id == solution_id,
        WaveSolution.wave_id.in_(session_waves),
    ))
    last = db.session.execute(
        select(func.max(WaveSolution.order_index)).where(WaveSolution.wave_id == target.id)
    ).scalar()
    db.session.add(WaveSolution(wave_id=target.id, solution_id=solution_id,
                                order_index=0 if last is None else last + 1))
    db.session.commit()
    db.session.refresh(target)
    logger.info("Solution %s reassigned to wave %r", solution_id, target.name,
                extra={"session_id": session_id})
    return target


def create_implementation_item(session_id: str, wave_id: str | None, title: str,
                               description: str | None = None, owner: str | None = None,
                               solution_id: str | None = None,
                               status: str = "planned") -> ImplementationItem:
    get_session_or_404(session_id)
    if not (title or "").strip():
        raise ValidationError("title is required", details={"title": "required"})
    if status not in ITEM_STATUSES:
        raise ValidationError(f"Invalid status: {status}", details={"status": status})
    if wave_id is not None:
        _get_wave(session_id, wave_id)
    if solution_id is not None:
        card = db.session.get(SolutionCard, solution_id)
        if card is None or card.session_id != session_id:
            raise NotFoundError(resource="SolutionCard", resource_id=solution_id)

    item = ImplementationItem(
        session_id=session_id, wave_id=wave_id, solution_id=solution_id,
        title=title.strip(), description=description, owner=owner, status=status,
    )
    db.session.add(item)
    db.session.commit()
    return item


def add_implementation_dependency(item_id: str, depends_on_item_id: str) -> ImplementationDependency:
    """Record that ``item_id`` depends on ``depends_on_item_id`` (same session only)."""
    if item_id == depends_on_item_id:
        raise ValidationError("An item cannot depend on itself", details={"item_id": item_id})
    item = db.session.get(ImplementationItem, item_id)
    if item is None:
        raise NotFoundError(resource="ImplementationItem", resource_id=item_id)
    other = db.session.get(ImplementationItem, depends_on_item_id)
    if other is None:
        raise NotFoundError(resource="ImplementationItem", resource_id=depends_on_item_id)
    if other.session_id != item.session_id:
        raise ValidationError("Dependencies must stay within one session")

    existing = db.session.execute(
        select(ImplementationDependency).where(
            ImplementationDependency.item_id == item_id,
            ImplementationDependency.depends_on_item_id == depends_on_item_id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("ImplementationDependency", "depends_on_item_id", depends_on_item_id)

    dep = ImplementationDependency(item_id=item_id, depends_on_item_id=depends_on_item_id)
    db.session.add(dep)
    db.session.commit()
    return dep
