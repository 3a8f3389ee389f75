"""Solution card service.

Cards come from the solutions agent or are created by hand. Only accepted
cards feed the sequencing planner and the future-state designer.

A fresh solutions run replaces the session's draft cards; accepted and
rejected cards survive it, along with the plan and graph links built on
them. A cache hit persists nothing.

Rules:
  - db.session.commit() happens only in service modules.
  - Step ids that are not steps of the session's process are dropped.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select

from leanflow.ai.orchestrator import run_agent
from leanflow.ai.prompts import build_solutions_prompt
from leanflow.ai.schemas import SolutionsOutput
from leanflow.core.exceptions import NotFoundError, UpstreamError, ValidationError
from leanflow.models import db
from leanflow.models.insight import InsightTheme, Observation
from leanflow.models.process import ProcessStep, WasteWalkSession
from leanflow.models.solution import (
    EFFORT_LEVELS, SOLUTION_BUCKETS, SOLUTION_STATUSES, SolutionCard, SolutionObservation,
    SolutionStep, SolutionTheme,
)

logger = logging.getLogger(__name__)


def get_session_or_404(session_id: str) -> WasteWalkSession:
    session = db.session.get(WasteWalkSession, session_id)
    if session is None:
        raise NotFoundError(resource="Session", resource_id=session_id)
    return session


def create_solution_card(session_id: str, data: dict, user_id: str | None = None) -> SolutionCard:
    """Create a solution card for a session.

    Args:
        session_id: Owning waste-walk session.
        data: bucket, title (required); description, expected_impact,
              effort_level, risks, dependencies, recommended_wave, status,
              step_ids (optional).

    Raises:
        NotFoundError: Unknown session.
        ValidationError: Missing title or unknown bucket/effort/status.
    """
    session = get_session_or_404(session_id)

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    bucket = data.get("bucket")
    if bucket not in SOLUTION_BUCKETS:
        raise ValidationError(
            f"bucket must be one of: {', '.join(sorted(SOLUTION_BUCKETS))}",
            details={"bucket": bucket},
        )
    effort = data.get("effort_level")
    if effort is not None and effort not in EFFORT_LEVELS:
        raise ValidationError(
            f"effort_level must be one of: {', '.join(sorted(EFFORT_LEVELS))}",
            details={"effort_level": effort},
        )
    status = data.get("status", "draft")
    if status not in SOLUTION_STATUSES:
        raise ValidationError(f"Invalid status: {status}", details={"status": status})

    card = SolutionCard(
        session_id=session.id,
        bucket=bucket,
        title=title,
        description=data.get("description"),
        expected_impact=data.get("expected_impact"),
        effort_level=effort,
        risks=list(data.get("risks") or []),
        dependencies=list(data.get("dependencies") or []),
        recommended_wave=data.get("recommended_wave"),
        status=status,
        created_by=user_id,
    )
    db.session.add(card)

    requested = list(dict.fromkeys(data.get("step_ids") or []))
    if requested:
        valid = set(db.session.execute(
            select(ProcessStep.id).where(
                ProcessStep.process_id == session.process_id,
                ProcessStep.id.in_(requested),
            )
        ).scalars())
        for step_id in requested:
            if step_id in valid:
                card.steps.append(SolutionStep(step_id=step_id))
            else:
                logger.warning("Dropping unknown step %s from solution card", step_id,
                               extra={"session_id": session_id})

    db.session.commit()
    logger.info("Solution card created id=%s bucket=%s", card.id, bucket,
                extra={"session_id": session_id})
    return card


def set_solution_status(solution_id: str, status: str) -> SolutionCard:
    """Accept, reject or return a card to draft. Bumps the card revision."""
    if status not in SOLUTION_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(SOLUTION_STATUSES))}",
            details={"status": status},
        )
    card = db.session.get(SolutionCard, solution_id)
    if card is None:
        raise NotFoundError(resource="SolutionCard", resource_id=solution_id)

    if card.status != status:
        card.status = status
        card.revision = (card.revision or 1) + 1
        db.session.commit()
        logger.info("Solution card %s -> %s", solution_id, status,
                    extra={"session_id": card.session_id})
    return card


def list_accepted_solutions(session_id: str) -> list[SolutionCard]:
    """Accepted cards of a session, oldest first."""
    return list(db.session.execute(
        select(SolutionCard)
        .where(SolutionCard.session_id == session_id, SolutionCard.status == "accepted")
        .order_by(SolutionCard.created_at, SolutionCard.id)
    ).scalars())


def list_solutions(session_id: str, status: str | None = None) -> list[SolutionCard]:
    stmt = select(SolutionCard).where(SolutionCard.session_id == session_id)
    if status:
        stmt = stmt.where(SolutionCard.status == status)
    return list(db.session.execute(stmt.order_by(SolutionCard.created_at, SolutionCard.id)).scalars())


# ═════════════════════════════════════════════════════════════════════════════
# Solutions stage
# ═════════════════════════════════════════════════════════════════════════════


def _solutions_inputs(session: WasteWalkSession) -> dict:
    themes = list(db.session.execute(
        select(InsightTheme)
        .where(InsightTheme.session_id == session.id,
               InsightTheme.status.in_(("draft", "confirmed")))
        .order_by(InsightTheme.created_at, InsightTheme.id)
    ).scalars())
    if not themes:
        raise ValidationError("No themes found. Complete synthesis first.",
                              details={"session_id": session.id})

    observations = db.session.execute(
        select(Observation)
        .where(Observation.session_id == session.id)
        .order_by(Observation.created_at, Observation.id)
    ).scalars()
    steps = db.session.execute(
        select(ProcessStep)
        .where(ProcessStep.process_id == session.process_id)
        .order_by(ProcessStep.order_index, ProcessStep.id)
    ).scalars()

    return {
        "themes": [
            {
                "id": t.id,
                "name": t.name,
                "summary": t.summary or "",
                "root_cause_hypotheses": list(t.root_cause_hypotheses or []),
                "observation_ids": t.observation_ids,
                "step_ids": t.step_ids,
                "waste_type_ids": t.waste_type_ids,
            }
            for t in themes
        ],
        "observations": [
            {"id": o.id, "notes": o.notes, "step_name": o.step.step_name,
             "priority_score": o.priority_score}
            for o in observations
        ],
        "steps": [{"id": s.id, "step_name": s.step_name, "lane": s.lane} for s in steps],
    }


def replace_draft_solutions(session_id: str, output: dict, inputs: dict,
                            user_id: str | None = None) -> list[SolutionCard]:
    """Swap the session's draft cards for the solutions agent's proposals.

    Theme, step and observation links are kept only for ids the agent was
    shown in ``inputs``.
    """
    try:
        result = SolutionsOutput.model_validate(output)
    except ValueError as exc:
        raise ValidationError("Solutions output is malformed", details={"error": str(exc)}) from exc

    log_ctx = {"session_id": session_id}
    valid = {
        "theme": {t["id"] for t in inputs.get("themes", [])},
        "step": {s["id"] for s in inputs.get("steps", [])},
        "observation": {o["id"] for o in inputs.get("observations", [])},
    }

    draft_ids = select(SolutionCard.id).where(
        SolutionCard.session_id == session_id, SolutionCard.status == "draft",
    )
    for link_model in (SolutionStep, SolutionTheme, SolutionObservation):
        db.session.execute(delete(link_model).where(link_model.solution_id.in_(draft_ids)))
    db.session.execute(delete(SolutionCard).where(
        SolutionCard.session_id == session_id, SolutionCard.status == "draft",
    ))

    cards = []
    for proposal in result.solutions:
        card = SolutionCard(
            session_id=session_id,
            bucket=proposal.bucket,
            title=proposal.title,
            description=proposal.description,
            expected_impact=proposal.expected_impact,
            effort_level=proposal.effort_level,
            risks=list(proposal.risks),
            dependencies=list(proposal.dependencies),
            recommended_wave=proposal.recommended_wave,
            status="draft",
            created_by=user_id,
        )
        links = {
            "theme": list(dict.fromkeys(proposal.theme_ids)),
            "step": list(dict.fromkeys(proposal.step_ids)),
            "observation": list(dict.fromkeys(proposal.observation_ids)),
        }
        for kind, ids in links.items():
            kept = [i for i in ids if i in valid[kind]]
            if len(kept) < len(ids):
                logger.warning("Solution %r: dropped %d unknown %s id(s)", proposal.title,
                               len(ids) - len(kept), kind, extra=log_ctx)
            links[kind] = kept
        card.theme_links = [SolutionTheme(theme_id=i) for i in links["theme"]]
        card.steps = [SolutionStep(step_id=i) for i in links["step"]]
        card.observation_links = [SolutionObservation(observation_id=i)
                                  for i in links["observation"]]
        db.session.add(card)
        cards.append(card)

    db.session.commit()
    logger.info("Solutions agent persisted %d draft card(s)", len(cards), extra=log_ctx)
    return cards


def run_solutions_agent(session_id: str, force_rerun: bool = False, user_id: str | None = None,
                        orchestrator=None) -> dict:
    """Generate solution cards for the session's draft and confirmed themes.

    Returns:
        {"success", "run_id", "cached", "data", "model", "provider"}

    Raises:
        NotFoundError: Unknown session.
        ValidationError: No usable themes.
        UpstreamError: The agent call or its output validation failed.
    """
    session = get_session_or_404(session_id)
    inputs = _solutions_inputs(session)

    result = run_agent(session.id, "solutions", inputs, build_solutions_prompt,
                       force_rerun=force_rerun, user_id=user_id, orchestrator=orchestrator)
    if not result.success:
        raise UpstreamError("solutions", result.error or "Solutions agent failed",
                            run_id=result.run_id)

    if not result.cached:
        replace_draft_solutions(session.id, result.data, inputs, user_id=user_id)
    return result.to_dict()
