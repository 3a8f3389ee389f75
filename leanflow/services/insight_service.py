"""Insight service: waste observations and the synthesis stage.

Observations are recorded against steps of the session's process. The
synthesis agent clusters them into InsightThemes; every fresh run replaces
the session's themes, while a cache hit leaves the stored themes as they
are.

Rules:
  - db.session.commit() happens only in service modules.
  - Theme links to observations, steps or waste types the agent was not
    shown are dropped and logged.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select

from leanflow.ai.orchestrator import run_agent
from leanflow.ai.prompts import build_synthesis_prompt
from leanflow.ai.schemas import SynthesisOutput
from leanflow.core.exceptions import NotFoundError, UpstreamError, ValidationError
from leanflow.models import db
from leanflow.models.insight import (
    THEME_STATUSES, InsightTheme, Observation, ObservationWasteLink, ThemeObservation, ThemeStep,
    ThemeWasteType,
)
from leanflow.models.process import ProcessStep, WasteType
from leanflow.services.solution_service import get_session_or_404

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Observations
# ═════════════════════════════════════════════════════════════════════════════


def create_observation(session_id: str, data: dict, user_id: str | None = None) -> Observation:
    """Record a waste observation.

    Args:
        session_id: Owning waste-walk session.
        data: step_id (required); notes, priority_score, waste_type_ids.

    Raises:
        NotFoundError: Unknown session.
        ValidationError: step_id missing or not a step of the session's
            process, or a non-numeric priority_score.
    """
    session = get_session_or_404(session_id)

    step_id = data.get("step_id")
    if not step_id:
        raise ValidationError("step_id is required", details={"step_id": "required"})
    step = db.session.get(ProcessStep, step_id)
    if step is None or step.process_id != session.process_id:
        raise ValidationError("step_id is not a step of this session's process",
                              details={"step_id": step_id})

    priority = data.get("priority_score")
    if priority is not None:
        if isinstance(priority, bool) or not isinstance(priority, (int, float)):
            raise ValidationError("priority_score must be a number",
                                  details={"priority_score": priority})
        priority = float(priority)

    obs = Observation(
        session_id=session.id,
        step_id=step_id,
        notes=data.get("notes"),
        priority_score=priority,
        created_by=user_id,
    )
    db.session.add(obs)

    requested = list(dict.fromkeys(data.get("waste_type_ids") or []))
    if requested:
        known = set(db.session.execute(
            select(WasteType.id).where(WasteType.id.in_(requested))
        ).scalars())
        for waste_type_id in requested:
            if waste_type_id in known:
                obs.waste_links.append(ObservationWasteLink(waste_type_id=waste_type_id))
            else:
                logger.warning("Dropping unknown waste type %s from observation", waste_type_id,
                               extra={"session_id": session_id})

    db.session.commit()
    logger.info("Observation recorded id=%s step=%s", obs.id, step_id,
                extra={"session_id": session_id})
    return obs


def list_observations(session_id: str) -> list[Observation]:
    return list(db.session.execute(
        select(Observation)
        .where(Observation.session_id == session_id)
        .order_by(Observation.created_at, Observation.id)
    ).scalars())


# ═════════════════════════════════════════════════════════════════════════════
# Themes
# ═════════════════════════════════════════════════════════════════════════════


def list_themes(session_id: str, status: str | None = None) -> list[InsightTheme]:
    stmt = select(InsightTheme).where(InsightTheme.session_id == session_id)
    if status:
        stmt = stmt.where(InsightTheme.status == status)
    return list(db.session.execute(
        stmt.order_by(InsightTheme.created_at, InsightTheme.id)
    ).scalars())


def set_theme_status(theme_id: str, status: str) -> InsightTheme:
    """Confirm or reject a theme. Rejected themes are not offered to the solutions agent."""
    if status not in THEME_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(THEME_STATUSES))}",
            details={"status": status},
        )
    theme = db.session.get(InsightTheme, theme_id)
    if theme is None:
        raise NotFoundError(resource="InsightTheme", resource_id=theme_id)
    if theme.status != status:
        theme.status = status
        db.session.commit()
        logger.info("Theme %s -> %s", theme_id, status, extra={"session_id": theme.session_id})
    return theme


# ═════════════════════════════════════════════════════════════════════════════
# Synthesis stage
# ═════════════════════════════════════════════════════════════════════════════


def _synthesis_inputs(session) -> dict:
    observations = list_observations(session.id)
    if not observations:
        raise ValidationError("No observations found for this session. Complete a waste walk first.",
                              details={"session_id": session.id})

    steps = list(db.session.execute(
        select(ProcessStep)
        .where(ProcessStep.process_id == session.process_id)
        .order_by(ProcessStep.order_index, ProcessStep.id)
    ).scalars())
    waste_types = list(db.session.execute(select(WasteType).order_by(WasteType.code)).scalars())

    return {
        "observations": [
            {
                "id": o.id,
                "notes": o.notes,
                "step_name": o.step.step_name,
                "lane": o.step.lane,
                "priority_score": o.priority_score,
                "waste_types": [
                    {"id": link.waste_type.id, "name": link.waste_type.name,
                     "code": link.waste_type.code}
                    for link in o.waste_links
                ],
            }
            for o in observations
        ],
        "steps": [{"id": s.id, "step_name": s.step_name, "lane": s.lane} for s in steps],
        "waste_types": [{"id": w.id, "name": w.name, "code": w.code} for w in waste_types],
    }


def _known(ids, valid: set[str], kind: str, theme_name: str, log_ctx: dict) -> list[str]:
    kept = [i for i in dict.fromkeys(ids) if i in valid]
    dropped = len(set(ids)) - len(kept)
    if dropped:
        logger.warning("Theme %r: dropped %d unknown %s id(s)", theme_name, dropped, kind,
                       extra=log_ctx)
    return kept


def replace_themes(session_id: str, output: dict, inputs: dict,
                   user_id: str | None = None) -> list[InsightTheme]:
    """Replace the session's themes with the synthesis ``output``.

    Only ids present in ``inputs`` (what the agent was shown) are linked.
    """
    try:
        result = SynthesisOutput.model_validate(output)
    except ValueError as exc:
        raise ValidationError("Synthesis output is malformed", details={"error": str(exc)}) from exc

    log_ctx = {"session_id": session_id}
    valid_observations = {o["id"] for o in inputs.get("observations", [])}
    valid_steps = {s["id"] for s in inputs.get("steps", [])}
    valid_waste_types = {w["id"] for w in inputs.get("waste_types", [])}

    theme_ids = select(InsightTheme.id).where(InsightTheme.session_id == session_id)
    for link_model in (ThemeObservation, ThemeStep, ThemeWasteType):
        db.session.execute(delete(link_model).where(link_model.theme_id.in_(theme_ids)))
    db.session.execute(delete(InsightTheme).where(InsightTheme.session_id == session_id))

    themes = []
    for item in result.themes:
        theme = InsightTheme(
            session_id=session_id,
            name=item.name,
            summary=item.summary,
            confidence=item.confidence,
            root_cause_hypotheses=list(item.root_cause_hypotheses),
            status="draft",
            created_by=user_id,
        )
        for obs_id in _known(item.observation_ids, valid_observations, "observation",
                             item.name, log_ctx):
            theme.observation_links.append(ThemeObservation(observation_id=obs_id))
        for step_id in _known(item.step_ids, valid_steps, "step", item.name, log_ctx):
            theme.step_links.append(ThemeStep(step_id=step_id))
        for waste_id in _known(item.waste_type_ids, valid_waste_types, "waste type",
                               item.name, log_ctx):
            theme.waste_links.append(ThemeWasteType(waste_type_id=waste_id))
        db.session.add(theme)
        themes.append(theme)

    db.session.commit()
    logger.info("Synthesis persisted %d theme(s)", len(themes), extra=log_ctx)
    return themes


def run_synthesis_agent(session_id: str, force_rerun: bool = False, user_id: str | None = None,
                        orchestrator=None) -> dict:
    """Cluster the session's observations into themes.

    Returns:
        {"success", "run_id", "cached", "data", "model", "provider"}

    Raises:
        NotFoundError: Unknown session.
        ValidationError: The session has no observations.
        UpstreamError: The agent call or its output validation failed.
    """
    session = get_session_or_404(session_id)
    inputs = _synthesis_inputs(session)

    result = run_agent(session.id, "synthesis", inputs, build_synthesis_prompt,
                       force_rerun=force_rerun, user_id=user_id, orchestrator=orchestrator)
    if not result.success:
        raise UpstreamError("synthesis", result.error or "Synthesis agent failed",
                            run_id=result.run_id)

    if not result.cached:
        replace_themes(session.id, result.data, inputs, user_id=user_id)
    return result.to_dict()
