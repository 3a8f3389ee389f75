"""Information flow service.

Flows are exchanges between two current-state steps (state_type=current,
scoped by process_id) or two future-state nodes (state_type=future, scoped
by future_state_id). They are the raw material of the comparison engine.

Quality: completeness, accuracy and timeliness are 1-5 sub-scores; the
stored quality_score is their sum with a missing sub-score counted as 3.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update

from leanflow.core.exceptions import NotFoundError, StaleRevisionError, ValidationError
from leanflow.models import db
from leanflow.models.future_state import FutureState, FutureStateNode
from leanflow.models.information_flow import (
    DEFAULT_SUBSCORE, FLOW_STATUSES, FLOW_TYPES, QUALITY_SUBSCORES, STATE_TYPES,
    FlowWasteLink, InformationFlow,
)
from leanflow.models.process import Process, ProcessStep, WasteType

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = (
    "name", "description", "flow_type", "status", "volume_per_day", "frequency",
    "is_automated", "is_real_time",
) + QUALITY_SUBSCORES


def _check_subscore(name: str, value) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError(f"{name} must be an integer between 1 and 5", details={name: value})
    return value


def calculate_quality_score(completeness: int | None, accuracy: int | None,
                            timeliness: int | None) -> int:
    """Composite quality (3-15). Missing sub-scores count as 3."""
    total = 0
    for name, value in zip(QUALITY_SUBSCORES, (completeness, accuracy, timeliness)):
        value = _check_subscore(name, value)
        total += DEFAULT_SUBSCORE if value is None else value
    return total


def _get_flow(flow_id: str) -> InformationFlow:
    flow = db.session.get(InformationFlow, flow_id)
    if flow is None:
        raise NotFoundError(resource="InformationFlow", resource_id=flow_id)
    return flow


def _check_choice(field: str, value, allowed: set):
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(allowed))}", details={field: value},
        )


def _check_endpoints(flow: InformationFlow) -> None:
    """Endpoints must belong to the flow's process (current) or future state (future)."""
    if flow.state_type == "current":
        ids = [i for i in (flow.source_step_id, flow.target_step_id) if i]
        if ids:
            found = set(db.session.execute(
                select(ProcessStep.id).where(
                    ProcessStep.process_id == flow.process_id, ProcessStep.id.in_(ids),
                )
            ).scalars())
            missing = [i for i in ids if i not in found]
            if missing:
                raise ValidationError("Flow endpoints must be steps of the process",
                                      details={"missing_step_ids": missing})
    else:
        ids = [i for i in (flow.source_node_id, flow.target_node_id) if i]
        if ids:
            found = set(db.session.execute(
                select(FutureStateNode.id).where(
                    FutureStateNode.future_state_id == flow.future_state_id,
                    FutureStateNode.id.in_(ids),
                )
            ).scalars())
            missing = [i for i in ids if i not in found]
            if missing:
                raise ValidationError("Flow endpoints must be nodes of the future state",
                                      details={"missing_node_ids": missing})


def _set_waste_types(flow: InformationFlow, waste_type_ids) -> None:
    wanted = list(dict.fromkeys(waste_type_ids or []))
    if wanted:
        known = set(db.session.execute(
            select(WasteType.id).where(WasteType.id.in_(wanted))
        ).scalars())
        unknown = [w for w in wanted if w not in known]
        if unknown:
            raise ValidationError("Unknown waste types", details={"waste_type_ids": unknown})
    # Keep surviving links so the unique (flow, waste type) pair is never re-inserted.
    existing = {link.waste_type_id: link for link in flow.waste_links}
    flow.waste_links = [existing.get(w) or FlowWasteLink(waste_type_id=w) for w in wanted]


def _recompute_quality(flow: InformationFlow) -> None:
    flow.quality_score = calculate_quality_score(
        flow.completeness_score, flow.accuracy_score, flow.timeliness_score,
    )


def create_information_flow(data: dict, user_id: str | None = None) -> InformationFlow:
    """Create a current- or future-state flow.

    Raises:
        ValidationError: Missing name/scope, bad enum or score, foreign endpoints.
        NotFoundError: Unknown process or future state.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})

    state_type = data.get("state_type", "current")
    _check_choice("state_type", state_type, STATE_TYPES)
    flow_type = data.get("flow_type", "data")
    _check_choice("flow_type", flow_type, FLOW_TYPES)
    status = data.get("status", "active")
    _check_choice("status", status, FLOW_STATUSES)

    process_id = data.get("process_id")
    future_state_id = data.get("future_state_id")
    if state_type == "current":
        if not process_id:
            raise ValidationError("process_id is required for current-state flows")
        if db.session.get(Process, process_id) is None:
            raise NotFoundError(resource="Process", resource_id=process_id)
    else:
        if not future_state_id:
            raise ValidationError("future_state_id is required for future-state flows")
        fs = db.session.get(FutureState, future_state_id)
        if fs is None:
            raise NotFoundError(resource="FutureState", resource_id=future_state_id)
        process_id = process_id or fs.process_id

    scores = {k: _check_subscore(k, data.get(k)) for k in QUALITY_SUBSCORES}

    flow = InformationFlow(
        process_id=process_id,
        future_state_id=future_state_id if state_type == "future" else None,
        state_type=state_type,
        source_step_id=data.get("source_step_id") if state_type == "current" else None,
        target_step_id=data.get("target_step_id") if state_type == "current" else None,
        source_node_id=data.get("source_node_id") if state_type == "future" else None,
        target_node_id=data.get("target_node_id") if state_type == "future" else None,
        name=name,
        description=data.get("description"),
        flow_type=flow_type,
        status=status,
        volume_per_day=data.get("volume_per_day"),
        frequency=data.get("frequency"),
        is_automated=bool(data.get("is_automated", False)),
        is_real_time=bool(data.get("is_real_time", False)),
        metadata_json=data.get("metadata") or {},
        created_by=user_id,
        **scores,
    )
    _check_endpoints(flow)
    _recompute_quality(flow)
    _set_waste_types(flow, data.get("waste_type_ids"))

    db.session.add(flow)
    db.session.commit()
    logger.info("Information flow created id=%s state=%s", flow.id, state_type)
    return flow


def update_information_flow(flow_id: str, updates: dict,
                            expected_revision: int | None = None) -> InformationFlow:
    """Edit a flow. Quality is recomputed whenever a sub-score changes.

    With ``expected_revision`` the revision is claimed atomically first;
    a mismatch raises StaleRevisionError and nothing is written.
    """
    flow = _get_flow(flow_id)

    if "name" in updates and not (updates["name"] or "").strip():
        raise ValidationError("name cannot be empty")
    if "flow_type" in updates:
        _check_choice("flow_type", updates["flow_type"], FLOW_TYPES)
    if "status" in updates:
        _check_choice("status", updates["status"], FLOW_STATUSES)
    for field in QUALITY_SUBSCORES:
        if field in updates:
            _check_subscore(field, updates[field])

    if expected_revision is not None:
        claimed = db.session.execute(
            update(InformationFlow)
            .where(InformationFlow.id == flow_id, InformationFlow.revision == int(expected_revision))
            .values(revision=InformationFlow.revision + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed == 0:
            db.session.rollback()
            current = db.session.execute(
                select(InformationFlow.revision).where(InformationFlow.id == flow_id)
            ).scalar_one_or_none()
            if current is None:
                raise NotFoundError(resource="InformationFlow", resource_id=flow_id)
            raise StaleRevisionError("InformationFlow", flow_id,
                                     expected=int(expected_revision), current=current)
        db.session.refresh(flow)
    else:
        flow.revision = (flow.revision or 1) + 1

    try:
        for field in _EDITABLE_FIELDS:
            if field in updates:
                setattr(flow, field, updates[field])
        if "metadata" in updates:
            flow.metadata_json = updates["metadata"] or {}

        endpoint_keys = ("source_step_id", "target_step_id") if flow.state_type == "current" \
            else ("source_node_id", "target_node_id")
        if any(k in updates for k in endpoint_keys):
            for key in endpoint_keys:
                if key in updates:
                    setattr(flow, key, updates[key])
            _check_endpoints(flow)

        if "waste_type_ids" in updates:
            _set_waste_types(flow, updates["waste_type_ids"])
    except ValidationError:
        db.session.rollback()
        raise

    _recompute_quality(flow)
    db.session.commit()
    return flow


def delete_information_flow(flow_id: str) -> None:
    flow = _get_flow(flow_id)
    db.session.delete(flow)
    db.session.commit()


def list_information_flows(process_id: str | None = None, future_state_id: str | None = None,
                           state_type: str | None = None) -> list[InformationFlow]:
    """Flows filtered by process, future state and/or side. At least one scope is required."""
    if not process_id and not future_state_id:
        raise ValidationError("process_id or future_state_id is required")
    stmt = select(InformationFlow)
    if process_id:
        stmt = stmt.where(InformationFlow.process_id == process_id)
    if future_state_id:
        stmt = stmt.where(InformationFlow.future_state_id == future_state_id)
    if state_type:
        _check_choice("state_type", state_type, STATE_TYPES)
        stmt = stmt.where(InformationFlow.state_type == state_type)
    return list(db.session.execute(
        stmt.order_by(InformationFlow.created_at, InformationFlow.id)
    ).scalars())


def current_flows(process_id: str) -> list[InformationFlow]:
    return list_information_flows(process_id=process_id, state_type="current")


def future_flows(future_state_id: str) -> list[InformationFlow]:
    return list_information_flows(future_state_id=future_state_id, state_type="future")


def copy_flows_to_future_state(process_id: str, future_state_id: str,
                               node_mapping: dict[str, str] | None = None,
                               user_id: str | None = None) -> list[InformationFlow]:
    """Copy current flows onto a future state.

    ``node_mapping`` maps step id → node id; when omitted it is derived from
    the nodes' source_step_id provenance. Only flows whose both endpoints
    map are copied; copies are ``proposed`` and keep scores and waste tags.
    """
    fs = db.session.get(FutureState, future_state_id)
    if fs is None:
        raise NotFoundError(resource="FutureState", resource_id=future_state_id)

    if node_mapping is None:
        node_mapping = {
            n.source_step_id: n.id for n in fs.nodes if n.source_step_id
        }

    copied = []
    for flow in current_flows(process_id):
        source = node_mapping.get(flow.source_step_id) if flow.source_step_id else None
        target = node_mapping.get(flow.target_step_id) if flow.target_step_id else None
        if not source or not target:
            continue
        copy = InformationFlow(
            process_id=process_id,
            future_state_id=fs.id,
            state_type="future",
            source_node_id=source,
            target_node_id=target,
            name=flow.name,
            description=flow.description,
            flow_type=flow.flow_type,
            status="proposed",
            volume_per_day=flow.volume_per_day,
            frequency=flow.frequency,
            is_automated=flow.is_automated,
            is_real_time=flow.is_real_time,
            completeness_score=flow.completeness_score,
            accuracy_score=flow.accuracy_score,
            timeliness_score=flow.timeliness_score,
            quality_score=flow.quality_score,
            metadata_json=dict(flow.metadata_json or {}),
            created_by=user_id,
        )
        copy.waste_links = [FlowWasteLink(waste_type_id=link.waste_type_id, notes=link.notes)
                            for link in flow.waste_links]
        db.session.add(copy)
        copied.append(copy)

    db.session.commit()
    logger.info("Copied %d flows onto future state", len(copied),
                extra={"future_state_id": future_state_id})
    return copied


def get_process_flow_stats(process_id: str) -> dict:
    """Counts by type, average quality and automation/waste coverage of a process's current flows."""
    flows = current_flows(process_id)
    by_type = {t: 0 for t in sorted(FLOW_TYPES)}
    scored = [f.quality_score for f in flows if f.quality_score]
    for f in flows:
        by_type[f.flow_type] = by_type.get(f.flow_type, 0) + 1
    return {
        "total_flows": len(flows),
        "by_type": by_type,
        "avg_quality_score": sum(scored) / len(scored) if scored else 0,
        "automated_count": sum(1 for f in flows if f.is_automated),
        "real_time_count": sum(1 for f in flows if f.is_real_time),
        "waste_tagged_count": sum(1 for f in flows if f.waste_links),
    }
