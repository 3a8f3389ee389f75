"""Future-state service: the versioned graph store.

Turns validated designer output into FutureState / FutureStateNode /
FutureStateEdge rows and supports concurrent editing afterwards.

Rules:
  - db.session.commit() happens only in service modules.
  - Version numbers are max+1 per session, backed by the
    (session_id, version) unique constraint; a collision is retried.
  - Node edits are optimistic: a single UPDATE ... WHERE revision = ?
    both checks and increments the revision.
  - Locked future states reject every node and edge mutation.
  - Edge creation only warns about an existing reverse edge; feedback
    loops between nodes are allowed.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from leanflow.ai.orchestrator import run_agent
from leanflow.ai.prompts import build_design_prompt
from leanflow.ai.schemas import DesignOutput
from leanflow.core.exceptions import (
    ConflictError, LockedError, NotFoundError, StaleRevisionError, UpstreamError, ValidationError,
)
from leanflow.models import db
from leanflow.models.base import utcnow
from leanflow.models.future_state import (
    FUTURE_STATE_STATUSES, NODE_ACTIONS, FutureState, FutureStateEdge, FutureStateNode,
)
from leanflow.models.information_flow import FlowComparisonSnapshot, InformationFlow
from leanflow.models.process import STEP_TYPES, ProcessStep, StepConnection, WasteWalkSession
from leanflow.models.solution import SolutionCard
from leanflow.services.solution_service import get_session_or_404, list_accepted_solutions

logger = logging.getLogger(__name__)

VERSION_RETRY_LIMIT = 3

UPDATABLE_NODE_FIELDS = (
    "name", "description", "lane", "step_type", "lead_time_minutes", "cycle_time_minutes",
    "position_x", "position_y", "action", "modified_fields", "linked_solution_id",
)

_UNSET = object()
_VERSION_SUFFIX = re.compile(r"\s+v\d+$")


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _get_future_state(future_state_id: str) -> FutureState:
    fs = db.session.get(FutureState, future_state_id)
    if fs is None:
        raise NotFoundError(resource="FutureState", resource_id=future_state_id)
    return fs


def _get_mutable_future_state(future_state_id: str) -> FutureState:
    fs = _get_future_state(future_state_id)
    if fs.is_locked:
        raise LockedError("FutureState", future_state_id)
    return fs


def _next_version(session_id: str) -> int:
    current = db.session.execute(
        select(func.max(FutureState.version)).where(FutureState.session_id == session_id)
    ).scalar()
    return (current or 0) + 1


def _insert_next_version(session_id: str, build: Callable[[int], FutureState]) -> FutureState:
    """Insert a FutureState built for the next free version of the session.

    Each attempt runs in a savepoint; a unique-constraint collision with a
    concurrent writer re-reads max(version) and tries again.
    """
    version = None
    for attempt in range(1, VERSION_RETRY_LIMIT + 1):
        version = _next_version(session_id)
        fs = build(version)
        try:
            with db.session.begin_nested():
                db.session.add(fs)
        except IntegrityError:
            logger.warning("Version %s collided (attempt %d/%d)", version, attempt,
                           VERSION_RETRY_LIMIT, extra={"session_id": session_id})
            continue
        return fs
    raise ConflictError(
        "FutureState", "version", str(version),
        message=f"Could not allocate a future state version for session {session_id}",
    )


def _base_name(name: str) -> str:
    return _VERSION_SUFFIX.sub("", name or "").strip() or "Future State"


def _design_inputs(session: WasteWalkSession) -> dict:
    """Collect the designer's inputs: current graph, lanes and accepted solutions."""
    steps = list(db.session.execute(
        select(ProcessStep)
        .where(ProcessStep.process_id == session.process_id)
        .order_by(ProcessStep.order_index, ProcessStep.id)
    ).scalars())
    if not steps:
        raise ValidationError("Process has no steps to redesign",
                              details={"process_id": session.process_id})

    solutions = list_accepted_solutions(session.id)
    if not solutions:
        raise ValidationError("No accepted solutions found. Accept solutions first.",
                              details={"session_id": session.id})

    connections = db.session.execute(
        select(StepConnection)
        .where(StepConnection.process_id == session.process_id)
        .order_by(StepConnection.id)
    ).scalars()

    return {
        "lanes": list(dict.fromkeys(s.lane for s in steps)),
        "current_steps": [
            {
                "id": s.id,
                "step_name": s.step_name,
                "description": s.description,
                "lane": s.lane,
                "step_type": s.step_type,
                "position_x": s.position_x or 0,
                "position_y": s.position_y or 0,
                "lead_time_minutes": s.lead_time_minutes,
                "cycle_time_minutes": s.cycle_time_minutes,
            }
            for s in steps
        ],
        "current_edges": [
            {"source_step_id": c.source_step_id, "target_step_id": c.target_step_id, "label": c.label}
            for c in connections
        ],
        "solutions": [
            {
                "id": s.id,
                "bucket": s.bucket,
                "title": s.title,
                "description": s.description or "",
                "step_ids": s.step_ids,
            }
            for s in solutions
        ],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Designer run + persistence
# ═════════════════════════════════════════════════════════════════════════════


def run_design_agent(session_id: str, force_rerun: bool = False, user_id: str | None = None,
                     orchestrator=None) -> dict:
    """Run the design agent for a session and persist a new version on a fresh result.

    Returns:
        {"future_state_id", "success", "run_id", "cached", "data", "model", "provider"}.
        ``future_state_id`` is None for cached results: a cache hit replays
        output that was already persisted.

    Raises:
        NotFoundError: Unknown session.
        ValidationError: Process without steps, or no accepted solutions.
        UpstreamError: The agent call or its output validation failed.
    """
    session = get_session_or_404(session_id)
    inputs = _design_inputs(session)

    result = run_agent(session.id, "design", inputs, build_design_prompt,
                       force_rerun=force_rerun, user_id=user_id, orchestrator=orchestrator)
    if not result.success:
        raise UpstreamError("design", result.error or "Design agent failed", run_id=result.run_id)

    response = {"future_state_id": None, **result.to_dict()}
    if not result.cached:
        fs = persist_design_output(session, result.data, user_id=user_id)
        response["future_state_id"] = fs.id
    return response


def persist_design_output(session: WasteWalkSession, output: dict,
                          user_id: str | None = None) -> FutureState:
    """Persist designer output as a new draft version of the session's future state.

    Nodes are inserted in response order, each in its own savepoint; the
    ordinal → persisted-id map built on the way resolves the edges, which
    address nodes by their position in the response. Nodes that fail to
    insert and edges that cannot be resolved are skipped and logged.
    Step and solution references that do not exist are nulled.
    """
    try:
        draft = DesignOutput.model_validate(output).future_state
    except ValueError as exc:
        raise ValidationError("Design output is malformed", details={"error": str(exc)}) from exc

    log_ctx = {"session_id": session.id}

    fs = _insert_next_version(
        session.id,
        lambda version: FutureState(
            session_id=session.id,
            process_id=session.process_id,
            name=f"{draft.name} v{version}",
            version=version,
            status="draft",
            created_by=user_id,
        ),
    )
    log_ctx["future_state_id"] = fs.id

    step_ids = set(db.session.execute(
        select(ProcessStep.id).where(ProcessStep.process_id == session.process_id)
    ).scalars())
    solution_ids = set(db.session.execute(
        select(SolutionCard.id).where(SolutionCard.session_id == session.id)
    ).scalars())

    node_ids: dict[int, str] = {}
    for index, item in enumerate(draft.nodes):
        source_step_id = item.source_step_id if item.source_step_id in step_ids else None
        linked_solution_id = item.linked_solution_id if item.linked_solution_id in solution_ids else None
        if item.source_step_id and source_step_id is None:
            logger.info("Node %d references unknown step %s; provenance dropped",
                        index, item.source_step_id, extra=log_ctx)

        modified_fields = dict(item.modified_fields)
        if item.explanation:
            modified_fields["explanation"] = item.explanation

        node = FutureStateNode(
            future_state_id=fs.id,
            sequence=index,
            source_step_id=source_step_id,
            name=item.name,
            description=item.description,
            lane=item.lane,
            step_type=item.step_type,
            lead_time_minutes=item.lead_time_minutes,
            cycle_time_minutes=item.cycle_time_minutes,
            position_x=item.position_x,
            position_y=item.position_y,
            action=item.action,
            modified_fields=modified_fields,
            linked_solution_id=linked_solution_id,
            revision=1,
            updated_by=user_id,
        )
        try:
            with db.session.begin_nested():
                db.session.add(node)
        except SQLAlchemyError:
            logger.exception("Skipping node %d (%s): insert failed", index, item.name, extra=log_ctx)
            continue
        node_ids[index] = node.id

    seen_pairs: set[tuple[str, str]] = set()
    per_source: dict[str, int] = {}
    for edge in draft.edges:
        source = node_ids.get(edge.source_node_index)
        target = node_ids.get(edge.target_node_index)
        if source is None or target is None:
            logger.warning("Skipping edge %d -> %d: node index not resolved",
                           edge.source_node_index, edge.target_node_index, extra=log_ctx)
            continue
        if source == target:
            logger.warning("Skipping self-loop edge on node index %d",
                           edge.source_node_index, extra=log_ctx)
            continue
        if (source, target) in seen_pairs:
            logger.warning("Skipping duplicate edge %d -> %d",
                           edge.source_node_index, edge.target_node_index, extra=log_ctx)
            continue
        seen_pairs.add((source, target))
        order_index = per_source.get(source, 0)
        per_source[source] = order_index + 1
        db.session.add(FutureStateEdge(
            future_state_id=fs.id,
            source_node_id=source,
            target_node_id=target,
            label=edge.label,
            order_index=order_index,
        ))

    db.session.commit()
    logger.info("Future state v%d persisted: %d/%d nodes, %d edges",
                fs.version, len(node_ids), len(draft.nodes), len(seen_pairs), extra=log_ctx)
    return fs


# ═════════════════════════════════════════════════════════════════════════════
# Node edits (optimistic concurrency)
# ═════════════════════════════════════════════════════════════════════════════


def _clean_node_updates(fs: FutureState, updates: dict) -> dict:
    values = {k: updates[k] for k in UPDATABLE_NODE_FIELDS if k in updates}
    if not values:
        raise ValidationError(
            "No updatable fields supplied",
            details={"allowed": list(UPDATABLE_NODE_FIELDS)},
        )
    if "name" in values and not (values["name"] or "").strip():
        raise ValidationError("name cannot be empty", details={"name": values["name"]})
    if "lane" in values and not (values["lane"] or "").strip():
        raise ValidationError("lane cannot be empty", details={"lane": values["lane"]})
    if "action" in values and values["action"] not in NODE_ACTIONS:
        raise ValidationError(
            f"action must be one of: {', '.join(sorted(NODE_ACTIONS))}",
            details={"action": values["action"]},
        )
    if "step_type" in values and values["step_type"] not in STEP_TYPES:
        raise ValidationError(
            f"step_type must be one of: {', '.join(sorted(STEP_TYPES))}",
            details={"step_type": values["step_type"]},
        )
    if "modified_fields" in values:
        if values["modified_fields"] is None:
            values["modified_fields"] = {}
        elif not isinstance(values["modified_fields"], dict):
            raise ValidationError("modified_fields must be an object")
    for key in ("position_x", "position_y"):
        if key in values and values[key] is None:
            raise ValidationError(f"{key} cannot be null")
    if "linked_solution_id" in values:
        values["linked_solution_id"] = values["linked_solution_id"] or None
    if values.get("linked_solution_id"):
        exists = db.session.execute(
            select(SolutionCard.id).where(
                SolutionCard.id == values["linked_solution_id"],
                SolutionCard.session_id == fs.session_id,
            )
        ).scalar_one_or_none()
        if exists is None:
            raise ValidationError(
                "linked_solution_id is not a solution of this session",
                details={"linked_solution_id": values["linked_solution_id"]},
            )
    return values


def update_future_state_node(node_id: str, updates: dict, expected_revision: int | None = None,
                             user_id: str | None = None) -> FutureStateNode:
    """Update a node under optimistic concurrency.

    With ``expected_revision`` the row is only written if its stored
    revision still matches; the same statement increments the revision.
    Without it the update is applied unconditionally (still incrementing).

    Raises:
        NotFoundError: The node does not exist (or vanished mid-update).
        LockedError: The node's future state is locked.
        ValidationError: No updatable field or an invalid value.
        StaleRevisionError: Another writer updated the node first.
    """
    node = db.session.get(FutureStateNode, node_id)
    if node is None:
        raise NotFoundError(resource="FutureStateNode", resource_id=node_id)
    fs = _get_mutable_future_state(node.future_state_id)
    values = _clean_node_updates(fs, updates)

    stmt = update(FutureStateNode).where(FutureStateNode.id == node_id)
    if expected_revision is not None:
        expected_revision = int(expected_revision)
        stmt = stmt.where(FutureStateNode.revision == expected_revision)
    stmt = stmt.values(
        **values,
        revision=FutureStateNode.revision + 1,
        updated_by=user_id,
        updated_at=utcnow(),
    ).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if result.rowcount == 0:
        db.session.rollback()
        current = db.session.execute(
            select(FutureStateNode.revision).where(FutureStateNode.id == node_id)
        ).scalar_one_or_none()
        if current is None:
            raise NotFoundError(resource="FutureStateNode", resource_id=node_id)
        logger.info("Stale node update rejected", extra={
            "future_state_id": fs.id, "user_id": user_id,
        })
        raise StaleRevisionError("FutureStateNode", node_id,
                                 expected=expected_revision, current=current)

    db.session.commit()
    db.session.refresh(node)
    return node


def get_future_state_node(node_id: str) -> FutureStateNode:
    node = db.session.get(FutureStateNode, node_id)
    if node is None:
        raise NotFoundError(resource="FutureStateNode", resource_id=node_id)
    return node


# ═════════════════════════════════════════════════════════════════════════════
# Edge mutations
# ═════════════════════════════════════════════════════════════════════════════


def create_edge(future_state_id: str, source_node_id: str, target_node_id: str,
                label: str | None = None) -> FutureStateEdge:
    """Create a directed edge between two nodes of the same future state.

    order_index is one past the highest existing index for the source
    (0 for its first edge). An existing reverse edge is only logged.

    Raises:
        NotFoundError: Unknown future state.
        LockedError: Future state is locked.
        ValidationError: Self-loop, or a node outside this future state.
        ConflictError: An edge for (source, target) already exists.
    """
    fs = _get_mutable_future_state(future_state_id)

    if not source_node_id or not target_node_id:
        raise ValidationError("source_node_id and target_node_id are required")
    if source_node_id == target_node_id:
        raise ValidationError("Self-loop edges are not allowed",
                              details={"source_node_id": source_node_id})

    found = set(db.session.execute(
        select(FutureStateNode.id).where(
            FutureStateNode.future_state_id == fs.id,
            FutureStateNode.id.in_([source_node_id, target_node_id]),
        )
    ).scalars())
    missing = [n for n in (source_node_id, target_node_id) if n not in found]
    if missing:
        raise ValidationError("Edge endpoints must be nodes of this future state",
                              details={"missing_node_ids": missing})

    def _edge_exists(src, dst):
        return db.session.execute(
            select(FutureStateEdge.id).where(
                FutureStateEdge.future_state_id == fs.id,
                FutureStateEdge.source_node_id == src,
                FutureStateEdge.target_node_id == dst,
            )
        ).first() is not None

    if _edge_exists(source_node_id, target_node_id):
        raise ConflictError("FutureStateEdge", "source_node_id,target_node_id",
                            f"{source_node_id}->{target_node_id}",
                            message="An edge between these nodes already exists")
    if _edge_exists(target_node_id, source_node_id):
        logger.warning("Reverse edge already exists; creating a two-node loop",
                       extra={"future_state_id": fs.id})

    max_index = db.session.execute(
        select(func.max(FutureStateEdge.order_index)).where(
            FutureStateEdge.future_state_id == fs.id,
            FutureStateEdge.source_node_id == source_node_id,
        )
    ).scalar()

    edge = FutureStateEdge(
        future_state_id=fs.id,
        source_node_id=source_node_id,
        target_node_id=target_node_id,
        label=label,
        order_index=0 if max_index is None else max_index + 1,
    )
    db.session.add(edge)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("FutureStateEdge", "source_node_id,target_node_id",
                            f"{source_node_id}->{target_node_id}",
                            message="An edge between these nodes already exists")
    return edge


def _get_mutable_edge(edge_id: str) -> FutureStateEdge:
    edge = db.session.get(FutureStateEdge, edge_id)
    if edge is None:
        raise NotFoundError(resource="FutureStateEdge", resource_id=edge_id)
    _get_mutable_future_state(edge.future_state_id)
    return edge


def update_edge(edge_id: str, *, label=_UNSET, order_index=_UNSET) -> FutureStateEdge:
    """Relabel or reorder an edge.

    An ``order_index`` already held by another edge of the same source node
    raises ConflictError; siblings are never shifted.
    """
    edge = _get_mutable_edge(edge_id)
    if order_index is not _UNSET:
        if order_index is None or int(order_index) < 0:
            raise ValidationError("order_index must be a non-negative integer",
                                  details={"order_index": order_index})
        order_index = int(order_index)
        taken = db.session.execute(
            select(FutureStateEdge.id).where(
                FutureStateEdge.source_node_id == edge.source_node_id,
                FutureStateEdge.order_index == order_index,
                FutureStateEdge.id != edge.id,
            )
        ).first()
        if taken is not None:
            raise ConflictError("FutureStateEdge", "order_index", str(order_index),
                                message=f"order_index {order_index} is already used by "
                                        f"another edge of this source node")
        edge.order_index = order_index
    if label is not _UNSET:
        edge.label = label
    db.session.commit()
    return edge


def delete_edge(edge_id: str) -> None:
    edge = _get_mutable_edge(edge_id)
    db.session.delete(edge)
    db.session.commit()
    logger.info("Edge %s deleted", edge_id, extra={"future_state_id": edge.future_state_id})


# ═════════════════════════════════════════════════════════════════════════════
# Version management
# ═════════════════════════════════════════════════════════════════════════════


def get_future_state(future_state_id: str, include_graph: bool = True) -> dict:
    return _get_future_state(future_state_id).to_dict(include_graph=include_graph)


def list_future_states(session_id: str) -> list[FutureState]:
    """All versions of a session, newest first."""
    get_session_or_404(session_id)
    return list(db.session.execute(
        select(FutureState)
        .where(FutureState.session_id == session_id)
        .order_by(FutureState.version.desc())
    ).scalars())


def duplicate_future_state(future_state_id: str, name: str | None = None,
                           description: str | None = None,
                           user_id: str | None = None) -> FutureState:
    """Clone a version (nodes and edges) into a new draft version.

    Node ids are remapped so the copy's edges point at the copy's nodes.
    Revisions restart at 1.
    """
    source = _get_future_state(future_state_id)
    base = _base_name(source.name)

    fs = _insert_next_version(
        source.session_id,
        lambda version: FutureState(
            session_id=source.session_id,
            process_id=source.process_id,
            name=name or f"{base} v{version}",
            description=description if description is not None else source.description,
            version=version,
            status="draft",
            parent_version_id=source.id,
            created_by=user_id,
        ),
    )

    id_map: dict[str, str] = {}
    for old in source.nodes:
        node = FutureStateNode(
            future_state_id=fs.id,
            sequence=old.sequence,
            source_step_id=old.source_step_id,
            name=old.name,
            description=old.description,
            lane=old.lane,
            step_type=old.step_type,
            lead_time_minutes=old.lead_time_minutes,
            cycle_time_minutes=old.cycle_time_minutes,
            position_x=old.position_x,
            position_y=old.position_y,
            action=old.action,
            modified_fields=dict(old.modified_fields or {}),
            linked_solution_id=old.linked_solution_id,
            revision=1,
            updated_by=user_id,
        )
        db.session.add(node)
        db.session.flush()
        id_map[old.id] = node.id

    for old in source.edges:
        db.session.add(FutureStateEdge(
            future_state_id=fs.id,
            source_node_id=id_map[old.source_node_id],
            target_node_id=id_map[old.target_node_id],
            label=old.label,
            order_index=old.order_index,
        ))

    db.session.commit()
    logger.info("Future state v%d duplicated from v%d", fs.version, source.version,
                extra={"session_id": fs.session_id, "future_state_id": fs.id})
    return fs


def set_future_state_status(future_state_id: str, status: str) -> FutureState:
    """Move a version between draft and locked."""
    if status not in FUTURE_STATE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(FUTURE_STATE_STATUSES))}",
            details={"status": status},
        )
    fs = _get_future_state(future_state_id)
    if fs.status != status:
        fs.status = status
        db.session.commit()
        logger.info("Future state v%d -> %s", fs.version, status,
                    extra={"session_id": fs.session_id, "future_state_id": fs.id})
    return fs


def delete_future_state(future_state_id: str) -> None:
    """Delete a version with its graph, future flows and comparison snapshots.

    Locked versions and the only version of a session cannot be deleted.
    """
    fs = _get_mutable_future_state(future_state_id)
    siblings = db.session.execute(
        select(func.count(FutureState.id)).where(FutureState.session_id == fs.session_id)
    ).scalar_one()
    if siblings <= 1:
        raise ValidationError("Cannot delete the only version",
                              details={"session_id": fs.session_id})

    session_id, version = fs.session_id, fs.version
    db.session.execute(delete(FlowComparisonSnapshot).where(
        FlowComparisonSnapshot.future_state_id == fs.id))
    db.session.execute(delete(InformationFlow).where(InformationFlow.future_state_id == fs.id))
    db.session.execute(update(FutureState).where(FutureState.parent_version_id == fs.id)
                       .values(parent_version_id=None))
    db.session.execute(delete(FutureStateEdge).where(FutureStateEdge.future_state_id == fs.id))
    db.session.execute(delete(FutureStateNode).where(FutureStateNode.future_state_id == fs.id))
    db.session.execute(delete(FutureState).where(FutureState.id == fs.id))
    db.session.commit()
    logger.info("Future state v%d deleted", version,
                extra={"session_id": session_id, "future_state_id": future_state_id})
