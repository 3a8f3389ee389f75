"""Comparison engine: current-state vs future-state information flows.

Flows are matched across states by case-insensitive name, the only
identity that survives a redesign. Whitespace is significant: "Invoice
Approval " and "invoice approval" are different flows. When two flows on
one side share a name, the later one wins the match.

Per current flow:
  - no future flow with the same name         → eliminated
  - quality, waste tags or flow type differ   → modified
  - otherwise                                 → unchanged
Future flows whose name has no current counterpart are added.

Only the latest snapshot per (session, future state) pair is kept.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select

from leanflow.core.exceptions import NotFoundError, ValidationError
from leanflow.models import db
from leanflow.models.future_state import FutureState
from leanflow.models.information_flow import FlowComparisonSnapshot
from leanflow.services.information_flow_service import current_flows, future_flows
from leanflow.services.solution_service import get_session_or_404

logger = logging.getLogger(__name__)


def _name_key(flow: dict) -> str:
    return (flow.get("name") or "").lower()


def _waste_index(flow: dict) -> dict[str, str]:
    """Waste tags as {id: display name}. Plain strings act as both."""
    index = {}
    for waste in flow.get("waste_types") or []:
        if isinstance(waste, dict):
            wid = waste.get("id") or waste.get("name")
            index[wid] = waste.get("name") or wid
        else:
            index[waste] = waste
    return index


def compare_flows(current: list[dict], future: list[dict]) -> dict:
    """Diff two flow lists.

    Returns the summary counts plus the four item lists. The average
    quality improvement is the mean quality change over every modified
    flow (0.0 when none); waste reduction counts removed waste tags.
    """
    future_by_name = {_name_key(f): f for f in future}
    current_names = {_name_key(c) for c in current}

    eliminated, modified, unchanged = [], [], []
    for flow in current:
        match = future_by_name.get(_name_key(flow))
        if match is None:
            eliminated.append({
                "current_flow_id": flow.get("id"),
                "name": flow.get("name"),
                "change_type": "eliminated",
            })
            continue

        quality_change = (match.get("quality_score") or 0) - (flow.get("quality_score") or 0)
        before, after = _waste_index(flow), _waste_index(match)
        removed = [name for wid, name in before.items() if wid not in after]
        added = [name for wid, name in after.items() if wid not in before]
        type_changed = flow.get("flow_type") != match.get("flow_type")

        if quality_change != 0 or removed or added or type_changed:
            item = {
                "current_flow_id": flow.get("id"),
                "future_flow_id": match.get("id"),
                "name": flow.get("name"),
                "change_type": "modified",
                "quality_change": quality_change,
                "waste_changes": {"removed": removed, "added": added},
            }
            if type_changed:
                item["flow_type_change"] = {"from": flow.get("flow_type"),
                                            "to": match.get("flow_type")}
            modified.append(item)
        else:
            unchanged.append({
                "current_flow_id": flow.get("id"),
                "future_flow_id": match.get("id"),
                "name": flow.get("name"),
                "change_type": "unchanged",
            })

    added_flows = [
        {"future_flow_id": f.get("id"), "name": f.get("name"), "change_type": "added"}
        for f in future if _name_key(f) not in current_names
    ]

    improvements = [m["quality_change"] for m in modified]
    return {
        "current_flows_count": len(current),
        "future_flows_count": len(future),
        "eliminated_flows": len(eliminated),
        "added_flows": len(added_flows),
        "modified_flows": len(modified),
        "unchanged_flows": len(unchanged),
        "avg_quality_improvement": sum(improvements) / len(improvements) if improvements else 0.0,
        "waste_reduction_count": sum(len(m["waste_changes"]["removed"]) for m in modified),
        "comparison_data": {
            "eliminated": eliminated,
            "added": added_flows,
            "modified": modified,
            "unchanged": unchanged,
        },
    }


def generate_flow_comparison(session_id: str, future_state_id: str) -> FlowComparisonSnapshot:
    """Compare the session's current flows with a future state's and store the snapshot.

    Raises:
        NotFoundError: Unknown session or future state.
        ValidationError: The future state belongs to another session.
    """
    session = get_session_or_404(session_id)
    fs = db.session.get(FutureState, future_state_id)
    if fs is None:
        raise NotFoundError(resource="FutureState", resource_id=future_state_id)
    if fs.session_id != session.id:
        raise ValidationError("Future state does not belong to this session",
                              details={"future_state_id": future_state_id})

    result = compare_flows(
        [f.to_dict() for f in current_flows(session.process_id)],
        [f.to_dict() for f in future_flows(fs.id)],
    )

    db.session.execute(delete(FlowComparisonSnapshot).where(
        FlowComparisonSnapshot.session_id == session.id,
        FlowComparisonSnapshot.future_state_id == fs.id,
    ))
    snapshot = FlowComparisonSnapshot(session_id=session.id, future_state_id=fs.id, **result)
    db.session.add(snapshot)
    db.session.commit()

    logger.info(
        "Flow comparison generated: %d eliminated, %d added, %d modified",
        snapshot.eliminated_flows, snapshot.added_flows, snapshot.modified_flows,
        extra={"session_id": session_id, "future_state_id": future_state_id},
    )
    return snapshot


def get_flow_comparison(session_id: str, future_state_id: str) -> FlowComparisonSnapshot:
    snapshot = db.session.execute(
        select(FlowComparisonSnapshot).where(
            FlowComparisonSnapshot.session_id == session_id,
            FlowComparisonSnapshot.future_state_id == future_state_id,
        )
    ).scalar_one_or_none()
    if snapshot is None:
        raise NotFoundError(resource="FlowComparisonSnapshot", resource_id=future_state_id)
    return snapshot
