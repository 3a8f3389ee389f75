"""
Lean Future-State Studio
Agent fingerprint cache.

A fingerprint is a stable identity for one unit of generative work. It is
computed only from the parts of the agent input that affect output, so
touching unrelated metadata (timestamps, editors, revision counters) or
reordering set-like collections never invalidates a cached run.

Cached results live in the agent_runs table: the most recent succeeded run
for (session, agent_type, fingerprint) is the authoritative hit. Lookups
are read-only.
"""

import hashlib
import json
import logging

from sqlalchemy import select

from leanflow.models import db
from leanflow.models.ai import AgentRun

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 32

# Keys whose values change without changing what the agent would produce
VOLATILE_KEYS = frozenset({
    "created_at", "updated_at", "created_by", "updated_by", "revision",
})

# Output-affecting input keys per agent type; anything else is ignored
FINGERPRINT_FIELDS = {
    "design": ("lanes", "current_steps", "current_edges", "solutions", "workflow_context"),
    "sequencing": ("solutions",),
    "synthesis": ("observations", "steps", "waste_types", "workflow_context"),
    "solutions": ("themes", "steps", "observations", "workflow_context"),
}

# Lists whose order carries no meaning
SET_LIKE_KEYS = frozenset({
    "lanes", "step_ids", "solution_ids", "observation_ids", "theme_ids",
    "waste_type_ids", "dependencies",
})


def _sort_key(item):
    if isinstance(item, dict):
        return (0, str(item.get("id", "")), json.dumps(item, sort_keys=True, default=str))
    return (1, json.dumps(item, sort_keys=True, default=str), "")


def _canonical(value, key=None):
    """Strip volatile keys and put order-free collections into a fixed order."""
    if isinstance(value, dict):
        return {
            k: _canonical(v, k)
            for k, v in value.items()
            if k not in VOLATILE_KEYS
        }
    if isinstance(value, (list, tuple)):
        items = [_canonical(v) for v in value]
        # record lists are keyed by id; id-less records keep their order
        if key in SET_LIKE_KEYS or (items and all(isinstance(i, dict) and "id" in i for i in items)):
            items.sort(key=_sort_key)
        return items
    return value


def fingerprint_projection(agent_type: str, inputs: dict) -> dict:
    """Return the canonical, output-affecting subset of ``inputs``."""
    fields = FINGERPRINT_FIELDS.get(agent_type)
    if fields is None:
        projected = dict(inputs)
    else:
        projected = {k: inputs[k] for k in fields if k in inputs}
    return _canonical(projected)


def compute_fingerprint(agent_type: str, inputs: dict) -> str:
    """Deterministic hash of the output-affecting inputs for an agent type."""
    payload = json.dumps(
        {"agent_type": agent_type, "inputs": fingerprint_projection(agent_type, inputs)},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(payload.encode()).hexdigest()[:FINGERPRINT_LENGTH]


def find_cached_run(session_id: str, agent_type: str, fingerprint: str) -> AgentRun | None:
    """Most recent succeeded run with stored outputs for the triple, or None."""
    stmt = (
        select(AgentRun)
        .where(
            AgentRun.session_id == session_id,
            AgentRun.agent_type == agent_type,
            AgentRun.input_hash == fingerprint,
            AgentRun.status == "succeeded",
            AgentRun.outputs.isnot(None),
        )
        .order_by(AgentRun.completed_at.desc(), AgentRun.created_at.desc())
        .limit(1)
    )
    run = db.session.execute(stmt).scalars().first()
    if run is not None:
        logger.debug("Fingerprint cache hit", extra={
            "session_id": session_id, "agent_type": agent_type, "run_id": run.id,
        })
    return run
