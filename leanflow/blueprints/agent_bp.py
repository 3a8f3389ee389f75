"""Agent blueprint: the pipeline steps that call the generation capability.

Endpoints:
  POST /api/v1/sessions/<sid>/synthesis             {force_rerun?}
  POST /api/v1/sessions/<sid>/solutions/generate    {force_rerun?}
  POST /api/v1/sessions/<sid>/future-state/design   {force_rerun?}
  POST /api/v1/sessions/<sid>/sequencing            {force_rerun?}
  GET  /api/v1/agent-runs/<id>                       ?include_payload=

All are rate limited per user. A cache hit answers without a new AgentRun.
A fresh synthesis run replaces the themes, a fresh solutions run the draft
cards. Running sequencing replaces the session's plan, manual edits included.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from leanflow.ai.orchestrator import get_agent_run
from leanflow.auth import current_user_id
from leanflow.blueprints import flag, json_body
from leanflow.services import (
    future_state_service, insight_service, sequencing_service, solution_service,
)
from leanflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

agent_bp = Blueprint("agent", __name__, url_prefix="/api/v1")
register_error_handlers(agent_bp)


@agent_bp.route("/sessions/<session_id>/synthesis", methods=["POST"])
def run_synthesis(session_id):
    """Cluster observations into themes. Returns the run result plus the stored themes."""
    data, err = json_body(required=False)
    if err:
        return err
    result = insight_service.run_synthesis_agent(
        session_id, force_rerun=flag(data, "force_rerun"), user_id=current_user_id(),
    )
    result["themes"] = [t.to_dict() for t in insight_service.list_themes(session_id)]
    return jsonify(result), 200


@agent_bp.route("/sessions/<session_id>/solutions/generate", methods=["POST"])
def generate_solutions(session_id):
    data, err = json_body(required=False)
    if err:
        return err
    result = solution_service.run_solutions_agent(
        session_id, force_rerun=flag(data, "force_rerun"), user_id=current_user_id(),
    )
    result["solutions"] = [c.to_dict() for c in solution_service.list_solutions(session_id)]
    return jsonify(result), 200


@agent_bp.route("/sessions/<session_id>/future-state/design", methods=["POST"])
def design_future_state(session_id):
    """Generate a new future-state version from the accepted solutions.

    Returns 201 with the new version id, or 200 with ``cached: true`` when an
    identical design already exists.
    """
    data, err = json_body(required=False)
    if err:
        return err
    result = future_state_service.run_design_agent(
        session_id, force_rerun=flag(data, "force_rerun"), user_id=current_user_id(),
    )
    return jsonify(result), 200 if result["cached"] else 201


@agent_bp.route("/sessions/<session_id>/sequencing", methods=["POST"])
def run_sequencing(session_id):
    """(Re)build implementation waves. Returns the run result plus the stored plan."""
    data, err = json_body(required=False)
    if err:
        return err
    result = sequencing_service.run_sequencing_agent(
        session_id, force_rerun=flag(data, "force_rerun"), user_id=current_user_id(),
    )
    result["plan"] = sequencing_service.get_sequencing_plan(session_id)
    return jsonify(result), 200


@agent_bp.route("/agent-runs/<run_id>", methods=["GET"])
def get_run(run_id):
    """Run status and timing; ``?include_payload=true`` adds inputs and outputs."""
    run = get_agent_run(run_id)
    return jsonify(run.to_dict(include_payload=flag(request.args, "include_payload"))), 200
