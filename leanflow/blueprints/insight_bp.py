"""Waste observation and insight theme endpoints.

  GET   /api/v1/sessions/<sid>/observations
  POST  /api/v1/sessions/<sid>/observations   {step_id, notes?, priority_score?, waste_type_ids?}
  GET   /api/v1/sessions/<sid>/themes?status=
  PATCH /api/v1/themes/<id>/status            {status}

Themes themselves are produced by POST /sessions/<sid>/synthesis.
"""

from flask import Blueprint, jsonify, request

from leanflow.auth import current_user_id
from leanflow.blueprints import json_body
from leanflow.services import insight_service
from leanflow.services.solution_service import get_session_or_404
from leanflow.utils.errors import E, api_error, register_error_handlers

insight_bp = Blueprint("insight", __name__, url_prefix="/api/v1")
register_error_handlers(insight_bp)


@insight_bp.route("/sessions/<session_id>/observations", methods=["GET"])
def list_observations(session_id):
    get_session_or_404(session_id)
    items = insight_service.list_observations(session_id)
    return jsonify({"items": [o.to_dict() for o in items], "total": len(items)}), 200


@insight_bp.route("/sessions/<session_id>/observations", methods=["POST"])
def create_observation(session_id):
    data, err = json_body()
    if err:
        return err
    obs = insight_service.create_observation(session_id, data, user_id=current_user_id())
    return jsonify(obs.to_dict()), 201


@insight_bp.route("/sessions/<session_id>/themes", methods=["GET"])
def list_themes(session_id):
    get_session_or_404(session_id)
    themes = insight_service.list_themes(session_id, status=request.args.get("status"))
    return jsonify({"items": [t.to_dict() for t in themes], "total": len(themes)}), 200


@insight_bp.route("/themes/<theme_id>/status", methods=["PATCH"])
def set_theme_status(theme_id):
    data, err = json_body()
    if err:
        return err
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    theme = insight_service.set_theme_status(theme_id, data["status"])
    return jsonify(theme.to_dict()), 200
