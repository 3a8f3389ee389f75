"""Solution card endpoints.

  GET   /api/v1/sessions/<sid>/solutions?status=
  POST  /api/v1/sessions/<sid>/solutions
  PATCH /api/v1/solutions/<id>/status   {status}
"""

from flask import Blueprint, jsonify, request

from leanflow.auth import current_user_id
from leanflow.blueprints import json_body
from leanflow.services import solution_service
from leanflow.utils.errors import E, api_error, register_error_handlers

solution_bp = Blueprint("solution", __name__, url_prefix="/api/v1")
register_error_handlers(solution_bp)


@solution_bp.route("/sessions/<session_id>/solutions", methods=["GET"])
def list_solutions(session_id):
    solution_service.get_session_or_404(session_id)
    cards = solution_service.list_solutions(session_id, status=request.args.get("status"))
    return jsonify({"items": [c.to_dict() for c in cards], "total": len(cards)}), 200


@solution_bp.route("/sessions/<session_id>/solutions", methods=["POST"])
def create_solution(session_id):
    data, err = json_body()
    if err:
        return err
    card = solution_service.create_solution_card(session_id, data, user_id=current_user_id())
    return jsonify(card.to_dict()), 201


@solution_bp.route("/solutions/<solution_id>/status", methods=["PATCH"])
def set_status(solution_id):
    data, err = json_body()
    if err:
        return err
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    card = solution_service.set_solution_status(solution_id, data["status"])
    return jsonify(card.to_dict()), 200
