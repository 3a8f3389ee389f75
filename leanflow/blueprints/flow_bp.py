"""Information flow and flow comparison endpoints.

Endpoint groups:
  Flows        POST   /api/v1/information-flows
               GET    /api/v1/information-flows?process_id=&future_state_id=&state_type=
               PATCH  /api/v1/information-flows/<id>          {…fields, revision?}
               DELETE /api/v1/information-flows/<id>
               POST   /api/v1/future-states/<id>/information-flows/copy   {process_id, node_mapping?}
  Stats        GET    /api/v1/processes/<pid>/information-flows/stats
  Comparison   POST   /api/v1/sessions/<sid>/flow-comparisons           {future_state_id}
               GET    /api/v1/sessions/<sid>/flow-comparisons/<fsid>
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from leanflow.auth import current_user_id
from leanflow.blueprints import json_body
from leanflow.services import comparison_service
from leanflow.services import information_flow_service as ifs
from leanflow.utils.errors import E, api_error, register_error_handlers

flow_bp = Blueprint("information_flow", __name__, url_prefix="/api/v1")
register_error_handlers(flow_bp)


@flow_bp.route("/information-flows", methods=["POST"])
def create_flow():
    data, err = json_body()
    if err:
        return err
    flow = ifs.create_information_flow(data, user_id=current_user_id())
    return jsonify(flow.to_dict()), 201


@flow_bp.route("/information-flows", methods=["GET"])
def list_flows():
    flows = ifs.list_information_flows(
        process_id=request.args.get("process_id"),
        future_state_id=request.args.get("future_state_id"),
        state_type=request.args.get("state_type"),
    )
    return jsonify({"items": [f.to_dict() for f in flows], "total": len(flows)}), 200


@flow_bp.route("/information-flows/<flow_id>", methods=["PATCH"])
def update_flow(flow_id):
    data, err = json_body()
    if err:
        return err
    updates = dict(data)
    revision = updates.pop("revision", None)
    if revision is not None and (isinstance(revision, bool) or not isinstance(revision, int)):
        return api_error(E.VALIDATION_INVALID, "revision must be an integer")
    flow = ifs.update_information_flow(flow_id, updates, expected_revision=revision)
    return jsonify(flow.to_dict()), 200


@flow_bp.route("/information-flows/<flow_id>", methods=["DELETE"])
def delete_flow(flow_id):
    ifs.delete_information_flow(flow_id)
    return "", 204


@flow_bp.route("/future-states/<future_state_id>/information-flows/copy", methods=["POST"])
def copy_flows(future_state_id):
    """Copy current flows onto a future state's nodes."""
    data, err = json_body()
    if err:
        return err
    if not data.get("process_id"):
        return api_error(E.VALIDATION_REQUIRED, "process_id is required")
    mapping = data.get("node_mapping")
    if mapping is not None and not isinstance(mapping, dict):
        return api_error(E.VALIDATION_INVALID, "node_mapping must be an object")
    copied = ifs.copy_flows_to_future_state(
        data["process_id"], future_state_id, node_mapping=mapping, user_id=current_user_id(),
    )
    return jsonify({"items": [f.to_dict() for f in copied], "total": len(copied)}), 201


@flow_bp.route("/processes/<process_id>/information-flows/stats", methods=["GET"])
def flow_stats(process_id):
    return jsonify(ifs.get_process_flow_stats(process_id)), 200


@flow_bp.route("/sessions/<session_id>/flow-comparisons", methods=["POST"])
def generate_comparison(session_id):
    data, err = json_body()
    if err:
        return err
    future_state_id = data.get("future_state_id")
    if not future_state_id:
        return api_error(E.VALIDATION_REQUIRED, "future_state_id is required")
    snapshot = comparison_service.generate_flow_comparison(session_id, future_state_id)
    return jsonify(snapshot.to_dict()), 201


@flow_bp.route("/sessions/<session_id>/flow-comparisons/<future_state_id>", methods=["GET"])
def get_comparison(session_id, future_state_id):
    snapshot = comparison_service.get_flow_comparison(session_id, future_state_id)
    return jsonify(snapshot.to_dict()), 200
