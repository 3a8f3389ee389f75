"""Future-state blueprint: versioned graph store.

Endpoint groups:
  Versions   GET    /api/v1/sessions/<sid>/future-states
             GET    /api/v1/future-states/<id>
             POST   /api/v1/future-states/<id>/versions       {name?, description?}
             PATCH  /api/v1/future-states/<id>/status         {status}
             DELETE /api/v1/future-states/<id>
  Nodes      GET    /api/v1/future-state-nodes/<id>
             PATCH  /api/v1/future-state-nodes/<id>           {…fields, revision?}
  Edges      POST   /api/v1/future-states/<id>/edges          {source_node_id, target_node_id, label?}
             PATCH  /api/v1/future-state-edges/<id>           {label?, order_index?}
             DELETE /api/v1/future-state-edges/<id>

Node PATCH is optimistic: a stale ``revision`` answers 409 with the current one.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from leanflow.auth import current_user_id
from leanflow.blueprints import json_body
from leanflow.services import future_state_service as fss
from leanflow.services.solution_service import get_session_or_404
from leanflow.utils.errors import E, api_error, register_error_handlers

future_state_bp = Blueprint("future_state", __name__, url_prefix="/api/v1")
register_error_handlers(future_state_bp)


# ── Versions ─────────────────────────────────────────────────────────────────


@future_state_bp.route("/sessions/<session_id>/future-states", methods=["GET"])
def list_versions(session_id):
    get_session_or_404(session_id)
    items = [fs.to_dict() for fs in fss.list_future_states(session_id)]
    return jsonify({"items": items, "total": len(items)}), 200


@future_state_bp.route("/future-states/<future_state_id>", methods=["GET"])
def get_version(future_state_id):
    include_graph = request.args.get("include_graph", "true").lower() != "false"
    return jsonify(fss.get_future_state(future_state_id, include_graph=include_graph)), 200


@future_state_bp.route("/future-states/<future_state_id>/versions", methods=["POST"])
def duplicate_version(future_state_id):
    data, err = json_body(required=False)
    if err:
        return err
    fs = fss.duplicate_future_state(
        future_state_id,
        name=data.get("name"),
        description=data.get("description"),
        user_id=current_user_id(),
    )
    return jsonify(fs.to_dict(include_graph=True)), 201


@future_state_bp.route("/future-states/<future_state_id>/status", methods=["PATCH"])
def set_status(future_state_id):
    data, err = json_body()
    if err:
        return err
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    fs = fss.set_future_state_status(future_state_id, data["status"])
    return jsonify(fs.to_dict()), 200


@future_state_bp.route("/future-states/<future_state_id>", methods=["DELETE"])
def delete_version(future_state_id):
    fss.delete_future_state(future_state_id)
    return "", 204


# ── Nodes ────────────────────────────────────────────────────────────────────


@future_state_bp.route("/future-state-nodes/<node_id>", methods=["GET"])
def get_node(node_id):
    return jsonify(fss.get_future_state_node(node_id).to_dict()), 200


@future_state_bp.route("/future-state-nodes/<node_id>", methods=["PATCH"])
def update_node(node_id):
    data, err = json_body()
    if err:
        return err
    updates = dict(data)
    revision = updates.pop("revision", None)
    if revision is not None and (isinstance(revision, bool) or not isinstance(revision, int)):
        return api_error(E.VALIDATION_INVALID, "revision must be an integer")
    node = fss.update_future_state_node(
        node_id, updates, expected_revision=revision, user_id=current_user_id(),
    )
    return jsonify(node.to_dict()), 200


# ── Edges ────────────────────────────────────────────────────────────────────


@future_state_bp.route("/future-states/<future_state_id>/edges", methods=["POST"])
def create_edge(future_state_id):
    data, err = json_body()
    if err:
        return err
    source = data.get("source_node_id")
    target = data.get("target_node_id")
    if not source or not target:
        return api_error(E.VALIDATION_REQUIRED, "source_node_id and target_node_id are required")
    edge = fss.create_edge(future_state_id, source, target, label=data.get("label"))
    return jsonify(edge.to_dict()), 201


@future_state_bp.route("/future-state-edges/<edge_id>", methods=["PATCH"])
def update_edge(edge_id):
    data, err = json_body()
    if err:
        return err
    kwargs = {}
    if "label" in data:
        kwargs["label"] = data["label"]
    if "order_index" in data:
        if isinstance(data["order_index"], bool) or not isinstance(data["order_index"], int):
            return api_error(E.VALIDATION_INVALID, "order_index must be an integer")
        kwargs["order_index"] = data["order_index"]
    if not kwargs:
        return api_error(E.VALIDATION_REQUIRED, "label or order_index is required")
    return jsonify(fss.update_edge(edge_id, **kwargs).to_dict()), 200


@future_state_bp.route("/future-state-edges/<edge_id>", methods=["DELETE"])
def delete_edge(edge_id):
    fss.delete_edge(edge_id)
    return "", 204
