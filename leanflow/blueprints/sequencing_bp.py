"""Sequencing blueprint: read the plan and hand-edit it.

Endpoints:
  GET   /api/v1/sessions/<sid>/sequencing
  PATCH /api/v1/sessions/<sid>/sequencing/assignments   {solution_id, wave_id}
  POST  /api/v1/sessions/<sid>/implementation-items
  POST  /api/v1/implementation-items/<id>/dependencies  {depends_on_item_id}
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from leanflow.blueprints import json_body
from leanflow.services import sequencing_service
from leanflow.utils.errors import E, api_error, register_error_handlers

sequencing_bp = Blueprint("sequencing", __name__, url_prefix="/api/v1")
register_error_handlers(sequencing_bp)


@sequencing_bp.route("/sessions/<session_id>/sequencing", methods=["GET"])
def get_plan(session_id):
    return jsonify(sequencing_service.get_sequencing_plan(session_id)), 200


@sequencing_bp.route("/sessions/<session_id>/sequencing/assignments", methods=["PATCH"])
def reassign(session_id):
    """Move one solution to another wave. Lost on the next sequencing run."""
    data, err = json_body()
    if err:
        return err
    solution_id = data.get("solution_id")
    wave_id = data.get("wave_id")
    if not solution_id or not wave_id:
        return api_error(E.VALIDATION_REQUIRED, "solution_id and wave_id are required")
    wave = sequencing_service.reassign_solution(session_id, solution_id, wave_id)
    return jsonify(wave.to_dict()), 200


@sequencing_bp.route("/sessions/<session_id>/implementation-items", methods=["POST"])
def create_item(session_id):
    data, err = json_body()
    if err:
        return err
    item = sequencing_service.create_implementation_item(
        session_id,
        data.get("wave_id"),
        data.get("title") or "",
        description=data.get("description"),
        owner=data.get("owner"),
        solution_id=data.get("solution_id"),
        status=data.get("status", "planned"),
    )
    return jsonify(item.to_dict()), 201


@sequencing_bp.route("/implementation-items/<item_id>/dependencies", methods=["POST"])
def add_item_dependency(item_id):
    data, err = json_body()
    if err:
        return err
    depends_on = data.get("depends_on_item_id")
    if not depends_on:
        return api_error(E.VALIDATION_REQUIRED, "depends_on_item_id is required")
    dep = sequencing_service.add_implementation_dependency(item_id, depends_on)
    return jsonify(dep.to_dict()), 201
