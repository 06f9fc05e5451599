"""
Circuit authoring blueprint.

Endpoints:
  Circuit:   GET/POST /circuits, GET/PUT/DELETE /circuits/<id>
             GET      /circuits/<id>/validate
  Status:    GET/POST /circuits/<id>/statuses, PUT/DELETE /circuits/<id>/statuses/<sid>
  Step:      GET/POST /circuits/<id>/steps, GET/PUT/DELETE /circuits/<id>/steps/<step_id>
             POST     /circuits/<id>/steps/validate   (advisory, nothing stored)
             GET      /circuits/<id>/steps/exists?current_status_id=&next_status_id=
"""

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.models.circuit import Step
from docflow.services import circuit_service, step_authoring
from docflow.utils.errors import E, api_error, workflow_error
from docflow.utils.helpers import get_or_404, parse_bool

logger = logging.getLogger(__name__)

circuit_bp = Blueprint("circuit", __name__, url_prefix="/api/v1/circuits")


@circuit_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@circuit_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.BUSINESS_RULE, str(error), details=error.details)


@circuit_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error))


@circuit_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in circuit_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _step_response(step, validation, status_code):
    if step is None:
        return workflow_error(validation.code, validation.message, details=validation.to_dict())
    return jsonify(step), status_code


# ═════════════════════════════════════════════════════════════════════════════
# Circuits
# ═════════════════════════════════════════════════════════════════════════════

@circuit_bp.route("", methods=["GET"])
def list_circuits():
    items = circuit_service.list_circuits(
        document_type=request.args.get("document_type"),
        active_only=parse_bool(request.args.get("active")),
    )
    return jsonify({"items": items, "total": len(items)})


@circuit_bp.route("", methods=["POST"])
def create_circuit():
    data = request.get_json(silent=True) or {}
    if not (data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    return jsonify(circuit_service.create_circuit(data)), 201


@circuit_bp.route("/<int:circuit_id>", methods=["GET"])
def get_circuit(circuit_id):
    include = parse_bool(request.args.get("include_children"), default=True)
    return jsonify(circuit_service.get_circuit(circuit_id, include_children=include))


@circuit_bp.route("/<int:circuit_id>", methods=["PUT"])
def update_circuit(circuit_id):
    data = request.get_json(silent=True) or {}
    return jsonify(circuit_service.update_circuit(circuit_id, data))


@circuit_bp.route("/<int:circuit_id>", methods=["DELETE"])
def delete_circuit(circuit_id):
    circuit_service.delete_circuit(circuit_id)
    return jsonify({"message": "Circuit deleted"}), 200


@circuit_bp.route("/<int:circuit_id>/validate", methods=["GET"])
def validate_circuit(circuit_id):
    return jsonify(circuit_service.validate_circuit(circuit_id))


# ═════════════════════════════════════════════════════════════════════════════
# Statuses
# ═════════════════════════════════════════════════════════════════════════════

@circuit_bp.route("/<int:circuit_id>/statuses", methods=["GET"])
def list_statuses(circuit_id):
    items = circuit_service.list_statuses(circuit_id)
    return jsonify({"items": items, "total": len(items)})


@circuit_bp.route("/<int:circuit_id>/statuses", methods=["POST"])
def add_status(circuit_id):
    data = request.get_json(silent=True) or {}
    if not (data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    return jsonify(circuit_service.add_status(circuit_id, data)), 201


@circuit_bp.route("/<int:circuit_id>/statuses/<int:status_id>", methods=["PUT"])
def update_status(circuit_id, status_id):
    data = request.get_json(silent=True) or {}
    return jsonify(circuit_service.update_status(circuit_id, status_id, data))


@circuit_bp.route("/<int:circuit_id>/statuses/<int:status_id>", methods=["DELETE"])
def delete_status(circuit_id, status_id):
    circuit_service.delete_status(circuit_id, status_id)
    return jsonify({"message": "Status deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Steps
# ═════════════════════════════════════════════════════════════════════════════

@circuit_bp.route("/<int:circuit_id>/steps", methods=["GET"])
def list_steps(circuit_id):
    items = step_authoring.list_steps(circuit_id)
    return jsonify({"items": items, "total": len(items)})


@circuit_bp.route("/<int:circuit_id>/steps/validate", methods=["POST"])
def validate_step(circuit_id):
    """Run the authoring checks without storing anything."""
    data = request.get_json(silent=True) or {}
    validation = step_authoring.validate_new_step(
        circuit_id,
        data.get("current_status_id"),
        data.get("next_status_id"),
        {k: data.get(k) for k in ("requires_approval", "approver_id",
                                   "approval_group_id", "user_id")},
        exclude_step_id=data.get("exclude_step_id"),
    )
    return jsonify(validation.to_dict())


@circuit_bp.route("/<int:circuit_id>/steps/exists", methods=["GET"])
def step_exists(circuit_id):
    current = request.args.get("current_status_id", type=int)
    nxt = request.args.get("next_status_id", type=int)
    if current is None or nxt is None:
        return api_error(E.VALIDATION_REQUIRED,
                         "current_status_id and next_status_id are required")
    return jsonify({
        "circuit_id": circuit_id,
        "current_status_id": current,
        "next_status_id": nxt,
        "exists": step_authoring.step_exists(circuit_id, current, nxt),
    })


@circuit_bp.route("/<int:circuit_id>/steps", methods=["POST"])
def create_step(circuit_id):
    data = request.get_json(silent=True) or {}
    if data.get("current_status_id") is None or data.get("next_status_id") is None:
        return api_error(E.VALIDATION_REQUIRED,
                         "current_status_id and next_status_id are required")
    step, validation = step_authoring.commit_step(circuit_id, data)
    return _step_response(step, validation, 201)


@circuit_bp.route("/<int:circuit_id>/steps/<int:step_id>", methods=["GET"])
def get_step(circuit_id, step_id):
    step, err = get_or_404(Step, step_id)
    if err:
        return err
    if step.circuit_id != circuit_id:
        return api_error(E.NOT_FOUND, "Step not found")
    return jsonify(step.to_dict())


@circuit_bp.route("/<int:circuit_id>/steps/<int:step_id>", methods=["PUT"])
def update_step(circuit_id, step_id):
    data = request.get_json(silent=True) or {}
    step, validation = step_authoring.update_step(circuit_id, step_id, data)
    return _step_response(step, validation, 200)


@circuit_bp.route("/<int:circuit_id>/steps/<int:step_id>", methods=["DELETE"])
def delete_step(circuit_id, step_id):
    step_authoring.delete_step(circuit_id, step_id)
    return jsonify({"message": "Step deleted"}), 200
