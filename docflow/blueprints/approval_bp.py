"""
Approval blueprint — approval requests, decisions and the approver directory.

Endpoints (under /api/v1/approvals):
  Requests:   GET  /requests/<id>
              POST /requests/<id>/decisions      {approver_id | user_id, decision, comment}
              GET  /pending/<approver_id>        requests awaiting this approver now
              GET  /documents/<document_id>/open
              GET  /documents/<document_id>/history
  Approvers:  GET/POST /approvers, GET/DELETE /approvers/<id>
              GET      /approvers/resolve?user_id=
  Groups:     GET/POST /groups, GET/PUT/DELETE /groups/<id>
"""

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.core.results import WorkflowErrorCode
from docflow.services import approval_gate, approver_directory
from docflow.utils.errors import E, api_error, workflow_error

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1/approvals")


@approval_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@approval_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.BUSINESS_RULE, str(error), details=error.details)


@approval_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@approval_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in approval_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════════
# Requests & decisions
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/requests/<int:request_id>", methods=["GET"])
def get_request(request_id):
    return jsonify(approval_gate.get_request(request_id))


@approval_bp.route("/requests/<int:request_id>/decisions", methods=["POST"])
def decide(request_id):
    data = request.get_json(silent=True) or {}
    decision = data.get("decision")
    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "decision is required")

    approver_id = data.get("approver_id")
    if approver_id is None and data.get("user_id") is not None:
        approver_id = approver_directory.resolve_approver_id(data["user_id"])
        if approver_id is None:
            return workflow_error(
                WorkflowErrorCode.UNKNOWN_APPROVER,
                f"User id={data['user_id']} is not registered as an approver",
            )
    if approver_id is None:
        return api_error(E.VALIDATION_REQUIRED, "approver_id or user_id is required")

    result = approval_gate.record_decision(
        request_id, approver_id, decision, comment=data.get("comment", ""),
    )
    if result.error is not None:
        return workflow_error(result.error, result.message, details=result.to_dict())
    return jsonify(result.to_dict()), 200


@approval_bp.route("/pending/<int:approver_id>", methods=["GET"])
def pending_for_approver(approver_id):
    items = approval_gate.list_pending_for_approver(approver_id)
    return jsonify({"items": items, "total": len(items)})


@approval_bp.route("/documents/<int:document_id>/open", methods=["GET"])
def open_request(document_id):
    return jsonify({"document_id": document_id,
                    "request": approval_gate.get_open_request(document_id)})


@approval_bp.route("/documents/<int:document_id>/history", methods=["GET"])
def approval_history(document_id):
    items = approval_gate.get_approval_history(document_id)
    return jsonify({"items": items, "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════════
# Approver directory
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/approvers", methods=["GET"])
def list_approvers():
    items = approver_directory.list_approvers()
    return jsonify({"items": items, "total": len(items)})


@approval_bp.route("/approvers", methods=["POST"])
def register_approver():
    data = request.get_json(silent=True) or {}
    if data.get("user_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    approver = approver_directory.register_approver(
        data["user_id"], username=data.get("username", ""), comment=data.get("comment", ""),
    )
    return jsonify(approver), 201


@approval_bp.route("/approvers/resolve", methods=["GET"])
def resolve_approver():
    user_id = request.args.get("user_id", type=int)
    if user_id is None:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    approver_id = approver_directory.resolve_approver_id(user_id)
    if approver_id is None:
        return workflow_error(
            WorkflowErrorCode.APPROVER_NOT_REGISTERED,
            f"User id={user_id} is not registered as an approver",
        )
    return jsonify({"user_id": user_id, "approver_id": approver_id})


@approval_bp.route("/approvers/<int:approver_id>", methods=["GET"])
def get_approver(approver_id):
    return jsonify(approver_directory.get_approver(approver_id).to_dict())


@approval_bp.route("/approvers/<int:approver_id>", methods=["DELETE"])
def unregister_approver(approver_id):
    approver_directory.unregister_approver(approver_id)
    return jsonify({"message": "Approver removed"}), 200


@approval_bp.route("/groups", methods=["GET"])
def list_groups():
    items = approver_directory.list_approval_groups()
    return jsonify({"items": items, "total": len(items)})


@approval_bp.route("/groups", methods=["POST"])
def create_group():
    data = request.get_json(silent=True) or {}
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    return jsonify(approver_directory.create_approval_group(data)), 201


@approval_bp.route("/groups/<int:group_id>", methods=["GET"])
def get_group(group_id):
    return jsonify(approver_directory.get_approval_group(group_id).to_dict())


@approval_bp.route("/groups/<int:group_id>", methods=["PUT"])
def update_group(group_id):
    data = request.get_json(silent=True) or {}
    return jsonify(approver_directory.update_approval_group(group_id, data))


@approval_bp.route("/groups/<int:group_id>", methods=["DELETE"])
def delete_group(group_id):
    approver_directory.delete_approval_group(group_id)
    return jsonify({"message": "Approval group deleted"}), 200
