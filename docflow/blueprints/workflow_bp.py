"""
Document workflow blueprint — the HTTP face of the move executor.

Endpoints (all under /api/v1/workflow/documents/<document_id>):
    POST /assign                         put the document on a circuit
    POST /move                           move, or open an approval request
    POST /statuses/<status_id>/complete  mark an entered status (in)complete
    POST /return                         backtrack to an earlier status
    POST /reinitialize                   restart at the initial status
    GET  /status                         workflow projection
    GET  /transitions                    legal next statuses
    GET  /history                        workflow events
    GET  /refresh-events                 recent refresh notifications
    PUT  /archival-marker                stamp the marker (local document store only)

Move responses:
    200  completed
    202  approval_pending (a new request was opened)
    409  approval_pending with reason APPROVAL_PENDING, or PRECURSOR_INCOMPLETE
    422  INVALID_TRANSITION
"""

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.core.results import MoveOutcome
from docflow.integrations.document_store import DocumentStoreError
from docflow.services import collaborators, workflow_service
from docflow.utils.errors import E, api_error, workflow_error
from docflow.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1/workflow")


@workflow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@workflow_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.BUSINESS_RULE, str(error), details=error.details)


@workflow_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error))


@workflow_bp.errorhandler(DocumentStoreError)
def _handle_store(error: DocumentStoreError):
    logger.warning("Document store failure endpoint=%s: %s", request.endpoint, error)
    return api_error(E.UPSTREAM, f"Document store unavailable: {error}")


@workflow_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in workflow_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _actor(data: dict) -> str:
    return data.get("actor") or request.headers.get("X-Actor", "")


# ═════════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/documents/<int:document_id>/assign", methods=["POST"])
def assign(document_id):
    data = request.get_json(silent=True) or {}
    circuit_id = data.get("circuit_id")
    if circuit_id is None:
        return api_error(E.VALIDATION_REQUIRED, "circuit_id is required")
    state = workflow_service.assign_document(
        document_id, circuit_id, actor=_actor(data), comment=data.get("comment", ""),
    )
    return jsonify(state), 201


@workflow_bp.route("/documents/<int:document_id>/move", methods=["POST"])
def move(document_id):
    data = request.get_json(silent=True) or {}
    target = data.get("target_status_id")
    if target is None:
        return api_error(E.VALIDATION_REQUIRED, "target_status_id is required")

    result = workflow_service.attempt_move(
        document_id, target, actor=_actor(data), comment=data.get("comment", ""),
    )
    # a repeated gated move reports the open request, it is not an error
    if result.outcome is MoveOutcome.APPROVAL_PENDING:
        return jsonify(result.to_dict()), 202
    if result.reason is not None:
        return workflow_error(result.reason, result.message, details=result.to_dict())
    return jsonify(result.to_dict()), 200


@workflow_bp.route("/documents/<int:document_id>/statuses/<int:status_id>/complete",
                   methods=["POST"])
def complete(document_id, status_id):
    data = request.get_json(silent=True) or {}
    state = workflow_service.complete_status(
        document_id, status_id,
        is_complete=parse_bool(data.get("is_complete"), default=True),
        actor=_actor(data),
        comment=data.get("comment", ""),
    )
    return jsonify(state)


@workflow_bp.route("/documents/<int:document_id>/return", methods=["POST"])
def return_to_previous(document_id):
    data = request.get_json(silent=True) or {}
    state = workflow_service.return_to_previous_status(
        document_id,
        actor=_actor(data),
        comment=data.get("comment", ""),
        target_status_id=data.get("target_status_id"),
    )
    return jsonify(state)


@workflow_bp.route("/documents/<int:document_id>/reinitialize", methods=["POST"])
def reinitialize(document_id):
    data = request.get_json(silent=True) or {}
    state = workflow_service.reinitialize(
        document_id, actor=_actor(data), comment=data.get("comment", ""),
    )
    return jsonify(state)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/documents/<int:document_id>/status", methods=["GET"])
def status(document_id):
    return jsonify(workflow_service.get_workflow_status(document_id))


@workflow_bp.route("/documents/<int:document_id>/transitions", methods=["GET"])
def transitions(document_id):
    items = workflow_service.get_available_transitions(document_id)
    return jsonify({"items": items, "total": len(items)})


@workflow_bp.route("/documents/<int:document_id>/history", methods=["GET"])
def history(document_id):
    items = workflow_service.get_history(document_id)
    return jsonify({"items": items, "total": len(items)})


@workflow_bp.route("/documents/<int:document_id>/refresh-events", methods=["GET"])
def refresh_events(document_id):
    seconds = request.args.get("seconds", 3600, type=int)
    items = collaborators.get("refresh_sink").recent(document_id=document_id, seconds=seconds)
    return jsonify({"items": items, "total": len(items)})


@workflow_bp.route("/documents/<int:document_id>/archival-marker", methods=["PUT"])
def set_archival_marker(document_id):
    """Stamp the archival marker on a locally stored document (no remote store)."""
    store = collaborators.get("document_store")
    if not hasattr(store, "set_archival_marker"):
        return api_error(E.BUSINESS_RULE, "The configured document store owns archival markers",
                         status=501)
    data = request.get_json(silent=True) or {}
    store.set_archival_marker(document_id, data.get("marker"))
    return jsonify({"document_id": document_id, "marker": data.get("marker")})
