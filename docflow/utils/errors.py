"""Standardised API error responses.

Usage
-----
    from docflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Circuit not found")
    return api_error(E.VALIDATION_REQUIRED, "target_status_id is required")
    return workflow_error(result.reason, result.message, details=result.to_dict())
"""

from __future__ import annotations

from flask import jsonify

from docflow.core.results import WorkflowErrorCode


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • WF_   prefix for workflow-core result codes
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule – HTTP 422
    BUSINESS_RULE = "ERR_BUSINESS_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    # Upstream collaborator – HTTP 502
    UPSTREAM = "ERR_UPSTREAM"

    # Workflow core
    WF_PRECURSOR_INCOMPLETE = "WF_PRECURSOR_INCOMPLETE"
    WF_APPROVAL_PENDING = "WF_APPROVAL_PENDING"
    WF_INVALID_TRANSITION = "WF_INVALID_TRANSITION"
    WF_DUPLICATE_TRANSITION = "WF_DUPLICATE_TRANSITION"
    WF_INVALID_APPROVAL_CONFIG = "WF_INVALID_APPROVAL_CONFIG"
    WF_APPROVER_NOT_REGISTERED = "WF_APPROVER_NOT_REGISTERED"
    WF_UNKNOWN_APPROVER = "WF_UNKNOWN_APPROVER"
    WF_NOT_YOUR_TURN = "WF_NOT_YOUR_TURN"
    WF_ALREADY_DECIDED = "WF_ALREADY_DECIDED"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.BUSINESS_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.UPSTREAM: 502,
    E.WF_PRECURSOR_INCOMPLETE: 409,
    E.WF_APPROVAL_PENDING: 409,
    E.WF_INVALID_TRANSITION: 422,
    E.WF_DUPLICATE_TRANSITION: 409,
    E.WF_INVALID_APPROVAL_CONFIG: 422,
    E.WF_APPROVER_NOT_REGISTERED: 422,
    E.WF_UNKNOWN_APPROVER: 403,
    E.WF_NOT_YOUR_TURN: 409,
    E.WF_ALREADY_DECIDED: 409,
}

_WORKFLOW_CODES: dict[WorkflowErrorCode, str] = {
    WorkflowErrorCode.PRECURSOR_INCOMPLETE: E.WF_PRECURSOR_INCOMPLETE,
    WorkflowErrorCode.APPROVAL_PENDING: E.WF_APPROVAL_PENDING,
    WorkflowErrorCode.INVALID_TRANSITION: E.WF_INVALID_TRANSITION,
    WorkflowErrorCode.DUPLICATE_TRANSITION: E.WF_DUPLICATE_TRANSITION,
    WorkflowErrorCode.INVALID_APPROVAL_CONFIG: E.WF_INVALID_APPROVAL_CONFIG,
    WorkflowErrorCode.APPROVER_NOT_REGISTERED: E.WF_APPROVER_NOT_REGISTERED,
    WorkflowErrorCode.UNKNOWN_APPROVER: E.WF_UNKNOWN_APPROVER,
    WorkflowErrorCode.NOT_YOUR_TURN: E.WF_NOT_YOUR_TURN,
    WorkflowErrorCode.ALREADY_DECIDED: E.WF_ALREADY_DECIDED,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def workflow_status(code: WorkflowErrorCode) -> int:
    """HTTP status for a workflow-core result code."""
    return _DEFAULT_STATUS[_WORKFLOW_CODES[code]]


def workflow_error(code: WorkflowErrorCode, message: str, *, details: dict | None = None):
    """Translate a workflow-core result code into an ``api_error`` response."""
    return api_error(_WORKFLOW_CODES[code], message or code.value, details=details)
