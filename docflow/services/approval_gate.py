"""
Approval Gate — open requests, approver decisions and approval queries.

Guarantees:
    - at most one open ApprovalRequest per document (document lock, plus the
      partial unique index on approval_requests)
    - responses are append-only; a request closes exactly once
    - an approved request advances the document along the request's step;
      a rejected one leaves the document where it was and unblocks it

record_decision check order, first failure wins and nothing is recorded:
    UNKNOWN_APPROVER   approver not in the request's member snapshot
    ALREADY_DECIDED    request closed, or this approver already responded
    NOT_YOUR_TURN      Sequential group and a predecessor has not approved
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from docflow.core.exceptions import NotFoundError, ValidationError
from docflow.core.results import (
    ApprovalOutcome,
    ApprovalTarget,
    DecisionResult,
    WorkflowErrorCode,
)
from docflow.models import db
from docflow.models.approval import (
    DECISIONS,
    REQUEST_APPROVED,
    REQUEST_OPEN,
    REQUEST_REJECTED,
    ApprovalRequest,
    ApprovalResponse,
    Approver,
    validate_request_transition,
)
from docflow.models.circuit import Step
from docflow.models.workflow import EVENT_APPROVAL_APPROVED, EVENT_APPROVAL_REJECTED
from docflow.services.approval_policy import check_turn, evaluate, target_from_request
from docflow.services.document_locks import document_lock
from docflow.services.workflow_state import (
    archival_snapshot,
    enter_status,
    find_state,
    get_state,
    publish_refresh,
    record_history,
    schedule_completion_monitor,
)

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def open_request(document_id: int, step: Step, target: ApprovalTarget,
                 requested_by: str = "", comment: str = "") -> ApprovalRequest:
    """Create an open request for a gated step (caller holds the document lock)."""
    request = ApprovalRequest(
        document_id=document_id,
        step_id=step.id,
        kind=target.kind,
        approver_id=target.approver_id,
        approval_group_id=target.group_id,
        rule_type=target.rule_type,
        target_member_ids=list(target.member_ids),
        state=REQUEST_OPEN,
        requested_by=requested_by or "",
        comment=comment or "",
    )
    db.session.add(request)
    db.session.flush()
    return request


def _close(request: ApprovalRequest, new_state: str) -> None:
    if not validate_request_transition(request.state, new_state):
        raise ValidationError(
            f"ApprovalRequest id={request.id} cannot go from {request.state} to {new_state}",
            details={"request_id": request.id},
        )
    request.state = new_state
    request.closed_at = _utcnow()


def record_decision(request_id: int, approver_id: int, decision: str,
                    comment: str = "") -> DecisionResult:
    """Record one approver decision and close the request when it is terminal.

    Raises:
        ValidationError: decision is not "approve" / "reject".
        NotFoundError: request missing.
    """
    if decision not in DECISIONS:
        raise ValidationError(
            f"decision must be one of: {', '.join(sorted(DECISIONS))}",
            details={"decision": decision},
        )
    document_id = db.session.execute(
        select(ApprovalRequest.document_id).where(ApprovalRequest.id == request_id)
    ).scalar_one_or_none()
    if document_id is None:
        raise NotFoundError(resource="ApprovalRequest", resource_id=request_id)

    extra = {"document_id": document_id, "approval_request_id": request_id,
             "event_type": "approval_decision"}
    snapshot_ok, snapshot = False, None
    new_status_id = None

    with document_lock(document_id):
        request = db.session.get(ApprovalRequest, request_id, populate_existing=True)
        target = target_from_request(request)

        if approver_id not in target.member_ids:
            logger.info("Decision refused (unknown approver) request_id=%s approver_id=%s",
                        request_id, approver_id, extra=extra)
            return DecisionResult(
                request_id=request_id,
                error=WorkflowErrorCode.UNKNOWN_APPROVER,
                message=f"Approver id={approver_id} is not eligible for this request",
            )

        if not request.is_open or any(r.approver_id == approver_id for r in request.responses):
            return DecisionResult(
                request_id=request_id,
                error=WorkflowErrorCode.ALREADY_DECIDED,
                request_state=ApprovalOutcome(request.state),
                message="This request is closed or the approver has already responded",
            )

        if not check_turn(target, request.responses, approver_id):
            return DecisionResult(
                request_id=request_id,
                error=WorkflowErrorCode.NOT_YOUR_TURN,
                request_state=ApprovalOutcome.OPEN,
                message="A previous approver in the sequence has not approved yet",
            )

        request.responses.append(ApprovalResponse(
            approver_id=approver_id, decision=decision, comment=comment or "",
        ))
        outcome = evaluate(target, request.responses)

        approver = db.session.get(Approver, approver_id)
        actor = approver.username if approver and approver.username else f"approver:{approver_id}"
        step = request.step

        if outcome is ApprovalOutcome.APPROVED:
            _close(request, REQUEST_APPROVED)
            state = get_state(document_id)
            snapshot_ok, snapshot = archival_snapshot(document_id)
            enter_status(state, step.next_status, step.id, actor)
            new_status_id = step.next_status_id
            record_history(document_id, EVENT_APPROVAL_APPROVED, status_id=new_status_id,
                           step_id=step.id, approval_request_id=request.id,
                           actor=actor, comment=comment)
        elif outcome is ApprovalOutcome.REJECTED:
            _close(request, REQUEST_REJECTED)
            record_history(document_id, EVENT_APPROVAL_REJECTED,
                           status_id=step.current_status_id, step_id=step.id,
                           approval_request_id=request.id, actor=actor, comment=comment)

        db.session.commit()

    logger.info(
        "Decision recorded request_id=%s approver_id=%s decision=%s outcome=%s",
        request_id, approver_id, decision, outcome.value, extra=extra,
    )
    if outcome is ApprovalOutcome.APPROVED:
        publish_refresh(document_id, EVENT_APPROVAL_APPROVED,
                        {"request_id": request_id, "new_status_id": new_status_id})
        if snapshot_ok:
            schedule_completion_monitor(document_id, snapshot)
    elif outcome is ApprovalOutcome.REJECTED:
        publish_refresh(document_id, EVENT_APPROVAL_REJECTED, {"request_id": request_id})
    else:
        publish_refresh(document_id, "approval_response", {"request_id": request_id})

    return DecisionResult(
        request_id=request_id,
        request_state=outcome,
        new_status_id=new_status_id,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def get_request(request_id: int) -> dict:
    request = db.session.get(ApprovalRequest, request_id)
    if request is None:
        raise NotFoundError(resource="ApprovalRequest", resource_id=request_id)
    return request.to_dict()


def get_open_request(document_id: int) -> dict | None:
    request = db.session.execute(
        select(ApprovalRequest).where(
            ApprovalRequest.document_id == document_id,
            ApprovalRequest.state == REQUEST_OPEN,
        )
    ).scalar_one_or_none()
    return request.to_dict() if request else None


def list_pending_for_approver(approver_id: int) -> list[dict]:
    """Open requests awaiting this approver's decision right now."""
    if db.session.get(Approver, approver_id) is None:
        raise NotFoundError(resource="Approver", resource_id=approver_id)
    open_requests = db.session.execute(
        select(ApprovalRequest)
        .where(ApprovalRequest.state == REQUEST_OPEN)
        .order_by(ApprovalRequest.id)
    ).scalars().all()

    pending = []
    for request in open_requests:
        if approver_id not in (request.target_member_ids or []):
            continue
        if any(r.approver_id == approver_id for r in request.responses):
            continue
        if not check_turn(target_from_request(request), request.responses, approver_id):
            continue
        pending.append(request.to_dict())
    return pending


def get_approval_history(document_id: int) -> list[dict]:
    requests = db.session.execute(
        select(ApprovalRequest)
        .where(ApprovalRequest.document_id == document_id)
        .order_by(ApprovalRequest.id)
    ).scalars().all()
    if not requests and find_state(document_id) is None:
        raise NotFoundError(resource="DocumentWorkflowState", resource_id=document_id)
    return [r.to_dict() for r in requests]
