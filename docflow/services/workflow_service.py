"""
Move Executor — the single authoritative entry point for changing a
document's workflow position.

Operations:
    assign_document            put a document on a circuit at its initial status
    attempt_move               move to a planner candidate, or open an approval request
    complete_status            mark an entered status complete / incomplete
    return_to_previous_status  backtrack (circuits with allow_backtrack only)
    reinitialize               restart the document at the initial status
    get_workflow_status        projection for UIs
    get_available_transitions  planner output for the document
    get_history                ordered workflow events

Every mutating operation runs inside ``document_lock(document_id)`` and
commits before the lock is released.  Refresh events and monitors are
started after the commit.

attempt_move preconditions, first failure wins:
    1. is_circuit_completed                 else rejected / PRECURSOR_INCOMPLETE
    2. no open approval request             else approval_pending / APPROVAL_PENDING (same request id)
    3. target is a planner candidate        else rejected / INVALID_TRANSITION
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.core.results import MoveOutcome, MoveResult, WorkflowErrorCode
from docflow.models import db
from docflow.models.circuit import Circuit, Status, Step
from docflow.models.workflow import (
    EVENT_APPROVAL_APPROVED,
    EVENT_APPROVAL_REQUESTED,
    EVENT_ASSIGNED,
    EVENT_MOVED,
    EVENT_REINITIALIZED,
    EVENT_RETURNED,
    EVENT_STATUS_COMPLETED,
    EVENT_STATUS_REOPENED,
    DocumentStatusCompletion,
    DocumentWorkflowState,
    WorkflowHistory,
)
from docflow.services import approval_gate, collaborators
from docflow.services.approval_policy import resolve_step_target
from docflow.services.document_locks import document_lock
from docflow.services.transition_planner import find_candidate, plan_transitions
from docflow.services.workflow_state import (
    archival_snapshot,
    enter_status,
    find_state,
    get_open_request,
    get_state,
    publish_refresh,
    recompute_completion,
    record_history,
    schedule_completion_monitor,
    set_completion,
)
from docflow.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)

# Events that place the document in a status (used to find the previous one)
_POSITION_EVENTS = (EVENT_ASSIGNED, EVENT_MOVED, EVENT_APPROVAL_APPROVED, EVENT_RETURNED,
                    EVENT_REINITIALIZED)


def _initial_status(circuit: Circuit) -> Status:
    initials = [s for s in circuit.statuses if s.is_initial]
    if len(initials) != 1:
        raise ValidationError(
            f"Circuit id={circuit.id} must have exactly one initial status "
            f"(found {len(initials)})",
            details={"circuit_id": circuit.id, "initial_statuses": [s.id for s in initials]},
        )
    return initials[0]


def _refuse_if_open_request(document_id: int) -> None:
    if get_open_request(document_id) is not None:
        raise ConflictError(
            "ApprovalRequest", "state", "open",
            message=f"Document {document_id} has an open approval request",
        )


# ═════════════════════════════════════════════════════════════════════════════
# Assignment
# ═════════════════════════════════════════════════════════════════════════════


def assign_document(document_id: int, circuit_id: int, actor: str = "",
                    comment: str = "") -> dict:
    """Put a document on a circuit at the circuit's initial status.

    The initial status is created already complete, so the document can move
    on without an explicit completion.

    Raises:
        NotFoundError: circuit missing.
        ValidationError: circuit inactive or without exactly one initial status.
        ConflictError: the document already has a workflow state.
    """
    circuit = get_or_raise(Circuit, circuit_id)
    if not circuit.is_active:
        raise ValidationError(
            f"Circuit id={circuit_id} is not active",
            details={"circuit_id": circuit_id},
        )
    initial = _initial_status(circuit)

    with document_lock(document_id):
        if find_state(document_id) is not None:
            raise ConflictError("DocumentWorkflowState", "document_id", str(document_id))

        state = DocumentWorkflowState(
            document_id=document_id,
            circuit_id=circuit.id,
            current_status_id=initial.id,
            updated_by=actor or "",
        )
        db.session.add(state)
        row = DocumentStatusCompletion(status_id=initial.id, status=initial)
        set_completion(row, True, actor)
        state.completions.append(row)
        recompute_completion(state)
        record_history(document_id, EVENT_ASSIGNED, status_id=initial.id,
                       actor=actor, comment=comment or "Document assigned to circuit")
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("DocumentWorkflowState", "document_id", str(document_id))

    _mirror_completion(document_id, initial.id, True)
    logger.info(
        "Document assigned document_id=%s circuit_id=%s status_id=%s",
        document_id, circuit.id, initial.id,
        extra={"document_id": document_id, "circuit_id": circuit.id, "event_type": "assign"},
    )
    publish_refresh(document_id, EVENT_ASSIGNED, {"status_id": initial.id})
    return state.to_dict()


def _mirror_completion(document_id: int, status_id: int, is_complete: bool) -> None:
    """Best-effort mirror for flows where the local change is already committed."""
    try:
        collaborators.get("document_store").mark_status_complete(
            document_id, status_id, is_complete,
        )
    except Exception:
        logger.exception(
            "Document store completion mirror failed document_id=%s status_id=%s",
            document_id, status_id,
            extra={"document_id": document_id, "event_type": "store_mirror"},
        )


# ═════════════════════════════════════════════════════════════════════════════
# Moves
# ═════════════════════════════════════════════════════════════════════════════


def attempt_move(document_id: int, target_status_id: int, actor: str = "",
                 comment: str = "") -> MoveResult:
    """Move a document to ``target_status_id`` or open an approval request.

    Raises:
        NotFoundError: the document has no workflow state.
        ValidationError: the gated step's approvers cannot be resolved.
    """
    snapshot_ok, snapshot = False, None
    extra = {"document_id": document_id, "event_type": "move"}

    with document_lock(document_id):
        state = get_state(document_id)
        extra["circuit_id"] = state.circuit_id

        if not state.is_circuit_completed:
            logger.info("Move refused (precursor incomplete) document_id=%s", document_id,
                        extra=extra)
            return MoveResult(
                outcome=MoveOutcome.REJECTED,
                reason=WorkflowErrorCode.PRECURSOR_INCOMPLETE,
                message="Current status must be completed before moving on",
            )

        existing = get_open_request(document_id)
        if existing is not None:
            return MoveResult(
                outcome=MoveOutcome.APPROVAL_PENDING,
                reason=WorkflowErrorCode.APPROVAL_PENDING,
                request_id=existing.id,
                message="An approval request is already open for this document",
            )

        candidates = plan_transitions(state, state.circuit)
        candidate = find_candidate(candidates, target_status_id)
        if candidate is None:
            logger.info("Move refused (invalid transition) document_id=%s %s->%s",
                        document_id, state.current_status_id, target_status_id, extra=extra)
            return MoveResult(
                outcome=MoveOutcome.REJECTED,
                reason=WorkflowErrorCode.INVALID_TRANSITION,
                message=f"Status id={target_status_id} is not a legal next status",
            )

        step = db.session.get(Step, candidate.step_id) if candidate.step_id else None

        if candidate.requires_approval:
            target = resolve_step_target(step)
            request = approval_gate.open_request(
                document_id, step, target, requested_by=actor, comment=comment,
            )
            record_history(document_id, EVENT_APPROVAL_REQUESTED,
                           status_id=step.next_status_id, step_id=step.id,
                           approval_request_id=request.id, actor=actor, comment=comment)
            try:
                db.session.commit()
            except IntegrityError:
                # another process opened a request first
                db.session.rollback()
                existing = get_open_request(document_id)
                if existing is None:
                    raise
                return MoveResult(
                    outcome=MoveOutcome.APPROVAL_PENDING,
                    reason=WorkflowErrorCode.APPROVAL_PENDING,
                    request_id=existing.id,
                    message="An approval request is already open for this document",
                )
            request_id = request.id
            logger.info(
                "Approval requested document_id=%s request_id=%s step_id=%s kind=%s",
                document_id, request_id, step.id, target.kind,
                extra={**extra, "approval_request_id": request_id},
            )
        else:
            snapshot_ok, snapshot = archival_snapshot(document_id)
            target_status = db.session.get(Status, target_status_id)
            enter_status(state, target_status, step.id if step else None, actor)
            record_history(document_id, EVENT_MOVED, status_id=target_status_id,
                           step_id=step.id if step else None, actor=actor, comment=comment)
            db.session.commit()
            request_id = None
            logger.info("Document moved document_id=%s to status_id=%s", document_id,
                        target_status_id, extra=extra)

    if request_id is not None:
        publish_refresh(document_id, EVENT_APPROVAL_REQUESTED, {"request_id": request_id})
        return MoveResult(
            outcome=MoveOutcome.APPROVAL_PENDING,
            request_id=request_id,
            message="Approval required; request opened",
        )

    publish_refresh(document_id, EVENT_MOVED, {"new_status_id": target_status_id})
    if snapshot_ok:
        schedule_completion_monitor(document_id, snapshot)
    return MoveResult(outcome=MoveOutcome.COMPLETED, new_status_id=target_status_id)


# ═════════════════════════════════════════════════════════════════════════════
# Status completion
# ═════════════════════════════════════════════════════════════════════════════


def complete_status(document_id: int, status_id: int, is_complete: bool = True,
                    actor: str = "", comment: str = "") -> dict:
    """Mark a status the document has entered as complete or incomplete.

    The change is mirrored to the document store before the local commit; a
    store failure rolls back and propagates.
    """
    with document_lock(document_id):
        state = get_state(document_id)
        row = state.completion_for(status_id)
        if row is None:
            raise ValidationError(
                f"Document {document_id} has not entered status id={status_id}",
                details={"status_id": status_id},
            )
        set_completion(row, is_complete, actor, comment)
        recompute_completion(state)
        state.updated_by = actor or ""
        event = EVENT_STATUS_COMPLETED if is_complete else EVENT_STATUS_REOPENED
        record_history(document_id, event, status_id=status_id, actor=actor, comment=comment)
        try:
            collaborators.get("document_store").mark_status_complete(
                document_id, status_id, is_complete,
            )
        except Exception:
            db.session.rollback()
            raise
        db.session.commit()
        result = state.to_dict()

    logger.info(
        "Status completion document_id=%s status_id=%s complete=%s circuit_completed=%s",
        document_id, status_id, is_complete, result["is_circuit_completed"],
        extra={"document_id": document_id, "event_type": event},
    )
    publish_refresh(document_id, event, {"status_id": status_id})
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Backtrack / reinitialise
# ═════════════════════════════════════════════════════════════════════════════


def _previous_status_id(document_id: int, current_status_id: int) -> int | None:
    rows = db.session.execute(
        select(WorkflowHistory.status_id)
        .where(
            WorkflowHistory.document_id == document_id,
            WorkflowHistory.event.in_(_POSITION_EVENTS),
            WorkflowHistory.status_id.is_not(None),
        )
        .order_by(WorkflowHistory.id.desc())
    ).scalars().all()
    for sid in rows:
        if sid != current_status_id:
            return sid
    return None


def return_to_previous_status(document_id: int, actor: str = "", comment: str = "",
                              target_status_id: int | None = None) -> dict:
    """Send the document back to an earlier status.

    Without ``target_status_id`` the most recent different status in the
    document's history is used.  The returned-to status becomes incomplete.
    """
    with document_lock(document_id):
        state = get_state(document_id)
        circuit = state.circuit
        if not circuit.allow_backtrack:
            raise ValidationError(
                f"Circuit id={circuit.id} does not allow backtracking",
                details={"circuit_id": circuit.id},
            )
        _refuse_if_open_request(document_id)

        if target_status_id is None:
            target_status_id = _previous_status_id(document_id, state.current_status_id)
            if target_status_id is None:
                raise ValidationError(
                    f"No previous status found for document {document_id}",
                    details={"document_id": document_id},
                )

        target = db.session.get(Status, target_status_id)
        if target is None or target.circuit_id != circuit.id:
            raise ValidationError(
                f"Status id={target_status_id} does not belong to circuit id={circuit.id}",
                details={"target_status_id": target_status_id},
            )
        if target.id == state.current_status_id:
            raise ValidationError(
                "Document is already in the target status",
                details={"target_status_id": target_status_id},
            )

        enter_status(state, target, None, actor)
        record_history(document_id, EVENT_RETURNED, status_id=target.id,
                       actor=actor, comment=comment)
        db.session.commit()
        result = state.to_dict()

    _mirror_completion(document_id, target.id, False)
    logger.info("Document returned document_id=%s to status_id=%s", document_id, target.id,
                extra={"document_id": document_id, "event_type": EVENT_RETURNED})
    publish_refresh(document_id, EVENT_RETURNED, {"status_id": target.id})
    return result


def reinitialize(document_id: int, actor: str = "", comment: str = "") -> dict:
    """Restart the document at the initial status with every completion reset."""
    with document_lock(document_id):
        state = get_state(document_id)
        _refuse_if_open_request(document_id)
        initial = _initial_status(state.circuit)

        previously_complete = [
            r.status_id for r in state.completions
            if r.is_complete and r.status_id != initial.id
        ]
        state.completions.clear()
        db.session.flush()

        row = DocumentStatusCompletion(status_id=initial.id, status=initial)
        set_completion(row, True, actor)
        state.completions.append(row)
        state.current_status_id = initial.id
        state.current_status = initial
        state.current_step_id = None
        state.updated_by = actor or ""
        recompute_completion(state)
        record_history(document_id, EVENT_REINITIALIZED, status_id=initial.id,
                       actor=actor, comment=comment)
        db.session.commit()
        result = state.to_dict()

    collaborators.get("completion_monitor").cancel(document_id)
    for sid in previously_complete:
        _mirror_completion(document_id, sid, False)
    _mirror_completion(document_id, initial.id, True)
    logger.info("Workflow reinitialised document_id=%s", document_id,
                extra={"document_id": document_id, "event_type": EVENT_REINITIALIZED})
    publish_refresh(document_id, EVENT_REINITIALIZED, {"status_id": initial.id})
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def get_available_transitions(document_id: int) -> list[dict]:
    state = get_state(document_id)
    return [c.to_dict() for c in plan_transitions(state, state.circuit)]


def _progress_percent(state: DocumentWorkflowState) -> int:
    required = [s.id for s in state.circuit.statuses if s.is_required]
    if not required:
        return 100 if state.is_circuit_completed else 0
    done = {r.status_id for r in state.completions if r.is_complete}
    return int(len([sid for sid in required if sid in done]) / len(required) * 100)


def get_workflow_status(document_id: int) -> dict:
    """Workflow projection: state, completions, open request, candidates, progress."""
    state = get_state(document_id)
    open_request = get_open_request(document_id)
    candidates = plan_transitions(state, state.circuit)

    data = state.to_dict()
    data.update({
        "circuit_title": state.circuit.title,
        "current_step_title": state.current_step.title if state.current_step else None,
        "statuses": [r.to_dict() for r in state.completions],
        "open_request": open_request.to_dict() if open_request else None,
        "available_transitions": [c.to_dict() for c in candidates],
        "can_move": state.is_circuit_completed and open_request is None,
        "progress_percent": _progress_percent(state),
    })
    return data


def get_history(document_id: int) -> list[dict]:
    rows = db.session.execute(
        select(WorkflowHistory)
        .where(WorkflowHistory.document_id == document_id)
        .order_by(WorkflowHistory.id)
    ).scalars().all()
    if not rows and find_state(document_id) is None:
        raise NotFoundError(resource="DocumentWorkflowState", resource_id=document_id)
    return [r.to_dict() for r in rows]
