"""
Shared mutations of DocumentWorkflowState.

Used by the move executor (workflow_service) and the approval gate so both
paths advance a document the same way.  Nothing here commits or locks; the
callers do both.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from docflow.core.exceptions import NotFoundError
from docflow.models import db
from docflow.models.approval import REQUEST_OPEN, ApprovalRequest
from docflow.models.circuit import Status
from docflow.models.workflow import (
    DocumentStatusCompletion,
    DocumentWorkflowState,
    WorkflowHistory,
)
from docflow.services import collaborators

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_state(document_id: int) -> DocumentWorkflowState:
    state = db.session.execute(
        select(DocumentWorkflowState).where(DocumentWorkflowState.document_id == document_id)
    ).scalar_one_or_none()
    if state is None:
        raise NotFoundError(resource="DocumentWorkflowState", resource_id=document_id)
    return state


def find_state(document_id: int) -> DocumentWorkflowState | None:
    return db.session.execute(
        select(DocumentWorkflowState).where(DocumentWorkflowState.document_id == document_id)
    ).scalar_one_or_none()


def get_open_request(document_id: int) -> ApprovalRequest | None:
    return db.session.execute(
        select(ApprovalRequest).where(
            ApprovalRequest.document_id == document_id,
            ApprovalRequest.state == REQUEST_OPEN,
        )
    ).scalar_one_or_none()


# ── Completion ───────────────────────────────────────────────────────────────


def recompute_completion(state: DocumentWorkflowState) -> bool:
    """Current status complete and no entered required status incomplete."""
    current = state.completion_for(state.current_status_id)
    completed = bool(current and current.is_complete)
    if completed:
        for row in state.completions:
            if row.status is not None and row.status.is_required and not row.is_complete:
                completed = False
                break
    state.is_circuit_completed = completed
    return completed


def set_completion(row: DocumentStatusCompletion, is_complete: bool, actor: str = "",
                   comment: str | None = None) -> None:
    row.is_complete = bool(is_complete)
    if is_complete:
        row.completed_by = actor or None
        row.completed_at = _utcnow()
    else:
        row.completed_by = None
        row.completed_at = None
    if comment is not None:
        row.comment = comment


def enter_status(state: DocumentWorkflowState, status: Status, step_id: int | None,
                 actor: str = "") -> DocumentStatusCompletion:
    """Make ``status`` the document's current status with an incomplete row."""
    state.current_status_id = status.id
    state.current_status = status
    state.current_step_id = step_id
    state.updated_by = actor or ""

    row = state.completion_for(status.id)
    if row is None:
        row = DocumentStatusCompletion(status_id=status.id, status=status)
        state.completions.append(row)
    else:
        set_completion(row, False)
    recompute_completion(state)
    return row


def record_history(document_id: int, event: str, *, status_id: int | None = None,
                   step_id: int | None = None, approval_request_id: int | None = None,
                   actor: str = "", comment: str = "") -> WorkflowHistory:
    entry = WorkflowHistory(
        document_id=document_id,
        event=event,
        status_id=status_id,
        step_id=step_id,
        approval_request_id=approval_request_id,
        actor=actor or "",
        comment=comment or "",
    )
    db.session.add(entry)
    return entry


# ── Collaborator side effects ────────────────────────────────────────────────


def archival_snapshot(document_id: int) -> tuple[bool, str | None]:
    """Read the pre-move archival marker.

    Returns (ok, marker).  ok is False when the store could not be read; the
    move still proceeds but no monitor is started for it.
    """
    try:
        ref = collaborators.get("document_store").get_document(document_id)
    except Exception as exc:
        logger.warning(
            "Archival snapshot unavailable document_id=%s: %s", document_id, exc,
            extra={"document_id": document_id, "event_type": "archival_snapshot"},
        )
        return False, None
    return True, ref.external_archival_marker


def schedule_completion_monitor(document_id: int, snapshot: str | None):
    monitor = collaborators.get("completion_monitor")
    sink = collaborators.get("refresh_sink")

    def _on_done(outcome: str, marker: str | None) -> None:
        sink.publish(document_id, f"archival_{outcome}", {"marker": marker})

    return monitor.start(document_id, snapshot, _on_done)


def publish_refresh(document_id: int, reason: str, payload: dict | None = None) -> None:
    collaborators.get("refresh_sink").publish(document_id, reason, payload)
