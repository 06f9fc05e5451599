"""
Document Workflow Circuit — per-document runtime state.

Models:
    - DocumentWorkflowState:     the single active position of a document in its circuit
    - DocumentStatusCompletion:  one row per status the document has entered
    - WorkflowHistory:           append-only event log

A document occupies exactly one status at a time.  A completion row is
created (incomplete) each time the document enters a status; the document
may leave its current status only once that row is marked complete.
"""

from datetime import datetime, timezone

from docflow.models import db

# ── History events ───────────────────────────────────────────────────────────

EVENT_ASSIGNED = "assigned"
EVENT_STATUS_COMPLETED = "status_completed"
EVENT_STATUS_REOPENED = "status_reopened"
EVENT_MOVED = "moved"
EVENT_APPROVAL_REQUESTED = "approval_requested"
EVENT_APPROVAL_APPROVED = "approval_approved"
EVENT_APPROVAL_REJECTED = "approval_rejected"
EVENT_RETURNED = "returned"
EVENT_REINITIALIZED = "reinitialized"

HISTORY_EVENTS = frozenset({
    EVENT_ASSIGNED,
    EVENT_STATUS_COMPLETED,
    EVENT_STATUS_REOPENED,
    EVENT_MOVED,
    EVENT_APPROVAL_REQUESTED,
    EVENT_APPROVAL_APPROVED,
    EVENT_APPROVAL_REJECTED,
    EVENT_RETURNED,
    EVENT_REINITIALIZED,
})


def _utcnow():
    return datetime.now(timezone.utc)


class DocumentWorkflowState(db.Model):
    """Current workflow position of one document."""

    __tablename__ = "document_workflow_states"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, nullable=False, unique=True, index=True,
        comment="Document id in the external document store",
    )
    circuit_id = db.Column(
        db.Integer, db.ForeignKey("circuits.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    current_status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="RESTRICT"),
        nullable=False,
    )
    current_step_id = db.Column(
        db.Integer, db.ForeignKey("steps.id", ondelete="SET NULL"),
        nullable=True,
        comment="Step that brought the document into its current status",
    )
    is_circuit_completed = db.Column(db.Boolean, nullable=False, default=False)

    updated_by = db.Column(db.String(150), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    circuit = db.relationship("Circuit")
    current_status = db.relationship("Status", foreign_keys=[current_status_id])
    current_step = db.relationship("Step", foreign_keys=[current_step_id])
    completions = db.relationship(
        "DocumentStatusCompletion", backref="workflow_state", lazy="select",
        cascade="all, delete-orphan", order_by="DocumentStatusCompletion.id",
    )

    def completion_for(self, status_id):
        for c in self.completions:
            if c.status_id == status_id:
                return c
        return None

    @property
    def completed_status_ids(self) -> list[int]:
        return [c.status_id for c in self.completions if c.is_complete]

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "circuit_id": self.circuit_id,
            "current_status_id": self.current_status_id,
            "current_status_title": self.current_status.title if self.current_status else None,
            "current_step_id": self.current_step_id,
            "completed_status_ids": self.completed_status_ids,
            "is_circuit_completed": self.is_circuit_completed,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DocumentWorkflowState doc={self.document_id} status={self.current_status_id}>"


class DocumentStatusCompletion(db.Model):
    """Completion flag for a status the document has entered."""

    __tablename__ = "document_status_completions"

    id = db.Column(db.Integer, primary_key=True)
    workflow_state_id = db.Column(
        db.Integer, db.ForeignKey("document_workflow_states.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_complete = db.Column(db.Boolean, nullable=False, default=False)
    completed_by = db.Column(db.String(150), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    comment = db.Column(db.Text, default="")

    status = db.relationship("Status")

    __table_args__ = (
        db.UniqueConstraint("workflow_state_id", "status_id", name="uq_completion_state_status"),
    )

    def to_dict(self):
        return {
            "status_id": self.status_id,
            "status_title": self.status.title if self.status else None,
            "is_required": self.status.is_required if self.status else None,
            "is_complete": self.is_complete,
            "completed_by": self.completed_by,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "comment": self.comment,
        }


class WorkflowHistory(db.Model):
    """Append-only workflow event log."""

    __tablename__ = "workflow_history"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, nullable=False, index=True)
    event = db.Column(db.String(30), nullable=False)
    status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="SET NULL"),
        nullable=True,
    )
    step_id = db.Column(
        db.Integer, db.ForeignKey("steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    approval_request_id = db.Column(
        db.Integer, db.ForeignKey("approval_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    actor = db.Column(db.String(150), default="")
    comment = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    status = db.relationship("Status")

    __table_args__ = (
        db.Index("ix_workflow_history_doc_created", "document_id", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "event": self.event,
            "status_id": self.status_id,
            "status_title": self.status.title if self.status else None,
            "step_id": self.step_id,
            "approval_request_id": self.approval_request_id,
            "actor": self.actor,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
