"""
Document Workflow Circuit — circuit definition models.

Models:
    - Circuit:  named workflow definition for one document type
    - Status:   a state a document can occupy inside a circuit (Status Registry)
    - Step:     directed edge current_status → next_status (Step Table),
                optionally gated by an individual approver or an approval group

Architecture:
    Circuit ──1:N──▶ Status
    Circuit ──1:N──▶ Step ──N:1──▶ Status (current / next)
    Step ──N:1──▶ Approver | ApprovalGroup   (only one of the two is set)

Invariants:
    - (circuit_id, current_status_id, next_status_id) is unique per Step.
    - approval_kind == "none" ⇔ requires_approval is False.
    - is_flexible is an authored flag; it is never derived from the title.
"""

from datetime import datetime, timezone

from docflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

APPROVAL_KIND_NONE = "none"
APPROVAL_KIND_INDIVIDUAL = "individual"
APPROVAL_KIND_GROUP = "group"

APPROVAL_KINDS = frozenset({
    APPROVAL_KIND_NONE,
    APPROVAL_KIND_INDIVIDUAL,
    APPROVAL_KIND_GROUP,
})


def _utcnow():
    return datetime.now(timezone.utc)


class Circuit(db.Model):
    """
    Named workflow definition.

    Once documents are active against a circuit only additions of statuses and
    steps are allowed; edits that would invalidate a running document are
    refused in the service layer.
    Key format: CR-0001 (auto-generated in circuit_service).
    """

    __tablename__ = "circuits"

    id = db.Column(db.Integer, primary_key=True)
    circuit_key = db.Column(
        db.String(30), unique=True, nullable=True,
        comment="Auto-generated: CR-0001",
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    document_type = db.Column(
        db.String(50), nullable=True,
        comment="Document type the circuit applies to (owned by the document store)",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    allow_backtrack = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="When true, documents may be returned to an earlier status",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    statuses = db.relationship(
        "Status", backref="circuit", lazy="select",
        cascade="all, delete-orphan", order_by="Status.id",
    )
    steps = db.relationship(
        "Step", backref="circuit", lazy="select",
        cascade="all, delete-orphan", order_by="Step.id",
    )

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "circuit_key": self.circuit_key,
            "title": self.title,
            "description": self.description,
            "document_type": self.document_type,
            "is_active": self.is_active,
            "allow_backtrack": self.allow_backtrack,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_children:
            d["statuses"] = [s.to_dict() for s in self.statuses]
            d["steps"] = [s.to_dict() for s in self.steps]
        return d

    def __repr__(self):
        return f"<Circuit #{self.id} {self.circuit_key} {self.title!r}>"


class Status(db.Model):
    """A named state inside a circuit."""

    __tablename__ = "statuses"

    id = db.Column(db.Integer, primary_key=True)
    circuit_id = db.Column(
        db.Integer, db.ForeignKey("circuits.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status_key = db.Column(db.String(40), nullable=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_initial = db.Column(db.Boolean, nullable=False, default=False)
    is_final = db.Column(db.Boolean, nullable=False, default=False)
    is_required = db.Column(
        db.Boolean, nullable=False, default=True,
        comment="Required statuses must be complete before the document can move on",
    )
    is_flexible = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Administrative checkpoint: any other status of the circuit is a legal next move",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "circuit_id": self.circuit_id,
            "status_key": self.status_key,
            "title": self.title,
            "description": self.description,
            "is_initial": self.is_initial,
            "is_final": self.is_final,
            "is_required": self.is_required,
            "is_flexible": self.is_flexible,
        }

    def __repr__(self):
        return f"<Status #{self.id} {self.title!r} circuit={self.circuit_id}>"


class Step(db.Model):
    """
    Directed transition between two statuses of the same circuit.

    A Step is the only legal edge current → next unless the current status is
    flexible.  Approval configuration is typed and declared up-front; the
    executor never infers it at move time.
    """

    __tablename__ = "steps"

    id = db.Column(db.Integer, primary_key=True)
    step_key = db.Column(db.String(40), nullable=True)
    circuit_id = db.Column(
        db.Integer, db.ForeignKey("circuits.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False, default="")
    description = db.Column(db.Text, default="")
    current_status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="CASCADE"),
        nullable=False,
    )
    next_status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Approval configuration
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)
    approval_kind = db.Column(
        db.String(20), nullable=False, default=APPROVAL_KIND_NONE,
        comment="none | individual | group",
    )
    approver_id = db.Column(
        db.Integer, db.ForeignKey("approvers.id", ondelete="SET NULL"),
        nullable=True,
    )
    approval_group_id = db.Column(
        db.Integer, db.ForeignKey("approval_groups.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    current_status = db.relationship("Status", foreign_keys=[current_status_id])
    next_status = db.relationship("Status", foreign_keys=[next_status_id])
    approver = db.relationship("Approver", foreign_keys=[approver_id])
    approval_group = db.relationship("ApprovalGroup", foreign_keys=[approval_group_id])

    __table_args__ = (
        db.UniqueConstraint(
            "circuit_id", "current_status_id", "next_status_id",
            name="uq_step_circuit_transition",
        ),
        db.CheckConstraint(
            "approval_kind IN ('none','individual','group')",
            name="ck_step_approval_kind",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "step_key": self.step_key,
            "circuit_id": self.circuit_id,
            "title": self.title,
            "description": self.description,
            "current_status_id": self.current_status_id,
            "current_status_title": self.current_status.title if self.current_status else None,
            "next_status_id": self.next_status_id,
            "next_status_title": self.next_status.title if self.next_status else None,
            "requires_approval": self.requires_approval,
            "approval_kind": self.approval_kind,
            "approver_id": self.approver_id,
            "approver_username": self.approver.username if self.approver else None,
            "approval_group_id": self.approval_group_id,
            "approval_group_name": self.approval_group.name if self.approval_group else None,
        }

    def __repr__(self):
        return (
            f"<Step #{self.id} circuit={self.circuit_id} "
            f"{self.current_status_id}->{self.next_status_id}>"
        )
