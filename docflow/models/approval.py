"""
Document Workflow Circuit — approval models.

Models:
    - Approver:             a user materialised as eligible approver (approver id ≠ user id)
    - ApprovalGroup:        named set of approvers with a quorum rule
    - ApprovalGroupMember:  ordered membership row (order matters for Sequential)
    - ApprovalRequest:      one gated move waiting for decisions
    - ApprovalResponse:     one approver decision, append-only

Quorum rules:
    All         every member approves; a single rejection rejects
    Any         first approval approves; rejection needs every member
    Sequential  members act in list order; any rejection rejects

Invariant: at most one ApprovalRequest with state='open' per document.
The service layer serialises writers per document; the partial unique index
below is the database backstop.
"""

from datetime import datetime, timezone

from docflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

RULE_ALL = "All"
RULE_ANY = "Any"
RULE_SEQUENTIAL = "Sequential"

RULE_TYPES = frozenset({RULE_ALL, RULE_ANY, RULE_SEQUENTIAL})

REQUEST_OPEN = "open"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"

REQUEST_STATES = frozenset({REQUEST_OPEN, REQUEST_APPROVED, REQUEST_REJECTED})

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"

DECISIONS = frozenset({DECISION_APPROVE, DECISION_REJECT})

REQUEST_TRANSITIONS = {
    REQUEST_OPEN:     [REQUEST_APPROVED, REQUEST_REJECTED],
    REQUEST_APPROVED: [],
    REQUEST_REJECTED: [],
}


def validate_request_transition(old_state, new_state):
    """Return True if ApprovalRequest state transition is valid."""
    return new_state in REQUEST_TRANSITIONS.get(old_state, [])


def _utcnow():
    return datetime.now(timezone.utc)


class Approver(db.Model):
    """User registered as eligible approver.

    Steps and group memberships reference ``approvers.id``, never the raw user
    id.  username is a snapshot taken at registration so the approval trail
    stays readable after the account is renamed or removed upstream.
    """

    __tablename__ = "approvers"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, nullable=False, unique=True, index=True,
        comment="Account id in the external user directory",
    )
    username = db.Column(db.String(150), nullable=False, default="")
    comment = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Approver #{self.id} user={self.user_id}>"


class ApprovalGroup(db.Model):
    """Named approval group with a quorum rule."""

    __tablename__ = "approval_groups"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, unique=True)
    comment = db.Column(db.Text, default="")
    rule_type = db.Column(
        db.String(20), nullable=False, default=RULE_ALL,
        comment="All | Any | Sequential",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    members = db.relationship(
        "ApprovalGroupMember", backref="group", lazy="select",
        cascade="all, delete-orphan",
        order_by="ApprovalGroupMember.order_index",
    )

    __table_args__ = (
        db.CheckConstraint(
            "rule_type IN ('All','Any','Sequential')",
            name="ck_approval_group_rule_type",
        ),
    )

    @property
    def member_ids(self) -> list[int]:
        """Approver ids in quorum order."""
        return [m.approver_id for m in self.members]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "comment": self.comment,
            "rule_type": self.rule_type,
            "members": [m.to_dict() for m in self.members],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApprovalGroup #{self.id} {self.name!r} {self.rule_type}>"


class ApprovalGroupMember(db.Model):
    """Ordered approver membership inside a group."""

    __tablename__ = "approval_group_members"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(
        db.Integer, db.ForeignKey("approval_groups.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    approver_id = db.Column(
        db.Integer, db.ForeignKey("approvers.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_index = db.Column(db.Integer, nullable=False, default=0)

    approver = db.relationship("Approver")

    __table_args__ = (
        db.UniqueConstraint("group_id", "approver_id", name="uq_group_member"),
    )

    def to_dict(self):
        return {
            "approver_id": self.approver_id,
            "user_id": self.approver.user_id if self.approver else None,
            "username": self.approver.username if self.approver else None,
            "order_index": self.order_index,
        }


class ApprovalRequest(db.Model):
    """
    Pending approval for one gated move.

    target_member_ids snapshots the eligible approvers (in quorum order) when
    the request is opened, so later group edits do not change the quorum of a
    request already in flight.  Closing (approved | rejected) is terminal.
    """

    __tablename__ = "approval_requests"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, nullable=False, index=True)
    step_id = db.Column(
        db.Integer, db.ForeignKey("steps.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind = db.Column(db.String(20), nullable=False, comment="individual | group")
    approver_id = db.Column(
        db.Integer, db.ForeignKey("approvers.id", ondelete="SET NULL"),
        nullable=True,
    )
    approval_group_id = db.Column(
        db.Integer, db.ForeignKey("approval_groups.id", ondelete="SET NULL"),
        nullable=True,
    )
    rule_type = db.Column(db.String(20), nullable=True, comment="Group rule snapshot")
    target_member_ids = db.Column(db.JSON, nullable=False, default=list)

    state = db.Column(db.String(20), nullable=False, default=REQUEST_OPEN)
    requested_by = db.Column(db.String(150), default="")
    comment = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    step = db.relationship("Step")
    responses = db.relationship(
        "ApprovalResponse", backref="request", lazy="select",
        cascade="all, delete-orphan", order_by="ApprovalResponse.id",
    )

    __table_args__ = (
        db.Index(
            "uq_approval_request_open_document", "document_id",
            unique=True,
            sqlite_where=db.text("state = 'open'"),
            postgresql_where=db.text("state = 'open'"),
        ),
        db.CheckConstraint(
            "state IN ('open','approved','rejected')",
            name="ck_approval_request_state",
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.state == REQUEST_OPEN

    def to_dict(self, include_responses=True):
        d = {
            "id": self.id,
            "document_id": self.document_id,
            "step_id": self.step_id,
            "kind": self.kind,
            "approver_id": self.approver_id,
            "approval_group_id": self.approval_group_id,
            "rule_type": self.rule_type,
            "target_member_ids": list(self.target_member_ids or []),
            "state": self.state,
            "requested_by": self.requested_by,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }
        if self.step is not None:
            d["current_status_id"] = self.step.current_status_id
            d["next_status_id"] = self.step.next_status_id
        if include_responses:
            d["responses"] = [r.to_dict() for r in self.responses]
        return d

    def __repr__(self):
        return f"<ApprovalRequest #{self.id} doc={self.document_id} {self.state}>"


class ApprovalResponse(db.Model):
    """Single approver decision. Append-only; never updated."""

    __tablename__ = "approval_responses"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("approval_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    approver_id = db.Column(
        db.Integer, db.ForeignKey("approvers.id", ondelete="SET NULL"),
        nullable=True,
    )
    decision = db.Column(db.String(10), nullable=False, comment="approve | reject")
    comment = db.Column(db.Text, default="")
    responded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "decision IN ('approve','reject')",
            name="ck_approval_response_decision",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "approver_id": self.approver_id,
            "decision": self.decision,
            "comment": self.comment,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
        }
