"""
Typed results returned by the workflow core.

Expected business outcomes (a move that needs approval, a decision that
arrives out of turn, a duplicate step) are returned as values, never raised.
Missing records and malformed input still raise the exceptions in
``docflow.core.exceptions``.

Usage:
    from docflow.core.results import MoveResult, MoveOutcome, WorkflowErrorCode

    result = workflow_service.attempt_move(doc_id, target_id, actor="jane")
    if result.outcome is MoveOutcome.APPROVAL_PENDING:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class WorkflowErrorCode(str, Enum):
    PRECURSOR_INCOMPLETE = "PRECURSOR_INCOMPLETE"
    APPROVAL_PENDING = "APPROVAL_PENDING"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DUPLICATE_TRANSITION = "DUPLICATE_TRANSITION"
    INVALID_APPROVAL_CONFIG = "INVALID_APPROVAL_CONFIG"
    APPROVER_NOT_REGISTERED = "APPROVER_NOT_REGISTERED"
    UNKNOWN_APPROVER = "UNKNOWN_APPROVER"
    NOT_YOUR_TURN = "NOT_YOUR_TURN"
    ALREADY_DECIDED = "ALREADY_DECIDED"


class MoveOutcome(str, Enum):
    COMPLETED = "completed"
    APPROVAL_PENDING = "approval_pending"
    REJECTED = "rejected"


class ApprovalOutcome(str, Enum):
    """Aggregate state of an approval request after evaluating its responses."""
    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"


# ═════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransitionCandidate:
    """A legal next status for a document, as computed by the planner."""
    next_status_id: int
    title: str
    requires_approval: bool
    step_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "next_status_id": self.next_status_id,
            "title": self.title,
            "requires_approval": self.requires_approval,
            "step_id": self.step_id,
        }


@dataclass(frozen=True)
class ApprovalTarget:
    """Resolved approvers for a gated step.

    member_ids is ordered; for Sequential groups the order is the turn order.
    For an individual approver it holds exactly that approver's id.
    """
    kind: str
    approver_id: int | None = None
    group_id: int | None = None
    rule_type: str | None = None
    member_ids: tuple[int, ...] = ()

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "approver_id": self.approver_id,
            "group_id": self.group_id,
            "rule_type": self.rule_type,
            "member_ids": list(self.member_ids),
        }


@dataclass
class MoveResult:
    outcome: MoveOutcome
    reason: WorkflowErrorCode | None = None
    request_id: int | None = None
    new_status_id: int | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is not MoveOutcome.REJECTED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason.value if self.reason else None,
            "request_id": self.request_id,
            "new_status_id": self.new_status_id,
            "message": self.message,
        }


@dataclass
class DecisionResult:
    """Outcome of recording one approver decision.

    ``error`` is set when the decision was refused and nothing was recorded.
    Otherwise ``request_state`` reports the request after evaluation and
    ``new_status_id`` is set when an approval advanced the document.
    """
    request_id: int
    error: WorkflowErrorCode | None = None
    request_state: ApprovalOutcome | None = None
    new_status_id: int | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "error": self.error.value if self.error else None,
            "request_state": self.request_state.value if self.request_state else None,
            "new_status_id": self.new_status_id,
            "message": self.message,
        }


@dataclass
class StepValidation:
    """Result of validating a proposed step before it is stored."""
    code: WorkflowErrorCode | None = None
    message: str = ""
    details: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.code is None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "code": self.code.value if self.code else "ok",
            "message": self.message,
            "details": self.details,
        }
