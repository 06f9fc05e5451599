"""
Approval Policy Resolver.

Pure decision logic for gated steps: who must approve a step, whose turn it
is, and what a set of responses adds up to.  No commits, no locking.

Quorum rules:
    individual   the single decision is terminal
    All          rejected on the first rejection; approved once every member approved
    Any          approved on the first approval; rejected once every member rejected
    Sequential   members decide in list order; any rejection rejects; approved
                 when the last member approves
"""

from __future__ import annotations

import logging
from typing import Iterable

from docflow.core.exceptions import ValidationError
from docflow.core.results import ApprovalOutcome, ApprovalTarget
from docflow.models.approval import (
    DECISION_APPROVE,
    DECISION_REJECT,
    RULE_ALL,
    RULE_ANY,
    RULE_SEQUENTIAL,
    RULE_TYPES,
)
from docflow.models.circuit import (
    APPROVAL_KIND_GROUP,
    APPROVAL_KIND_INDIVIDUAL,
    Step,
)

logger = logging.getLogger(__name__)


def resolve_step_target(step: Step) -> ApprovalTarget:
    """Resolve the approvers of a gated step at move time.

    Raises:
        ValidationError: the step is not gated, or its approver/group is gone,
            or the group has no members.
    """
    if not step.requires_approval:
        raise ValidationError(
            f"Step id={step.id} does not require approval",
            details={"step_id": step.id},
        )

    if step.approval_kind == APPROVAL_KIND_INDIVIDUAL:
        if step.approver_id is None or step.approver is None:
            raise ValidationError(
                f"Step id={step.id} has no approver configured",
                details={"step_id": step.id, "approver_id": step.approver_id},
            )
        return ApprovalTarget(
            kind=APPROVAL_KIND_INDIVIDUAL,
            approver_id=step.approver_id,
            member_ids=(step.approver_id,),
        )

    if step.approval_kind == APPROVAL_KIND_GROUP:
        group = step.approval_group
        if step.approval_group_id is None or group is None:
            raise ValidationError(
                f"Step id={step.id} has no approval group configured",
                details={"step_id": step.id, "approval_group_id": step.approval_group_id},
            )
        member_ids = tuple(group.member_ids)
        if not member_ids:
            raise ValidationError(
                f"Approval group id={group.id} has no members",
                details={"approval_group_id": group.id},
            )
        if group.rule_type not in RULE_TYPES:
            raise ValidationError(
                f"Approval group id={group.id} has unknown rule {group.rule_type!r}",
                details={"approval_group_id": group.id},
            )
        return ApprovalTarget(
            kind=APPROVAL_KIND_GROUP,
            group_id=group.id,
            rule_type=group.rule_type,
            member_ids=member_ids,
        )

    raise ValidationError(
        f"Step id={step.id} requires approval but has approval_kind={step.approval_kind!r}",
        details={"step_id": step.id},
    )


def target_from_request(request) -> ApprovalTarget:
    """Rebuild the target snapshot stored on an ApprovalRequest."""
    return ApprovalTarget(
        kind=request.kind,
        approver_id=request.approver_id,
        group_id=request.approval_group_id,
        rule_type=request.rule_type,
        member_ids=tuple(request.target_member_ids or ()),
    )


def _decisions_by_member(responses: Iterable) -> dict[int, str]:
    """First decision per approver; later duplicates are ignored."""
    decisions: dict[int, str] = {}
    for r in responses:
        decisions.setdefault(r.approver_id, r.decision)
    return decisions


def evaluate(target: ApprovalTarget, responses: Iterable) -> ApprovalOutcome:
    """Combine responses into the aggregate request outcome.

    ``responses`` are objects with ``approver_id`` and ``decision``; responses
    from approvers outside the target set are ignored.
    """
    members = list(target.member_ids)
    decisions = {
        k: v for k, v in _decisions_by_member(responses).items() if k in members
    }
    approvals = [m for m in members if decisions.get(m) == DECISION_APPROVE]
    rejections = [m for m in members if decisions.get(m) == DECISION_REJECT]

    if target.kind == APPROVAL_KIND_INDIVIDUAL:
        if rejections:
            return ApprovalOutcome.REJECTED
        if approvals:
            return ApprovalOutcome.APPROVED
        return ApprovalOutcome.OPEN

    rule = target.rule_type
    if rule == RULE_ALL:
        if rejections:
            return ApprovalOutcome.REJECTED
        if len(approvals) == len(members):
            return ApprovalOutcome.APPROVED
        return ApprovalOutcome.OPEN

    if rule == RULE_ANY:
        if approvals:
            return ApprovalOutcome.APPROVED
        if len(rejections) == len(members):
            return ApprovalOutcome.REJECTED
        return ApprovalOutcome.OPEN

    if rule == RULE_SEQUENTIAL:
        if rejections:
            return ApprovalOutcome.REJECTED
        if decisions.get(members[-1]) == DECISION_APPROVE:
            return ApprovalOutcome.APPROVED
        return ApprovalOutcome.OPEN

    raise ValidationError(f"Unknown quorum rule {rule!r}", details={"rule_type": rule})


def next_in_turn(target: ApprovalTarget, responses: Iterable) -> int | None:
    """For Sequential targets, the member whose decision is awaited."""
    decisions = _decisions_by_member(responses)
    for member in target.member_ids:
        if decisions.get(member) != DECISION_APPROVE:
            return member
    return None


def check_turn(target: ApprovalTarget, responses: Iterable, approver_id: int) -> bool:
    """True when ``approver_id`` may decide now.

    Only Sequential groups restrict turn order: every predecessor in the list
    must already have approved.
    """
    if approver_id not in target.member_ids:
        return False
    if target.kind != APPROVAL_KIND_GROUP or target.rule_type != RULE_SEQUENTIAL:
        return True
    return next_in_turn(target, responses) == approver_id
