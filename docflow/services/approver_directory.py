"""
Approver directory — materialised approvers and approval groups.

A user account lives in the external user directory; before it can be
selected on a step or in a group it is registered here, which yields an
approver id distinct from the user id.

Service layer owns all commits.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.models import db
from docflow.models.approval import (
    RULE_TYPES,
    ApprovalGroup,
    ApprovalGroupMember,
    Approver,
)
from docflow.models.circuit import Step

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def resolve_approver_id(user_id: int) -> int | None:
    """Return the approver id registered for ``user_id``, or None."""
    if user_id is None:
        return None
    return db.session.execute(
        select(Approver.id).where(Approver.user_id == user_id)
    ).scalar_one_or_none()


def get_approver(approver_id: int) -> Approver:
    approver = db.session.get(Approver, approver_id)
    if approver is None:
        raise NotFoundError(resource="Approver", resource_id=approver_id)
    return approver


def get_approval_group(group_id: int) -> ApprovalGroup:
    group = db.session.get(ApprovalGroup, group_id)
    if group is None:
        raise NotFoundError(resource="ApprovalGroup", resource_id=group_id)
    return group


def list_approvers() -> list[dict]:
    rows = db.session.execute(select(Approver).order_by(Approver.id)).scalars().all()
    return [a.to_dict() for a in rows]


def list_approval_groups() -> list[dict]:
    rows = db.session.execute(select(ApprovalGroup).order_by(ApprovalGroup.id)).scalars().all()
    return [g.to_dict() for g in rows]


# ── Approvers ────────────────────────────────────────────────────────────────


def register_approver(user_id: int, username: str = "", comment: str = "") -> dict:
    """Materialise a user as an approver.

    Raises:
        ValidationError: user_id missing.
        ConflictError: the user is already registered.
    """
    if user_id is None:
        raise ValidationError("user_id is required", details={"user_id": "required"})
    if resolve_approver_id(user_id) is not None:
        raise ConflictError("Approver", "user_id", str(user_id))

    approver = Approver(user_id=user_id, username=username or "", comment=comment or "")
    db.session.add(approver)
    db.session.commit()
    logger.info("Approver registered approver_id=%s user_id=%s", approver.id, user_id)
    return approver.to_dict()


def unregister_approver(approver_id: int) -> None:
    """Remove an approver that no step references."""
    approver = get_approver(approver_id)
    in_use = db.session.execute(
        select(Step.id).where(Step.approver_id == approver_id).limit(1)
    ).first()
    if in_use:
        raise ConflictError(
            "Approver", "id", str(approver_id),
            message=f"Approver id={approver_id} is assigned to a step",
        )
    db.session.delete(approver)
    db.session.commit()
    logger.info("Approver removed approver_id=%s", approver_id)


# ── Groups ───────────────────────────────────────────────────────────────────


def _validate_members(member_ids) -> list[int]:
    if not isinstance(member_ids, list) or not member_ids:
        raise ValidationError(
            "An approval group needs at least one member",
            details={"member_ids": "non-empty list required"},
        )
    if len(set(member_ids)) != len(member_ids):
        raise ValidationError(
            "Duplicate approver in member list",
            details={"member_ids": "duplicates"},
        )
    unknown = [mid for mid in member_ids if db.session.get(Approver, mid) is None]
    if unknown:
        raise ValidationError(
            "Unknown approver id(s) in member list",
            details={"member_ids": unknown},
        )
    return list(member_ids)


def _set_members(group: ApprovalGroup, member_ids: list[int]) -> None:
    group.members.clear()
    db.session.flush()
    for idx, approver_id in enumerate(member_ids):
        group.members.append(ApprovalGroupMember(approver_id=approver_id, order_index=idx))


def create_approval_group(data: dict) -> dict:
    """Create a group with ordered members.

    Body: {name, rule_type?, comment?, member_ids: [approver_id, ...]}
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    rule_type = data.get("rule_type") or "All"
    if rule_type not in RULE_TYPES:
        raise ValidationError(
            f"rule_type must be one of: {', '.join(sorted(RULE_TYPES))}",
            details={"rule_type": rule_type},
        )
    exists = db.session.execute(
        select(ApprovalGroup.id).where(ApprovalGroup.name == name)
    ).first()
    if exists:
        raise ConflictError("ApprovalGroup", "name", name)

    member_ids = _validate_members(data.get("member_ids"))

    group = ApprovalGroup(name=name, rule_type=rule_type, comment=data.get("comment") or "")
    db.session.add(group)
    db.session.flush()
    _set_members(group, member_ids)
    db.session.commit()
    logger.info(
        "Approval group created group_id=%s rule=%s members=%s",
        group.id, rule_type, member_ids,
    )
    return group.to_dict()


def update_approval_group(group_id: int, data: dict) -> dict:
    """Update name/comment/rule/members.

    Open requests keep the member snapshot taken when they were opened.
    """
    group = get_approval_group(group_id)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty", details={"name": "required"})
        clash = db.session.execute(
            select(ApprovalGroup.id).where(
                ApprovalGroup.name == name, ApprovalGroup.id != group_id,
            )
        ).first()
        if clash:
            raise ConflictError("ApprovalGroup", "name", name)
        group.name = name
    if "comment" in data:
        group.comment = data.get("comment") or ""
    if "rule_type" in data:
        if data["rule_type"] not in RULE_TYPES:
            raise ValidationError(
                f"rule_type must be one of: {', '.join(sorted(RULE_TYPES))}",
                details={"rule_type": data["rule_type"]},
            )
        group.rule_type = data["rule_type"]
    if "member_ids" in data:
        _set_members(group, _validate_members(data["member_ids"]))

    db.session.commit()
    logger.info("Approval group updated group_id=%s", group_id)
    return group.to_dict()


def delete_approval_group(group_id: int) -> None:
    group = get_approval_group(group_id)
    in_use = db.session.execute(
        select(Step.id).where(Step.approval_group_id == group_id).limit(1)
    ).first()
    if in_use:
        raise ConflictError(
            "ApprovalGroup", "id", str(group_id),
            message=f"ApprovalGroup id={group_id} is assigned to a step",
        )
    db.session.delete(group)
    db.session.commit()
    logger.info("Approval group deleted group_id=%s", group_id)
