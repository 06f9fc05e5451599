"""
Workflow Authoring Validator — creating, editing and deleting Steps.

validate_new_step check order (first failure wins):
    INVALID_TRANSITION        self-loop, or a status outside the circuit
    DUPLICATE_TRANSITION      (circuit, current, next) already exists
    APPROVER_NOT_REGISTERED   user_id given but never registered as approver
    INVALID_APPROVAL_CONFIG   gated without approver/group, both set, unknown
                              approver/group, empty group, or approver/group
                              set on an ungated step

The interactive check (validate_new_step / step_exists) is advisory.
commit_step repeats it under circuit_lock right before the insert, and the
unique constraint on steps turns a racing insert from another process into
DUPLICATE_TRANSITION.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from docflow.core.exceptions import ConflictError, NotFoundError
from docflow.core.results import StepValidation, WorkflowErrorCode
from docflow.models import db
from docflow.models.approval import REQUEST_OPEN, ApprovalGroup, ApprovalRequest, Approver
from docflow.models.circuit import (
    APPROVAL_KIND_GROUP,
    APPROVAL_KIND_INDIVIDUAL,
    APPROVAL_KIND_NONE,
    Circuit,
    Status,
    Step,
)
from docflow.models.workflow import DocumentWorkflowState
from docflow.services.approver_directory import resolve_approver_id
from docflow.services.document_locks import circuit_lock
from docflow.utils.helpers import get_or_raise, parse_bool

logger = logging.getLogger(__name__)

_STEP_TEXT_FIELDS = ("title", "description")


def _invalid(code: WorkflowErrorCode, message: str, **details) -> StepValidation:
    return StepValidation(code=code, message=message, details=details)


def step_exists(circuit_id: int, current_status_id: int, next_status_id: int,
                exclude_step_id: int | None = None) -> bool:
    """Advisory duplicate check for interactive authoring."""
    q = select(Step.id).where(
        Step.circuit_id == circuit_id,
        Step.current_status_id == current_status_id,
        Step.next_status_id == next_status_id,
    )
    if exclude_step_id is not None:
        q = q.where(Step.id != exclude_step_id)
    return db.session.execute(q.limit(1)).first() is not None


def _check_approval_config(config: dict) -> StepValidation:
    requires = parse_bool(config.get("requires_approval"))
    approver_id = config.get("approver_id")
    group_id = config.get("approval_group_id")
    user_id = config.get("user_id")

    if user_id is not None:
        resolved = resolve_approver_id(user_id)
        if resolved is None:
            return _invalid(
                WorkflowErrorCode.APPROVER_NOT_REGISTERED,
                f"User id={user_id} is not registered as an approver",
                user_id=user_id,
            )
        if approver_id is not None and approver_id != resolved:
            return _invalid(
                WorkflowErrorCode.INVALID_APPROVAL_CONFIG,
                "user_id and approver_id refer to different approvers",
                user_id=user_id, approver_id=approver_id,
            )
        approver_id = resolved

    if not requires:
        if approver_id is not None or group_id is not None:
            return _invalid(
                WorkflowErrorCode.INVALID_APPROVAL_CONFIG,
                "An approver or group is set but requires_approval is false",
                approver_id=approver_id, approval_group_id=group_id,
            )
        return StepValidation(details={
            "requires_approval": False,
            "approval_kind": APPROVAL_KIND_NONE,
            "approver_id": None,
            "approval_group_id": None,
        })

    if approver_id is not None and group_id is not None:
        return _invalid(
            WorkflowErrorCode.INVALID_APPROVAL_CONFIG,
            "Set either an approver or an approval group, not both",
            approver_id=approver_id, approval_group_id=group_id,
        )
    if approver_id is None and group_id is None:
        return _invalid(
            WorkflowErrorCode.INVALID_APPROVAL_CONFIG,
            "requires_approval is true but no approver or approval group is set",
        )

    if approver_id is not None:
        if db.session.get(Approver, approver_id) is None:
            return _invalid(
                WorkflowErrorCode.INVALID_APPROVAL_CONFIG,
                f"Approver id={approver_id} does not exist",
                approver_id=approver_id,
            )
        return StepValidation(details={
            "requires_approval": True,
            "approval_kind": APPROVAL_KIND_INDIVIDUAL,
            "approver_id": approver_id,
            "approval_group_id": None,
        })

    group = db.session.get(ApprovalGroup, group_id)
    if group is None:
        return _invalid(
            WorkflowErrorCode.INVALID_APPROVAL_CONFIG,
            f"Approval group id={group_id} does not exist",
            approval_group_id=group_id,
        )
    if not group.members:
        return _invalid(
            WorkflowErrorCode.INVALID_APPROVAL_CONFIG,
            f"Approval group id={group_id} has no members",
            approval_group_id=group_id,
        )
    return StepValidation(details={
        "requires_approval": True,
        "approval_kind": APPROVAL_KIND_GROUP,
        "approver_id": None,
        "approval_group_id": group_id,
    })


def validate_new_step(circuit_id: int, current_status_id: int, next_status_id: int,
                      approval_config: dict | None = None,
                      exclude_step_id: int | None = None) -> StepValidation:
    """Validate a proposed step.

    On success ``details`` holds the normalised approval configuration
    (requires_approval, approval_kind, approver_id, approval_group_id).

    Raises:
        NotFoundError: circuit missing.
    """
    circuit = get_or_raise(Circuit, circuit_id)

    if current_status_id is None or next_status_id is None:
        return _invalid(
            WorkflowErrorCode.INVALID_TRANSITION,
            "current_status_id and next_status_id are required",
        )
    if current_status_id == next_status_id:
        return _invalid(
            WorkflowErrorCode.INVALID_TRANSITION,
            "A step cannot lead back to its own status",
            current_status_id=current_status_id,
        )
    for sid in (current_status_id, next_status_id):
        status = db.session.get(Status, sid)
        if status is None or status.circuit_id != circuit.id:
            return _invalid(
                WorkflowErrorCode.INVALID_TRANSITION,
                f"Status id={sid} does not belong to circuit id={circuit.id}",
                status_id=sid,
            )

    if step_exists(circuit.id, current_status_id, next_status_id, exclude_step_id):
        return _invalid(
            WorkflowErrorCode.DUPLICATE_TRANSITION,
            "A step with this transition already exists in the circuit",
            circuit_id=circuit.id,
            current_status_id=current_status_id,
            next_status_id=next_status_id,
        )

    return _check_approval_config(approval_config or {})


def _approval_config(data: dict) -> dict:
    return {
        "requires_approval": data.get("requires_approval"),
        "approver_id": data.get("approver_id"),
        "approval_group_id": data.get("approval_group_id"),
        "user_id": data.get("user_id"),
    }


def commit_step(circuit_id: int, data: dict) -> tuple[dict | None, StepValidation]:
    """Validate and insert a step atomically with respect to other authors.

    Body: {current_status_id, next_status_id, title?, description?,
           requires_approval?, approver_id?, approval_group_id?, user_id?}

    Returns:
        (step_dict, validation) on success.
        (None, validation) when validation fails; nothing is written.
    """
    current_status_id = data.get("current_status_id")
    next_status_id = data.get("next_status_id")

    with circuit_lock(circuit_id):
        validation = validate_new_step(
            circuit_id, current_status_id, next_status_id, _approval_config(data),
        )
        if not validation.ok:
            logger.info("Step rejected circuit_id=%s code=%s", circuit_id,
                        validation.code.value, extra={"circuit_id": circuit_id})
            return None, validation

        cfg = validation.details
        step = Step(
            circuit_id=circuit_id,
            current_status_id=current_status_id,
            next_status_id=next_status_id,
            title=(data.get("title") or "").strip(),
            description=data.get("description") or "",
            requires_approval=cfg["requires_approval"],
            approval_kind=cfg["approval_kind"],
            approver_id=cfg["approver_id"],
            approval_group_id=cfg["approval_group_id"],
        )
        db.session.add(step)
        try:
            db.session.flush()
            step.step_key = f"ST-{step.id:04d}"
            if not step.title:
                step.title = f"{step.current_status.title} → {step.next_status.title}"
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.warning("Duplicate step insert lost the race circuit_id=%s %s->%s",
                           circuit_id, current_status_id, next_status_id,
                           extra={"circuit_id": circuit_id})
            return None, _invalid(
                WorkflowErrorCode.DUPLICATE_TRANSITION,
                "A step with this transition already exists in the circuit",
                circuit_id=circuit_id,
                current_status_id=current_status_id,
                next_status_id=next_status_id,
            )

    logger.info("Step created step_id=%s circuit_id=%s %s->%s kind=%s",
                step.id, circuit_id, current_status_id, next_status_id,
                step.approval_kind, extra={"circuit_id": circuit_id})
    return step.to_dict(), validation


# ── Edit / delete ────────────────────────────────────────────────────────────


def step_in_use(step_id: int) -> bool:
    """True when a document currently sits on the step or awaits approval on it."""
    on_step = db.session.execute(
        select(DocumentWorkflowState.id)
        .where(DocumentWorkflowState.current_step_id == step_id).limit(1)
    ).first()
    if on_step:
        return True
    pending = db.session.execute(
        select(ApprovalRequest.id).where(
            ApprovalRequest.step_id == step_id,
            ApprovalRequest.state == REQUEST_OPEN,
        ).limit(1)
    ).first()
    return pending is not None


def step_has_approval_history(step_id: int) -> bool:
    """True when any approval request, open or closed, was raised on the step."""
    return db.session.execute(
        select(ApprovalRequest.id).where(ApprovalRequest.step_id == step_id).limit(1)
    ).first() is not None


def _get_step(circuit_id: int, step_id: int) -> Step:
    step = db.session.get(Step, step_id)
    if step is None or step.circuit_id != circuit_id:
        raise NotFoundError(resource="Step", resource_id=step_id)
    return step


def update_step(circuit_id: int, step_id: int, data: dict) -> tuple[dict | None, StepValidation]:
    """Edit a step; the edited transition is re-validated excluding itself.

    Only title/description may change while the step is in use.
    """
    with circuit_lock(circuit_id):
        step = _get_step(circuit_id, step_id)
        structural = [k for k in data if k not in _STEP_TEXT_FIELDS]
        if structural and step_in_use(step_id):
            raise ConflictError(
                "Step", "id", str(step_id),
                message=f"Step id={step_id} is in use by active documents",
            )

        merged = {
            "current_status_id": data.get("current_status_id", step.current_status_id),
            "next_status_id": data.get("next_status_id", step.next_status_id),
            "requires_approval": data.get("requires_approval", step.requires_approval),
            "approver_id": data.get("approver_id", step.approver_id),
            "approval_group_id": data.get("approval_group_id", step.approval_group_id),
            "user_id": data.get("user_id"),
        }
        # dropping the gate clears the approver unless one is explicitly given
        if "requires_approval" in data and not parse_bool(data["requires_approval"]):
            if "approver_id" not in data:
                merged["approver_id"] = None
            if "approval_group_id" not in data:
                merged["approval_group_id"] = None
        # switching kind replaces the other target
        if data.get("approver_id") is not None and "approval_group_id" not in data:
            merged["approval_group_id"] = None
        if data.get("approval_group_id") is not None and "approver_id" not in data:
            merged["approver_id"] = None
        if data.get("user_id") is not None and "approval_group_id" not in data:
            merged["approval_group_id"] = None
            if "approver_id" not in data:
                merged["approver_id"] = None

        validation = validate_new_step(
            circuit_id, merged["current_status_id"], merged["next_status_id"],
            _approval_config(merged), exclude_step_id=step_id,
        )
        if not validation.ok:
            return None, validation

        cfg = validation.details
        step.current_status_id = merged["current_status_id"]
        step.next_status_id = merged["next_status_id"]
        step.requires_approval = cfg["requires_approval"]
        step.approval_kind = cfg["approval_kind"]
        step.approver_id = cfg["approver_id"]
        step.approval_group_id = cfg["approval_group_id"]
        for field in _STEP_TEXT_FIELDS:
            if field in data:
                setattr(step, field, data[field] or "")
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return None, _invalid(
                WorkflowErrorCode.DUPLICATE_TRANSITION,
                "A step with this transition already exists in the circuit",
                circuit_id=circuit_id,
            )

    logger.info("Step updated step_id=%s circuit_id=%s", step_id, circuit_id,
                extra={"circuit_id": circuit_id})
    return step.to_dict(), validation


def delete_step(circuit_id: int, step_id: int) -> None:
    with circuit_lock(circuit_id):
        step = _get_step(circuit_id, step_id)
        if step_in_use(step_id):
            raise ConflictError(
                "Step", "id", str(step_id),
                message=f"Step id={step_id} is in use by active documents",
            )
        # approval requests and responses are an append-only trail
        if step_has_approval_history(step_id):
            raise ConflictError(
                "Step", "id", str(step_id),
                message=f"Step id={step_id} has approval history and cannot be deleted",
            )
        db.session.delete(step)
        db.session.commit()
    logger.info("Step deleted step_id=%s circuit_id=%s", step_id, circuit_id,
                extra={"circuit_id": circuit_id})


def list_steps(circuit_id: int) -> list[dict]:
    get_or_raise(Circuit, circuit_id)
    steps = db.session.execute(
        select(Step).where(Step.circuit_id == circuit_id).order_by(Step.id)
    ).scalars().all()
    return [s.to_dict() for s in steps]

