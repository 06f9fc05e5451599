"""
Circuit authoring — circuits and the Status Registry.

Once a document is active on a circuit, authors may still add statuses and
steps, but edits that would change the meaning of a status a document has
entered (flags, deletion) are refused with ConflictError.  Steps are handled
in step_authoring.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import func, or_, select

from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.models import db
from docflow.models.circuit import APPROVAL_KIND_NONE, Circuit, Status, Step
from docflow.models.workflow import DocumentStatusCompletion, DocumentWorkflowState
from docflow.services.document_locks import circuit_lock
from docflow.utils.helpers import get_or_raise, parse_bool

logger = logging.getLogger(__name__)

_CIRCUIT_FIELDS = ("title", "description", "document_type")
_CIRCUIT_FLAGS = ("is_active", "allow_backtrack")
_STATUS_TEXT_FIELDS = ("title", "description")
_STATUS_FLAGS = ("is_initial", "is_final", "is_required", "is_flexible")

# Legacy naming convention for administrative checkpoints; read by the
# backfill command only.
_FLEXIBLE_KEYWORDS = re.compile(r"\b(flexible|any|free)\b", re.IGNORECASE)


# ── Code Generation ──────────────────────────────────────────────────────────


def generate_circuit_key() -> str:
    """Next circuit key: CR-0001, CR-0002, ... (globally unique)."""
    last = db.session.query(func.max(Circuit.id)).scalar() or 0
    return f"CR-{last + 1:04d}"


# ── Circuit CRUD ─────────────────────────────────────────────────────────────


def list_circuits(document_type: str | None = None, active_only: bool = False) -> list[dict]:
    q = select(Circuit)
    if document_type:
        q = q.where(Circuit.document_type == document_type)
    if active_only:
        q = q.where(Circuit.is_active.is_(True))
    circuits = db.session.execute(q.order_by(Circuit.id)).scalars().all()
    return [c.to_dict() for c in circuits]


def get_circuit(circuit_id: int, include_children: bool = True) -> dict:
    return get_or_raise(Circuit, circuit_id).to_dict(include_children=include_children)


def create_circuit(data: dict) -> dict:
    """Create a circuit.  New circuits start inactive unless ``is_active`` is sent.

    Raises:
        ValidationError: title missing.
    """
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    circuit = Circuit(
        circuit_key=generate_circuit_key(),
        title=title,
        description=data.get("description") or "",
        document_type=data.get("document_type"),
        is_active=parse_bool(data.get("is_active")),
        allow_backtrack=parse_bool(data.get("allow_backtrack")),
    )
    db.session.add(circuit)
    db.session.commit()
    logger.info("Circuit created id=%s key=%s", circuit.id, circuit.circuit_key,
                extra={"circuit_id": circuit.id})
    return circuit.to_dict()


def update_circuit(circuit_id: int, data: dict) -> dict:
    """Update circuit fields.

    Activating a circuit requires ``validate_circuit`` to pass.
    """
    circuit = get_or_raise(Circuit, circuit_id)
    if "title" in data and not (data.get("title") or "").strip():
        raise ValidationError("title cannot be empty", details={"title": "required"})

    for field in _CIRCUIT_FIELDS:
        if field in data:
            setattr(circuit, field, data[field])
    for field in _CIRCUIT_FLAGS:
        if field in data:
            setattr(circuit, field, parse_bool(data[field]))

    if "is_active" in data and circuit.is_active:
        report = validate_circuit(circuit_id)
        if not report["is_valid"]:
            db.session.rollback()
            raise ValidationError(
                f"Circuit id={circuit_id} cannot be activated",
                details={"errors": report["errors"]},
            )
    db.session.commit()
    logger.info("Circuit updated id=%s", circuit_id, extra={"circuit_id": circuit_id})
    return circuit.to_dict()


def circuit_has_documents(circuit_id: int) -> bool:
    return db.session.execute(
        select(DocumentWorkflowState.id)
        .where(DocumentWorkflowState.circuit_id == circuit_id).limit(1)
    ).first() is not None


def delete_circuit(circuit_id: int) -> None:
    circuit = get_or_raise(Circuit, circuit_id)
    if circuit_has_documents(circuit_id):
        raise ConflictError(
            "Circuit", "documents", str(circuit_id),
            message=f"Circuit id={circuit_id} has documents assigned and cannot be deleted",
        )
    db.session.delete(circuit)
    db.session.commit()
    logger.info("Circuit deleted id=%s", circuit_id, extra={"circuit_id": circuit_id})


# ── Status Registry ──────────────────────────────────────────────────────────


def list_statuses(circuit_id: int) -> list[dict]:
    circuit = get_or_raise(Circuit, circuit_id)
    return [s.to_dict() for s in circuit.statuses]


def status_in_use(status_id: int) -> bool:
    """True when a document sits on the status or has entered it."""
    current = db.session.execute(
        select(DocumentWorkflowState.id)
        .where(DocumentWorkflowState.current_status_id == status_id).limit(1)
    ).first()
    if current:
        return True
    entered = db.session.execute(
        select(DocumentStatusCompletion.id)
        .where(DocumentStatusCompletion.status_id == status_id).limit(1)
    ).first()
    return entered is not None


def _refuse_second_initial(circuit: Circuit, exclude_status_id: int | None = None) -> None:
    others = [s for s in circuit.statuses if s.is_initial and s.id != exclude_status_id]
    if others:
        raise ValidationError(
            f"Circuit id={circuit.id} already has an initial status",
            details={"initial_status_id": others[0].id},
        )


def _get_status(circuit_id: int, status_id: int) -> Status:
    status = db.session.get(Status, status_id)
    if status is None or status.circuit_id != circuit_id:
        raise NotFoundError(resource="Status", resource_id=status_id)
    return status


def add_status(circuit_id: int, data: dict) -> dict:
    """Add a status to a circuit.  Allowed even while documents are active."""
    with circuit_lock(circuit_id):
        circuit = get_or_raise(Circuit, circuit_id)
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required", details={"title": "required"})
        is_initial = parse_bool(data.get("is_initial"))
        if is_initial:
            _refuse_second_initial(circuit)

        status = Status(
            circuit_id=circuit.id,
            title=title,
            description=data.get("description") or "",
            is_initial=is_initial,
            is_final=parse_bool(data.get("is_final")),
            is_required=parse_bool(data.get("is_required"), default=True),
            is_flexible=parse_bool(data.get("is_flexible")),
        )
        circuit.statuses.append(status)
        db.session.flush()
        status.status_key = data.get("status_key") or f"{circuit.circuit_key or 'CR'}-S{status.id:03d}"
        db.session.commit()

    logger.info("Status added id=%s circuit_id=%s", status.id, circuit_id,
                extra={"circuit_id": circuit_id})
    return status.to_dict()


def update_status(circuit_id: int, status_id: int, data: dict) -> dict:
    """Edit a status.  Flags cannot change once a document has entered it."""
    with circuit_lock(circuit_id):
        status = _get_status(circuit_id, status_id)
        flag_changes = {
            f: parse_bool(data[f]) for f in _STATUS_FLAGS
            if f in data and parse_bool(data[f]) != getattr(status, f)
        }
        if flag_changes and status_in_use(status_id):
            raise ConflictError(
                "Status", "id", str(status_id),
                message=f"Status id={status_id} is referenced by active documents",
            )
        if flag_changes.get("is_initial"):
            _refuse_second_initial(status.circuit, exclude_status_id=status_id)
        if "title" in data and not (data.get("title") or "").strip():
            raise ValidationError("title cannot be empty", details={"title": "required"})

        for field in _STATUS_TEXT_FIELDS:
            if field in data:
                setattr(status, field, data[field] or "")
        for field, value in flag_changes.items():
            setattr(status, field, value)
        db.session.commit()

    logger.info("Status updated id=%s circuit_id=%s", status_id, circuit_id,
                extra={"circuit_id": circuit_id})
    return status.to_dict()


def delete_status(circuit_id: int, status_id: int) -> None:
    """Delete a status and the steps leading to or from it."""
    with circuit_lock(circuit_id):
        status = _get_status(circuit_id, status_id)
        if status_in_use(status_id):
            raise ConflictError(
                "Status", "id", str(status_id),
                message=f"Status id={status_id} is referenced by active documents",
            )
        steps = db.session.execute(
            select(Step).where(
                or_(Step.current_status_id == status_id, Step.next_status_id == status_id)
            )
        ).scalars().all()
        for step in steps:
            db.session.delete(step)
        db.session.delete(status)
        db.session.commit()

    logger.info("Status deleted id=%s circuit_id=%s (steps removed=%d)",
                status_id, circuit_id, len(steps), extra={"circuit_id": circuit_id})


# ── Validation report ────────────────────────────────────────────────────────


def validate_circuit(circuit_id: int) -> dict:
    """Structural report for a circuit.

    Errors make the circuit invalid; warnings (gated steps without an
    approver, unreachable statuses) do not.
    """
    circuit = get_or_raise(Circuit, circuit_id)
    statuses = list(circuit.statuses)
    steps = list(circuit.steps)
    status_ids = {s.id for s in statuses}
    initials = [s for s in statuses if s.is_initial]

    errors: list[str] = []
    warnings: list[str] = []

    checks = {
        "has_statuses": bool(statuses),
        "has_initial_status": bool(initials),
        "single_initial_status": len(initials) == 1,
        "has_final_status": any(s.is_final for s in statuses),
        "has_steps": bool(steps) or any(s.is_flexible for s in statuses),
    }
    if not checks["has_statuses"]:
        errors.append("Circuit has no statuses")
    if not checks["has_initial_status"]:
        errors.append("Circuit has no initial status")
    elif not checks["single_initial_status"]:
        errors.append(f"Circuit has {len(initials)} initial statuses; exactly one is required")
    if not checks["has_final_status"]:
        errors.append("Circuit has no final status")
    if not checks["has_steps"]:
        errors.append("Circuit has no steps")

    for step in steps:
        if step.current_status_id not in status_ids or step.next_status_id not in status_ids:
            errors.append(f"Step id={step.id} references a status outside the circuit")
        if step.requires_approval and step.approver_id is None and step.approval_group_id is None:
            warnings.append(f"Step id={step.id} requires approval but has no approver or group")
        elif step.requires_approval and step.approval_group is not None \
                and not step.approval_group.members:
            warnings.append(f"Step id={step.id} is gated by an empty approval group")
        elif not step.requires_approval and step.approval_kind != APPROVAL_KIND_NONE:
            errors.append(f"Step id={step.id} has approval kind {step.approval_kind} "
                          "but does not require approval")

    if len(initials) == 1 and not any(s.is_flexible for s in statuses):
        reached = {initials[0].id}
        frontier = [initials[0].id]
        while frontier:
            sid = frontier.pop()
            for step in steps:
                if step.current_status_id == sid and step.next_status_id not in reached:
                    reached.add(step.next_status_id)
                    frontier.append(step.next_status_id)
        for s in statuses:
            if s.id not in reached:
                warnings.append(f"Status id={s.id} ({s.title}) is unreachable from the initial status")

    return {
        "circuit_id": circuit.id,
        **checks,
        "errors": errors,
        "warnings": warnings,
        "is_valid": not errors,
    }


# ── Migration helper ─────────────────────────────────────────────────────────


def backfill_flexible_statuses(dry_run: bool = False) -> list[int]:
    """Set ``is_flexible`` on statuses whose title or key carries a legacy keyword.

    Returns the ids of the statuses flagged (or that would be flagged).
    """
    candidates = db.session.execute(
        select(Status).where(Status.is_flexible.is_(False)).order_by(Status.id)
    ).scalars().all()
    flagged = [
        s for s in candidates
        if _FLEXIBLE_KEYWORDS.search(s.title or "") or _FLEXIBLE_KEYWORDS.search(s.status_key or "")
    ]
    if not dry_run:
        for status in flagged:
            status.is_flexible = True
        db.session.commit()
    logger.info("Flexible status backfill flagged=%d dry_run=%s", len(flagged), dry_run)
    return [s.id for s in flagged]
