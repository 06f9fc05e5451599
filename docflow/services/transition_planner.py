"""
Transition Planner — computes the legal next statuses of a document.

Rules:
    - Flexible current status: every other status of the circuit, in status
      order.  A matching Step (same current → next pair) supplies its approval
      requirement; without one the move is ungated.
    - Otherwise: the Steps leaving the current status, in step order, with
      duplicate targets collapsed to the first Step.
    - Nothing matches: empty list (terminal-style state, not an error).

Read-only; never touches the session beyond lazy relationship loads.
"""

from __future__ import annotations

import logging

from docflow.core.results import TransitionCandidate
from docflow.models.circuit import Circuit

logger = logging.getLogger(__name__)


def plan_transitions(state, circuit: Circuit) -> list[TransitionCandidate]:
    """Return the candidate moves for ``state`` within ``circuit``.

    ``state`` is anything exposing ``current_status_id`` (normally a
    DocumentWorkflowState).
    """
    statuses = sorted(circuit.statuses, key=lambda s: s.id)
    steps = sorted(circuit.steps, key=lambda s: s.id)
    current_id = state.current_status_id

    current = next((s for s in statuses if s.id == current_id), None)
    if current is None:
        logger.warning(
            "Current status id=%s not in circuit id=%s", current_id, circuit.id,
            extra={"circuit_id": circuit.id},
        )
        return []

    outgoing = [st for st in steps if st.current_status_id == current_id]

    if current.is_flexible:
        by_target = {}
        for st in outgoing:
            by_target.setdefault(st.next_status_id, st)
        candidates = []
        for status in statuses:
            if status.id == current_id:
                continue
            step = by_target.get(status.id)
            candidates.append(TransitionCandidate(
                next_status_id=status.id,
                title=status.title,
                requires_approval=bool(step and step.requires_approval),
                step_id=step.id if step else None,
            ))
        return candidates

    titles = {s.id: s.title for s in statuses}
    seen: set[int] = set()
    candidates = []
    for st in outgoing:
        if st.next_status_id in seen:
            continue
        seen.add(st.next_status_id)
        candidates.append(TransitionCandidate(
            next_status_id=st.next_status_id,
            title=titles.get(st.next_status_id, ""),
            requires_approval=bool(st.requires_approval),
            step_id=st.id,
        ))
    return candidates


def find_candidate(candidates: list[TransitionCandidate], target_status_id: int):
    """Return the candidate for ``target_status_id`` or None."""
    for c in candidates:
        if c.next_status_id == target_status_id:
            return c
    return None
