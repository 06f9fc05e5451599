"""Tests for the transition planner (legal next statuses of a document)."""

from types import SimpleNamespace

from conftest import make_approver, make_circuit, make_status, make_step
from docflow.services.transition_planner import find_candidate, plan_transitions


def _at(status):
    return SimpleNamespace(current_status_id=status.id)


def test_outgoing_steps_in_step_order():
    c = make_circuit()
    draft = make_status(c, "Draft", is_initial=True)
    review = make_status(c, "Review")
    rejected = make_status(c, "Rejected")
    make_step(c, draft, rejected)
    make_step(c, draft, review)

    candidates = plan_transitions(_at(draft), c)

    assert [x.next_status_id for x in candidates] == [rejected.id, review.id]
    assert [x.title for x in candidates] == ["Rejected", "Review"]
    assert all(not x.requires_approval for x in candidates)


def test_gated_step_is_flagged():
    c = make_circuit()
    review = make_status(c, "Review", is_initial=True)
    approved = make_status(c, "Approved")
    boss = make_approver(7)
    step = make_step(c, review, approved, approver=boss)

    [candidate] = plan_transitions(_at(review), c)

    assert candidate.requires_approval is True
    assert candidate.step_id == step.id


def test_no_outgoing_steps_returns_empty_list():
    c = make_circuit()
    draft = make_status(c, "Draft", is_initial=True)
    done = make_status(c, "Done", is_final=True)
    make_step(c, draft, done)

    assert plan_transitions(_at(done), c) == []


def test_unknown_current_status_returns_empty_list():
    c = make_circuit()
    make_status(c, "Draft", is_initial=True)

    assert plan_transitions(SimpleNamespace(current_status_id=99999), c) == []


def test_flexible_status_offers_every_other_status():
    c = make_circuit()
    draft = make_status(c, "Draft", is_initial=True)
    admin = make_status(c, "Admin hold", is_flexible=True)
    review = make_status(c, "Review")
    approved = make_status(c, "Approved", is_final=True)
    boss = make_approver(8)
    gated = make_step(c, admin, approved, approver=boss)

    candidates = plan_transitions(_at(admin), c)

    assert [x.next_status_id for x in candidates] == [draft.id, review.id, approved.id]
    by_target = {x.next_status_id: x for x in candidates}
    assert by_target[approved.id].requires_approval is True
    assert by_target[approved.id].step_id == gated.id
    assert by_target[draft.id].requires_approval is False
    assert by_target[draft.id].step_id is None


def test_flexible_flag_not_inferred_from_title():
    c = make_circuit()
    free = make_status(c, "Free move (any)", is_initial=True)
    other = make_status(c, "Other")
    make_status(c, "Unreachable")
    make_step(c, free, other)

    candidates = plan_transitions(_at(free), c)

    assert [x.next_status_id for x in candidates] == [other.id]


def test_find_candidate():
    c = make_circuit()
    draft = make_status(c, "Draft", is_initial=True)
    review = make_status(c, "Review")
    make_step(c, draft, review)
    candidates = plan_transitions(_at(draft), c)

    assert find_candidate(candidates, review.id).next_status_id == review.id
    assert find_candidate(candidates, draft.id) is None
