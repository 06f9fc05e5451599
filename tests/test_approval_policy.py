"""
Approval policy unit tests.

Tests cover:
  - Quorum evaluation for individual, All, Any and Sequential targets
  - Turn order (only Sequential restricts it)
  - Resolving a gated step into an approval target
"""
from types import SimpleNamespace

import pytest

from conftest import make_approver, make_circuit, make_group, make_status, make_step
from docflow.core.exceptions import ValidationError
from docflow.core.results import ApprovalOutcome, ApprovalTarget
from docflow.models.approval import RULE_ALL, RULE_ANY, RULE_SEQUENTIAL
from docflow.services.approval_policy import (
    check_turn,
    evaluate,
    next_in_turn,
    resolve_step_target,
)


def _r(approver_id, decision):
    return SimpleNamespace(approver_id=approver_id, decision=decision)


def _group(rule, members=(1, 2, 3)):
    return ApprovalTarget(kind="group", group_id=9, rule_type=rule, member_ids=tuple(members))


INDIVIDUAL = ApprovalTarget(kind="individual", approver_id=5, member_ids=(5,))


# ═════════════════════════════════════════════════════════════════════════
# QUORUM EVALUATION
# ═════════════════════════════════════════════════════════════════════════

class TestEvaluateIndividual:
    def test_no_response_is_open(self):
        assert evaluate(INDIVIDUAL, []) is ApprovalOutcome.OPEN

    def test_approve(self):
        assert evaluate(INDIVIDUAL, [_r(5, "approve")]) is ApprovalOutcome.APPROVED

    def test_reject(self):
        assert evaluate(INDIVIDUAL, [_r(5, "reject")]) is ApprovalOutcome.REJECTED

    def test_outsider_response_ignored(self):
        assert evaluate(INDIVIDUAL, [_r(6, "approve")]) is ApprovalOutcome.OPEN


class TestEvaluateAll:
    def test_partial_approval_stays_open(self):
        target = _group(RULE_ALL)
        assert evaluate(target, [_r(1, "approve"), _r(2, "approve")]) is ApprovalOutcome.OPEN

    def test_every_member_approves(self):
        target = _group(RULE_ALL)
        responses = [_r(3, "approve"), _r(1, "approve"), _r(2, "approve")]
        assert evaluate(target, responses) is ApprovalOutcome.APPROVED

    def test_single_rejection_rejects(self):
        target = _group(RULE_ALL)
        assert evaluate(target, [_r(1, "approve"), _r(2, "reject")]) is ApprovalOutcome.REJECTED


class TestEvaluateAny:
    def test_first_approval_approves(self):
        assert evaluate(_group(RULE_ANY), [_r(2, "approve")]) is ApprovalOutcome.APPROVED

    def test_rejection_needs_every_member(self):
        target = _group(RULE_ANY)
        assert evaluate(target, [_r(1, "reject"), _r(2, "reject")]) is ApprovalOutcome.OPEN
        responses = [_r(1, "reject"), _r(2, "reject"), _r(3, "reject")]
        assert evaluate(target, responses) is ApprovalOutcome.REJECTED


class TestEvaluateSequential:
    def test_approved_when_last_member_approves(self):
        target = _group(RULE_SEQUENTIAL, (1, 2))
        assert evaluate(target, [_r(1, "approve")]) is ApprovalOutcome.OPEN
        assert evaluate(target, [_r(1, "approve"), _r(2, "approve")]) is ApprovalOutcome.APPROVED

    def test_any_rejection_rejects(self):
        target = _group(RULE_SEQUENTIAL, (1, 2))
        assert evaluate(target, [_r(1, "reject")]) is ApprovalOutcome.REJECTED

    def test_first_decision_per_member_wins(self):
        target = _group(RULE_SEQUENTIAL, (1, 2))
        responses = [_r(1, "approve"), _r(1, "reject"), _r(2, "approve")]
        assert evaluate(target, responses) is ApprovalOutcome.APPROVED


def test_unknown_rule_raises():
    with pytest.raises(ValidationError):
        evaluate(_group("Majority"), [_r(1, "approve")])


# ═════════════════════════════════════════════════════════════════════════
# TURN ORDER
# ═════════════════════════════════════════════════════════════════════════

class TestCheckTurn:
    def test_sequential_waits_for_predecessors(self):
        target = _group(RULE_SEQUENTIAL)
        assert check_turn(target, [], 1) is True
        assert check_turn(target, [], 2) is False
        assert check_turn(target, [_r(1, "approve")], 2) is True
        assert check_turn(target, [_r(1, "approve")], 3) is False

    def test_next_in_turn(self):
        target = _group(RULE_SEQUENTIAL)
        assert next_in_turn(target, [_r(1, "approve")]) == 2
        assert next_in_turn(target, [_r(1, "approve"), _r(2, "approve"), _r(3, "approve")]) is None

    def test_all_and_any_have_no_order(self):
        assert check_turn(_group(RULE_ALL), [], 3) is True
        assert check_turn(_group(RULE_ANY), [], 2) is True

    def test_non_member_never_has_a_turn(self):
        assert check_turn(_group(RULE_ANY), [], 42) is False
        assert check_turn(INDIVIDUAL, [], 6) is False


# ═════════════════════════════════════════════════════════════════════════
# STEP RESOLUTION
# ═════════════════════════════════════════════════════════════════════════

class TestResolveStepTarget:
    def _statuses(self):
        c = make_circuit()
        return c, make_status(c, "Draft", is_initial=True), make_status(c, "Review")

    def test_individual(self):
        c, a, b = self._statuses()
        boss = make_approver(11)
        target = resolve_step_target(make_step(c, a, b, approver=boss))
        assert target.kind == "individual"
        assert target.member_ids == (boss.id,)
        assert target.approver_id == boss.id

    def test_group_keeps_member_order(self):
        c, a, b = self._statuses()
        first, second = make_approver(21), make_approver(22)
        group = make_group("Finance", RULE_SEQUENTIAL, [second, first])
        target = resolve_step_target(make_step(c, a, b, group=group))
        assert target.kind == "group"
        assert target.rule_type == RULE_SEQUENTIAL
        assert target.member_ids == (second.id, first.id)

    def test_ungated_step_rejected(self):
        c, a, b = self._statuses()
        with pytest.raises(ValidationError):
            resolve_step_target(make_step(c, a, b))

    def test_empty_group_rejected(self):
        c, a, b = self._statuses()
        group = make_group("Empty", RULE_ALL, [])
        with pytest.raises(ValidationError):
            resolve_step_target(make_step(c, a, b, group=group))
