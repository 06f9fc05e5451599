"""
Step authoring tests.

Tests cover:
  - Duplicate transitions within and across circuits
  - Structural refusals: self-loop, foreign status
  - Approval configuration validation and user → approver resolution
  - Editing (re-validation excludes the step itself) and in-use protection
"""
import pytest

from conftest import make_approver, make_circuit, make_group, make_status, make_step
from docflow.core.exceptions import ConflictError, NotFoundError
from docflow.core.results import WorkflowErrorCode
from docflow.models import db
from docflow.models.approval import RULE_ALL
from docflow.models.circuit import Step
from docflow.services import approval_gate as gate
from docflow.services import step_authoring as authoring
from docflow.services import workflow_service as wf


@pytest.fixture()
def abc():
    """Circuit with statuses A (initial), B, C and no steps."""
    c = make_circuit()
    a = make_status(c, "A", is_initial=True)
    b = make_status(c, "B")
    cc = make_status(c, "C")
    db.session.commit()
    return c, a, b, cc


def _code(validation):
    return validation.code


# ═════════════════════════════════════════════════════════════════════════
# DUPLICATES & STRUCTURE
# ═════════════════════════════════════════════════════════════════════════

class TestValidateNewStep:
    def test_valid_ungated_step(self, abc):
        c, a, b, _ = abc
        v = authoring.validate_new_step(c.id, a.id, b.id)
        assert v.ok
        assert v.details["approval_kind"] == "none"

    def test_duplicate_transition(self, abc):
        c, a, b, cc = abc
        make_step(c, a, b)
        db.session.commit()

        assert _code(authoring.validate_new_step(c.id, a.id, b.id)) is \
            WorkflowErrorCode.DUPLICATE_TRANSITION
        assert authoring.validate_new_step(c.id, a.id, cc.id).ok
        assert authoring.step_exists(c.id, a.id, b.id) is True
        assert authoring.step_exists(c.id, a.id, cc.id) is False

    def test_same_pair_allowed_in_another_circuit(self, abc):
        c, a, b, _ = abc
        make_step(c, a, b)
        other = make_circuit("Other")
        x = make_status(other, "X", is_initial=True)
        y = make_status(other, "Y")
        db.session.commit()

        assert authoring.validate_new_step(other.id, x.id, y.id).ok

    def test_self_loop(self, abc):
        c, a, _, _ = abc
        assert _code(authoring.validate_new_step(c.id, a.id, a.id)) is \
            WorkflowErrorCode.INVALID_TRANSITION

    def test_status_from_another_circuit(self, abc):
        c, a, _, _ = abc
        other = make_circuit("Other")
        foreign = make_status(other, "Foreign")
        db.session.commit()
        v = authoring.validate_new_step(c.id, a.id, foreign.id)
        assert v.code is WorkflowErrorCode.INVALID_TRANSITION
        assert v.details["status_id"] == foreign.id

    def test_missing_circuit(self):
        with pytest.raises(NotFoundError):
            authoring.validate_new_step(999, 1, 2)


class TestApprovalConfig:
    def test_gated_without_target(self, abc):
        c, a, b, _ = abc
        v = authoring.validate_new_step(c.id, a.id, b.id, {"requires_approval": True})
        assert v.code is WorkflowErrorCode.INVALID_APPROVAL_CONFIG

    def test_both_approver_and_group(self, abc):
        c, a, b, _ = abc
        boss = make_approver(1)
        group = make_group("G", RULE_ALL, [boss])
        v = authoring.validate_new_step(c.id, a.id, b.id, {
            "requires_approval": True, "approver_id": boss.id, "approval_group_id": group.id,
        })
        assert v.code is WorkflowErrorCode.INVALID_APPROVAL_CONFIG

    def test_approver_on_ungated_step(self, abc):
        c, a, b, _ = abc
        boss = make_approver(1)
        v = authoring.validate_new_step(c.id, a.id, b.id, {"approver_id": boss.id})
        assert v.code is WorkflowErrorCode.INVALID_APPROVAL_CONFIG

    def test_empty_group(self, abc):
        c, a, b, _ = abc
        group = make_group("Empty", RULE_ALL, [])
        v = authoring.validate_new_step(c.id, a.id, b.id, {
            "requires_approval": True, "approval_group_id": group.id,
        })
        assert v.code is WorkflowErrorCode.INVALID_APPROVAL_CONFIG

    def test_unregistered_user(self, abc):
        c, a, b, _ = abc
        v = authoring.validate_new_step(c.id, a.id, b.id, {
            "requires_approval": True, "user_id": 4242,
        })
        assert v.code is WorkflowErrorCode.APPROVER_NOT_REGISTERED

    def test_user_resolved_to_approver_id(self, abc):
        c, a, b, _ = abc
        boss = make_approver(4242)
        v = authoring.validate_new_step(c.id, a.id, b.id, {
            "requires_approval": True, "user_id": 4242,
        })
        assert v.ok
        assert v.details["approver_id"] == boss.id
        assert v.details["approval_kind"] == "individual"


# ═════════════════════════════════════════════════════════════════════════
# COMMIT / UPDATE / DELETE
# ═════════════════════════════════════════════════════════════════════════

class TestCommitStep:
    def test_commit_assigns_key_and_default_title(self, abc):
        c, a, b, _ = abc
        step, v = authoring.commit_step(c.id, {"current_status_id": a.id, "next_status_id": b.id})
        assert v.ok
        assert step["step_key"] == f"ST-{step['id']:04d}"
        assert step["title"] == "A → B"

    def test_commit_duplicate_writes_nothing(self, abc):
        c, a, b, _ = abc
        authoring.commit_step(c.id, {"current_status_id": a.id, "next_status_id": b.id})

        step, v = authoring.commit_step(c.id, {"current_status_id": a.id, "next_status_id": b.id})

        assert step is None
        assert v.code is WorkflowErrorCode.DUPLICATE_TRANSITION
        assert db.session.query(Step).filter_by(circuit_id=c.id).count() == 1

    def test_commit_gated_by_group(self, abc):
        c, a, b, _ = abc
        group = make_group("Finance", RULE_ALL, [make_approver(1), make_approver(2)])
        db.session.commit()
        step, v = authoring.commit_step(c.id, {
            "current_status_id": a.id, "next_status_id": b.id,
            "requires_approval": True, "approval_group_id": group.id,
        })
        assert step["approval_kind"] == "group"
        assert step["approval_group_id"] == group.id
        assert step["requires_approval"] is True


class TestUpdateAndDelete:
    def test_update_revalidates_excluding_itself(self, abc):
        c, a, b, cc = abc
        s1 = make_step(c, a, b)
        make_step(c, a, cc)
        db.session.commit()

        step, v = authoring.update_step(c.id, s1.id, {"title": "Submit"})
        assert v.ok and step["title"] == "Submit"

        step, v = authoring.update_step(c.id, s1.id, {"next_status_id": cc.id})
        assert step is None
        assert v.code is WorkflowErrorCode.DUPLICATE_TRANSITION

    def test_switch_from_approver_to_group(self, abc):
        c, a, b, _ = abc
        boss = make_approver(1)
        group = make_group("G", RULE_ALL, [boss])
        s1 = make_step(c, a, b, approver=boss)
        db.session.commit()

        step, v = authoring.update_step(c.id, s1.id, {"approval_group_id": group.id})

        assert v.ok
        assert step["approver_id"] is None
        assert step["approval_group_id"] == group.id

    def test_structural_edit_refused_while_in_use(self, linear_circuit):
        wf.assign_document(5, linear_circuit.circuit.id)
        wf.attempt_move(5, linear_circuit.review.id)
        step = linear_circuit.steps[0]

        with pytest.raises(ConflictError):
            authoring.update_step(linear_circuit.circuit.id, step.id,
                                  {"next_status_id": linear_circuit.approved.id})
        with pytest.raises(ConflictError):
            authoring.delete_step(linear_circuit.circuit.id, step.id)

        updated, v = authoring.update_step(linear_circuit.circuit.id, step.id,
                                           {"description": "still editable"})
        assert updated["description"] == "still editable"

    def test_delete_step(self, abc):
        c, a, b, _ = abc
        s1 = make_step(c, a, b)
        db.session.commit()

        authoring.delete_step(c.id, s1.id)

        assert authoring.list_steps(c.id) == []

    def test_delete_refused_when_step_has_closed_requests(self, abc):
        c, a, b, _ = abc
        boss = make_approver(1)
        s1 = make_step(c, a, b, approver=boss)
        db.session.commit()
        wf.assign_document(9, c.id)
        rid = wf.attempt_move(9, b.id).request_id
        gate.record_decision(rid, boss.id, "reject")
        assert not authoring.step_in_use(s1.id)

        with pytest.raises(ConflictError):
            authoring.delete_step(c.id, s1.id)

        history = gate.get_approval_history(9)
        assert len(history) == 1
        assert history[0]["state"] == "rejected"
        assert db.session.get(Step, s1.id) is not None

    def test_step_of_another_circuit_not_found(self, abc):
        c, a, b, _ = abc
        s1 = make_step(c, a, b)
        other = make_circuit("Other")
        db.session.commit()
        with pytest.raises(NotFoundError):
            authoring.delete_step(other.id, s1.id)
