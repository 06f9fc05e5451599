"""
Move executor tests (workflow_service).

Tests cover:
  - Assigning a document to a circuit
  - Move preconditions: precursor completion, open request, legal transition
  - Ungated moves and gated moves opening approval requests
  - Status completion mirrored to the document store
  - Backtracking and reinitialisation
  - Workflow status projection and history
"""
import pytest

from conftest import make_approver, make_circuit, make_status, make_step
from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.core.results import MoveOutcome, WorkflowErrorCode
from docflow.integrations.document_store import DocumentStoreError
from docflow.models import db
from docflow.models.approval import ApprovalRequest
from docflow.services import workflow_service as svc
from docflow.services.workflow_state import get_state

DOC = 4711


# ── Helpers ──────────────────────────────────────────────────────────────

def _gated_circuit():
    """Draft → Review (ungated) → Approved (gated by one approver)."""
    c = make_circuit(allow_backtrack=True)
    draft = make_status(c, "Draft", is_initial=True)
    review = make_status(c, "Review")
    approved = make_status(c, "Approved", is_final=True)
    boss = make_approver(900, "boss")
    make_step(c, draft, review)
    gate = make_step(c, review, approved, approver=boss)
    db.session.commit()
    return c, draft, review, approved, boss, gate


def _at_review(lc):
    svc.assign_document(DOC, lc.circuit.id, actor="jane")
    svc.attempt_move(DOC, lc.review.id, actor="jane")
    svc.complete_status(DOC, lc.review.id, actor="jane")


# ═════════════════════════════════════════════════════════════════════════
# ASSIGNMENT
# ═════════════════════════════════════════════════════════════════════════

class TestAssign:
    def test_assign_starts_at_initial_status_complete(self, linear_circuit, workflow):
        data = svc.assign_document(DOC, linear_circuit.circuit.id, actor="jane")

        assert data["current_status_id"] == linear_circuit.draft.id
        assert data["completed_status_ids"] == [linear_circuit.draft.id]
        assert data["is_circuit_completed"] is True
        assert workflow.store.completions == [(DOC, linear_circuit.draft.id, True)]
        assert [e["reason"] for e in workflow.sink.recent(DOC)] == ["assigned"]

    def test_assign_twice_conflicts(self, linear_circuit):
        svc.assign_document(DOC, linear_circuit.circuit.id)
        with pytest.raises(ConflictError):
            svc.assign_document(DOC, linear_circuit.circuit.id)

    def test_assign_to_inactive_circuit(self):
        c = make_circuit(is_active=False)
        make_status(c, "Draft", is_initial=True)
        db.session.commit()
        with pytest.raises(ValidationError):
            svc.assign_document(DOC, c.id)

    def test_assign_without_initial_status(self):
        c = make_circuit()
        make_status(c, "Draft")
        db.session.commit()
        with pytest.raises(ValidationError):
            svc.assign_document(DOC, c.id)

    def test_assign_to_missing_circuit(self):
        with pytest.raises(NotFoundError):
            svc.assign_document(DOC, 12345)


# ═════════════════════════════════════════════════════════════════════════
# MOVES
# ═════════════════════════════════════════════════════════════════════════

class TestAttemptMove:
    def test_ungated_move(self, linear_circuit, workflow):
        svc.assign_document(DOC, linear_circuit.circuit.id)

        result = svc.attempt_move(DOC, linear_circuit.review.id, actor="jane")

        assert result.outcome is MoveOutcome.COMPLETED
        assert result.new_status_id == linear_circuit.review.id
        state = get_state(DOC)
        assert state.current_status_id == linear_circuit.review.id
        assert state.current_step_id == linear_circuit.steps[0].id
        assert state.is_circuit_completed is False
        assert "moved" in [e["reason"] for e in workflow.sink.recent(DOC)]

    def test_move_blocked_until_status_completed(self, linear_circuit):
        svc.assign_document(DOC, linear_circuit.circuit.id)
        svc.attempt_move(DOC, linear_circuit.review.id)

        result = svc.attempt_move(DOC, linear_circuit.approved.id)

        assert result.outcome is MoveOutcome.REJECTED
        assert result.reason is WorkflowErrorCode.PRECURSOR_INCOMPLETE
        assert get_state(DOC).current_status_id == linear_circuit.review.id

        svc.complete_status(DOC, linear_circuit.review.id)
        assert svc.attempt_move(DOC, linear_circuit.approved.id).ok

    def test_illegal_target_rejected(self, linear_circuit):
        svc.assign_document(DOC, linear_circuit.circuit.id)

        result = svc.attempt_move(DOC, linear_circuit.approved.id)

        assert result.outcome is MoveOutcome.REJECTED
        assert result.reason is WorkflowErrorCode.INVALID_TRANSITION
        assert get_state(DOC).current_status_id == linear_circuit.draft.id

    def test_move_unknown_document(self, linear_circuit):
        with pytest.raises(NotFoundError):
            svc.attempt_move(999, linear_circuit.review.id)

    def test_gated_move_opens_request_and_stays_put(self, workflow):
        c, draft, review, approved, boss, gate = _gated_circuit()
        svc.assign_document(DOC, c.id)
        svc.attempt_move(DOC, review.id)
        svc.complete_status(DOC, review.id)

        result = svc.attempt_move(DOC, approved.id, actor="jane", comment="please")

        assert result.outcome is MoveOutcome.APPROVAL_PENDING
        assert result.reason is None
        request = db.session.get(ApprovalRequest, result.request_id)
        assert request.state == "open"
        assert request.step_id == gate.id
        assert request.target_member_ids == [boss.id]
        assert request.requested_by == "jane"
        assert get_state(DOC).current_status_id == review.id
        events = [h["event"] for h in svc.get_history(DOC)]
        assert events[-1] == "approval_requested"

    def test_repeat_move_returns_same_request(self):
        c, draft, review, approved, boss, gate = _gated_circuit()
        svc.assign_document(DOC, c.id)
        svc.attempt_move(DOC, review.id)
        svc.complete_status(DOC, review.id)
        first = svc.attempt_move(DOC, approved.id)

        second = svc.attempt_move(DOC, approved.id)
        third = svc.attempt_move(DOC, draft.id)

        assert second.outcome is MoveOutcome.APPROVAL_PENDING
        assert second.reason is WorkflowErrorCode.APPROVAL_PENDING
        assert second.request_id == first.request_id
        assert third.request_id == first.request_id
        assert db.session.query(ApprovalRequest).count() == 1


# ═════════════════════════════════════════════════════════════════════════
# STATUS COMPLETION
# ═════════════════════════════════════════════════════════════════════════

class TestCompleteStatus:
    def test_complete_and_reopen(self, linear_circuit, workflow):
        svc.assign_document(DOC, linear_circuit.circuit.id)
        svc.attempt_move(DOC, linear_circuit.review.id)

        data = svc.complete_status(DOC, linear_circuit.review.id, actor="jane")
        assert data["is_circuit_completed"] is True

        data = svc.complete_status(DOC, linear_circuit.review.id, is_complete=False)
        assert data["is_circuit_completed"] is False
        assert workflow.store.completions[-2:] == [
            (DOC, linear_circuit.review.id, True),
            (DOC, linear_circuit.review.id, False),
        ]

    def test_status_not_entered(self, linear_circuit):
        svc.assign_document(DOC, linear_circuit.circuit.id)
        with pytest.raises(ValidationError):
            svc.complete_status(DOC, linear_circuit.approved.id)

    def test_store_failure_rolls_back(self, linear_circuit, workflow):
        svc.assign_document(DOC, linear_circuit.circuit.id)
        svc.attempt_move(DOC, linear_circuit.review.id)
        workflow.store.fail_writes = True

        with pytest.raises(DocumentStoreError):
            svc.complete_status(DOC, linear_circuit.review.id)

        state = get_state(DOC)
        assert state.completion_for(linear_circuit.review.id).is_complete is False
        assert state.is_circuit_completed is False

    def test_circuit_completed_at_final_status(self):
        c = make_circuit(allow_backtrack=True)
        draft = make_status(c, "Draft", is_initial=True)
        notes = make_status(c, "Notes", is_required=False)
        done = make_status(c, "Done", is_final=True)
        make_step(c, draft, notes)
        make_step(c, notes, done)
        db.session.commit()
        svc.assign_document(DOC, c.id)
        svc.attempt_move(DOC, notes.id)

        svc.complete_status(DOC, notes.id)
        svc.attempt_move(DOC, done.id)
        data = svc.complete_status(DOC, done.id)

        assert data["is_circuit_completed"] is True


# ═════════════════════════════════════════════════════════════════════════
# BACKTRACK / REINITIALISE
# ═════════════════════════════════════════════════════════════════════════

class TestReturnAndReinitialize:
    def test_backtrack_not_allowed(self, linear_circuit):
        _at_review(linear_circuit)
        with pytest.raises(ValidationError):
            svc.return_to_previous_status(DOC)

    def test_return_to_previous_status(self, workflow):
        c, draft, review, approved, boss, gate = _gated_circuit()
        svc.assign_document(DOC, c.id)
        svc.attempt_move(DOC, review.id)

        data = svc.return_to_previous_status(DOC, actor="jane")

        assert data["current_status_id"] == draft.id
        assert draft.id not in data["completed_status_ids"]
        assert data["is_circuit_completed"] is False
        assert workflow.store.completions[-1] == (DOC, draft.id, False)

    def test_return_refused_with_open_request(self):
        c, draft, review, approved, boss, gate = _gated_circuit()
        svc.assign_document(DOC, c.id)
        svc.attempt_move(DOC, review.id)
        svc.complete_status(DOC, review.id)
        svc.attempt_move(DOC, approved.id)

        with pytest.raises(ConflictError):
            svc.return_to_previous_status(DOC)

    def test_reinitialize(self, linear_circuit, workflow):
        _at_review(linear_circuit)

        data = svc.reinitialize(DOC, actor="admin")

        assert data["current_status_id"] == linear_circuit.draft.id
        assert data["completed_status_ids"] == [linear_circuit.draft.id]
        assert data["current_step_id"] is None
        assert (DOC, linear_circuit.review.id, False) in workflow.store.completions
        assert svc.get_history(DOC)[-1]["event"] == "reinitialized"


# ═════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════

class TestQueries:
    def test_workflow_status_projection(self, linear_circuit):
        svc.assign_document(DOC, linear_circuit.circuit.id)

        data = svc.get_workflow_status(DOC)

        assert data["circuit_title"] == linear_circuit.circuit.title
        assert data["can_move"] is True
        assert data["open_request"] is None
        assert data["progress_percent"] == 33
        assert [t["next_status_id"] for t in data["available_transitions"]] == [
            linear_circuit.review.id,
        ]

    def test_history_in_order(self, linear_circuit):
        _at_review(linear_circuit)
        events = [h["event"] for h in svc.get_history(DOC)]
        assert events == ["assigned", "moved", "status_completed"]

    def test_history_unknown_document(self):
        with pytest.raises(NotFoundError):
            svc.get_history(31337)
