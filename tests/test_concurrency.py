"""
Concurrency tests for the one-open-request-per-document rule.

Threaded tests run against a file-backed SQLite database so every thread
gets its own connection; the in-memory database of the main suite is a single
shared connection and would serialise them anyway.

Tests cover:
  - Simultaneous gated moves on one document open exactly one request
  - Simultaneous Any-group approvals close the request exactly once
  - The partial unique index rejects a second open request row
  - Document locks are dropped once no thread holds or waits on them
"""
import threading

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import make_approver, make_circuit, make_group, make_status, make_step
from docflow import create_app
from docflow.config import TestingConfig, config
from docflow.core.results import MoveOutcome, WorkflowErrorCode
from docflow.models import db
from docflow.models.approval import REQUEST_OPEN, RULE_ANY, ApprovalRequest
from docflow.services import approval_gate as gate
from docflow.services import workflow_service as wf
from docflow.services.document_locks import document_lock, registered_keys

DOC = 314


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    """A second app bound to a SQLite file that threads can share."""
    cfg = type("FileBackedTestingConfig", (TestingConfig,), {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'docflow.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {
            "connect_args": {"check_same_thread": False, "timeout": 30},
        },
    })
    monkeypatch.setitem(config, "file_testing", cfg)
    application = create_app("file_testing")
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_together(file_app, fn, count=2):
    """Run ``fn(index)`` on ``count`` threads released at the same instant."""
    barrier = threading.Barrier(count)
    results, errors = [None] * count, []

    def worker(index):
        with file_app.app_context():
            try:
                barrier.wait(5)
                results[index] = fn(index)
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert errors == []
    return results


def _gated_document(file_app, *, group_rule=None):
    with file_app.app_context():
        c = make_circuit()
        review = make_status(c, "Review", is_initial=True)
        approved = make_status(c, "Approved", is_final=True)
        first, second = make_approver(1), make_approver(2)
        if group_rule:
            make_step(c, review, approved, group=make_group("Pair", group_rule, [first, second]))
        else:
            make_step(c, review, approved, approver=first)
        db.session.commit()
        wf.assign_document(DOC, c.id)
        return approved.id, (first.id, second.id)


# ═════════════════════════════════════════════════════════════════════════
# THREADED CALLERS
# ═════════════════════════════════════════════════════════════════════════

class TestConcurrentCallers:
    def test_simultaneous_gated_moves_open_one_request(self, file_app):
        approved_id, _ = _gated_document(file_app)

        results = _run_together(file_app, lambda i: wf.attempt_move(DOC, approved_id,
                                                                    actor=f"clerk{i}"))

        assert all(r.outcome is MoveOutcome.APPROVAL_PENDING for r in results)
        assert results[0].request_id == results[1].request_id
        assert sorted(r.reason for r in results if r.reason) == \
            [WorkflowErrorCode.APPROVAL_PENDING]
        with file_app.app_context():
            assert db.session.query(ApprovalRequest).filter_by(document_id=DOC).count() == 1

    def test_simultaneous_any_approvals_close_once(self, file_app):
        approved_id, approver_ids = _gated_document(file_app, group_rule=RULE_ANY)
        with file_app.app_context():
            request_id = wf.attempt_move(DOC, approved_id).request_id

        results = _run_together(
            file_app, lambda i: gate.record_decision(request_id, approver_ids[i], "approve"),
        )

        refused = [r for r in results if not r.ok]
        assert len(refused) == 1
        assert refused[0].error is WorkflowErrorCode.ALREADY_DECIDED
        with file_app.app_context():
            assert db.session.get(ApprovalRequest, request_id).state == "approved"
            events = [h["event"] for h in wf.get_history(DOC)]
            assert events.count("approval_approved") == 1
            assert wf.get_workflow_status(DOC)["current_status_id"] == approved_id


# ═════════════════════════════════════════════════════════════════════════
# DATABASE BACKSTOP
# ═════════════════════════════════════════════════════════════════════════

def test_second_open_request_row_violates_unique_index():
    c = make_circuit()
    review = make_status(c, "Review", is_initial=True)
    approved = make_status(c, "Approved", is_final=True)
    step = make_step(c, review, approved, approver=make_approver(1))
    db.session.commit()
    wf.assign_document(DOC, c.id)
    first = wf.attempt_move(DOC, approved.id)
    assert first.outcome is MoveOutcome.APPROVAL_PENDING

    db.session.add(ApprovalRequest(
        document_id=DOC, step_id=step.id, kind="individual",
        approver_id=step.approver_id, target_member_ids=[step.approver_id],
        state=REQUEST_OPEN,
    ))
    with pytest.raises(IntegrityError):
        db.session.flush()
    db.session.rollback()

    assert db.session.query(ApprovalRequest).filter_by(document_id=DOC).count() == 1


# ═════════════════════════════════════════════════════════════════════════
# LOCK REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class TestDocumentLockRegistry:
    def test_lock_dropped_after_release(self):
        with document_lock(DOC):
            assert registered_keys()["documents"] == [DOC]
        assert registered_keys()["documents"] == []

    def test_lock_kept_while_another_thread_waits(self):
        held, waiting_done = threading.Event(), threading.Event()
        release = threading.Event()

        def holder():
            with document_lock(DOC):
                held.set()
                release.wait(5)

        def waiter():
            with document_lock(DOC):
                waiting_done.set()

        t1 = threading.Thread(target=holder)
        t1.start()
        assert held.wait(5)
        t2 = threading.Thread(target=waiter)
        t2.start()

        assert not waiting_done.wait(0.05)
        assert registered_keys()["documents"] == [DOC]
        release.set()
        t1.join(5)
        t2.join(5)

        assert waiting_done.is_set()
        assert registered_keys()["documents"] == []
