"""
Shared pytest fixtures for the Document Workflow Circuit test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - workflow: Fresh fake collaborators per test (autouse)
    - client: Flask test client (function-scoped)
    - make_*: ORM factory helpers for circuits, statuses, steps, approvers
"""

import threading
from types import SimpleNamespace

import pytest

from docflow import create_app
from docflow.integrations.document_store import DocumentRef, DocumentStoreError
from docflow.models import db as _db
from docflow.models.approval import ApprovalGroup, ApprovalGroupMember, Approver
from docflow.models.circuit import (
    APPROVAL_KIND_GROUP,
    APPROVAL_KIND_INDIVIDUAL,
    APPROVAL_KIND_NONE,
    Circuit,
    Status,
    Step,
)
from docflow.services import collaborators
from docflow.services.completion_monitor import CompletionMonitor
from docflow.services.document_locks import reset_locks
from docflow.services.refresh_sink import RefreshSink


# ── Fake collaborators ───────────────────────────────────────────────────


class FakeDocumentStore:
    """In-memory document store; ``fail_writes`` makes mirroring fail."""

    def __init__(self):
        self._lock = threading.Lock()
        self.markers: dict[int, str | None] = {}
        self.completions: list[tuple[int, int, bool]] = []
        self.fail_reads = False
        self.fail_writes = False

    def get_document(self, document_id):
        if self.fail_reads:
            raise DocumentStoreError("store offline")
        with self._lock:
            return DocumentRef(document_id, None, self.markers.get(document_id))

    def mark_status_complete(self, document_id, status_id, is_complete):
        if self.fail_writes:
            raise DocumentStoreError("store rejected completion")
        with self._lock:
            self.completions.append((document_id, status_id, bool(is_complete)))

    def get_archival_marker(self, document_id):
        with self._lock:
            return self.markers.get(document_id)

    def set_archival_marker(self, document_id, marker):
        with self._lock:
            self.markers[document_id] = marker


class FakeArchivalGateway:
    """Reads markers from the fake store; counts polls."""

    def __init__(self, store):
        self.store = store
        self.calls = 0

    def get_archival_marker(self, document_id):
        self.calls += 1
        return self.store.get_archival_marker(document_id)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        reset_locks()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def workflow(app):
    """Install fresh fakes into app.extensions["workflow"] for every test."""
    store = FakeDocumentStore()
    gateway = FakeArchivalGateway(store)
    sink = RefreshSink()
    monitor = CompletionMonitor(
        gateway,
        poll_interval=app.config["COMPLETION_MONITOR_POLL_INTERVAL"],
        max_attempts=app.config["COMPLETION_MONITOR_MAX_ATTEMPTS"],
    )
    collaborators.install(
        app,
        document_store=store,
        archival_gateway=gateway,
        refresh_sink=sink,
        completion_monitor=monitor,
    )
    yield SimpleNamespace(store=store, gateway=gateway, sink=sink, monitor=monitor)
    monitor.shutdown(timeout=1)


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM factory helpers ──────────────────────────────────────────────────


def make_circuit(title="Invoice approval", *, is_active=True, allow_backtrack=False) -> Circuit:
    c = Circuit(title=title, is_active=is_active, allow_backtrack=allow_backtrack)
    _db.session.add(c)
    _db.session.flush()
    c.circuit_key = f"CR-{c.id:04d}"
    return c


def make_status(circuit, title, *, is_initial=False, is_final=False, is_required=True,
                is_flexible=False) -> Status:
    s = Status(
        circuit_id=circuit.id, title=title, is_initial=is_initial, is_final=is_final,
        is_required=is_required, is_flexible=is_flexible,
    )
    _db.session.add(s)
    _db.session.flush()
    return s


def make_step(circuit, current, nxt, *, approver=None, group=None, title="") -> Step:
    kind = APPROVAL_KIND_NONE
    if approver is not None:
        kind = APPROVAL_KIND_INDIVIDUAL
    elif group is not None:
        kind = APPROVAL_KIND_GROUP
    st = Step(
        circuit_id=circuit.id,
        current_status_id=current.id,
        next_status_id=nxt.id,
        title=title or f"{current.title} → {nxt.title}",
        requires_approval=kind != APPROVAL_KIND_NONE,
        approval_kind=kind,
        approver_id=approver.id if approver is not None else None,
        approval_group_id=group.id if group is not None else None,
    )
    _db.session.add(st)
    _db.session.flush()
    return st


def make_approver(user_id, username=None) -> Approver:
    a = Approver(user_id=user_id, username=username or f"user{user_id}")
    _db.session.add(a)
    _db.session.flush()
    return a


def make_group(name, rule_type, approvers) -> ApprovalGroup:
    g = ApprovalGroup(name=name, rule_type=rule_type)
    _db.session.add(g)
    _db.session.flush()
    for idx, a in enumerate(approvers):
        g.members.append(ApprovalGroupMember(approver_id=a.id, order_index=idx))
    _db.session.flush()
    return g


@pytest.fixture()
def linear_circuit():
    """Draft → Review → Approved, all ungated; committed."""
    c = make_circuit()
    draft = make_status(c, "Draft", is_initial=True)
    review = make_status(c, "Review")
    approved = make_status(c, "Approved", is_final=True)
    s1 = make_step(c, draft, review)
    s2 = make_step(c, review, approved)
    _db.session.commit()
    return SimpleNamespace(circuit=c, draft=draft, review=review, approved=approved,
                           steps=(s1, s2))
