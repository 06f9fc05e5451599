"""workflow_circuit_schema

Creates the document workflow tables:
  - circuits, statuses, steps                 — circuit definitions
  - approvers, approval_groups,
    approval_group_members                    — approver directory
  - approval_requests, approval_responses     — approval gate
  - document_workflow_states,
    document_status_completions,
    workflow_history                          — per-document runtime state

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-19 09:12:41.503118
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e2a9d4b10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Circuit definitions ───────────────────────────────────────────────
    if "circuits" not in existing:
        op.create_table(
            "circuits",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("circuit_key", sa.String(length=30), nullable=True,
                      comment="Auto-generated: CR-0001"),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("document_type", sa.String(length=50), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("allow_backtrack", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("circuit_key"),
        )

    if "statuses" not in existing:
        op.create_table(
            "statuses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("circuit_id", sa.Integer(), nullable=False),
            sa.Column("status_key", sa.String(length=40), nullable=True),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_initial", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_flexible", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["circuit_id"], ["circuits.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_statuses_circuit_id", "statuses", ["circuit_id"])

    # ── Approver directory ────────────────────────────────────────────────
    if "approvers" not in existing:
        op.create_table(
            "approvers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=150), nullable=False, server_default=""),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approvers_user_id", "approvers", ["user_id"], unique=True)

    if "approval_groups" not in existing:
        op.create_table(
            "approval_groups",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("rule_type", sa.String(length=20), nullable=False, server_default="All"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("rule_type IN ('All','Any','Sequential')",
                               name="ck_approval_group_rule_type"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "approval_group_members" not in existing:
        op.create_table(
            "approval_group_members",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("group_id", sa.Integer(), nullable=False),
            sa.Column("approver_id", sa.Integer(), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["group_id"], ["approval_groups.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["approvers.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("group_id", "approver_id", name="uq_group_member"),
        )
        op.create_index("ix_approval_group_members_group_id",
                        "approval_group_members", ["group_id"])

    # ── Steps ─────────────────────────────────────────────────────────────
    if "steps" not in existing:
        op.create_table(
            "steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("step_key", sa.String(length=40), nullable=True),
            sa.Column("circuit_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("current_status_id", sa.Integer(), nullable=False),
            sa.Column("next_status_id", sa.Integer(), nullable=False),
            sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("approval_kind", sa.String(length=20), nullable=False, server_default="none",
                      comment="none | individual | group"),
            sa.Column("approver_id", sa.Integer(), nullable=True),
            sa.Column("approval_group_id", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("approval_kind IN ('none','individual','group')",
                               name="ck_step_approval_kind"),
            sa.ForeignKeyConstraint(["circuit_id"], ["circuits.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["current_status_id"], ["statuses.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["next_status_id"], ["statuses.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["approvers.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["approval_group_id"], ["approval_groups.id"],
                                    ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("circuit_id", "current_status_id", "next_status_id",
                                name="uq_step_circuit_transition"),
        )
        op.create_index("ix_steps_circuit_id", "steps", ["circuit_id"])

    # ── Approval gate ─────────────────────────────────────────────────────
    if "approval_requests" not in existing:
        op.create_table(
            "approval_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False),
            sa.Column("approver_id", sa.Integer(), nullable=True),
            sa.Column("approval_group_id", sa.Integer(), nullable=True),
            sa.Column("rule_type", sa.String(length=20), nullable=True),
            sa.Column("target_member_ids", sa.JSON(), nullable=False),
            sa.Column("state", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("requested_by", sa.String(length=150), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("state IN ('open','approved','rejected')",
                               name="ck_approval_request_state"),
            sa.ForeignKeyConstraint(["step_id"], ["steps.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["approvers.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["approval_group_id"], ["approval_groups.id"],
                                    ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_requests_document_id", "approval_requests", ["document_id"])
        op.create_index(
            "uq_approval_request_open_document", "approval_requests", ["document_id"],
            unique=True,
            sqlite_where=sa.text("state = 'open'"),
            postgresql_where=sa.text("state = 'open'"),
        )

    if "approval_responses" not in existing:
        op.create_table(
            "approval_responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("request_id", sa.Integer(), nullable=False),
            sa.Column("approver_id", sa.Integer(), nullable=True),
            sa.Column("decision", sa.String(length=10), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("decision IN ('approve','reject')",
                               name="ck_approval_response_decision"),
            sa.ForeignKeyConstraint(["request_id"], ["approval_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["approvers.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_responses_request_id", "approval_responses", ["request_id"])

    # ── Per-document runtime state ────────────────────────────────────────
    if "document_workflow_states" not in existing:
        op.create_table(
            "document_workflow_states",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.Integer(), nullable=False),
            sa.Column("circuit_id", sa.Integer(), nullable=False),
            sa.Column("current_status_id", sa.Integer(), nullable=False),
            sa.Column("current_step_id", sa.Integer(), nullable=True),
            sa.Column("is_circuit_completed", sa.Boolean(), nullable=False,
                      server_default=sa.false()),
            sa.Column("updated_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["circuit_id"], ["circuits.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["current_status_id"], ["statuses.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["current_step_id"], ["steps.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_document_workflow_states_document_id",
                        "document_workflow_states", ["document_id"], unique=True)
        op.create_index("ix_document_workflow_states_circuit_id",
                        "document_workflow_states", ["circuit_id"])

    if "document_status_completions" not in existing:
        op.create_table(
            "document_status_completions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_state_id", sa.Integer(), nullable=False),
            sa.Column("status_id", sa.Integer(), nullable=False),
            sa.Column("is_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("completed_by", sa.String(length=150), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["workflow_state_id"], ["document_workflow_states.id"],
                                    ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["status_id"], ["statuses.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_state_id", "status_id",
                                name="uq_completion_state_status"),
        )
        op.create_index("ix_document_status_completions_workflow_state_id",
                        "document_status_completions", ["workflow_state_id"])

    if "workflow_history" not in existing:
        op.create_table(
            "workflow_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.Integer(), nullable=False),
            sa.Column("event", sa.String(length=30), nullable=False),
            sa.Column("status_id", sa.Integer(), nullable=True),
            sa.Column("step_id", sa.Integer(), nullable=True),
            sa.Column("approval_request_id", sa.Integer(), nullable=True),
            sa.Column("actor", sa.String(length=150), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["status_id"], ["statuses.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["step_id"], ["steps.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["approval_request_id"], ["approval_requests.id"],
                                    ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_history_document_id", "workflow_history", ["document_id"])
        op.create_index("ix_workflow_history_doc_created", "workflow_history",
                        ["document_id", "created_at"])


def downgrade():
    for table in (
        "workflow_history",
        "document_status_completions",
        "document_workflow_states",
        "approval_responses",
        "approval_requests",
        "steps",
        "approval_group_members",
        "approval_groups",
        "approvers",
        "statuses",
        "circuits",
    ):
        op.drop_table(table)
