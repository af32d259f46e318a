"""Initial schema - certification workflow tables

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _common() -> list[sa.Column]:
    """id, soft delete and timestamps shared by every table."""
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _version() -> sa.Column:
    return sa.Column("version", sa.Integer, nullable=False, server_default=sa.text("1"))


def _user_fk(name: str, nullable: bool = True, index: bool = False) -> sa.Column:
    return sa.Column(
        name, postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=nullable, index=index
    )


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        *_common(),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="client"),
        sa.Column("specialization", sa.String(30), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("preferences", postgresql.JSONB, nullable=True),
    )

    # Projects
    op.create_table(
        "projects",
        *_common(),
        _version(),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("application_type", sa.String(10), nullable=False, server_default="slf"),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("city", sa.String(255), nullable=True),
        _user_fk("client_id", nullable=False, index=True),
        _user_fk("project_lead_id", index=True),
        _user_fk("admin_lead_id"),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft", index=True),
        sa.Column("rejected_from", sa.String(30), nullable=True),
        sa.Column("status_notes", sa.Text, nullable=True),
    )

    op.create_table(
        "project_team_members",
        *_common(),
        sa.Column(
            "project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False, index=True
        ),
        _user_fk("user_id", nullable=False, index=True),
        sa.Column("role_in_project", sa.String(30), nullable=False),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_team_member"),
    )

    # Documents
    op.create_table(
        "documents",
        *_common(),
        _version(),
        sa.Column(
            "project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=True, index=True
        ),
        sa.Column("client_submission", sa.Boolean, nullable=False, server_default=sa.text("false")),
        _user_fk("uploaded_by", nullable=False),
        sa.Column("requirement_id", sa.String(100), nullable=True, index=True),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("file_url", sa.String(1000), nullable=True),
        sa.Column("content_type", sa.String(100), nullable=True),
        sa.Column("size_bytes", sa.Integer, nullable=True),
        sa.Column("revision", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("revision_notes", sa.Text, nullable=True),
        sa.Column("metadata_json", postgresql.JSONB, nullable=True),
    )

    # Schedules / inspections
    op.create_table(
        "schedules",
        *_common(),
        _version(),
        sa.Column(
            "project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False, index=True
        ),
        sa.Column("schedule_type", sa.String(30), nullable=False, server_default="inspection"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=False),
        _user_fk("assigned_to", index=True),
        _user_fk("created_by", nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", postgresql.JSONB, nullable=True),
    )

    op.create_table(
        "checklist_responses",
        *_common(),
        sa.Column(
            "schedule_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedules.id"), nullable=False, index=True
        ),
        sa.Column("item_id", sa.String(100), nullable=False),
        _user_fk("responder_id", nullable=False),
        sa.Column("response", postgresql.JSONB, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.UniqueConstraint("schedule_id", "item_id", "responder_id", name="uq_checklist_response_item"),
    )

    # Reports
    op.create_table(
        "reports",
        *_common(),
        _version(),
        sa.Column(
            "project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False, index=True
        ),
        sa.Column(
            "schedule_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("schedules.id"), nullable=True, index=True
        ),
        _user_fk("drafter_id", index=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("selected_findings", postgresql.JSONB, nullable=True),
        sa.Column("file_url", sa.String(1000), nullable=True),
        _user_fk("reviewed_by"),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text, nullable=True),
    )

    # Approval chains
    op.create_table(
        "approval_chains",
        *_common(),
        sa.Column("entity_type", sa.String(30), nullable=False, index=True),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("steps", postgresql.JSONB, nullable=False),
        sa.Column("current_step", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_progress"),
        _user_fk("submitted_by", nullable=False),
    )
    # at most one open chain per entity
    op.create_index(
        "uq_approval_chain_open",
        "approval_chains",
        ["entity_type", "entity_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress' AND NOT is_deleted"),
    )

    op.create_table(
        "approval_decisions",
        *_common(),
        sa.Column(
            "chain_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("approval_chains.id"), nullable=False, index=True
        ),
        sa.Column("step_index", sa.Integer, nullable=False),
        sa.Column("role", sa.String(30), nullable=False),
        _user_fk("decided_by", nullable=False),
        sa.Column("decision", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
    )

    # Notifications
    op.create_table(
        "notifications",
        *_common(),
        _user_fk("user_id", nullable=False, index=True),
        _user_fk("sender_id"),
        sa.Column(
            "project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=True, index=True
        ),
        sa.Column("channel", sa.String(20), nullable=False, server_default="in_app"),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("related_type", sa.String(30), nullable=True),
        sa.Column("related_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
    )

    # Audit log
    op.create_table(
        "audit_log",
        *_common(),
        sa.Column("entity_type", sa.String(30), nullable=False, index=True),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("from_state", sa.String(30), nullable=True),
        sa.Column("to_state", sa.String(30), nullable=True),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("actor_role", sa.String(20), nullable=True),
        sa.Column("diff", postgresql.JSONB, nullable=True),
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("notifications")
    op.drop_table("approval_decisions")
    op.drop_index("uq_approval_chain_open", table_name="approval_chains")
    op.drop_table("approval_chains")
    op.drop_table("reports")
    op.drop_table("checklist_responses")
    op.drop_table("schedules")
    op.drop_table("documents")
    op.drop_table("project_team_members")
    op.drop_table("projects")
    op.drop_table("users")
