"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("document_type", sa.String(), nullable=False),
        sa.Column("operator", sa.String(), nullable=True),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("result_desc", sa.Text(), nullable=True),
        sa.Column("new_id", sa.String(), nullable=True),
        sa.Column("new_code", sa.String(), nullable=True),
        sa.Column("external_source_id", sa.String(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_audit_log_account_type_time", "audit_log", ["account_id", "document_type", "created_at"]
    )
    # At most one successful write per external-source id and document type.
    op.create_index(
        "uq_audit_log_success_source",
        "audit_log",
        ["account_id", "document_type", "external_source_id"],
        unique=True,
        postgresql_where=sa.text("success AND external_source_id IS NOT NULL"),
        sqlite_where=sa.text("success = 1 AND external_source_id IS NOT NULL"),
    )

    op.create_table(
        "api_tokens",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"])
    op.create_index("ix_api_tokens_last_active_at", "api_tokens", ["last_active_at"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("guid", sa.String(), nullable=False, unique=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("document_type", sa.String(), nullable=False),
        sa.Column("source_record_id", sa.String(), nullable=False),
        sa.Column("op_tag", sa.String(), nullable=False, server_default=""),
        sa.Column("document_type_name", sa.String(), nullable=True),
        sa.Column("document_code", sa.String(), nullable=True),
        sa.Column("define1", sa.String(), nullable=True),
        sa.Column("define2", sa.String(), nullable=True),
        sa.Column("define3", sa.String(), nullable=True),
        sa.Column("define4", sa.String(), nullable=True),
        sa.Column("define5", sa.String(), nullable=True),
        sa.Column("done", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("result_desc", sa.Text(), nullable=True),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tasks_source", "tasks", ["account_id", "document_type", "source_record_id", "op_tag"])
    op.create_index("ix_tasks_pending", "tasks", ["done", "attempt_count", "id"])

    op.create_table(
        "task_watermarks",
        sa.Column("account_id", sa.String(), primary_key=True),
        sa.Column("document_type", sa.String(), primary_key=True),
        sa.Column("max_value", sa.String(), nullable=False, server_default=""),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "source_claims",
        sa.Column("account_id", sa.String(), primary_key=True),
        sa.Column("document_type", sa.String(), primary_key=True),
        sa.Column("external_source_id", sa.String(), primary_key=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("source_claims")
    op.drop_table("task_watermarks")
    op.drop_index("ix_tasks_pending", table_name="tasks")
    op.drop_index("ix_tasks_source", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_api_tokens_last_active_at", table_name="api_tokens")
    op.drop_index("ix_api_tokens_user_id", table_name="api_tokens")
    op.drop_table("api_tokens")
    op.drop_index("uq_audit_log_success_source", table_name="audit_log")
    op.drop_index("ix_audit_log_account_type_time", table_name="audit_log")
    op.drop_table("audit_log")
