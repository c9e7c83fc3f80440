"""Async validation results and worker processing log.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "async_validation_results",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("record_id", sa.String(255), nullable=False),
        sa.Column("record_name", sa.String(100), nullable=True),
        sa.Column("account_name", sa.String(255), nullable=True),
        sa.Column("tenant_name", sa.String(255), nullable=True),
        sa.Column("tenant_id", sa.String(255), nullable=True),
        sa.Column("request_type", sa.String(100), nullable=True),
        sa.Column("rule_id", sa.String(100), nullable=False),
        sa.Column("rule_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("details", JSON, nullable=True),
        sa.Column("external_snapshot", JSON, nullable=True),
        sa.Column("active_entitlements_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("source_fingerprint", sa.String(64), nullable=False),
        sa.Column("processing_started_at", sa.DateTime(), nullable=True),
        sa.Column("processing_completed_at", sa.DateTime(), nullable=True),
        sa.Column("processing_duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("record_id", "rule_id", name="uq_async_validation_record_rule"),
    )
    op.create_index(
        "idx_async_validation_status_created", "async_validation_results", ["status", "created_at"]
    )
    op.create_index("idx_async_validation_tenant", "async_validation_results", ["tenant_name"])
    op.create_index("idx_async_validation_updated", "async_validation_results", ["updated_at"])

    op.create_table(
        "async_validation_processing_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("records_queued", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("records_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("records_succeeded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("records_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("records_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "idx_processing_log_started", "async_validation_processing_log", ["started_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_processing_log_started", table_name="async_validation_processing_log")
    op.drop_table("async_validation_processing_log")
    op.drop_index("idx_async_validation_updated", table_name="async_validation_results")
    op.drop_index("idx_async_validation_tenant", table_name="async_validation_results")
    op.drop_index("idx_async_validation_status_created", table_name="async_validation_results")
    op.drop_table("async_validation_results")
