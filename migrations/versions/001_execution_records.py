"""Create execution_records table.

Revision ID: 001_execution_records
Revises:
Create Date: 2026-10-19

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_execution_records"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "execution_records",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False, server_default="default"),
        sa.Column("activity_key", sa.String(128), nullable=False),
        sa.Column("site_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("run_id", sa.String(255), nullable=True),
        sa.Column("mode", sa.String(16), nullable=True),
        sa.Column("run_token", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_execution_records"),
        sa.UniqueConstraint("tenant_id", "activity_key", "site_id", name="uq_execution_records_key"),
        comment="Latest execution state per activity and site",
    )
    for column in ("tenant_id", "activity_key", "site_id", "status", "updated_at"):
        op.create_index(op.f(f"ix_execution_records_{column}"), "execution_records", [column])


def downgrade() -> None:
    for column in ("updated_at", "status", "site_id", "activity_key", "tenant_id"):
        op.drop_index(op.f(f"ix_execution_records_{column}"), table_name="execution_records")
    op.drop_table("execution_records")
