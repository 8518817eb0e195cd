"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── jobs ──
    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("target", sa.Text, nullable=False),
        sa.Column("not_before", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("claim_token", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("claim_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'claimed', 'completed', 'failed')",
            name="ck_jobs_status",
        ),
        sa.CheckConstraint(
            "(status = 'claimed' AND claim_token IS NOT NULL AND claim_deadline IS NOT NULL)"
            " OR (status <> 'claimed' AND claim_token IS NULL AND claim_deadline IS NULL)",
            name="ck_jobs_claim_fields",
        ),
        sa.CheckConstraint(
            "attempt_count >= 0 AND attempt_count <= max_attempts",
            name="ck_jobs_attempt_bound",
        ),
    )
    op.create_index("ix_jobs_status_not_before", "jobs", ["status", "not_before"])
    op.create_index("ix_jobs_status_claim_deadline", "jobs", ["status", "claim_deadline"])
    op.create_index("ix_jobs_owner_id", "jobs", ["owner_id"])

    # ── row level security ──
    # End users connect with app.current_owner set per request; the scheduler
    # connects as a role with BYPASSRLS and sees every owner.
    op.execute("ALTER TABLE jobs ENABLE ROW LEVEL SECURITY")
    op.execute(
        """
        CREATE POLICY jobs_owner_select ON jobs FOR SELECT
        USING (owner_id = current_setting('app.current_owner', true)::uuid)
        """
    )
    op.execute(
        """
        CREATE POLICY jobs_owner_insert ON jobs FOR INSERT
        WITH CHECK (
            owner_id = current_setting('app.current_owner', true)::uuid
            AND status = 'pending'
        )
        """
    )
    op.execute(
        """
        CREATE POLICY jobs_owner_delete ON jobs FOR DELETE
        USING (owner_id = current_setting('app.current_owner', true)::uuid)
        """
    )

    # ── events ──
    op.create_table(
        "events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("level", sa.String(16), server_default="info"),
        sa.Column("source", sa.String(128), nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
    for policy in ("jobs_owner_delete", "jobs_owner_insert", "jobs_owner_select"):
        op.execute(f"DROP POLICY IF EXISTS {policy} ON jobs")
    op.drop_index("ix_jobs_owner_id", table_name="jobs")
    op.drop_index("ix_jobs_status_claim_deadline", table_name="jobs")
    op.drop_index("ix_jobs_status_not_before", table_name="jobs")
    op.drop_table("jobs")
