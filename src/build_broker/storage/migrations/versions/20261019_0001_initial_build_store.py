"""Initial hire, build, job queue and audit tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade() -> None:
    op.create_table(
        "requests",
        sa.Column("request_id", sa.String(), nullable=False),
        sa.Column("requester_id", sa.String(), nullable=False),
        sa.Column("requester_wallet", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("constraints_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("escrow_status", sa.String(), nullable=True),
        sa.Column("escrow_amount", MONEY, nullable=True),
        sa.Column("deposit_reference", sa.String(), nullable=True),
        sa.Column("hired_pitch_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('open', 'in_progress', 'completed', 'closed')",
            name="ck_requests_status",
        ),
        sa.PrimaryKeyConstraint("request_id"),
    )
    op.create_index("ix_requests_requester_id", "requests", ["requester_id"], unique=False)
    op.create_index("ix_requests_status", "requests", ["status"], unique=False)

    op.create_table(
        "pitches",
        sa.Column("pitch_id", sa.String(), nullable=False),
        sa.Column("request_id", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=True),
        sa.Column("agent_name", sa.String(), nullable=True),
        sa.Column("agent_wallet", sa.String(), nullable=False),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(agent_id IS NULL) <> (agent_name IS NULL)",
            name="ck_pitches_agent_identity",
        ),
        sa.ForeignKeyConstraint(["request_id"], ["requests.request_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("pitch_id"),
    )
    op.create_index("ix_pitches_request_id", "pitches", ["request_id"], unique=False)

    op.create_table(
        "builds",
        sa.Column("build_id", sa.String(), nullable=False),
        sa.Column("request_id", sa.String(), nullable=False),
        sa.Column("pitch_id", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=True),
        sa.Column("agent_name", sa.String(), nullable=True),
        sa.Column("agent_wallet", sa.String(), nullable=False),
        sa.Column("requester_wallet", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("escrow_amount", MONEY, nullable=False),
        sa.Column("escrow_status", sa.String(), nullable=False),
        sa.Column("delivery_url", sa.String(), nullable=True),
        sa.Column("agent_payout", MONEY, nullable=True),
        sa.Column("platform_fee", MONEY, nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("dispute_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(), nullable=True),
        sa.Column("revision_notes", sa.Text(), nullable=True),
        sa.Column("revision_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deposit_reference", sa.String(), nullable=True),
        sa.Column("release_receipt", sa.String(), nullable=True),
        sa.Column("refund_receipt", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('hired', 'building', 'delivered', 'revision_requested', 'disputed', "
            "'arbitration_pending', 'accepted', 'cancelled', 'refunded')",
            name="ck_builds_status",
        ),
        sa.CheckConstraint(
            "escrow_status IN ('pending', 'locked', 'released', 'refunded', 'disputed_hold')",
            name="ck_builds_escrow_status",
        ),
        sa.CheckConstraint(
            "(agent_id IS NULL) <> (agent_name IS NULL)",
            name="ck_builds_agent_identity",
        ),
        sa.CheckConstraint("escrow_amount >= 0", name="ck_builds_escrow_amount"),
        sa.ForeignKeyConstraint(["request_id"], ["requests.request_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("build_id"),
    )
    op.create_index("ix_builds_agent_id", "builds", ["agent_id"], unique=False)
    op.create_index("ix_builds_status", "builds", ["status"], unique=False)
    op.create_index(
        "idx_builds_request_time",
        "builds",
        ["request_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "build_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("build_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'dead_letter')",
            name="ck_build_jobs_status",
        ),
        sa.CheckConstraint(
            "(claimed_at IS NULL) = (claimed_by IS NULL)",
            name="ck_build_jobs_claim_pair",
        ),
        sa.CheckConstraint("retry_count >= 0", name="ck_build_jobs_retry_count"),
        sa.ForeignKeyConstraint(["build_id"], ["builds.build_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_build_jobs_build_id", "build_jobs", ["build_id"], unique=False)
    op.create_index("ix_build_jobs_claimed_by", "build_jobs", ["claimed_by"], unique=False)
    op.create_index(
        "idx_build_jobs_queue",
        "build_jobs",
        ["status", "created_at"],
        unique=False,
    )

    op.create_table(
        "build_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("build_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("actor", sa.String(), nullable=True),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["build_id"], ["builds.build_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_build_events_job_id", "build_events", ["job_id"], unique=False)
    op.create_index("ix_build_events_event_type", "build_events", ["event_type"], unique=False)
    op.create_index(
        "idx_build_events_build_time",
        "build_events",
        ["build_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_build_events_build_time", table_name="build_events")
    op.drop_index("ix_build_events_event_type", table_name="build_events")
    op.drop_index("ix_build_events_job_id", table_name="build_events")
    op.drop_table("build_events")
    op.drop_index("idx_build_jobs_queue", table_name="build_jobs")
    op.drop_index("ix_build_jobs_claimed_by", table_name="build_jobs")
    op.drop_index("ix_build_jobs_build_id", table_name="build_jobs")
    op.drop_table("build_jobs")
    op.drop_index("idx_builds_request_time", table_name="builds")
    op.drop_index("ix_builds_status", table_name="builds")
    op.drop_index("ix_builds_agent_id", table_name="builds")
    op.drop_table("builds")
    op.drop_index("ix_pitches_request_id", table_name="pitches")
    op.drop_table("pitches")
    op.drop_index("ix_requests_status", table_name="requests")
    op.drop_index("ix_requests_requester_id", table_name="requests")
    op.drop_table("requests")
