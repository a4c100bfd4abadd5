"""SQLModel ORM tables for the hire, build and job store."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, Text
from sqlmodel import Field, SQLModel

MONEY = Numeric(12, 2)


class HireRequest(SQLModel, table=True):
    __tablename__ = "requests"  # type: ignore[bad-override]

    request_id: str = Field(primary_key=True)
    requester_id: str = Field(index=True)
    requester_wallet: str
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    constraints_json: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(index=True)
    escrow_status: str | None = None
    escrow_amount: Decimal | None = Field(default=None, sa_column=Column(MONEY))
    deposit_reference: str | None = None
    hired_pitch_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Pitch(SQLModel, table=True):
    __tablename__ = "pitches"  # type: ignore[bad-override]
    __table_args__ = (
        CheckConstraint(
            "(agent_id IS NULL) <> (agent_name IS NULL)",
            name="ck_pitches_agent_identity",
        ),
    )

    pitch_id: str = Field(primary_key=True)
    request_id: str = Field(
        sa_column=Column(
            ForeignKey("requests.request_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    agent_id: str | None = None
    agent_name: str | None = None
    agent_wallet: str
    price: Decimal = Field(sa_column=Column(MONEY, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Build(SQLModel, table=True):
    __tablename__ = "builds"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_builds_request_time", "request_id", "created_at"),
        CheckConstraint(
            "(agent_id IS NULL) <> (agent_name IS NULL)",
            name="ck_builds_agent_identity",
        ),
        CheckConstraint("escrow_amount >= 0", name="ck_builds_escrow_amount"),
    )

    build_id: str = Field(primary_key=True)
    request_id: str = Field(
        sa_column=Column(
            ForeignKey("requests.request_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    pitch_id: str
    agent_id: str | None = Field(default=None, index=True)
    agent_name: str | None = None
    agent_wallet: str
    requester_wallet: str
    status: str = Field(index=True)
    escrow_amount: Decimal = Field(sa_column=Column(MONEY, nullable=False))
    escrow_status: str
    delivery_url: str | None = None
    agent_payout: Decimal | None = Field(default=None, sa_column=Column(MONEY))
    platform_fee: Decimal | None = Field(default=None, sa_column=Column(MONEY))
    dispute_reason: str | None = Field(default=None, sa_column=Column(Text))
    dispute_opened_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    resolved_by: str | None = None
    revision_notes: str | None = Field(default=None, sa_column=Column(Text))
    revision_count: int = Field(default=0)
    deposit_reference: str | None = None
    release_receipt: str | None = None
    refund_receipt: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class BuildJob(SQLModel, table=True):
    __tablename__ = "build_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_build_jobs_queue", "status", "created_at"),
        CheckConstraint(
            "(claimed_at IS NULL) = (claimed_by IS NULL)",
            name="ck_build_jobs_claim_pair",
        ),
        CheckConstraint("retry_count >= 0", name="ck_build_jobs_retry_count"),
    )

    job_id: str = Field(primary_key=True)
    build_id: str = Field(
        sa_column=Column(
            ForeignKey("builds.build_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    status: str
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    claimed_by: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class BuildEvent(SQLModel, table=True):
    __tablename__ = "build_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_build_events_build_time", "build_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    build_id: str = Field(
        sa_column=Column(
            ForeignKey("builds.build_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    job_id: str | None = Field(default=None, index=True)
    event_type: str = Field(index=True)
    actor: str | None = None
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
