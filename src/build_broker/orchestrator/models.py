"""Domain models for the build job queue and escrow lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable build job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class BuildStatus(str, Enum):
    """Hire lifecycle states governed by the transition table."""

    HIRED = "hired"
    BUILDING = "building"
    DELIVERED = "delivered"
    REVISION_REQUESTED = "revision_requested"
    DISPUTED = "disputed"
    ARBITRATION_PENDING = "arbitration_pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_BUILD_STATUSES = frozenset(
    {BuildStatus.ACCEPTED, BuildStatus.CANCELLED, BuildStatus.REFUNDED},
)


class EscrowStatus(str, Enum):
    """Custody state of the escrowed deposit."""

    PENDING = "pending"
    LOCKED = "locked"
    RELEASED = "released"
    REFUNDED = "refunded"
    DISPUTED_HOLD = "disputed_hold"


class RequestStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLOSED = "closed"


class Actor(str, Enum):
    """Party allowed to invoke a transition edge."""

    REQUESTER = "requester"
    AGENT = "agent"
    PLATFORM = "platform"


@dataclass(slots=True)
class HireRequestCreate:
    """Minimal request row the hire flow reads."""

    requester_id: str
    requester_wallet: str
    title: str
    description: str = ""
    constraints: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None


@dataclass(slots=True)
class PitchCreate:
    """Agent offer for a request; exactly one of agent_id/agent_name is set."""

    request_id: str
    agent_wallet: str
    price: Decimal
    agent_id: str | None = None
    agent_name: str | None = None
    pitch_id: str | None = None


@dataclass(slots=True)
class HireRequestView:
    request_id: str
    requester_id: str
    requester_wallet: str
    title: str
    description: str
    constraints: dict[str, Any]
    status: RequestStatus
    escrow_status: EscrowStatus | None
    escrow_amount: Decimal | None
    deposit_reference: str | None
    hired_pitch_id: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class PitchView:
    pitch_id: str
    request_id: str
    agent_id: str | None
    agent_name: str | None
    agent_wallet: str
    price: Decimal
    created_at: datetime

    @property
    def is_external_agent(self) -> bool:
        return self.agent_id is None


@dataclass(slots=True)
class HireCreate:
    """Verified hire ready to be persisted atomically."""

    request_id: str
    pitch: PitchView
    requester_wallet: str
    escrow_amount: Decimal
    deposit_reference: str
    max_retries: int = 3


@dataclass(slots=True)
class BuildView:
    """Readable build view for services, CLI and worker logic."""

    build_id: str
    request_id: str
    pitch_id: str
    agent_id: str | None
    agent_name: str | None
    agent_wallet: str
    requester_wallet: str
    status: BuildStatus
    escrow_amount: Decimal
    escrow_status: EscrowStatus
    delivery_url: str | None
    agent_payout: Decimal | None
    platform_fee: Decimal | None
    dispute_reason: str | None
    dispute_opened_at: datetime | None
    resolved_by: str | None
    revision_notes: str | None
    revision_count: int
    deposit_reference: str | None
    release_receipt: str | None
    refund_receipt: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class BuildJobView:
    """Readable job view for CLI and worker logic."""

    job_id: str
    build_id: str
    status: JobStatus
    retry_count: int
    max_retries: int
    last_error: str | None
    claimed_at: datetime | None
    claimed_by: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class BuildJobSpec:
    """What the build-execution collaborator needs to produce a deliverable."""

    job_id: str
    build_id: str
    request_id: str
    title: str
    description: str
    constraints: dict[str, Any]
    build_status: BuildStatus


@dataclass(slots=True)
class BuildChanges:
    """Column updates applied together with one status transition."""

    escrow_status: EscrowStatus | None = None
    delivery_url: str | None = None
    agent_payout: Decimal | None = None
    platform_fee: Decimal | None = None
    dispute_reason: str | None = None
    dispute_opened_at: datetime | None = None
    resolved_by: str | None = None
    revision_notes: str | None = None
    increment_revision: bool = False
    release_receipt: str | None = None
    refund_receipt: str | None = None
    request_status: RequestStatus | None = None
    clear_request_escrow: bool = False
    complete_job_id: str | None = None
    complete_job_worker_id: str | None = None


class JobFailureOutcome(str, Enum):
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    CLAIM_LOST = "claim_lost"


@dataclass(slots=True)
class BuildEventView:
    """Audit trail entry for builds and their jobs."""

    event_id: int
    build_id: str
    job_id: str | None
    event_type: str
    actor: str | None
    status_from: str | None
    status_to: str | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
