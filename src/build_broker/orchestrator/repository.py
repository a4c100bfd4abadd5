"""Persistent job store and build records."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, col, select

from build_broker.orchestrator.errors import (
    ClaimLost,
    HireRejected,
    NotFoundError,
    StoreUnavailable,
    TransitionRejected,
)
from build_broker.orchestrator.models import (
    Actor,
    BuildChanges,
    BuildEventView,
    BuildJobSpec,
    BuildJobView,
    BuildStatus,
    BuildView,
    EscrowStatus,
    HireCreate,
    HireRequestCreate,
    HireRequestView,
    JobFailureOutcome,
    JobStatus,
    PitchCreate,
    PitchView,
    RequestStatus,
)
from build_broker.storage.alembic_runner import upgrade_head
from build_broker.storage.common import (
    build_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from build_broker.storage.sqlmodel_models import (
    Build,
    BuildEvent,
    BuildJob,
    HireRequest,
    Pitch,
)

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_CHARS = 2000


class OrchestratorRepository:
    """Job queue and build persistence facade backed by SQLModel."""

    def __init__(self, database_url: str, *, busy_timeout_ms: int = 5000) -> None:
        self.database_url = database_url
        self.engine = build_engine(database_url=database_url, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.database_url)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except OperationalError as error:
            logger.error("Store unavailable: %s", error)
            raise StoreUnavailable(f"Store unavailable: {error.orig}") from error

    # -- requests and pitches -------------------------------------------------

    def add_request(self, payload: HireRequestCreate) -> HireRequestView:
        """Insert the minimal request row the hire flow reads."""

        now = utc_now()
        with self._session() as session:
            row = HireRequest(
                request_id=payload.request_id or str(uuid4()),
                requester_id=payload.requester_id,
                requester_wallet=payload.requester_wallet,
                title=payload.title,
                description=payload.description,
                constraints_json=_dump_json(payload.constraints),
                status=RequestStatus.OPEN.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_request_view(row)

    def add_pitch(self, payload: PitchCreate) -> PitchView:
        """Insert an agent pitch for a request."""

        if (payload.agent_id is None) == (payload.agent_name is None):
            raise ValueError("Exactly one of agent_id or agent_name must be set.")
        if payload.price < 0:
            raise ValueError(f"Pitch price must be non-negative, got {payload.price}.")
        with self._session() as session:
            row = Pitch(
                pitch_id=payload.pitch_id or str(uuid4()),
                request_id=payload.request_id,
                agent_id=payload.agent_id,
                agent_name=payload.agent_name,
                agent_wallet=payload.agent_wallet,
                price=payload.price,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_pitch_view(row)

    def get_request(self, *, request_id: str) -> HireRequestView | None:
        with self._session() as session:
            row = session.exec(
                select(HireRequest).where(HireRequest.request_id == request_id),
            ).one_or_none()
            return _to_request_view(row) if row is not None else None

    def get_pitch(self, *, pitch_id: str) -> PitchView | None:
        with self._session() as session:
            row = session.exec(select(Pitch).where(Pitch.pitch_id == pitch_id)).one_or_none()
            return _to_pitch_view(row) if row is not None else None

    # -- hires and builds ----------------------------------------------------

    def create_hire(self, payload: HireCreate) -> tuple[BuildView, BuildJobView | None]:
        """Atomically lock the request, create the build and enqueue its job."""

        now = utc_now()
        pitch = payload.pitch
        with self._session() as session:
            result = session.exec(
                sa_update(HireRequest)
                .where(
                    col(HireRequest.request_id) == payload.request_id,
                    col(HireRequest.status) == RequestStatus.OPEN.value,
                )
                .values(
                    status=RequestStatus.IN_PROGRESS.value,
                    escrow_status=EscrowStatus.LOCKED.value,
                    escrow_amount=payload.escrow_amount,
                    deposit_reference=payload.deposit_reference,
                    hired_pitch_id=pitch.pitch_id,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise HireRejected(f"Request {payload.request_id} is not open for hiring.")

            build = Build(
                build_id=str(uuid4()),
                request_id=payload.request_id,
                pitch_id=pitch.pitch_id,
                agent_id=pitch.agent_id,
                agent_name=pitch.agent_name,
                agent_wallet=pitch.agent_wallet,
                requester_wallet=payload.requester_wallet,
                status=BuildStatus.HIRED.value,
                escrow_amount=payload.escrow_amount,
                escrow_status=EscrowStatus.LOCKED.value,
                deposit_reference=payload.deposit_reference,
                revision_count=0,
                created_at=now,
                updated_at=now,
            )
            session.add(build)
            session.flush()
            self._add_event(
                session=session,
                build_id=build.build_id,
                job_id=None,
                event_type="hired",
                actor=Actor.REQUESTER,
                status_from=None,
                status_to=BuildStatus.HIRED.value,
                details={
                    "escrow_amount": str(payload.escrow_amount),
                    "escrow_status": EscrowStatus.LOCKED.value,
                    "deposit_reference": payload.deposit_reference,
                },
            )

            job: BuildJob | None = None
            if not pitch.is_external_agent:
                job = BuildJob(
                    job_id=str(uuid4()),
                    build_id=build.build_id,
                    status=JobStatus.PENDING.value,
                    retry_count=0,
                    max_retries=payload.max_retries,
                    created_at=now,
                    updated_at=now,
                )
                session.add(job)
                session.flush()
                self._add_event(
                    session=session,
                    build_id=build.build_id,
                    job_id=job.job_id,
                    event_type="job_enqueued",
                    actor=None,
                    status_from=None,
                    status_to=JobStatus.PENDING.value,
                    details={"max_retries": payload.max_retries},
                )
            session.commit()
            session.refresh(build)
            if job is not None:
                session.refresh(job)
            return _to_build_view(build), (_to_job_view(job) if job is not None else None)

    def get_build(self, *, build_id: str) -> BuildView | None:
        with self._session() as session:
            row = session.exec(select(Build).where(Build.build_id == build_id)).one_or_none()
            return _to_build_view(row) if row is not None else None

    def get_latest_build(self, *, request_id: str) -> BuildView | None:
        """Most recent non-cancelled build for a request."""

        with self._session() as session:
            row = session.exec(
                select(Build)
                .where(
                    Build.request_id == request_id,
                    Build.status != BuildStatus.CANCELLED.value,
                )
                .order_by(col(Build.created_at).desc())
                .limit(1),
            ).one_or_none()
            return _to_build_view(row) if row is not None else None

    @contextmanager
    def build_transaction(self, *, build_id: str) -> Iterator[BuildTransaction]:
        """Hold the build row for one read-modify-write.

        The row is locked by a no-op touch before it is read, so concurrent
        transitions on the same build serialize (row lock on PostgreSQL, write
        lock on SQLite). Changes are committed only when ``apply`` succeeded
        and the block exits without an exception.
        """

        with self._session() as session:
            touched = session.exec(
                sa_update(Build)
                .where(col(Build.build_id) == build_id)
                .values(updated_at=to_db_datetime(utc_now())),
            )
            if touched.rowcount != 1:
                session.rollback()
                raise NotFoundError(f"Build not found: {build_id}")
            row = session.exec(
                select(Build)
                .where(Build.build_id == build_id)
                .execution_options(populate_existing=True),
            ).one()
            transaction = BuildTransaction(
                repository=self,
                session=session,
                build=_to_build_view(row),
            )
            yield transaction
            if transaction.applied:
                session.commit()
            else:
                session.rollback()

    # -- job queue -----------------------------------------------------------

    def claim_next_job(self, *, worker_id: str) -> BuildJobView | None:
        """Atomically claim the oldest eligible pending job."""

        while True:
            now = utc_now()
            with self._session() as session:
                candidate = session.exec(
                    select(BuildJob)
                    .where(
                        BuildJob.status == JobStatus.PENDING.value,
                        col(BuildJob.retry_count) < col(BuildJob.max_retries),
                    )
                    .order_by(col(BuildJob.created_at).asc(), col(BuildJob.job_id).asc())
                    .limit(1)
                    .with_for_update(skip_locked=True),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(BuildJob)
                    .where(
                        col(BuildJob.job_id) == candidate.job_id,
                        col(BuildJob.status) == JobStatus.PENDING.value,
                    )
                    .values(
                        status=JobStatus.RUNNING.value,
                        claimed_at=to_db_datetime(now),
                        claimed_by=worker_id,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(
                    select(BuildJob)
                    .where(BuildJob.job_id == candidate.job_id)
                    .execution_options(populate_existing=True),
                ).one()
                self._add_event(
                    session=session,
                    build_id=claimed.build_id,
                    job_id=claimed.job_id,
                    event_type="claimed",
                    actor=None,
                    status_from=JobStatus.PENDING.value,
                    status_to=JobStatus.RUNNING.value,
                    details={"worker_id": worker_id, "retry_count": claimed.retry_count},
                )
                session.commit()
                return _to_job_view(claimed)

    def get_job(self, *, job_id: str) -> BuildJobView | None:
        with self._session() as session:
            row = session.exec(select(BuildJob).where(BuildJob.job_id == job_id)).one_or_none()
            return _to_job_view(row) if row is not None else None

    def list_jobs(self, *, status: JobStatus | None = None, limit: int = 50) -> list[BuildJobView]:
        """List recent jobs, optionally filtered by status."""

        with self._session() as session:
            statement = select(BuildJob).order_by(col(BuildJob.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(BuildJob.status == status.value)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def get_job_spec(self, *, job_id: str) -> BuildJobSpec | None:
        """Resolve the request spec a claimed job should build."""

        with self._session() as session:
            found = session.exec(
                select(BuildJob, Build, HireRequest)
                .where(
                    BuildJob.job_id == job_id,
                    BuildJob.build_id == Build.build_id,
                    Build.request_id == HireRequest.request_id,
                ),
            ).one_or_none()
            if found is None:
                return None
            job, build, request = found
            return BuildJobSpec(
                job_id=job.job_id,
                build_id=build.build_id,
                request_id=request.request_id,
                title=request.title,
                description=request.description,
                constraints=_load_json(request.constraints_json),
                build_status=BuildStatus(build.status),
            )

    def record_job_failure(self, *, job_id: str, worker_id: str, error: str) -> JobFailureOutcome:
        """Requeue a failed running job or dead-letter it once retries are spent."""

        now = utc_now()
        last_error = error[:LAST_ERROR_MAX_CHARS]
        with self._session() as session:
            row = session.exec(select(BuildJob).where(BuildJob.job_id == job_id)).one_or_none()
            if row is None:
                raise NotFoundError(f"Job not found: {job_id}")
            if row.status != JobStatus.RUNNING.value or row.claimed_by != worker_id:
                return JobFailureOutcome.CLAIM_LOST

            attempts = row.retry_count + 1
            if attempts < row.max_retries:
                outcome = JobFailureOutcome.RETRY_SCHEDULED
                values: dict[str, Any] = {
                    "status": JobStatus.PENDING.value,
                    "retry_count": attempts,
                    "last_error": last_error,
                    "claimed_at": None,
                    "claimed_by": None,
                    "updated_at": to_db_datetime(now),
                }
                status_to = JobStatus.PENDING
            else:
                outcome = JobFailureOutcome.DEAD_LETTERED
                values = {
                    "status": JobStatus.DEAD_LETTER.value,
                    "retry_count": attempts,
                    "last_error": last_error,
                    "updated_at": to_db_datetime(now),
                }
                status_to = JobStatus.DEAD_LETTER

            result = session.exec(
                sa_update(BuildJob)
                .where(
                    col(BuildJob.job_id) == job_id,
                    col(BuildJob.status) == JobStatus.RUNNING.value,
                    col(BuildJob.claimed_by) == worker_id,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return JobFailureOutcome.CLAIM_LOST
            self._add_event(
                session=session,
                build_id=row.build_id,
                job_id=job_id,
                event_type=outcome.value,
                actor=None,
                status_from=JobStatus.RUNNING.value,
                status_to=status_to.value,
                details={
                    "worker_id": worker_id,
                    "retry_count": attempts,
                    "max_retries": row.max_retries,
                    "error": last_error,
                },
            )
            session.commit()
            return outcome

    def abandon_job(self, *, job_id: str, worker_id: str, reason: str) -> bool:
        """Mark a running job failed because its build can no longer be built."""

        now = utc_now()
        with self._session() as session:
            row = session.exec(select(BuildJob).where(BuildJob.job_id == job_id)).one_or_none()
            if row is None:
                raise NotFoundError(f"Job not found: {job_id}")
            result = session.exec(
                sa_update(BuildJob)
                .where(
                    col(BuildJob.job_id) == job_id,
                    col(BuildJob.status) == JobStatus.RUNNING.value,
                    col(BuildJob.claimed_by) == worker_id,
                )
                .values(
                    status=JobStatus.FAILED.value,
                    last_error=reason[:LAST_ERROR_MAX_CHARS],
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                build_id=row.build_id,
                job_id=job_id,
                event_type="abandoned",
                actor=None,
                status_from=JobStatus.RUNNING.value,
                status_to=JobStatus.FAILED.value,
                details={"worker_id": worker_id, "reason": reason},
            )
            session.commit()
            return True

    def requeue_stuck_jobs(
        self,
        *,
        stale_after: timedelta,
        now: datetime | None = None,
    ) -> list[str]:
        """Return running jobs with an expired claim to the queue.

        Retry counters are left untouched: an interrupted attempt is not a
        failure.
        """

        reference = now or utc_now()
        cutoff = to_db_datetime(reference - stale_after)
        requeued: list[str] = []
        with self._session() as session:
            rows = session.exec(
                select(BuildJob).where(
                    BuildJob.status == JobStatus.RUNNING.value,
                    col(BuildJob.claimed_at) < cutoff,
                ),
            ).all()
            for row in rows:
                previous_worker = row.claimed_by
                result = session.exec(
                    sa_update(BuildJob)
                    .where(
                        col(BuildJob.job_id) == row.job_id,
                        col(BuildJob.status) == JobStatus.RUNNING.value,
                        col(BuildJob.claimed_by) == previous_worker,
                        col(BuildJob.claimed_at) < cutoff,
                    )
                    .values(
                        status=JobStatus.PENDING.value,
                        claimed_at=None,
                        claimed_by=None,
                        updated_at=to_db_datetime(reference),
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    build_id=row.build_id,
                    job_id=row.job_id,
                    event_type="reaped",
                    actor=None,
                    status_from=JobStatus.RUNNING.value,
                    status_to=JobStatus.PENDING.value,
                    details={
                        "previous_worker_id": previous_worker,
                        "stale_after_seconds": int(stale_after.total_seconds()),
                    },
                )
                requeued.append(row.job_id)
            session.commit()
        return requeued

    def retry_dead_letter(self, *, job_id: str) -> BuildJobView:
        """Manual operator retry for a dead-lettered job with a fresh budget."""

        now = utc_now()
        with self._session() as session:
            row = session.exec(select(BuildJob).where(BuildJob.job_id == job_id)).one_or_none()
            if row is None:
                raise NotFoundError(f"Job not found: {job_id}")
            if row.status != JobStatus.DEAD_LETTER.value:
                raise ValueError(
                    f"Only dead_letter jobs can be retried manually, got {row.status}.",
                )
            result = session.exec(
                sa_update(BuildJob)
                .where(
                    col(BuildJob.job_id) == job_id,
                    col(BuildJob.status) == JobStatus.DEAD_LETTER.value,
                )
                .values(
                    status=JobStatus.PENDING.value,
                    retry_count=0,
                    claimed_at=None,
                    claimed_by=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(
                    "Job state changed concurrently while retrying; "
                    f"please retry command (job_id={job_id}).",
                )
            self._add_event(
                session=session,
                build_id=row.build_id,
                job_id=job_id,
                event_type="manual_retry",
                actor=Actor.PLATFORM,
                status_from=JobStatus.DEAD_LETTER.value,
                status_to=JobStatus.PENDING.value,
                details={"previous_error": row.last_error},
            )
            session.commit()
            refreshed = session.exec(
                select(BuildJob)
                .where(BuildJob.job_id == job_id)
                .execution_options(populate_existing=True),
            ).one()
            return _to_job_view(refreshed)

    # -- audit trail ---------------------------------------------------------

    def list_events(self, *, build_id: str) -> list[BuildEventView]:
        """Return the audit trail of a build and its job."""

        with self._session() as session:
            rows = session.exec(
                select(BuildEvent)
                .where(BuildEvent.build_id == build_id)
                .order_by(col(BuildEvent.created_at).asc(), col(BuildEvent.id).asc()),
            ).all()
        return [
            BuildEventView(
                event_id=row.id or 0,
                build_id=row.build_id,
                job_id=row.job_id,
                event_type=row.event_type,
                actor=row.actor,
                status_from=row.status_from,
                status_to=row.status_to,
                created_at=to_utc_aware_datetime(row.created_at),
                details=_load_json(row.details_json),
            )
            for row in rows
        ]

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        build_id: str,
        job_id: str | None,
        event_type: str,
        actor: Actor | None,
        status_from: str | None,
        status_to: str | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            BuildEvent(
                build_id=build_id,
                job_id=job_id,
                event_type=event_type,
                actor=actor.value if actor is not None else None,
                status_from=status_from,
                status_to=status_to,
                details_json=_dump_json(details),
                created_at=utc_now(),
            ),
        )


class BuildTransaction:
    """Locked build row handed to the escrow ledger for one transition."""

    def __init__(
        self,
        *,
        repository: OrchestratorRepository,
        session: Session,
        build: BuildView,
    ) -> None:
        self._repository = repository
        self._session = session
        self.build = build
        self.applied = False

    def apply(  # noqa: PLR0913
        self,
        *,
        to_status: BuildStatus,
        actor: Actor,
        changes: BuildChanges,
        event_type: str,
        details: dict[str, object] | None = None,
    ) -> BuildView:
        """Write the new status and its side effects inside the held transaction."""

        if self.applied:
            raise RuntimeError("A build transaction applies exactly one transition.")
        session = self._session
        now = to_db_datetime(utc_now())
        values = _build_values(self.build, changes)
        values["status"] = to_status.value
        values["updated_at"] = now

        result = session.exec(
            sa_update(Build)
            .where(
                col(Build.build_id) == self.build.build_id,
                col(Build.status) == self.build.status.value,
                col(Build.escrow_status) == self.build.escrow_status.value,
            )
            .values(**values),
        )
        if result.rowcount != 1:
            raise TransitionRejected(
                build_id=self.build.build_id,
                current=self.build.status.value,
                target=to_status.value,
                reason="build changed concurrently",
            )

        request_values = _request_values(changes)
        if request_values:
            request_values["updated_at"] = now
            session.exec(
                sa_update(HireRequest)
                .where(col(HireRequest.request_id) == self.build.request_id)
                .values(**request_values),
            )

        if changes.complete_job_id is not None:
            completed = session.exec(
                sa_update(BuildJob)
                .where(
                    col(BuildJob.job_id) == changes.complete_job_id,
                    col(BuildJob.status) == JobStatus.RUNNING.value,
                    col(BuildJob.claimed_by) == changes.complete_job_worker_id,
                )
                .values(status=JobStatus.COMPLETED.value, last_error=None, updated_at=now),
            )
            if completed.rowcount != 1:
                raise ClaimLost(
                    f"Job {changes.complete_job_id} is no longer running under "
                    f"worker {changes.complete_job_worker_id}.",
                )
            self._repository._add_event(
                session=session,
                build_id=self.build.build_id,
                job_id=changes.complete_job_id,
                event_type="completed",
                actor=None,
                status_from=JobStatus.RUNNING.value,
                status_to=JobStatus.COMPLETED.value,
                details={"worker_id": changes.complete_job_worker_id},
            )

        self._repository._add_event(
            session=session,
            build_id=self.build.build_id,
            job_id=None,
            event_type=event_type,
            actor=actor,
            status_from=self.build.status.value,
            status_to=to_status.value,
            details=details or {},
        )
        session.flush()
        row = session.exec(
            select(Build)
            .where(Build.build_id == self.build.build_id)
            .execution_options(populate_existing=True),
        ).one()
        self.applied = True
        return _to_build_view(row)


def _build_values(build: BuildView, changes: BuildChanges) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if changes.escrow_status is not None:
        values["escrow_status"] = changes.escrow_status.value
    optional_fields = {
        "delivery_url": changes.delivery_url,
        "agent_payout": changes.agent_payout,
        "platform_fee": changes.platform_fee,
        "dispute_reason": changes.dispute_reason,
        "resolved_by": changes.resolved_by,
        "revision_notes": changes.revision_notes,
        "release_receipt": changes.release_receipt,
        "refund_receipt": changes.refund_receipt,
    }
    values.update({key: value for key, value in optional_fields.items() if value is not None})
    if changes.dispute_opened_at is not None:
        values["dispute_opened_at"] = to_db_datetime(changes.dispute_opened_at)
    if changes.increment_revision:
        values["revision_count"] = build.revision_count + 1
    return values


def _request_values(changes: BuildChanges) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if changes.escrow_status is not None:
        values["escrow_status"] = changes.escrow_status.value
    if changes.request_status is not None:
        values["status"] = changes.request_status.value
    if changes.clear_request_escrow:
        values["escrow_status"] = None
        values["escrow_amount"] = None
        values["deposit_reference"] = None
        values["hired_pitch_id"] = None
    return values


def _dump_json(payload: dict[str, Any] | dict[str, object]) -> str | None:
    if not payload:
        return None
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)


def _load_json(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else {}


def _to_request_view(row: HireRequest) -> HireRequestView:
    return HireRequestView(
        request_id=row.request_id,
        requester_id=row.requester_id,
        requester_wallet=row.requester_wallet,
        title=row.title,
        description=row.description,
        constraints=_load_json(row.constraints_json),
        status=RequestStatus(row.status),
        escrow_status=EscrowStatus(row.escrow_status) if row.escrow_status is not None else None,
        escrow_amount=row.escrow_amount,
        deposit_reference=row.deposit_reference,
        hired_pitch_id=row.hired_pitch_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_pitch_view(row: Pitch) -> PitchView:
    return PitchView(
        pitch_id=row.pitch_id,
        request_id=row.request_id,
        agent_id=row.agent_id,
        agent_name=row.agent_name,
        agent_wallet=row.agent_wallet,
        price=row.price,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_build_view(row: Build) -> BuildView:
    return BuildView(
        build_id=row.build_id,
        request_id=row.request_id,
        pitch_id=row.pitch_id,
        agent_id=row.agent_id,
        agent_name=row.agent_name,
        agent_wallet=row.agent_wallet,
        requester_wallet=row.requester_wallet,
        status=BuildStatus(row.status),
        escrow_amount=row.escrow_amount,
        escrow_status=EscrowStatus(row.escrow_status),
        delivery_url=row.delivery_url,
        agent_payout=row.agent_payout,
        platform_fee=row.platform_fee,
        dispute_reason=row.dispute_reason,
        dispute_opened_at=optional_utc(row.dispute_opened_at),
        resolved_by=row.resolved_by,
        revision_notes=row.revision_notes,
        revision_count=row.revision_count,
        deposit_reference=row.deposit_reference,
        release_receipt=row.release_receipt,
        refund_receipt=row.refund_receipt,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_job_view(row: BuildJob) -> BuildJobView:
    return BuildJobView(
        job_id=row.job_id,
        build_id=row.build_id,
        status=JobStatus(row.status),
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        last_error=row.last_error,
        claimed_at=optional_utc(row.claimed_at),
        claimed_by=row.claimed_by,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
