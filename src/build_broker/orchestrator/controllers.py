"""Controllers for build broker CLI commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal

from build_broker.config import Settings
from build_broker.execution import BuildExecutor, EchoBuildExecutor, HttpBuildExecutor
from build_broker.orchestrator.escrow import EscrowLedger
from build_broker.orchestrator.models import (
    Actor,
    BuildStatus,
    BuildView,
    HireRequestCreate,
    JobStatus,
    PitchCreate,
)
from build_broker.orchestrator.pipeline import BuildPipeline
from build_broker.orchestrator.reaper import StuckJobReaper
from build_broker.orchestrator.repository import OrchestratorRepository
from build_broker.orchestrator.services import HireService
from build_broker.orchestrator.worker import BuildWorkerPool, WorkerRunSummary
from build_broker.settlement import HttpSettlementClient, SettlementGateway


@dataclass(slots=True)
class DbInitCommand:
    database_url: str | None


@dataclass(slots=True)
class RequestAddCommand:
    """CLI input for registering a minimal hire request row."""

    database_url: str | None
    requester_id: str
    requester_wallet: str
    title: str
    description: str


@dataclass(slots=True)
class PitchAddCommand:
    database_url: str | None
    request_id: str
    agent_wallet: str
    price: Decimal
    agent_id: str | None
    agent_name: str | None


@dataclass(slots=True)
class HireCreateCommand:
    """CLI input for hiring a pitch against a verified deposit."""

    database_url: str | None
    request_id: str
    pitch_id: str
    deposit_reference: str
    requester_id: str | None = None


@dataclass(slots=True)
class HireShowCommand:
    database_url: str | None
    request_id: str


@dataclass(slots=True)
class BuildTransitionCommand:
    """CLI input for a requester, agent or platform status change."""

    database_url: str | None
    build_id: str
    status: str
    actor: str
    reason: str | None = None
    notes: str | None = None
    delivery_url: str | None = None
    actor_id: str | None = None


@dataclass(slots=True)
class BuildEventsCommand:
    database_url: str | None
    build_id: str


@dataclass(slots=True)
class JobsListCommand:
    """CLI input for job listing."""

    database_url: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobsRequeueCommand:
    database_url: str | None


@dataclass(slots=True)
class JobsRetryCommand:
    """CLI input for manual dead-letter retry."""

    database_url: str | None
    job_id: str


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    database_url: str | None
    once: bool
    max_concurrent: int | None = None


class BuildBrokerCliController:
    def init_db(self, command: DbInitCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings):
            pass
        return [f"Schema is up to date: {settings.database_url}"]

    def add_request(self, command: RequestAddCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository:
            request = repository.add_request(
                HireRequestCreate(
                    requester_id=command.requester_id,
                    requester_wallet=command.requester_wallet,
                    title=command.title,
                    description=command.description,
                ),
            )
        return [f"Request added: {request.request_id} status={request.status.value}"]

    def add_pitch(self, command: PitchAddCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository:
            pitch = repository.add_pitch(
                PitchCreate(
                    request_id=command.request_id,
                    agent_wallet=command.agent_wallet,
                    price=command.price,
                    agent_id=command.agent_id,
                    agent_name=command.agent_name,
                ),
            )
        kind = "external" if pitch.is_external_agent else "internal"
        return [f"Pitch added: {pitch.pitch_id} price={pitch.price} agent={kind}"]

    def create_hire(self, command: HireCreateCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository, _settlement(settings) as settlement:
            service = _service(settings, repository=repository, settlement=settlement)
            build = service.create_hire(
                request_id=command.request_id,
                pitch_id=command.pitch_id,
                deposit_reference=command.deposit_reference,
                requester_id=command.requester_id,
            )
        return [
            "Hired: "
            f"build_id={build.build_id} status={build.status.value} "
            f"escrow={build.escrow_amount} ({build.escrow_status.value})",
        ]

    def show_hire(self, command: HireShowCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository, _settlement(settings) as settlement:
            service = _service(settings, repository=repository, settlement=settlement)
            build = service.get_latest_build(request_id=command.request_id)
        return _build_lines(build)

    def transition(self, command: BuildTransitionCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository, _settlement(settings) as settlement:
            service = _service(settings, repository=repository, settlement=settlement)
            build = service.transition(
                build_id=command.build_id,
                desired=BuildStatus(command.status.strip().lower()),
                actor=Actor(command.actor.strip().lower()),
                reason=command.reason,
                notes=command.notes,
                delivery_url=command.delivery_url,
                actor_id=command.actor_id,
            )
        return _build_lines(build)

    def events(self, command: BuildEventsCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository:
            events = repository.list_events(build_id=command.build_id)

        lines = [f"Events: {len(events)}"]
        for event in events:
            details = json.dumps(event.details, sort_keys=True) if event.details else ""
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from or '-'} -> {event.status_to or '-'} "
                f"actor={event.actor or '-'} {details}".rstrip(),
            )
        return lines

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        settings = _settings(command.database_url)
        status_filter = JobStatus(command.status.strip().lower()) if command.status else None
        with _repository(settings) as repository:
            jobs = repository.list_jobs(status=status_filter, limit=command.limit)

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} build={job.build_id} status={job.status.value} "
                f"retries={job.retry_count}/{job.max_retries} "
                f"claimed_by={job.claimed_by or '-'} error={job.last_error or '-'}",
            )
        return lines

    def requeue_stuck(self, command: JobsRequeueCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository:
            reaper = StuckJobReaper(
                repository=repository,
                stuck_timeout_seconds=settings.worker.stuck_timeout_seconds,
            )
            job_ids = reaper.reap_now()
        return [f"Requeued stuck jobs: {len(job_ids)}", *(f"  {job_id}" for job_id in job_ids)]

    def retry_job(self, command: JobsRetryCommand) -> list[str]:
        settings = _settings(command.database_url)
        with _repository(settings) as repository:
            job = repository.retry_dead_letter(job_id=command.job_id)
        return [f"Job re-queued: {job.job_id} status={job.status.value}"]

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = _settings(command.database_url)
        max_concurrent = command.max_concurrent or settings.worker.max_concurrent
        executor = _executor(settings)
        with _repository(settings) as repository, _settlement(settings) as settlement:
            pool = BuildWorkerPool(
                repository=repository,
                pipeline=BuildPipeline(
                    repository=repository,
                    ledger=EscrowLedger(repository=repository, settlement=settlement),
                    executor=executor,
                ),
                worker_id=settings.worker.worker_id,
                max_concurrent=max_concurrent,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                graceful_shutdown_seconds=settings.worker.graceful_shutdown_seconds,
                reaper=StuckJobReaper(
                    repository=repository,
                    stuck_timeout_seconds=settings.worker.stuck_timeout_seconds,
                    interval_seconds=settings.worker.reap_interval_seconds,
                ),
            )
            summary = asyncio.run(_drive_worker(pool, executor, once=command.once))

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"retried={summary.retried} dead_lettered={summary.dead_lettered} "
            f"abandoned={summary.abandoned} claim_lost={summary.claim_lost} "
            f"idle_polls={summary.idle_polls}",
        ]


def _build_lines(build: BuildView) -> list[str]:
    return [
        f"Build: {build.build_id}",
        f"Request: {build.request_id}",
        f"Agent: {build.agent_id or build.agent_name}",
        f"Status: {build.status.value}",
        f"Escrow: {build.escrow_amount} ({build.escrow_status.value})",
        f"Delivery: {build.delivery_url or '-'}",
        f"Payout: {build.agent_payout if build.agent_payout is not None else '-'}",
        f"Platform fee: {build.platform_fee if build.platform_fee is not None else '-'}",
        f"Revisions: {build.revision_count}",
        f"Dispute: {build.dispute_reason or '-'}",
    ]


async def _drive_worker(
    pool: BuildWorkerPool,
    executor: BuildExecutor,
    *,
    once: bool,
) -> WorkerRunSummary:
    try:
        if once:
            if pool.reaper is not None:
                await pool.reaper.sweep()
            return await pool.run_until_idle()
        return await pool.run_forever()
    finally:
        if isinstance(executor, HttpBuildExecutor):
            await executor.aclose()


def _settings(database_url: str | None) -> Settings:
    settings = Settings.from_env(database_url=database_url)
    settings.validate()
    return settings


def _service(
    settings: Settings,
    *,
    repository: OrchestratorRepository,
    settlement: SettlementGateway,
) -> HireService:
    return HireService(
        repository=repository,
        settlement=settlement,
        escrow=settings.escrow,
        max_retries=settings.worker.max_retries,
        stuck_timeout_seconds=settings.worker.stuck_timeout_seconds,
    )


def _executor(settings: Settings) -> BuildExecutor:
    if settings.executor.kind == "http":
        return HttpBuildExecutor(
            base_url=settings.executor.base_url,
            api_token=settings.executor.api_token,
            timeout_seconds=settings.executor.timeout_seconds,
        )
    return EchoBuildExecutor()


@contextmanager
def _settlement(settings: Settings) -> Iterator[HttpSettlementClient]:
    client = HttpSettlementClient(
        base_url=settings.settlement.base_url,
        api_token=settings.settlement.api_token,
        fee_bps=settings.escrow.platform_fee_bps,
        timeout_seconds=settings.settlement.timeout_seconds,
        max_retries=settings.settlement.max_retries,
    )
    try:
        yield client
    finally:
        client.close()


@contextmanager
def _repository(settings: Settings) -> Iterator[OrchestratorRepository]:
    repository = OrchestratorRepository(
        settings.database_url,
        busy_timeout_ms=settings.busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
