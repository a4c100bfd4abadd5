"""Runs one claimed build job through the executor."""

from __future__ import annotations

import asyncio
import logging

from build_broker.execution.base import BuildExecutionError, BuildExecutor
from build_broker.orchestrator.errors import ExecutionFailed, JobAbandoned, TransitionRejected
from build_broker.orchestrator.escrow import EscrowLedger
from build_broker.orchestrator.models import Actor, BuildJobView, BuildStatus, BuildView
from build_broker.orchestrator.repository import OrchestratorRepository

logger = logging.getLogger(__name__)

STARTABLE_STATUSES = frozenset({BuildStatus.HIRED, BuildStatus.REVISION_REQUESTED})


class BuildPipeline:
    """Moves a build to building, executes it and delivers the result.

    Delivery and job completion are written in one transaction. Any other
    outcome is raised to the caller, which owns the retry decision: executor
    failures as ExecutionFailed, a build that left the buildable states as
    JobAbandoned.
    """

    def __init__(
        self,
        *,
        repository: OrchestratorRepository,
        ledger: EscrowLedger,
        executor: BuildExecutor,
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.executor = executor

    async def run(self, job: BuildJobView, *, worker_id: str) -> BuildView:
        spec = await asyncio.to_thread(self.repository.get_job_spec, job_id=job.job_id)
        if spec is None:
            raise JobAbandoned(f"Job {job.job_id} has no build spec.")

        if spec.build_status in STARTABLE_STATUSES:
            await self._move(
                job=job,
                build_id=spec.build_id,
                desired=BuildStatus.BUILDING,
            )
        elif spec.build_status != BuildStatus.BUILDING:
            raise JobAbandoned(
                f"Build {spec.build_id} is {spec.build_status.value}; nothing left to build.",
            )

        logger.info("Executing build %s for job %s", spec.build_id, job.job_id)
        try:
            deliverable = await self.executor.execute(spec)
        except BuildExecutionError as error:
            raise ExecutionFailed(str(error)) from error
        if not deliverable.url or not deliverable.url.strip():
            raise ExecutionFailed(f"Executor returned no delivery URL for build {spec.build_id}.")

        build = await self._move(
            job=job,
            build_id=spec.build_id,
            desired=BuildStatus.DELIVERED,
            delivery_url=deliverable.url,
            worker_id=worker_id,
        )
        logger.info("Build %s delivered at %s", spec.build_id, deliverable.url)
        return build

    async def _move(
        self,
        *,
        job: BuildJobView,
        build_id: str,
        desired: BuildStatus,
        delivery_url: str | None = None,
        worker_id: str | None = None,
    ) -> BuildView:
        try:
            return await asyncio.to_thread(
                self.ledger.transition,
                build_id=build_id,
                desired=desired,
                actor=Actor.AGENT,
                delivery_url=delivery_url,
                complete_job_id=job.job_id if worker_id is not None else None,
                worker_id=worker_id,
            )
        except TransitionRejected as error:
            raise JobAbandoned(str(error)) from error
