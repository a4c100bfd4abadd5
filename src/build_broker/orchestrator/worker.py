"""Bounded async worker pool draining the build job queue."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial

from build_broker.orchestrator.errors import ClaimLost, JobAbandoned, StoreUnavailable
from build_broker.orchestrator.models import BuildJobView, JobFailureOutcome
from build_broker.orchestrator.pipeline import BuildPipeline
from build_broker.orchestrator.reaper import StuckJobReaper
from build_broker.orchestrator.repository import OrchestratorRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    dead_lettered: int = 0
    abandoned: int = 0
    claim_lost: int = 0
    idle_polls: int = 0


class BuildWorkerPool:
    """Claims pending jobs up to a concurrency cap and runs them as asyncio tasks.

    The pool drains on a fixed interval and again whenever a job finishes.
    A finished task's done-callback decides between success, retry and
    dead-letter; the pool itself never marks a job completed.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: OrchestratorRepository,
        pipeline: BuildPipeline,
        worker_id: str,
        max_concurrent: int = 3,
        poll_interval_seconds: float = 30.0,
        graceful_shutdown_seconds: int = 30,
        reaper: StuckJobReaper | None = None,
    ) -> None:
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be > 0.")
        self.repository = repository
        self.pipeline = pipeline
        self.worker_id = worker_id
        self.max_concurrent = max_concurrent
        self.poll_interval_seconds = poll_interval_seconds
        self.graceful_shutdown_seconds = graceful_shutdown_seconds
        self.reaper = reaper
        self.summary = WorkerRunSummary()
        self._in_flight: dict[str, asyncio.Task[object]] = {}
        self._follow_ups: set[asyncio.Task[None]] = set()
        self._loops: list[asyncio.Task[None]] = []
        self._drain_lock = asyncio.Lock()
        self._stop_requested = False

    @property
    def running_count(self) -> int:
        return len(self._in_flight)

    async def start(self) -> None:
        """Recover stuck jobs once, then start the poll and reaper loops."""

        self._stop_requested = False
        if self.reaper is not None:
            await self.reaper.sweep()
            self._loops.append(asyncio.create_task(self.reaper.run_periodic(), name="reaper"))
        self._loops.append(asyncio.create_task(self._poll_loop(), name="poll"))
        logger.info(
            "Worker %s started (max_concurrent=%d, poll=%.1fs)",
            self.worker_id,
            self.max_concurrent,
            self.poll_interval_seconds,
        )

    async def stop(self) -> WorkerRunSummary:
        """Stop polling and wait for in-flight jobs up to the grace period."""

        self._stop_requested = True
        for loop_task in self._loops:
            loop_task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops.clear()

        pending = list(self._in_flight.values())
        if pending:
            logger.info("Waiting for %d in-flight job(s) to finish", len(pending))
            _, not_done = await asyncio.wait(pending, timeout=self.graceful_shutdown_seconds)
            for task in not_done:
                task.cancel()
            if not_done:
                logger.warning(
                    "Left %d job(s) running after shutdown; the reaper will requeue them",
                    len(not_done),
                )
            await asyncio.gather(*not_done, return_exceptions=True)
        await asyncio.sleep(0)
        await asyncio.gather(*self._follow_ups, return_exceptions=True)
        logger.info("Worker %s stopped", self.worker_id)
        return self.summary

    async def drain(self) -> int:
        """Claim and start jobs until the cap is hit or the queue is empty."""

        started = 0
        async with self._drain_lock:
            while not self._stop_requested and self.running_count < self.max_concurrent:
                job = await asyncio.to_thread(
                    self.repository.claim_next_job,
                    worker_id=self.worker_id,
                )
                if job is None:
                    break
                self._start_job(job)
                started += 1
        if started == 0 and self.running_count == 0:
            self.summary.idle_polls += 1
        return started

    async def run_until_idle(self) -> WorkerRunSummary:
        """Drain until no job is running and nothing is left to claim."""

        await self.drain()
        while self._in_flight or self._follow_ups:
            await asyncio.gather(
                *self._in_flight.values(),
                *self._follow_ups,
                return_exceptions=True,
            )
            await asyncio.sleep(0)
        return self.summary

    async def run_forever(self) -> WorkerRunSummary:
        """Run until SIGINT/SIGTERM, then shut down gracefully."""

        stop_event = asyncio.Event()
        with self._signal_handlers(stop_event):
            await self.start()
            await stop_event.wait()
        return await self.stop()

    def _start_job(self, job: BuildJobView) -> None:
        task: asyncio.Task[object] = asyncio.create_task(
            self.pipeline.run(job, worker_id=self.worker_id),
            name=f"build-job-{job.job_id}",
        )
        self._in_flight[job.job_id] = task
        self.summary.processed += 1
        logger.info(
            "Claimed job %s for build %s (attempt %d/%d)",
            job.job_id,
            job.build_id,
            job.retry_count + 1,
            job.max_retries,
        )
        task.add_done_callback(partial(self._on_job_done, job))

    def _on_job_done(self, job: BuildJobView, task: asyncio.Task[object]) -> None:
        self._in_flight.pop(job.job_id, None)
        follow_up = asyncio.create_task(self._after_job(job, task), name=f"settle-{job.job_id}")
        self._follow_ups.add(follow_up)
        follow_up.add_done_callback(self._follow_ups.discard)

    async def _after_job(self, job: BuildJobView, task: asyncio.Task[object]) -> None:
        if task.cancelled():
            return
        try:
            await self._record_outcome(job, task.exception())
        except StoreUnavailable:
            logger.exception("Could not record outcome of job %s", job.job_id)
        if self._stop_requested:
            return
        try:
            await self.drain()
        except Exception:  # noqa: BLE001
            logger.exception("Drain after job %s failed", job.job_id)

    async def _record_outcome(self, job: BuildJobView, error: BaseException | None) -> None:
        if error is None:
            self.summary.succeeded += 1
            logger.info("Job %s completed", job.job_id)
            return
        if isinstance(error, ClaimLost):
            self.summary.claim_lost += 1
            logger.info("Job %s no longer owned by %s: %s", job.job_id, self.worker_id, error)
            return
        if isinstance(error, JobAbandoned):
            abandoned = await asyncio.to_thread(
                self.repository.abandon_job,
                job_id=job.job_id,
                worker_id=self.worker_id,
                reason=str(error),
            )
            if abandoned:
                self.summary.abandoned += 1
                logger.warning("Job %s abandoned: %s", job.job_id, error)
            else:
                self.summary.claim_lost += 1
            return

        outcome = await asyncio.to_thread(
            self.repository.record_job_failure,
            job_id=job.job_id,
            worker_id=self.worker_id,
            error=_error_text(error),
        )
        if outcome == JobFailureOutcome.RETRY_SCHEDULED:
            self.summary.retried += 1
            logger.warning("Job %s failed, will retry: %s", job.job_id, error)
        elif outcome == JobFailureOutcome.DEAD_LETTERED:
            self.summary.dead_lettered += 1
            logger.error("Job %s moved to dead_letter: %s", job.job_id, error)
        else:
            self.summary.claim_lost += 1
            logger.info("Job %s failure dropped, claim lost", job.job_id)

    async def _poll_loop(self) -> None:
        while not self._stop_requested:
            try:
                await self.drain()
            except Exception:  # noqa: BLE001
                logger.exception("Drain skipped")
            await asyncio.sleep(self.poll_interval_seconds)

    @contextmanager
    def _signal_handlers(self, stop_event: asyncio.Event) -> Iterator[None]:
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []

        def _handler(signum: signal.Signals) -> None:
            logger.info("Received %s, shutting down", signum.name)
            self._stop_requested = True
            stop_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, _handler, signum)
            except (NotImplementedError, RuntimeError):
                continue
            installed.append(signum)
        try:
            yield
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)


def _error_text(error: BaseException) -> str:
    text = str(error).strip()
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
