from __future__ import annotations

import asyncio

import allure
import pytest

from build_broker.orchestrator.models import Actor, BuildStatus, JobStatus
from build_broker.orchestrator.pipeline import BuildPipeline
from build_broker.orchestrator.reaper import StuckJobReaper
from build_broker.orchestrator.worker import BuildWorkerPool

pytestmark = [
    allure.epic("Worker"),
    allure.feature("Worker Pool"),
]


def _pool(repository, service, executor, *, max_concurrent: int = 3, **kwargs) -> BuildWorkerPool:
    pipeline = BuildPipeline(repository=repository, ledger=service.ledger, executor=executor)
    return BuildWorkerPool(
        repository=repository,
        pipeline=pipeline,
        worker_id="worker-test",
        max_concurrent=max_concurrent,
        poll_interval_seconds=0.05,
        **kwargs,
    )


def _job_for(repository, build_id: str):
    return next(job for job in repository.list_jobs(limit=500) if job.build_id == build_id)


def test_successful_job_delivers_build_and_completes(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    executor = executor_factory()
    pool = _pool(repository, service, executor)

    summary = asyncio.run(pool.run_until_idle())

    assert summary.processed == 1
    assert summary.succeeded == 1
    delivered = repository.get_build(build_id=build.build_id)
    assert delivered is not None
    assert delivered.status == BuildStatus.DELIVERED
    assert delivered.delivery_url == f"https://builds.test/{build.build_id}/"
    job = _job_for(repository, build.build_id)
    assert job.status == JobStatus.COMPLETED
    assert job.last_error is None
    events = [event.event_type for event in repository.list_events(build_id=build.build_id)]
    assert events == [
        "hired",
        "job_enqueued",
        "claimed",
        "status_changed",
        "completed",
        "status_changed",
    ]


def test_pool_never_exceeds_concurrency_cap(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    builds = [hire_factory(title=f"Site {index}") for index in range(5)]
    executor = executor_factory(delay=0.02)
    pool = _pool(repository, service, executor, max_concurrent=2)

    summary = asyncio.run(pool.run_until_idle())

    assert summary.processed == 5
    assert summary.succeeded == 5
    assert 1 <= executor.max_active <= 2
    assert sorted(executor.calls) == sorted(build.build_id for build in builds)
    assert repository.list_jobs(status=JobStatus.PENDING) == []


def test_repeated_failures_dead_letter_the_job(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    executor = executor_factory(["fail", "fail", "fail"])
    pool = _pool(repository, service, executor)

    summary = asyncio.run(pool.run_until_idle())

    assert summary.processed == 3
    assert summary.retried == 2
    assert summary.dead_lettered == 1
    job = _job_for(repository, build.build_id)
    assert job.status == JobStatus.DEAD_LETTER
    assert job.retry_count == 3
    assert job.last_error == "ExecutionFailed: generator crashed"
    stuck = repository.get_build(build_id=build.build_id)
    assert stuck is not None
    assert stuck.status == BuildStatus.BUILDING


def test_transient_failures_recover_within_retry_budget(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    executor = executor_factory(["fail", "fail", "ok"])
    pool = _pool(repository, service, executor)

    summary = asyncio.run(pool.run_until_idle())

    assert summary.retried == 2
    assert summary.succeeded == 1
    job = _job_for(repository, build.build_id)
    assert job.status == JobStatus.COMPLETED
    assert job.retry_count == 2
    delivered = repository.get_build(build_id=build.build_id)
    assert delivered is not None
    assert delivered.status == BuildStatus.DELIVERED


def test_job_for_cancelled_build_is_abandoned(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    service.transition(
        build_id=build.build_id,
        desired=BuildStatus.CANCELLED,
        actor=Actor.REQUESTER,
    )
    executor = executor_factory()
    pool = _pool(repository, service, executor)

    summary = asyncio.run(pool.run_until_idle())

    assert summary.abandoned == 1
    assert summary.succeeded == 0
    assert executor.calls == []
    job = _job_for(repository, build.build_id)
    assert job.status == JobStatus.FAILED
    assert "cancelled" in (job.last_error or "")


def test_requeued_job_resumes_build_already_in_progress(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    service.transition(build_id=build.build_id, desired=BuildStatus.BUILDING, actor=Actor.AGENT)
    executor = executor_factory()

    summary = asyncio.run(_pool(repository, service, executor).run_until_idle())

    assert summary.succeeded == 1
    assert executor.calls == [build.build_id]
    delivered = repository.get_build(build_id=build.build_id)
    assert delivered is not None
    assert delivered.status == BuildStatus.DELIVERED
    assert _job_for(repository, build.build_id).status == JobStatus.COMPLETED


def test_stop_waits_for_in_flight_jobs(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    executor = executor_factory(delay=0.05)
    pool = _pool(repository, service, executor, graceful_shutdown_seconds=5)

    async def scenario():
        await pool.start()
        for _ in range(100):
            if executor.calls:
                break
            await asyncio.sleep(0.01)
        return await pool.stop()

    summary = asyncio.run(scenario())

    assert summary.succeeded == 1
    assert pool.running_count == 0
    delivered = repository.get_build(build_id=build.build_id)
    assert delivered is not None
    assert delivered.status == BuildStatus.DELIVERED


def test_stop_after_grace_period_leaves_job_for_reaper(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    executor = executor_factory(delay=5.0)
    pool = _pool(repository, service, executor, graceful_shutdown_seconds=0)

    async def scenario():
        await pool.start()
        for _ in range(100):
            if executor.calls:
                break
            await asyncio.sleep(0.01)
        return await pool.stop()

    summary = asyncio.run(scenario())

    assert summary.succeeded == 0
    job = _job_for(repository, build.build_id)
    assert job.status == JobStatus.RUNNING
    assert job.claimed_by == "worker-test"


def test_start_recovers_stuck_jobs_first(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    assert repository.claim_next_job(worker_id="crashed-worker") is not None
    executor = executor_factory()
    reaper = StuckJobReaper(repository=repository, stuck_timeout_seconds=0, interval_seconds=60)
    pool = _pool(repository, service, executor, reaper=reaper)

    async def scenario():
        await pool.start()
        for _ in range(200):
            if pool.summary.succeeded:
                break
            await asyncio.sleep(0.01)
        return await pool.stop()

    summary = asyncio.run(scenario())

    assert summary.succeeded == 1
    job = _job_for(repository, build.build_id)
    assert job.status == JobStatus.COMPLETED
    assert job.retry_count == 0


def test_idle_drain_counts_idle_poll(repository, service, executor_factory) -> None:
    pool = _pool(repository, service, executor_factory())

    summary = asyncio.run(pool.run_until_idle())

    assert summary.processed == 0
    assert summary.idle_polls == 1


def test_invalid_concurrency_is_rejected(repository, service, executor_factory) -> None:
    with pytest.raises(ValueError, match="max_concurrent"):
        _pool(repository, service, executor_factory(), max_concurrent=0)


def test_blank_delivery_url_goes_through_retry_policy(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    executor = executor_factory(["blank", "ok"])
    pool = _pool(repository, service, executor)

    summary = asyncio.run(pool.run_until_idle())

    assert summary.retried == 1
    assert summary.succeeded == 1
    assert summary.abandoned == 0
    assert executor.calls == [build.build_id, build.build_id]
    job = _job_for(repository, build.build_id)
    assert job.status == JobStatus.COMPLETED
    assert job.retry_count == 1
    delivered = repository.get_build(build_id=build.build_id)
    assert delivered is not None
    assert delivered.status == BuildStatus.DELIVERED
    assert delivered.delivery_url == f"https://builds.test/{build.build_id}/"


def test_blank_delivery_urls_dead_letter_the_job(
    repository,
    service,
    hire_factory,
    executor_factory,
) -> None:
    build = hire_factory()
    executor = executor_factory(["blank", "blank", "blank"])

    summary = asyncio.run(_pool(repository, service, executor).run_until_idle())

    assert summary.dead_lettered == 1
    job = _job_for(repository, build.build_id)
    assert job.status == JobStatus.DEAD_LETTER
    assert "no delivery URL" in (job.last_error or "")


def test_poll_loop_survives_unexpected_store_error(
    repository,
    service,
    hire_factory,
    executor_factory,
    monkeypatch,
) -> None:
    build = hire_factory()
    claim = repository.claim_next_job
    calls: list[str] = []

    def flaky_claim(*, worker_id: str):
        calls.append(worker_id)
        if len(calls) == 1:
            raise RuntimeError("connection reset")
        return claim(worker_id=worker_id)

    monkeypatch.setattr(repository, "claim_next_job", flaky_claim)
    executor = executor_factory()
    pool = _pool(repository, service, executor)

    async def scenario():
        await pool.start()
        for _ in range(200):
            if pool.summary.succeeded:
                break
            await asyncio.sleep(0.01)
        return await pool.stop()

    summary = asyncio.run(scenario())

    assert len(calls) >= 2
    assert summary.succeeded == 1
    assert _job_for(repository, build.build_id).status == JobStatus.COMPLETED
