from __future__ import annotations

from decimal import Decimal

import allure
import pytest

from build_broker.orchestrator.errors import SettlementFailed, TransitionRejected
from build_broker.orchestrator.models import (
    Actor,
    BuildStatus,
    EscrowStatus,
    JobStatus,
    RequestStatus,
)
from build_broker.settlement import split_escrow

AGENT_WALLET = "wallet-agent"
REQUESTER_WALLET = "wallet-requester"

pytestmark = [
    allure.epic("Escrow"),
    allure.feature("Escrow Ledger"),
]


def _deliver(service, build_id: str) -> None:
    service.transition(build_id=build_id, desired=BuildStatus.BUILDING, actor=Actor.AGENT)
    service.transition(
        build_id=build_id,
        desired=BuildStatus.DELIVERED,
        actor=Actor.AGENT,
        delivery_url="https://builds.test/site/",
    )


def _dispute(service, build_id: str) -> None:
    _deliver(service, build_id)
    service.transition(
        build_id=build_id,
        desired=BuildStatus.DISPUTED,
        actor=Actor.REQUESTER,
        reason="Contact form is missing",
    )


def test_accept_releases_escrow_minus_platform_fee(
    repository,
    service,
    settlement,
    hire_factory,
) -> None:
    build = hire_factory(price=Decimal("100.00"))
    _deliver(service, build.build_id)

    accepted = service.transition(
        build_id=build.build_id,
        desired=BuildStatus.ACCEPTED,
        actor=Actor.REQUESTER,
    )

    assert accepted.status == BuildStatus.ACCEPTED
    assert accepted.escrow_status == EscrowStatus.RELEASED
    assert accepted.agent_payout == Decimal("98.00")
    assert accepted.platform_fee == Decimal("2.00")
    assert accepted.release_receipt == "release-1"
    assert accepted.delivery_url == "https://builds.test/site/"
    assert settlement.releases == [(AGENT_WALLET, Decimal("100.00"))]
    assert settlement.refunds == []
    request = repository.get_request(request_id=build.request_id)
    assert request is not None
    assert request.status == RequestStatus.COMPLETED
    assert request.escrow_status == EscrowStatus.RELEASED


def test_cancel_before_building_refunds_and_reopens_request(
    repository,
    service,
    settlement,
    hire_factory,
) -> None:
    build = hire_factory()

    cancelled = service.transition(
        build_id=build.build_id,
        desired=BuildStatus.CANCELLED,
        actor=Actor.REQUESTER,
    )

    assert cancelled.status == BuildStatus.CANCELLED
    assert cancelled.escrow_status == EscrowStatus.REFUNDED
    assert cancelled.refund_receipt == "refund-1"
    assert settlement.refunds == [(REQUESTER_WALLET, Decimal("100.00"))]
    request = repository.get_request(request_id=build.request_id)
    assert request is not None
    assert request.status == RequestStatus.OPEN
    assert request.escrow_status is None
    assert request.escrow_amount is None
    assert request.hired_pitch_id is None
    assert repository.get_latest_build(request_id=build.request_id) is None


def test_dispute_freezes_escrow_until_platform_resolves(
    repository,
    service,
    settlement,
    hire_factory,
) -> None:
    build = hire_factory()
    _dispute(service, build.build_id)

    disputed = repository.get_build(build_id=build.build_id)
    assert disputed is not None
    assert disputed.escrow_status == EscrowStatus.DISPUTED_HOLD
    assert disputed.dispute_reason == "Contact form is missing"
    assert disputed.dispute_opened_at is not None
    request = repository.get_request(request_id=build.request_id)
    assert request is not None
    assert request.escrow_status == EscrowStatus.DISPUTED_HOLD

    with pytest.raises(TransitionRejected, match="held for dispute"):
        service.transition(
            build_id=build.build_id,
            desired=BuildStatus.ACCEPTED,
            actor=Actor.REQUESTER,
        )
    assert settlement.releases == []

    resolved = service.transition(
        build_id=build.build_id,
        desired=BuildStatus.ACCEPTED,
        actor=Actor.PLATFORM,
        actor_id="admin-7",
    )

    assert resolved.escrow_status == EscrowStatus.RELEASED
    assert resolved.resolved_by == "admin-7"
    assert settlement.releases == [(AGENT_WALLET, Decimal("100.00"))]


def test_platform_refund_from_dispute_closes_request(
    repository,
    service,
    settlement,
    hire_factory,
) -> None:
    build = hire_factory()
    _dispute(service, build.build_id)

    refunded = service.transition(
        build_id=build.build_id,
        desired=BuildStatus.REFUNDED,
        actor=Actor.PLATFORM,
        actor_id="admin-7",
    )

    assert refunded.status == BuildStatus.REFUNDED
    assert refunded.escrow_status == EscrowStatus.REFUNDED
    assert refunded.resolved_by == "admin-7"
    assert settlement.refunds == [(REQUESTER_WALLET, Decimal("100.00"))]
    request = repository.get_request(request_id=build.request_id)
    assert request is not None
    assert request.status == RequestStatus.CLOSED
    assert request.escrow_status == EscrowStatus.REFUNDED


def test_arbitration_path_ends_in_refund(repository, service, settlement, hire_factory) -> None:
    build = hire_factory()
    _dispute(service, build.build_id)

    service.transition(
        build_id=build.build_id,
        desired=BuildStatus.ARBITRATION_PENDING,
        actor=Actor.PLATFORM,
        reason="Needs a second look",
    )
    refunded = service.transition(
        build_id=build.build_id,
        desired=BuildStatus.REFUNDED,
        actor=Actor.PLATFORM,
    )

    assert refunded.status == BuildStatus.REFUNDED
    assert len(settlement.refunds) == 1
    statuses = [
        event.status_to
        for event in repository.list_events(build_id=build.build_id)
        if event.event_type == "status_changed"
    ]
    assert statuses == [
        "building",
        "delivered",
        "disputed",
        "arbitration_pending",
        "refunded",
    ]


def test_dispute_requires_reason(service, hire_factory) -> None:
    build = hire_factory()
    _deliver(service, build.build_id)

    with pytest.raises(TransitionRejected, match="dispute reason is required"):
        service.transition(
            build_id=build.build_id,
            desired=BuildStatus.DISPUTED,
            actor=Actor.REQUESTER,
            reason="   ",
        )


def test_delivery_requires_url(service, hire_factory) -> None:
    build = hire_factory()
    service.transition(build_id=build.build_id, desired=BuildStatus.BUILDING, actor=Actor.AGENT)

    with pytest.raises(TransitionRejected, match="delivery URL is required"):
        service.transition(
            build_id=build.build_id,
            desired=BuildStatus.DELIVERED,
            actor=Actor.AGENT,
        )


def test_failed_release_leaves_build_unchanged(
    repository,
    service,
    settlement,
    hire_factory,
) -> None:
    build = hire_factory()
    _deliver(service, build.build_id)
    events_before = len(repository.list_events(build_id=build.build_id))
    settlement.fail_release = True

    with pytest.raises(SettlementFailed, match="transfer rejected"):
        service.transition(
            build_id=build.build_id,
            desired=BuildStatus.ACCEPTED,
            actor=Actor.REQUESTER,
        )

    unchanged = repository.get_build(build_id=build.build_id)
    assert unchanged is not None
    assert unchanged.status == BuildStatus.DELIVERED
    assert unchanged.escrow_status == EscrowStatus.LOCKED
    assert unchanged.agent_payout is None
    assert len(repository.list_events(build_id=build.build_id)) == events_before

    settlement.fail_release = False
    accepted = service.transition(
        build_id=build.build_id,
        desired=BuildStatus.ACCEPTED,
        actor=Actor.REQUESTER,
    )
    assert accepted.status == BuildStatus.ACCEPTED


def test_failed_refund_leaves_build_hired(repository, service, settlement, hire_factory) -> None:
    build = hire_factory()
    settlement.fail_refund = True

    with pytest.raises(SettlementFailed):
        service.transition(
            build_id=build.build_id,
            desired=BuildStatus.CANCELLED,
            actor=Actor.REQUESTER,
        )

    unchanged = repository.get_build(build_id=build.build_id)
    assert unchanged is not None
    assert unchanged.status == BuildStatus.HIRED
    request = repository.get_request(request_id=build.request_id)
    assert request is not None
    assert request.status == RequestStatus.IN_PROGRESS


def test_wrong_actor_is_rejected(service, settlement, hire_factory) -> None:
    build = hire_factory()
    _deliver(service, build.build_id)

    with pytest.raises(TransitionRejected, match="only the requester") as excinfo:
        service.transition(
            build_id=build.build_id,
            desired=BuildStatus.ACCEPTED,
            actor=Actor.AGENT,
        )

    assert excinfo.value.current == "delivered"
    assert excinfo.value.target == "accepted"
    assert settlement.releases == []


def test_missing_edge_names_both_statuses(service, hire_factory) -> None:
    build = hire_factory()

    with pytest.raises(TransitionRejected) as excinfo:
        service.transition(
            build_id=build.build_id,
            desired=BuildStatus.ACCEPTED,
            actor=Actor.REQUESTER,
        )

    assert "'hired'" in str(excinfo.value)
    assert "'accepted'" in str(excinfo.value)


def test_terminal_build_rejects_further_transitions(service, hire_factory) -> None:
    build = hire_factory()
    service.transition(
        build_id=build.build_id,
        desired=BuildStatus.CANCELLED,
        actor=Actor.REQUESTER,
    )

    with pytest.raises(TransitionRejected, match="no such transition"):
        service.transition(
            build_id=build.build_id,
            desired=BuildStatus.BUILDING,
            actor=Actor.AGENT,
        )


def test_revision_round_trip_increments_count(repository, service, hire_factory) -> None:
    build = hire_factory()
    _deliver(service, build.build_id)

    revised = service.transition(
        build_id=build.build_id,
        desired=BuildStatus.REVISION_REQUESTED,
        actor=Actor.REQUESTER,
        notes="Make the header blue",
    )

    assert revised.status == BuildStatus.REVISION_REQUESTED
    assert revised.revision_count == 1
    assert revised.revision_notes == "Make the header blue"
    assert revised.escrow_status == EscrowStatus.LOCKED

    redelivered = service.transition(
        build_id=build.build_id,
        desired=BuildStatus.DELIVERED,
        actor=Actor.AGENT,
        delivery_url="https://builds.test/site-v2/",
    )
    assert redelivered.delivery_url == "https://builds.test/site-v2/"
    assert redelivered.revision_count == 1


def test_delivery_can_complete_the_claimed_job(repository, service, hire_factory) -> None:
    build = hire_factory()
    job = repository.claim_next_job(worker_id="worker-a")
    assert job is not None
    service.transition(build_id=build.build_id, desired=BuildStatus.BUILDING, actor=Actor.AGENT)

    service.ledger.transition(
        build_id=build.build_id,
        desired=BuildStatus.DELIVERED,
        actor=Actor.AGENT,
        delivery_url="https://builds.test/site/",
        complete_job_id=job.job_id,
        worker_id="worker-a",
    )

    completed = repository.get_job(job_id=job.job_id)
    assert completed is not None
    assert completed.status == JobStatus.COMPLETED


@pytest.mark.parametrize(
    ("amount", "payout", "fee"),
    [
        (Decimal("100.00"), Decimal("98.00"), Decimal("2.00")),
        (Decimal("33.33"), Decimal("32.66"), Decimal("0.67")),
        (Decimal("0.01"), Decimal("0.00"), Decimal("0.01")),
        (Decimal("0"), Decimal("0.00"), Decimal("0.00")),
    ],
)
def test_split_escrow_rounds_payout_down(amount: Decimal, payout: Decimal, fee: Decimal) -> None:
    assert split_escrow(amount) == (payout, fee)


def test_split_escrow_rejects_invalid_input() -> None:
    with pytest.raises(ValueError):
        split_escrow(Decimal("-1"))
    with pytest.raises(ValueError):
        split_escrow(Decimal("10"), fee_bps=10_000)
