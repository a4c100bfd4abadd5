"""Use-case services for hiring and build lifecycle."""

from __future__ import annotations

import logging

from build_broker.config import EscrowSettings
from build_broker.orchestrator.errors import (
    DepositRejected,
    HireRejected,
    NotFoundError,
    SettlementFailed,
)
from build_broker.orchestrator.escrow import EscrowLedger
from build_broker.orchestrator.models import (
    Actor,
    BuildStatus,
    BuildView,
    HireCreate,
    RequestStatus,
)
from build_broker.orchestrator.reaper import StuckJobReaper
from build_broker.orchestrator.repository import OrchestratorRepository
from build_broker.settlement.base import SettlementError, SettlementGateway

logger = logging.getLogger(__name__)


class HireService:
    """Entry point for hires, build transitions and manual queue recovery."""

    def __init__(
        self,
        *,
        repository: OrchestratorRepository,
        settlement: SettlementGateway,
        escrow: EscrowSettings | None = None,
        max_retries: int = 3,
        stuck_timeout_seconds: int = 600,
    ) -> None:
        self.repository = repository
        self.settlement = settlement
        self.escrow = escrow or EscrowSettings()
        self.max_retries = max_retries
        self.ledger = EscrowLedger(repository=repository, settlement=settlement)
        self.reaper = StuckJobReaper(
            repository=repository,
            stuck_timeout_seconds=stuck_timeout_seconds,
        )

    def create_hire(
        self,
        *,
        request_id: str,
        pitch_id: str,
        deposit_reference: str,
        requester_id: str | None = None,
    ) -> BuildView:
        """Verify the deposit and lock it in escrow for a new build."""

        request = self.repository.get_request(request_id=request_id)
        if request is None:
            raise NotFoundError(f"Request not found: {request_id}")
        if requester_id is not None and request.requester_id != requester_id:
            raise HireRejected(f"Request {request_id} is not owned by {requester_id}.")
        if request.status != RequestStatus.OPEN:
            raise HireRejected(
                f"Request {request_id} is not open for hiring (status={request.status.value}).",
            )
        pitch = self.repository.get_pitch(pitch_id=pitch_id)
        if pitch is None or pitch.request_id != request_id:
            raise NotFoundError(f"Pitch {pitch_id} not found for request {request_id}.")
        if not deposit_reference.strip():
            raise DepositRejected("A deposit reference is required.")

        try:
            verification = self.settlement.verify_deposit(
                reference=deposit_reference,
                payer=request.requester_wallet,
                expected_amount=pitch.price,
            )
        except SettlementError as error:
            raise SettlementFailed(f"Deposit verification failed: {error}") from error
        if not verification.verified:
            raise DepositRejected(
                f"Deposit {deposit_reference} was not verified: {verification.error or 'unknown'}",
            )
        actual = verification.actual_amount
        if actual is None:
            actual = pitch.price
        if actual < pitch.price - self.escrow.deposit_tolerance:
            raise DepositRejected(
                f"Deposit {deposit_reference} of {actual} is short of the price {pitch.price}.",
            )

        build, job = self.repository.create_hire(
            HireCreate(
                request_id=request_id,
                pitch=pitch,
                requester_wallet=request.requester_wallet,
                escrow_amount=pitch.price,
                deposit_reference=deposit_reference,
                max_retries=self.max_retries,
            ),
        )
        logger.info(
            "Hired pitch %s for request %s: build=%s escrow=%s job=%s",
            pitch_id,
            request_id,
            build.build_id,
            build.escrow_amount,
            job.job_id if job is not None else "-",
        )
        return build

    def get_latest_build(self, *, request_id: str) -> BuildView:
        build = self.repository.get_latest_build(request_id=request_id)
        if build is None:
            raise NotFoundError(f"No active build for request {request_id}.")
        return build

    def transition(  # noqa: PLR0913
        self,
        *,
        build_id: str,
        desired: BuildStatus,
        actor: Actor,
        reason: str | None = None,
        notes: str | None = None,
        delivery_url: str | None = None,
        actor_id: str | None = None,
    ) -> BuildView:
        """Request a status change; raises TransitionRejected when not allowed."""

        return self.ledger.transition(
            build_id=build_id,
            desired=desired,
            actor=actor,
            reason=reason,
            notes=notes,
            delivery_url=delivery_url,
            actor_id=actor_id,
        )

    def enqueue_requeue(self) -> int:
        """Manually trigger one stuck-job sweep."""

        return len(self.reaper.reap_now())
