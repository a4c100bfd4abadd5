"""Escrow ledger: status transitions coupled with fund movement."""

from __future__ import annotations

import logging
from decimal import Decimal

from build_broker.orchestrator.errors import SettlementFailed, TransitionRejected
from build_broker.orchestrator.models import (
    Actor,
    BuildChanges,
    BuildStatus,
    BuildView,
    EscrowStatus,
    RequestStatus,
)
from build_broker.orchestrator.repository import OrchestratorRepository
from build_broker.orchestrator.transitions import require_transition
from build_broker.settlement.base import SettlementError, SettlementGateway
from build_broker.storage.common import utc_now

logger = logging.getLogger(__name__)

RELEASABLE_ESCROW = frozenset({EscrowStatus.LOCKED, EscrowStatus.DISPUTED_HOLD})


class EscrowLedger:
    """Applies build transitions and the settlement calls they require.

    Every transition runs inside the build's row-locked transaction. When a
    transition moves funds the settlement call happens before the status is
    written; if it fails the transaction is rolled back and the build is left
    exactly as it was.
    """

    def __init__(
        self,
        *,
        repository: OrchestratorRepository,
        settlement: SettlementGateway,
    ) -> None:
        self.repository = repository
        self.settlement = settlement

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
        complete_job_id: str | None = None,
        worker_id: str | None = None,
    ) -> BuildView:
        desired = BuildStatus(desired)
        actor = Actor(actor)
        with self.repository.build_transaction(build_id=build_id) as transaction:
            build = transaction.build
            if build.escrow_status == EscrowStatus.DISPUTED_HOLD and actor != Actor.PLATFORM:
                raise TransitionRejected(
                    build_id=build_id,
                    current=build.status.value,
                    target=desired.value,
                    reason="escrow is held for dispute until a platform resolution",
                )
            require_transition(
                build_id=build_id,
                from_status=build.status,
                to_status=desired,
                actor=actor,
            )
            changes, details = self._plan(
                build=build,
                desired=desired,
                actor=actor,
                reason=reason,
                notes=notes,
                delivery_url=delivery_url,
                actor_id=actor_id,
            )
            changes.complete_job_id = complete_job_id
            changes.complete_job_worker_id = worker_id
            updated = transaction.apply(
                to_status=desired,
                actor=actor,
                changes=changes,
                event_type="status_changed",
                details=details,
            )

        logger.info(
            "Build %s moved %s -> %s by %s (escrow=%s)",
            build_id,
            build.status.value,
            updated.status.value,
            actor.value,
            updated.escrow_status.value,
        )
        return updated

    def _plan(  # noqa: C901, PLR0913
        self,
        *,
        build: BuildView,
        desired: BuildStatus,
        actor: Actor,
        reason: str | None,
        notes: str | None,
        delivery_url: str | None,
        actor_id: str | None,
    ) -> tuple[BuildChanges, dict[str, object]]:
        details: dict[str, object] = {}
        if desired == BuildStatus.BUILDING:
            _require_escrow(build, desired, {EscrowStatus.LOCKED})
            return BuildChanges(), details

        if desired == BuildStatus.DELIVERED:
            _require_escrow(build, desired, {EscrowStatus.LOCKED})
            if not delivery_url or not delivery_url.strip():
                raise _rejected(build, desired, "a delivery URL is required")
            details["delivery_url"] = delivery_url
            return BuildChanges(delivery_url=delivery_url.strip()), details

        if desired == BuildStatus.REVISION_REQUESTED:
            details["revision"] = build.revision_count + 1
            return BuildChanges(revision_notes=notes, increment_revision=True), details

        if desired == BuildStatus.DISPUTED:
            _require_escrow(build, desired, {EscrowStatus.LOCKED})
            if not reason or not reason.strip():
                raise _rejected(build, desired, "a dispute reason is required")
            details["reason"] = reason
            return (
                BuildChanges(
                    escrow_status=EscrowStatus.DISPUTED_HOLD,
                    dispute_reason=reason.strip(),
                    dispute_opened_at=utc_now(),
                ),
                details,
            )

        if desired == BuildStatus.ARBITRATION_PENDING:
            if reason:
                details["reason"] = reason
            return BuildChanges(), details

        if desired == BuildStatus.ACCEPTED:
            _require_escrow(build, desired, RELEASABLE_ESCROW)
            return self._release(build=build, actor=actor, actor_id=actor_id)

        if desired == BuildStatus.CANCELLED:
            _require_escrow(build, desired, {EscrowStatus.LOCKED})
            changes, details = self._refund(build=build, request_status=RequestStatus.OPEN)
            changes.clear_request_escrow = True
            return changes, details

        if desired == BuildStatus.REFUNDED:
            _require_escrow(build, desired, {EscrowStatus.DISPUTED_HOLD})
            changes, details = self._refund(build=build, request_status=RequestStatus.CLOSED)
            changes.resolved_by = actor_id
            return changes, details

        raise _rejected(build, desired, "unsupported target status")

    def _release(
        self,
        *,
        build: BuildView,
        actor: Actor,
        actor_id: str | None,
    ) -> tuple[BuildChanges, dict[str, object]]:
        try:
            receipt = self.settlement.release(payee=build.agent_wallet, amount=build.escrow_amount)
        except SettlementError as error:
            logger.warning("Release failed for build %s: %s", build.build_id, error)
            raise SettlementFailed(
                f"Release failed for build {build.build_id}: {error}",
            ) from error
        if receipt.payout + receipt.fee != build.escrow_amount:
            raise SettlementFailed(
                f"Release for build {build.build_id} split {receipt.payout} + {receipt.fee} "
                f"which does not add up to {build.escrow_amount}.",
            )
        changes = BuildChanges(
            escrow_status=EscrowStatus.RELEASED,
            agent_payout=receipt.payout,
            platform_fee=receipt.fee,
            release_receipt=receipt.receipt,
            request_status=RequestStatus.COMPLETED,
            resolved_by=actor_id if actor == Actor.PLATFORM else None,
        )
        return changes, {
            "payout": _money(receipt.payout),
            "fee": _money(receipt.fee),
            "receipt": receipt.receipt,
        }

    def _refund(
        self,
        *,
        build: BuildView,
        request_status: RequestStatus,
    ) -> tuple[BuildChanges, dict[str, object]]:
        try:
            receipt = self.settlement.refund(
                payer=build.requester_wallet,
                amount=build.escrow_amount,
            )
        except SettlementError as error:
            logger.warning("Refund failed for build %s: %s", build.build_id, error)
            raise SettlementFailed(
                f"Refund failed for build {build.build_id}: {error}",
            ) from error
        changes = BuildChanges(
            escrow_status=EscrowStatus.REFUNDED,
            refund_receipt=receipt.receipt,
            request_status=request_status,
        )
        return changes, {"refunded": _money(build.escrow_amount), "receipt": receipt.receipt}


def _require_escrow(
    build: BuildView,
    desired: BuildStatus,
    allowed: set[EscrowStatus] | frozenset[EscrowStatus],
) -> None:
    if build.escrow_status not in allowed:
        raise _rejected(build, desired, f"escrow is {build.escrow_status.value}")


def _rejected(build: BuildView, desired: BuildStatus, reason: str) -> TransitionRejected:
    return TransitionRejected(
        build_id=build.build_id,
        current=build.status.value,
        target=desired.value,
        reason=reason,
    )


def _money(value: Decimal) -> str:
    return f"{value:.2f}"
