"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from decimal import Decimal
from pathlib import Path

import pytest

from build_broker.execution import BuildExecutionError, Deliverable
from build_broker.orchestrator.models import (
    BuildJobSpec,
    BuildView,
    HireRequestCreate,
    PitchCreate,
)
from build_broker.orchestrator.repository import OrchestratorRepository
from build_broker.orchestrator.services import HireService
from build_broker.settlement import (
    DepositVerification,
    RefundReceipt,
    ReleaseReceipt,
    SettlementError,
    split_escrow,
)

REQUESTER_WALLET = "wallet-requester"
AGENT_WALLET = "wallet-agent"


class FakeSettlement:
    """In-memory settlement gateway recording every fund movement."""

    def __init__(self, *, fee_bps: int = 200) -> None:
        self.fee_bps = fee_bps
        self.deposits: dict[str, Decimal] = {}
        self.releases: list[tuple[str, Decimal]] = []
        self.refunds: list[tuple[str, Decimal]] = []
        self.fail_verify = False
        self.fail_release = False
        self.fail_refund = False

    def verify_deposit(
        self,
        *,
        reference: str,
        payer: str,
        expected_amount: Decimal,
    ) -> DepositVerification:
        if self.fail_verify:
            raise SettlementError("custody service unreachable")
        amount = self.deposits.get(reference)
        if amount is None:
            return DepositVerification(verified=False, error="unknown reference")
        return DepositVerification(verified=True, actual_amount=amount)

    def release(self, *, payee: str, amount: Decimal) -> ReleaseReceipt:
        if self.fail_release:
            raise SettlementError("transfer rejected")
        payout, fee = split_escrow(amount, fee_bps=self.fee_bps)
        self.releases.append((payee, amount))
        return ReleaseReceipt(payout=payout, fee=fee, receipt=f"release-{len(self.releases)}")

    def refund(self, *, payer: str, amount: Decimal) -> RefundReceipt:
        if self.fail_refund:
            raise SettlementError("transfer rejected")
        self.refunds.append((payer, amount))
        return RefundReceipt(amount=amount, receipt=f"refund-{len(self.refunds)}")


class ScriptedExecutor:
    """Executor that follows a script of outcomes and tracks concurrency."""

    def __init__(self, outcomes: list[str] | None = None, *, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def execute(self, spec: BuildJobSpec) -> Deliverable:
        self.calls.append(spec.build_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else "ok"
            if outcome == "fail":
                raise BuildExecutionError("generator crashed")
            if outcome == "blank":
                return Deliverable(url="  ")
            return Deliverable(url=f"https://builds.test/{spec.build_id}/")
        finally:
            self.active -= 1


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'broker.db'}"


@pytest.fixture()
def repository(database_url: str) -> Iterator[OrchestratorRepository]:
    repo = OrchestratorRepository(database_url)
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def settlement() -> FakeSettlement:
    return FakeSettlement()


@pytest.fixture()
def service(repository: OrchestratorRepository, settlement: FakeSettlement) -> HireService:
    return HireService(repository=repository, settlement=settlement)


@pytest.fixture()
def hire_factory(
    repository: OrchestratorRepository,
    settlement: FakeSettlement,
    service: HireService,
) -> Callable[..., BuildView]:
    """Create request + pitch + verified deposit and hire it."""

    def _hire(
        *,
        price: Decimal = Decimal("100.00"),
        agent_id: str | None = "agent-builder",
        agent_name: str | None = None,
        title: str = "Landing page",
    ) -> BuildView:
        request = repository.add_request(
            HireRequestCreate(
                requester_id="user-1",
                requester_wallet=REQUESTER_WALLET,
                title=title,
                description="One page site with a contact form",
            ),
        )
        pitch = repository.add_pitch(
            PitchCreate(
                request_id=request.request_id,
                agent_wallet=AGENT_WALLET,
                price=price,
                agent_id=agent_id,
                agent_name=agent_name,
            ),
        )
        reference = f"deposit-{request.request_id}"
        settlement.deposits[reference] = price
        return service.create_hire(
            request_id=request.request_id,
            pitch_id=pitch.pitch_id,
            deposit_reference=reference,
        )

    return _hire


@pytest.fixture()
def executor_factory() -> type[ScriptedExecutor]:
    return ScriptedExecutor
