"""Settlement collaborator contract and escrow split arithmetic."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Protocol

CENT = Decimal("0.01")
BPS_DENOMINATOR = 10_000
DEFAULT_PLATFORM_FEE_BPS = 200


class SettlementError(RuntimeError):
    """Settlement backend could not complete a verify/release/refund call."""


@dataclass(slots=True)
class DepositVerification:
    """Outcome of checking a deposit reference against the expected payment."""

    verified: bool
    actual_amount: Decimal | None = None
    error: str | None = None


@dataclass(slots=True)
class ReleaseReceipt:
    payout: Decimal
    fee: Decimal
    receipt: str


@dataclass(slots=True)
class RefundReceipt:
    amount: Decimal
    receipt: str


class SettlementGateway(Protocol):
    """Verify deposits, pay out to agents and refund requesters."""

    def verify_deposit(
        self,
        *,
        reference: str,
        payer: str,
        expected_amount: Decimal,
    ) -> DepositVerification: ...

    def release(self, *, payee: str, amount: Decimal) -> ReleaseReceipt: ...

    def refund(self, *, payer: str, amount: Decimal) -> RefundReceipt: ...


def split_escrow(
    amount: Decimal,
    *,
    fee_bps: int = DEFAULT_PLATFORM_FEE_BPS,
) -> tuple[Decimal, Decimal]:
    """Split an escrowed amount into (agent payout, platform fee).

    The payout is rounded down to whole cents and the fee takes the
    remainder, so ``payout + fee == amount`` always holds.
    """

    if amount < 0:
        raise ValueError(f"Escrow amount must be non-negative, got {amount}.")
    if not 0 <= fee_bps < BPS_DENOMINATOR:
        raise ValueError(f"Fee must be within [0, {BPS_DENOMINATOR}) bps, got {fee_bps}.")
    total = Decimal(amount).quantize(CENT)
    payout = (total * (BPS_DENOMINATOR - fee_bps) / BPS_DENOMINATOR).quantize(
        CENT,
        rounding=ROUND_DOWN,
    )
    return payout, total - payout
