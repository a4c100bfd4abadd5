"""HTTP settlement client with retries and timeout."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from build_broker.settlement.base import (
    DEFAULT_PLATFORM_FEE_BPS,
    DepositVerification,
    RefundReceipt,
    ReleaseReceipt,
    SettlementError,
    split_escrow,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = "build-broker/0.1 (settlement)"


class HttpSettlementClient:
    """Settlement gateway talking JSON to a remote custody service.

    ``POST /deposits/verify`` checks a deposit reference and ``POST /transfers``
    moves funds out of the escrow wallet. Releases transfer only the agent
    payout; the platform fee stays in escrow.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        api_token: str | None = None,
        fee_bps: int = DEFAULT_PLATFORM_FEE_BPS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.fee_bps = fee_bps
        headers = {"User-Agent": DEFAULT_USER_AGENT}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def verify_deposit(
        self,
        *,
        reference: str,
        payer: str,
        expected_amount: Decimal,
    ) -> DepositVerification:
        payload = self._post(
            "/deposits/verify",
            {
                "reference": reference,
                "payer": payer,
                "expected_amount": str(expected_amount),
            },
        )
        actual = payload.get("actual_amount")
        return DepositVerification(
            verified=bool(payload.get("verified")),
            actual_amount=_parse_amount(actual) if actual is not None else None,
            error=payload.get("error"),
        )

    def release(self, *, payee: str, amount: Decimal) -> ReleaseReceipt:
        payout, fee = split_escrow(amount, fee_bps=self.fee_bps)
        receipt = self._transfer(to=payee, amount=payout, memo="release")
        logger.info("Released %s to %s (fee %s), receipt=%s", payout, payee, fee, receipt)
        return ReleaseReceipt(payout=payout, fee=fee, receipt=receipt)

    def refund(self, *, payer: str, amount: Decimal) -> RefundReceipt:
        receipt = self._transfer(to=payer, amount=amount, memo="refund")
        logger.info("Refunded %s to %s, receipt=%s", amount, payer, receipt)
        return RefundReceipt(amount=amount, receipt=receipt)

    def _transfer(self, *, to: str, amount: Decimal, memo: str) -> str:
        payload = self._post("/transfers", {"to": to, "amount": str(amount), "memo": memo})
        receipt = payload.get("receipt")
        if not isinstance(receipt, str) or not receipt:
            raise SettlementError(f"Settlement {memo} returned no receipt.")
        return receipt

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json=body)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling settlement %s", path)
            raise SettlementError(f"Settlement call {path} timed out.") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling settlement %s: %s", path, error)
            raise SettlementError(f"Settlement call {path} failed: {error}") from error

        if not response.is_success:
            raise SettlementError(
                f"Settlement call {path} returned HTTP {response.status_code}: "
                f"{response.text[:200]}",
            )
        try:
            payload = response.json()
        except ValueError as error:
            raise SettlementError(f"Settlement call {path} returned invalid JSON.") from error
        if not isinstance(payload, dict):
            raise SettlementError(f"Settlement call {path} returned a non-object payload.")
        return payload

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpSettlementClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _parse_amount(value: object) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as error:
        raise SettlementError(f"Settlement returned invalid amount: {value!r}") from error
