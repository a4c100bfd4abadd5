from __future__ import annotations

import json
from decimal import Decimal

import allure
import httpx
import pytest

from build_broker.settlement import HttpSettlementClient, SettlementError

pytestmark = [
    allure.epic("Escrow"),
    allure.feature("Settlement Client"),
]


def _client(handler, **kwargs) -> HttpSettlementClient:
    return HttpSettlementClient(
        base_url="https://custody.test/",
        api_token="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_verify_deposit_posts_reference_and_parses_amount() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"verified": True, "actual_amount": "99.99"})

    with _client(handler) as client:
        result = client.verify_deposit(
            reference="tx-1",
            payer="wallet-requester",
            expected_amount=Decimal("100.00"),
        )

    assert result.verified is True
    assert result.actual_amount == Decimal("99.99")
    assert seen[0].url.path == "/deposits/verify"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(seen[0].content) == {
        "reference": "tx-1",
        "payer": "wallet-requester",
        "expected_amount": "100.00",
    }


def test_unverified_deposit_carries_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"verified": False, "error": "not found"})

    with _client(handler) as client:
        result = client.verify_deposit(
            reference="tx-1",
            payer="wallet",
            expected_amount=Decimal("1"),
        )

    assert result.verified is False
    assert result.actual_amount is None
    assert result.error == "not found"


def test_release_transfers_payout_and_keeps_fee() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"receipt": "sig-release"})

    with _client(handler) as client:
        receipt = client.release(payee="wallet-agent", amount=Decimal("100.00"))

    assert receipt.payout == Decimal("98.00")
    assert receipt.fee == Decimal("2.00")
    assert receipt.receipt == "sig-release"
    assert bodies == [{"to": "wallet-agent", "amount": "98.00", "memo": "release"}]


def test_refund_transfers_full_amount() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"receipt": "sig-refund"})

    with _client(handler) as client:
        receipt = client.refund(payer="wallet-requester", amount=Decimal("42.50"))

    assert receipt.amount == Decimal("42.50")
    assert receipt.receipt == "sig-refund"
    assert bodies == [{"to": "wallet-requester", "amount": "42.50", "memo": "refund"}]


def test_custom_fee_is_applied() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"receipt": "sig"})

    with _client(handler, fee_bps=500) as client:
        receipt = client.release(payee="wallet-agent", amount=Decimal("10.00"))

    assert (receipt.payout, receipt.fee) == (Decimal("9.50"), Decimal("0.50"))


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (httpx.Response(502, text="bad gateway"), "HTTP 502"),
        (httpx.Response(200, text="not json"), "invalid JSON"),
        (httpx.Response(200, json=["receipt"]), "non-object"),
        (httpx.Response(200, json={"receipt": ""}), "no receipt"),
    ],
)
def test_bad_responses_raise_settlement_error(response: httpx.Response, message: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    with _client(handler) as client, pytest.raises(SettlementError, match=message):
        client.refund(payer="wallet", amount=Decimal("1.00"))


def test_transport_errors_raise_settlement_error() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with _client(timeout) as client, pytest.raises(SettlementError, match="timed out"):
        client.release(payee="wallet", amount=Decimal("1.00"))
    with _client(refused) as client, pytest.raises(SettlementError, match="refused"):
        client.release(payee="wallet", amount=Decimal("1.00"))


def test_invalid_amount_in_verification_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"verified": True, "actual_amount": "lots"})

    with _client(handler) as client, pytest.raises(SettlementError, match="invalid amount"):
        client.verify_deposit(reference="tx", payer="wallet", expected_amount=Decimal("1"))
