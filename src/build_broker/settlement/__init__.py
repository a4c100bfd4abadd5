"""Settlement collaborators: deposit verification, payouts and refunds."""

from build_broker.settlement.base import (
    DepositVerification,
    RefundReceipt,
    ReleaseReceipt,
    SettlementError,
    SettlementGateway,
    split_escrow,
)
from build_broker.settlement.http_client import HttpSettlementClient

__all__ = [
    "DepositVerification",
    "HttpSettlementClient",
    "RefundReceipt",
    "ReleaseReceipt",
    "SettlementError",
    "SettlementGateway",
    "split_escrow",
]
