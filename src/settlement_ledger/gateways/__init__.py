"""Mobile-money gateway adapters."""

from settlement_ledger.gateways.base import (
    GatewayAdapter,
    GatewayHandle,
    GatewayNotification,
    GatewayStatus,
    compute_signature,
)
from settlement_ledger.gateways.http import HttpGatewayAdapter
from settlement_ledger.gateways.stub import StubGateway

__all__ = [
    "GatewayAdapter",
    "GatewayHandle",
    "GatewayNotification",
    "GatewayStatus",
    "HttpGatewayAdapter",
    "StubGateway",
    "compute_signature",
]
