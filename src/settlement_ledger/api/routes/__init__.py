"""API routes."""

from settlement_ledger.api.routes.admin import router as admin_router
from settlement_ledger.api.routes.health import router as health_router
from settlement_ledger.api.routes.payments import router as payments_router
from settlement_ledger.api.routes.wallets import router as wallets_router
from settlement_ledger.api.routes.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "health_router",
    "payments_router",
    "wallets_router",
    "webhooks_router",
]
