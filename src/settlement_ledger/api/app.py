"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from settlement_ledger.api.routes import (
    admin_router,
    health_router,
    payments_router,
    wallets_router,
    webhooks_router,
)
from settlement_ledger.config import get_settings
from settlement_ledger.errors import (
    ConcurrentModification,
    DailyLimitExceeded,
    DuplicatePayment,
    EligibilityDenied,
    GatewayRejected,
    GatewayUnavailable,
    InsufficientWalletBalance,
    InvalidSignature,
    InvalidStateTransition,
    LedgerError,
    PaymentNotFound,
    PermissionDenied,
    StatusMismatch,
    ValidationError,
    VelocityLimitExceeded,
    WalletNotFound,
)
from settlement_ledger.ledger import SettlementLedger
from settlement_ledger.models.common import serialize_value

logger = logging.getLogger(__name__)

# Most specific class first; lookup walks the exception's MRO
ERROR_STATUS: dict[type[LedgerError], int] = {
    DuplicatePayment: status.HTTP_409_CONFLICT,
    DailyLimitExceeded: status.HTTP_429_TOO_MANY_REQUESTS,
    VelocityLimitExceeded: status.HTTP_429_TOO_MANY_REQUESTS,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    EligibilityDenied: status.HTTP_403_FORBIDDEN,
    InsufficientWalletBalance: status.HTTP_402_PAYMENT_REQUIRED,
    InvalidStateTransition: status.HTTP_409_CONFLICT,
    StatusMismatch: status.HTTP_409_CONFLICT,
    ConcurrentModification: status.HTTP_409_CONFLICT,
    GatewayUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    GatewayRejected: status.HTTP_502_BAD_GATEWAY,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    InvalidSignature: status.HTTP_401_UNAUTHORIZED,
    PaymentNotFound: status.HTTP_404_NOT_FOUND,
    WalletNotFound: status.HTTP_404_NOT_FOUND,
}


def status_for(exc: LedgerError) -> int:
    """HTTP status for a ledger error."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    if getattr(app.state, "ledger", None) is None:
        app.state.ledger = SettlementLedger.from_settings(get_settings())
    yield
    # Shutdown
    close = getattr(app.state.ledger.gateway, "close", None)
    if close is not None:
        close()


def create_app(ledger: SettlementLedger | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        ledger: Ledger to serve. Built from environment settings at
            startup when omitted.
    """
    app = FastAPI(
        title="Settlement Ledger API",
        description="Trip payments, driver wallets and recharges",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.ledger = ledger

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(LedgerError)
    async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
        """Map ledger errors to their HTTP status."""
        code = status_for(exc)
        headers = None
        if isinstance(exc, VelocityLimitExceeded):
            headers = {"Retry-After": str(exc.retry_after_seconds)}
        if code >= 500:
            logger.warning("%s on %s: %s", exc.code, request.url.path, exc)
        return JSONResponse(
            status_code=code,
            content={
                "detail": exc.message,
                "code": exc.code,
                "details": serialize_value(exc.details),
            },
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(admin_router)
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(wallets_router, prefix="/api/v1")

    return app
