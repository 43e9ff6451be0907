"""Admin endpoints: manual confirmation, refunds, commission resolution and jobs."""

from datetime import datetime, timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Path, Query, status

from settlement_ledger.api.dependencies import AdminActor, Ledger
from settlement_ledger.api.schemas import (
    CommissionResolveRequest,
    ErrorResponse,
    OutcomeResponse,
    PaymentResponse,
    RechargeConfirmRequest,
    ReconciliationResponse,
    RefundRequest,
    WalletAuditResponse,
)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/recharges/{reference}/confirm",
    response_model=OutcomeResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def confirm_recharge(
    ledger: Ledger,
    actor: AdminActor,
    reference: Annotated[str, Path()],
    payload: RechargeConfirmRequest,
) -> OutcomeResponse:
    """Confirm a recharge by hand after checking the gateway's record."""
    result = ledger.confirm_recharge(reference, payload.outcome, actor)
    return OutcomeResponse(
        payment=PaymentResponse.model_validate(result.payment),
        disposition=result.disposition.value,
        previous_status=result.previous_status.value,
    )


@router.post(
    "/payments/{reference}/refund",
    response_model=PaymentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def refund_payment(
    ledger: Ledger,
    actor: AdminActor,
    reference: Annotated[str, Path()],
    payload: RefundRequest,
) -> PaymentResponse:
    """Refund a completed trip payment."""
    payment = ledger.get_payment(reference)
    payment = ledger.refund(payment.payment_id, actor, payload.reason)
    return PaymentResponse.model_validate(payment)


@router.post(
    "/payments/{reference}/commission",
    response_model=PaymentResponse,
    responses={402: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def resolve_commission(
    ledger: Ledger,
    actor: AdminActor,
    reference: Annotated[str, Path()],
    payload: CommissionResolveRequest,
) -> PaymentResponse:
    """Retry, waive or manually settle a failed cash commission."""
    payment = ledger.resolve_commission(reference, payload.action, actor, payload.reason)
    return PaymentResponse.model_validate(payment)


@router.post(
    "/reconcile",
    response_model=ReconciliationResponse,
    status_code=status.HTTP_200_OK,
)
def reconcile(
    ledger: Ledger,
    actor: AdminActor,
    older_than_minutes: Annotated[int, Query(ge=0)] = 0,
) -> ReconciliationResponse:
    """Settle pending digital payments from the gateway's records."""
    result = ledger.reconcile(timedelta(minutes=older_than_minutes))
    return ReconciliationResponse.model_validate(result)


@router.get("/wallets/audit", response_model=list[WalletAuditResponse])
def audit_wallets(ledger: Ledger, actor: AdminActor) -> list[WalletAuditResponse]:
    """Compare every wallet balance with its replayed history."""
    return [WalletAuditResponse.model_validate(a) for a in ledger.verify_all_wallets()]


@router.get("/commissions/summary")
def commission_summary(
    ledger: Ledger,
    actor: AdminActor,
    since: datetime | None = None,
    until: datetime | None = None,
) -> dict[str, Any]:
    """Commission totals for trips completed in a period."""
    return ledger.commission_summary(since, until).to_dict()
