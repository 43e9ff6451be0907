"""Driver wallet and recharge API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, status

from settlement_ledger.api.dependencies import CurrentActor, Ledger
from settlement_ledger.api.schemas import (
    AutoRechargeRequest,
    AutoRechargeResponse,
    DailyUsageResponse,
    EligibilityResponse,
    ErrorResponse,
    PaymentResponse,
    RechargeCreate,
    RechargeResponse,
    WalletResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)
from settlement_ledger.errors import PermissionDenied, ValidationError
from settlement_ledger.models.common import Actor, Customer

router = APIRouter(prefix="/wallets", tags=["wallets"])

DriverId = Annotated[str, Path()]


def _require_owner(driver_id: str, actor: Actor) -> None:
    if actor.actor_id != driver_id and not actor.is_admin:
        raise PermissionDenied(f"{actor.label()} cannot access wallet {driver_id}")


# ============================================================================
# Wallet
# ============================================================================


@router.post(
    "/{driver_id}",
    response_model=WalletResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": ErrorResponse}},
)
def open_wallet(ledger: Ledger, actor: CurrentActor, driver_id: DriverId) -> WalletResponse:
    """Open the driver's wallet. Idempotent."""
    _require_owner(driver_id, actor)
    return WalletResponse.model_validate(ledger.open_wallet(driver_id))


@router.get(
    "/{driver_id}",
    response_model=WalletResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_wallet(ledger: Ledger, actor: CurrentActor, driver_id: DriverId) -> WalletResponse:
    """Get the wallet balance and status."""
    _require_owner(driver_id, actor)
    return WalletResponse.model_validate(ledger.get_wallet(driver_id))


@router.get("/{driver_id}/eligibility", response_model=EligibilityResponse)
def get_eligibility(
    ledger: Ledger, actor: CurrentActor, driver_id: DriverId
) -> EligibilityResponse:
    """Whether the driver can currently accept cash."""
    _require_owner(driver_id, actor)
    decision = ledger.can_accept_cash(driver_id)
    return EligibilityResponse(
        allowed=decision.allowed,
        reason=decision.reason,
        authorized_methods=[m.value for m in decision.authorized_methods],
        balance=decision.balance,
        minimum_required=decision.minimum_required,
        shortfall=decision.shortfall,
        recharge_active=decision.recharge_active,
    )


@router.post(
    "/{driver_id}/withdrawals",
    response_model=WithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
    responses={402: {"model": ErrorResponse}},
)
def withdraw(
    ledger: Ledger,
    actor: CurrentActor,
    driver_id: DriverId,
    payload: WithdrawalRequest,
) -> WithdrawalResponse:
    """Withdraw money from the wallet."""
    entry = ledger.withdraw(driver_id, payload.amount, actor, payload.note)
    return WithdrawalResponse.model_validate(entry)


# ============================================================================
# Recharges
# ============================================================================


@router.post(
    "/{driver_id}/recharges",
    response_model=RechargeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
def create_recharge(
    ledger: Ledger,
    actor: CurrentActor,
    driver_id: DriverId,
    payload: RechargeCreate,
) -> RechargeResponse:
    """Start a wallet top-up through mobile money."""
    customer = Customer(phone_number=payload.phone_number) if payload.phone_number else None
    result = ledger.initiate_recharge(driver_id, payload.amount, payload.method, customer, actor)
    return RechargeResponse(
        payment=PaymentResponse.model_validate(result.payment),
        redirect_url=result.gateway_handle.redirect_url if result.gateway_handle else None,
        outcome_known=result.outcome_known,
    )


@router.post(
    "/{driver_id}/recharges/{reference}/cancel",
    response_model=PaymentResponse,
    responses={409: {"model": ErrorResponse}},
)
def cancel_recharge(
    ledger: Ledger,
    actor: CurrentActor,
    driver_id: DriverId,
    reference: Annotated[str, Path()],
) -> PaymentResponse:
    """Cancel a pending top-up within the cancellation window."""
    payment = ledger.get_payment(reference)
    if payment.beneficiary_id != driver_id:
        raise ValidationError(f"Recharge {reference} does not belong to wallet {driver_id}")
    return PaymentResponse.model_validate(ledger.cancel_recharge(reference, actor))


@router.get("/{driver_id}/daily-usage", response_model=DailyUsageResponse)
def get_daily_usage(
    ledger: Ledger, actor: CurrentActor, driver_id: DriverId
) -> DailyUsageResponse:
    """Today's recharge usage against the daily limits."""
    _require_owner(driver_id, actor)
    return DailyUsageResponse.model_validate(ledger.daily_usage(driver_id))


@router.put("/{driver_id}/auto-recharge", response_model=AutoRechargeResponse)
def configure_auto_recharge(
    ledger: Ledger,
    actor: CurrentActor,
    driver_id: DriverId,
    payload: AutoRechargeRequest,
) -> AutoRechargeResponse:
    """Enable automatic top-ups below a balance threshold."""
    settings = ledger.configure_auto_recharge(
        driver_id,
        payload.threshold,
        payload.amount,
        payload.method,
        actor,
        payload.phone_number,
    )
    return AutoRechargeResponse.model_validate(settings)


@router.delete("/{driver_id}/auto-recharge", response_model=AutoRechargeResponse)
def disable_auto_recharge(
    ledger: Ledger, actor: CurrentActor, driver_id: DriverId
) -> AutoRechargeResponse:
    """Disable automatic top-ups."""
    return AutoRechargeResponse.model_validate(ledger.disable_auto_recharge(driver_id, actor))
