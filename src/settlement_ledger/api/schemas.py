"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from settlement_ledger.models.common import (
    CommissionSettlement,
    GatewayOutcome,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
)


# ============================================================================
# Errors
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
    code: str
    details: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Payment schemas
# ============================================================================


class CommissionResponse(BaseModel):
    """Commission frozen on a payment."""

    model_config = ConfigDict(from_attributes=True)

    rate: Decimal
    original_rate: Decimal
    reduction: Decimal
    amount: Decimal
    reason_code: str


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    payment_id: str
    reference: str
    kind: PaymentKind
    status: PaymentStatus
    method: PaymentMethod
    payer_id: str
    beneficiary_id: str
    reservation_id: str | None = None
    gross_amount: Decimal
    fee: Decimal
    net_amount: Decimal
    commission: CommissionResponse
    commission_settlement: CommissionSettlement
    currency: str
    redirect_url: str | None = None
    external_transaction_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class ReservationSchema(BaseModel):
    """The trip being paid.

    Distance and driver facts may only be supplied by admin or system
    callers. For riders they come from the trip facts provider.
    """

    reservation_id: str
    rider_id: str
    driver_id: str
    distance_km: float | None = Field(default=None, ge=0)
    driver_rating: float | None = Field(default=None, ge=0, le=5)
    driver_trips_this_month: int | None = Field(default=None, ge=0)

    def supplied_facts(self) -> set[str]:
        return {
            name
            for name in ("distance_km", "driver_rating", "driver_trips_this_month")
            if getattr(self, name) is not None
        }


class TripPaymentCreate(BaseModel):
    """Schema for initiating a trip payment."""

    reservation: ReservationSchema
    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    phone_number: str | None = None


class TripPaymentResponse(BaseModel):
    """Schema for an initiated trip payment."""

    payment: PaymentResponse
    redirect_url: str | None = None
    outcome_known: bool


class OutcomeResponse(BaseModel):
    """Result of applying an outcome to a payment."""

    payment: PaymentResponse
    disposition: str
    previous_status: str


class RefundRequest(BaseModel):
    """Schema for refunding a completed trip payment."""

    reason: str = Field(min_length=1)


class CommissionResolveRequest(BaseModel):
    """Schema for resolving a failed cash commission."""

    action: str = Field(pattern="^(retry|waive|manual_settle)$")
    reason: str = Field(min_length=1)


# ============================================================================
# Wallet schemas
# ============================================================================


class WalletResponse(BaseModel):
    """Schema for wallet response."""

    model_config = ConfigDict(from_attributes=True)

    driver_id: str
    balance: Decimal
    minimum_balance: Decimal
    currency: str
    recharge_active: bool
    created_at: datetime
    updated_at: datetime


class EligibilityResponse(BaseModel):
    """Schema for cash eligibility."""

    allowed: bool
    reason: str
    authorized_methods: list[str]
    balance: Decimal
    minimum_required: Decimal
    shortfall: Decimal
    recharge_active: bool


class RechargeCreate(BaseModel):
    """Schema for initiating a wallet recharge."""

    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    phone_number: str | None = None


class RechargeResponse(BaseModel):
    """Schema for an initiated recharge."""

    payment: PaymentResponse
    redirect_url: str | None = None
    outcome_known: bool


class RechargeConfirmRequest(BaseModel):
    """Schema for an admin-confirmed recharge outcome."""

    outcome: GatewayOutcome


class AutoRechargeRequest(BaseModel):
    """Schema for enabling auto-recharge."""

    threshold: Decimal = Field(ge=0)
    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    phone_number: str | None = None


class AutoRechargeResponse(BaseModel):
    """Schema for auto-recharge settings."""

    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    threshold: Decimal
    amount: Decimal
    method: PaymentMethod | None = None
    phone_number: str | None = None


class DailyUsageResponse(BaseModel):
    """Schema for today's recharge usage."""

    model_config = ConfigDict(from_attributes=True)

    amount: Decimal
    count: int
    amount_limit: Decimal
    count_limit: int
    remaining_amount: Decimal
    remaining_count: int


class WithdrawalRequest(BaseModel):
    """Schema for withdrawing from a wallet."""

    amount: Decimal = Field(gt=0)
    note: str = ""


class WithdrawalResponse(BaseModel):
    """Schema for a recorded withdrawal."""

    model_config = ConfigDict(from_attributes=True)

    withdrawal_id: str
    amount: Decimal
    recorded_at: datetime
    note: str


# ============================================================================
# Admin schemas
# ============================================================================


class WebhookResponse(BaseModel):
    """Acknowledgement sent back to the gateway."""

    reference: str
    status: str
    disposition: str


class ReconciliationResponse(BaseModel):
    """Schema for a reconciliation run."""

    model_config = ConfigDict(from_attributes=True)

    started_at: datetime
    payments_checked: int
    payments_completed: int
    payments_failed: int
    recharges_expired: int
    still_pending: int
    errors: list[dict[str, Any]]
    success: bool


class WalletAuditResponse(BaseModel):
    """Schema for a wallet balance audit."""

    model_config = ConfigDict(from_attributes=True)

    driver_id: str
    balance: Decimal
    replayed: Decimal
    drift: Decimal
    consistent: bool
