"""Trip payment API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, status

from settlement_ledger.api.dependencies import CurrentActor, Ledger
from settlement_ledger.api.schemas import (
    ErrorResponse,
    PaymentResponse,
    TripPaymentCreate,
    TripPaymentResponse,
)
from settlement_ledger.errors import PermissionDenied
from settlement_ledger.models.common import ActorRole, Customer, Reservation

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/trips",
    response_model=TripPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
def create_trip_payment(
    ledger: Ledger,
    actor: CurrentActor,
    payload: TripPaymentCreate,
) -> TripPaymentResponse:
    """Start paying a trip in cash or mobile money."""
    trusted = actor.role in (ActorRole.ADMIN, ActorRole.SYSTEM)
    if actor.actor_id != payload.reservation.rider_id and not trusted:
        raise PermissionDenied("Only the rider can pay for this trip")

    supplied = payload.reservation.supplied_facts()
    if supplied and not trusted:
        raise PermissionDenied(
            "Trip facts are resolved by the platform", fields=sorted(supplied)
        )

    if supplied:
        reservation = Reservation(**payload.reservation.model_dump(exclude_none=True))
    else:
        reservation = ledger.trusted_reservation(
            payload.reservation.reservation_id,
            payload.reservation.rider_id,
            payload.reservation.driver_id,
        )
    customer = Customer(phone_number=payload.phone_number) if payload.phone_number else None
    result = ledger.initiate_trip_payment(reservation, payload.amount, payload.method, customer)
    return TripPaymentResponse(
        payment=PaymentResponse.model_validate(result.payment),
        redirect_url=result.gateway_handle.redirect_url if result.gateway_handle else None,
        outcome_known=result.outcome_known,
    )


@router.get(
    "/{reference}",
    response_model=PaymentResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_payment(
    ledger: Ledger,
    actor: CurrentActor,
    reference: Annotated[str, Path()],
) -> PaymentResponse:
    """Get a payment by reference."""
    payment = ledger.get_payment(reference)
    if actor.actor_id not in (payment.payer_id, payment.beneficiary_id) and not actor.is_admin:
        raise PermissionDenied("Not a party to this payment")
    return PaymentResponse.model_validate(payment)


@router.post(
    "/{reference}/confirm-cash",
    response_model=PaymentResponse,
    responses={
        402: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def confirm_cash_payment(
    ledger: Ledger,
    actor: CurrentActor,
    reference: Annotated[str, Path()],
) -> PaymentResponse:
    """Confirm the cash handover. The commission is debited from the driver's wallet."""
    payment = ledger.confirm_cash_payment(reference, actor.actor_id)
    return PaymentResponse.model_validate(payment)
