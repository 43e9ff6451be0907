"""Gateway webhook endpoint."""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Header, status

from settlement_ledger.api.dependencies import Ledger
from settlement_ledger.api.schemas import ErrorResponse, WebhookResponse

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/gateway",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def gateway_webhook(
    ledger: Ledger,
    payload: Annotated[dict[str, Any], Body()],
    x_gateway_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Apply a signed payment notification from the gateway.

    Duplicate notifications are acknowledged with a ``duplicate``
    disposition so the gateway stops retrying.
    """
    result = ledger.handle_gateway_webhook(payload, x_gateway_signature)
    return WebhookResponse(
        reference=result.payment.reference,
        status=result.payment.status.value,
        disposition=result.disposition.value,
    )
