import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from storefront.models import get_db
from storefront.schemas.payments import PaymentInitiateRequest
from storefront.services.errors import GatewayError, OrderNotFoundError, PaymentValidationError
from storefront.services.payment_orchestrator import poll_status, request_payment
from storefront.services.url_utils import validate_redirect_url

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/initiate",
    summary="Start an STK push for an order",
)
def initiate_payment(
    body: PaymentInitiateRequest,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Sends an STK push prompt to the payer's phone for the order total.
    Returns the gateway acknowledgment plus `checkoutRequestId` to poll with.
    The order is only marked paid by the gateway callback.
    """
    if not body.phone_number or body.amount is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Phone number and amount are required",
        )
    if body.order_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order ID is required")
    if body.amount <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be positive")

    try:
        redirect_url = validate_redirect_url(body.redirect_url, "redirectUrl") if body.redirect_url else None
        result = request_payment(
            db,
            order_id=body.order_id,
            phone_number=body.phone_number,
            redirect_url=redirect_url,
            requested_amount=body.amount,
        )
    except PaymentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except OrderNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    except GatewayError as e:
        logger.error("Payment initiation failed for order %s: %s", body.order_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to initiate payment",
        )

    return {
        **result.initiation.raw,
        "orderId": result.order_id,
        "externalReference": result.external_reference,
        "checkoutRequestId": result.initiation.checkout_request_id,
    }


@router.get(
    "/status",
    summary="Query payment status from the gateway",
)
def payment_status(
    db: Annotated[Session, Depends(get_db)],
    checkout_request_id: Annotated[str | None, Query(alias="checkoutRequestId")] = None,
):
    """
    Asks the gateway about a checkout request.
    A completed or failed answer settles the order if it is still pending.
    """
    if not checkout_request_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Checkout request ID is required",
        )

    try:
        gateway_status = poll_status(db, checkout_request_id)
    except PaymentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except GatewayError as e:
        logger.error("Status check failed for %s: %s", checkout_request_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check payment status",
        )

    return {
        **gateway_status.raw,
        "checkoutRequestId": gateway_status.reference,
        "state": gateway_status.state,
        "amount": str(gateway_status.amount) if gateway_status.amount is not None else None,
        "transactionId": gateway_status.transaction_id,
        "message": gateway_status.message,
    }
