import hmac
import json
import logging
from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.models import get_db
from storefront.services.errors import CallbackPayloadError
from storefront.services.gateway_base import CallbackResult
from storefront.services.mpesa_service import MpesaClient
from storefront.services.payhero_service import PayheroClient
from storefront.services.payment_orchestrator import (
    OUTCOME_COMPLETED,
    OUTCOME_DUPLICATE,
    OUTCOME_FAILED,
    OUTCOME_NOT_FOUND,
    handle_callback,
)

router = APIRouter()
logger = logging.getLogger(__name__)

CALLBACK_TOKEN_HEADER = "x-callback-token"

OUTCOME_MESSAGES = {
    OUTCOME_COMPLETED: "Payment processed successfully",
    OUTCOME_FAILED: "Payment failed or cancelled as per callback.",
    OUTCOME_DUPLICATE: "Order already processed.",
    OUTCOME_NOT_FOUND: "Order record not found by reference.",
}


def _verify_callback_token(request: Request) -> None:
    """Require PAYMENT_CALLBACK_SECRET in a header or ``token`` query param when configured."""
    if not settings.PAYMENT_CALLBACK_SECRET:
        logger.warning("PAYMENT_CALLBACK_SECRET is not set, accepting unauthenticated payment callback")
        return

    supplied = request.headers.get(CALLBACK_TOKEN_HEADER) or request.query_params.get("token")
    if not supplied:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing callback token")
    if not hmac.compare_digest(supplied.encode("utf-8"), settings.PAYMENT_CALLBACK_SECRET.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid callback token")


async def _read_json(request: Request) -> Any:
    raw_body = await request.body()
    try:
        return json.loads(raw_body)
    except ValueError as e:
        logger.error("Invalid JSON in payment callback: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")


def _dispatch(parse: Callable[[Any], CallbackResult], body: Any, db: Session, source: str) -> dict:
    try:
        result = parse(body)
    except CallbackPayloadError as e:
        logger.error("%s callback rejected: %s", source, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid payload: {e}")

    logger.info(
        "%s callback received: success=%s gateway_reference=%s external_reference=%s",
        source,
        result.success,
        result.gateway_reference,
        result.external_reference,
    )
    try:
        outcome = handle_callback(db, result)
    except Exception as e:
        logger.error("Error processing %s callback: %s", source, e, exc_info=True)
        db.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error processing callback")

    return {"received": True, "message": OUTCOME_MESSAGES[outcome.action]}


@router.post(
    "/callback",
    summary="PayHero payment callback",
)
async def payhero_callback(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Called by PayHero with the final outcome of a payment.
    Matched to the order by the echoed external reference (`user_reference`).
    Idempotent: a callback for an already settled order changes nothing.
    """
    _verify_callback_token(request)
    body = await _read_json(request)
    return _dispatch(PayheroClient.parse_callback, body, db, "PayHero")


@router.post(
    "/mpesa/callback",
    summary="M-Pesa STK push callback",
)
async def mpesa_callback(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Called by Daraja with the STK push result.
    Matched to the order by `CheckoutRequestID`.
    """
    _verify_callback_token(request)
    body = await _read_json(request)
    return _dispatch(MpesaClient.parse_callback, body, db, "M-Pesa")
