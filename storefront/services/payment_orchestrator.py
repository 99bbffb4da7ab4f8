"""Payment initiation, callback reconciliation and status polling.

Every write to an order is a field-scoped ``UPDATE``. The callback transition
is a single conditional ``UPDATE ... WHERE payment_status = 'pending'`` whose
row count decides which of several concurrent deliveries wins. A terminal
status poll goes through the same gate.
"""

import logging
import secrets
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal

from sqlalchemy.orm import Session

from storefront.models import Order
from storefront.models.order import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PENDING,
)
from storefront.services.cart_service import clear_cart
from storefront.services.errors import (
    GatewayInitiationError,
    OrderNotFoundError,
    PaymentValidationError,
    ReconciliationWarning,
)
from storefront.services.gateway_base import (
    STATE_COMPLETED,
    STATE_FAILED,
    CallbackResult,
    GatewayStatus,
    InitiationResult,
    PaymentGatewayClient,
)
from storefront.services.payment_gateways import get_payment_gateway
from storefront.services.phone import normalize_phone_number

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_NOT_FOUND = "not_found"

MESSAGE_MAX_LENGTH = 255


@dataclass(frozen=True)
class PaymentRequestResult:
    order_id: int
    external_reference: str
    initiation: InitiationResult


@dataclass
class CallbackOutcome:
    action: str
    order_id: int | None = None
    warnings: list[ReconciliationWarning] = field(default_factory=list)


def new_external_reference(order_id: int) -> str:
    return f"ORD{order_id}-{secrets.token_hex(3)}"


def _ensure_external_reference(db: Session, order: Order, phone: str) -> str:
    """Commit the order's external reference and phone number before the gateway call.

    The reference is assigned once per order and reused by later attempts.
    """
    reference = order.external_reference or new_external_reference(order.id)
    query = db.query(Order).filter(Order.id == order.id)
    if order.external_reference is None:
        query = query.filter(Order.external_reference.is_(None))

    updated = query.update(
        {Order.external_reference: reference, Order.phone_number: phone},
        synchronize_session=False,
    )
    if updated != 1:
        # A concurrent request assigned the reference first.
        db.rollback()
        reference = db.query(Order.external_reference).filter(Order.id == order.id).scalar()
        db.query(Order).filter(Order.id == order.id).update(
            {Order.phone_number: phone}, synchronize_session=False
        )
    db.commit()
    return reference


def request_payment(
    db: Session,
    order_id: int,
    phone_number: str,
    gateway: PaymentGatewayClient | None = None,
    redirect_url: str | None = None,
    requested_amount: Decimal | None = None,
) -> PaymentRequestResult:
    """Start an STK push for ``order_id`` charging the order total.

    The order is never marked paid here. ``requested_amount`` is the amount the
    client believes it owes; a difference is logged and the total is charged.
    """
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise OrderNotFoundError(order_id)
    if order.payment_status != PAYMENT_STATUS_PENDING or order.status != ORDER_STATUS_PENDING:
        raise PaymentValidationError(f"Order {order_id} is not awaiting payment")

    phone = normalize_phone_number(phone_number)
    gateway = gateway or get_payment_gateway()
    total = Decimal(str(order.total))
    if requested_amount is not None and requested_amount != total:
        logger.warning(
            "Requested amount %s differs from order %s total %s; charging the total",
            requested_amount,
            order_id,
            total,
        )

    external_reference = _ensure_external_reference(db, order, phone)
    logger.info(
        "Initiating %s payment for order %s: reference=%s amount=%s",
        gateway.name,
        order_id,
        external_reference,
        total,
    )

    try:
        initiation = gateway.initiate_payment(total, phone, external_reference, redirect_url)
    except GatewayInitiationError:
        logger.warning("Payment initiation failed for order %s", order_id)
        raise

    if initiation.checkout_request_id:
        db.query(Order).filter(Order.id == order_id).update(
            {Order.checkout_request_id: initiation.checkout_request_id},
            synchronize_session=False,
        )
        db.commit()

    return PaymentRequestResult(
        order_id=order_id,
        external_reference=external_reference,
        initiation=initiation,
    )


def find_order_for_callback(db: Session, result: CallbackResult) -> Order | None:
    if result.external_reference:
        order = db.query(Order).filter(Order.external_reference == result.external_reference).first()
        if order:
            return order
    if result.checkout_request_id:
        return db.query(Order).filter(Order.checkout_request_id == result.checkout_request_id).first()
    return None


def is_already_processed(order: Order) -> bool:
    return order.payment_status != PAYMENT_STATUS_PENDING or order.status != ORDER_STATUS_PENDING


def check_amount(order: Order, paid: Decimal | None) -> ReconciliationWarning | None:
    """Compare whole-unit amounts, rounding both up."""
    if paid is None:
        return None
    expected = Decimal(str(order.total)).to_integral_value(rounding=ROUND_CEILING)
    received = paid.to_integral_value(rounding=ROUND_CEILING)
    if expected == received:
        return None
    return ReconciliationWarning(order.id, order.total, paid)


def _transition(db: Session, order_id: int, values: dict) -> bool:
    """Apply a terminal transition only if the order is still pending."""
    updated = (
        db.query(Order)
        .filter(
            Order.id == order_id,
            Order.payment_status == PAYMENT_STATUS_PENDING,
            Order.status == ORDER_STATUS_PENDING,
        )
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        return False
    db.commit()
    return True


def _clear_cart_after_payment(db: Session, user_id: int, order_id: int) -> None:
    try:
        removed = clear_cart(db, user_id)
        db.commit()
        logger.info("Cart cleared for user %s after order %s (%s items)", user_id, order_id, removed)
    except Exception:
        db.rollback()
        logger.exception("Failed to clear cart for user %s after order %s payment", user_id, order_id)


def handle_callback(db: Session, result: CallbackResult) -> CallbackOutcome:
    """Reconcile an order with a parsed gateway callback. Safe to call repeatedly."""
    order = find_order_for_callback(db, result)
    if not order:
        logger.warning(
            "Callback matched no order: external_reference=%s checkout_request_id=%s",
            result.external_reference,
            result.checkout_request_id,
        )
        return CallbackOutcome(action=OUTCOME_NOT_FOUND)

    order_id = order.id
    if is_already_processed(order):
        logger.info(
            "Order %s already processed (status=%s, payment_status=%s), skipping callback",
            order_id,
            order.status,
            order.payment_status,
        )
        return CallbackOutcome(action=OUTCOME_DUPLICATE, order_id=order_id)

    message = result.message[:MESSAGE_MAX_LENGTH] if result.message else None

    if not result.success:
        applied = _transition(
            db,
            order_id,
            {
                Order.payment_status: PAYMENT_STATUS_FAILED,
                Order.status: ORDER_STATUS_CANCELLED,
                Order.gateway_reference: result.gateway_reference,
                Order.payment_message: message,
            },
        )
        if not applied:
            logger.info("Order %s was settled by a concurrent callback", order_id)
            return CallbackOutcome(action=OUTCOME_DUPLICATE, order_id=order_id)
        logger.info("Payment failed for order %s: %s", order_id, message or "N/A")
        return CallbackOutcome(action=OUTCOME_FAILED, order_id=order_id)

    warnings = []
    mismatch = check_amount(order, result.amount)
    if mismatch:
        logger.warning("%s. Processing anyway, flagged for review.", mismatch)
        warnings.append(mismatch)

    user_id = order.user_id
    applied = _transition(
        db,
        order_id,
        {
            Order.transaction_id: result.provider_reference,
            Order.gateway_reference: result.gateway_reference,
            Order.payment_status: PAYMENT_STATUS_COMPLETED,
            Order.status: ORDER_STATUS_PROCESSING,
            Order.needs_review: mismatch is not None,
            Order.payment_message: message,
        },
    )
    if not applied:
        logger.info("Order %s was settled by a concurrent callback", order_id)
        return CallbackOutcome(action=OUTCOME_DUPLICATE, order_id=order_id)

    logger.info("Order %s marked as paid: gateway_reference=%s", order_id, result.gateway_reference)
    _clear_cart_after_payment(db, user_id, order_id)
    return CallbackOutcome(action=OUTCOME_COMPLETED, order_id=order_id, warnings=warnings)


def _reconcile_polled_status(db: Session, gateway_status: GatewayStatus) -> CallbackOutcome | None:
    """Settle a still-pending order from a terminal polled status.

    Covers a callback that arrived before ``checkout_request_id`` was stored
    and was acknowledged as not found. Goes through the same gate as callbacks.
    """
    if gateway_status.state not in (STATE_COMPLETED, STATE_FAILED):
        return None
    order = db.query(Order).filter(Order.checkout_request_id == gateway_status.reference).first()
    if not order or is_already_processed(order):
        return None

    outcome = handle_callback(
        db,
        CallbackResult(
            success=gateway_status.state == STATE_COMPLETED,
            gateway_reference=gateway_status.reference,
            checkout_request_id=gateway_status.reference,
            provider_reference=gateway_status.transaction_id,
            amount=gateway_status.amount,
            message=gateway_status.message,
        ),
    )
    logger.info("Order %s reconciled from status poll: %s", outcome.order_id, outcome.action)
    return outcome


def poll_status(
    db: Session,
    reference: str,
    gateway: PaymentGatewayClient | None = None,
) -> GatewayStatus:
    """Query the gateway for ``reference``.

    A terminal answer is applied to the matching order only if it is still
    pending; pending answers never write.
    """
    if not reference or not reference.strip():
        raise PaymentValidationError("Checkout request ID is required")
    gateway = gateway or get_payment_gateway()
    gateway_status = gateway.query_status(reference.strip())
    _reconcile_polled_status(db, gateway_status)
    return gateway_status
