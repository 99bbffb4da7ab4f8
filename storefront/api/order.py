from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from storefront.dependencies import get_current_user
from storefront.models import Order, User, get_db
from storefront.models.order import ORDER_STATUS_PENDING, PAYMENT_STATUS_PENDING
from storefront.schemas.orders import OrderCreateResponse, OrderResponse, OrderStatusResponse
from storefront.services.cart_service import cart_total, get_cart_items

router = APIRouter()


@router.post(
    "",
    response_model=OrderCreateResponse,
    summary="Place an order from my cart",
)
def create_order(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Create a pending order whose total is the current cart total.
    The cart is kept until the payment callback confirms the payment.
    """
    items = get_cart_items(db, current_user.id)
    if not items:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cart is empty")

    order = Order(
        user_id=current_user.id,
        total=cart_total(items),
        status=ORDER_STATUS_PENDING,
        payment_status=PAYMENT_STATUS_PENDING,
    )
    db.add(order)
    db.commit()
    db.refresh(order)

    return OrderCreateResponse(
        order_id=order.id,
        total=order.total,
        status=order.status,
        payment_status=order.payment_status,
    )


@router.get(
    "/me",
    response_model=list[OrderResponse],
    summary="List my orders",
)
def my_orders(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Returns the list of orders for the current user."""
    orders = db.query(Order).filter(Order.user_id == current_user.id).order_by(Order.created_at.desc()).all()
    return [
        OrderResponse(
            id=o.id,
            total=o.total,
            status=o.status,
            payment_status=o.payment_status,
            external_reference=o.external_reference,
            transaction_id=o.transaction_id,
            created_at=o.created_at.isoformat() if o.created_at else "",
        )
        for o in orders
    ]


@router.get(
    "/{order_id}/status",
    response_model=OrderStatusResponse,
    summary="Get order status",
)
def order_status(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Returns the stored status of an order (only for the current user's orders)."""
    order = db.query(Order).filter(Order.id == order_id, Order.user_id == current_user.id).first()
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return OrderStatusResponse(
        id=order.id,
        total=order.total,
        status=order.status,
        payment_status=order.payment_status,
        checkout_request_id=order.checkout_request_id,
        needs_review=order.needs_review,
    )
