from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.dependencies import get_current_user
from storefront.models import User, get_db
from storefront.schemas.cart import CartItemCreateRequest, CartItemResponse, CartResponse
from storefront.services.cart_service import add_cart_item, cart_total, clear_cart, get_cart_items

router = APIRouter()


def _cart_response(db: Session, user_id: int) -> CartResponse:
    items = get_cart_items(db, user_id)
    return CartResponse(
        items=[CartItemResponse.model_validate(item) for item in items],
        total=cart_total(items),
    )


@router.get("", response_model=CartResponse, summary="Get my cart")
def get_cart(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    return _cart_response(db, current_user.id)


@router.post("/items", response_model=CartResponse, summary="Add an item to my cart")
def add_item(
    body: CartItemCreateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    add_cart_item(
        db,
        user_id=current_user.id,
        product_id=body.product_id,
        product_name=body.product_name,
        unit_price=body.unit_price,
        quantity=body.quantity,
    )
    db.commit()
    return _cart_response(db, current_user.id)


@router.delete("", response_model=CartResponse, summary="Empty my cart")
def empty_cart(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    clear_cart(db, current_user.id)
    db.commit()
    return _cart_response(db, current_user.id)
