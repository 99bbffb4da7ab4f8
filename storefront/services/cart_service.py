from decimal import Decimal

from sqlalchemy.orm import Session

from storefront.models import CartItem


def get_cart_items(db: Session, user_id: int) -> list[CartItem]:
    return db.query(CartItem).filter(CartItem.user_id == user_id).order_by(CartItem.id).all()


def cart_total(items: list[CartItem]) -> Decimal:
    return sum((Decimal(str(item.unit_price)) * item.quantity for item in items), Decimal("0"))


def add_cart_item(
    db: Session,
    user_id: int,
    product_id: str,
    product_name: str,
    unit_price: Decimal,
    quantity: int,
) -> CartItem:
    """Add ``quantity`` of a product, merging with an existing line for the same product."""
    item = (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
        .first()
    )
    if item:
        item.quantity += quantity
        item.unit_price = unit_price
        item.product_name = product_name
    else:
        item = CartItem(
            user_id=user_id,
            product_id=product_id,
            product_name=product_name,
            unit_price=unit_price,
            quantity=quantity,
        )
        db.add(item)
    db.flush()
    return item


def clear_cart(db: Session, user_id: int) -> int:
    """Delete every cart line of ``user_id``. The caller commits."""
    return (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id)
        .delete(synchronize_session=False)
    )
