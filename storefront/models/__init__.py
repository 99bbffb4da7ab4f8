from storefront.models.database import Base, get_db
from storefront.models.user import User
from storefront.models.order import Order
from storefront.models.cart import CartItem

__all__ = ["Base", "get_db", "User", "Order", "CartItem"]
