from storefront.schemas.cart import CartItemCreateRequest, CartItemResponse, CartResponse
from storefront.schemas.orders import OrderCreateResponse, OrderResponse, OrderStatusResponse
from storefront.schemas.payments import PaymentInitiateRequest

__all__ = [
    "CartItemCreateRequest",
    "CartItemResponse",
    "CartResponse",
    "OrderCreateResponse",
    "OrderResponse",
    "OrderStatusResponse",
    "PaymentInitiateRequest",
]
