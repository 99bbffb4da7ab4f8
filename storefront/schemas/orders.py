from decimal import Decimal

from pydantic import BaseModel, field_serializer

from storefront.schemas.common import format_money


class _MoneyResponse(BaseModel):
    @field_serializer("total", check_fields=False)
    def serialize_total(self, value: Decimal) -> str:
        return format_money(value)


class OrderCreateResponse(_MoneyResponse):
    order_id: int
    total: Decimal
    status: str
    payment_status: str


class OrderResponse(_MoneyResponse):
    id: int
    total: Decimal
    status: str
    payment_status: str
    external_reference: str | None = None
    transaction_id: str | None = None
    created_at: str

    model_config = {"from_attributes": True}


class OrderStatusResponse(_MoneyResponse):
    id: int
    total: Decimal
    status: str
    payment_status: str
    checkout_request_id: str | None = None
    needs_review: bool = False
