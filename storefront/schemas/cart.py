from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer

from storefront.schemas.common import format_money


class CartItemCreateRequest(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    product_name: str = Field(min_length=1, max_length=255)
    unit_price: Decimal = Field(gt=0)
    quantity: int = Field(default=1, ge=1)


class CartItemResponse(BaseModel):
    id: int
    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int

    model_config = {"from_attributes": True}

    @field_serializer("unit_price")
    def serialize_unit_price(self, value: Decimal) -> str:
        return format_money(value)


class CartResponse(BaseModel):
    items: list[CartItemResponse]
    total: Decimal

    @field_serializer("total")
    def serialize_total(self, value: Decimal) -> str:
        return format_money(value)
