from decimal import Decimal

from pydantic import ConfigDict, Field

from storefront.schemas.common import CamelModel


class PaymentInitiateRequest(CamelModel):
    # Optional so that missing fields are reported as 400, like the other payment errors.
    phone_number: str | None = Field(default=None, alias="phoneNumber")
    amount: Decimal | None = None
    order_id: int | None = Field(default=None, alias="orderId")
    redirect_url: str | None = Field(default=None, alias="redirectUrl")

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{"phoneNumber": "0712345678", "amount": 1500, "orderId": 1}]
        },
        populate_by_name=True,
    )
