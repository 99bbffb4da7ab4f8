from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def format_money(value: Decimal) -> str:
    return format(Decimal(str(value)).quantize(Decimal("0.01")), "f")
