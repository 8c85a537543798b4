from decimal import Decimal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys to match the web client."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def format_eth(value: Decimal | None) -> str | None:
    # Numeric columns come back padded to 18 places
    if value is None:
        return None
    return format(Decimal(value).normalize(), "f")


class ErrorOut(BaseModel):
    error: str
