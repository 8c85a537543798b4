from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field, field_serializer

from tokenmarket.schemas.common import CamelModel, format_eth

TransactionStatus = Literal["pending", "completed", "failed"]


class TransactionCreate(CamelModel):
    buyer_wallet: str = Field(..., min_length=1, max_length=64)
    listing_id: int


class StatusUpdate(CamelModel):
    # plain str so unknown values reach the service and fail as ValidationError
    status: str
    tx_hash: Optional[str] = Field(None, max_length=80)


class TransactionOut(CamelModel):
    id: int
    token_id: Optional[int] = None
    seller_wallet: str
    buyer_wallet: str
    listing_id: Optional[int] = None
    price_eth: Decimal
    tx_hash: Optional[str] = None
    status: TransactionStatus
    failure_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    @field_serializer("price_eth")
    def _price(self, value: Decimal) -> str:
        return format_eth(value)


class PurchaseRequest(CamelModel):
    # buyer-signed call to the marketplace's purchase(tokenId), hex encoded
    signed_tx: str = Field(..., min_length=4)


class HashSubmission(CamelModel):
    tx_hash: str = Field(..., min_length=1, max_length=80)
