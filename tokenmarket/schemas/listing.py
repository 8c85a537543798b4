"""
Listing Schemas for API Request/Response
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_serializer

from tokenmarket.schemas.common import CamelModel, format_eth


class ListingCreate(CamelModel):
    """Schema for creating a listing."""
    seller_wallet: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=200)
    price_eth: Decimal = Field(..., gt=0, description="Price in the network's native currency")
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=512)
    category: Optional[str] = Field(None, max_length=64)
    condition: Optional[str] = Field(None, max_length=32)
    token_id: Optional[int] = Field(None, ge=0)


class ListingUpdate(CamelModel):
    """Schema for updating a listing. Omitted or null fields are left unchanged."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price_eth: Optional[Decimal] = Field(None, gt=0)
    image_url: Optional[str] = Field(None, max_length=512)
    category: Optional[str] = Field(None, max_length=64)
    condition: Optional[str] = Field(None, max_length=32)


class TokenizeRequest(CamelModel):
    asset_uri: str = Field(..., min_length=1)


class ListingOut(CamelModel):
    id: int
    token_id: Optional[int] = None
    seller_wallet: str
    title: str
    description: Optional[str] = None
    price_eth: Decimal
    image_url: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @field_serializer("price_eth")
    def _price(self, value: Decimal) -> str:
        return format_eth(value)


class MessageOut(CamelModel):
    message: str


class SignedTxRequest(CamelModel):
    """A raw transaction signed in the seller's or buyer's own wallet, hex encoded."""
    signed_tx: str = Field(..., min_length=4)


class RepriceRequest(SignedTxRequest):
    price_eth: Decimal = Field(..., gt=0)


class ChainTxOut(CamelModel):
    tx_hash: str
