from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from tokenmarket.schemas.common import CamelModel

UserType = Literal["seller", "buyer", "both"]


class WalletAuthIn(CamelModel):
    wallet_address: str = Field(..., min_length=1, max_length=64)
    user_type: UserType = "buyer"


class UserUpdate(CamelModel):
    username: Optional[str] = Field(None, max_length=50)
    email: Optional[str] = Field(None, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=512)
    bio: Optional[str] = None


class UserOut(CamelModel):
    id: int
    wallet_address: str
    user_type: UserType
    username: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: datetime


class WalletAuthOut(CamelModel):
    user: UserOut
