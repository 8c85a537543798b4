"""
User Service
Wallet authentication and profile management.
"""
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tokenmarket.core.errors import NotFound, ValidationError
from tokenmarket.models.user import USER_TYPES, User
from tokenmarket.services import event_publisher as events
from tokenmarket.services.event_publisher import EventPublisher, NullPublisher

logger = structlog.get_logger(__name__)

PROFILE_FIELDS = ("username", "email", "avatar_url", "bio")


def same_wallet(a: Optional[str], b: Optional[str]) -> bool:
    """Hex addresses compare case-insensitively."""
    if a is None or b is None:
        return False
    return a.strip().lower() == b.strip().lower()


def find_user(db: Session, wallet_address: str) -> Optional[User]:
    stmt = select(User).where(func.lower(User.wallet_address) == wallet_address.strip().lower())
    return db.scalars(stmt).first()


class UserService:
    """Service for wallet users."""

    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher or NullPublisher()

    def authenticate_wallet(self, wallet_address: str, user_type: str) -> Tuple[User, bool]:
        """
        Find or create the user behind a wallet.

        Returns:
            (user, created) where created is True for a first-time wallet

        Raises:
            ValidationError: If the wallet is empty or the role is unknown
        """
        wallet_address = (wallet_address or "").strip()
        if not wallet_address:
            raise ValidationError("Wallet address is required")
        if user_type not in USER_TYPES:
            raise ValidationError("Invalid user type")

        user = find_user(self.db, wallet_address)
        if user:
            if user.user_type != user_type:
                previous = user.user_type
                user.user_type = user_type
                user.updated_at = datetime.utcnow()
                self.db.commit()
                self.db.refresh(user)
                self.publisher.publish(events.WALLET_ROLE_CHANGED, {
                    "wallet_address": user.wallet_address,
                    "previous": previous,
                    "user_type": user_type,
                })
            self.publisher.publish(events.WALLET_CONNECTED, {"wallet_address": user.wallet_address})
            return user, False

        user = User(wallet_address=wallet_address, user_type=user_type)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        logger.info("user_registered", wallet=wallet_address, user_type=user_type)
        self.publisher.publish(events.WALLET_CONNECTED, {"wallet_address": wallet_address, "new_user": True})
        return user, True

    def get(self, wallet_address: str) -> User:
        user = find_user(self.db, wallet_address)
        if not user:
            raise NotFound("User not found")
        return user

    def update_profile(self, wallet_address: str, fields: Dict[str, Any]) -> User:
        """Overwrite only the profile fields that were supplied with a value."""
        user = self.get(wallet_address)

        for name in PROFILE_FIELDS:
            value = fields.get(name)
            if value is not None:
                setattr(user, name, value)

        user.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(user)
        return user
