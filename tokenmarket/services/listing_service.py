"""
Listing Service
Handles business logic for marketplace listings.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from tokenmarket.core.errors import ConflictError, NotFound, PermissionDenied, ValidationError
from tokenmarket.models.listing import Listing
from tokenmarket.services import event_publisher as events
from tokenmarket.services.contract_gateway import ContractGateway
from tokenmarket.services.event_publisher import EventPublisher, NullPublisher
from tokenmarket.services.user_service import find_user, same_wallet

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = ("title", "description", "price_eth", "image_url", "category", "condition")


def _positive_price(value: Any) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Price must be a decimal amount")
    if not price.is_finite() or price <= 0:
        raise ValidationError("Price must be greater than zero")
    return price


def deactivate_if_active(db: Session, listing_id: int) -> bool:
    """
    Compare-and-set the active flag off.

    Returns True when this call flipped it, False when the listing was
    already inactive. Does not commit.
    """
    result = db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.is_active.is_(True))
        .values(is_active=False, updated_at=datetime.utcnow())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


class ListingService:
    """Service for managing marketplace listings."""

    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher or NullPublisher()

    def create(
        self,
        seller_wallet: str,
        title: Optional[str],
        price_eth: Any,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        category: Optional[str] = None,
        condition: Optional[str] = None,
        token_id: Optional[int] = None,
    ) -> Listing:
        """
        Create a new active listing.

        Raises:
            ValidationError: If title or price is missing or the price is not positive
            NotFound: If the seller wallet is not a registered user
        """
        if not seller_wallet or not title or price_eth is None or price_eth == "":
            raise ValidationError("Missing required fields")
        if not title.strip():
            raise ValidationError("Title cannot be empty")
        price = _positive_price(price_eth)

        seller = find_user(self.db, seller_wallet)
        if not seller:
            raise NotFound("Seller not found")

        now = datetime.utcnow()
        listing = Listing(
            token_id=token_id,
            seller_wallet=seller.wallet_address,
            seller_id=seller.id,
            title=title,
            description=description,
            price_eth=price,
            image_url=image_url,
            category=category,
            condition=condition,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.db.add(listing)
        self.db.commit()
        self.db.refresh(listing)

        logger.info("listing_created", listing_id=listing.id, seller=listing.seller_wallet)
        self.publisher.publish(events.LISTING_CREATED, {"listing_id": listing.id, "seller_wallet": listing.seller_wallet})
        return listing

    def list(
        self,
        seller_wallet: Optional[str] = None,
        category: Optional[str] = None,
        query: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Listing]:
        """
        Active listings newest first, or every listing of one seller when
        ``seller_wallet`` is given.
        """
        stmt = select(Listing)
        if seller_wallet:
            stmt = stmt.where(func.lower(Listing.seller_wallet) == seller_wallet.strip().lower())
        else:
            stmt = stmt.where(Listing.is_active.is_(True))
        if category:
            stmt = stmt.where(Listing.category == category)
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(or_(Listing.title.ilike(pattern), Listing.description.ilike(pattern)))

        stmt = stmt.order_by(Listing.created_at.desc(), Listing.id.desc()).offset(skip).limit(limit)
        return list(self.db.scalars(stmt).all())

    def get(self, listing_id: int) -> Listing:
        listing = self.db.get(Listing, listing_id)
        if not listing:
            raise NotFound("Listing not found")
        return listing

    def _check_owner(self, listing: Listing, acting_wallet: Optional[str]) -> None:
        if acting_wallet is not None and not same_wallet(acting_wallet, listing.seller_wallet):
            raise PermissionDenied("Only the seller can modify this listing")

    def update(self, listing_id: int, fields: Dict[str, Any], acting_wallet: Optional[str] = None) -> Listing:
        """
        Partial update: fields that are absent or None keep their value.

        Raises:
            NotFound: If the listing does not exist
            PermissionDenied: If acting_wallet is not the seller
            ConflictError: If the listing is no longer active, or the price
                of a tokenized listing would change (see ``reprice``)
            ValidationError: If a supplied price is not positive
        """
        listing = self.get(listing_id)
        self._check_owner(listing, acting_wallet)
        if not listing.is_active:
            raise ConflictError("Inactive listings cannot be edited")

        new_price = fields.get("price_eth")
        if new_price is not None:
            new_price = _positive_price(new_price)
            if listing.token_id is not None and new_price != listing.price_eth:
                # the marketplace contract holds the price buyers pay
                raise ConflictError("The price of a tokenized listing is changed on chain")

        changed = []
        for name in UPDATABLE_FIELDS:
            value = fields.get(name)
            if value is None:
                continue
            if name == "price_eth":
                value = new_price
            elif name == "title" and not str(value).strip():
                raise ValidationError("Title cannot be empty")
            setattr(listing, name, value)
            changed.append(name)

        if changed:
            listing.updated_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(listing)
            self.publisher.publish(events.LISTING_UPDATED, {"listing_id": listing.id, "fields": changed})
        return listing

    def deactivate(self, listing_id: int, acting_wallet: Optional[str] = None) -> None:
        """Idempotent; the row is never removed."""
        listing = self.get(listing_id)
        self._check_owner(listing, acting_wallet)

        if deactivate_if_active(self.db, listing_id):
            self.db.commit()
            logger.info("listing_deactivated", listing_id=listing_id)
            self.publisher.publish(events.LISTING_DEACTIVATED, {"listing_id": listing_id, "reason": "removed"})
        self.db.refresh(listing)

    def tokenize(
        self,
        listing_id: int,
        asset_uri: str,
        gateway: ContractGateway,
        acting_wallet: Optional[str] = None,
    ) -> Listing:
        """
        Mint a token straight to the listing's seller and record its id.

        The mint is sponsored by the operator key. Putting the token up for
        sale is the seller's own signed transaction, see ``list_on_chain``.
        A mint failure leaves the listing untouched.
        """
        listing = self.get(listing_id)
        self._check_owner(listing, acting_wallet)
        if not listing.is_active:
            raise ConflictError("Inactive listings cannot be tokenized")
        if listing.token_id is not None:
            raise ConflictError("Listing already has a token")

        token_id = gateway.mint(listing.seller_wallet, asset_uri)

        listing.token_id = token_id
        listing.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(listing)

        logger.info("listing_tokenized", listing_id=listing_id, token_id=token_id)
        self.publisher.publish(events.LISTING_TOKENIZED, {"listing_id": listing_id, "token_id": token_id})
        return listing

    def _require_token(self, listing: Listing) -> int:
        if not listing.is_active:
            raise ConflictError("Listing is not active")
        if listing.token_id is None:
            raise ConflictError("Listing has no on-chain token")
        return listing.token_id

    def list_on_chain(
        self,
        listing_id: int,
        signed_tx: str,
        gateway: ContractGateway,
        acting_wallet: Optional[str] = None,
    ) -> str:
        """Relay the seller's signed ``listNFT`` at the listing price. Returns the tx hash."""
        listing = self.get(listing_id)
        self._check_owner(listing, acting_wallet)
        token_id = self._require_token(listing)

        tx_hash = gateway.list_for_sale(token_id, listing.price_eth, listing.seller_wallet, signed_tx)

        self.publisher.publish(events.LISTING_LISTED_ON_CHAIN, {
            "listing_id": listing_id,
            "token_id": token_id,
            "tx_hash": tx_hash,
        })
        return tx_hash

    def reprice(
        self,
        listing_id: int,
        price_eth: Any,
        signed_tx: str,
        gateway: ContractGateway,
        acting_wallet: Optional[str] = None,
    ) -> Listing:
        """
        Change the price of a tokenized listing: relay the seller's signed
        ``updatePrice``, then store the price the chain now reports. A chain
        failure leaves the stored price unchanged.
        """
        price = _positive_price(price_eth)
        listing = self.get(listing_id)
        self._check_owner(listing, acting_wallet)
        token_id = self._require_token(listing)

        gateway.update_price(token_id, price, listing.seller_wallet, signed_tx)

        listing.price_eth = price
        listing.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(listing)

        logger.info("listing_repriced", listing_id=listing_id, token_id=token_id, price_eth=str(price))
        self.publisher.publish(events.LISTING_UPDATED, {"listing_id": listing_id, "fields": ["price_eth"]})
        return listing
