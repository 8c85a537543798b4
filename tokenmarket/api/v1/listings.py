"""
Listing API Endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tokenmarket.core.deps import acting_wallet, get_contract_gateway, get_db, get_publisher
from tokenmarket.schemas.listing import (
    ChainTxOut,
    ListingCreate,
    ListingOut,
    ListingUpdate,
    MessageOut,
    RepriceRequest,
    SignedTxRequest,
    TokenizeRequest,
)
from tokenmarket.services.contract_gateway import ContractGateway
from tokenmarket.services.event_publisher import EventPublisher
from tokenmarket.services.listing_service import ListingService

router = APIRouter()


@router.post("/listings", response_model=ListingOut, status_code=201)
def create_listing(
    payload: ListingCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """
    Create a new active listing.

    - **sellerWallet**: must belong to a registered user
    - **title**, **priceEth**: required
    """
    return ListingService(db, publisher).create(**payload.model_dump())


@router.get("/listings", response_model=List[ListingOut])
def get_listings(
    category: Optional[str] = Query(None, description="Only listings in this category"),
    q: Optional[str] = Query(None, description="Search title and description"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of records"),
    db: Session = Depends(get_db),
):
    """Active listings, newest first."""
    return ListingService(db).list(category=category, query=q, skip=skip, limit=limit)


@router.get("/listings/{listing_id}", response_model=ListingOut)
def get_listing(listing_id: int, db: Session = Depends(get_db)):
    return ListingService(db).get(listing_id)


@router.put("/listings/{listing_id}", response_model=ListingOut)
def update_listing(
    listing_id: int,
    payload: ListingUpdate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    wallet: Optional[str] = Depends(acting_wallet),
):
    """
    Update listing fields. Only supplied fields change.

    - **X-Wallet-Address** header: when present must be the seller's wallet
    """
    return ListingService(db, publisher).update(listing_id, payload.model_dump(exclude_unset=True), acting_wallet=wallet)


@router.delete("/listings/{listing_id}", response_model=MessageOut)
def delete_listing(
    listing_id: int,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    wallet: Optional[str] = Depends(acting_wallet),
):
    """Deactivate a listing. The record is kept for transaction history."""
    ListingService(db, publisher).deactivate(listing_id, acting_wallet=wallet)
    return MessageOut(message="Listing deactivated successfully")


@router.post("/listings/{listing_id}/tokenize", response_model=ListingOut)
def tokenize_listing(
    listing_id: int,
    payload: TokenizeRequest,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    gateway: ContractGateway = Depends(get_contract_gateway),
    wallet: Optional[str] = Depends(acting_wallet),
):
    """Mint a token for the listing straight to the seller's wallet."""
    return ListingService(db, publisher).tokenize(listing_id, payload.asset_uri, gateway, acting_wallet=wallet)


@router.post("/listings/{listing_id}/list-on-chain", response_model=ChainTxOut)
def list_on_chain(
    listing_id: int,
    payload: SignedTxRequest,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    gateway: ContractGateway = Depends(get_contract_gateway),
    wallet: Optional[str] = Depends(acting_wallet),
):
    """
    Relay the seller's signed ``listNFT(tokenId, price)``.

    - **signedTx**: raw transaction signed by the seller's wallet
    """
    tx_hash = ListingService(db, publisher).list_on_chain(listing_id, payload.signed_tx, gateway, acting_wallet=wallet)
    return ChainTxOut(tx_hash=tx_hash)


@router.post("/listings/{listing_id}/price", response_model=ListingOut)
def reprice_listing(
    listing_id: int,
    payload: RepriceRequest,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    gateway: ContractGateway = Depends(get_contract_gateway),
    wallet: Optional[str] = Depends(acting_wallet),
):
    """Change a tokenized listing's price with the seller's signed ``updatePrice``."""
    return ListingService(db, publisher).reprice(
        listing_id, payload.price_eth, payload.signed_tx, gateway, acting_wallet=wallet
    )


@router.get("/sellers/{seller_wallet}/listings", response_model=List[ListingOut])
def get_seller_listings(seller_wallet: str, db: Session = Depends(get_db)):
    """Every listing of one seller, active or not."""
    return ListingService(db).list(seller_wallet=seller_wallet)
