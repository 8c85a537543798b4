from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tokenmarket.core.deps import get_contract_gateway, get_db, get_publisher
from tokenmarket.schemas.transaction import HashSubmission, PurchaseRequest, StatusUpdate, TransactionCreate, TransactionOut
from tokenmarket.services.contract_gateway import ContractGateway
from tokenmarket.services.event_publisher import EventPublisher
from tokenmarket.services.transaction_service import TransactionService

router = APIRouter()


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Record a purchase intent. The transaction starts as pending."""
    return TransactionService(db, publisher).initiate(payload.buyer_wallet, payload.listing_id)


@router.get("/transactions/{tx_hash}", response_model=TransactionOut)
def get_transaction(tx_hash: str, db: Session = Depends(get_db)):
    return TransactionService(db).get_by_hash(tx_hash)


@router.put("/transactions/{transaction_id}/status", response_model=TransactionOut)
def update_transaction_status(
    transaction_id: int,
    payload: StatusUpdate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    return TransactionService(db, publisher).update_status(transaction_id, payload.status, tx_hash=payload.tx_hash)


@router.post("/transactions/{transaction_id}/purchase", response_model=TransactionOut)
def purchase(
    transaction_id: int,
    payload: PurchaseRequest,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    gateway: ContractGateway = Depends(get_contract_gateway),
):
    """
    Relay the buyer's signed purchase for a pending transaction.

    - **signedTx**: raw ``purchase(tokenId)`` transaction signed by the buyer's wallet

    On a chain failure the response is 502 with ``retryable: true`` and the
    transaction stays pending.
    """
    return TransactionService(db, publisher).attempt_on_chain_purchase(transaction_id, gateway, payload.signed_tx)


@router.post("/transactions/{transaction_id}/confirm", response_model=TransactionOut)
def confirm(
    transaction_id: int,
    payload: HashSubmission,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    gateway: ContractGateway = Depends(get_contract_gateway),
):
    """Record the hash of a purchase the buyer broadcast from their wallet and check its receipt."""
    return TransactionService(db, publisher).submit_hash(transaction_id, payload.tx_hash, gateway)


@router.post("/transactions/{transaction_id}/reconcile", response_model=TransactionOut)
def reconcile(
    transaction_id: int,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    gateway: ContractGateway = Depends(get_contract_gateway),
):
    return TransactionService(db, publisher).reconcile(transaction_id, gateway)
