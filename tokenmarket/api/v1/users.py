from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from tokenmarket.core.deps import get_db, get_publisher
from tokenmarket.schemas.transaction import TransactionOut
from tokenmarket.schemas.user import UserOut, UserUpdate, WalletAuthIn, WalletAuthOut
from tokenmarket.services.event_publisher import EventPublisher
from tokenmarket.services.transaction_service import TransactionService
from tokenmarket.services.user_service import UserService

router = APIRouter()


@router.post("/auth/wallet", response_model=WalletAuthOut)
def auth_wallet(
    payload: WalletAuthIn,
    response: Response,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """
    Register or log in with a wallet address.

    Returns 201 for a new wallet, 200 for a known one.
    """
    user, created = UserService(db, publisher).authenticate_wallet(payload.wallet_address, payload.user_type)
    response.status_code = 201 if created else 200
    return WalletAuthOut(user=UserOut.model_validate(user))


@router.get("/users/{wallet_address}", response_model=UserOut)
def get_user(wallet_address: str, db: Session = Depends(get_db)):
    return UserService(db).get(wallet_address)


@router.put("/users/{wallet_address}", response_model=UserOut)
def update_user(wallet_address: str, payload: UserUpdate, db: Session = Depends(get_db)):
    return UserService(db).update_profile(wallet_address, payload.model_dump(exclude_unset=True))


@router.get("/users/{wallet_address}/transactions", response_model=list[TransactionOut])
def get_user_transactions(wallet_address: str, db: Session = Depends(get_db)):
    return TransactionService(db).list_for_wallet(wallet_address)
