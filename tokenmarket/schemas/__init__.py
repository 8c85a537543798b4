from .listing import ChainTxOut, ListingCreate, ListingUpdate, ListingOut, RepriceRequest, SignedTxRequest, TokenizeRequest
from .transaction import HashSubmission, PurchaseRequest, TransactionCreate, StatusUpdate, TransactionOut
from .user import WalletAuthIn, WalletAuthOut, UserOut, UserUpdate

__all__ = [
    "ListingCreate",
    "ListingUpdate",
    "ListingOut",
    "TokenizeRequest",
    "SignedTxRequest",
    "RepriceRequest",
    "ChainTxOut",
    "TransactionCreate",
    "StatusUpdate",
    "TransactionOut",
    "PurchaseRequest",
    "HashSubmission",
    "WalletAuthIn",
    "WalletAuthOut",
    "UserOut",
    "UserUpdate",
]
