from .user import User
from .listing import Listing
from .transaction import Transaction

__all__ = ["User", "Listing", "Transaction"]
