"""
Marketplace error taxonomy.

Every error carries the HTTP status it maps to; the API layer renders them
as ``{"error": message}``.
"""


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    status_code = 400


class PermissionDenied(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class ConflictError(MarketplaceError):
    status_code = 409


class InternalError(MarketplaceError):
    status_code = 500


class ChainError(MarketplaceError):
    """
    The on-chain effect did not happen, or could not be confirmed.

    ``tx_hash`` is set when the transaction was broadcast before the
    failure, so its receipt can still be checked later.
    """

    status_code = 502

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class ChainUnavailable(ChainError):
    pass


class InsufficientFunds(ChainError):
    pass


class Rejected(ChainError):
    pass
