from typing import Optional

from fastapi import Header, Request

from tokenmarket.core.config import settings
from tokenmarket.core.errors import ChainUnavailable
from tokenmarket.db.session import get_db
from tokenmarket.services.contract_gateway import ContractGateway
from tokenmarket.services.event_publisher import EventPublisher
from tokenmarket.services.storage import LocalStorage

__all__ = [
    "get_db",
    "get_contract_gateway",
    "get_publisher",
    "get_storage",
    "acting_wallet",
]


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.publisher


def get_storage(request: Request) -> LocalStorage:
    return request.app.state.storage


def get_contract_gateway(request: Request) -> ContractGateway:
    """
    Gateway built at startup; if the chain was unreachable then, try again
    so the API recovers without a restart.
    """
    gateway = getattr(request.app.state, "contract_gateway", None)
    if gateway is None:
        if not settings.chain_configured:
            raise ChainUnavailable("Contract gateway is not configured")
        gateway = ContractGateway(settings)
        request.app.state.contract_gateway = gateway
    return gateway


def acting_wallet(
    x_wallet_address: Optional[str] = Header(default=None, alias="X-Wallet-Address"),
) -> Optional[str]:
    return x_wallet_address
