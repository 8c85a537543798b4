from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple, TypeVar

import structlog
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from tokenmarket.core.config import Settings
from tokenmarket.core.errors import ChainError, ChainUnavailable, InsufficientFunds, PermissionDenied, Rejected, ValidationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TOKENIZED_GOODS_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"indexed": True, "internalType": "address", "name": "to", "type": "address"},
            {"indexed": False, "internalType": "string", "name": "uri", "type": "string"},
        ],
        "name": "TokenMinted",
        "type": "event",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "string", "name": "uri", "type": "string"},
        ],
        "name": "mint",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "ownerOf",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "tokenURI",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
]

_LISTING_TUPLE = {
    "components": [
        {"internalType": "address", "name": "seller", "type": "address"},
        {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
        {"internalType": "uint256", "name": "price", "type": "uint256"},
        {"internalType": "bool", "name": "active", "type": "bool"},
        {"internalType": "uint256", "name": "listedAt", "type": "uint256"},
    ],
    "internalType": "struct Marketplace.Listing",
    "name": "",
    "type": "tuple",
}

MARKETPLACE_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"indexed": True, "internalType": "address", "name": "seller", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "price", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "timestamp", "type": "uint256"},
        ],
        "name": "ListingCreated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"indexed": True, "internalType": "address", "name": "buyer", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "seller", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "price", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "timestamp", "type": "uint256"},
        ],
        "name": "Purchase",
        "type": "event",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"internalType": "uint256", "name": "price", "type": "uint256"},
        ],
        "name": "listNFT",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"internalType": "uint256", "name": "newPrice", "type": "uint256"},
        ],
        "name": "updatePrice",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "purchase",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "getListing",
        "outputs": [_LISTING_TUPLE],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "isNFTListed",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]

MINT_GAS = 300_000

# confirm_purchase outcomes
RECEIPT_SUCCESS = "success"
RECEIPT_REVERTED = "reverted"
RECEIPT_MISMATCH = "mismatch"


@dataclass
class ChainListing:
    seller: str
    price_eth: Decimal
    active: bool
    listed_at: int = 0


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return a.strip().lower() == b.strip().lower()


def _classify(exc: Exception, tx_hash: Optional[str] = None) -> ChainError:
    if isinstance(exc, ChainError):
        return exc
    if isinstance(exc, (TimeExhausted, OSError)):
        return ChainUnavailable(f"Chain unavailable: {exc}", tx_hash=tx_hash)
    if isinstance(exc, ContractLogicError):
        return Rejected(f"Contract rejected the call: {exc}", tx_hash=tx_hash)
    if "insufficient funds" in str(exc).lower():
        return InsufficientFunds("Insufficient funds for purchase", tx_hash=tx_hash)
    return Rejected(f"Chain call rejected: {exc}", tx_hash=tx_hash)


def _call(op: str, fn: Callable[[], T]) -> T:
    try:
        return fn()
    except (ChainError, TimeExhausted, OSError, ValueError, Web3Exception) as e:
        err = _classify(e)
        logger.warning(
            "chain_call_failed",
            op=op,
            error_type=type(err).__name__,
            error=str(e),
            tx_hash=err.tx_hash,
        )
        raise err from e


class ContractGateway:
    """
    Thin adapter over the tokenized-goods and marketplace contracts.

    Only the mint is signed by the configured operator key, which sponsors
    it and mints straight to the seller. Listing, repricing and purchasing
    are signed in the seller's or buyer's own wallet; the gateway checks
    the signer, relays the raw transaction and verifies the emitted event.
    Every broadcast waits for its receipt for at most
    ``chain_receipt_timeout_seconds``.
    """

    def __init__(self, settings: Settings, w3: Optional[Web3] = None) -> None:
        if not settings.chain_configured:
            raise ChainUnavailable("Contract gateway is not configured")

        self.w3 = w3 or Web3(
            Web3.HTTPProvider(
                settings.chain_rpc_url,
                request_kwargs={"timeout": settings.chain_rpc_timeout_seconds},
            )
        )
        if not self.w3.is_connected():
            raise ChainUnavailable("Chain RPC not reachable")

        self.acct = Account.from_key(settings.chain_sender_private_key)
        self.receipt_timeout = settings.chain_receipt_timeout_seconds
        self.gas_price_gwei = settings.chain_gas_price_gwei
        self.start_block = settings.chain_start_block

        self.goods = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.tokenized_goods_address),
            abi=TOKENIZED_GOODS_ABI,
        )
        self.marketplace = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.marketplace_address),
            abi=MARKETPLACE_ABI,
        )

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------

    def _broadcast(self, raw_tx: Any) -> Tuple[str, Any]:
        """
        Send a signed transaction and wait for its receipt.

        Any failure after the node accepted the transaction carries its
        hash, since the transaction may still be mined.
        """
        tx_hash = self.w3.to_hex(self.w3.eth.send_raw_transaction(raw_tx))
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except (TimeExhausted, OSError, ValueError, Web3Exception) as e:
            raise _classify(e, tx_hash=tx_hash) from e

        # status 1 = success
        if receipt.get("status") != 1:
            raise Rejected(f"Transaction {tx_hash} reverted", tx_hash=tx_hash)
        return tx_hash, receipt

    def _send(self, contract_fn: Any, gas: int) -> Any:
        nonce = self.w3.eth.get_transaction_count(self.acct.address)
        tx = contract_fn.build_transaction({
            "from": self.acct.address,
            "nonce": nonce,
            "gas": gas,
            "gasPrice": self.w3.to_wei(self.gas_price_gwei, "gwei"),
        })

        signed = self.acct.sign_transaction(tx)
        _, receipt = self._broadcast(signed.raw_transaction)
        return receipt

    def _check_signer(self, signed_tx: str, wallet: str) -> None:
        try:
            signer = Account.recover_transaction(signed_tx)
        except Exception as e:
            raise ValidationError("Malformed signed transaction") from e
        if not _same_address(signer, wallet):
            raise PermissionDenied(f"Transaction is signed by {signer}, not {wallet}")

    def _is_purchase(self, args: Any, token_id: int, buyer_wallet: str) -> bool:
        return int(args["tokenId"]) == int(token_id) and _same_address(args["buyer"], buyer_wallet)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def mint(self, owner_address: str, asset_uri: str) -> int:
        def run() -> int:
            fn = self.goods.functions.mint(Web3.to_checksum_address(owner_address), asset_uri)
            receipt = self._send(fn, MINT_GAS)
            events = self.goods.events.TokenMinted().process_receipt(receipt, errors=DISCARD)
            if not events:
                raise Rejected("Mint receipt carried no TokenMinted event")
            return int(events[0]["args"]["tokenId"])

        token_id = _call("mint", run)
        logger.info("token_minted", token_id=token_id, owner=owner_address)
        return token_id

    def list_for_sale(self, token_id: int, price_eth: Decimal, seller_wallet: str, signed_tx: str) -> str:
        """
        Relay the seller's signed ``listNFT`` and check that it listed
        ``token_id`` at ``price_eth``.
        """
        self._check_signer(signed_tx, seller_wallet)
        price_wei = Web3.to_wei(price_eth, "ether")

        def run() -> str:
            tx_hash, receipt = self._broadcast(signed_tx)
            for event in self.marketplace.events.ListingCreated().process_receipt(receipt, errors=DISCARD):
                args = event["args"]
                if int(args["tokenId"]) == int(token_id) and int(args["price"]) == price_wei:
                    return tx_hash
            raise Rejected(f"Transaction {tx_hash} did not list token {token_id} at {price_eth}", tx_hash=tx_hash)

        tx_hash = _call("list_for_sale", run)
        logger.info("token_listed", token_id=token_id, seller=seller_wallet, tx_hash=tx_hash)
        return tx_hash

    def update_price(self, token_id: int, price_eth: Decimal, seller_wallet: str, signed_tx: str) -> str:
        """Relay the seller's signed ``updatePrice`` and read the new price back."""
        self._check_signer(signed_tx, seller_wallet)

        def run() -> str:
            tx_hash, _ = self._broadcast(signed_tx)
            listing = self.get_listing(token_id)
            if listing.price_eth != Decimal(price_eth):
                raise Rejected(
                    f"On-chain price of token {token_id} is {listing.price_eth}, expected {price_eth}",
                    tx_hash=tx_hash,
                )
            return tx_hash

        return _call("update_price", run)

    def purchase(self, token_id: Optional[int], buyer_wallet: str, signed_tx: str) -> str:
        """
        Relay the buyer's signed ``purchase`` call.

        The buyer's wallet pays; the contract enforces the price. Succeeds
        only when the receipt carries a Purchase event of ``token_id`` by
        ``buyer_wallet``.
        """
        if token_id is None:
            raise Rejected("Listing has no on-chain token to purchase")
        self._check_signer(signed_tx, buyer_wallet)

        def run() -> str:
            tx_hash, receipt = self._broadcast(signed_tx)
            for event in self.marketplace.events.Purchase().process_receipt(receipt, errors=DISCARD):
                if self._is_purchase(event["args"], token_id, buyer_wallet):
                    return tx_hash
            raise Rejected(f"Transaction {tx_hash} did not purchase token {token_id}", tx_hash=tx_hash)

        tx_hash = _call("purchase", run)
        logger.info("token_purchased", token_id=token_id, buyer=buyer_wallet, tx_hash=tx_hash)
        return tx_hash

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_listing(self, token_id: int) -> ChainListing:
        def run() -> ChainListing:
            seller, _, price_wei, active, listed_at = self.marketplace.functions.getListing(int(token_id)).call()
            return ChainListing(
                seller=seller,
                price_eth=Decimal(Web3.from_wei(price_wei, "ether")),
                active=bool(active),
                listed_at=int(listed_at),
            )

        return _call("get_listing", run)

    def get_receipt_status(self, tx_hash: str) -> Optional[str]:
        """
        "success" or "reverted" for a mined transaction, None while it is
        unknown to the node.
        """
        def run() -> Optional[str]:
            try:
                receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None
            return RECEIPT_SUCCESS if receipt.get("status") == 1 else RECEIPT_REVERTED

        return _call("get_receipt_status", run)

    def confirm_purchase(self, tx_hash: str, token_id: Optional[int], buyer_wallet: str) -> Optional[str]:
        """
        Like ``get_receipt_status``, but a successful receipt only counts
        when it purchased ``token_id`` for ``buyer_wallet``; otherwise
        "mismatch".
        """
        def run() -> Optional[str]:
            try:
                receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None
            if receipt.get("status") != 1:
                return RECEIPT_REVERTED
            if token_id is not None:
                for event in self.marketplace.events.Purchase().process_receipt(receipt, errors=DISCARD):
                    if self._is_purchase(event["args"], token_id, buyer_wallet):
                        return RECEIPT_SUCCESS
            return RECEIPT_MISMATCH

        return _call("confirm_purchase", run)

    def find_purchase(self, token_id: int, buyer_wallet: str) -> Optional[str]:
        """Hash of the latest Purchase of ``token_id`` by ``buyer_wallet``, if any."""
        def run() -> Optional[str]:
            logs = self.marketplace.events.Purchase().get_logs(
                from_block=self.start_block,
                argument_filters={"tokenId": int(token_id), "buyer": Web3.to_checksum_address(buyer_wallet)},
            )
            if not logs:
                return None
            return self.w3.to_hex(logs[-1]["transactionHash"])

        return _call("find_purchase", run)
