import pytest
from decimal import Decimal
from unittest.mock import Mock, patch
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from tokenmarket.core.config import Settings
from tokenmarket.core.errors import ChainUnavailable, InsufficientFunds, PermissionDenied, Rejected, ValidationError
from tokenmarket.services.contract_gateway import ChainListing, ContractGateway, MINT_GAS

OPERATOR = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb1"
SELLER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
BUYER = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
GOODS_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
MARKET_ADDRESS = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
TX_HASH_BYTES = b"\x12\x34\x56\x78" * 8
TX_HASH = "0x" + TX_HASH_BYTES.hex()
SIGNED = "0xf86b" + "ab" * 40


@pytest.fixture
def chain_settings():
    return Settings(
        chain_rpc_url="http://localhost:8545",
        chain_sender_private_key="0x" + "1" * 64,
        tokenized_goods_address=GOODS_ADDRESS,
        marketplace_address=MARKET_ADDRESS,
        chain_receipt_timeout_seconds=30,
        chain_start_block=100,
    )


@pytest.fixture
def goods_contract():
    return Mock()


@pytest.fixture
def market_contract():
    return Mock()


@pytest.fixture
def mock_web3(goods_contract, market_contract):
    """Create a mock Web3 instance wired to the two contracts"""
    mock = Mock()
    mock.is_connected.return_value = True
    mock.eth.get_transaction_count.return_value = 5
    mock.to_wei.return_value = 1000000000  # 1 gwei
    mock.to_hex.side_effect = Web3.to_hex
    mock.eth.send_raw_transaction.return_value = TX_HASH_BYTES
    mock.eth.wait_for_transaction_receipt.return_value = {"status": 1, "transactionHash": TX_HASH_BYTES}
    mock.eth.contract.side_effect = [goods_contract, market_contract]
    return mock


@pytest.fixture
def account_class():
    """Patched eth_account.Account; the operator key and transaction signer recovery."""
    with patch("tokenmarket.services.contract_gateway.Account") as mock_account_class:
        account = Mock()
        account.address = OPERATOR
        account.sign_transaction.return_value = Mock(raw_transaction=b"signed_data")
        mock_account_class.from_key.return_value = account
        yield mock_account_class


@pytest.fixture
def operator(account_class):
    return account_class.from_key.return_value


@pytest.fixture
def gateway(chain_settings, mock_web3, account_class):
    return ContractGateway(chain_settings, w3=mock_web3)


def purchase_event(token_id=7, buyer=BUYER):
    return {"args": {"tokenId": token_id, "buyer": buyer, "seller": SELLER, "price": 10**18}}


@pytest.fixture
def purchase_events(market_contract):
    """process_receipt of the marketplace Purchase event."""
    process = market_contract.events.Purchase.return_value.process_receipt
    process.return_value = [purchase_event()]
    return process


class TestConstruction:
    def test_not_configured(self):
        with pytest.raises(ChainUnavailable, match="not configured"):
            ContractGateway(Settings(chain_rpc_url=None))

    def test_unreachable_rpc(self, chain_settings, mock_web3):
        mock_web3.is_connected.return_value = False

        with patch("tokenmarket.services.contract_gateway.Account"):
            with pytest.raises(ChainUnavailable, match="not reachable"):
                ContractGateway(chain_settings, w3=mock_web3)

    @patch("tokenmarket.services.contract_gateway.Web3")
    @patch("tokenmarket.services.contract_gateway.Account")
    def test_builds_http_provider_with_timeout(self, mock_account_class, mock_web3_class, chain_settings):
        mock_web3_instance = Mock()
        mock_web3_instance.is_connected.return_value = True
        mock_web3_class.return_value = mock_web3_instance
        mock_web3_class.HTTPProvider = Mock()
        mock_web3_class.to_checksum_address = lambda x: x

        gateway = ContractGateway(chain_settings)

        assert gateway.w3 == mock_web3_instance
        mock_web3_class.HTTPProvider.assert_called_once_with(
            "http://localhost:8545", request_kwargs={"timeout": 10}
        )
        mock_account_class.from_key.assert_called_once_with("0x" + "1" * 64)


class TestMint:
    def test_mint_returns_token_id_from_event(self, gateway, goods_contract, mock_web3):
        goods_contract.events.TokenMinted.return_value.process_receipt.return_value = [{"args": {"tokenId": 42}}]

        token_id = gateway.mint(SELLER, "ipfs://asset")

        assert token_id == 42
        goods_contract.functions.mint.assert_called_once_with(Web3.to_checksum_address(SELLER), "ipfs://asset")
        built = goods_contract.functions.mint.return_value.build_transaction.call_args[0][0]
        assert built["nonce"] == 5
        assert built["gas"] == MINT_GAS
        assert built["from"] == OPERATOR
        assert "value" not in built
        mock_web3.eth.send_raw_transaction.assert_called_once_with(b"signed_data")
        mock_web3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=30)

    def test_mint_without_event_is_rejected(self, gateway, goods_contract):
        goods_contract.events.TokenMinted.return_value.process_receipt.return_value = []

        with pytest.raises(Rejected):
            gateway.mint(SELLER, "ipfs://asset")


class TestListForSale:
    def test_relays_seller_signed_listing(self, gateway, account_class, operator, market_contract, mock_web3):
        account_class.recover_transaction.return_value = SELLER
        market_contract.events.ListingCreated.return_value.process_receipt.return_value = [
            {"args": {"tokenId": 7, "seller": SELLER, "price": 5 * 10**17, "timestamp": 1700000000}},
        ]

        tx_hash = gateway.list_for_sale(7, Decimal("0.5"), SELLER.lower(), SIGNED)

        assert tx_hash == TX_HASH
        account_class.recover_transaction.assert_called_once_with(SIGNED)
        mock_web3.eth.send_raw_transaction.assert_called_once_with(SIGNED)
        operator.sign_transaction.assert_not_called()

    def test_listing_at_another_price_is_rejected(self, gateway, account_class, market_contract):
        account_class.recover_transaction.return_value = SELLER
        market_contract.events.ListingCreated.return_value.process_receipt.return_value = [
            {"args": {"tokenId": 7, "seller": SELLER, "price": 10**17, "timestamp": 1700000000}},
        ]

        with pytest.raises(Rejected) as excinfo:
            gateway.list_for_sale(7, Decimal("0.5"), SELLER, SIGNED)
        assert excinfo.value.tx_hash == TX_HASH

    def test_signed_by_someone_else(self, gateway, account_class, mock_web3):
        account_class.recover_transaction.return_value = BUYER

        with pytest.raises(PermissionDenied):
            gateway.list_for_sale(7, Decimal("0.5"), SELLER, SIGNED)
        mock_web3.eth.send_raw_transaction.assert_not_called()


class TestUpdatePrice:
    def test_reads_new_price_back(self, gateway, account_class, market_contract, mock_web3):
        account_class.recover_transaction.return_value = SELLER
        market_contract.functions.getListing.return_value.call.return_value = (
            SELLER, 7, 8 * 10**17, True, 1700000000,
        )

        assert gateway.update_price(7, Decimal("0.8"), SELLER, SIGNED) == TX_HASH
        mock_web3.eth.send_raw_transaction.assert_called_once_with(SIGNED)

    def test_price_unchanged_on_chain(self, gateway, account_class, market_contract):
        account_class.recover_transaction.return_value = SELLER
        market_contract.functions.getListing.return_value.call.return_value = (
            SELLER, 7, 5 * 10**17, True, 1700000000,
        )

        with pytest.raises(Rejected, match="expected 0.8") as excinfo:
            gateway.update_price(7, Decimal("0.8"), SELLER, SIGNED)
        assert excinfo.value.tx_hash == TX_HASH


class TestPurchase:
    def test_relays_buyer_signed_purchase(
        self, gateway, account_class, operator, market_contract, mock_web3, purchase_events
    ):
        account_class.recover_transaction.return_value = BUYER

        tx_hash = gateway.purchase(7, BUYER.lower(), SIGNED)

        assert tx_hash == TX_HASH
        mock_web3.eth.send_raw_transaction.assert_called_once_with(SIGNED)
        mock_web3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=30)
        # the operator key never pays for or signs a purchase
        operator.sign_transaction.assert_not_called()
        market_contract.functions.purchase.assert_not_called()

    def test_signed_by_another_wallet(self, gateway, account_class, mock_web3):
        account_class.recover_transaction.return_value = OPERATOR

        with pytest.raises(PermissionDenied, match="not"):
            gateway.purchase(7, BUYER, SIGNED)
        mock_web3.eth.send_raw_transaction.assert_not_called()

    def test_malformed_signed_transaction(self, gateway, account_class, mock_web3):
        account_class.recover_transaction.side_effect = ValueError("not an RLP list")

        with pytest.raises(ValidationError):
            gateway.purchase(7, BUYER, "0x00")
        mock_web3.eth.send_raw_transaction.assert_not_called()

    def test_purchase_without_token(self, gateway, mock_web3):
        with pytest.raises(Rejected):
            gateway.purchase(None, BUYER, SIGNED)
        mock_web3.eth.send_raw_transaction.assert_not_called()

    def test_receipt_without_matching_event(self, gateway, account_class, purchase_events):
        account_class.recover_transaction.return_value = BUYER
        purchase_events.return_value = [purchase_event(token_id=8)]

        with pytest.raises(Rejected, match="did not purchase") as excinfo:
            gateway.purchase(7, BUYER, SIGNED)
        assert excinfo.value.tx_hash == TX_HASH

    def test_reverted_receipt(self, gateway, account_class, mock_web3):
        account_class.recover_transaction.return_value = BUYER
        mock_web3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "transactionHash": TX_HASH_BYTES}

        with pytest.raises(Rejected, match="reverted") as excinfo:
            gateway.purchase(7, BUYER, SIGNED)
        assert excinfo.value.tx_hash == TX_HASH


class TestErrorMapping:
    @pytest.mark.parametrize("error,expected", [
        (TimeExhausted("no receipt"), ChainUnavailable),
        (ConnectionError("refused"), ChainUnavailable),
        (ContractLogicError("execution reverted: not listed"), Rejected),
        (ValueError("insufficient funds for gas * price + value"), InsufficientFunds),
        (ValueError("nonce too low"), Rejected),
    ])
    def test_send_errors(self, gateway, account_class, mock_web3, error, expected):
        account_class.recover_transaction.return_value = BUYER
        mock_web3.eth.send_raw_transaction.side_effect = error

        with pytest.raises(expected) as excinfo:
            gateway.purchase(7, BUYER, SIGNED)
        # never reached the node, so there is nothing to look up later
        assert excinfo.value.tx_hash is None

    def test_receipt_timeout_carries_broadcast_hash(self, gateway, account_class, mock_web3):
        account_class.recover_transaction.return_value = BUYER
        mock_web3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("120s")

        with pytest.raises(ChainUnavailable) as excinfo:
            gateway.purchase(7, BUYER, SIGNED)

        assert excinfo.value.tx_hash == TX_HASH
        mock_web3.eth.send_raw_transaction.assert_called_once_with(SIGNED)

    def test_mint_timeout_carries_broadcast_hash(self, gateway, mock_web3):
        mock_web3.eth.wait_for_transaction_receipt.side_effect = ConnectionError("reset")

        with pytest.raises(ChainUnavailable) as excinfo:
            gateway.mint(SELLER, "ipfs://asset")
        assert excinfo.value.tx_hash == TX_HASH


class TestReads:
    def test_get_listing(self, gateway, market_contract):
        market_contract.functions.getListing.return_value.call.return_value = (
            OPERATOR, 7, 5 * 10**17, True, 1700000000,
        )

        listing = gateway.get_listing(7)

        assert listing == ChainListing(seller=OPERATOR, price_eth=Decimal("0.5"), active=True, listed_at=1700000000)

    def test_get_listing_unreachable(self, gateway, market_contract):
        market_contract.functions.getListing.return_value.call.side_effect = ConnectionError("refused")

        with pytest.raises(ChainUnavailable):
            gateway.get_listing(7)

    @pytest.mark.parametrize("status,expected", [(1, "success"), (0, "reverted")])
    def test_receipt_status(self, gateway, mock_web3, status, expected):
        mock_web3.eth.get_transaction_receipt.return_value = {"status": status}

        assert gateway.get_receipt_status("0xabc") == expected

    def test_receipt_unknown(self, gateway, mock_web3):
        mock_web3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")

        assert gateway.get_receipt_status("0xabc") is None


class TestConfirmPurchase:
    def test_matching_purchase(self, gateway, mock_web3, purchase_events):
        mock_web3.eth.get_transaction_receipt.return_value = {"status": 1}

        assert gateway.confirm_purchase(TX_HASH, 7, BUYER) == "success"

    def test_successful_receipt_of_something_else(self, gateway, mock_web3, purchase_events):
        mock_web3.eth.get_transaction_receipt.return_value = {"status": 1}
        purchase_events.return_value = [purchase_event(buyer=SELLER)]

        assert gateway.confirm_purchase(TX_HASH, 7, BUYER) == "mismatch"

    def test_reverted(self, gateway, mock_web3, purchase_events):
        mock_web3.eth.get_transaction_receipt.return_value = {"status": 0}

        assert gateway.confirm_purchase(TX_HASH, 7, BUYER) == "reverted"
        purchase_events.assert_not_called()

    def test_not_mined(self, gateway, mock_web3):
        mock_web3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")

        assert gateway.confirm_purchase(TX_HASH, 7, BUYER) is None


class TestFindPurchase:
    def test_latest_matching_log(self, gateway, market_contract):
        get_logs = market_contract.events.Purchase.return_value.get_logs
        get_logs.return_value = [
            {"transactionHash": b"\x00" * 32},
            {"transactionHash": TX_HASH_BYTES},
        ]

        assert gateway.find_purchase(7, BUYER.lower()) == TX_HASH
        get_logs.assert_called_once_with(
            from_block=100,
            argument_filters={"tokenId": 7, "buyer": BUYER},
        )

    def test_no_logs(self, gateway, market_contract):
        market_contract.events.Purchase.return_value.get_logs.return_value = []

        assert gateway.find_purchase(7, BUYER) is None

    def test_node_unreachable(self, gateway, market_contract):
        market_contract.events.Purchase.return_value.get_logs.side_effect = ConnectionError("refused")

        with pytest.raises(ChainUnavailable):
            gateway.find_purchase(7, BUYER)
