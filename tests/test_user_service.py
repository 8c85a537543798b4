"""
Tests for User Service
"""
import pytest
from sqlalchemy.orm import Session

from tokenmarket.core.errors import NotFound, ValidationError
from tokenmarket.services.event_publisher import EventPublisher
from tokenmarket.services.user_service import UserService, same_wallet


@pytest.fixture
def user_service(db_session: Session, publisher: EventPublisher) -> UserService:
    return UserService(db_session, publisher)


class TestAuthenticateWallet:
    def test_first_connection_creates_user(self, user_service: UserService, received: list):
        user, created = user_service.authenticate_wallet("0xAbC", "seller")

        assert created is True
        assert user.id is not None
        assert user.wallet_address == "0xAbC"
        assert user.user_type == "seller"
        assert ("wallet.connected", {"wallet_address": "0xAbC", "new_user": True}) in received

    def test_second_connection_returns_existing(self, user_service: UserService):
        first, _ = user_service.authenticate_wallet("0xAbC", "buyer")
        again, created = user_service.authenticate_wallet("0xabc", "buyer")

        assert created is False
        assert again.id == first.id
        assert again.wallet_address == "0xAbC"

    def test_role_change_is_applied(self, user_service: UserService, received: list):
        user_service.authenticate_wallet("0xAbC", "buyer")

        user, created = user_service.authenticate_wallet("0xAbC", "both")

        assert created is False
        assert user.user_type == "both"
        assert "wallet.role_changed" in [name for name, _ in received]

    @pytest.mark.parametrize("wallet,user_type", [("", "buyer"), ("   ", "buyer"), ("0xAbC", "admin")])
    def test_invalid_input(self, user_service: UserService, wallet, user_type):
        with pytest.raises(ValidationError):
            user_service.authenticate_wallet(wallet, user_type)


class TestProfile:
    def test_get_missing(self, user_service: UserService):
        with pytest.raises(NotFound):
            user_service.get("0xNOBODY")

    def test_partial_update(self, user_service: UserService):
        user_service.authenticate_wallet("0xAbC", "seller")
        user_service.update_profile("0xAbC", {"username": "alice", "bio": "collector"})

        user = user_service.update_profile("0xABC", {"username": None, "email": "a@example.com"})

        assert user.username == "alice"
        assert user.bio == "collector"
        assert user.email == "a@example.com"


def test_same_wallet():
    assert same_wallet("0xAbC", "0xabc")
    assert same_wallet(" 0xabc", "0xABC ")
    assert not same_wallet("0xabc", "0xabd")
    assert not same_wallet(None, "0xabc")
