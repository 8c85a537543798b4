import os
import sys
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add the parent directory to the path so we can import tokenmarket modules
sys.path.insert(0, str(Path(__file__).parent.parent))

# must be set before tokenmarket.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="tokenmarket-uploads-"))

from tokenmarket.db.base import Base  # noqa: E402
from tokenmarket import models  # noqa: E402,F401
from tokenmarket.models.user import User  # noqa: E402
from tokenmarket.services.contract_gateway import ContractGateway  # noqa: E402
from tokenmarket.services.event_publisher import EventPublisher  # noqa: E402
from tokenmarket.services.listing_service import ListingService  # noqa: E402
from tokenmarket.services.transaction_service import TransactionService  # noqa: E402

SELLER = "0xAAA"
BUYER = "0xBBB"


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    """Create a fresh database session for each test."""
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def publisher() -> EventPublisher:
    return EventPublisher()


@pytest.fixture
def received(publisher: EventPublisher) -> list:
    """Every event published during the test, as (name, data) pairs."""
    seen: list = []
    publisher.subscribe("*", lambda name, data: seen.append((name, data)))
    return seen


@pytest.fixture
def gateway() -> Mock:
    """Contract gateway double; purchase succeeds unless a test says otherwise."""
    mock = Mock(spec=ContractGateway)
    mock.purchase.return_value = "0xdead" + "0" * 60
    mock.find_purchase.return_value = None
    mock.confirm_purchase.return_value = None
    return mock


@pytest.fixture
def seller(db_session: Session) -> User:
    user = User(wallet_address=SELLER, user_type="seller")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def buyer(db_session: Session) -> User:
    user = User(wallet_address=BUYER, user_type="buyer")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def listing_service(db_session: Session, publisher: EventPublisher) -> ListingService:
    return ListingService(db_session, publisher)


@pytest.fixture
def transaction_service(db_session: Session, publisher: EventPublisher) -> TransactionService:
    return TransactionService(db_session, publisher)


@pytest.fixture
def listing(listing_service: ListingService, seller: User):
    return listing_service.create(
        SELLER,
        "Watch",
        "0.5",
        description="Swiss automatic",
        category="accessories",
        condition="used",
    )
