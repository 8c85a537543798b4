from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tokenmarket.db.base import Base

TRANSACTION_STATUSES = ("pending", "completed", "failed")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("lower(seller_wallet) <> lower(buyer_wallet)", name="ck_transactions_distinct_parties"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    token_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)

    seller_wallet: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    buyer_wallet: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    listing_id: Mapped[int | None] = mapped_column(ForeignKey("listings.id"), index=True, nullable=True)

    price_eth: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(80), unique=True, index=True, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending / completed / failed
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
