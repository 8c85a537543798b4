from decimal import Decimal

from sqlalchemy.orm import Session

from tokenmarket.db.base import Base
from tokenmarket.db.session import SessionLocal, engine
from tokenmarket.services.listing_service import ListingService
from tokenmarket.services.user_service import UserService

DEMO_SELLER = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb1"

DEMO_LISTINGS = [
    ("Vintage Watch", "Swiss automatic, serviced 2023", Decimal("0.5"), "accessories", "used"),
    ("Film Camera", "35mm rangefinder with case", Decimal("0.12"), "electronics", "used"),
    ("Signed Vinyl", "First pressing, signed sleeve", Decimal("0.08"), "music", "like-new"),
]


def main() -> None:
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        UserService(db).authenticate_wallet(DEMO_SELLER, "seller")

        service = ListingService(db)
        existing = {listing.title for listing in service.list(seller_wallet=DEMO_SELLER)}
        created = 0
        for title, description, price, category, condition in DEMO_LISTINGS:
            if title in existing:
                continue
            service.create(
                DEMO_SELLER,
                title,
                price,
                description=description,
                category=category,
                condition=condition,
            )
            created += 1

        print(f"Seeded {created} listings for {DEMO_SELLER}.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
