"""
Run one reconciliation pass over every pending transaction.

Pending transactions whose chain outcome is now known are completed or
failed; the rest stay pending for manual follow-up.
"""
from tokenmarket.core.config import settings
from tokenmarket.core.logging import configure_logging
from tokenmarket.db.session import SessionLocal
from tokenmarket.services.contract_gateway import ContractGateway
from tokenmarket.services.transaction_service import TransactionService


def main() -> None:
    configure_logging(settings.log_level, settings.log_json)
    gateway = ContractGateway(settings)

    db = SessionLocal()
    try:
        summary = TransactionService(db).reconcile_pending(gateway)
    finally:
        db.close()

    print(
        f"checked={summary['checked']} completed={summary['completed']} "
        f"failed={summary['failed']} pending={summary['pending']} errors={summary['errors']}"
    )


if __name__ == "__main__":
    main()
