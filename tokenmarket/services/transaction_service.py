"""
Transaction Reconciliation Service

Records purchase intents, relays the buyer's on-chain purchase and
reconciles the outcome back into the listings and transactions tables.

A purchase is two steps: ``initiate`` commits a pending row before anything
touches the chain, then either ``attempt_on_chain_purchase`` relays the
buyer's signed transaction or ``submit_hash`` records a hash the buyer
broadcast from their own wallet. A chain failure leaves the row pending and
the listing active; a success completes the row and deactivates the listing
in a single commit.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokenmarket.core.errors import ChainError, ConflictError, NotFound, ValidationError
from tokenmarket.models.listing import Listing
from tokenmarket.models.transaction import TRANSACTION_STATUSES, Transaction
from tokenmarket.services import event_publisher as events
from tokenmarket.services.contract_gateway import RECEIPT_MISMATCH, RECEIPT_REVERTED, RECEIPT_SUCCESS, ContractGateway
from tokenmarket.services.event_publisher import EventPublisher, NullPublisher
from tokenmarket.services.listing_service import deactivate_if_active
from tokenmarket.services.user_service import find_user, same_wallet

logger = structlog.get_logger(__name__)

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"


class TransactionService:
    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher or NullPublisher()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, transaction_id: int) -> Transaction:
        tx = self.db.get(Transaction, transaction_id)
        if not tx:
            raise NotFound("Transaction not found")
        return tx

    def get_by_hash(self, tx_hash: str) -> Transaction:
        tx = self.db.scalars(select(Transaction).where(Transaction.tx_hash == tx_hash)).first()
        if not tx:
            raise NotFound("Transaction not found")
        return tx

    def list_for_wallet(self, wallet_address: str) -> List[Transaction]:
        wallet = wallet_address.strip().lower()
        stmt = (
            select(Transaction)
            .where(or_(func.lower(Transaction.seller_wallet) == wallet, func.lower(Transaction.buyer_wallet) == wallet))
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        return list(self.db.scalars(stmt).all())

    # ------------------------------------------------------------------
    # Purchase flow
    # ------------------------------------------------------------------

    def initiate(self, buyer_wallet: str, listing_id: int) -> Transaction:
        """
        Durably record a purchase intent as a pending transaction.

        Raises:
            ValidationError: If the buyer wallet is empty
            NotFound: If the listing or the buyer does not exist
            ConflictError: On self-purchase or an inactive listing
        """
        if not buyer_wallet or not buyer_wallet.strip():
            raise ValidationError("Buyer wallet is required")

        listing = self.db.get(Listing, listing_id)
        if not listing:
            raise NotFound("Listing not found")
        if same_wallet(buyer_wallet, listing.seller_wallet):
            raise ConflictError("You cannot purchase your own item")
        if not listing.is_active:
            raise ConflictError("Listing is not active")

        buyer = find_user(self.db, buyer_wallet)
        if not buyer:
            raise NotFound("Buyer not found")

        tx = Transaction(
            token_id=listing.token_id,
            seller_wallet=listing.seller_wallet,
            buyer_wallet=buyer.wallet_address,
            listing_id=listing.id,
            price_eth=listing.price_eth,
            status=PENDING,
            created_at=datetime.utcnow(),
        )
        self.db.add(tx)
        self.db.commit()
        self.db.refresh(tx)

        logger.info("purchase_initiated", transaction_id=tx.id, listing_id=listing.id, buyer=tx.buyer_wallet)
        self.publisher.publish(events.TRANSACTION_CREATED, {"transaction_id": tx.id, "listing_id": listing.id})
        return tx

    def _require_purchasable(self, tx: Transaction) -> None:
        if tx.status != PENDING:
            raise ConflictError(f"Transaction is already {tx.status}")
        if tx.listing_id is not None:
            listing = self.db.get(Listing, tx.listing_id)
            if listing is not None and not listing.is_active:
                raise ConflictError("Listing is no longer active")

    def attempt_on_chain_purchase(self, transaction_id: int, gateway: ContractGateway, signed_tx: str) -> Transaction:
        """
        Relay the buyer's signed purchase for a pending transaction.

        Raises:
            NotFound: If the transaction does not exist
            ConflictError: If it is not pending or its listing was deactivated
            PermissionDenied: If ``signed_tx`` is not signed by the buyer
            ChainError: If the chain call failed; the transaction stays
                pending, with the broadcast hash recorded when there is one
        """
        tx = self.get(transaction_id)
        self._require_purchasable(tx)

        try:
            tx_hash = gateway.purchase(tx.token_id, tx.buyer_wallet, signed_tx)
        except ChainError as e:
            self._record_attempt(tx, str(e)[:255], e.tx_hash)
            logger.warning(
                "purchase_failed",
                transaction_id=tx.id,
                error_type=type(e).__name__,
                error=str(e),
                tx_hash=e.tx_hash,
            )
            raise

        try:
            completed = self._complete(tx, tx_hash)
        except SQLAlchemyError:
            # the chain purchase stands; reconcile finds it again by token and buyer
            logger.error("purchase_completion_not_persisted", transaction_id=transaction_id, tx_hash=tx_hash)
            raise

        if not completed:
            # chain succeeded but the row moved on underneath us
            logger.error("purchase_completion_conflict", transaction_id=tx.id, tx_hash=tx_hash)
            raise ConflictError(f"Transaction is already {tx.status}; on-chain hash {tx_hash}")
        return tx

    def submit_hash(self, transaction_id: int, tx_hash: str, gateway: ContractGateway) -> Transaction:
        """
        Record the hash of a purchase the buyer broadcast themselves, then
        reconcile it against its receipt.

        Raises:
            NotFound: If the transaction does not exist
            ValidationError: If the hash is empty
            ConflictError: If the transaction is not pending, has no token,
                or the hash belongs to another transaction
        """
        tx_hash = (tx_hash or "").strip()
        if not tx_hash:
            raise ValidationError("Transaction hash is required")

        tx = self.get(transaction_id)
        if tx.status != PENDING:
            if tx.tx_hash == tx_hash:
                return tx
            raise ConflictError(f"Transaction is already {tx.status}")
        if tx.token_id is None:
            raise ConflictError("Transaction has no on-chain token")
        if self._hash_taken(tx_hash, tx.id):
            raise ConflictError("Transaction hash already recorded")

        self._record_attempt(tx, tx.failure_reason, tx_hash)
        logger.info("purchase_hash_submitted", transaction_id=tx.id, tx_hash=tx_hash)
        return self.reconcile(tx.id, gateway)

    def update_status(self, transaction_id: int, new_status: str, tx_hash: Optional[str] = None) -> Transaction:
        """
        Move a transaction along pending -> completed | failed.

        Same-status updates are no-ops. Completing also deactivates the
        originating listing in the same commit.

        Raises:
            NotFound: If the transaction does not exist
            ValidationError: If new_status is not a known status
            ConflictError: If the transition would leave a terminal status
        """
        tx = self.get(transaction_id)
        if new_status not in TRANSACTION_STATUSES:
            raise ValidationError("Invalid status")

        if new_status == tx.status:
            return tx
        if tx.status != PENDING:
            raise ConflictError(f"Cannot change status from {tx.status} to {new_status}")

        if new_status == COMPLETED:
            hash_to_record = tx_hash or tx.tx_hash
            if hash_to_record and self._hash_taken(hash_to_record, tx.id):
                raise ConflictError("Transaction hash already recorded")
            ok = self._complete(tx, hash_to_record)
        else:
            ok = self._fail(tx, "marked failed")

        if not ok:
            raise ConflictError(f"Cannot change status from {tx.status} to {new_status}")
        return tx

    def reconcile(self, transaction_id: int, gateway: ContractGateway) -> Transaction:
        """
        One reconciling pass for a single transaction against chain state.

        With a recorded hash the receipt decides. Without one, a Purchase
        event of the token by this buyer completes the transaction; only
        when there is none does a sold or delisted token fail it.
        Terminal transactions are returned unchanged. ChainError from the
        gateway propagates without touching local state.
        """
        tx = self.get(transaction_id)
        if tx.status != PENDING:
            return tx

        if tx.tx_hash:
            outcome = gateway.confirm_purchase(tx.tx_hash, tx.token_id, tx.buyer_wallet)
            if outcome == RECEIPT_SUCCESS:
                self._complete(tx, tx.tx_hash)
            elif outcome == RECEIPT_REVERTED:
                self._fail(tx, "on-chain transaction reverted")
            elif outcome == RECEIPT_MISMATCH:
                self._fail(tx, "on-chain transaction is not this purchase")
            return tx

        listing = self.db.get(Listing, tx.listing_id) if tx.listing_id is not None else None
        listing_inactive = listing is not None and not listing.is_active

        if tx.token_id is None:
            if listing_inactive:
                self._fail(tx, "listing no longer active")
            return tx

        found_hash = gateway.find_purchase(tx.token_id, tx.buyer_wallet)
        if found_hash and not self._hash_taken(found_hash, tx.id):
            self._complete(tx, found_hash)
        elif listing_inactive:
            self._fail(tx, "listing no longer active")
        elif not gateway.get_listing(tx.token_id).active:
            self._fail(tx, "token no longer listed on chain")
        return tx

    def reconcile_pending(self, gateway: ContractGateway) -> Dict[str, int]:
        """Reconcile every pending transaction once; chain errors are counted, not raised."""
        summary = {"checked": 0, "completed": 0, "failed": 0, "pending": 0, "errors": 0}
        pending_ids = list(
            self.db.scalars(
                select(Transaction.id).where(Transaction.status == PENDING).order_by(Transaction.id)
            ).all()
        )

        for transaction_id in pending_ids:
            summary["checked"] += 1
            try:
                tx = self.reconcile(transaction_id, gateway)
            except ChainError as e:
                summary["errors"] += 1
                logger.warning("reconcile_failed", transaction_id=transaction_id, error=str(e))
                continue
            summary[tx.status] += 1

        logger.info("reconcile_pass_finished", **summary)
        return summary

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _hash_taken(self, tx_hash: str, transaction_id: int) -> bool:
        stmt = select(Transaction.id).where(Transaction.tx_hash == tx_hash, Transaction.id != transaction_id)
        return self.db.scalars(stmt).first() is not None

    def _record_attempt(self, tx: Transaction, reason: Optional[str], tx_hash: Optional[str]) -> None:
        """Note why the last attempt failed, and its hash if it was broadcast. Status stays pending."""
        values = {"failure_reason": reason}
        if tx_hash and not self._hash_taken(tx_hash, tx.id):
            values["tx_hash"] = tx_hash
        self.db.execute(
            update(Transaction)
            .where(Transaction.id == tx.id, Transaction.status == PENDING)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()
        self.db.refresh(tx)

    def _complete(self, tx: Transaction, tx_hash: Optional[str]) -> bool:
        """
        pending -> completed plus listing deactivation, committed together.
        Returns False (and writes nothing) if the row was no longer pending.
        A storage error rolls both back.
        """
        now = datetime.utcnow()
        try:
            result = self.db.execute(
                update(Transaction)
                .where(Transaction.id == tx.id, Transaction.status == PENDING)
                .values(status=COMPLETED, completed_at=now, tx_hash=tx_hash, failure_reason=None)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                self.db.rollback()
                self.db.refresh(tx)
                return False

            deactivated = tx.listing_id is not None and deactivate_if_active(self.db, tx.listing_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(tx)

        if tx.listing_id is not None and not deactivated:
            logger.warning("listing_already_inactive", transaction_id=tx.id, listing_id=tx.listing_id)
        logger.info("purchase_completed", transaction_id=tx.id, tx_hash=tx_hash)
        self.publisher.publish(events.TRANSACTION_COMPLETED, {
            "transaction_id": tx.id,
            "listing_id": tx.listing_id,
            "tx_hash": tx_hash,
        })
        if deactivated:
            self.publisher.publish(events.LISTING_DEACTIVATED, {"listing_id": tx.listing_id, "reason": "sold"})
        return True

    def _fail(self, tx: Transaction, reason: str) -> bool:
        result = self.db.execute(
            update(Transaction)
            .where(Transaction.id == tx.id, Transaction.status == PENDING)
            .values(status=FAILED, failure_reason=reason)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.db.refresh(tx)
            return False

        self.db.commit()
        self.db.refresh(tx)

        logger.info("purchase_failed_final", transaction_id=tx.id, reason=reason)
        self.publisher.publish(events.TRANSACTION_FAILED, {"transaction_id": tx.id, "reason": reason})
        return True
