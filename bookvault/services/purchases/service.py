"""
Purchase confirmation: verified payment -> exactly one entitlement per (buyer, book).

Order matters: verify, snapshot the content locator, insert-if-absent, commit,
then schedule minting. A scheduling failure never fails the confirmation;
the periodic sweep picks such purchases up.
"""
import logging

from sqlalchemy.orm import Session

from bookvault.schemas.purchases import PurchaseRecord, SettledPayment
from bookvault.services.catalog.service import CatalogService
from bookvault.services.entitlements.store import EntitlementStore
from bookvault.services.errors import PaymentNotConfirmed
from bookvault.services.minting.service import MintScheduler
from bookvault.services.payments.service import StarsPaymentVerifier
from bookvault.utils.metrics import purchases_confirmed_total

logger = logging.getLogger(__name__)


class PurchaseConfirmationService:
    def __init__(
        self,
        db: Session,
        verifier: StarsPaymentVerifier,
        scheduler: MintScheduler | None = None,
    ) -> None:
        self.db = db
        self.verifier = verifier
        self.scheduler = scheduler
        self.store = EntitlementStore(db)
        self.catalog = CatalogService(db)

    def confirm_purchase(
        self,
        buyer_id: str,
        book_id: str,
        payment_id: str,
        *,
        settlement: SettledPayment | None = None,
        recipient_address: str | None = None,
    ) -> PurchaseRecord:
        """
        Idempotent: repeated or concurrent confirmations of the same payment return
        the same record. Raises PaymentNotConfirmed, BookNotFound.
        """
        buyer_id = str(buyer_id)
        existing = self.store.get_by_payment(payment_id)
        if existing is not None:
            if existing.buyer_id == buyer_id and existing.book_id == book_id:
                purchases_confirmed_total.labels(result="replay").inc()
                logger.info(
                    "purchase_confirm_replay",
                    extra={"buyer_id": buyer_id, "book_id": book_id, "payment_id": payment_id},
                )
                return existing
            purchases_confirmed_total.labels(result="rejected").inc()
            raise PaymentNotConfirmed(
                "Payment is bound to another purchase", payment_id=payment_id, reason="payment_reused"
            )

        try:
            self.verifier.verify(payment_id, book_id, buyer_id, settlement=settlement)
        except PaymentNotConfirmed as e:
            purchases_confirmed_total.labels(result="rejected").inc()
            logger.warning(
                "purchase_payment_not_confirmed",
                extra={
                    "buyer_id": buyer_id,
                    "book_id": book_id,
                    "payment_id": payment_id,
                    "error": e.detail.get("reason", str(e)),
                },
            )
            raise

        locator = self.catalog.resolve_locator(book_id)
        record = PurchaseRecord.new(buyer_id, payment_id, locator, recipient_address=recipient_address)
        try:
            inserted, current = self.store.insert_if_absent(record)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if current is None:
            # payment_id already belongs to another (buyer, book)
            purchases_confirmed_total.labels(result="rejected").inc()
            raise PaymentNotConfirmed(
                "Payment is bound to another purchase", payment_id=payment_id, reason="payment_reused"
            )

        purchases_confirmed_total.labels(result="created" if inserted else "duplicate").inc()
        logger.info(
            "purchase_confirmed",
            extra={
                "buyer_id": buyer_id,
                "book_id": book_id,
                "payment_id": current.payment_id,
                "purchase_id": current.id,
                "inserted": inserted,
            },
        )
        if inserted:
            self._schedule_mint(current)
        return current

    def _schedule_mint(self, purchase: PurchaseRecord) -> None:
        if self.scheduler is None:
            return
        try:
            self.scheduler.schedule(purchase.payment_id)
        except Exception as e:
            logger.warning(
                "nft_mint_schedule_failed",
                extra={"payment_id": purchase.payment_id, "error": str(e)},
            )

    def get_purchase_status(self, buyer_id: str, book_id: str) -> dict:
        """{purchased, details}; details is None when there is no purchase."""
        purchase = self.store.get(str(buyer_id), book_id)
        if purchase is None:
            return {"purchased": False, "details": None}
        return {"purchased": True, "details": purchase.public_details()}

    def list_purchases(self, buyer_id: str) -> list[dict]:
        return [p.public_details() for p in self.store.list(str(buyer_id))]
