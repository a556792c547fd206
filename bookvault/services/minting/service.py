"""
Proof-of-purchase NFT minting.

MintScheduler: hands a payment_id to the Celery queue exactly once per dedup window.
ProofOfPurchaseMinter: runs inside the worker: claim the purchase, submit the mint,
retry transient chain failures with capped exponential backoff + jitter, persist
the outcome. Minting never touches the entitlement itself: a FAILED mint leaves
content access exactly as it was.
"""
import logging
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from bookvault.core.celery_app import celery_app
from bookvault.core.config import settings
from bookvault.schemas.purchases import NFTRecord, NftStatus, PurchaseRecord
from bookvault.services.chain.client import ChainClient
from bookvault.services.entitlements.store import EntitlementStore
from bookvault.services.errors import ChainUnavailable
from bookvault.services.idempotency import IdempotencyStore
from bookvault.utils.metrics import nft_mint_attempts_total

logger = logging.getLogger(__name__)

MINT_TASK_NAME = "bookvault.workers.tasks.mint_nft.mint_purchase_nft"


def _enqueue_mint_task(payment_id: str) -> Any:
    return celery_app.send_task(MINT_TASK_NAME, args=[payment_id])


class MintScheduler:
    def __init__(
        self,
        idempotency: IdempotencyStore | None = None,
        enqueue: Callable[[str], Any] = _enqueue_mint_task,
    ) -> None:
        self.idempotency = idempotency or IdempotencyStore()
        self.enqueue = enqueue

    def schedule(self, payment_id: str) -> bool:
        """Enqueue minting for payment_id. Scheduling the same payment again is a no-op (False)."""
        key = f"mint:{payment_id}"
        if not self.idempotency.check_and_set(key, settings.mint_schedule_ttl):
            logger.info("nft_mint_already_scheduled", extra={"payment_id": payment_id})
            return False
        try:
            self.enqueue(payment_id)
        except Exception:
            # let the next schedule() / sweep try again
            self.idempotency.release(key)
            raise
        logger.info("nft_mint_scheduled", extra={"payment_id": payment_id})
        return True


def backoff_delay(attempt: int) -> float:
    """Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped, plus jitter."""
    base = settings.mint_retry_backoff_seconds * (2 ** (attempt - 1))
    return min(base, settings.mint_retry_backoff_max_seconds) + random.uniform(0, 1)


class ProofOfPurchaseMinter:
    def __init__(
        self,
        db: Session,
        chain: ChainClient,
        default_recipient: Callable[[], str] | None = None,
    ) -> None:
        self.db = db
        self.chain = chain
        self.store = EntitlementStore(db)
        self.default_recipient = default_recipient

    def mint(self, payment_id: str) -> NFTRecord | None:
        """
        Mint the proof of purchase for payment_id. Idempotent: an existing
        transaction is returned as is and nothing is re-submitted.
        Returns None when there is nothing to do (unknown payment, another worker
        holds the claim) or when the mint ended in FAILED.
        """
        purchase = self.store.get_by_payment(payment_id)
        if purchase is None:
            logger.error("nft_mint_purchase_not_found", extra={"payment_id": payment_id})
            return None
        if purchase.transaction_id:
            nft_mint_attempts_total.labels(result="skipped").inc()
            logger.info(
                "nft_mint_already_done",
                extra={"payment_id": payment_id, "transaction_id": purchase.transaction_id},
            )
            return _to_nft_record(purchase)

        stale_before = datetime.now(timezone.utc) - timedelta(minutes=settings.mint_pending_stale_minutes)
        if not self.store.claim_for_minting(payment_id, stale_before):
            self.db.rollback()
            nft_mint_attempts_total.labels(result="skipped").inc()
            logger.info("nft_mint_claim_not_acquired", extra={"payment_id": payment_id})
            return None
        self.db.commit()

        recipient = purchase.recipient_address
        if not recipient and self.default_recipient is not None:
            try:
                recipient = self.default_recipient()
            except Exception as e:
                logger.exception("nft_mint_recipient_unavailable", extra={"payment_id": payment_id})
                return self._fail(purchase, f"recipient unavailable: {e}")
        if not recipient:
            return self._fail(purchase, "no recipient address")

        max_attempts = max(1, settings.mint_retry_max_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                receipt = self.chain.submit_mint(purchase.book_id, payment_id, recipient)
            except ChainUnavailable as e:
                self.store.record_mint_attempt(payment_id, error=str(e))
                self.db.commit()
                if not e.retryable or attempt >= max_attempts:
                    return self._fail(purchase, str(e), attempt=attempt)
                delay = backoff_delay(attempt)
                nft_mint_attempts_total.labels(result="retry").inc()
                logger.warning(
                    "nft_mint_retry_scheduled",
                    extra={
                        "payment_id": payment_id,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "delay_seconds": round(delay, 2),
                        "error": str(e),
                    },
                )
                time.sleep(delay)
                continue
            break

        self.store.record_mint_attempt(payment_id)
        written = self.store.update_mint_result(
            payment_id,
            receipt.transaction_id,
            NftStatus.MINTED,
            nft_address=receipt.nft_address,
            minted_at=receipt.minted_at,
        )
        self.db.commit()
        if not written:
            # another worker persisted its transaction first; the stored one wins
            current = self.store.get_by_payment(payment_id)
            logger.warning(
                "nft_mint_result_discarded",
                extra={"payment_id": payment_id, "transaction_id": receipt.transaction_id},
            )
            return _to_nft_record(current) if current and current.transaction_id else None

        nft_mint_attempts_total.labels(result="minted").inc()
        logger.info(
            "nft_minted",
            extra={
                "payment_id": payment_id,
                "buyer_id": purchase.buyer_id,
                "book_id": purchase.book_id,
                "transaction_id": receipt.transaction_id,
                "attempt": attempt,
            },
        )
        return NFTRecord(
            payment_id=payment_id,
            transaction_id=receipt.transaction_id,
            nft_address=receipt.nft_address,
            recipient_address=recipient,
            minted_at=receipt.minted_at,
        )

    def _fail(self, purchase: PurchaseRecord, error: str, attempt: int = 0) -> None:
        self.store.update_mint_result(purchase.payment_id, None, NftStatus.FAILED, error=error)
        self.db.commit()
        nft_mint_attempts_total.labels(result="failed").inc()
        logger.error(
            "nft_mint_failed_manual_reconciliation",
            extra={
                "payment_id": purchase.payment_id,
                "buyer_id": purchase.buyer_id,
                "book_id": purchase.book_id,
                "attempt": attempt,
                "error": error,
            },
        )
        return None


def _to_nft_record(purchase: PurchaseRecord) -> NFTRecord:
    return NFTRecord(
        payment_id=purchase.payment_id,
        transaction_id=purchase.transaction_id,
        nft_address=purchase.nft_address,
        recipient_address=purchase.recipient_address,
        minted_at=purchase.nft_minted_at,
    )
