"""
Proof-of-purchase minting tasks.

mint_purchase_nft: mint for one payment (retries/backoff live in ProofOfPurchaseMinter).
sweep_unminted_purchases: beat task: re-schedule purchases stuck in NONE
(scheduling was lost) or PENDING past the stale window (worker died mid-mint).
"""
import logging
from datetime import datetime, timedelta, timezone

from bookvault.core.celery_app import celery_app
from bookvault.core.config import settings
from bookvault.db.session import SessionLocal
from bookvault.services.container import get_worker_container
from bookvault.services.entitlements.store import EntitlementStore
from bookvault.services.minting.service import ProofOfPurchaseMinter

logger = logging.getLogger(__name__)


def _notify_buyer(buyer_id: str, transaction_id: str) -> None:
    """Best effort: a failed notification never affects the mint."""
    try:
        get_worker_container().telegram.send_message(
            buyer_id,
            f"Your proof of purchase has been minted.\nTransaction: {transaction_id}",
        )
    except Exception as e:
        logger.warning("nft_mint_notify_failed", extra={"buyer_id": buyer_id, "error": str(e)})


@celery_app.task(
    name="bookvault.workers.tasks.mint_nft.mint_purchase_nft",
    time_limit=900,
    soft_time_limit=840,
)
def mint_purchase_nft(payment_id: str) -> dict:
    container = get_worker_container()
    db = SessionLocal()
    try:
        minter = ProofOfPurchaseMinter(db, container.chain, default_recipient=lambda: container.wallet.address)
        purchase_before = EntitlementStore(db).get_by_payment(payment_id)
        nft = minter.mint(payment_id)
        if nft is None:
            return {"ok": False, "payment_id": payment_id}
        if purchase_before is not None and purchase_before.transaction_id is None:
            _notify_buyer(purchase_before.buyer_id, nft.transaction_id)
        return {"ok": True, "payment_id": payment_id, "transaction_id": nft.transaction_id}
    except Exception:
        db.rollback()
        logger.exception("nft_mint_task_failed", extra={"payment_id": payment_id})
        raise
    finally:
        db.close()


@celery_app.task(
    name="bookvault.workers.tasks.mint_nft.sweep_unminted_purchases",
    time_limit=120,
    soft_time_limit=110,
)
def sweep_unminted_purchases() -> dict:
    now = datetime.now(timezone.utc)
    older_than = now - timedelta(minutes=settings.mint_sweep_min_age_minutes)
    stale_before = now - timedelta(minutes=settings.mint_pending_stale_minutes)
    db = SessionLocal()
    try:
        pending = EntitlementStore(db).list_unminted(
            older_than, stale_before, limit=settings.mint_sweep_batch_size
        )
    finally:
        db.close()

    scheduler = get_worker_container().mint_scheduler
    scheduled = 0
    for purchase in pending:
        try:
            if scheduler.schedule(purchase.payment_id):
                scheduled += 1
        except Exception as e:
            logger.warning(
                "nft_mint_sweep_schedule_failed",
                extra={"payment_id": purchase.payment_id, "error": str(e)},
            )
    logger.info("nft_mint_sweep_done", extra={"count": len(pending), "scheduled": scheduled})
    return {"ok": True, "found": len(pending), "scheduled": scheduled}
