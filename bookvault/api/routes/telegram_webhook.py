"""
Telegram webhook: Stars checkout updates.

pre_checkout_query      -> answerPreCheckoutQuery (ok only for a payload naming a known book)
message.successful_payment -> confirm the purchase with the settlement from the update

The update is trusted only with a valid X-Telegram-Bot-Api-Secret-Token header.
Business rejections answer 200 so Telegram does not redeliver; unexpected
errors answer 500 and Telegram retries.
"""
import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from bookvault.api.deps import get_container
from bookvault.core.config import settings
from bookvault.db.session import get_db
from bookvault.services.catalog.service import CatalogService
from bookvault.services.container import ServiceContainer
from bookvault.services.errors import BookNotFound, PaymentNotConfirmed
from bookvault.services.payments.service import (
    RAIL_ERRORS,
    parse_payload,
    settlement_from_successful_payment,
)
from bookvault.services.purchases.service import PurchaseConfirmationService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])


def verify_webhook_secret(
    x_telegram_bot_api_secret_token: str | None = Header(None),
) -> None:
    expected = settings.telegram_webhook_secret
    received = x_telegram_bot_api_secret_token or ""
    if not expected or not hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("telegram_webhook_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/webhook", dependencies=[Depends(verify_webhook_secret)])
def telegram_webhook(
    update: dict,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    pre_checkout = update.get("pre_checkout_query")
    if pre_checkout and pre_checkout.get("id"):
        _answer_pre_checkout(db, container, pre_checkout)
        return {"ok": True}

    message = update.get("message") or {}
    successful_payment = message.get("successful_payment")
    payer_id = (message.get("from") or {}).get("id")
    if successful_payment and payer_id is not None:
        return _record_successful_payment(db, container, successful_payment, str(payer_id))

    return {"ok": True}


def _answer_pre_checkout(db: Session, container: ServiceContainer, query: dict) -> None:
    parsed = parse_payload(query.get("invoice_payload"))
    book = CatalogService(db).get_book(parsed.get("bookId", "")) if parsed.get("paymentId") else None
    ok = book is not None
    try:
        container.telegram.answer_pre_checkout_query(
            query["id"],
            ok=ok,
            error_message=None if ok else "This book is no longer available",
        )
    except RAIL_ERRORS as e:
        logger.warning("pre_checkout_answer_failed", extra={"error": str(e)})
        return
    logger.info(
        "pre_checkout_approved" if ok else "pre_checkout_rejected",
        extra={"payment_id": parsed.get("paymentId"), "book_id": parsed.get("bookId")},
    )


def _record_successful_payment(
    db: Session, container: ServiceContainer, successful_payment: dict, payer_id: str
) -> dict:
    settlement = settlement_from_successful_payment(successful_payment, payer_id)
    if settlement is None:
        logger.warning("successful_payment_foreign_payload", extra={"buyer_id": payer_id})
        return {"ok": True}

    service = PurchaseConfirmationService(db, container.verifier, container.mint_scheduler)
    try:
        purchase = service.confirm_purchase(
            payer_id,
            settlement.book_id,
            settlement.payment_id,
            settlement=settlement,
        )
    except (PaymentNotConfirmed, BookNotFound) as e:
        logger.warning(
            "successful_payment_not_recorded",
            extra={
                "buyer_id": payer_id,
                "payment_id": settlement.payment_id,
                "charge_id": settlement.charge_id,
                "error": str(e),
            },
        )
        return {"ok": True}
    return {"ok": True, "paymentId": purchase.payment_id}
