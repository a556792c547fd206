"""
Telegram Stars payment rail.

Responsibilities:
- Issue invoices (createInvoiceLink) carrying {"paymentId", "bookId"} in the payload
- Verify that a payment_id was actually settled before any entitlement is granted:
  either from an authenticated webhook update or by looking the payment up
  in getStarTransactions

Invoices are not stored locally: Telegram is the system of record until the
purchase is confirmed.
"""
import json
import logging
from uuid import uuid4

import httpx
import pybreaker
from sqlalchemy.orm import Session

from bookvault.core.config import settings
from bookvault.schemas.purchases import Invoice, SettledPayment
from bookvault.services.catalog.service import CatalogService
from bookvault.services.errors import (
    InvalidInvoiceAmount,
    InvoiceCreationFailed,
    PaymentNotConfirmed,
)
from bookvault.services.telegram.client import TelegramAPIError, TelegramClient
from bookvault.utils.metrics import invoices_created_total

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 128  # лимит Telegram на invoice payload

RAIL_ERRORS = (httpx.HTTPError, TelegramAPIError, pybreaker.CircuitBreakerError)


# ----------------------------------------------------------------------
# Payload
# ----------------------------------------------------------------------


def build_payload(payment_id: str, book_id: str) -> str:
    payload = json.dumps({"paymentId": payment_id, "bookId": book_id}, separators=(",", ":"))
    if len(payload.encode("utf-8")) > MAX_PAYLOAD_BYTES:
        raise InvoiceCreationFailed("Invoice payload exceeds 128 bytes", book_id=book_id)
    return payload


def parse_payload(payload: str | None) -> dict[str, str]:
    """Returns {"paymentId": ..., "bookId": ...}; {} for anything that is not our payload."""
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        logger.warning("invoice_payload_unparseable")
        return {}
    if not isinstance(data, dict):
        return {}
    return {k: str(v) for k, v in data.items() if k in ("paymentId", "bookId") and v}


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------


class InvoiceService:
    def __init__(self, db: Session, telegram: TelegramClient):
        self.db = db
        self.telegram = telegram

    def create_invoice(self, book_id: str, title: str, amount_stars: int) -> Invoice:
        """
        Issue a Stars invoice for book_id. One call to the rail, no retry:
        the caller asks again for a fresh invoice.
        """
        if not isinstance(amount_stars, int) or amount_stars <= 0:
            raise InvalidInvoiceAmount("amount_stars must be a positive integer", book_id=book_id)
        book = CatalogService(self.db).require_book(book_id)

        payment_id = uuid4().hex
        payload = build_payload(payment_id, book.id)
        try:
            link = self.telegram.create_invoice_link(
                title=title,
                description=f"Purchase access to {title}",
                payload=payload,
                amount_stars=amount_stars,
                currency=settings.stars_currency,
            )
        except RAIL_ERRORS as e:
            invoices_created_total.labels(status="error").inc()
            logger.warning(
                "invoice_creation_failed",
                extra={"book_id": book.id, "payment_id": payment_id, "error": str(e)},
            )
            raise InvoiceCreationFailed("Payment rail did not issue the invoice", book_id=book.id) from e
        if not link:
            invoices_created_total.labels(status="error").inc()
            raise InvoiceCreationFailed("Payment rail returned an empty invoice link", book_id=book.id)

        invoices_created_total.labels(status="success").inc()
        logger.info(
            "invoice_created",
            extra={"book_id": book.id, "payment_id": payment_id, "amount_stars": amount_stars},
        )
        return Invoice(
            payment_id=payment_id,
            book_id=book.id,
            amount_stars=amount_stars,
            currency=settings.stars_currency,
            checkout_link=link,
            status="pending",
        )


# ----------------------------------------------------------------------
# Settlement verification
# ----------------------------------------------------------------------


class StarsPaymentVerifier:
    """Answers "was payment_id really paid, for which book, by whom"."""

    def __init__(self, telegram: TelegramClient):
        self.telegram = telegram

    def find_settlement(self, payment_id: str) -> SettledPayment | None:
        """Scan recent incoming Star transactions for our payload. Raises RAIL_ERRORS."""
        page_size = settings.stars_transactions_page_size
        for page in range(settings.stars_transactions_max_pages):
            transactions = self.telegram.get_star_transactions(offset=page * page_size, limit=page_size)
            for tx in transactions:
                settled = settlement_from_transaction(tx)
                if settled is not None and settled.payment_id == payment_id:
                    return settled
            if len(transactions) < page_size:
                break
        return None

    def verify(
        self,
        payment_id: str,
        book_id: str,
        buyer_id: str,
        settlement: SettledPayment | None = None,
    ) -> SettledPayment:
        """
        Returns the settlement or raises PaymentNotConfirmed.
        settlement is passed only by trusted callers (authenticated webhook).
        """
        if settlement is None:
            try:
                settlement = self.find_settlement(payment_id)
            except RAIL_ERRORS as e:
                logger.warning(
                    "payment_verification_rail_error",
                    extra={"payment_id": payment_id, "error": str(e)},
                )
                raise PaymentNotConfirmed(
                    "Payment rail unavailable", payment_id=payment_id, reason="rail_unavailable"
                ) from e

        if settlement is None:
            raise PaymentNotConfirmed("Payment is not completed", payment_id=payment_id, reason="not_found")
        if settlement.payment_id != payment_id:
            raise PaymentNotConfirmed("Settlement is for another payment", payment_id=payment_id, reason="mismatch")
        if settlement.book_id != book_id:
            raise PaymentNotConfirmed("Payment was made for another book", payment_id=payment_id, reason="book_mismatch")
        if settlement.currency != settings.stars_currency or settlement.amount_stars <= 0:
            raise PaymentNotConfirmed("Unexpected payment amount", payment_id=payment_id, reason="amount")
        if settlement.payer_id is not None and str(settlement.payer_id) != str(buyer_id):
            raise PaymentNotConfirmed("Payment was made by another user", payment_id=payment_id, reason="payer_mismatch")
        return settlement


def settlement_from_transaction(tx: dict) -> SettledPayment | None:
    """
    StarTransaction -> SettledPayment. Only incoming payments from a user count:
    outgoing transactions (refunds, withdrawals) carry `receiver` instead of `source`.
    """
    if tx.get("receiver"):
        return None
    source = tx.get("source") or {}
    parsed = parse_payload(source.get("invoice_payload") or tx.get("invoice_payload"))
    if not parsed.get("paymentId") or not parsed.get("bookId"):
        return None
    payer = (source.get("user") or {}).get("id")
    amount = tx.get("amount") if tx.get("amount") is not None else tx.get("total_amount")
    return SettledPayment(
        payment_id=parsed["paymentId"],
        book_id=parsed["bookId"],
        amount_stars=int(amount or 0),
        currency=settings.stars_currency,
        payer_id=str(payer) if payer is not None else None,
        charge_id=tx.get("id"),
    )


def settlement_from_successful_payment(successful_payment: dict, payer_id: str) -> SettledPayment | None:
    """message.successful_payment from an authenticated webhook -> SettledPayment."""
    parsed = parse_payload(successful_payment.get("invoice_payload"))
    if not parsed.get("paymentId") or not parsed.get("bookId"):
        return None
    return SettledPayment(
        payment_id=parsed["paymentId"],
        book_id=parsed["bookId"],
        amount_stars=int(successful_payment.get("total_amount") or 0),
        currency=successful_payment.get("currency") or "",
        payer_id=str(payer_id),
        charge_id=successful_payment.get("telegram_payment_charge_id"),
    )
