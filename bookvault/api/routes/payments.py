from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bookvault.api.deps import get_container
from bookvault.db.session import get_db
from bookvault.services.auth.telegram_init_data import get_current_buyer
from bookvault.services.catalog.service import CatalogService
from bookvault.services.container import ServiceContainer
from bookvault.services.payments.service import InvoiceService


router = APIRouter(prefix="/payments", tags=["payments"])


class CreateInvoiceRequest(BaseModel):
    book_id: str = Field(..., alias="bookId", min_length=1)


@router.post("/invoice", dependencies=[Depends(get_current_buyer)])
def create_invoice(
    body: CreateInvoiceRequest,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Issue a Stars invoice for a catalog book; title and price come from the catalog."""
    book = CatalogService(db).require_book(body.book_id.strip())
    invoice = InvoiceService(db, container.telegram).create_invoice(
        book_id=book.id,
        title=book.title,
        amount_stars=book.price_stars,
    )
    return {
        "paymentId": invoice.payment_id,
        "bookId": invoice.book_id,
        "amountStars": invoice.amount_stars,
        "currency": invoice.currency,
        "invoiceLink": invoice.checkout_link,
        "status": invoice.status,
    }
