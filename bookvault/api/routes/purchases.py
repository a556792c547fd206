from urllib.parse import quote

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bookvault.api.deps import get_container
from bookvault.db.session import get_db
from bookvault.services.auth.telegram_init_data import get_current_buyer
from bookvault.services.container import ServiceContainer
from bookvault.services.delivery.service import ContentDeliveryService
from bookvault.services.entitlements.store import EntitlementStore
from bookvault.services.purchases.service import PurchaseConfirmationService


router = APIRouter(prefix="/purchases", tags=["purchases"])


class ConfirmPurchaseRequest(BaseModel):
    book_id: str = Field(..., alias="bookId", min_length=1)
    payment_id: str = Field(..., alias="paymentId", min_length=1)
    recipient_address: str | None = Field(None, alias="recipientAddress")


def _confirmation_service(db: Session, container: ServiceContainer) -> PurchaseConfirmationService:
    return PurchaseConfirmationService(db, container.verifier, container.mint_scheduler)


@router.post("/confirm")
def confirm_purchase(
    body: ConfirmPurchaseRequest,
    buyer_id: str = Depends(get_current_buyer),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    purchase = _confirmation_service(db, container).confirm_purchase(
        buyer_id,
        body.book_id.strip(),
        body.payment_id.strip(),
        recipient_address=(body.recipient_address or "").strip() or None,
    )
    return {"ok": True, "purchase": purchase.public_details()}


@router.get("")
def list_purchases(
    buyer_id: str = Depends(get_current_buyer),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    return {"items": _confirmation_service(db, container).list_purchases(buyer_id)}


@router.get("/{book_id}/status")
def get_purchase_status(
    book_id: str,
    buyer_id: str = Depends(get_current_buyer),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    return _confirmation_service(db, container).get_purchase_status(buyer_id, book_id)


@router.get("/{book_id}/content")
def get_content(
    book_id: str,
    buyer_id: str = Depends(get_current_buyer),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    """Decrypted book file. 403 without a purchase."""
    service = ContentDeliveryService(
        EntitlementStore(db),
        container.storage,
        container.blob_cache,
        container.cipher,
    )
    content = service.get_content(buyer_id, book_id)
    headers = {"Cache-Control": "private, no-store"}
    if content.file_name:
        headers["Content-Disposition"] = f"inline; filename*=UTF-8''{quote(content.file_name)}"
    return Response(content=content.data, media_type=content.mime_type, headers=headers)
