"""
DTO покупок: Invoice, ContentLocator, PurchaseRecord, NFTRecord, SettledPayment,
DeliveredContent, WalletBalanceSnapshot. Plain frozen records; services never return ORM rows.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class NftStatus(str, Enum):
    NONE = "NONE"
    PENDING = "PENDING"
    MINTED = "MINTED"
    FAILED = "FAILED"


# ----- Payment rail -----


class Invoice(BaseModel):
    """Stars invoice issued by Telegram; immutable, a retry issues a new one."""

    payment_id: str
    book_id: str
    amount_stars: int
    currency: str = "XTR"
    checkout_link: str
    status: str = "pending"

    model_config = {"frozen": True}


class SettledPayment(BaseModel):
    """What the payment rail confirmed for a payment_id."""

    payment_id: str
    book_id: str
    amount_stars: int
    currency: str = "XTR"
    payer_id: str | None = Field(
        None,
        description="Telegram user id of the payer, when the rail reports it",
    )
    charge_id: str | None = Field(None, description="telegram_payment_charge_id")

    model_config = {"frozen": True}


# ----- Catalog -----


class ContentLocator(BaseModel):
    book_id: str
    blob_id: str
    encryption_iv: str | None = Field(None, description="base64 AES-GCM IV")
    encryption_tag: str | None = Field(None, description="base64 AES-GCM auth tag")
    mime_type: str | None = None
    file_name: str | None = None

    model_config = {"frozen": True}


# ----- Entitlement -----


class PurchaseRecord(BaseModel):
    """Entitlement of buyer_id to book_id. Content locator fields are a snapshot taken at purchase time."""

    id: str
    buyer_id: str
    book_id: str
    payment_id: str
    blob_id: str
    encryption_iv: str | None = None
    encryption_tag: str | None = None
    mime_type: str | None = None
    file_name: str | None = None
    recipient_address: str | None = None
    purchased_at: datetime
    nft_status: NftStatus = NftStatus.NONE
    transaction_id: str | None = None
    nft_address: str | None = None
    nft_minted_at: datetime | None = None
    mint_attempts: int = 0

    model_config = {"frozen": True, "from_attributes": True}

    @classmethod
    def new(
        cls,
        buyer_id: str,
        payment_id: str,
        locator: ContentLocator,
        *,
        recipient_address: str | None = None,
    ) -> "PurchaseRecord":
        """Build a fresh record: id and purchased_at are assigned here, not by the database."""
        return cls(
            id=str(uuid4()),
            buyer_id=buyer_id,
            book_id=locator.book_id,
            payment_id=payment_id,
            blob_id=locator.blob_id,
            encryption_iv=locator.encryption_iv,
            encryption_tag=locator.encryption_tag,
            mime_type=locator.mime_type,
            file_name=locator.file_name,
            recipient_address=recipient_address,
            purchased_at=datetime.now(timezone.utc),
        )

    def public_details(self) -> dict:
        """Fields exposed to the buyer (no encryption metadata)."""
        return {
            "bookId": self.book_id,
            "paymentId": self.payment_id,
            "purchasedAt": self.purchased_at.isoformat(),
            "nftStatus": self.nft_status.value,
            "transactionId": self.transaction_id,
            "nftAddress": self.nft_address,
            "nftMintedAt": self.nft_minted_at.isoformat() if self.nft_minted_at else None,
        }


class NFTRecord(BaseModel):
    payment_id: str
    transaction_id: str
    nft_address: str | None = None
    recipient_address: str | None = None
    minted_at: datetime | None = None

    model_config = {"frozen": True}


# ----- Delivery -----


class DeliveredContent(BaseModel):
    data: bytes
    mime_type: str
    file_name: str | None = None

    model_config = {"frozen": True}


# ----- Wallet -----


class CoinBalance(BaseModel):
    coin_type: str
    symbol: str
    total_balance: str
    decimals: int

    model_config = {"frozen": True}


class WalletBalanceSnapshot(BaseModel):
    address: str
    coins: list[CoinBalance]
    fetched_at: datetime

    model_config = {"frozen": True}
