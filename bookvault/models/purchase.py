"""
Purchase model: entitlement record: buyer owns book.
Content locator is copied at creation and never re-resolved;
only nft_* / transaction_id / mint_* columns change later (minter only).
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from bookvault.db.base import Base


class Purchase(Base):
    __tablename__ = "purchases"
    __table_args__ = (
        UniqueConstraint("buyer_id", "book_id", name="uq_purchases_buyer_book"),
    )

    id = Column(String, primary_key=True)
    buyer_id = Column(String, nullable=False, index=True)      # Telegram user id
    book_id = Column(String, nullable=False)
    payment_id = Column(String, unique=True, nullable=False)
    blob_id = Column(String, nullable=False)
    encryption_iv = Column(String, nullable=True)
    encryption_tag = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    recipient_address = Column(String, nullable=True)          # кошелёк покупателя для NFT
    purchased_at = Column(DateTime(timezone=True), nullable=False)

    nft_status = Column(String, nullable=False, default="NONE")  # NONE / PENDING / MINTED / FAILED
    transaction_id = Column(String, nullable=True)
    nft_address = Column(String, nullable=True)
    nft_minted_at = Column(DateTime(timezone=True), nullable=True)
    mint_attempts = Column(Integer, nullable=False, default=0)
    mint_started_at = Column(DateTime(timezone=True), nullable=True)
    last_mint_error = Column(Text, nullable=True)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
