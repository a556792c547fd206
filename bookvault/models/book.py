"""
Book model: read-only catalog data owned by the admin side.
The purchase flow only reads price, title and the content locator
(blob id + AES-GCM IV/tag + mime type) from it.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from bookvault.db.base import Base


class Book(Base):
    __tablename__ = "books"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False, default="")
    price_stars = Column(Integer, nullable=False, default=0)
    blob_id = Column(String, nullable=False)                   # Walrus blob с зашифрованным файлом
    file_encryption_iv = Column(String, nullable=True)         # base64, 12 bytes
    file_encryption_tag = Column(String, nullable=True)        # base64, 16 bytes
    mime_type = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
