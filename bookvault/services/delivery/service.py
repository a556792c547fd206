"""
Content delivery: entitlement check -> ciphertext (cache or Walrus) -> AES-GCM decrypt.
Blob id and encryption metadata come from the purchase row, not from the catalog.
"""
import logging

from bookvault.schemas.purchases import DeliveredContent
from bookvault.services.blob_cache import BlobCache
from bookvault.services.encryption import BookCipher
from bookvault.services.entitlements.store import EntitlementStore
from bookvault.services.errors import ContentCorrupted, NotEntitled, StorageUnavailable
from bookvault.storage.base import BlobStorage
from bookvault.utils.metrics import content_deliveries_total

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class ContentDeliveryService:
    def __init__(
        self,
        store: EntitlementStore,
        storage: BlobStorage,
        cache: BlobCache,
        cipher: BookCipher,
    ) -> None:
        self.store = store
        self.storage = storage
        self.cache = cache
        self.cipher = cipher

    def get_content(self, buyer_id: str, book_id: str) -> DeliveredContent:
        purchase = self.store.get(buyer_id, book_id)
        if purchase is None:
            content_deliveries_total.labels(result="not_entitled").inc()
            raise NotEntitled("Book is not purchased", buyer_id=buyer_id, book_id=book_id)

        try:
            ciphertext = self._load_ciphertext(purchase.blob_id)
        except StorageUnavailable:
            content_deliveries_total.labels(result="storage_error").inc()
            raise

        try:
            data = self.cipher.decrypt_b64(ciphertext, purchase.encryption_iv, purchase.encryption_tag)
        except ContentCorrupted as e:
            content_deliveries_total.labels(result="corrupted").inc()
            logger.error(
                "content_integrity_incident",
                extra={
                    "buyer_id": buyer_id,
                    "book_id": book_id,
                    "payment_id": purchase.payment_id,
                    "blob_id": purchase.blob_id,
                    "error": str(e),
                },
            )
            raise

        content_deliveries_total.labels(result="success").inc()
        logger.info(
            "content_delivered",
            extra={"buyer_id": buyer_id, "book_id": book_id, "blob_id": purchase.blob_id},
        )
        return DeliveredContent(
            data=data,
            mime_type=purchase.mime_type or DEFAULT_MIME_TYPE,
            file_name=purchase.file_name,
        )

    def _load_ciphertext(self, blob_id: str) -> bytes:
        cached = self.cache.get(blob_id)
        if cached is not None:
            return cached
        data = self.storage.get_blob(blob_id)
        self.cache.put(blob_id, data)
        return data
