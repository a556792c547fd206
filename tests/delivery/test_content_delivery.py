"""ContentDeliveryService: entitlement gate, cache, storage errors, integrity."""
from unittest.mock import MagicMock

import pytest

from bookvault.schemas.purchases import ContentLocator, PurchaseRecord
from bookvault.services.blob_cache import BlobCache
from bookvault.services.delivery.service import ContentDeliveryService
from bookvault.services.entitlements.store import EntitlementStore
from bookvault.services.errors import ContentCorrupted, NotEntitled, StorageUnavailable


def _grant(db, cipher_meta, buyer_id="u1", payment_id="p1", blob_id="blob-b1", book_id="b1"):
    iv, tag = cipher_meta
    locator = ContentLocator(
        book_id=book_id,
        blob_id=blob_id,
        encryption_iv=iv,
        encryption_tag=tag,
        mime_type="application/pdf",
        file_name="stars.pdf",
    )
    EntitlementStore(db).insert_if_absent(PurchaseRecord.new(buyer_id, payment_id, locator))
    db.commit()


@pytest.fixture
def sealed(cipher, book_plaintext):
    return cipher.encrypt(book_plaintext)


@pytest.fixture
def storage(sealed):
    storage = MagicMock()
    storage.get_blob.return_value = sealed.encrypted_data
    return storage


def _service(db, storage, cipher, cache=None):
    if cache is None:
        cache = BlobCache(10)
    return ContentDeliveryService(EntitlementStore(db), storage, cache, cipher)


class TestGetContent:
    def test_not_entitled_without_purchase(self, db, storage, cipher):
        with pytest.raises(NotEntitled):
            _service(db, storage, cipher).get_content("u2", "b1")
        storage.get_blob.assert_not_called()

    def test_decrypts_for_buyer(self, db, storage, cipher, sealed, book_plaintext):
        _grant(db, (sealed.iv_b64, sealed.auth_tag_b64))
        content = _service(db, storage, cipher).get_content("u1", "b1")
        assert content.data == book_plaintext
        assert content.mime_type == "application/pdf"
        assert content.file_name == "stars.pdf"
        storage.get_blob.assert_called_once_with("blob-b1")

    def test_cache_hit_skips_storage(self, db, storage, cipher, sealed, book_plaintext):
        _grant(db, (sealed.iv_b64, sealed.auth_tag_b64))
        cache = BlobCache(10)
        service = _service(db, storage, cipher, cache)
        service.get_content("u1", "b1")
        second = service.get_content("u1", "b1")
        assert second.data == book_plaintext
        assert storage.get_blob.call_count == 1
        # only ciphertext is cached
        assert cache.get("blob-b1") == sealed.encrypted_data

    def test_storage_error_leaves_cache_empty(self, db, storage, cipher, sealed):
        _grant(db, (sealed.iv_b64, sealed.auth_tag_b64))
        storage.get_blob.side_effect = StorageUnavailable("down", blob_id="blob-b1")
        cache = BlobCache(10)
        with pytest.raises(StorageUnavailable):
            _service(db, storage, cipher, cache).get_content("u1", "b1")
        assert len(cache) == 0

    def test_corrupted_blob_raises_without_partial_data(self, db, storage, cipher, sealed):
        _grant(db, (sealed.iv_b64, sealed.auth_tag_b64))
        corrupted = bytearray(sealed.encrypted_data)
        corrupted[0] ^= 0x01
        storage.get_blob.return_value = bytes(corrupted)
        with pytest.raises(ContentCorrupted):
            _service(db, storage, cipher).get_content("u1", "b1")

    def test_missing_encryption_metadata_is_corruption(self, db, storage, cipher):
        _grant(db, (None, None))
        with pytest.raises(ContentCorrupted):
            _service(db, storage, cipher).get_content("u1", "b1")

    def test_other_buyer_is_not_entitled(self, db, storage, cipher, sealed):
        _grant(db, (sealed.iv_b64, sealed.auth_tag_b64))
        with pytest.raises(NotEntitled):
            _service(db, storage, cipher).get_content("u2", "b1")
