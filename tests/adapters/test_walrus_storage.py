"""WalrusBlobStorage: aggregator reads and error mapping."""
from unittest.mock import MagicMock

import httpx
import pybreaker
import pytest

from bookvault.services.errors import StorageUnavailable
from bookvault.storage.walrus import WalrusBlobStorage

AGGREGATOR = "http://aggregator.test/"


def _storage(handler, breaker=None):
    return WalrusBlobStorage(
        AGGREGATOR,
        breaker=breaker,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


class TestGetBlob:
    def test_returns_raw_bytes(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"\x00\x01ciphertext")

        assert _storage(handler).get_blob("blob-b1") == b"\x00\x01ciphertext"
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/v1/blobs/blob-b1"

    @pytest.mark.parametrize("status", [404, 500, 503])
    def test_http_errors_become_storage_unavailable(self, status):
        storage = _storage(lambda request: httpx.Response(status))
        with pytest.raises(StorageUnavailable) as exc_info:
            storage.get_blob("blob-b1")
        assert exc_info.value.detail["blob_id"] == "blob-b1"

    def test_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(StorageUnavailable):
            _storage(handler).get_blob("blob-b1")

    def test_open_breaker(self):
        breaker = MagicMock()
        breaker.call.side_effect = pybreaker.CircuitBreakerError("open")
        with pytest.raises(StorageUnavailable):
            _storage(lambda request: httpx.Response(200), breaker=breaker).get_blob("blob-b1")
