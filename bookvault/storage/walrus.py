"""
Walrus aggregator client: GET /v1/blobs/{blob_id} returns the raw blob bytes.
"""
import logging
import time
from urllib.parse import quote

import httpx
import pybreaker

from bookvault.core.config import settings
from bookvault.services.errors import StorageUnavailable
from bookvault.storage.base import BlobStorage
from bookvault.utils.metrics import storage_request_duration_seconds, storage_requests_total

logger = logging.getLogger(__name__)


class WalrusBlobStorage(BlobStorage):
    def __init__(
        self,
        aggregator_url: str | None = None,
        *,
        breaker: pybreaker.CircuitBreaker | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._base_url = (aggregator_url or settings.walrus_aggregator_url).rstrip("/")
        self._breaker = breaker
        self._client = http_client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=settings.storage_timeout)
        return self._client

    def _fetch(self, blob_id: str) -> bytes:
        resp = self.client.get(f"{self._base_url}/v1/blobs/{quote(blob_id, safe='')}")
        resp.raise_for_status()
        return resp.content

    def get_blob(self, blob_id: str) -> bytes:
        start = time.time()
        try:
            if self._breaker is not None:
                data = self._breaker.call(self._fetch, blob_id)
            else:
                data = self._fetch(blob_id)
        except (httpx.HTTPError, pybreaker.CircuitBreakerError) as e:
            storage_requests_total.labels(status="error").inc()
            logger.warning("blob_fetch_failed", extra={"blob_id": blob_id, "error": str(e)})
            raise StorageUnavailable(f"Failed to fetch blob {blob_id}", blob_id=blob_id) from e
        finally:
            storage_request_duration_seconds.observe(time.time() - start)
        storage_requests_total.labels(status="success").inc()
        return data

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})
            finally:
                self._client = None
