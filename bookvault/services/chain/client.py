"""
Sync JSON-RPC client for the chain: Sui fullnode reads (balances, coin metadata)
and the proof-of-purchase mint relay.

Failures are normalized to ChainUnavailable with a retryable flag:
transport errors, timeouts, 429 and 5xx are transient; other 4xx and
JSON-RPC error objects are rejections (except server-side internal errors).
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import count
from typing import Any

import httpx
import pybreaker

from bookvault.core.config import settings
from bookvault.services.errors import ChainUnavailable
from bookvault.utils.metrics import chain_request_duration_seconds, chain_requests_total

logger = logging.getLogger(__name__)

# JSON-RPC codes that mean "node-side problem, try again"
RETRYABLE_RPC_CODES = frozenset({-32603, -32000, -32002})


@dataclass(frozen=True)
class MintReceipt:
    transaction_id: str
    nft_address: str | None
    minted_at: datetime


def classify_http_status(status_code: int) -> bool:
    """Return True when an HTTP failure is worth retrying."""
    return status_code == 429 or 500 <= status_code < 600


class ChainClient:
    def __init__(
        self,
        rpc_url: str | None = None,
        mint_rpc_url: str | None = None,
        *,
        breaker: pybreaker.CircuitBreaker | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._rpc_url = rpc_url or settings.chain_rpc_url
        self._mint_rpc_url = mint_rpc_url or settings.effective_mint_rpc_url
        self._breaker = breaker
        self._client = http_client
        self._ids = count(1)

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=settings.chain_rpc_timeout)
        return self._client

    def _post(self, url: str, method: str, params: Any) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self.client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise ChainUnavailable(f"{method}: {type(e).__name__}", retryable=True) from e
        if resp.status_code >= 400:
            raise ChainUnavailable(
                f"{method}: HTTP {resp.status_code}",
                retryable=classify_http_status(resp.status_code),
                http_status=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise ChainUnavailable(f"{method}: non-JSON response", retryable=True) from e
        if not isinstance(body, dict):
            raise ChainUnavailable(f"{method}: malformed JSON-RPC response", retryable=True)
        error = body.get("error")
        if error:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            code = error.get("code")
            raise ChainUnavailable(
                f"{method}: {error.get('message', 'rpc error')}",
                retryable=code in RETRYABLE_RPC_CODES,
                rpc_code=code,
            )
        return body.get("result")

    def _call(self, url: str, method: str, params: Any) -> Any:
        start = time.time()
        try:
            if self._breaker is not None:
                result = self._breaker.call(self._post, url, method, params)
            else:
                result = self._post(url, method, params)
        except pybreaker.CircuitBreakerError as e:
            chain_requests_total.labels(method=method, status="breaker_open").inc()
            raise ChainUnavailable(f"{method}: circuit open", retryable=True) from e
        except ChainUnavailable:
            chain_requests_total.labels(method=method, status="error").inc()
            raise
        finally:
            chain_request_duration_seconds.labels(method=method).observe(time.time() - start)
        chain_requests_total.labels(method=method, status="success").inc()
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, owner: str, coin_type: str) -> dict:
        result = self._call(self._rpc_url, "suix_getBalance", [owner, coin_type])
        if not isinstance(result, dict):
            raise ChainUnavailable("suix_getBalance: unexpected result", retryable=True)
        return result

    def get_coin_metadata(self, coin_type: str) -> dict | None:
        result = self._call(self._rpc_url, "suix_getCoinMetadata", [coin_type])
        return result if isinstance(result, dict) else None

    # ------------------------------------------------------------------
    # Mint
    # ------------------------------------------------------------------

    def submit_mint(self, book_id: str, payment_id: str, recipient_address: str) -> MintReceipt:
        """Submit the mint and wait for the relay to report the confirmed transaction."""
        result = self._call(
            self._mint_rpc_url,
            settings.nft_mint_rpc_method,
            {"bookId": book_id, "paymentId": payment_id, "recipient": recipient_address},
        )
        if not isinstance(result, dict) or not result.get("transactionId"):
            raise ChainUnavailable("mint: relay returned no transaction id", retryable=True)
        minted_at = _parse_timestamp(result.get("mintedAt")) or datetime.now(timezone.utc)
        return MintReceipt(
            transaction_id=str(result["transactionId"]),
            nft_address=result.get("nftAddress"),
            minted_at=minted_at,
        )

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})
            finally:
                self._client = None


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
