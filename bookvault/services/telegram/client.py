"""
Telegram Bot API client using httpx sync client.
Covers the Stars payment rail (createInvoiceLink, getStarTransactions,
answerPreCheckoutQuery) and plain chat notifications. Sync on purpose:
the same client is used from FastAPI threadpool handlers and Celery workers.
"""
import time
import logging

import httpx
import pybreaker

from bookvault.core.config import settings
from bookvault.utils.metrics import (
    telegram_requests_total,
    telegram_request_duration_seconds,
)


logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramAPIError(Exception):
    """Telegram answered ok=false (or a non-JSON body)."""

    def __init__(self, method: str, error_code: int, description: str) -> None:
        super().__init__(f"{method} -> {error_code}: {description}")
        self.method = method
        self.error_code = error_code
        self.description = description


class TelegramClient:
    """
    Sync Telegram client.
    Network errors surface as httpx.HTTPError, API errors as TelegramAPIError,
    an open breaker as pybreaker.CircuitBreakerError.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        breaker: pybreaker.CircuitBreaker | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._token = token or settings.telegram_bot_token
        self._base_url = f"{TELEGRAM_API_BASE}/bot{self._token}"
        self._breaker = breaker
        self._client = http_client

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=settings.http_client_timeout)
        return self._client

    def _record_request(self, method: str, status: str, duration: float) -> None:
        telegram_requests_total.labels(method=method, status=status).inc()
        telegram_request_duration_seconds.labels(method=method).observe(duration)

    def _post(self, method: str, data: dict) -> dict:
        resp = self.client.post(f"{self._base_url}/{method}", json=data)
        try:
            result = resp.json()
        except ValueError:
            raise TelegramAPIError(method, resp.status_code, "non-JSON response")
        if not result.get("ok"):
            error_desc = result.get("description", "Unknown error")
            error_code = result.get("error_code", resp.status_code)
            logger.warning(f"Telegram API error: {method} -> {error_code}: {error_desc}")
            raise TelegramAPIError(method, error_code, error_desc)
        return result

    def _api_call(self, method: str, data: dict | None = None):
        """Make API call to Telegram; returns the `result` field."""
        start = time.time()
        try:
            if self._breaker is not None:
                result = self._breaker.call(self._post, method, data or {})
            else:
                result = self._post(method, data or {})
            self._record_request(method, "success", time.time() - start)
            return result.get("result")
        except Exception:
            self._record_request(method, "error", time.time() - start)
            raise

    # ------------------------------------------------------------------
    # Stars payments
    # ------------------------------------------------------------------

    def create_invoice_link(
        self,
        title: str,
        description: str,
        payload: str,
        amount_stars: int,
        currency: str = "XTR",
    ) -> str:
        """Create a Stars invoice link. For XTR provider_token is empty and amount is in whole Stars."""
        data = {
            "title": title[:32],
            "description": description[:255],
            "payload": payload,
            "provider_token": "",
            "currency": currency,
            "prices": [{"label": title[:32], "amount": int(amount_stars)}],
        }
        return self._api_call("createInvoiceLink", data)

    def get_star_transactions(self, offset: int = 0, limit: int = 100) -> list[dict]:
        result = self._api_call("getStarTransactions", {"offset": offset, "limit": limit})
        if isinstance(result, list):
            return result
        return (result or {}).get("transactions") or []

    def answer_pre_checkout_query(
        self, pre_checkout_query_id: str, ok: bool = True, error_message: str | None = None
    ) -> None:
        data = {"pre_checkout_query_id": pre_checkout_query_id, "ok": ok}
        if not ok and error_message:
            data["error_message"] = error_message
        self._api_call("answerPreCheckoutQuery", data)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_message(
        self,
        chat_id: str,
        text: str,
        reply_markup: dict | None = None,
    ) -> dict:
        """Send text message to chat."""
        try:
            data = {"chat_id": int(chat_id), "text": text}
            if reply_markup:
                data["reply_markup"] = reply_markup
            return self._api_call("sendMessage", data)
        except Exception as e:
            logger.error("Failed to send message", extra={"error": str(e), "chat_id": chat_id})
            raise

    def close(self) -> None:
        """Close httpx client."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})
            finally:
                self._client = None
