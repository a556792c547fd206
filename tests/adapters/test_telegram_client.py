"""TelegramClient: Bot API envelope handling."""
import json

import httpx
import pytest

from bookvault.services.telegram.client import TelegramAPIError, TelegramClient


def _client(handler):
    return TelegramClient("123:abc", http_client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestApiCall:
    def test_create_invoice_link(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "result": "https://t.me/$link"})

        link = _client(handler).create_invoice_link("Book", "A book", '{"paymentId":"p1"}', 50)
        assert link == "https://t.me/$link"
        assert seen[0].url.path.endswith("/createInvoiceLink")
        body = json.loads(seen[0].content)
        assert body["currency"] == "XTR"
        assert body["provider_token"] == ""
        assert body["prices"] == [{"label": "Book", "amount": 50}]

    def test_ok_false_raises_api_error(self):
        client = _client(
            lambda request: httpx.Response(
                400, json={"ok": False, "error_code": 400, "description": "Bad Request: chat not found"}
            )
        )
        with pytest.raises(TelegramAPIError) as exc_info:
            client.send_message("1001", "hello")
        assert exc_info.value.method == "sendMessage"
        assert exc_info.value.error_code == 400
        assert "chat not found" in exc_info.value.description

    def test_non_json_body_raises_api_error(self):
        client = _client(lambda request: httpx.Response(502, text="Bad Gateway"))
        with pytest.raises(TelegramAPIError) as exc_info:
            client.get_star_transactions()
        assert exc_info.value.error_code == 502

    def test_network_error_propagates(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(httpx.HTTPError):
            _client(handler).get_star_transactions()

    @pytest.mark.parametrize(
        "result",
        [
            {"transactions": [{"id": "c1"}]},
            [{"id": "c1"}],
        ],
    )
    def test_star_transactions_shapes(self, result):
        client = _client(lambda request: httpx.Response(200, json={"ok": True, "result": result}))
        assert client.get_star_transactions() == [{"id": "c1"}]
