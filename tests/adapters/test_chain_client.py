"""ChainClient: JSON-RPC transport and the retryable / rejected split."""
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pybreaker
import pytest

from bookvault.services.chain.client import ChainClient
from bookvault.services.errors import ChainUnavailable

RPC_URL = "http://fullnode.test"
MINT_URL = "http://mint-relay.test"


def _client(handler, breaker=None):
    return ChainClient(
        RPC_URL,
        MINT_URL,
        breaker=breaker,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _rpc_result(result):
    def handler(request):
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return handler


def _rpc_error(code, message="rpc error"):
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}})

    return handler


class TestReads:
    def test_get_balance(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return _rpc_result({"coinType": "0x2::sui::SUI", "totalBalance": "10"})(request)

        balance = _client(handler).get_balance("0xabc", "0x2::sui::SUI")
        assert balance["totalBalance"] == "10"
        assert seen[0]["method"] == "suix_getBalance"
        assert seen[0]["params"] == ["0xabc", "0x2::sui::SUI"]

    def test_missing_metadata_is_none(self):
        assert _client(_rpc_result(None)).get_coin_metadata("0x2::sui::SUI") is None

    def test_unexpected_balance_shape_is_retryable(self):
        with pytest.raises(ChainUnavailable) as exc_info:
            _client(_rpc_result("10")).get_balance("0xabc", "0x2::sui::SUI")
        assert exc_info.value.retryable


class TestErrorMapping:
    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_throttling_and_server_errors_are_retryable(self, status):
        client = _client(lambda request: httpx.Response(status, text="busy"))
        with pytest.raises(ChainUnavailable) as exc_info:
            client.get_balance("0xabc", "0x2::sui::SUI")
        assert exc_info.value.retryable
        assert exc_info.value.detail["http_status"] == status

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_client_errors_are_rejections(self, status):
        client = _client(lambda request: httpx.Response(status, text="no"))
        with pytest.raises(ChainUnavailable) as exc_info:
            client.get_balance("0xabc", "0x2::sui::SUI")
        assert not exc_info.value.retryable

    def test_transport_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ChainUnavailable) as exc_info:
            _client(handler).get_balance("0xabc", "0x2::sui::SUI")
        assert exc_info.value.retryable

    @pytest.mark.parametrize("code", [-32603, -32000, -32002])
    def test_node_side_rpc_errors_are_retryable(self, code):
        with pytest.raises(ChainUnavailable) as exc_info:
            _client(_rpc_error(code)).submit_mint("b1", "p1", "0xabc")
        assert exc_info.value.retryable
        assert exc_info.value.detail["rpc_code"] == code

    @pytest.mark.parametrize("code", [-32602, -32601, 1001])
    def test_other_rpc_errors_are_rejections(self, code):
        with pytest.raises(ChainUnavailable) as exc_info:
            _client(_rpc_error(code, "invalid params")).submit_mint("b1", "p1", "0xabc")
        assert not exc_info.value.retryable
        assert "invalid params" in str(exc_info.value)

    def test_non_json_body_is_retryable(self):
        client = _client(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        with pytest.raises(ChainUnavailable) as exc_info:
            client.get_balance("0xabc", "0x2::sui::SUI")
        assert exc_info.value.retryable

    @pytest.mark.parametrize("body", [[{"result": {}}], "ok", 42])
    def test_non_object_body_is_retryable(self, body):
        client = _client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(ChainUnavailable) as exc_info:
            client.submit_mint("b1", "p1", "0xabc")
        assert exc_info.value.retryable

    def test_open_breaker_is_retryable(self):
        breaker = MagicMock()
        breaker.call.side_effect = pybreaker.CircuitBreakerError("open")
        with pytest.raises(ChainUnavailable) as exc_info:
            _client(_rpc_result({}), breaker=breaker).get_balance("0xabc", "0x2::sui::SUI")
        assert exc_info.value.retryable


class TestSubmitMint:
    def test_receipt(self):
        seen = []

        def handler(request):
            seen.append(request)
            return _rpc_result(
                {"transactionId": "tx-1", "nftAddress": "0xnft", "mintedAt": "2024-05-01T10:00:00Z"}
            )(request)

        receipt = _client(handler).submit_mint("b1", "p1", "0xabc")
        assert receipt.transaction_id == "tx-1"
        assert receipt.nft_address == "0xnft"
        assert receipt.minted_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert str(seen[0].url).startswith(MINT_URL)
        params = json.loads(seen[0].content)["params"]
        assert params == {"bookId": "b1", "paymentId": "p1", "recipient": "0xabc"}

    def test_missing_transaction_id_is_retryable(self):
        with pytest.raises(ChainUnavailable) as exc_info:
            _client(_rpc_result({"nftAddress": "0xnft"})).submit_mint("b1", "p1", "0xabc")
        assert exc_info.value.retryable
