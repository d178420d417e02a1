"""Unit tests for the paid chat completion route."""

import json
import unittest
from unittest.mock import AsyncMock, MagicMock

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from drain.api.provider_api.dependencies import get_inference_orchestrator
from drain.api.provider_api.routers.completions import router
from drain.application.provider.use_cases.inference import PaidCompletion
from drain.application.shared.voucher_payloads import DrainReceipt
from drain.domain.errors import (
    ChannelExpired,
    InsufficientFunds,
    ModelNotSupported,
    OnChainFailure,
)

CHANNEL_ID = "0x" + "ab" * 32
VOUCHER = json.dumps(
    {
        "channelId": CHANNEL_ID,
        "amount": "10000",
        "nonce": "1",
        "signature": "0x" + "1b" * 65,
    }
)
BODY = {"model": "gpt-4o", "messages": [{"role": "user", "content": "Hi"}]}


class TestCompletionsRouter(unittest.TestCase):
    """Test cases for the completions router."""

    def setUp(self):
        self.app = FastAPI()
        self.app.include_router(router, prefix="/v1")

        self.mock_orchestrator = MagicMock()
        self.mock_orchestrator.authorize = AsyncMock()
        self.mock_orchestrator.complete = AsyncMock()

        self.app.dependency_overrides[get_inference_orchestrator] = (
            lambda: self.mock_orchestrator
        )
        self.client = TestClient(self.app)

    def tearDown(self):
        self.app.dependency_overrides.clear()

    def _post(self, headers=None, body=None):
        return self.client.post(
            "/v1/chat/completions",
            json=body or BODY,
            headers={"X-DRAIN-Voucher": VOUCHER} if headers is None else headers,
        )

    def test_success_returns_receipt_headers(self):
        self.mock_orchestrator.complete.return_value = PaidCompletion(
            body={"choices": [{"message": {"content": "hello"}}]},
            receipt=DrainReceipt(channel_id=CHANNEL_ID, cost=150, total=150, remaining=850),
        )

        response = self._post()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["X-DRAIN-Cost"], "150")
        self.assertEqual(response.headers["X-DRAIN-Total"], "150")
        self.assertEqual(response.headers["X-DRAIN-Remaining"], "850")
        self.assertEqual(response.headers["X-DRAIN-Channel"], CHANNEL_ID)
        voucher = self.mock_orchestrator.authorize.call_args.args[0]
        self.assertEqual(voucher.amount, 10_000)

    def test_missing_voucher(self):
        response = self._post(headers={})

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.headers["X-DRAIN-Error"], "voucher_required")
        self.mock_orchestrator.authorize.assert_not_called()

    def test_malformed_voucher(self):
        response = self._post(headers={"X-DRAIN-Voucher": "{not json"})

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.headers["X-DRAIN-Error"], "malformed_voucher")
        self.assertEqual(response.json()["error"]["code"], "malformed_voucher")

    def test_insufficient_funds_reports_amounts(self):
        self.mock_orchestrator.authorize.side_effect = InsufficientFunds(
            required=300, provided=120
        )

        response = self._post()

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.headers["X-DRAIN-Error"], "insufficient_funds")
        self.assertEqual(response.headers["X-DRAIN-Required"], "300")
        self.assertEqual(response.headers["X-DRAIN-Provided"], "120")

    def test_protocol_rejection(self):
        self.mock_orchestrator.authorize.side_effect = ChannelExpired("expired")

        response = self._post()

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.headers["X-DRAIN-Error"], "channel_expired")
        self.assertNotIn("X-DRAIN-Required", response.headers)

    def test_unknown_model(self):
        self.mock_orchestrator.authorize.side_effect = ModelNotSupported("no such model")

        response = self._post()

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["type"], "invalid_request_error")

    def test_oracle_outage_is_503(self):
        self.mock_orchestrator.authorize.side_effect = OnChainFailure(
            "getChannel failed", reason="rpc"
        )

        response = self._post()

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.headers["X-DRAIN-Error"], "on_chain_failure")

    def test_upstream_failure_is_502(self):
        self.mock_orchestrator.complete.side_effect = httpx.ConnectError("refused")

        response = self._post()

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["error"]["code"], "upstream_error")

    def test_unexpected_error_is_500(self):
        self.mock_orchestrator.complete.side_effect = RuntimeError("boom")

        response = self._post()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"]["code"], "internal_error")

    def test_invalid_body_rejected(self):
        response = self._post(body={"model": "gpt-4o", "messages": []})

        self.assertEqual(response.status_code, 422)
        self.mock_orchestrator.authorize.assert_not_called()

    def test_streaming_response(self):
        async def events(paid):
            yield 'data: {"choices": []}\n\n'
            yield "data: [DONE]\n\n"
            yield ": X-DRAIN-Cost: 10\n"

        self.mock_orchestrator.stream = events

        response = self._post(body={**BODY, "stream": True})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        self.assertEqual(response.headers["X-DRAIN-Channel"], CHANNEL_ID)
        self.assertIn("data: [DONE]", response.text)
        self.assertTrue(response.text.endswith(": X-DRAIN-Cost: 10\n"))

    def test_streaming_upstream_error_is_502(self):
        async def events(paid):
            request = httpx.Request("POST", "http://upstream/v1/chat/completions")
            raise httpx.HTTPStatusError(
                "Server error", request=request, response=httpx.Response(500, request=request)
            )
            yield "unreachable"

        self.mock_orchestrator.stream = events

        response = self._post(body={**BODY, "stream": True})

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["error"]["code"], "upstream_error")

    def test_streaming_connect_error_is_502(self):
        async def events(paid):
            raise httpx.ConnectError("refused")
            yield "unreachable"

        self.mock_orchestrator.stream = events

        response = self._post(body={**BODY, "stream": True})

        self.assertEqual(response.status_code, 502)


if __name__ == "__main__":
    unittest.main()
