"""Unit tests for the HTTP adapters, driven through httpx.MockTransport."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from drain.application.shared.voucher_payloads import VOUCHER_HEADER, parse_voucher_header
from drain.domain.entities import Voucher
from drain.domain.errors import PaymentRejected
from drain.infrastructure.pricing.upstream_pricing import (
    UpstreamPriceList,
    parse_price_list,
)
from drain.infrastructure.provider.provider_client import ProviderClient
from drain.infrastructure.upstream.openai_backend import OpenAICompatibleBackend

CHANNEL_ID = "0x" + "aa" * 32
VOUCHER = Voucher(channel_id=CHANNEL_ID, amount=5_000, nonce=3, signature="0x" + "1b" * 65)


class TestParsePriceList:
    def test_per_million_shape(self) -> None:
        prices = parse_price_list(
            {"models": [{"id": "m1", "input_price": 2.5, "output_price": "10"}]}
        )
        assert len(prices) == 1
        assert prices[0].input_price_per_million == Decimal("2.5")
        assert prices[0].output_price_per_million == Decimal("10")

    def test_per_token_shape(self) -> None:
        prices = parse_price_list(
            {"data": [{"id": "m2", "pricing": {"prompt": "0.000003", "completion": "0.000015"}}]}
        )
        assert prices[0].input_price_per_million == Decimal("3")
        assert prices[0].output_price_per_million == Decimal("15")

    def test_unusable_entries_skipped(self) -> None:
        prices = parse_price_list(
            {
                "models": [
                    {"id": "", "input_price": 1, "output_price": 1},
                    {"id": "neg", "input_price": -1, "output_price": 1},
                    {"id": "nan", "input_price": "abc", "output_price": 1},
                ],
                "data": [{"id": "no-pricing"}],
            }
        )
        assert prices == []


@pytest.mark.asyncio
async def test_upstream_price_list_sends_api_key() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(
            200, json={"models": [{"id": "m", "input_price": 1, "output_price": 2}]}
        )

    source = UpstreamPriceList(
        "https://prices.example/v1/prices", "sk-test", transport=httpx.MockTransport(handler)
    )
    prices = await source.fetch_prices()
    await source.aclose()

    assert seen["auth"] == "Bearer sk-test"
    assert [p.id for p in prices] == ["m"]


class TestOpenAICompatibleBackend:
    @pytest.mark.asyncio
    async def test_complete_reads_usage(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert request.url.path == "/v1/chat/completions"
            assert body["stream"] is False
            return httpx.Response(
                200,
                json={
                    "choices": [{"message": {"content": "hi"}}],
                    "usage": {"prompt_tokens": 12, "completion_tokens": 3},
                },
            )

        backend = OpenAICompatibleBackend(
            "https://api.example/v1", "sk", transport=httpx.MockTransport(handler)
        )
        result = await backend.complete({"model": "gpt-4o", "messages": []})
        await backend.aclose()

        assert result.usage.input_tokens == 12
        assert result.usage.output_tokens == 3

    @pytest.mark.asyncio
    async def test_stream_parses_sse_and_requests_usage(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["stream"] is True
            assert body["stream_options"] == {"include_usage": True}
            chunks = [
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"choices": [{"delta": {"content": "lo"}}]},
                {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 2}},
            ]
            text = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks)
            text += ": keep-alive\n\ndata: [DONE]\n\n"
            return httpx.Response(
                200, text=text, headers={"content-type": "text/event-stream"}
            )

        backend = OpenAICompatibleBackend(
            "https://api.example/v1", transport=httpx.MockTransport(handler)
        )
        chunks = [c async for c in backend.stream({"model": "m", "messages": []})]
        await backend.aclose()

        assert len(chunks) == 3
        assert chunks[-1]["usage"]["completion_tokens"] == 2

    @pytest.mark.asyncio
    async def test_upstream_error_raises(self) -> None:
        backend = OpenAICompatibleBackend(
            "https://api.example/v1",
            transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom")),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await backend.complete({"model": "m", "messages": []})
        await backend.aclose()


class TestProviderClient:
    @pytest.mark.asyncio
    async def test_chat_completion_returns_receipt(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            voucher = parse_voucher_header(request.headers[VOUCHER_HEADER])
            assert voucher == VOUCHER
            return httpx.Response(
                200,
                json={"choices": []},
                headers={
                    "X-DRAIN-Cost": "100",
                    "X-DRAIN-Total": "4000",
                    "X-DRAIN-Remaining": "996000",
                    "X-DRAIN-Channel": CHANNEL_ID,
                },
            )

        async with ProviderClient(
            "http://provider", transport=httpx.MockTransport(handler)
        ) as client:
            response = await client.chat_completion(VOUCHER, {"model": "m", "messages": []})

        assert response.receipt is not None
        assert response.receipt.total == 4_000
        assert response.receipt.channel_id == CHANNEL_ID

    @pytest.mark.asyncio
    async def test_402_raises_payment_rejected(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                402,
                json={"error": {"message": "short", "code": "insufficient_funds"}},
                headers={
                    "X-DRAIN-Error": "insufficient_funds",
                    "X-DRAIN-Required": "300",
                    "X-DRAIN-Provided": "120",
                },
            )

        async with ProviderClient(
            "http://provider", transport=httpx.MockTransport(handler)
        ) as client:
            with pytest.raises(PaymentRejected) as exc_info:
                await client.chat_completion(VOUCHER, {"model": "m", "messages": []})

        assert exc_info.value.error_code == "insufficient_funds"
        assert exc_info.value.required == 300
        assert exc_info.value.provided == 120
        assert exc_info.value.message == "short"

    @pytest.mark.asyncio
    async def test_get_pricing_parses_aliases(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "provider": "0x" + "22" * 20,
                    "chainId": 137,
                    "currency": "USDC",
                    "decimals": 6,
                    "models": {
                        "gpt-4o": {"inputPer1kTokens": "0.0075", "outputPer1kTokens": "0.0225"}
                    },
                },
            )

        async with ProviderClient(
            "http://provider", transport=httpx.MockTransport(handler)
        ) as client:
            pricing = await client.get_pricing()

        assert pricing.chain_id == 137
        assert pricing.models["gpt-4o"].input_per_1k_tokens == "0.0075"
