"""Tests for HTTP-based adapters."""

import asyncio
import json

import httpx
import pytest

from nutrilog.adapters.off_client import HttpxOpenFoodFactsClient
from nutrilog.adapters.openai_estimate_client import OpenAIEstimateClient


class _FakeResponses:
    def __init__(self, output_text: str) -> None:
        self.output_text = output_text
        self.last_payload: dict[str, object] | None = None

    async def create(self, **kwargs):  # type: ignore[no-untyped-def]
        self.last_payload = kwargs
        return type("Resp", (), {"output_text": self.output_text})()


class _FakeOpenAI:
    def __init__(self, output_text: str) -> None:
        self.responses = _FakeResponses(output_text)


def test_openai_estimate_client_parses_output() -> None:
    fake = _FakeOpenAI(json.dumps({"calories": 52, "confidence": 90}))
    client = OpenAIEstimateClient(client=fake)

    result = asyncio.run(
        client.complete(
            model="gpt-5.2",
            reasoning_effort="low",
            store=False,
            schema={"type": "object"},
            prompt="Estimate apple",
        )
    )

    assert result == {"calories": 52, "confidence": 90}
    payload = fake.responses.last_payload
    assert payload is not None
    assert payload["text"]["format"]["name"] == "nutrition_estimate"
    assert payload["reasoning"] == {"effort": "low"}
    assert payload["store"] is False


def test_openai_estimate_client_rejects_empty_output() -> None:
    client = OpenAIEstimateClient(client=_FakeOpenAI(""))

    with pytest.raises(RuntimeError):
        asyncio.run(
            client.complete(
                model="gpt-5.2",
                reasoning_effort=None,
                store=False,
                schema={"type": "object"},
                prompt="Estimate apple",
            )
        )


def test_off_client_get_product() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v2/product/5449000000996.json":
            return httpx.Response(200, json={"status": 1, "product": {"code": "1"}})
        return httpx.Response(404, json={"status": 0})

    transport = httpx.MockTransport(handler)
    async_client = httpx.AsyncClient(transport=transport)
    client = HttpxOpenFoodFactsClient(
        base_url="https://off.test", http_client=async_client
    )

    found = asyncio.run(client.get_product("5449000000996"))
    missing = asyncio.run(client.get_product("000"))

    assert found["status"] == 1
    assert missing == {"status": 0}


def test_off_client_search_products() -> None:
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"products": []})

    transport = httpx.MockTransport(handler)
    async_client = httpx.AsyncClient(transport=transport)
    client = HttpxOpenFoodFactsClient(
        base_url="https://off.test", http_client=async_client
    )

    result = asyncio.run(client.search_products("greek yogurt", page_size=5))

    assert result == {"products": []}
    assert seen[0].path == "/cgi/search.pl"
    assert seen[0].params["search_terms"] == "greek yogurt"
    assert seen[0].params["page_size"] == "5"
    assert seen[0].params["json"] == "1"


def test_off_client_raises_on_server_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    transport = httpx.MockTransport(handler)
    async_client = httpx.AsyncClient(transport=transport)
    client = HttpxOpenFoodFactsClient(
        base_url="https://off.test", http_client=async_client
    )

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.search_products("cola"))
