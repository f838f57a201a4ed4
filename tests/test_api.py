import json

import httpx
import pytest

from streamwithai.core.errors import InvalidResponseShape, RequestTimeout, TransportFailure
from streamwithai.services.api import AIRelayClient


def make_client(settings, handler) -> AIRelayClient:
    transport = httpx.MockTransport(handler)
    return AIRelayClient(settings, client=httpx.AsyncClient(transport=transport))


def test_build_params_skips_empty_values() -> None:
    assert AIRelayClient.build_params("salut") == {"message": "salut"}
    params = AIRelayClient.build_params(
        "salut",
        image_url="https://tmpfiles.org/dl/1/a.jpg",
        system="Sois bref",
        history=[{"role": "user", "content": "éa"}],
    )
    assert params["image_url"] == "https://tmpfiles.org/dl/1/a.jpg"
    assert params["system"] == "Sois bref"
    assert json.loads(params["history"]) == [{"role": "user", "content": "éa"}]
    assert "é" in params["history"]


@pytest.mark.asyncio
async def test_query_sends_get_with_params(settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "success", "message": "ok"})

    client = make_client(settings, handler)
    body = await client.query("Bonjour", system="Réponds")
    await client.aclose()

    assert body == {"status": "success", "message": "ok"}
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/api/proxy"
    assert request.url.params["message"] == "Bonjour"
    assert request.url.params["system"] == "Réponds"
    assert "image_url" not in request.url.params


@pytest.mark.asyncio
async def test_error_status_with_json_body_is_returned(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"status": "error", "message": "upstream down"})

    client = make_client(settings, handler)
    assert (await client.query("x"))["message"] == "upstream down"


@pytest.mark.asyncio
async def test_non_json_bodies(settings) -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad gateway")

    def html(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html></html>")

    with pytest.raises(TransportFailure):
        await make_client(settings, broken).query("x")
    with pytest.raises(InvalidResponseShape):
        await make_client(settings, html).query("x")


@pytest.mark.asyncio
async def test_network_errors_are_mapped(settings) -> None:
    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransportFailure):
        await make_client(settings, refused).query("x")
    with pytest.raises(RequestTimeout):
        await make_client(settings, slow).query("x")
