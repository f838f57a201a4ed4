import httpx
import pytest

from fakes import FakeClock
from streamwithai.core.errors import InvalidResponseShape, TransportFailure
from streamwithai.services.schemas import CapturedImage
from streamwithai.services.uploader import ImageRelayClient, cache_key, direct_url, parse_upload_response

PAGE_URL = "https://tmpfiles.org/123/screenshot.jpg"
DIRECT_URL = "https://tmpfiles.org/dl/123/screenshot.jpg"


def image(data: bytes = b"\xff\xd8jpeg") -> CapturedImage:
    return CapturedImage(data=data, width=800, height=450)


class Host:
    """Scripted image host: a list of status codes, 200 meaning success."""

    def __init__(self, *statuses: int) -> None:
        self.statuses = list(statuses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        if status != 200:
            return httpx.Response(status, text="nope")
        return httpx.Response(200, json={"status": "success", "data": {"url": PAGE_URL}})


def make_client(settings, host: Host, clock: FakeClock | None = None, **overrides) -> ImageRelayClient:
    if overrides:
        settings = settings.model_copy(update=overrides)
    return ImageRelayClient(
        settings,
        client=httpx.AsyncClient(transport=httpx.MockTransport(host)),
        clock=clock or FakeClock(),
    )


def test_direct_url_inserts_dl_segment() -> None:
    assert direct_url(PAGE_URL) == DIRECT_URL
    with pytest.raises(InvalidResponseShape):
        direct_url("https://tmpfiles.org/123")
    with pytest.raises(InvalidResponseShape):
        direct_url("tmpfiles.org/a/b/c/d")


def test_parse_upload_response_validates_shape() -> None:
    assert parse_upload_response({"status": "success", "data": {"url": PAGE_URL}}) == DIRECT_URL
    for bad in (None, {"status": "error"}, {"status": "success", "data": {}}, {"status": "success", "data": "x"}):
        with pytest.raises(InvalidResponseShape):
            parse_upload_response(bad)


def test_cache_key_depends_on_content() -> None:
    assert cache_key(b"abc") == cache_key(b"abc")
    assert cache_key(b"abc") != cache_key(b"abd")
    assert cache_key(b"abc").startswith("3_")


@pytest.mark.asyncio
async def test_upload_posts_multipart_and_returns_direct_url(settings) -> None:
    host = Host()
    client = make_client(settings, host)
    assert await client.upload(image()) == DIRECT_URL

    request = host.requests[0]
    assert request.method == "POST"
    assert b'name="file"' in request.content
    assert b'filename="screenshot.jpg"' in request.content


@pytest.mark.asyncio
async def test_same_image_is_served_from_cache(settings) -> None:
    host = Host()
    client = make_client(settings, host)
    await client.upload(image())
    await client.upload(image())
    assert len(host.requests) == 1
    stats = client.cache_stats()
    assert (stats["hits"], stats["misses"], stats["size"]) == (1, 1, 1)


@pytest.mark.asyncio
async def test_cache_entries_expire(settings) -> None:
    host = Host()
    clock = FakeClock()
    client = make_client(settings, host, clock, upload_cache_ttl=300.0)
    await client.upload(image())
    clock.now += 301
    await client.upload(image())
    assert len(host.requests) == 2


@pytest.mark.asyncio
async def test_cache_evicts_oldest_entries(settings) -> None:
    host = Host()
    client = make_client(settings, host, upload_cache_size=2)
    for payload in (b"a", b"b", b"c"):
        await client.upload(image(payload))
    assert client.cache_stats()["size"] == 2

    await client.upload(image(b"a"))
    assert len(host.requests) == 4
    await client.upload(image(b"c"))
    assert len(host.requests) == 4


@pytest.mark.asyncio
async def test_upload_retries_then_succeeds(settings) -> None:
    host = Host(503, 500)
    client = make_client(settings, host)
    assert await client.upload(image()) == DIRECT_URL
    assert len(host.requests) == 3


@pytest.mark.asyncio
async def test_upload_gives_up_with_last_error(settings) -> None:
    host = Host(500, 500, 502)
    client = make_client(settings, host)
    with pytest.raises(TransportFailure, match="status: 502"):
        await client.upload(image())
    assert len(host.requests) == 3
    assert client.cache_stats()["size"] == 0


@pytest.mark.asyncio
async def test_clear_cache_by_age(settings) -> None:
    clock = FakeClock()
    client = make_client(settings, Host(), clock)
    await client.upload(image(b"old"))
    clock.now += 100
    await client.upload(image(b"new"))

    assert client.cache_stats()["oldest_age"] == 100
    assert client.clear_cache(max_age=50) == 1
    assert client.clear_cache() == 1
    assert client.cache_stats()["oldest_age"] is None
