import asyncio

import httpx
import pytest

from politecrawl.models import DENIED_REASON
from politecrawl.utils.robots import OriginPolicyCache
from politecrawl.utils.robots_parser import SOURCE_DEGRADED, SOURCE_NOT_FOUND, SOURCE_PARSED


@pytest.mark.anyio
async def test_robots_disallow_rules_enforced(mock_client_factory, mock_response_factory):
    robots_txt = """User-agent: *\nDisallow: /private"""
    client = mock_client_factory([mock_response_factory(200, robots_txt)])
    cache = OriginPolicyCache(client, "TestBot")

    assert not await cache.is_allowed("https://example.com/private/secret")
    assert await cache.is_allowed("https://example.com/public")
    assert client.requested == ["https://example.com/robots.txt"]


@pytest.mark.anyio
async def test_policy_for_fetches_once_per_origin(mock_client_factory, mock_response_factory):
    client = mock_client_factory([mock_response_factory(200, "User-agent: *\nDisallow: /x")])
    cache = OriginPolicyCache(client, "TestBot")

    first = await cache.policy_for("https://example.com")
    second = await cache.policy_for("https://example.com")

    assert first is second
    assert client.calls == 1


@pytest.mark.anyio
async def test_404_allows_all_paths(mock_client_factory, mock_response_factory):
    client = mock_client_factory([mock_response_factory(404, "")])
    cache = OriginPolicyCache(client, "TestBot")

    policy = await cache.policy_for("https://example.com")

    assert policy.source == SOURCE_NOT_FOUND
    assert await cache.is_allowed("https://example.com/page1")
    assert await cache.is_allowed("https://example.com/admin/anything")
    assert client.calls == 1


@pytest.mark.anyio
@pytest.mark.parametrize(
    "response",
    [
        httpx.ConnectTimeout("timed out"),
        httpx.ConnectError("connection refused"),
    ],
)
async def test_network_errors_degrade_to_allow_all(mock_client_factory, response):
    client = mock_client_factory([response])
    cache = OriginPolicyCache(client, "TestBot")

    policy = await cache.policy_for("https://down.example")

    assert policy.source == SOURCE_DEGRADED
    assert policy.is_empty
    assert await cache.is_allowed("https://down.example/anything")


@pytest.mark.anyio
async def test_server_error_defaults_to_allow(mock_client_factory, mock_response_factory):
    client = mock_client_factory([mock_response_factory(503, "User-agent: *\nDisallow: /")])
    cache = OriginPolicyCache(client, "TestBot")

    assert await cache.is_allowed("https://example.com/page1")
    assert (await cache.policy_for("https://example.com")).source == SOURCE_DEGRADED


@pytest.mark.anyio
async def test_unparseable_body_degrades_to_allow_all(mock_client_factory):
    class BrokenBody:
        status_code = 200

        @property
        def text(self):
            raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    cache = OriginPolicyCache(mock_client_factory([BrokenBody()]), "TestBot")

    assert await cache.is_allowed("https://example.com/anything")


@pytest.mark.anyio
async def test_check_url_reports_fixed_reason(mock_client_factory, mock_response_factory):
    client = mock_client_factory([mock_response_factory(200, "User-agent: *\nDisallow: /private")])
    cache = OriginPolicyCache(client, "TestBot")

    denied = await cache.check_url("https://example.com/private/a")
    allowed = await cache.check_url("https://example.com/open")

    assert denied.allowed is False
    assert denied.reason == DENIED_REASON == "Disallowed by policy"
    assert allowed.allowed is True
    assert allowed.reason == ""


@pytest.mark.anyio
async def test_crawl_delay_and_cache_stats(mock_client_factory, mock_response_factory):
    client = mock_client_factory(
        [mock_response_factory(200, "User-agent: *\nCrawl-delay: 1.5\n")]
    )
    cache = OriginPolicyCache(client, "TestBot")

    assert await cache.crawl_delay_ms("https://example.com") == 1500
    assert cache.cache_stats() == {"cached_origins": 1, "origins": ["https://example.com"]}

    cache.clear_cache()

    assert len(cache) == 0
    await cache.policy_for("https://example.com")
    assert client.calls == 2


@pytest.mark.anyio
async def test_concurrent_misses_share_one_fetch(mock_response_factory):
    class SlowClient:
        def __init__(self):
            self.calls = 0

        async def get(self, *_args, **_kwargs):
            self.calls += 1
            await asyncio.sleep(0.05)
            return mock_response_factory(200, "User-agent: *\nDisallow: /x")

    client = SlowClient()
    cache = OriginPolicyCache(client, "TestBot")

    policies = await asyncio.gather(*(cache.policy_for("https://example.com") for _ in range(5)))

    assert client.calls == 1
    assert all(p is policies[0] for p in policies)
    assert policies[0].source == SOURCE_PARSED


@pytest.mark.anyio
async def test_works_with_httpx_mock_transport():
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), request.headers.get("User-Agent")))
        return httpx.Response(200, text="User-agent: testbot\nDisallow: /no\n")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        cache = OriginPolicyCache(client, "TestBot/1.0")
        assert not await cache.is_allowed("https://example.com/no/way")
        assert await cache.is_allowed("https://example.com/yes")

    assert seen == [("https://example.com/robots.txt", "TestBot/1.0")]


@pytest.mark.anyio
async def test_path_params_are_matched_against_rules(mock_client_factory, mock_response_factory):
    client = mock_client_factory([mock_response_factory(200, "User-agent: *\nDisallow: /a;jsessionid\n")])
    cache = OriginPolicyCache(client, "TestBot")

    assert not await cache.is_allowed("https://example.com/a;jsessionid=1")
    assert await cache.is_allowed("https://example.com/a")
