"""Tests for batched oEmbed lookups."""

import asyncio
from unittest.mock import AsyncMock, call

import httpx

from sound_tracker import oembed
from sound_tracker.config import Settings
from sound_tracker.oembed import fetch_oembed, fetch_oembed_batch


def embed_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"html": f"<blockquote>{request.url.params['url']}</blockquote>"})


class TestFetchOembed:
    async def test_returns_html(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(embed_response)) as client:
            html = await fetch_oembed(client, "https://v/1", retry_delay=0)
        assert html == "<blockquote>https://v/1</blockquote>"

    async def test_retries_after_rate_limit(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(429)
            return embed_response(request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            html = await fetch_oembed(client, "https://v/1", max_retries=2, retry_delay=0)

        assert html is not None
        assert len(attempts) == 3

    async def test_gives_up_after_retries(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(429)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            html = await fetch_oembed(client, "https://v/1", max_retries=2, retry_delay=0)

        assert html is None
        assert len(attempts) == 3

    async def test_retries_transport_errors(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("reset", request=request)
            return embed_response(request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            html = await fetch_oembed(client, "https://v/1", retry_delay=0)

        assert html is not None
        assert len(attempts) == 2

    async def test_client_error_is_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await fetch_oembed(client, "https://v/1", retry_delay=0) is None
        assert len(attempts) == 1


class TestBatch:
    async def test_resolves_all_urls(self):
        urls = [f"https://v/{i}" for i in range(7)]
        config = Settings(oembed_batch_size=3, oembed_batch_pause=0)

        results = await fetch_oembed_batch(urls, config, transport=httpx.MockTransport(embed_response), retry_delay=0)

        assert set(results) == set(urls)

    async def test_failed_urls_are_absent(self):
        def handler(request):
            if request.url.params["url"].endswith("bad"):
                return httpx.Response(500)
            return embed_response(request)

        config = Settings(oembed_batch_pause=0)
        results = await fetch_oembed_batch(
            ["https://v/good", "https://v/bad"], config, transport=httpx.MockTransport(handler), retry_delay=0
        )

        assert list(results) == ["https://v/good"]

    async def test_empty_input(self):
        assert await fetch_oembed_batch([], Settings()) == {}

    async def test_in_flight_requests_never_exceed_batch_size(self):
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            for _ in range(3):
                await asyncio.sleep(0)
            in_flight -= 1
            return embed_response(request)

        urls = [f"https://v/{i}" for i in range(7)]
        config = Settings(oembed_batch_size=3, oembed_batch_pause=0)

        results = await fetch_oembed_batch(urls, config, transport=httpx.MockTransport(handler), retry_delay=0)

        assert len(results) == 7
        assert peak == 3

    async def test_pauses_between_batches_only(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(oembed.asyncio, "sleep", sleep)
        urls = [f"https://v/{i}" for i in range(7)]
        config = Settings(oembed_batch_size=3, oembed_batch_pause=0.25)

        await fetch_oembed_batch(urls, config, transport=httpx.MockTransport(embed_response), retry_delay=0)

        assert sleep.await_args_list == [call(0.25), call(0.25)]
