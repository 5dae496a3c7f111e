"""Tests for the httpx source adapters."""

import httpx
import pytest

from kaspa_curator.config import settings
from kaspa_curator.tools.kaspa_news_adapter import KaspaNewsAdapter
from kaspa_curator.tools.x_adapter import XSearchAdapter


def mock_client(handler, **kwargs):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)


def x_client(handler):
    return mock_client(handler, base_url=XSearchAdapter.BASE_URL)


def x_page(ids, next_token=None):
    payload = {
        "data": [{"id": i, "text": f"tweet {i}", "author_id": "u1", "created_at": "2025-01-02T03:04:05.000Z"} for i in ids],
        "includes": {"users": [{"id": "u1", "username": "kasdev"}]},
        "meta": {},
    }
    if next_token:
        payload["meta"]["next_token"] = next_token
    return payload


class TestKaspaNewsAdapter:

    @pytest.mark.asyncio
    async def test_parses_tweets(self):
        def handler(request):
            return httpx.Response(200, json={"tweets": [
                {"id": "1", "text": "dagknight paper", "url": "https://x.com/a/status/1", "author": {"username": "a"}},
                {"id": "2", "text": "no author", "url": "https://x.com/b/status/2"},
                {"id": "3", "text": ""},
            ]})

        adapter = KaspaNewsAdapter(url="https://kaspa.news/api/kaspa-tweets", client=mock_client(handler))
        posts = await adapter.fetch_posts()

        assert [p.id for p in posts] == ["1", "2"]
        assert posts[0].author_username == "a"
        # falls back to the status url
        assert posts[1].author_username == "b"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        adapter = KaspaNewsAdapter(url="https://kaspa.news/x", client=mock_client(lambda r: httpx.Response(503)))
        with pytest.raises(RuntimeError):
            await adapter.fetch_posts()

    @pytest.mark.asyncio
    async def test_author_map(self):
        def handler(request):
            return httpx.Response(200, json={"tweets": [
                {"id": "1", "text": "t", "url": "u", "author": {"username": "a"}},
                {"id": "2", "text": "t", "url": "u"},
            ]})

        adapter = KaspaNewsAdapter(url="https://kaspa.news/x", client=mock_client(handler))
        assert await adapter.author_map() == {"1": "a"}


class TestXSearchAdapter:

    def test_requires_token(self, monkeypatch):
        monkeypatch.setattr(settings, "X_BEARER_TOKEN", None)
        with pytest.raises(ValueError):
            XSearchAdapter()

    @pytest.mark.asyncio
    async def test_paginates_until_max_results(self):
        seen_tokens = []

        def handler(request):
            token = request.url.params.get("next_token")
            seen_tokens.append(token)
            if token is None:
                return httpx.Response(200, json=x_page(["1", "2"], next_token="p2"))
            return httpx.Response(200, json=x_page(["2", "3", "4"], next_token="p3"))

        adapter = XSearchAdapter(bearer_token="t", query="kaspa", max_results=3, client=x_client(handler))
        posts = await adapter.fetch_posts()

        assert [p.id for p in posts] == ["1", "2", "3"]
        assert seen_tokens == [None, "p2"]
        assert posts[0].url == "https://x.com/kasdev/status/1"
        assert posts[0].author_username == "kasdev"
        assert posts[0].created_at is not None

    @pytest.mark.asyncio
    async def test_stops_without_next_token(self):
        calls = []

        def handler(request):
            calls.append(request)
            assert request.url.params["max_results"] == "10"
            return httpx.Response(200, json=x_page(["1"]))

        adapter = XSearchAdapter(bearer_token="t", max_results=5, client=x_client(handler))
        assert len(await adapter.fetch_posts()) == 1
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_fetch_by_ids_chunks_of_100(self):
        chunks = []

        def handler(request):
            ids = request.url.params["ids"].split(",")
            chunks.append(len(ids))
            return httpx.Response(200, json=x_page(ids))

        adapter = XSearchAdapter(bearer_token="t", client=x_client(handler))
        posts = await adapter.fetch_by_ids([str(i) for i in range(250)])

        assert chunks == [100, 100, 50]
        assert len(posts) == 250

    @pytest.mark.asyncio
    async def test_fetch_by_ids_empty(self):
        adapter = XSearchAdapter(bearer_token="t", client=x_client(lambda r: httpx.Response(500)))
        assert await adapter.fetch_by_ids([]) == []
