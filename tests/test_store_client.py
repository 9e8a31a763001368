"""
Tests for the PostgREST store client, using httpx.MockTransport.
"""
import json
from datetime import timedelta

import httpx
import pytest

from conftest import NOW, make_candidate
from trendfeed.clients.store_client import StoreClient
from trendfeed.cursor import Position
from trendfeed.errors import CollectorFetchFailed
from trendfeed.schemas import Population


async def started(handler) -> StoreClient:
    client = StoreClient(transport=httpx.MockTransport(handler))
    await client.start()
    return client


class TestFetchCandidates:

    @pytest.mark.asyncio
    async def test_sends_keyset_position_and_parses_rows(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[
                {"id": "p1", "author_id": "a1", "created_at": "2025-06-01T09:00:00+00:00", "likes_count": 3},
                {"id": "p2", "author_id": "a2"},  # no timestamp: skipped
                "junk",
            ])

        client = await started(handler)
        position = Position.of(make_candidate("p0", Population.TRENDING, hours_ago=1))
        try:
            candidates = await client.fetch_candidates("u1", Population.TRENDING, position, 21)
        finally:
            await client.stop()

        assert seen["path"] == "/rest/v1/rpc/get_feed_candidates"
        assert seen["body"] == {
            "p_user_id": "u1",
            "p_population": "trending",
            "p_cursor_ts": (NOW - timedelta(hours=1)).isoformat(),
            "p_cursor_id": "p0",
            "p_limit": 21,
        }
        assert [c.id for c in candidates] == ["p1"]
        assert candidates[0].population is Population.TRENDING
        assert candidates[0].engagement_counts.likes == 3

    @pytest.mark.asyncio
    async def test_first_page_has_null_cursor(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=[])

        client = await started(handler)
        assert await client.fetch_candidates("u1", Population.FRIEND, None, 5) == []
        await client.stop()
        assert bodies[0]["p_cursor_ts"] is None
        assert bodies[0]["p_cursor_id"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(500, json={"message": "boom"}),
        httpx.Response(200, content=b"<html>"),
        httpx.Response(200, json={"rows": []}),
    ])
    async def test_store_errors_become_fetch_failures(self, response):
        client = await started(lambda request: response)
        with pytest.raises(CollectorFetchFailed) as info:
            await client.fetch_candidates("u1", Population.COMPETITION, None, 5)
        await client.stop()
        assert info.value.population is Population.COMPETITION

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = await started(handler)
        with pytest.raises(CollectorFetchFailed):
            await client.fetch_candidates("u1", Population.FRIEND, None, 5)
        await client.stop()


class TestTrendingQueries:

    @pytest.mark.asyncio
    async def test_fetch_engagements_reads_all_tables(self):
        rows = {
            "/rest/v1/likes": [{"created_at": "2025-06-01T10:00:00+00:00", "user_id": "a"}],
            "/rest/v1/comments": [{"created_at": "2025-06-01T09:00:00+00:00", "user_id": "b", "content": "x" * 40}],
            "/rest/v1/shares": [],
            "/rest/v1/post_saves": [{"created_at": "2025-06-01T11:00:00+00:00", "user_id": "c"}],
        }

        def handler(request):
            assert request.url.params["post_id"] == "eq.p1"
            return httpx.Response(200, json=rows[request.url.path])

        client = await started(handler)
        details = await client.fetch_engagements("p1", NOW - timedelta(hours=24))
        await client.stop()

        assert sorted(d.type for d in details) == ["comment", "like", "save"]
        comment = next(d for d in details if d.type == "comment")
        assert comment.comment_length == 40

    @pytest.mark.asyncio
    async def test_update_trending_score(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["id"] = request.url.params["id"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        client = await started(handler)
        await client.update_trending_score("p1", 42.5, NOW)
        await client.stop()

        assert seen["method"] == "PATCH"
        assert seen["id"] == "eq.p1"
        assert seen["body"]["trending_score"] == 42.5
