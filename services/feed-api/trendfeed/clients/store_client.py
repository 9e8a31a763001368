"""
Store client — the app's Supabase project, spoken to over PostgREST.

Read side (feed requests):
  POST /rest/v1/rpc/get_feed_candidates
  Body: { "p_user_id", "p_population", "p_cursor_ts", "p_cursor_id", "p_limit" }
  The RPC applies visibility rules (public / friend / following) and returns
  rows newest first, strictly after the (cursor_ts, cursor_id) keyset position.

Trending job:
  GET   /rest/v1/posts                      recent public posts
  GET   /rest/v1/{likes,comments,shares,post_saves}   engagement events
  PATCH /rest/v1/posts?id=eq.<id>           write trending_score
  POST  /rest/v1/trending_summaries         daily summary (upsert on date)

Any HTTP / connection error raises CollectorFetchFailed (read side) or
httpx.HTTPError (job side) so callers can degrade.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

import httpx

from trendfeed.collector import candidate_from_row
from trendfeed.config import settings
from trendfeed.cursor import Position
from trendfeed.errors import CollectorFetchFailed
from trendfeed.schemas import Candidate, Population, as_utc
from trendfeed.scoring import EngagementDetail

logger = logging.getLogger(__name__)

ENGAGEMENT_TABLES = {
    "like": "likes",
    "comment": "comments",
    "share": "shares",
    "save": "post_saves",
}


class StoreClient:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base_url = settings.store_url.rstrip("/")
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        headers = {}
        if settings.store_service_key:
            headers = {
                "apikey": settings.store_service_key,
                "Authorization": f"Bearer {settings.store_service_key}",
            }
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=settings.store_timeout,
            transport=self._transport,
        )

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("Store client not started — call start() at startup")
        return self._http

    # ─────────────────────── Feed candidates ──────────────────────────────

    async def fetch_candidates(
        self,
        user_id: str,
        population: Population,
        position: Optional[Position],
        limit: int,
    ) -> list[Candidate]:
        payload = {
            "p_user_id": user_id,
            "p_population": population.value,
            "p_cursor_ts": as_utc(position.created_at).isoformat() if position else None,
            "p_cursor_id": position.id if position else None,
            "p_limit": limit,
        }
        try:
            resp = await self._client().post(
                f"/rest/v1/rpc/{settings.store_candidates_rpc}", json=payload
            )
            resp.raise_for_status()
            rows = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CollectorFetchFailed(population, str(exc) or type(exc).__name__) from exc

        if not isinstance(rows, list):
            raise CollectorFetchFailed(population, "unexpected response shape")

        candidates = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            candidate = candidate_from_row(row, population)
            if candidate is None:
                logger.warning("Skipping unusable %s row: %s", population, row.get("id"))
                continue
            candidates.append(candidate)
        return candidates

    # ─────────────────────── Trending job ─────────────────────────────────

    async def fetch_recent_posts(self, since: datetime, limit: int) -> list[dict]:
        params = {
            "select": "id,author_id,content,created_at,likes_count,comments_count,shares_count",
            "created_at": f"gte.{as_utc(since).isoformat()}",
            "visibility": "eq.public",
            "is_archived": "not.is.true",
            "order": "created_at.desc",
            "limit": str(limit),
        }
        resp = await self._client().get("/rest/v1/posts", params=params)
        resp.raise_for_status()
        return resp.json()

    async def _fetch_events(self, kind: str, post_id: str, since: datetime) -> list[EngagementDetail]:
        select = "created_at,user_id,content" if kind == "comment" else "created_at,user_id"
        resp = await self._client().get(
            f"/rest/v1/{ENGAGEMENT_TABLES[kind]}",
            params={
                "select": select,
                "post_id": f"eq.{post_id}",
                "created_at": f"gte.{as_utc(since).isoformat()}",
            },
        )
        resp.raise_for_status()
        return [
            EngagementDetail(
                type=kind,
                created_at=as_utc(datetime.fromisoformat(row["created_at"])),
                user_id=row.get("user_id"),
                comment_length=len(row.get("content") or "") if kind == "comment" else None,
            )
            for row in resp.json()
        ]

    async def fetch_engagements(self, post_id: str, since: datetime) -> list[EngagementDetail]:
        """All likes, comments, shares and saves of a post since `since`."""
        batches = await asyncio.gather(
            *[self._fetch_events(kind, post_id, since) for kind in ENGAGEMENT_TABLES]
        )
        return [d for batch in batches for d in batch]

    async def update_trending_score(self, post_id: str, score: float, now: datetime) -> None:
        resp = await self._client().patch(
            "/rest/v1/posts",
            params={"id": f"eq.{post_id}"},
            json={"trending_score": score, "updated_at": as_utc(now).isoformat()},
        )
        resp.raise_for_status()

    async def upsert_trending_summary(self, summary: dict) -> None:
        resp = await self._client().post(
            "/rest/v1/trending_summaries",
            params={"on_conflict": "date"},
            headers={"Prefer": "resolution=merge-duplicates"},
            json=summary,
        )
        resp.raise_for_status()
