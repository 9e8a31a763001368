"""
Trending precompute job.

For every recent public post:
  1. Fetch its likes, comments, shares and saves inside the window.
  2. Score it with the same formula the feed uses on read
     (per-comment length weights, velocity from the oldest engagement).
  3. Write trending_score back to the post.

Posts above the trending threshold are reported, and a daily summary row is
upserted. A failure on one post is recorded and the run continues.

Run from the API (POST /trending/recalculate) or as a one-off:
  python -m trendfeed.trending_job --hours 24 --batch-size 100
"""
import argparse
import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from trendfeed.clients.store_client import StoreClient
from trendfeed.config import settings
from trendfeed.schemas import TrendingPost, TrendingRunResult
from trendfeed.scoring import (
    ScoringWeights,
    engagement_rate,
    summarize_events,
    trending_score,
)
from trendfeed.telemetry import TRENDING_POSTS_UPDATED_TOTAL

logger = logging.getLogger(__name__)


class TrendingJob:
    def __init__(
        self,
        store: StoreClient,
        weights: Optional[ScoringWeights] = None,
        threshold: float = 10.0,
    ) -> None:
        self.store = store
        self.weights = weights or ScoringWeights()
        self.threshold = threshold

    async def _process_post(
        self,
        post: dict,
        since: datetime,
        now: datetime,
        result: TrendingRunResult,
    ) -> None:
        details = await self.store.fetch_engagements(post["id"], since)
        summary = summarize_events(details, self.weights)
        raw, _ = trending_score(summary, datetime.fromisoformat(post["created_at"]), now, self.weights)
        score = round(raw, 2)

        await self.store.update_trending_score(post["id"], score, now)
        result.posts_updated += 1

        if score > self.threshold:
            result.trending_posts.append(
                TrendingPost(
                    post_id=post["id"],
                    author_id=post.get("author_id") or "",
                    trending_score=score,
                    total_engagement=summary.weighted_total,
                    engagement_rate=engagement_rate(summary, now),
                )
            )

    async def run(
        self,
        hours: Optional[int] = None,
        batch_size: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TrendingRunResult:
        hours = hours or settings.trending_window_hours
        batch_size = batch_size or settings.trending_batch_size
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=hours)
        t0 = time.perf_counter()

        result = TrendingRunResult()
        posts = await self.store.fetch_recent_posts(since, batch_size)
        result.total_posts_processed = len(posts)
        if not posts:
            logger.info("No posts to process in the last %dh", hours)
            return result

        for post in posts:
            try:
                await self._process_post(post, since, now, result)
            except (httpx.HTTPError, KeyError, ValueError) as exc:
                logger.error("Error processing post %s: %s", post.get("id"), exc)
                result.errors.append({"post_id": post.get("id"), "error": str(exc)})

        TRENDING_POSTS_UPDATED_TOTAL.inc(result.posts_updated)
        result.trending_posts.sort(key=lambda p: p.trending_score, reverse=True)
        result.processing_time_ms = round((time.perf_counter() - t0) * 1000, 2)

        try:
            await self.store.upsert_trending_summary(self._summary(result, now, hours, batch_size))
        except httpx.HTTPError as exc:
            logger.error("Could not write trending summary: %s", exc)

        logger.info(
            "Trending calculation completed: %d processed, %d updated, %d trending, %d errors",
            result.total_posts_processed,
            result.posts_updated,
            len(result.trending_posts),
            len(result.errors),
        )
        return result

    @staticmethod
    def _summary(result: TrendingRunResult, now: datetime, hours: int, batch_size: int) -> dict:
        trending = result.trending_posts
        return {
            "date": now.date().isoformat(),
            "total_posts_processed": result.total_posts_processed,
            "posts_updated": result.posts_updated,
            "trending_posts_count": len(trending),
            "processing_time_ms": result.processing_time_ms,
            "top_trending_posts": [p.model_dump() for p in trending[:10]],
            "error_count": len(result.errors),
            "metadata": {
                "batch_size": batch_size,
                "processing_window_hours": hours,
                "average_engagement_rate": (
                    sum(p.engagement_rate for p in trending) / len(trending) if trending else 0
                ),
            },
        }


async def main(hours: int, batch_size: int) -> None:
    store = StoreClient()
    await store.start()
    try:
        job = TrendingJob(
            store,
            ScoringWeights.from_settings(settings),
            threshold=settings.trending_threshold,
        )
        result = await job.run(hours=hours, batch_size=batch_size)
        print(result.model_dump_json(indent=2))
    finally:
        await store.stop()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    parser = argparse.ArgumentParser(description="Recompute trending scores for recent posts")
    parser.add_argument("--hours", type=int, default=settings.trending_window_hours)
    parser.add_argument("--batch-size", type=int, default=settings.trending_batch_size)
    args = parser.parse_args()
    asyncio.run(main(args.hours, args.batch_size))
