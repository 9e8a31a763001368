"""
Feed endpoints:
  GET  /feed                 — one ranked, cursor-paginated feed page
  POST /feed/engagements     — engagement notification (cache invalidation)
  POST /feed/refresh-scores  — drop every cached page after a score refresh

AllBucketsFailed / timeout → 503 with a hint to serve the public feed;
InvalidCursor → 400, the client restarts from a null cursor.
"""
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from trendfeed.analytics import feed_analytics
from trendfeed.errors import AllBucketsFailed, FeedTimeout, InvalidCursor
from trendfeed.feed_service import FeedService
from trendfeed.schemas import EngagementEvent, FeedResponse

logger = logging.getLogger(__name__)
router = APIRouter()


def get_feed_service(request: Request) -> FeedService:
    return request.app.state.feed_service


@router.get("/", response_model=FeedResponse)
async def get_feed(
    user_id: str = Query(..., description="ID of the requesting user"),
    cursor: Optional[str] = Query(None, description="Cursor from the previous page"),
    limit: Optional[int] = Query(None, ge=1, le=100),
    country: Optional[str] = Query(None, description="Requester country, for local boosts"),
    region: Optional[str] = Query(None, description="Requester region, for local boosts"),
    service: FeedService = Depends(get_feed_service),
):
    start_time = time.time()
    try:
        page = await service.get_feed_page(
            user_id, cursor, limit, country=country, region=region
        )
    except InvalidCursor as exc:
        raise HTTPException(status_code=400, detail=f"Invalid cursor: {exc}")
    except AllBucketsFailed as exc:
        logger.error("Feed unavailable for %s: %s", user_id, exc)
        return JSONResponse(
            status_code=503,
            content={
                "detail": "timeout" if isinstance(exc, FeedTimeout) else "all buckets failed",
                "fallback": "public",
            },
        )

    return FeedResponse(
        user_id=user_id,
        posts=page.entries,
        cursor=page.cursor,
        has_more=page.has_more,
        candidates=page.candidates,
        failed_buckets=page.failed_buckets,
        analytics=feed_analytics(page.entries),
        latency_ms=round((time.time() - start_time) * 1000, 2),
    )


@router.post("/engagements", status_code=204)
async def record_engagement(
    event: EngagementEvent,
    service: FeedService = Depends(get_feed_service),
):
    """
    Notify the feed that a user liked, unliked, commented or voted.
    Only the acting user's cached pages are dropped.
    """
    service.record_engagement(event)


@router.post("/refresh-scores", status_code=204)
async def refresh_scores(service: FeedService = Depends(get_feed_service)):
    service.refresh_scores()
