"""
Trending recalculation — POST /trending/recalculate

Runs the precompute job in-request; intended for a scheduler (cron) or an
admin, not for clients.
"""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request

from trendfeed.schemas import TrendingRunRequest, TrendingRunResult
from trendfeed.trending_job import TrendingJob

logger = logging.getLogger(__name__)
router = APIRouter()


def get_trending_job(request: Request) -> TrendingJob:
    return request.app.state.trending_job


@router.post("/recalculate", response_model=TrendingRunResult)
async def recalculate(
    body: Optional[TrendingRunRequest] = None,
    job: TrendingJob = Depends(get_trending_job),
):
    body = body or TrendingRunRequest()
    try:
        return await job.run(hours=body.hours, batch_size=body.batch_size)
    except httpx.HTTPError as exc:
        logger.error("Trending recalculation failed: %s", exc)
        raise HTTPException(status_code=502, detail=f"Store unavailable: {exc}")
