"""
Candidate collector — Stage 1 of the feed pipeline.

Fans out one fetch per bucket (friend, trending, competition), concurrently,
and fans back in before composition. Every bucket ends up either with a list
of candidates (possibly empty: "no content") or with an explicit failure
("fetch failed"), so the composer can give a failed bucket's slots away.

Transient errors are retried once after a short backoff. Buckets still
pending at the deadline are cancelled and reported as failed.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

from pydantic import ValidationError

from trendfeed.cursor import Position
from trendfeed.errors import CollectorFetchFailed, FeedTimeout
from trendfeed.schemas import POPULATION_ORDER, Candidate, Population
from trendfeed.telemetry import COLLECTOR_FAILURES_TOTAL, FEED_CANDIDATES_TOTAL

logger = logging.getLogger(__name__)

MUTUAL_FRIEND_STRENGTH = 1.5
FOLLOWING_STRENGTH = 1.0


class CandidateSource(Protocol):
    async def fetch_candidates(
        self,
        user_id: str,
        population: Population,
        position: Optional[Position],
        limit: int,
    ) -> list[Candidate]:
        """
        Return up to `limit` candidates of `population` visible to `user_id`,
        strictly after `position` in (created_at desc, id asc) order.
        Raise CollectorFetchFailed when the store cannot be reached.
        """
        ...


@dataclass
class CollectedBuckets:
    candidates: dict[Population, list[Candidate]] = field(default_factory=dict)
    failures: dict[Population, str] = field(default_factory=dict)

    @property
    def healthy(self) -> list[Population]:
        return [p for p in POPULATION_ORDER if p in self.candidates]


# ─────────────────────────── Row validation ──────────────────────────────

def _count(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


def _strength(row: Mapping[str, Any]) -> Optional[float]:
    boost = row.get("friendship_boost")
    if boost is not None:
        try:
            return float(boost)
        except (TypeError, ValueError):
            pass
    relationship = row.get("relationship_type") or row.get("relationship_status")
    if relationship in ("mutual_friend", "friend"):
        return MUTUAL_FRIEND_STRENGTH
    if relationship == "following":
        return FOLLOWING_STRENGTH
    return None


def candidate_from_row(row: Mapping[str, Any], population: Population) -> Optional[Candidate]:
    """
    Convert an untyped store row into a Candidate.

    Accepts both `id`/`post_id` and `author_id`/`user_id` spellings. Missing
    or garbled counters become 0; rows without an id or timestamp are
    unusable and return None.
    """
    post_id = row.get("id") or row.get("post_id")
    author_id = row.get("author_id") or row.get("user_id")
    if not post_id or not row.get("created_at"):
        return None

    comments = row.get("comment_lengths") or []
    try:
        return Candidate(
            id=str(post_id),
            author_id=str(author_id or ""),
            created_at=row["created_at"],
            population=population,
            engagement_counts={
                "likes": _count(row.get("likes_count")),
                "comments": _count(row.get("comments_count")),
                "shares": _count(row.get("shares_count")),
                "saves": _count(row.get("saves_count")),
            },
            relationship_strength=_strength(row) if population is Population.FRIEND else None,
            author_country=row.get("author_country") or row.get("country"),
            author_region=row.get("author_region") or row.get("region"),
            comment_lengths=[_count(n) for n in comments] if isinstance(comments, list) else [],
            first_engagement_at=row.get("first_engagement_at"),
            competition_id=str(row["competition_id"]) if row.get("competition_id") else None,
        )
    except ValidationError as exc:
        logger.warning("Dropping invalid %s row %s: %s", population, post_id, exc.errors()[:1])
        return None


# ─────────────────────────── Collector ───────────────────────────────────

class CandidateCollector:
    def __init__(self, source: CandidateSource, retry_backoff: float = 0.2) -> None:
        self.source = source
        self.retry_backoff = retry_backoff

    async def _fetch_bucket(
        self,
        user_id: str,
        population: Population,
        position: Optional[Position],
        limit: int,
    ) -> list[Candidate]:
        try:
            return await self.source.fetch_candidates(user_id, population, position, limit)
        except CollectorFetchFailed as exc:
            logger.warning("Fetch of %s bucket failed (%s) — retrying once", population, exc.reason)
        await asyncio.sleep(self.retry_backoff)
        return await self.source.fetch_candidates(user_id, population, position, limit)

    async def collect(
        self,
        user_id: str,
        positions: Mapping[Population, Position],
        limits: Mapping[Population, int],
        timeout: Optional[float] = None,
    ) -> CollectedBuckets:
        """
        Fetch all buckets concurrently.

        Raises FeedTimeout if the deadline passes before any bucket returns.
        """
        tasks = {
            asyncio.create_task(
                self._fetch_bucket(user_id, p, positions.get(p), limits[p]), name=f"fetch-{p}"
            ): p
            for p in POPULATION_ORDER
        }
        done, pending = await asyncio.wait(tasks, timeout=timeout)

        result = CollectedBuckets()
        for task in pending:
            task.cancel()
            result.failures[tasks[task]] = "timeout"
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            population = tasks[task]
            exc = task.exception()
            if exc is None:
                result.candidates[population] = task.result()
            elif isinstance(exc, CollectorFetchFailed):
                result.failures[population] = exc.reason
            else:
                raise exc

        for population, reason in result.failures.items():
            COLLECTOR_FAILURES_TOTAL.labels(population=population.value).inc()
            logger.warning("Bucket %s unavailable for user %s: %s", population, user_id, reason)
        for population, items in result.candidates.items():
            FEED_CANDIDATES_TOTAL.labels(population=population.value).inc(len(items))

        if not done and pending:
            raise FeedTimeout(result.failures)
        return result
