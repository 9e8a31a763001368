"""
Feed service — collect → score → compose, with a short-lived page cache.

  Stage 1 │ Candidate Collection
  ────────┼──────────────────────────────────────────────────────────────
          │  friend / trending / competition buckets fetched in parallel,
          │  newest first after the cursor position (one extra item per
          │  bucket as lookahead, plus room for posts already emitted).

  Stage 2 │ Scoring
  ────────┼──────────────────────────────────────────────────────────────
          │  Posts emitted on earlier pages dropped, cross-bucket duplicates
          │  collapsed to the highest-priority bucket, then time-decayed
          │  engagement scores + affinity boost.

  Stage 3 │ Composition & Pagination
  ────────┼──────────────────────────────────────────────────────────────
          │  67 / 23 / 10 slot split, highest-scored picks per bucket,
          │  shortfall redistribution, stable tie-break, cursor update.

Pages computed from every bucket are cached per (user, params) for a few
minutes; a user's engagement drops their cached pages immediately.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from opentelemetry import trace

from trendfeed.cache import FeedPageCache
from trendfeed.collector import CandidateCollector, CandidateSource
from trendfeed.composer import DEFAULT_WEIGHTS, compose_page, deduplicate_buckets
from trendfeed.config import Settings, settings
from trendfeed.cursor import advance_cursor, decode_cursor, encode_cursor
from trendfeed.errors import AllBucketsFailed
from trendfeed.schemas import (
    POPULATION_ORDER,
    EngagementEvent,
    FeedEntry,
    FeedPage,
    Population,
    RequesterContext,
)
from trendfeed.scoring import Scorer, ScoringWeights
from trendfeed.telemetry import FEED_CACHE_REQUESTS_TOTAL, FEED_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class FeedService:
    def __init__(
        self,
        source: CandidateSource,
        cache: Optional[FeedPageCache] = None,
        scorer: Optional[Scorer] = None,
        *,
        page_size: int = 20,
        max_page_size: int = 50,
        weights: Mapping[Population, float] = DEFAULT_WEIGHTS,
        timeout: Optional[float] = 3.0,
        retry_backoff: float = 0.2,
        cursor_max_age: timedelta = timedelta(hours=24),
        carry_limit: int = 100,
    ) -> None:
        self.collector = CandidateCollector(source, retry_backoff=retry_backoff)
        self.cache = cache if cache is not None else FeedPageCache()
        self.scorer = scorer or Scorer()
        self.page_size = page_size
        self.max_page_size = max_page_size
        self.weights = dict(weights)
        self.timeout = timeout
        self.cursor_max_age = cursor_max_age
        self.carry_limit = carry_limit

    @classmethod
    def from_settings(cls, source: CandidateSource, s: Settings = settings) -> "FeedService":
        return cls(
            source,
            cache=FeedPageCache(ttl_seconds=s.feed_cache_ttl, max_entries=s.feed_cache_max_entries),
            scorer=Scorer(ScoringWeights.from_settings(s)),
            page_size=s.feed_page_size,
            max_page_size=s.feed_max_page_size,
            weights={
                Population.FRIEND: s.friend_weight,
                Population.TRENDING: s.trending_weight,
                Population.COMPETITION: s.competition_weight,
            },
            timeout=s.feed_request_timeout,
            retry_backoff=s.collector_retry_backoff,
            cursor_max_age=timedelta(hours=s.cursor_max_age_hours),
            carry_limit=s.cursor_carry_limit,
        )

    async def get_feed_page(
        self,
        user_id: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
        *,
        country: Optional[str] = None,
        region: Optional[str] = None,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> FeedPage:
        """
        Compute one ranked feed page.

        Raises InvalidCursor for a malformed/expired cursor and
        AllBucketsFailed (or FeedTimeout) when no bucket could be fetched.
        """
        start_time = time.perf_counter()
        now = now or datetime.now(timezone.utc)
        page_size = min(max(limit or self.page_size, 1), self.max_page_size)
        state = decode_cursor(cursor, now, self.cursor_max_age)

        key = FeedPageCache.make_key(user_id, cursor, page_size, country, region)
        cached = self.cache.get(key)
        if cached is not None:
            FEED_CACHE_REQUESTS_TOTAL.labels(result="hit").inc()
            return cached
        FEED_CACHE_REQUESTS_TOTAL.labels(result="miss").inc()
        generation = self.cache.generation(user_id)

        with tracer.start_as_current_span("get_feed_page") as span:
            span.set_attribute("user.id", user_id)
            span.set_attribute("feed.page_size", page_size)

            # One item of lookahead, plus room for posts already emitted
            limits = {p: page_size + 1 + state.ahead_of(p) for p in POPULATION_ORDER}
            with tracer.start_as_current_span("stage1_collect"):
                collected = await self.collector.collect(
                    user_id,
                    state.positions,
                    limits,
                    timeout=self.timeout if timeout is None else timeout,
                )
            if not collected.candidates:
                raise AllBucketsFailed(collected.failures)

            with tracer.start_as_current_span("stage2_score"):
                requester = RequesterContext(user_id=user_id, country=country, region=region)
                buckets = deduplicate_buckets(collected.candidates, state.seen)
                scored = {p: self.scorer.score_all(items, now, requester) for p, items in buckets.items()}

            with tracer.start_as_current_span("stage3_compose"):
                flush = [
                    p for p, items in collected.candidates.items()
                    if sum(1 for c in items if c.id in state.seen) >= self.carry_limit
                ]
                composition = compose_page(scored, page_size, self.weights, flush)
                next_state, exhausted = advance_cursor(
                    state,
                    collected.candidates,
                    limits,
                    (sc.candidate for sc in composition.entries),
                )

            failed = [p.value for p in POPULATION_ORDER if p in collected.failures]
            page = FeedPage(
                entries=[FeedEntry.from_scored(sc) for sc in composition.entries],
                cursor=encode_cursor(next_state, now) if next_state else None,
                has_more=any(p not in exhausted for p in collected.healthy),
                candidates={p.value: len(items) for p, items in buckets.items()},
                failed_buckets=failed,
            )
            span.set_attribute("feed.entries", len(page.entries))
            span.set_attribute("feed.failed_buckets", ",".join(failed))

        # Degraded pages are not cached so the next request retries the store
        if not failed:
            self.cache.set(key, page, generation)

        FEED_LATENCY.observe(time.perf_counter() - start_time)
        logger.info(
            "Feed page for %s: %d entries (slots=%s, failed=%s)",
            user_id,
            len(page.entries),
            {p.value: n for p, n in composition.slots.items()},
            failed or "none",
        )
        return page

    def record_engagement(self, event: EngagementEvent) -> int:
        """Drop the acting user's cached pages; the mutation itself is not processed here."""
        return self.cache.invalidate_user(event.user_id)

    def refresh_scores(self) -> None:
        self.cache.clear()
