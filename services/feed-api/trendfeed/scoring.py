"""
Engagement scoring shared by the feed read path and the trending job.

Trending / competition score:
  weighted   = likes*1.0 + Σ comment_weight + shares*3.0 + saves*1.5
               comment_weight = min(2.0 + len(text)/100, 3.0)
  decay      = exp(-ln2 * hours_since_post / 72)        (72h half-life)
  recency    = 1.5 (<6h) │ 1.25 (<12h) │ 1.0
  velocity   = 1.3 (>5/h) │ 1.15 (>2/h) │ 1.0         rate = weighted / max(h_oldest, 1)
  diversity  = 1.0 + 0.1 * (distinct engagement types − 1)
  score      = weighted * decay * recency * velocity * diversity

Friend score:
  score      = weighted * decay * relationship_strength

Both are multiplied by the country affinity boost (2.0 same country,
1.3 same region) and rounded to 2 decimals.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from trendfeed.config import Settings
from trendfeed.schemas import (
    Candidate,
    EngagementCounts,
    Population,
    RequesterContext,
    ScoredCandidate,
    as_utc,
)

SAME_COUNTRY_BOOST = 2.0
SAME_REGION_BOOST = 1.3


@dataclass(frozen=True)
class ScoringWeights:
    like: float = 1.0
    comment: float = 2.0
    comment_cap: float = 3.0
    comment_length_divisor: float = 100.0
    share: float = 3.0
    save: float = 1.5
    half_life_hours: float = 72.0

    @classmethod
    def from_settings(cls, s: Settings) -> "ScoringWeights":
        return cls(
            like=s.like_weight,
            comment=s.comment_weight,
            comment_cap=s.comment_weight_cap,
            comment_length_divisor=s.comment_length_divisor,
            share=s.share_weight,
            save=s.save_weight,
            half_life_hours=s.trending_decay_hours,
        )

    def comment_weight(self, length: Optional[int]) -> float:
        """Longer comments weigh more, capped."""
        if length is None:
            return self.comment
        return min(self.comment + max(length, 0) / self.comment_length_divisor, self.comment_cap)


@dataclass(frozen=True)
class EngagementDetail:
    """One engagement event, as read by the trending job."""
    type: str                      # like | comment | share | save
    created_at: datetime
    user_id: Optional[str] = None
    comment_length: Optional[int] = None


@dataclass(frozen=True)
class EngagementSummary:
    weighted_total: float
    distinct_types: int
    oldest_engagement_at: Optional[datetime] = None


def summarize_counts(
    counts: EngagementCounts,
    weights: ScoringWeights,
    comment_lengths: Iterable[int] = (),
    first_engagement_at: Optional[datetime] = None,
) -> EngagementSummary:
    """Summarise raw counters; known comment lengths refine the comment weight."""
    lengths = list(comment_lengths)[: counts.comments]
    comment_total = sum(weights.comment_weight(n) for n in lengths)
    comment_total += (counts.comments - len(lengths)) * weights.comment

    weighted = (
        counts.likes * weights.like
        + comment_total
        + counts.shares * weights.share
        + counts.saves * weights.save
    )
    types = sum(1 for n in (counts.likes, counts.comments, counts.shares, counts.saves) if n > 0)
    return EngagementSummary(weighted, types, first_engagement_at)


def summarize_events(details: Iterable[EngagementDetail], weights: ScoringWeights) -> EngagementSummary:
    fixed = {"like": weights.like, "share": weights.share, "save": weights.save}
    total = 0.0
    types: set[str] = set()
    oldest: Optional[datetime] = None
    for d in details:
        if d.type == "comment":
            total += weights.comment_weight(d.comment_length or 0)
        elif d.type in fixed:
            total += fixed[d.type]
        else:
            continue
        types.add(d.type)
        ts = as_utc(d.created_at)
        if oldest is None or ts < oldest:
            oldest = ts
    return EngagementSummary(total, len(types), oldest)


# ─────────────────────────── Factors ─────────────────────────────────────

def hours_since(now: datetime, then: datetime) -> float:
    """Elapsed hours, clamped at zero for clock skew."""
    return max((as_utc(now) - as_utc(then)).total_seconds() / 3600, 0.0)


def time_decay(hours: float, half_life_hours: float) -> float:
    if hours <= 0:
        return 1.0
    return math.exp(-math.log(2) * hours / half_life_hours)


def recency_boost(hours: float) -> float:
    if hours < 6:
        return 1.5
    if hours < 12:
        return 1.25
    return 1.0


def engagement_rate(summary: EngagementSummary, now: datetime) -> float:
    """Weighted engagement per hour since the oldest engagement (min 1h)."""
    if summary.oldest_engagement_at is None:
        return summary.weighted_total
    return summary.weighted_total / max(hours_since(now, summary.oldest_engagement_at), 1.0)


def velocity_boost(rate: float) -> float:
    if rate > 5:
        return 1.3
    if rate > 2:
        return 1.15
    return 1.0


def diversity_boost(distinct_types: int) -> float:
    return 1.0 + max(distinct_types - 1, 0) * 0.1


def affinity_boost(candidate: Candidate, requester: Optional[RequesterContext]) -> float:
    if requester is None:
        return 1.0
    if requester.country and candidate.author_country == requester.country:
        return SAME_COUNTRY_BOOST
    if requester.region and candidate.author_region == requester.region:
        return SAME_REGION_BOOST
    return 1.0


def trending_score(
    summary: EngagementSummary,
    created_at: datetime,
    now: datetime,
    weights: ScoringWeights,
) -> tuple[float, float]:
    """Return (unrounded score, decay factor)."""
    hours = hours_since(now, created_at)
    decay = time_decay(hours, weights.half_life_hours)
    score = (
        summary.weighted_total
        * decay
        * recency_boost(hours)
        * velocity_boost(engagement_rate(summary, now))
        * diversity_boost(summary.distinct_types)
    )
    return score, decay


def friend_score(
    summary: EngagementSummary,
    created_at: datetime,
    now: datetime,
    weights: ScoringWeights,
    relationship_strength: Optional[float] = None,
) -> tuple[float, float]:
    decay = time_decay(hours_since(now, created_at), weights.half_life_hours)
    return summary.weighted_total * decay * (relationship_strength or 1.0), decay


# ─────────────────────────── Scorer ──────────────────────────────────────

class Scorer:
    """Assigns ranking scores to candidates for one fixed `now`."""

    def __init__(self, weights: Optional[ScoringWeights] = None) -> None:
        self.weights = weights or ScoringWeights()

    def score(
        self,
        candidate: Candidate,
        now: datetime,
        requester: Optional[RequesterContext] = None,
    ) -> ScoredCandidate:
        summary = summarize_counts(
            candidate.engagement_counts,
            self.weights,
            candidate.comment_lengths,
            candidate.first_engagement_at,
        )
        if candidate.population is Population.FRIEND:
            base, decay = friend_score(
                summary, candidate.created_at, now, self.weights, candidate.relationship_strength
            )
        else:
            base, decay = trending_score(summary, candidate.created_at, now, self.weights)

        return ScoredCandidate(
            candidate=candidate,
            score=round(base * affinity_boost(candidate, requester), 2),
            time_decay_factor=decay,
        )

    def score_all(
        self,
        candidates: Iterable[Candidate],
        now: datetime,
        requester: Optional[RequesterContext] = None,
    ) -> list[ScoredCandidate]:
        return [self.score(c, now, requester) for c in candidates]
