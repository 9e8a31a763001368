"""
Pydantic schemas for the feed pipeline and the API layer.

Candidates are the typed boundary between the store (arbitrary JSON rows)
and the scorer; nothing untyped is passed past the collector.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# ──────────────────────────── Candidates ──────────────────────────────────

class Population(str, Enum):
    """Feed bucket a candidate is drawn from, in priority order."""
    FRIEND = "friend"
    TRENDING = "trending"
    COMPETITION = "competition"

    def __str__(self) -> str:
        return self.value


# Priority for dedup, redistribution and page order
POPULATION_ORDER = (Population.FRIEND, Population.TRENDING, Population.COMPETITION)


def as_utc(value: datetime) -> datetime:
    """Read naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EngagementCounts(BaseModel):
    likes: int = Field(0, ge=0)
    comments: int = Field(0, ge=0)
    shares: int = Field(0, ge=0)
    saves: int = Field(0, ge=0)

    @property
    def total(self) -> int:
        return self.likes + self.comments + self.shares + self.saves

    class Config:
        frozen = True


class Candidate(BaseModel):
    """An item eligible for the feed, as delivered by the collector."""
    id: str
    author_id: str
    created_at: datetime
    population: Population
    engagement_counts: EngagementCounts = EngagementCounts()
    relationship_strength: Optional[float] = None
    author_country: Optional[str] = None
    author_region: Optional[str] = None
    # Detail known only to some sources; counts alone are enough to score.
    comment_lengths: list[int] = []
    first_engagement_at: Optional[datetime] = None
    competition_id: Optional[str] = None

    @field_validator("created_at", "first_engagement_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @field_validator("relationship_strength")
    @classmethod
    def _clamp_strength(cls, v: Optional[float]) -> Optional[float]:
        if v is None:
            return None
        return min(max(v, 1.0), 1.5)

    class Config:
        frozen = True


class ScoredCandidate(BaseModel):
    """A candidate with its score for one fixed `now`."""
    candidate: Candidate
    score: float
    time_decay_factor: float

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def population(self) -> Population:
        return self.candidate.population

    class Config:
        frozen = True


class RequesterContext(BaseModel):
    """Who is asking — only what the scorer needs for affinity boosts."""
    user_id: str
    country: Optional[str] = None
    region: Optional[str] = None


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedEntry(BaseModel):
    """A ranked post returned in the feed."""
    id: str
    author_id: str
    created_at: datetime
    population: Population
    likes_count: int
    comments_count: int
    shares_count: int
    saves_count: int
    competition_id: Optional[str] = None
    # Ranking signals exposed for debugging
    score: float
    time_decay_factor: float

    @classmethod
    def from_scored(cls, sc: ScoredCandidate) -> "FeedEntry":
        c = sc.candidate
        return cls(
            id=c.id,
            author_id=c.author_id,
            created_at=c.created_at,
            population=c.population,
            likes_count=c.engagement_counts.likes,
            comments_count=c.engagement_counts.comments,
            shares_count=c.engagement_counts.shares,
            saves_count=c.engagement_counts.saves,
            competition_id=c.competition_id,
            score=sc.score,
            time_decay_factor=sc.time_decay_factor,
        )


class FeedAnalytics(BaseModel):
    total_posts: int
    friend_posts: int
    trending_posts: int
    competition_posts: int
    average_engagement: float
    top_post_id: Optional[str] = None


class FeedPage(BaseModel):
    entries: list[FeedEntry]
    cursor: Optional[str]
    has_more: bool
    # Pipeline metadata
    candidates: dict[str, int] = {}
    failed_buckets: list[str] = []


class FeedResponse(BaseModel):
    user_id: str
    posts: list[FeedEntry]
    cursor: Optional[str]
    has_more: bool
    candidates: dict[str, int]
    failed_buckets: list[str]
    analytics: FeedAnalytics
    latency_ms: float


# ──────────────────────────── Engagement ──────────────────────────────────

class EngagementAction(str, Enum):
    LIKE = "like"
    UNLIKE = "unlike"
    COMMENT = "comment"
    VOTE = "vote"


class EngagementEvent(BaseModel):
    """Notification that a user changed engagement; only used to drop caches."""
    user_id: str
    action: EngagementAction
    post_id: Optional[str] = None


# ──────────────────────────── Trending job ────────────────────────────────

class TrendingPost(BaseModel):
    post_id: str
    author_id: str
    trending_score: float
    total_engagement: float
    engagement_rate: float


class TrendingRunResult(BaseModel):
    total_posts_processed: int = 0
    posts_updated: int = 0
    trending_posts: list[TrendingPost] = []
    errors: list[dict] = []
    processing_time_ms: float = 0.0


class TrendingRunRequest(BaseModel):
    hours: Optional[int] = Field(None, gt=0)
    batch_size: Optional[int] = Field(None, gt=0)
