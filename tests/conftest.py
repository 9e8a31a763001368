"""
Pytest configuration and shared fixtures for the feed ranking tests.
"""
import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

# Add the service to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "services", "feed-api"))

from trendfeed.cursor import Position, listing_key
from trendfeed.errors import CollectorFetchFailed
from trendfeed.schemas import Candidate, Population, ScoredCandidate


NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_candidate(
    post_id: str,
    population: Population = Population.FRIEND,
    hours_ago: float = 1.0,
    likes: int = 0,
    comments: int = 0,
    shares: int = 0,
    saves: int = 0,
    **extra,
) -> Candidate:
    return Candidate(
        id=post_id,
        author_id=extra.pop("author_id", f"author-{post_id}"),
        created_at=NOW - timedelta(hours=hours_ago),
        population=population,
        engagement_counts={"likes": likes, "comments": comments, "shares": shares, "saves": saves},
        **extra,
    )


def make_scored(
    post_id: str,
    score: float,
    population: Population = Population.FRIEND,
    hours_ago: float = 1.0,
) -> ScoredCandidate:
    return ScoredCandidate(
        candidate=make_candidate(post_id, population, hours_ago),
        score=score,
        time_decay_factor=1.0,
    )


def make_bucket(population: Population, count: int, prefix: Optional[str] = None) -> list[Candidate]:
    """`count` candidates an hour apart, with varied engagement."""
    prefix = prefix or population.value
    return [
        make_candidate(
            f"{prefix}-{i:03d}",
            population,
            hours_ago=i + 0.5,
            likes=(i * 7) % 11,
            comments=i % 3,
        )
        for i in range(count)
    ]


class FakeSource:
    """In-memory CandidateSource honouring keyset pagination."""

    def __init__(self, candidates: list[Candidate]) -> None:
        self.candidates = candidates
        self.calls: list[tuple[Population, Optional[Position], int]] = []
        self.failures_left: dict[Population, int] = {}
        self.always_fail: set[Population] = set()
        self.delays: dict[Population, float] = {}

    async def fetch_candidates(self, user_id, population, position, limit):
        self.calls.append((population, position, limit))
        delay = self.delays.get(population)
        if delay:
            await asyncio.sleep(delay)
        if population in self.always_fail:
            raise CollectorFetchFailed(population, "store unreachable")
        if self.failures_left.get(population, 0) > 0:
            self.failures_left[population] -= 1
            raise CollectorFetchFailed(population, "transient error")

        matching = [
            c for c in self.candidates
            if c.population is population and (position is None or position.precedes(c))
        ]
        return sorted(matching, key=listing_key)[:limit]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def full_source() -> FakeSource:
    return FakeSource(
        make_bucket(Population.FRIEND, 30)
        + make_bucket(Population.TRENDING, 12)
        + make_bucket(Population.COMPETITION, 6)
    )
