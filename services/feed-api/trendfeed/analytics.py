"""Feed composition analytics, reported alongside every page."""
from typing import Iterable

from trendfeed.schemas import FeedAnalytics, FeedEntry, Population


def feed_analytics(entries: Iterable[FeedEntry]) -> FeedAnalytics:
    entries = list(entries)
    counts = {p: 0 for p in Population}
    total_engagement = 0
    top_id = None
    top_engagement = 0

    for e in entries:
        counts[e.population] += 1
        engagement = e.likes_count + e.comments_count + e.shares_count
        total_engagement += engagement
        if engagement > top_engagement:
            top_engagement = engagement
            top_id = e.id

    return FeedAnalytics(
        total_posts=len(entries),
        friend_posts=counts[Population.FRIEND],
        trending_posts=counts[Population.TRENDING],
        competition_posts=counts[Population.COMPETITION],
        average_engagement=round(total_engagement / len(entries), 2) if entries else 0.0,
        top_post_id=top_id,
    )
