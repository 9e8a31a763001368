"""
Feed pipeline errors.

  CollectorFetchFailed — one bucket could not be fetched; the composer
                         recovers by giving its slots to healthy buckets.
  AllBucketsFailed     — nothing could be fetched; the caller should serve
                         a non-personalised public feed instead.
  FeedTimeout          — the fetch deadline passed before any bucket returned.
  InvalidCursor        — malformed or expired pagination cursor; the caller
                         restarts from a null cursor.
"""


class FeedError(Exception):
    """Base class for feed pipeline errors."""


class CollectorFetchFailed(FeedError):
    def __init__(self, population, reason: str) -> None:
        self.population = population
        self.reason = reason
        super().__init__(f"{population} candidates unavailable: {reason}")


class AllBucketsFailed(FeedError):
    def __init__(self, failures: dict | None = None) -> None:
        self.failures = failures or {}
        detail = ", ".join(f"{p}: {r}" for p, r in self.failures.items())
        super().__init__(f"all candidate buckets failed ({detail or 'no buckets'})")


class FeedTimeout(AllBucketsFailed):
    pass


class InvalidCursor(FeedError):
    pass
