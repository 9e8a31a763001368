"""
Composer / paginator — blends scored buckets into one feed page.

  1. Allocate P slots: friends = round(P·0.67), trending = round(P·0.23),
     competitions = remainder (so the total is exactly P).
  2. A bucket with fewer candidates than its allocation donates the
     shortfall to the others, proportionally to their weights; single
     leftover slots go by priority friend → trending → competition.
  3. Each bucket fills its slots with its highest-scored unconsumed
     candidates, ordered by score desc, created_at desc, id asc.
  4. Page = friends ‖ trending ‖ competitions.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Collection, Iterable, Mapping

from trendfeed.cursor import listing_key
from trendfeed.schemas import (
    POPULATION_ORDER,
    Candidate,
    Population,
    ScoredCandidate,
    as_utc,
)

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    Population.FRIEND: 0.67,
    Population.TRENDING: 0.23,
    Population.COMPETITION: 0.10,
}


@dataclass
class Composition:
    entries: list[ScoredCandidate]
    has_more: bool
    slots: dict[Population, int] = field(default_factory=dict)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def allocate_slots(page_size: int, weights: Mapping[Population, float] = DEFAULT_WEIGHTS) -> dict[Population, int]:
    """Target slot count per bucket; always sums to `page_size`."""
    friends = _round_half_up(page_size * weights[Population.FRIEND])
    trending = _round_half_up(page_size * weights[Population.TRENDING])
    friends = min(friends, page_size)
    trending = min(trending, page_size - friends)
    return {
        Population.FRIEND: friends,
        Population.TRENDING: trending,
        Population.COMPETITION: page_size - friends - trending,
    }


def redistribute(
    counts: dict[Population, int],
    available: Mapping[Population, int],
    weights: Mapping[Population, float],
    slots: int,
) -> dict[Population, int]:
    """Hand `slots` free slots to buckets that still have candidates."""
    counts = dict(counts)
    while slots > 0:
        spare = {
            p: available.get(p, 0) - counts.get(p, 0)
            for p in POPULATION_ORDER
            if available.get(p, 0) - counts.get(p, 0) > 0
        }
        if not spare:
            break

        total_weight = sum(weights.get(p, 0.0) for p in spare)
        granted = 0
        for p, room in spare.items():
            share = int(slots * weights.get(p, 0.0) / total_weight) if total_weight > 0 else 0
            share = min(share, room)
            counts[p] = counts.get(p, 0) + share
            granted += share

        if granted == 0:
            first = next(iter(spare))
            counts[first] = counts.get(first, 0) + 1
            granted = 1
        slots -= granted
    return counts


def ranking_key(sc: ScoredCandidate) -> tuple:
    return (-sc.score, -as_utc(sc.candidate.created_at).timestamp(), sc.candidate.id)


def deduplicate_buckets(
    buckets: Mapping[Population, Iterable[Candidate]],
    consumed: Collection[str] = (),
) -> dict[Population, list[Candidate]]:
    """
    Keep each post only in its highest-priority bucket, and drop posts that
    an earlier page already emitted from any bucket.
    """
    seen: set[str] = set(consumed)
    result: dict[Population, list[Candidate]] = {}
    for population in POPULATION_ORDER:
        if population not in buckets:
            continue
        kept = []
        for c in buckets[population]:
            if c.id in seen:
                logger.debug("Dropping already placed %s from %s bucket", c.id, population)
                continue
            seen.add(c.id)
            kept.append(c if c.population is population else c.model_copy(update={"population": population}))
        result[population] = kept
    return result


def compose_page(
    buckets: Mapping[Population, list[ScoredCandidate]],
    page_size: int,
    weights: Mapping[Population, float] = DEFAULT_WEIGHTS,
    flush: Collection[Population] = (),
) -> Composition:
    """
    Build one page from the healthy buckets.

    `buckets` holds the unconsumed candidates of the buckets that were
    fetched successfully; a missing bucket has zero availability. A bucket
    named in `flush` takes candidates in listing order instead of its
    highest-scored ones, which lets its cursor position catch up with the
    posts already emitted ahead of it.
    """
    available = {p: len(buckets.get(p, [])) for p in POPULATION_ORDER}

    targets = allocate_slots(page_size, weights)
    counts = {p: min(targets[p], available[p]) for p in POPULATION_ORDER}
    shortfall = page_size - sum(counts.values())
    if shortfall > 0:
        counts = redistribute(counts, available, weights, shortfall)

    entries: list[ScoredCandidate] = []
    for p in POPULATION_ORDER:
        pick_key = (lambda sc: listing_key(sc.candidate)) if p in flush else ranking_key
        chosen = sorted(buckets.get(p, []), key=pick_key)[: counts[p]]
        entries.extend(sorted(chosen, key=ranking_key))

    has_more = any(available[p] > counts[p] for p in POPULATION_ORDER)
    return Composition(entries=entries, has_more=has_more, slots=counts)
