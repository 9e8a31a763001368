"""
Tests for slot allocation, redistribution and page composition.
"""
import pytest

from conftest import make_candidate, make_scored
from trendfeed.composer import (
    DEFAULT_WEIGHTS,
    allocate_slots,
    compose_page,
    deduplicate_buckets,
    redistribute,
)
from trendfeed.schemas import Population

F, T, C = Population.FRIEND, Population.TRENDING, Population.COMPETITION


def scored_bucket(population, count, prefix=None):
    prefix = prefix or population.value
    # newest first, scores deliberately not in age order
    return [
        make_scored(f"{prefix}-{i:03d}", score=float((i * 37) % 17), population=population, hours_ago=i + 1)
        for i in range(count)
    ]


# =============================================================================
# Allocation
# =============================================================================

class TestAllocation:

    def test_twenty_slots(self):
        assert allocate_slots(20) == {F: 13, T: 5, C: 2}

    def test_ten_slots(self):
        assert allocate_slots(10) == {F: 7, T: 2, C: 1}

    def test_always_sums_to_page_size(self):
        for size in range(1, 101):
            slots = allocate_slots(size)
            assert sum(slots.values()) == size
            assert all(n >= 0 for n in slots.values())

    def test_redistribute_follows_weights_then_priority(self):
        counts = redistribute({F: 2, T: 5, C: 2}, {F: 2, T: 50, C: 50}, DEFAULT_WEIGHTS, 11)
        # 11 * .23/.33 → 7, 11 * .10/.33 → 3, leftover slot to trending
        assert counts == {F: 2, T: 13, C: 5}

    def test_redistribute_respects_availability(self):
        counts = redistribute({F: 1, T: 5, C: 0}, {F: 1, T: 6, C: 0}, DEFAULT_WEIGHTS, 14)
        assert counts == {F: 1, T: 6, C: 0}


# =============================================================================
# Composition
# =============================================================================

class TestComposePage:

    def test_full_buckets_hit_targets(self):
        buckets = {F: scored_bucket(F, 25), T: scored_bucket(T, 25), C: scored_bucket(C, 25)}
        page = compose_page(buckets, 20)

        populations = [e.population for e in page.entries]
        assert len(page.entries) == 20
        assert populations == [F] * 13 + [T] * 5 + [C] * 2
        assert page.has_more is True

    def test_bucket_takes_its_highest_scored_candidates(self):
        buckets = {F: scored_bucket(F, 25), T: [], C: []}
        page = compose_page(buckets, 5)

        best = sorted(buckets[F], key=lambda sc: (-sc.score, sc.candidate.id))[:5]
        assert {e.id for e in page.entries} == {sc.id for sc in best}
        scores = [e.score for e in page.entries]
        assert scores == sorted(scores, reverse=True)
        assert min(scores) >= max(sc.score for sc in buckets[F] if sc not in best)

    def test_viral_older_post_beats_newer_cold_post(self):
        cold = [make_scored(f"cold-{i}", 0.0, T, hours_ago=i + 1) for i in range(5)]
        hot = [make_scored(f"hot-{i}", 500.0, T, hours_ago=i + 10) for i in range(5)]
        page = compose_page({T: cold + hot}, 5, weights={F: 0.0, T: 1.0, C: 0.0})

        assert [e.id for e in page.entries] == [f"hot-{i}" for i in range(5)]

    def test_flushed_bucket_takes_listing_order(self):
        cold = [make_scored(f"cold-{i}", 0.0, T, hours_ago=i + 1) for i in range(5)]
        hot = [make_scored(f"hot-{i}", 500.0, T, hours_ago=i + 10) for i in range(5)]
        page = compose_page({T: cold + hot}, 5, weights={F: 0.0, T: 1.0, C: 0.0}, flush={T})

        assert {e.id for e in page.entries} == {f"cold-{i}" for i in range(5)}

    def test_starved_friend_bucket(self):
        buckets = {F: scored_bucket(F, 2), T: scored_bucket(T, 30), C: scored_bucket(C, 30)}
        page = compose_page(buckets, 20)

        assert page.slots == {F: 2, T: 13, C: 5}
        assert len(page.entries) == 20
        assert {e.id for e in page.entries if e.population is F} == {"friend-000", "friend-001"}

    def test_returns_everything_when_short(self):
        buckets = {F: scored_bucket(F, 1), T: scored_bucket(T, 2), C: []}
        page = compose_page(buckets, 20)
        assert len(page.entries) == 3
        assert page.has_more is False

    @pytest.mark.parametrize("size", [1, 3, 7, 10, 20, 33, 50])
    def test_never_exceeds_page_size(self, size):
        buckets = {F: scored_bucket(F, 9), T: scored_bucket(T, 4), C: scored_bucket(C, 40)}
        page = compose_page(buckets, size)
        assert len(page.entries) == min(size, 53)

    def test_tie_break_newer_then_id(self):
        bucket = [
            make_scored("b", 5.0, F, hours_ago=2),
            make_scored("a", 5.0, F, hours_ago=2),
            make_scored("c", 5.0, F, hours_ago=1),
            make_scored("d", 9.0, F, hours_ago=3),
        ]
        page = compose_page({F: bucket}, 4)
        assert [e.id for e in page.entries] == ["d", "c", "a", "b"]

    def test_failed_bucket_gives_its_slots_away(self):
        buckets = {F: scored_bucket(F, 30), T: scored_bucket(T, 30)}
        page = compose_page(buckets, 20)

        assert len(page.entries) == 20
        assert page.slots[C] == 0
        assert not any(e.population is C for e in page.entries)

    def test_zero_engagement_sorts_last_in_bucket(self):
        bucket = [
            make_scored("fresh", 0.0, T, hours_ago=0.1),
            make_scored("old", 3.2, T, hours_ago=30),
        ]
        page = compose_page({T: bucket}, 2)
        assert [e.id for e in page.entries] == ["old", "fresh"]


class TestDeduplicate:

    def test_keeps_highest_priority_bucket(self):
        shared = "post-1"
        buckets = {
            T: [make_candidate(shared, T), make_candidate("t-2", T)],
            F: [make_candidate(shared, F)],
            C: [make_candidate(shared, C), make_candidate("c-2", C)],
        }
        result = deduplicate_buckets(buckets)
        assert [c.id for c in result[F]] == [shared]
        assert [c.id for c in result[T]] == ["t-2"]
        assert [c.id for c in result[C]] == ["c-2"]

    def test_drops_posts_placed_on_earlier_pages(self):
        buckets = {
            F: [make_candidate("f-1", F)],
            T: [make_candidate("x", T), make_candidate("t-2", T)],
        }
        result = deduplicate_buckets(buckets, consumed={"x"})
        assert [c.id for c in result[F]] == ["f-1"]
        assert [c.id for c in result[T]] == ["t-2"]

    def test_missing_buckets_stay_missing(self):
        result = deduplicate_buckets({T: [make_candidate("x", T)]})
        assert list(result) == [T]
