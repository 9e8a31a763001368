"""
Opaque pagination cursor.

Each bucket is listed newest first (created_at desc, id asc), but a page takes
the highest-scored posts of each bucket's window, so consumption is not a
simple prefix. The cursor therefore carries two things:

  pos   per bucket, the keyset position up to which every listed post has
        been emitted (the bucket's next fetch starts after it)
  seen  posts already emitted that some bucket may still list, either
        further down its own window or because the post also qualifies for
        another bucket

  base64url( {"v": 1, "iat": <unix>,
              "pos": {"friend": ["<iso ts>", "<id>"], ...},
              "seen": [["<iso ts>", "<id>"], ...]} )

A seen post is forgotten once every bucket that can still list posts has
moved past it, so the cursor stays small while successive pages neither skip
nor repeat a post.
"""
import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Mapping, NamedTuple, Optional

from trendfeed.errors import InvalidCursor
from trendfeed.schemas import POPULATION_ORDER, Candidate, Population, as_utc

CURSOR_VERSION = 1


class Position(NamedTuple):
    created_at: datetime
    id: str

    @classmethod
    def of(cls, candidate: Candidate) -> "Position":
        return cls(candidate.created_at, candidate.id)

    def precedes(self, item) -> bool:
        """True if `item` (a candidate or a position) lists after this position."""
        ts = as_utc(item.created_at)
        created_at = as_utc(self.created_at)
        return ts < created_at or (ts == created_at and item.id > self.id)


def listing_key(item) -> tuple:
    """Sort key for newest-first keyset order."""
    return (-as_utc(item.created_at).timestamp(), item.id)


@dataclass
class FeedCursor:
    positions: dict[Population, Position] = field(default_factory=dict)
    seen: dict[str, Position] = field(default_factory=dict)

    def ahead_of(self, population: Population) -> int:
        """Seen posts the bucket has not listed past yet."""
        after = self.positions.get(population)
        return sum(1 for pos in self.seen.values() if after is None or after.precedes(pos))

    def __bool__(self) -> bool:
        return bool(self.positions or self.seen)


def advance_cursor(
    cursor: FeedCursor,
    fetched: Mapping[Population, list[Candidate]],
    limits: Mapping[Population, int],
    emitted: Iterable[Candidate],
) -> tuple[FeedCursor, set[Population]]:
    """
    Record a page's entries and move every fetched bucket past the run of
    emitted posts at the head of its listing.

    Buckets missing from `fetched` (failed this time) keep their position.
    Returns the new cursor and the buckets with nothing left to list.
    """
    seen = dict(cursor.seen)
    for c in emitted:
        seen[c.id] = Position.of(c)

    positions = dict(cursor.positions)
    exhausted: set[Population] = set()
    for population, items in fetched.items():
        items = sorted(items, key=listing_key)
        head = 0
        while head < len(items) and items[head].id in seen:
            head += 1
        if head:
            positions[population] = Position.of(items[head - 1])
        if head == len(items) and len(items) < limits[population]:
            exhausted.add(population)

    live = [p for p in POPULATION_ORDER if p not in exhausted]
    kept = {
        post_id: pos
        for post_id, pos in seen.items()
        if any(positions.get(p) is None or positions[p].precedes(pos) for p in live)
    }
    return FeedCursor(positions, kept), exhausted


# ─────────────────────────── Encoding ────────────────────────────────────

def _pair(pos: Position) -> list:
    return [as_utc(pos.created_at).isoformat(), pos.id]


def _parse_pair(value) -> Position:
    ts, item_id = value
    return Position(as_utc(datetime.fromisoformat(ts)), str(item_id))


def encode_cursor(cursor: FeedCursor, issued_at: datetime) -> str:
    payload = {
        "v": CURSOR_VERSION,
        "iat": int(as_utc(issued_at).timestamp()),
        "pos": {p.value: _pair(pos) for p, pos in cursor.positions.items()},
        "seen": [_pair(pos) for pos in sorted(cursor.seen.values(), key=listing_key)],
    }
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(
    token: Optional[str],
    now: datetime,
    max_age: timedelta,
) -> FeedCursor:
    """Parse a cursor; a null/empty cursor means "start fresh"."""
    if not token:
        return FeedCursor()

    try:
        padded = token + "=" * (-len(token) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError) as exc:
        raise InvalidCursor(f"malformed cursor: {exc}") from exc

    if not isinstance(payload, dict) or payload.get("v") != CURSOR_VERSION:
        raise InvalidCursor("unsupported cursor version")

    iat = payload.get("iat")
    if not isinstance(iat, int):
        raise InvalidCursor("cursor has no issue time")
    if as_utc(now).timestamp() - iat > max_age.total_seconds():
        raise InvalidCursor("cursor expired")

    raw_positions = payload.get("pos")
    raw_seen = payload.get("seen", [])
    if not isinstance(raw_positions, dict) or not isinstance(raw_seen, list):
        raise InvalidCursor("cursor has no positions")

    cursor = FeedCursor()
    for name, value in raw_positions.items():
        try:
            cursor.positions[Population(name)] = _parse_pair(value)
        except (ValueError, TypeError) as exc:
            raise InvalidCursor(f"bad position for {name!r}") from exc
    for value in raw_seen:
        try:
            pos = _parse_pair(value)
        except (ValueError, TypeError) as exc:
            raise InvalidCursor("bad seen entry") from exc
        cursor.seen[pos.id] = pos
    return cursor
