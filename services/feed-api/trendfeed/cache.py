"""
Short-lived cache of computed feed pages.

Thread-safe LRU map with a per-entry TTL, keyed by (user_id, page params).
A user's entries are dropped as soon as that user likes, comments or votes,
so they never see ranking that ignores their own interaction.

Pages are computed outside the lock, so a writer first reads the user's
generation and passes it back to `set`; an invalidation in between bumps the
generation and the stale page is refused.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional

logger = logging.getLogger(__name__)


class FeedPageCache:
    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: "OrderedDict[tuple, tuple[float, Any]]" = OrderedDict()
        self._by_user: dict[str, set[tuple]] = {}
        self._epoch = 0
        self._generations: dict[str, int] = {}

    @staticmethod
    def make_key(user_id: str, *params: Hashable) -> tuple:
        return (user_id, *params)

    def generation(self, user_id: str) -> tuple[int, int]:
        with self._lock:
            return (self._epoch, self._generations.get(user_id, 0))

    def get(self, key: tuple) -> Optional[Any]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            stored_at, value = item
            if self._clock() - stored_at >= self._ttl:
                self._remove(key)
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: tuple, value: Any, generation: Optional[tuple[int, int]] = None) -> bool:
        """
        Store `value`; returns False without storing when `generation` no
        longer matches the user's, i.e. the page predates an invalidation.
        """
        with self._lock:
            if generation is not None and generation != self.generation(key[0]):
                logger.debug("Not caching stale feed page for user %s", key[0])
                return False
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            self._by_user.setdefault(key[0], set()).add(key)
            while len(self._entries) > self._max_entries:
                oldest = next(iter(self._entries))
                self._remove(oldest)
            return True

    def invalidate_user(self, user_id: str) -> int:
        """Drop every cached page of `user_id`; returns how many were dropped."""
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            keys = self._by_user.pop(user_id, set())
            for key in keys:
                self._entries.pop(key, None)
        if keys:
            logger.info("Invalidated %d cached feed pages for user %s", len(keys), user_id)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_user.clear()
            self._generations.clear()
            self._epoch += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _remove(self, key: tuple) -> None:
        self._entries.pop(key, None)
        user_keys = self._by_user.get(key[0])
        if user_keys is not None:
            user_keys.discard(key)
            if not user_keys:
                del self._by_user[key[0]]
