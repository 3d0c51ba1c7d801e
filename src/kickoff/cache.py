"""Read-through cache for tournament queries.

Entries are keyed by (tournament_id, kind) and remember the tournament
status at the time they were stored; the status decides how long the
entry stays fresh. Writes invalidate the affected tournament.

Every invalidation bumps a generation counter. A read-through takes the
generation before computing its value and stores the value only if no
invalidation happened in between, so a slow read never caches data that a
concurrent write has already replaced.
"""

import copy
import functools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from kickoff.models import TournamentStatus

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = {
    TournamentStatus.COMPLETED: 30 * 60,
    TournamentStatus.IN_PROGRESS: 2 * 60,
    TournamentStatus.PENDING: 10 * 60,
}

MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    status: TournamentStatus
    stored_at: float


class TournamentCache:
    """In-process TTL cache with status-dependent lifetimes.

    Values are deep-copied in and out, so callers may mutate what they get.
    """

    def __init__(
        self,
        ttl_seconds: Optional[dict] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = dict(DEFAULT_TTL_SECONDS)
        for status, ttl in (ttl_seconds or {}).items():
            self.ttl_seconds[TournamentStatus(status)] = ttl
        self.clock = clock
        self._entries: dict[tuple[int, str], CacheEntry] = {}
        self._generations: dict[int, int] = {}
        self._epoch = 0  # Bumped when entries of any tournament may be dropped
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _is_fresh(self, entry: CacheEntry) -> bool:
        ttl = self.ttl_seconds.get(entry.status, self.ttl_seconds[TournamentStatus.PENDING])
        return self.clock() - entry.stored_at < ttl

    def get(self, tournament_id: int, kind: str) -> Any:
        """Cached value, or MISSING if absent or expired."""
        key = (tournament_id, kind)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not self._is_fresh(entry):
                self._entries.pop(key, None)
                self.misses += 1
                return MISSING
            self.hits += 1
            return copy.deepcopy(entry.value)

    def generation(self, tournament_id: int) -> tuple[int, int]:
        """Token to pass to set() by a read that is about to compute a value."""
        with self._lock:
            return self._epoch, self._generations.get(tournament_id, 0)

    def set(
        self,
        tournament_id: int,
        kind: str,
        value: Any,
        status: TournamentStatus,
        generation: Optional[tuple[int, int]] = None,
    ) -> bool:
        """Store a value.

        Returns:
            False if generation is given and the tournament was invalidated
            since it was taken; nothing is stored then
        """
        with self._lock:
            current = (self._epoch, self._generations.get(tournament_id, 0))
            if generation is not None and generation != current:
                logger.debug("Cache skip: tournament %s %s changed during read", tournament_id, kind)
                return False
            self._entries[(tournament_id, kind)] = CacheEntry(
                value=copy.deepcopy(value),
                status=TournamentStatus(status),
                stored_at=self.clock(),
            )
            return True

    def invalidate(self, tournament_id: int):
        """Drop every entry of one tournament."""
        with self._lock:
            self._generations[tournament_id] = self._generations.get(tournament_id, 0) + 1
            for key in [k for k in self._entries if k[0] == tournament_id]:
                del self._entries[key]

    def invalidate_in_progress(self):
        """Drop every entry stored while its tournament was in progress."""
        with self._lock:
            self._epoch += 1
            stale = [
                key
                for key, entry in self._entries.items()
                if entry.status == TournamentStatus.IN_PROGRESS
            ]
            for key in stale:
                del self._entries[key]

    def clear(self):
        with self._lock:
            self._epoch += 1
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        """Entry count (total and per status) plus hit/miss counters."""
        with self._lock:
            by_status = {status.value: 0 for status in TournamentStatus}
            for entry in self._entries.values():
                by_status[entry.status.value] += 1
            return {
                "total": len(self._entries),
                "by_status": by_status,
                "hits": self.hits,
                "misses": self.misses,
            }


def cached(kind: str):
    """Cache a service query method taking tournament_id as first argument.

    The wrapped object must expose ``cache`` (a TournamentCache or None) and
    ``tournament_status(tournament_id)``. Without a cache the method runs
    directly.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, tournament_id, *args, **kwargs):
            cache = getattr(self, "cache", None)
            if cache is None or args or kwargs:
                return func(self, tournament_id, *args, **kwargs)

            value = cache.get(tournament_id, kind)
            if value is not MISSING:
                logger.debug("Cache hit: tournament %s %s", tournament_id, kind)
                return value

            generation = cache.generation(tournament_id)
            value = func(self, tournament_id)
            cache.set(tournament_id, kind, value, self.tournament_status(tournament_id), generation)
            return value

        return wrapper

    return decorator
