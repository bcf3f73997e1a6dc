"""
Read-through / write-through cache of tournament snapshots.

Maps tournament id -> TournamentSnapshot. Each entry has two deadlines:

- sliding: pushed forward by every successful get (default 20 minutes)
- absolute: fixed when the value is written (default 2 hours); a hit never
  extends it, so no value is served longer than this after it was written

Writers follow one rule: the cache is changed only after the transaction that
produced the value has committed. A reader that misses falls back to the
database, so the only staleness window is the gap between commit and the
cache write.

put() inserts only when nothing is cached, so a slow first load cannot
clobber a fresher value cached by a concurrent writer; replace() is the
unconditional overwrite used after every successful mutation.

Snapshots are immutable, so no caller can change a cached value in place.
The cache is owned by whoever builds the service (see tourney.services);
there is no module-level instance.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from tourney.snapshots import PlayerSnapshot, TournamentSnapshot

Clock = Callable[[], float]


@dataclass
class _Entry:
    snapshot: TournamentSnapshot
    sliding_deadline: float
    absolute_deadline: float

    def expired(self, now: float) -> bool:
        return now >= self.sliding_deadline or now >= self.absolute_deadline


class TournamentCache:
    """In-process snapshot cache with sliding and absolute expiration."""

    def __init__(
        self,
        sliding_seconds: float = 20 * 60,
        absolute_seconds: float = 2 * 60 * 60,
        clock: Clock = time.monotonic,
    ):
        if sliding_seconds <= 0 or absolute_seconds <= 0:
            raise ValueError("Cache lifetimes must be positive")
        self.sliding_seconds = sliding_seconds
        self.absolute_seconds = absolute_seconds
        self._clock = clock
        self._entries: dict[int, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, tournament_id: int) -> Optional[TournamentSnapshot]:
        """Cached snapshot, or None when absent or expired."""
        now = self._clock()
        entry = self._live_entry(tournament_id, now)
        if entry is None:
            return None
        entry.sliding_deadline = min(now + self.sliding_seconds, entry.absolute_deadline)
        return entry.snapshot

    async def put(self, snapshot: TournamentSnapshot) -> bool:
        """
        Insert a snapshot only if none is cached.

        Returns:
            True if the snapshot was stored
        """
        now = self._clock()
        if self._live_entry(snapshot.id, now) is not None:
            return False
        self._store(snapshot, now)
        return True

    async def replace(self, snapshot: TournamentSnapshot) -> None:
        """Store a snapshot, overwriting whatever is cached."""
        self._store(snapshot, self._clock())

    async def mutate_players(
        self,
        tournament_id: int,
        add: Optional[PlayerSnapshot] = None,
        remove: Optional[int] = None,
    ) -> bool:
        """
        Apply a player-list change to the cached snapshot, if there is one.

        Used when only registration changed, to avoid reloading the graph.

        Returns:
            False when nothing was cached for the tournament
        """
        now = self._clock()
        entry = self._live_entry(tournament_id, now)
        if entry is None:
            return False

        snapshot = entry.snapshot
        if add is not None:
            snapshot = snapshot.with_player_added(add)
        if remove is not None:
            snapshot = snapshot.with_player_removed(remove)
        self._store(snapshot, now)
        return True

    async def invalidate(self, tournament_id: int) -> None:
        self._entries.pop(tournament_id, None)

    async def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [tid for tid, entry in self._entries.items() if entry.expired(now)]
        for tid in expired:
            del self._entries[tid]
        return len(expired)

    async def clear(self) -> None:
        self._entries.clear()

    def _live_entry(self, tournament_id: int, now: float) -> Optional[_Entry]:
        entry = self._entries.get(tournament_id)
        if entry is None:
            return None
        if entry.expired(now):
            del self._entries[tournament_id]
            return None
        return entry

    def _store(self, snapshot: TournamentSnapshot, now: float) -> None:
        absolute = now + self.absolute_seconds
        self._entries[snapshot.id] = _Entry(
            snapshot=snapshot,
            sliding_deadline=min(now + self.sliding_seconds, absolute),
            absolute_deadline=absolute,
        )
