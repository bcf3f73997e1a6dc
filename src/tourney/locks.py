"""
Per-tournament mutual exclusion for mutating operations.

Two "advance round" requests for the same tournament must not both read the
pre-advance state. Within one process, every mutating operation holds the
tournament's lock for its whole duration, so they run one after another and
the second one sees the first one's committed result. Different tournaments
never wait on each other.

Across processes the optimistic version column on tournaments takes over
(see tourney.db.models): the losing writer gets a ConflictError.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator


class TournamentLocks:
    """Lazily created asyncio.Lock per tournament id, dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._waiters: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, tournament_id: int) -> AsyncGenerator[None, None]:
        lock = self._locks.setdefault(tournament_id, asyncio.Lock())
        self._waiters[tournament_id] = self._waiters.get(tournament_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[tournament_id] -= 1
            if self._waiters[tournament_id] == 0:
                del self._waiters[tournament_id]
                del self._locks[tournament_id]

    def is_locked(self, tournament_id: int) -> bool:
        lock = self._locks.get(tournament_id)
        return lock is not None and lock.locked()
