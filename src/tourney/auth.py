"""
Shared-secret protection for tournaments.

A tournament may be created with a secret; every mutating operation after
creation must then present it. Secrets are stored as PBKDF2-HMAC-SHA256
hashes in the form

    pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>

and compared in constant time. An empty stored value means the tournament
is unprotected and every challenge succeeds.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import os
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourney.cache import TournamentCache
from tourney.config import settings
from tourney.db.repository import TournamentRepository
from tourney.exceptions import NotFoundError, UnauthorizedError
from tourney.snapshots import TournamentSnapshot

PBKDF2_ALGORITHM = "sha256"
SALT_SIZE = 16


def hash_secret(secret: Optional[str], iterations: Optional[int] = None) -> str:
    """Hash a tournament secret; None or "" yields "" (unprotected)."""
    if not secret:
        return ""

    iterations = iterations or settings.secret_hash_iterations
    salt = os.urandom(SALT_SIZE).hex()
    derived = hashlib.pbkdf2_hmac(
        PBKDF2_ALGORITHM,
        secret.encode("utf-8"),
        bytes.fromhex(salt),
        iterations,
    ).hex()
    return f"pbkdf2_{PBKDF2_ALGORITHM}${iterations}${salt}${derived}"


def verify_secret(secret: Optional[str], stored_hash: str) -> bool:
    """
    Check a supplied secret against a stored hash.

    Always True for an unprotected tournament (empty stored hash). A
    malformed stored hash never verifies.
    """
    if not stored_hash:
        return True
    if not secret:
        return False
    try:
        scheme, iter_raw, salt_hex, expected_hex = stored_hash.split("$", 3)
        if scheme != f"pbkdf2_{PBKDF2_ALGORITHM}":
            return False
        actual_hex = hashlib.pbkdf2_hmac(
            PBKDF2_ALGORITHM,
            secret.encode("utf-8"),
            bytes.fromhex(salt_hex),
            int(iter_raw),
        ).hex()
    except ValueError:
        return False
    return hmac.compare_digest(actual_hex, expected_hex)


class AccessGuard:
    """Verifies a tournament's shared secret before mutating operations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: TournamentCache,
    ):
        self.session_factory = session_factory
        self.cache = cache

    async def challenge(self, tournament_id: int, secret: Optional[str]) -> None:
        """
        Raise unless secret unlocks the tournament.

        The stored hash is read from the cache when possible, otherwise from a
        bare database load (which is not cached: it carries no players or
        rounds).

        Raises:
            NotFoundError: the tournament does not exist
            UnauthorizedError: the tournament is protected and secret is wrong
        """
        stored_hash = await self._stored_hash(tournament_id)
        if not await asyncio.to_thread(verify_secret, secret, stored_hash):
            raise UnauthorizedError("Invalid tournament password")

    async def _stored_hash(self, tournament_id: int) -> str:
        cached: Optional[TournamentSnapshot] = await self.cache.get(tournament_id)
        if cached is not None:
            return cached.secret_hash

        async with self.session_factory() as session:
            tournament = await TournamentRepository(session).get_by_id(tournament_id)
            if tournament is None:
                raise NotFoundError(f"Tournament {tournament_id} not found")
            return tournament.secret_hash
