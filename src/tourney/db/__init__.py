"""
Database module for Tourney.

Provides SQLAlchemy ORM models, async session management and the
tournament repository.

Usage:
    from tourney.db import get_session, TournamentRepository

    async with get_session() as session:
        tournament = await TournamentRepository(session).get_by_id(1)
"""

from tourney.db.models import (
    Base,
    Match,
    Player,
    Round,
    RoundKind,
    Tournament,
    TournamentFormat,
    TournamentStatus,
)
from tourney.db.repository import TournamentRepository
from tourney.db.session import (
    create_engine,
    create_sessionmaker,
    dispose_engine,
    get_engine,
    get_session,
    get_sessionmaker,
    init_models,
)

__all__ = [
    # Base
    "Base",
    # Models
    "Tournament",
    "Player",
    "Round",
    "Match",
    # Enums
    "TournamentFormat",
    "TournamentStatus",
    "RoundKind",
    # Repository
    "TournamentRepository",
    # Session
    "create_engine",
    "create_sessionmaker",
    "dispose_engine",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "init_models",
]
