"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.

Two kinds of fixtures live here:
- database-backed: a fresh SQLite file (aiosqlite) per test, with the
  service wired to it
- in-memory builders: transient ORM aggregates for strategy and result
  processor tests that never touch a session
"""

import os

# Keep secret hashing cheap; must be set before tourney.config is imported
os.environ.setdefault("SECRET_HASH_ITERATIONS", "1000")

import itertools
from typing import Callable, Optional

import pytest

from tourney.cache import TournamentCache
from tourney.db.models import (
    Match,
    Player,
    Round,
    RoundKind,
    Tournament,
    TournamentFormat,
    TournamentStatus,
    utcnow,
)
from tourney.db.session import create_engine, create_sessionmaker, init_models
from tourney.pairing.base import PairingStrategy
from tourney.services import MatchResult, MatchResultProcessor, TournamentService


class RecordingSink:
    """Notification sink that keeps every event for assertions."""

    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)

    def kinds(self):
        return [event.kind for event in self.events]


# =============================================================================
# Database-backed fixtures
# =============================================================================

@pytest.fixture
async def engine(tmp_path):
    """
    Async engine on a per-test SQLite file.

    A file (not :memory:) so separate sessions share one database, which
    the concurrency tests need.
    """
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'tourney.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_sessionmaker(engine)


@pytest.fixture
def cache():
    return TournamentCache()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def service(session_factory, cache, sink):
    return TournamentService(session_factory, cache, sink=sink)


@pytest.fixture
def create_with_players(service):
    """Create a tournament and register players named Player 1..N."""

    async def create(
        player_count: int,
        tournament_format: TournamentFormat = TournamentFormat.SWISS,
        secret: Optional[str] = None,
    ):
        created = await service.create_tournament("Test Cup", tournament_format, secret)
        for n in range(1, player_count + 1):
            await service.add_player(created.id, f"Player {n}", secret)
        return await service.get_tournament(created.id)

    return create


# =============================================================================
# In-memory aggregate builders
# =============================================================================

def make_player(player_id: int, points: int = 0, wins: Optional[int] = None, losses: int = 0) -> Player:
    wins = points if wins is None else wins
    return Player(
        id=player_id,
        tournament_id=1,
        name=f"Player {player_id}",
        wins=wins,
        losses=losses,
        points=points,
        round_wins=0,
        round_losses=0,
        group="",
        created_at=utcnow(),
    )


@pytest.fixture
def build_tournament() -> Callable[..., Tournament]:
    """Transient in-progress tournament with players 1..N and no rounds."""

    def build(player_count: int, tournament_format: TournamentFormat = TournamentFormat.SWISS) -> Tournament:
        return Tournament(
            id=1,
            name="Test Cup",
            format=tournament_format,
            status=TournamentStatus.IN_PROGRESS,
            secret_hash="",
            current_round=0,
            winner_id=None,
            created_at=utcnow(),
            players=[make_player(i) for i in range(1, player_count + 1)],
            rounds=[],
        )

    return build


@pytest.fixture
def open_round() -> Callable[[Tournament, PairingStrategy], Round]:
    """
    Append the next round to a transient tournament and let the strategy pair it.

    Matches get ids the way a flush would give them.
    """
    match_ids = itertools.count(1)

    def open_(tournament: Tournament, strategy: PairingStrategy) -> Round:
        number = len(tournament.rounds) + 1
        round_ = Round(
            id=number,
            tournament_id=tournament.id,
            round_number=number,
            kind=RoundKind.REGULAR,
            is_completed=False,
            created_at=utcnow(),
            matches=[],
        )
        tournament.rounds.append(round_)
        tournament.current_round = number
        strategy.create_matches_for_round(tournament, round_)
        for match in round_.matches:
            match.id = next(match_ids)
            match.round_id = round_.id
        return round_

    return open_


def lower_id_wins(match: Match) -> int:
    return min(match.participant_ids)


@pytest.fixture
def resolve_round() -> Callable[..., bool]:
    """Submit a winner for every open match of a transient round."""

    def resolve(
        tournament: Tournament,
        round_: Round,
        pick: Callable[[Match], int] = lower_id_wins,
        points_per_win: int = 1,
    ) -> bool:
        results = [
            MatchResult(match.id, pick(match))
            for match in round_.matches
            if not match.is_resolved
        ]
        processor = MatchResultProcessor(points_per_win)
        return processor.process_match_winners(round_, results, tournament.players)

    return resolve


@pytest.fixture
def player_factory() -> Callable[..., Player]:
    return make_player
