"""
Immutable read models of the tournament aggregate.

Snapshots are what the engine hands back to callers and what the cache
stores. They are frozen pydantic models built from the ORM graph once a
transaction has produced it, so nothing outside a session can mutate
committed state by accident.

The secret hash travels with the snapshot (the access guard checks it from
the cache) but is excluded from every serialized form.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tourney.db.models import (
    Match,
    Player,
    Round,
    RoundKind,
    Tournament,
    TournamentFormat,
    TournamentStatus,
)


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)


class PlayerSnapshot(_Snapshot):
    id: int
    name: str
    wins: int
    losses: int
    points: int
    round_wins: int
    round_losses: int
    group: str
    win_rate: float
    total_matches: int
    round_matches: int

    @classmethod
    def from_model(cls, player: Player) -> "PlayerSnapshot":
        return cls(
            id=player.id,
            name=player.name,
            wins=player.wins,
            losses=player.losses,
            points=player.points,
            round_wins=player.round_wins,
            round_losses=player.round_losses,
            group=player.group,
            win_rate=player.win_rate,
            total_matches=player.total_matches,
            round_matches=player.round_matches,
        )


class MatchSnapshot(_Snapshot):
    id: int
    round_id: int
    player_ids: tuple[int, ...]
    winner_id: Optional[int] = None
    is_bye: bool = False
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, match: Match) -> "MatchSnapshot":
        return cls(
            id=match.id,
            round_id=match.round_id,
            player_ids=match.participant_ids,
            winner_id=match.winner_id,
            is_bye=match.is_bye,
            created_at=match.created_at,
            completed_at=match.completed_at,
        )


class RoundSnapshot(_Snapshot):
    id: int
    round_number: int
    kind: RoundKind
    is_completed: bool
    created_at: datetime
    matches: tuple[MatchSnapshot, ...] = ()

    @classmethod
    def from_model(cls, round_: Round) -> "RoundSnapshot":
        return cls(
            id=round_.id,
            round_number=round_.round_number,
            kind=round_.kind,
            is_completed=round_.is_completed,
            created_at=round_.created_at,
            matches=tuple(MatchSnapshot.from_model(m) for m in round_.matches),
        )


class TournamentSnapshot(_Snapshot):
    id: int
    name: str
    format: TournamentFormat
    status: TournamentStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    current_round: int = 0
    winner_id: Optional[int] = None
    is_protected: bool = False
    players: tuple[PlayerSnapshot, ...] = ()
    rounds: tuple[RoundSnapshot, ...] = ()

    secret_hash: str = Field(default="", exclude=True, repr=False)

    @classmethod
    def from_model(cls, tournament: Tournament, include_graph: bool = True) -> "TournamentSnapshot":
        """
        Build a snapshot from an ORM tournament.

        Args:
            tournament: The aggregate; players and rounds must already be
                loaded when include_graph is True
            include_graph: False for a header-only snapshot (freshly created
                tournaments, bare loads)
        """
        players: tuple[PlayerSnapshot, ...] = ()
        rounds: tuple[RoundSnapshot, ...] = ()
        if include_graph:
            players = tuple(PlayerSnapshot.from_model(p) for p in tournament.players)
            rounds = tuple(RoundSnapshot.from_model(r) for r in tournament.rounds)

        return cls(
            id=tournament.id,
            name=tournament.name,
            format=tournament.format,
            status=tournament.status,
            created_at=tournament.created_at,
            started_at=tournament.started_at,
            completed_at=tournament.completed_at,
            current_round=tournament.current_round,
            winner_id=tournament.winner_id,
            is_protected=tournament.is_protected,
            players=players,
            rounds=rounds,
            secret_hash=tournament.secret_hash,
        )

    def get_player(self, player_id: int) -> Optional[PlayerSnapshot]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def get_round(self, round_number: int) -> Optional[RoundSnapshot]:
        for round_ in self.rounds:
            if round_.round_number == round_number:
                return round_
        return None

    def with_player_added(self, player: PlayerSnapshot) -> "TournamentSnapshot":
        players = tuple(p for p in self.players if p.id != player.id) + (player,)
        return self.model_copy(update={"players": players})

    def with_player_removed(self, player_id: int) -> "TournamentSnapshot":
        players = tuple(p for p in self.players if p.id != player_id)
        return self.model_copy(update={"players": players})


class TournamentSummary(_Snapshot):
    """Light projection used for listings."""

    id: int
    name: str
    format: TournamentFormat
    status: TournamentStatus
    player_count: int
    current_round: int
    created_at: datetime
    is_protected: bool = False

    @classmethod
    def from_model(cls, tournament: Tournament, player_count: int) -> "TournamentSummary":
        return cls(
            id=tournament.id,
            name=tournament.name,
            format=tournament.format,
            status=tournament.status,
            player_count=player_count,
            current_round=tournament.current_round,
            created_at=tournament.created_at,
            is_protected=tournament.is_protected,
        )
