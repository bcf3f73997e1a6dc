"""
SQLAlchemy ORM models for Tourney.

This module defines the tournament aggregate: a tournament owns its players
and its rounds, and each round owns its matches. Deleting a tournament
removes the whole graph.

Key design decisions:
- Matches reference players by foreign key; a bye is a match whose
  player_b_id is NULL and which is resolved the moment it is created
- Round numbers are unique per tournament, so a second "next round" for the
  same tournament cannot be stored even if two writers race
- Tournaments carry an optimistic version counter; every mutation touches the
  tournament row, so concurrent writers from different processes conflict at
  flush time instead of silently double-advancing
- The tournament's winner is a plain integer column (players already point at
  tournaments, a second foreign key would make the two tables cyclic)

Tables:
- tournaments: Tournament header, lifecycle status and shared secret hash
- tournament_players: Registered players and their cumulative statistics
- rounds: Rounds of a tournament, in order
- matches: Pairings of a round, with the winner once resolved
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Boolean,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Enums
# =============================================================================

class TournamentFormat(enum.IntEnum):
    """Tournament formats; each one maps to a pairing strategy."""
    SWISS = 1
    GROUP_STAGE = 2


class TournamentStatus(enum.IntEnum):
    """Lifecycle states. Transitions only ever move forward."""
    CREATED = 1
    IN_PROGRESS = 2
    COMPLETED = 3


class RoundKind(str, enum.Enum):
    """Classification of a round, chosen by the pairing strategy."""
    REGULAR = "Regular"
    TIEBREAKER = "Tiebreaker"
    FINAL = "Final"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Tournament Models
# =============================================================================

class Tournament(Base):
    """
    Tournament header and root of the aggregate.

    current_round is 0 until the tournament starts, then always equals the
    highest round_number among its rounds. winner_id is set exactly when
    status is COMPLETED.

    secret_hash holds a PBKDF2 hash of the shared secret (see tourney.auth);
    an empty string means the tournament is unprotected.
    """
    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    format: Mapped[TournamentFormat] = mapped_column(
        Enum(TournamentFormat, native_enum=False, length=20), nullable=False
    )
    status: Mapped[TournamentStatus] = mapped_column(
        Enum(TournamentStatus, native_enum=False, length=20),
        nullable=False,
        default=TournamentStatus.CREATED,
    )
    secret_hash: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    current_round: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    winner_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Optimistic concurrency counter, bumped by SQLAlchemy on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    players: Mapped[list["Player"]] = relationship(
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="Player.id",
        lazy="raise_on_sql",
    )
    rounds: Mapped[list["Round"]] = relationship(
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="Round.round_number",
        lazy="raise_on_sql",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_tournaments_status", "status"),
    )

    @property
    def is_protected(self) -> bool:
        return bool(self.secret_hash)

    def touch(self) -> None:
        """Mark the row dirty so the version check covers this mutation."""
        self.updated_at = utcnow()

    def get_round(self, round_number: int) -> Optional["Round"]:
        for round_ in self.rounds:
            if round_.round_number == round_number:
                return round_
        return None

    def get_player(self, player_id: int) -> Optional["Player"]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def __repr__(self) -> str:
        return (
            f"<Tournament(id={self.id}, name='{self.name}', "
            f"status={self.status.name if self.status else None})>"
        )


class Player(Base):
    """
    A registered player and their running statistics.

    wins/losses/points are cumulative over the whole tournament.
    round_wins/round_losses count results within the player's current stage;
    formats with a single stage never reset them, group formats reset them
    when a player advances to the finals.
    """
    __tablename__ = "tournament_players"

    id: Mapped[int] = mapped_column(primary_key=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
    )

    # Display name, unique within the tournament (case-sensitive)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    round_wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    round_losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Group / bracket label (format-dependent, empty by default)
    group: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    tournament: Mapped["Tournament"] = relationship(
        back_populates="players", lazy="raise_on_sql"
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "name", name="uq_player_tournament_name"),
        Index("idx_tournament_players_tournament", "tournament_id"),
    )

    @property
    def total_matches(self) -> int:
        return self.wins + self.losses

    @property
    def round_matches(self) -> int:
        return self.round_wins + self.round_losses

    @property
    def win_rate(self) -> float:
        """Fraction of matches won; 0.0 before the first result."""
        if self.total_matches == 0:
            return 0.0
        return self.wins / self.total_matches

    def record_win(self, points: int) -> None:
        self.wins += 1
        self.round_wins += 1
        self.points += points

    def record_loss(self) -> None:
        self.losses += 1
        self.round_losses += 1

    def __repr__(self) -> str:
        return f"<Player(id={self.id}, name='{self.name}', {self.wins}-{self.losses})>"


class Round(Base):
    """
    One round of a tournament.

    is_completed is true exactly when every match in the round has a winner.
    The kind (Regular, Tiebreaker, Final) is decided by the pairing strategy.
    """
    __tablename__ = "rounds"

    id: Mapped[int] = mapped_column(primary_key=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[RoundKind] = mapped_column(
        Enum(RoundKind, native_enum=False, length=20),
        nullable=False,
        default=RoundKind.REGULAR,
    )
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    tournament: Mapped["Tournament"] = relationship(
        back_populates="rounds", lazy="raise_on_sql"
    )
    matches: Mapped[list["Match"]] = relationship(
        back_populates="round",
        cascade="all, delete-orphan",
        order_by="Match.id",
        lazy="raise_on_sql",
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "round_number", name="uq_round_tournament_number"),
    )

    def get_match(self, match_id: int) -> Optional["Match"]:
        for match in self.matches:
            if match.id == match_id:
                return match
        return None

    @property
    def all_resolved(self) -> bool:
        return all(match.winner_id is not None for match in self.matches)

    def __repr__(self) -> str:
        return f"<Round(id={self.id}, number={self.round_number}, kind={self.kind})>"


class Match(Base):
    """
    A pairing within a round.

    Two participants normally; a bye has only player_a and is created already
    resolved in player_a's favour. winner_id, when set, is one of the
    participants.
    """
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(primary_key=True)
    round_id: Mapped[int] = mapped_column(
        ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False
    )

    player_a_id: Mapped[int] = mapped_column(
        ForeignKey("tournament_players.id", ondelete="CASCADE"), nullable=False
    )
    # NULL for a bye
    player_b_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tournament_players.id", ondelete="CASCADE"), nullable=True
    )
    winner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tournament_players.id", ondelete="CASCADE"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    round: Mapped["Round"] = relationship(back_populates="matches", lazy="raise_on_sql")

    __table_args__ = (
        Index("idx_matches_round", "round_id"),
    )

    @property
    def is_bye(self) -> bool:
        return self.player_b_id is None

    @property
    def participant_ids(self) -> tuple[int, ...]:
        if self.player_b_id is None:
            return (self.player_a_id,)
        return (self.player_a_id, self.player_b_id)

    @property
    def is_resolved(self) -> bool:
        return self.winner_id is not None

    def opponent_of(self, player_id: int) -> Optional[int]:
        if player_id == self.player_a_id:
            return self.player_b_id
        if player_id == self.player_b_id:
            return self.player_a_id
        return None

    def __repr__(self) -> str:
        return (
            f"<Match(id={self.id}, a={self.player_a_id}, b={self.player_b_id}, "
            f"winner={self.winner_id})>"
        )
