"""Pairing strategy contract shared by every tournament format."""

from __future__ import annotations

from abc import ABC, abstractmethod

from tourney.db.models import Match, Player, Round, Tournament, TournamentFormat, utcnow


class PairingStrategy(ABC):
    """
    Decides who plays whom each round, when a tournament ends, and who won.

    The round orchestrator only ever calls the three abstract methods below;
    anything format-specific (groups, stages, tiebreak rounds) stays inside
    the strategy and is derived from the aggregate itself, so a strategy holds
    no state between calls.
    """

    format: TournamentFormat

    def __init__(self, points_per_win: int = 1):
        self.points_per_win = points_per_win

    @abstractmethod
    def create_matches_for_round(self, tournament: Tournament, round_: Round) -> None:
        """
        Populate round_.matches from the current standings.

        round_ is already attached to tournament.rounds and persisted; the
        strategy also sets round_.kind. Byes are created resolved.
        """

    @abstractmethod
    def should_complete_tournament(self, tournament: Tournament) -> bool:
        """Evaluated after each round resolves."""

    @abstractmethod
    def determine_tournament_winner(self, tournament: Tournament) -> Player:
        """Deterministic winner; only called once should_complete_tournament holds."""

    # =========================================================================
    # Helpers for subclasses
    # =========================================================================

    @staticmethod
    def add_match(round_: Round, player_a: Player, player_b: Player) -> Match:
        match = Match(
            player_a_id=player_a.id,
            player_b_id=player_b.id,
            winner_id=None,
            created_at=utcnow(),
        )
        round_.matches.append(match)
        return match

    def add_bye(self, round_: Round, player: Player) -> Match:
        """Create a single-player match already won by that player."""
        now = utcnow()
        match = Match(
            player_a_id=player.id,
            player_b_id=None,
            winner_id=player.id,
            created_at=now,
            completed_at=now,
        )
        round_.matches.append(match)
        player.record_win(self.points_per_win)
        return match
