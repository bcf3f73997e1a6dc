"""
Match result processing for a single round.

Takes the winners submitted for a round, applies them to the matches and to
the players' statistics, and reports whether the round is now fully
resolved. The orchestrator only advances when it is.

Rules:
- The whole batch is validated before anything is applied, so a bad entry
  leaves the round and every player untouched.
- A match must belong to the round and the winner must be one of its
  participants.
- A match that already has a winner cannot be resolved again; statistics are
  never counted twice. Byes are the one exception: they are resolved by the
  system when the round is created, so resubmitting a bye for its own player
  is accepted and ignored.
- Updates are additive (+1 win, +1 loss, +points), so the order of results
  inside a batch does not change the outcome.
- Completion is decided by re-scanning every match in the round, not just
  the submitted ones: a partial submission leaves the round open.

Usage:
    processor = MatchResultProcessor(points_per_win=1)
    completed = processor.process_match_winners(
        round_, [MatchResult(match_id=10, winner_id=3)], tournament.players
    )
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from tourney.db.models import Match, Player, Round, utcnow
from tourney.exceptions import InvalidOperationError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """A submitted result: who won which match."""
    match_id: int
    winner_id: int


class MatchResultProcessor:
    """Applies submitted winners to a round and its players."""

    def __init__(self, points_per_win: int = 1):
        self.points_per_win = points_per_win

    def process_match_winners(
        self,
        round_: Round,
        results: Iterable[MatchResult],
        players: Iterable[Player],
    ) -> bool:
        """
        Apply results to round_ and return whether every match now has a winner.

        Args:
            round_: The round the results belong to (matches loaded)
            results: Submitted (match_id, winner_id) pairs
            players: The tournament's players, for statistics updates

        Raises:
            ValidationError: unknown match, winner not a participant, the same
                match twice in the batch
            InvalidOperationError: a match in the batch is already resolved
        """
        players_by_id = {player.id: player for player in players}
        to_apply = self._validate(round_, list(results), players_by_id)

        now = utcnow()
        for match, winner_id in to_apply:
            loser_id = match.opponent_of(winner_id)
            match.winner_id = winner_id
            match.completed_at = now
            players_by_id[winner_id].record_win(self.points_per_win)
            if loser_id is not None:
                players_by_id[loser_id].record_loss()

        round_.is_completed = round_.all_resolved
        logger.debug(
            "Round %s: applied %d results, completed=%s",
            round_.round_number, len(to_apply), round_.is_completed,
        )
        return round_.is_completed

    @staticmethod
    def _validate(
        round_: Round,
        results: list[MatchResult],
        players_by_id: dict[int, Player],
    ) -> list[tuple[Match, int]]:
        seen: set[int] = set()
        to_apply: list[tuple[Match, int]] = []

        for result in results:
            if result.match_id in seen:
                raise ValidationError(
                    f"Match {result.match_id} appears more than once in the submitted results"
                )
            seen.add(result.match_id)

            match = round_.get_match(result.match_id)
            if match is None:
                raise ValidationError(
                    f"Match {result.match_id} is not part of round {round_.round_number}"
                )
            if result.winner_id not in match.participant_ids:
                raise ValidationError(
                    f"Player {result.winner_id} did not play in match {match.id}"
                )
            if any(pid not in players_by_id for pid in match.participant_ids):
                raise ValidationError(f"Match {match.id} references an unknown player")

            if match.is_resolved:
                if match.is_bye and match.winner_id == result.winner_id:
                    continue
                raise InvalidOperationError(f"Match {match.id} already has a winner")

            to_apply.append((match, result.winner_id))

        return to_apply
