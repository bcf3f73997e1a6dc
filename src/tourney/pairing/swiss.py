"""
Swiss-system pairing.

Every round, players are ranked by the standings order and paired against
opponents on the same score, never against someone they already played if
it can be avoided. The tournament runs a fixed number of rounds derived from
the field size:

    rounds = ceil(log2(N))      (3 players -> 2 rounds, 8 -> 3, 9 -> 4)

Pairing a round:
    1. Rank all players (points, wins, win rate, id).
    2. Odd field: the lowest-ranked player who has not had a bye yet sits
       out with a bye (a resolved one-player match counted as a win). If
       everyone has had one, the lowest-ranked player gets it again.
    3. Split the rest into point brackets and walk them top-down. Inside a
       bracket a depth-first search pairs each player with the best-ranked
       opponent they have not met, leaving at most one player over when the
       bracket is odd. Players left over are carried down into the next
       bracket, ahead of its own players.
    4. If players are still unpaired below the last bracket, brackets are
       dropped and the whole field is searched again for a rematch-free
       pairing (a low bracket can be stuck even when the field is not).
    5. Only when no rematch-free pairing exists at all are the players
       left over paired in rank order (1v2, 3v4, ...) accepting repeats.
       This is the only place a rematch can happen and it is logged.

The search is deterministic: the same standings and history always produce
the same pairings.
"""

import logging
import math
from typing import Optional

from tourney.db.models import Player, Round, RoundKind, Tournament, TournamentFormat
from tourney.pairing.base import PairingStrategy
from tourney.pairing.standings import (
    bye_counts,
    played_pairs,
    point_brackets,
    rank_players,
    standings_key,
)

logger = logging.getLogger(__name__)

Pairing = tuple[Player, Player]


def required_rounds(player_count: int) -> int:
    """
    Number of Swiss rounds for a field of this size.

    Examples:
        >>> required_rounds(3)
        2
        >>> required_rounds(8)
        3
        >>> required_rounds(9)
        4
    """
    if player_count <= 2:
        return 1
    return math.ceil(math.log2(player_count))


def pair_pool(
    pool: list[Player],
    history: set[frozenset[int]],
    max_unpaired: int,
) -> Optional[tuple[list[Pairing], list[Player]]]:
    """
    Pair a ranked pool without rematches, leaving at most max_unpaired over.

    Each player is matched with the best-ranked remaining opponent they have
    not met; backtracking happens only when that choice makes the rest of the
    pool impossible to pair. Leaving a player unpaired is tried last, so the
    leftovers are the lowest-ranked players whenever that works.

    Returns:
        (pairings, unpaired) or None when no arrangement fits the budget
    """
    failed: set[tuple[tuple[int, ...], int]] = set()

    def search(remaining: list[Player], budget: int):
        if not remaining:
            return [], []

        state = (tuple(p.id for p in remaining), budget)
        if state in failed:
            return None

        first, rest = remaining[0], remaining[1:]
        for index, candidate in enumerate(rest):
            if frozenset((first.id, candidate.id)) in history:
                continue
            found = search(rest[:index] + rest[index + 1:], budget)
            if found is not None:
                pairs, unpaired = found
                return [(first, candidate)] + pairs, unpaired

        if budget > 0:
            found = search(rest, budget - 1)
            if found is not None:
                pairs, unpaired = found
                return pairs, [first] + unpaired

        failed.add(state)
        return None

    return search(list(pool), max_unpaired)


def pair_brackets(
    brackets: list[list[Player]],
    history: set[frozenset[int]],
) -> tuple[list[Pairing], list[Player]]:
    """
    Pair point brackets top-down, carrying unpaired players down.

    Returns:
        (pairings, leftovers); leftovers are players who could not be paired
        without a rematch even in the lowest bracket
    """
    pairings: list[Pairing] = []
    carried: list[Player] = []

    for bracket in brackets:
        pool = carried + bracket
        allowed = len(pool) % 2
        found = pair_pool(pool, history, allowed)
        while found is None:
            allowed += 2
            found = pair_pool(pool, history, allowed)
        bracket_pairs, carried = found
        pairings.extend(bracket_pairs)

    return pairings, carried


class SwissStrategy(PairingStrategy):
    """Fixed-length Swiss tournament; the best-ranked player after the last round wins."""

    format = TournamentFormat.SWISS

    def create_matches_for_round(self, tournament: Tournament, round_: Round) -> None:
        previous = [r for r in tournament.rounds if r is not round_]
        history = played_pairs(previous)
        ranked = rank_players(tournament.players)

        bye_player = None
        if len(ranked) % 2 == 1:
            bye_player = self._choose_bye(ranked, bye_counts(previous))
            ranked = [p for p in ranked if p is not bye_player]

        pairings, leftovers = pair_brackets(point_brackets(ranked), history)

        if leftovers:
            whole_field = pair_pool(ranked, history, 0)
            if whole_field is not None:
                pairings, leftovers = whole_field

        if leftovers:
            leftovers = sorted(leftovers, key=standings_key)
            logger.warning(
                "Tournament %s round %s: %d players could not avoid a rematch; "
                "pairing them in rank order",
                tournament.id, round_.round_number, len(leftovers),
            )
            pairings.extend(zip(leftovers[0::2], leftovers[1::2]))

        for player_a, player_b in pairings:
            self.add_match(round_, player_a, player_b)
        if bye_player is not None:
            self.add_bye(round_, bye_player)

        if round_.round_number >= required_rounds(len(tournament.players)):
            round_.kind = RoundKind.FINAL
        else:
            round_.kind = RoundKind.REGULAR

        logger.debug(
            "Tournament %s round %s paired: %d matches, bye=%s",
            tournament.id, round_.round_number, len(round_.matches),
            bye_player.id if bye_player is not None else None,
        )

    def should_complete_tournament(self, tournament: Tournament) -> bool:
        if not all(r.is_completed for r in tournament.rounds):
            return False
        completed = sum(1 for r in tournament.rounds if r.is_completed)
        return completed >= required_rounds(len(tournament.players))

    def determine_tournament_winner(self, tournament: Tournament) -> Player:
        return rank_players(tournament.players)[0]

    @staticmethod
    def _choose_bye(ranked: list[Player], byes) -> Player:
        for player in reversed(ranked):
            if byes[player.id] == 0:
                return player
        return ranked[-1]
