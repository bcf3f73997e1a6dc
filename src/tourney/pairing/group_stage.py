"""
Group stage followed by finals (the "Champions Meeting" format).

Stages:
    Groups      Players are seeded into groups of 3-4 by registration order
                (snake seeding; five or fewer players form a single group A)
                and play a round robin inside their group. Regular rounds.
    Finals      The winner of every group advances (top two when there is
                only one group). Finalists are relabelled "Final", their
                stage counters are reset and they play a round robin among
                themselves. Final rounds.
    Tiebreaker  If several finalists share the most final-stage wins once the
                final rounds are done, the tied leaders are paired in
                standings order (an odd one out gets a bye). Every tiebreaker
                round at least halves the tied group, so this terminates.

Round robins use the circle method: one player stays fixed, the others
rotate one seat per round, and an odd group gets a phantom seat whose
opponent has a bye. A group of size n therefore needs n-1 rounds when n is
even and n rounds when odd, which is 3 rounds for both 3- and 4-player
groups, so every group finishes together. Players whose odd group has them
sitting out a round are paired against each other across groups; only the
last one left over (odd field) takes a real bye.

Within a stage, players are compared by stage wins (round_wins) first and
then by the regular standings order.
"""

import logging
import math
from itertools import groupby
from typing import Optional

from tourney.db.models import Player, Round, RoundKind, Tournament, TournamentFormat
from tourney.pairing.base import PairingStrategy
from tourney.pairing.standings import standings_key

logger = logging.getLogger(__name__)

FINAL_GROUP = "Final"
SINGLE_GROUP_LIMIT = 5
TARGET_GROUP_SIZE = 4


def stage_key(player: Player) -> tuple:
    """Stage wins first, then the regular standings order."""
    return (-player.round_wins,) + standings_key(player)


def group_label(index: int) -> str:
    """
    Examples:
        >>> group_label(0)
        'A'
        >>> group_label(2)
        'C'
    """
    return chr(ord("A") + index)


def group_count(player_count: int) -> int:
    if player_count <= SINGLE_GROUP_LIMIT:
        return 1
    return math.ceil(player_count / TARGET_GROUP_SIZE)


def round_robin_rounds(size: int) -> int:
    """Rounds needed for everyone in a group of this size to meet once."""
    if size <= 1:
        return 0
    return size - 1 if size % 2 == 0 else size


def round_robin_pairs(
    members: list[Player],
    round_index: int,
) -> list[tuple[Player, Optional[Player]]]:
    """
    Pairings for one round of a circle-method round robin.

    A None opponent means a bye.

    Examples:
        members [1, 2, 3, 4], round 0  ->  (1, 4), (2, 3)
        members [1, 2, 3, 4], round 1  ->  (1, 3), (4, 2)
    """
    seats: list[Optional[Player]] = list(members)
    if len(seats) % 2 == 1:
        seats.append(None)
    if len(seats) < 2:
        return []

    fixed, rotating = seats[0], seats[1:]
    shift = round_index % len(rotating)
    if shift:
        rotating = rotating[-shift:] + rotating[:-shift]
    order = [fixed] + rotating

    half = len(order) // 2
    pairs: list[tuple[Player, Optional[Player]]] = []
    for i in range(half):
        first, second = order[i], order[len(order) - 1 - i]
        if first is None:
            first, second = second, None
        pairs.append((first, second))
    return pairs


class GroupStageStrategy(PairingStrategy):
    """Groups, then a finals round robin, then tiebreakers until one leader remains."""

    format = TournamentFormat.GROUP_STAGE

    def create_matches_for_round(self, tournament: Tournament, round_: Round) -> None:
        previous = [r for r in tournament.rounds if r is not round_]
        in_finals = any(r.kind in (RoundKind.FINAL, RoundKind.TIEBREAKER) for r in previous)

        if not previous:
            self._assign_groups(tournament.players)

        if not in_finals:
            groups = self._groups(tournament.players)
            regular_done = sum(1 for r in previous if r.kind == RoundKind.REGULAR)
            needed = max(round_robin_rounds(len(m)) for m in groups.values())
            if regular_done < needed:
                round_.kind = RoundKind.REGULAR
                self._add_pairs(round_, self._group_round_pairs(groups, regular_done))
                return
            self._advance_finalists(tournament, groups)

        finalists = self._finalists(tournament.players)
        finals_done = sum(1 for r in previous if r.kind == RoundKind.FINAL)
        if finals_done < round_robin_rounds(len(finalists)):
            round_.kind = RoundKind.FINAL
            # Seats follow registration order so the rotation is stable across rounds
            seated = sorted(finalists, key=lambda p: p.id)
            self._add_pairs(round_, round_robin_pairs(seated, finals_done))
            return

        leaders = self._tied_leaders(finalists)
        round_.kind = RoundKind.TIEBREAKER
        logger.info(
            "Tournament %s: tiebreaker round %s between %d finalists",
            tournament.id, round_.round_number, len(leaders),
        )
        pairs: list[tuple[Player, Optional[Player]]] = list(zip(leaders[0::2], leaders[1::2]))
        if len(leaders) % 2 == 1:
            pairs.append((leaders[-1], None))
        self._add_pairs(round_, pairs)

    def should_complete_tournament(self, tournament: Tournament) -> bool:
        if not all(r.is_completed for r in tournament.rounds):
            return False
        finals_done = sum(1 for r in tournament.rounds if r.kind == RoundKind.FINAL)
        if finals_done == 0:
            return False
        finalists = self._finalists(tournament.players)
        if finals_done < round_robin_rounds(len(finalists)):
            return False
        return len(self._tied_leaders(finalists)) == 1

    def determine_tournament_winner(self, tournament: Tournament) -> Player:
        finalists = self._finalists(tournament.players)
        if finalists:
            return finalists[0]
        return sorted(tournament.players, key=stage_key)[0]

    # =========================================================================
    # Stage helpers
    # =========================================================================

    @staticmethod
    def _assign_groups(players: list[Player]) -> None:
        """Snake-seed players (by registration order) into groups."""
        ordered = sorted(players, key=lambda p: p.id)
        count = group_count(len(ordered))
        for index, player in enumerate(ordered):
            row, position = divmod(index, count)
            if row % 2 == 1:
                position = count - 1 - position
            player.group = group_label(position)

    @staticmethod
    def _groups(players: list[Player]) -> dict[str, list[Player]]:
        ordered = sorted(players, key=lambda p: (p.group, p.id))
        return {
            label: list(members)
            for label, members in groupby(ordered, key=lambda p: p.group)
        }

    @staticmethod
    def _group_round_pairs(
        groups: dict[str, list[Player]],
        round_index: int,
    ) -> list[tuple[Player, Optional[Player]]]:
        """
        One group-stage round across all groups.

        Players sitting out their odd group's round meet each other across
        groups, so only an odd-sized field leaves anyone with a real bye.
        """
        pairs: list[tuple[Player, Optional[Player]]] = []
        sitting_out: list[Player] = []
        for label in sorted(groups):
            for first, second in round_robin_pairs(groups[label], round_index):
                if second is None:
                    sitting_out.append(first)
                else:
                    pairs.append((first, second))

        pairs.extend(zip(sitting_out[0::2], sitting_out[1::2]))
        if len(sitting_out) % 2 == 1:
            pairs.append((sitting_out[-1], None))
        return pairs

    def _advance_finalists(self, tournament: Tournament, groups: dict[str, list[Player]]) -> None:
        if len(groups) == 1:
            (members,) = groups.values()
            finalists = sorted(members, key=stage_key)[:2]
        else:
            finalists = [sorted(groups[label], key=stage_key)[0] for label in sorted(groups)]

        for player in finalists:
            player.group = FINAL_GROUP
            player.round_wins = 0
            player.round_losses = 0

        logger.info(
            "Tournament %s: group stage finished, finalists %s",
            tournament.id, [p.id for p in finalists],
        )

    @staticmethod
    def _finalists(players: list[Player]) -> list[Player]:
        return sorted((p for p in players if p.group == FINAL_GROUP), key=stage_key)

    @staticmethod
    def _tied_leaders(finalists: list[Player]) -> list[Player]:
        if not finalists:
            return []
        best = finalists[0].round_wins
        return [p for p in finalists if p.round_wins == best]

    def _add_pairs(self, round_: Round, pairs: list[tuple[Player, Optional[Player]]]) -> None:
        for player_a, player_b in pairs:
            if player_b is None:
                self.add_bye(round_, player_a)
            else:
                self.add_match(round_, player_a, player_b)
