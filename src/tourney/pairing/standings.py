"""
Standings order shared by pairing and winner selection.

Players are ranked by:
    1. points (desc)
    2. wins (desc)
    3. win rate (desc)
    4. player id (asc)

The last key is the documented deterministic tiebreak: when everything else
is level, the earlier-registered player ranks higher. The same order is used
to build Swiss brackets and to pick a tournament winner, so the standings a
player sees are the standings the engine acts on.
"""

from collections import Counter
from typing import Iterable

from tourney.db.models import Player, Round


def standings_key(player: Player) -> tuple:
    """Sort key placing the best-ranked player first."""
    return (-player.points, -player.wins, -player.win_rate, player.id)


def rank_players(players: Iterable[Player]) -> list[Player]:
    """Return players best-first by the standings order."""
    return sorted(players, key=standings_key)


def point_brackets(ranked: list[Player]) -> list[list[Player]]:
    """
    Split an already ranked list into groups of equal points.

    Brackets come out highest score first and keep the ranked order inside
    each bracket.

    Examples:
        points [3, 3, 2, 0, 0]  ->  [[p1, p2], [p3], [p4, p5]]
    """
    brackets: list[list[Player]] = []
    for player in ranked:
        if brackets and brackets[-1][0].points == player.points:
            brackets[-1].append(player)
        else:
            brackets.append([player])
    return brackets


def played_pairs(rounds: Iterable[Round]) -> set[frozenset[int]]:
    """All unordered player-id pairs that have already met in these rounds."""
    pairs: set[frozenset[int]] = set()
    for round_ in rounds:
        for match in round_.matches:
            if match.player_b_id is not None:
                pairs.add(frozenset((match.player_a_id, match.player_b_id)))
    return pairs


def bye_counts(rounds: Iterable[Round]) -> Counter:
    """How many byes each player id has received."""
    counts: Counter = Counter()
    for round_ in rounds:
        for match in round_.matches:
            if match.player_b_id is None:
                counts[match.player_a_id] += 1
    return counts
