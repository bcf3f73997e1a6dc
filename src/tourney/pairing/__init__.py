"""
Pairing strategies, one per tournament format.

- Swiss: fixed number of rounds, score-bracket pairing without rematches
- Group stage: round-robin groups, finals round robin, tiebreakers

The round orchestrator only depends on the PairingStrategy contract and
looks strategies up with get_strategy().
"""

from tourney.pairing.base import PairingStrategy
from tourney.pairing.factory import StrategyRegistry, default_registry, get_strategy
from tourney.pairing.group_stage import GroupStageStrategy
from tourney.pairing.standings import rank_players, standings_key
from tourney.pairing.swiss import SwissStrategy, required_rounds

__all__ = [
    "PairingStrategy",
    "StrategyRegistry",
    "default_registry",
    "get_strategy",
    "SwissStrategy",
    "GroupStageStrategy",
    "rank_players",
    "standings_key",
    "required_rounds",
]
