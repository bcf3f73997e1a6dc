"""Strategy lookup keyed by tournament format."""

from __future__ import annotations

from typing import Callable, Optional

from tourney.config import settings
from tourney.db.models import TournamentFormat
from tourney.pairing.base import PairingStrategy
from tourney.pairing.group_stage import GroupStageStrategy
from tourney.pairing.swiss import SwissStrategy

StrategyFactory = Callable[[int], PairingStrategy]


class StrategyRegistry:
    """In-memory registry mapping each format to a strategy constructor."""

    def __init__(self) -> None:
        self._factories: dict[TournamentFormat, StrategyFactory] = {}

    def register(self, tournament_format: TournamentFormat, factory: StrategyFactory) -> None:
        if tournament_format in self._factories:
            raise ValueError(f"Strategy already registered: {tournament_format.name}")
        self._factories[tournament_format] = factory

    def get(self, tournament_format: TournamentFormat, points_per_win: Optional[int] = None) -> PairingStrategy:
        try:
            factory = self._factories[tournament_format]
        except KeyError as exc:
            raise KeyError(f"Unknown tournament format: {tournament_format}") from exc
        if points_per_win is None:
            points_per_win = settings.points_per_win
        return factory(points_per_win)

    def formats(self) -> list[TournamentFormat]:
        return list(self._factories)


def default_registry() -> StrategyRegistry:
    registry = StrategyRegistry()
    registry.register(TournamentFormat.SWISS, SwissStrategy)
    registry.register(TournamentFormat.GROUP_STAGE, GroupStageStrategy)
    return registry


_registry = default_registry()


def get_strategy(tournament_format: TournamentFormat, points_per_win: Optional[int] = None) -> PairingStrategy:
    """Strategy for a format from the built-in registry."""
    return _registry.get(tournament_format, points_per_win)
