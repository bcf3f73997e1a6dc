"""
Tourney services - business logic on top of the tournament aggregate.

- TournamentService: lifecycle state machine and facade for every operation
- MatchResultProcessor: applies a round's submitted winners
- with_retry: retry shell for transient storage failures

Usage:
    from tourney.services import TournamentService, MatchResult
"""

from tourney.services.match_results import MatchResult, MatchResultProcessor
from tourney.services.retry import is_transient, with_retry
from tourney.services.tournament_service import TournamentService

__all__ = [
    "TournamentService",
    "MatchResult",
    "MatchResultProcessor",
    "with_retry",
    "is_transient",
]
