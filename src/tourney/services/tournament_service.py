"""
Tournament service: the lifecycle state machine behind every operation.

    CREATED  --start-->  IN_PROGRESS  --last round resolved-->  COMPLETED

Every mutating operation follows the same sequence:

    1. AccessGuard checks the shared secret (creation excepted)
    2. the tournament's lock is taken, so operations on one tournament run
       one at a time
    3. one transaction loads the aggregate, mutates it (directly, through
       the pairing strategy or through the match result processor) and
       builds the resulting snapshot
    4. the transaction commits
    5. only then is the cache updated and a lifecycle event published

Any failure before the commit rolls the transaction back and leaves the
cache untouched. Transient storage failures re-run the whole transaction
(see with_retry). Business errors (tourney.exceptions) reach the caller
unchanged; anything else is logged with context and surfaced as
UnexpectedError.

Usage:
    from tourney.cache import TournamentCache
    from tourney.db import get_sessionmaker
    from tourney.services import TournamentService

    service = TournamentService(get_sessionmaker(), TournamentCache())
    created = await service.create_tournament("Friday Swiss", TournamentFormat.SWISS, "s3cret")
    await service.add_player(created.id, "Alice", "s3cret")
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from tourney.auth import AccessGuard, hash_secret
from tourney.cache import TournamentCache
from tourney.config import settings
from tourney.db.models import Tournament, TournamentFormat, TournamentStatus, utcnow
from tourney.db.repository import TournamentRepository
from tourney.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    TournamentError,
    UnauthorizedError,
    UnexpectedError,
    ValidationError,
)
from tourney.locks import TournamentLocks
from tourney.notifications import (
    EventKind,
    LifecycleEvent,
    NotificationSink,
    NullNotificationSink,
)
from tourney.pairing.base import PairingStrategy
from tourney.pairing.factory import StrategyRegistry, default_registry
from tourney.services.match_results import MatchResult, MatchResultProcessor
from tourney.services.retry import with_retry
from tourney.snapshots import PlayerSnapshot, TournamentSnapshot, TournamentSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TournamentService:
    """
    Facade over the tournament engine.

    Owns nothing global: the session factory, cache, sink, strategy registry
    and locks are all passed in (or defaulted) by whoever builds it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: TournamentCache,
        sink: Optional[NotificationSink] = None,
        registry: Optional[StrategyRegistry] = None,
        locks: Optional[TournamentLocks] = None,
        min_players_to_start: Optional[int] = None,
        points_per_win: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.sink = sink or NullNotificationSink()
        self.registry = registry or default_registry()
        self.locks = locks or TournamentLocks()
        self.guard = AccessGuard(session_factory, cache)
        if min_players_to_start is None:
            min_players_to_start = settings.min_players_to_start
        if min_players_to_start < 3:
            raise ValueError("min_players_to_start must be at least 3")
        self.min_players_to_start = min_players_to_start
        self.points_per_win = points_per_win if points_per_win is not None else settings.points_per_win
        self.processor = MatchResultProcessor(self.points_per_win)

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_tournaments(self) -> list[TournamentSummary]:
        """All tournaments, newest first. Never cached."""
        async def op() -> list[TournamentSummary]:
            async with self.session_factory() as session:
                rows = await TournamentRepository(session).list_all()
                return [TournamentSummary.from_model(t, count) for t, count in rows]

        return await self._run("listing tournaments", None, op)

    async def get_tournament(self, tournament_id: int) -> TournamentSnapshot:
        """
        Full snapshot, from the cache when present.

        A cache miss loads and stores under the tournament's lock, so a load
        can never put back a tournament that a concurrent delete removed.
        """
        cached = await self.cache.get(tournament_id)
        if cached is not None:
            return cached

        async def op() -> TournamentSnapshot:
            async with self.session_factory() as session:
                repo = TournamentRepository(session)
                tournament = await repo.get_by_id_with_complete_details(tournament_id)
                if tournament is None:
                    raise NotFoundError(f"Tournament {tournament_id} not found")
                return TournamentSnapshot.from_model(tournament)

        async with self.locks.hold(tournament_id):
            cached = await self.cache.get(tournament_id)
            if cached is not None:
                return cached
            snapshot = await self._run("loading tournament", tournament_id, op)
            await self.cache.put(snapshot)
        return snapshot

    async def challenge_secret(self, tournament_id: int, secret: Optional[str]) -> bool:
        """
        Check a secret without changing anything.

        Returns:
            True when the secret unlocks the tournament (always, if it is
            unprotected), False on mismatch

        Raises:
            NotFoundError: the tournament does not exist
        """
        try:
            await self.guard.challenge(tournament_id, secret)
        except UnauthorizedError:
            return False
        return True

    # =========================================================================
    # Tournament lifecycle
    # =========================================================================

    async def create_tournament(
        self,
        name: str,
        tournament_format: TournamentFormat,
        secret: Optional[str] = None,
    ) -> TournamentSnapshot:
        name = _clean_name(name, "Tournament name")
        try:
            tournament_format = TournamentFormat(tournament_format)
        except ValueError as exc:
            raise ValidationError(f"Unknown tournament format: {tournament_format}") from exc
        if tournament_format not in self.registry.formats():
            raise ValidationError(f"No pairing strategy for format {tournament_format.name}")

        secret_hash = await asyncio.to_thread(hash_secret, secret)

        async def op() -> TournamentSnapshot:
            async with self.session_factory() as session:
                async with session.begin():
                    now = utcnow()
                    tournament = TournamentRepository(session).create(Tournament(
                        name=name,
                        format=tournament_format,
                        status=TournamentStatus.CREATED,
                        secret_hash=secret_hash,
                        current_round=0,
                        winner_id=None,
                        created_at=now,
                        updated_at=now,
                        players=[],
                        rounds=[],
                    ))
                    await session.flush()
                    return TournamentSnapshot.from_model(tournament)

        snapshot = await self._run("creating tournament", None, op)
        await self.cache.replace(snapshot)
        logger.info(
            "Created tournament %s '%s' (%s%s)",
            snapshot.id, snapshot.name, tournament_format.name,
            ", protected" if snapshot.is_protected else "",
        )
        return snapshot

    async def start_tournament(self, tournament_id: int, secret: Optional[str]) -> TournamentSnapshot:
        await self.guard.challenge(tournament_id, secret)

        async def op() -> TournamentSnapshot:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = TournamentRepository(session)
                    tournament = await self._load_complete(repo, tournament_id)
                    if tournament.status != TournamentStatus.CREATED:
                        raise InvalidOperationError("Tournament has already been started")
                    if len(tournament.players) < self.min_players_to_start:
                        raise InvalidOperationError(
                            f"At least {self.min_players_to_start} players are required "
                            f"to start (have {len(tournament.players)})"
                        )

                    tournament.status = TournamentStatus.IN_PROGRESS
                    tournament.started_at = utcnow()
                    tournament.current_round = 1
                    repo.update(tournament)

                    round_ = await repo.create_round(tournament, 1)
                    self._strategy(tournament).create_matches_for_round(tournament, round_)
                    await session.flush()
                    return await self._snapshot(repo, tournament_id)

        async with self.locks.hold(tournament_id):
            snapshot = await self._run("starting tournament", tournament_id, op)
            await self.cache.replace(snapshot)
            logger.info(
                "Started tournament %s with %d players",
                tournament_id, len(snapshot.players),
            )
            await self._publish(EventKind.TOURNAMENT_STARTED, tournament_id, {
                "current_round": snapshot.current_round,
                "player_count": len(snapshot.players),
            })
        return snapshot

    async def advance_round(
        self,
        tournament_id: int,
        secret: Optional[str],
        match_results: Iterable[MatchResult],
    ) -> TournamentSnapshot:
        """
        Record the current round's results and move the tournament on.

        If every match of the current round now has a winner, either the
        tournament completes (winner set) or the next round is created and
        paired. Otherwise nothing is saved.

        Raises:
            InvalidOperationError: not in progress, a match already resolved,
                or the round still has matches without a winner
            ValidationError: a result that does not fit the round
        """
        await self.guard.challenge(tournament_id, secret)
        results = list(match_results)

        async def op() -> TournamentSnapshot:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = TournamentRepository(session)
                    tournament = await self._load_complete(repo, tournament_id)
                    if tournament.status != TournamentStatus.IN_PROGRESS:
                        raise InvalidOperationError("Tournament is not in progress")

                    round_ = tournament.get_round(tournament.current_round)
                    if round_ is None:
                        raise InvalidOperationError(
                            f"Round {tournament.current_round} does not exist"
                        )

                    completed = self.processor.process_match_winners(
                        round_, results, tournament.players
                    )
                    if not completed:
                        raise InvalidOperationError(
                            f"Round {round_.round_number} is not complete: "
                            "every match needs a winner"
                        )

                    strategy = self._strategy(tournament)
                    repo.update(tournament)
                    if strategy.should_complete_tournament(tournament):
                        winner = strategy.determine_tournament_winner(tournament)
                        tournament.winner_id = winner.id
                        tournament.status = TournamentStatus.COMPLETED
                        tournament.completed_at = utcnow()
                        await session.flush()
                    else:
                        tournament.current_round += 1
                        next_round = await repo.create_round(tournament, tournament.current_round)
                        strategy.create_matches_for_round(tournament, next_round)
                        await session.flush()
                    return await self._snapshot(repo, tournament_id)

        async with self.locks.hold(tournament_id):
            snapshot = await self._run("advancing round", tournament_id, op)
            await self.cache.replace(snapshot)

            completed_round = (
                snapshot.current_round
                if snapshot.status == TournamentStatus.COMPLETED
                else snapshot.current_round - 1
            )
            logger.info(
                "Tournament %s: round %d completed%s",
                tournament_id, completed_round,
                "" if snapshot.status == TournamentStatus.COMPLETED
                else f", round {snapshot.current_round} created",
            )
            await self._publish(EventKind.ROUND_ADVANCED, tournament_id, {
                "completed_round": completed_round,
                "current_round": snapshot.current_round,
                "status": snapshot.status.name,
            })

            if snapshot.status == TournamentStatus.COMPLETED:
                winner = snapshot.get_player(snapshot.winner_id)
                logger.info(
                    "Tournament %s completed, winner: %s",
                    tournament_id, winner.name if winner else snapshot.winner_id,
                )
                await self._publish(EventKind.WINNER_SET, tournament_id, {
                    "winner_id": snapshot.winner_id,
                    "winner_name": winner.name if winner else None,
                })
        return snapshot

    async def update_tournament_name(
        self,
        tournament_id: int,
        new_name: str,
        secret: Optional[str],
    ) -> TournamentSnapshot:
        await self.guard.challenge(tournament_id, secret)
        new_name = _clean_name(new_name, "Tournament name")

        async def op() -> TournamentSnapshot:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = TournamentRepository(session)
                    tournament = await self._load_complete(repo, tournament_id)
                    if tournament.status == TournamentStatus.COMPLETED:
                        raise InvalidOperationError("A completed tournament cannot be renamed")
                    tournament.name = new_name
                    repo.update(tournament)
                    await session.flush()
                    return await self._snapshot(repo, tournament_id)

        async with self.locks.hold(tournament_id):
            snapshot = await self._run("renaming tournament", tournament_id, op)
            await self.cache.replace(snapshot)
            await self._publish(EventKind.TOURNAMENT_UPDATED, tournament_id, {"name": snapshot.name})
        return snapshot

    async def delete_tournament(self, tournament_id: int, secret: Optional[str]) -> bool:
        await self.guard.challenge(tournament_id, secret)

        async def op() -> bool:
            async with self.session_factory() as session:
                async with session.begin():
                    deleted = await TournamentRepository(session).delete(tournament_id)
                    if not deleted:
                        raise NotFoundError(f"Tournament {tournament_id} not found")
                    return True

        async with self.locks.hold(tournament_id):
            deleted = await self._run("deleting tournament", tournament_id, op)
            await self.cache.invalidate(tournament_id)
            logger.info("Deleted tournament %s", tournament_id)
            await self._publish(EventKind.TOURNAMENT_DELETED, tournament_id, {})
        return deleted

    # =========================================================================
    # Registration
    # =========================================================================

    async def add_player(self, tournament_id: int, name: str, secret: Optional[str]) -> PlayerSnapshot:
        await self.guard.challenge(tournament_id, secret)
        name = _clean_name(name, "Player name")

        async def op() -> PlayerSnapshot:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = TournamentRepository(session)
                    tournament = await repo.get_by_id_with_players(tournament_id)
                    if tournament is None:
                        raise NotFoundError(f"Tournament {tournament_id} not found")
                    _require_registration_open(tournament)
                    if await repo.player_name_exists(tournament_id, name):
                        raise InvalidOperationError(f"A player named '{name}' is already registered")

                    player = repo.add_player(tournament, name)
                    repo.update(tournament)
                    try:
                        await session.flush()
                    except IntegrityError as exc:
                        raise InvalidOperationError(
                            f"A player named '{name}' is already registered"
                        ) from exc
                    return PlayerSnapshot.from_model(player)

        async with self.locks.hold(tournament_id):
            player = await self._run("adding player", tournament_id, op)
            await self.cache.mutate_players(tournament_id, add=player)
            logger.info("Tournament %s: added player %s '%s'", tournament_id, player.id, player.name)
            await self._publish(EventKind.PLAYER_ADDED, tournament_id, {
                "player_id": player.id,
                "name": player.name,
            })
        return player

    async def remove_player(self, tournament_id: int, player_id: int, secret: Optional[str]) -> int:
        await self.guard.challenge(tournament_id, secret)

        async def op() -> int:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = TournamentRepository(session)
                    tournament = await repo.get_by_id_with_players(tournament_id)
                    if tournament is None:
                        raise NotFoundError(f"Tournament {tournament_id} not found")
                    _require_registration_open(tournament)
                    player = tournament.get_player(player_id)
                    if player is None:
                        raise NotFoundError(
                            f"Player {player_id} not found in tournament {tournament_id}"
                        )
                    await repo.remove_player(tournament, player)
                    repo.update(tournament)
                    await session.flush()
                    return player_id

        async with self.locks.hold(tournament_id):
            removed_id = await self._run("removing player", tournament_id, op)
            await self.cache.mutate_players(tournament_id, remove=removed_id)
            logger.info("Tournament %s: removed player %s", tournament_id, removed_id)
            await self._publish(EventKind.PLAYER_REMOVED, tournament_id, {"player_id": removed_id})
        return removed_id

    # =========================================================================
    # Internals
    # =========================================================================

    def _strategy(self, tournament: Tournament) -> PairingStrategy:
        return self.registry.get(tournament.format, self.points_per_win)

    @staticmethod
    async def _load_complete(repo: TournamentRepository, tournament_id: int) -> Tournament:
        tournament = await repo.get_by_id_with_complete_details(tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return tournament

    @staticmethod
    async def _snapshot(repo: TournamentRepository, tournament_id: int) -> TournamentSnapshot:
        """Re-read the flushed graph and freeze it."""
        tournament = await repo.get_by_id_with_complete_details(tournament_id)
        return TournamentSnapshot.from_model(tournament)

    async def _run(
        self,
        description: str,
        tournament_id: Optional[int],
        func: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run one transactional operation with retries and error translation.

        Raises:
            TournamentError: business errors unchanged
            ConflictError: a concurrent writer changed the tournament first
            UnexpectedError: any other failure (details are logged only)
        """
        try:
            return await with_retry(func, description=description)
        except TournamentError:
            raise
        except StaleDataError as exc:
            logger.warning("Conflict while %s (tournament %s): %s", description, tournament_id, exc)
            raise ConflictError(
                "The tournament was modified concurrently; reload and try again"
            ) from exc
        except IntegrityError as exc:
            logger.warning("Conflict while %s (tournament %s): %s", description, tournament_id, exc)
            raise ConflictError(
                "The tournament was modified concurrently; reload and try again"
            ) from exc
        except Exception as exc:
            logger.exception("Unexpected error while %s (tournament %s)", description, tournament_id)
            raise UnexpectedError(f"An unexpected error occurred while {description}") from exc

    async def _publish(self, kind: EventKind, tournament_id: int, payload: dict[str, Any]) -> None:
        event = LifecycleEvent(kind=kind, tournament_id=tournament_id, payload=payload)
        try:
            await self.sink.publish(event)
        except Exception:
            logger.exception(
                "Notification sink failed for %s on tournament %s", kind.value, tournament_id
            )


def _clean_name(value: Optional[str], label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} cannot be empty")
    return cleaned


def _require_registration_open(tournament: Tournament) -> None:
    if tournament.status != TournamentStatus.CREATED:
        raise InvalidOperationError("Players can only be changed before the tournament starts")
