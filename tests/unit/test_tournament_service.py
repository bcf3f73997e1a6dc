"""Tests for the tournament service against a real (SQLite) database."""

import asyncio
import logging

import pytest
from sqlalchemy.orm.exc import StaleDataError

from tourney.cache import TournamentCache
from tourney.db.models import RoundKind, Tournament, TournamentFormat, TournamentStatus
from tourney.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    UnauthorizedError,
    UnexpectedError,
    ValidationError,
)
from tourney.notifications import EventKind
from tourney.pairing.base import PairingStrategy
from tourney.pairing.factory import StrategyRegistry
from tourney.services import MatchResult, TournamentService


def _current_results(snapshot, pick=min):
    """Winners for every open match of the current round."""
    round_ = snapshot.get_round(snapshot.current_round)
    return [
        MatchResult(match.id, pick(match.player_ids))
        for match in round_.matches
        if match.winner_id is None
    ]


# =============================================================================
# Creation and registration
# =============================================================================

async def test_create_tournament(service, cache):
    created = await service.create_tournament("  Friday Swiss ", TournamentFormat.SWISS, "pw")

    assert created.name == "Friday Swiss"
    assert created.status == TournamentStatus.CREATED
    assert created.current_round == 0
    assert created.is_protected
    assert "secret_hash" not in created.model_dump()
    assert await cache.get(created.id) == created


@pytest.mark.parametrize("name", ["", "   ", None])
async def test_create_requires_a_name(service, name):
    with pytest.raises(ValidationError):
        await service.create_tournament(name, TournamentFormat.SWISS)


async def test_add_and_remove_players(service, cache, sink):
    created = await service.create_tournament("Cup", TournamentFormat.SWISS, "pw")

    alice = await service.add_player(created.id, " Alice ", "pw")
    bob = await service.add_player(created.id, "Bob", "pw")
    assert alice.name == "Alice"
    assert [p.name for p in (await cache.get(created.id)).players] == ["Alice", "Bob"]

    assert await service.remove_player(created.id, alice.id, "pw") == alice.id
    assert [p.id for p in (await cache.get(created.id)).players] == [bob.id]

    await cache.clear()
    reloaded = await service.get_tournament(created.id)
    assert [p.name for p in reloaded.players] == ["Bob"]
    assert sink.kinds() == [EventKind.PLAYER_ADDED, EventKind.PLAYER_ADDED, EventKind.PLAYER_REMOVED]


async def test_player_names_must_be_unique_and_not_blank(service):
    created = await service.create_tournament("Cup", TournamentFormat.SWISS)
    await service.add_player(created.id, "Alice", None)

    with pytest.raises(InvalidOperationError):
        await service.add_player(created.id, "Alice", None)
    with pytest.raises(ValidationError):
        await service.add_player(created.id, "  ", None)

    # Case-sensitive
    await service.add_player(created.id, "alice", None)


async def test_remove_unknown_player(service):
    created = await service.create_tournament("Cup", TournamentFormat.SWISS)
    with pytest.raises(NotFoundError):
        await service.remove_player(created.id, 999, None)


async def test_wrong_secret_is_rejected_and_nothing_changes(service, sink):
    created = await service.create_tournament("Cup", TournamentFormat.SWISS, "pw")

    with pytest.raises(UnauthorizedError):
        await service.add_player(created.id, "Alice", "nope")

    assert (await service.get_tournament(created.id)).players == ()
    assert sink.events == []


async def test_registration_closes_on_start(service, create_with_players):
    snapshot = await create_with_players(3)
    await service.start_tournament(snapshot.id, None)

    with pytest.raises(InvalidOperationError):
        await service.add_player(snapshot.id, "Late", None)
    with pytest.raises(InvalidOperationError):
        await service.remove_player(snapshot.id, snapshot.players[0].id, None)


# =============================================================================
# Start and advance
# =============================================================================

async def test_two_players_cannot_start_three_can(service, create_with_players):
    two = await create_with_players(2)
    with pytest.raises(InvalidOperationError):
        await service.start_tournament(two.id, None)

    three = await create_with_players(3)
    started = await service.start_tournament(three.id, None)
    assert started.status == TournamentStatus.IN_PROGRESS
    assert started.started_at is not None

    with pytest.raises(InvalidOperationError):
        await service.start_tournament(three.id, None)


async def test_three_player_swiss_scenario(service, create_with_players):
    snapshot = await create_with_players(3)
    p1, p2, p3 = (p.id for p in snapshot.players)

    started = await service.start_tournament(snapshot.id, None)
    first = started.get_round(1)
    assert started.current_round == 1
    assert sorted(m.player_ids for m in first.matches) == [(p1, p2), (p3,)]
    bye = next(m for m in first.matches if m.is_bye)
    assert bye.winner_id == p3

    advanced = await service.advance_round(snapshot.id, None, _current_results(started))

    assert advanced.status == TournamentStatus.IN_PROGRESS
    assert advanced.current_round == 2
    assert advanced.get_round(1).is_completed
    second = advanced.get_round(2)
    assert not second.is_completed
    assert sorted(m.player_ids for m in second.matches) == [(p1, p3), (p2,)]
    assert second.kind == RoundKind.FINAL


async def test_swiss_lifecycle_to_winner(service, sink, create_with_players):
    snapshot = await create_with_players(4, secret="pw")
    current = await service.start_tournament(snapshot.id, "pw")

    while current.status != TournamentStatus.COMPLETED:
        current = await service.advance_round(snapshot.id, "pw", _current_results(current))

    assert current.current_round == 2
    assert current.winner_id == snapshot.players[0].id
    assert current.completed_at is not None
    assert all(r.is_completed for r in current.rounds)
    assert sink.kinds()[-4:] == [
        EventKind.TOURNAMENT_STARTED,
        EventKind.ROUND_ADVANCED,
        EventKind.ROUND_ADVANCED,
        EventKind.WINNER_SET,
    ]

    with pytest.raises(InvalidOperationError):
        await service.advance_round(snapshot.id, "pw", [])
    with pytest.raises(InvalidOperationError):
        await service.update_tournament_name(snapshot.id, "Renamed", "pw")


async def test_group_stage_lifecycle_to_winner(service, create_with_players):
    snapshot = await create_with_players(3, TournamentFormat.GROUP_STAGE)
    current = await service.start_tournament(snapshot.id, None)

    for _ in range(10):
        if current.status == TournamentStatus.COMPLETED:
            break
        current = await service.advance_round(snapshot.id, None, _current_results(current))

    assert current.status == TournamentStatus.COMPLETED
    assert [r.kind for r in current.rounds] == [RoundKind.REGULAR] * 3 + [RoundKind.FINAL]
    assert current.winner_id == snapshot.players[0].id
    finalists = [p for p in current.players if p.group == "Final"]
    assert len(finalists) == 2


async def test_unresolved_round_rolls_back(service, cache, create_with_players):
    snapshot = await create_with_players(4)
    started = await service.start_tournament(snapshot.id, None)
    partial = _current_results(started)[:1]

    with pytest.raises(InvalidOperationError):
        await service.advance_round(snapshot.id, None, partial)

    await cache.clear()
    reloaded = await service.get_tournament(snapshot.id)
    assert reloaded.current_round == 1
    assert len(reloaded.rounds) == 1
    assert all(m.winner_id is None for m in reloaded.get_round(1).matches)
    assert all(p.wins == 0 for p in reloaded.players)


async def test_concurrent_advance_only_applies_once(service, create_with_players, cache):
    snapshot = await create_with_players(4)
    started = await service.start_tournament(snapshot.id, None)
    results = _current_results(started)

    outcomes = await asyncio.gather(
        service.advance_round(snapshot.id, None, results),
        service.advance_round(snapshot.id, None, results),
        return_exceptions=True,
    )

    succeeded = [o for o in outcomes if not isinstance(o, Exception)]
    failed = [o for o in outcomes if isinstance(o, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], InvalidOperationError)

    await cache.clear()
    reloaded = await service.get_tournament(snapshot.id)
    assert [r.round_number for r in reloaded.rounds] == [1, 2]
    assert sum(p.wins for p in reloaded.players) == 2


# =============================================================================
# Rename, delete, challenge, list
# =============================================================================

async def test_rename(service, sink):
    created = await service.create_tournament("Cup", TournamentFormat.SWISS, "pw")

    renamed = await service.update_tournament_name(created.id, "Grand Cup", "pw")

    assert renamed.name == "Grand Cup"
    assert sink.kinds() == [EventKind.TOURNAMENT_UPDATED]
    with pytest.raises(ValidationError):
        await service.update_tournament_name(created.id, " ", "pw")


async def test_delete_removes_everything(service, cache, sink, create_with_players):
    snapshot = await create_with_players(3, secret="pw")
    await service.start_tournament(snapshot.id, "pw")

    assert await service.delete_tournament(snapshot.id, "pw") is True

    assert await cache.get(snapshot.id) is None
    assert sink.kinds()[-1] == EventKind.TOURNAMENT_DELETED
    with pytest.raises(NotFoundError):
        await service.get_tournament(snapshot.id)
    with pytest.raises(NotFoundError):
        await service.challenge_secret(snapshot.id, "pw")
    with pytest.raises(NotFoundError):
        await service.delete_tournament(snapshot.id, "pw")


async def test_challenge_secret(service):
    protected = await service.create_tournament("Locked", TournamentFormat.SWISS, "pw")
    open_ = await service.create_tournament("Open", TournamentFormat.SWISS)

    assert await service.challenge_secret(protected.id, "pw")
    assert not await service.challenge_secret(protected.id, "wrong")
    assert await service.challenge_secret(open_.id, "anything")
    assert await service.challenge_secret(open_.id, "")


async def test_list_tournaments(service):
    first = await service.create_tournament("First", TournamentFormat.SWISS)
    second = await service.create_tournament("Second", TournamentFormat.GROUP_STAGE, "pw")
    await service.add_player(first.id, "Alice", None)

    summaries = await service.list_tournaments()

    assert [s.id for s in summaries] == [second.id, first.id]
    assert [s.player_count for s in summaries] == [0, 1]
    assert summaries[0].is_protected


async def test_get_tournament_populates_cache(service, cache):
    created = await service.create_tournament("Cup", TournamentFormat.SWISS)
    await cache.clear()

    loaded = await service.get_tournament(created.id)

    assert await cache.get(created.id) == loaded


class GatedCache(TournamentCache):
    """Cache whose put() waits until the test lets it through."""

    def __init__(self):
        super().__init__()
        self.put_entered = asyncio.Event()
        self.release = asyncio.Event()

    async def put(self, snapshot):
        self.put_entered.set()
        await self.release.wait()
        return await super().put(snapshot)


async def test_read_racing_a_delete_does_not_cache_the_deleted_tournament(session_factory):
    cache = GatedCache()
    service = TournamentService(session_factory, cache)
    created = await service.create_tournament("Cup", TournamentFormat.SWISS, "pw")
    await cache.clear()

    reader = asyncio.create_task(service.get_tournament(created.id))
    await cache.put_entered.wait()
    deleter = asyncio.create_task(service.delete_tournament(created.id, "pw"))
    # The delete must not get past the pending load
    done, _ = await asyncio.wait({deleter}, timeout=0.2)
    assert not done

    cache.release.set()
    loaded, deleted = await asyncio.gather(reader, deleter)

    assert loaded.id == created.id
    assert deleted is True
    assert await cache.get(created.id) is None
    with pytest.raises(NotFoundError):
        await service.get_tournament(created.id)
    with pytest.raises(NotFoundError):
        await service.challenge_secret(created.id, "pw")


@pytest.mark.parametrize("min_players", [0, 2])
def test_service_rejects_too_small_minimum_field(session_factory, cache, min_players):
    with pytest.raises(ValueError, match="at least 3"):
        TournamentService(session_factory, cache, min_players_to_start=min_players)


# =============================================================================
# Failure handling
# =============================================================================

class BrokenStrategy(PairingStrategy):
    def create_matches_for_round(self, tournament, round_):
        raise RuntimeError("pairing exploded")

    def should_complete_tournament(self, tournament):
        return False

    def determine_tournament_winner(self, tournament):
        raise RuntimeError("unreachable")


async def test_unexpected_errors_are_wrapped_and_leave_state_alone(
    session_factory, cache, sink, caplog
):
    registry = StrategyRegistry()
    registry.register(TournamentFormat.SWISS, BrokenStrategy)
    service = TournamentService(session_factory, cache, sink=sink, registry=registry)

    created = await service.create_tournament("Cup", TournamentFormat.SWISS)
    for name in ("A", "B", "C"):
        await service.add_player(created.id, name, None)
    events_before = list(sink.events)

    with caplog.at_level(logging.ERROR, logger="tourney.services.tournament_service"):
        with pytest.raises(UnexpectedError) as excinfo:
            await service.start_tournament(created.id, None)

    assert "pairing exploded" not in excinfo.value.message
    assert "starting tournament" in caplog.text
    assert (await cache.get(created.id)).status == TournamentStatus.CREATED
    assert sink.events == events_before

    await cache.clear()
    reloaded = await service.get_tournament(created.id)
    assert reloaded.status == TournamentStatus.CREATED
    assert reloaded.rounds == ()


async def test_sink_failures_do_not_fail_operations(session_factory, cache, caplog):
    class ExplodingSink:
        async def publish(self, event):
            raise RuntimeError("sink down")

    service = TournamentService(session_factory, cache, sink=ExplodingSink())
    created = await service.create_tournament("Cup", TournamentFormat.SWISS)

    with caplog.at_level(logging.ERROR, logger="tourney.services.tournament_service"):
        player = await service.add_player(created.id, "Alice", None)

    assert player.name == "Alice"
    assert "Notification sink failed" in caplog.text


async def test_stale_writes_surface_as_conflicts(service):
    async def stale():
        raise StaleDataError("version mismatch")

    with pytest.raises(ConflictError) as excinfo:
        await service._run("testing", 1, stale)
    assert excinfo.value.retryable


async def test_concurrent_sessions_conflict_on_version(service, session_factory):
    created = await service.create_tournament("Cup", TournamentFormat.SWISS)

    async with session_factory() as first, session_factory() as second:
        mine = await first.get(Tournament, created.id)
        theirs = await second.get(Tournament, created.id)

        mine.name = "Mine"
        mine.touch()
        await first.commit()

        theirs.name = "Theirs"
        theirs.touch()
        with pytest.raises(StaleDataError):
            await second.commit()
