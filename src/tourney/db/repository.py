"""
Persistence gateway for the tournament aggregate.

All queries needed by the engine live here so that services never build SQL
themselves. Loads come in three depths:

- bare: the tournament row only (secret checks, renames)
- with players: registration changes and start
- complete details: players, rounds and matches, eagerly loaded with
  selectinload (async sessions cannot lazy-load)

The repository never commits. Callers own the transaction.
"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tourney.db.models import Player, Round, RoundKind, Tournament, utcnow


class TournamentRepository:
    """Tournament CRUD and graph loads over an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Tournaments
    # =========================================================================

    async def list_all(self) -> list[tuple[Tournament, int]]:
        """
        Return every tournament with its player count, newest first.

        Only the tournament rows and an aggregate count are loaded; this is
        the light projection used for listings.
        """
        player_count = (
            select(Player.tournament_id, func.count(Player.id).label("player_count"))
            .group_by(Player.tournament_id)
            .subquery()
        )
        stmt = (
            select(Tournament, func.coalesce(player_count.c.player_count, 0))
            .outerjoin(player_count, player_count.c.tournament_id == Tournament.id)
            .order_by(Tournament.created_at.desc(), Tournament.id.desc())
        )
        result = await self.session.execute(stmt)
        return [(tournament, int(count)) for tournament, count in result.all()]

    async def get_by_id(self, tournament_id: int) -> Optional[Tournament]:
        return await self.session.get(Tournament, tournament_id)

    async def get_by_id_with_players(self, tournament_id: int) -> Optional[Tournament]:
        stmt = (
            select(Tournament)
            .options(selectinload(Tournament.players))
            .where(Tournament.id == tournament_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id_with_complete_details(self, tournament_id: int) -> Optional[Tournament]:
        """
        Load the whole aggregate: players, rounds and their matches.

        populate_existing makes this a refresh when the objects are already in
        the session, so it can be used after a flush to obtain the graph as
        the database now sees it.
        """
        stmt = (
            select(Tournament)
            .options(
                selectinload(Tournament.players),
                selectinload(Tournament.rounds).selectinload(Round.matches),
            )
            .where(Tournament.id == tournament_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def create(self, tournament: Tournament) -> Tournament:
        self.session.add(tournament)
        return tournament

    def update(self, tournament: Tournament) -> Tournament:
        tournament.touch()
        self.session.add(tournament)
        return tournament

    async def delete(self, tournament_id: int) -> bool:
        """
        Delete a tournament and everything it owns.

        Matches are flushed out first: they reference players, and the ORM
        has no relationship from player to match to order the deletes by.

        Returns:
            False when there was nothing to delete
        """
        tournament = await self.get_by_id_with_complete_details(tournament_id)
        if tournament is None:
            return False
        for round_ in tournament.rounds:
            round_.matches.clear()
        await self.session.flush()
        await self.session.delete(tournament)
        return True

    # =========================================================================
    # Players
    # =========================================================================

    async def player_name_exists(self, tournament_id: int, name: str) -> bool:
        stmt = select(Player.id).where(
            Player.tournament_id == tournament_id,
            Player.name == name,
        )
        result = await self.session.execute(stmt.limit(1))
        return result.first() is not None

    async def get_player(self, player_id: int) -> Optional[Player]:
        return await self.session.get(Player, player_id)

    def add_player(self, tournament: Tournament, name: str) -> Player:
        player = Player(
            name=name,
            wins=0,
            losses=0,
            points=0,
            round_wins=0,
            round_losses=0,
            group="",
            created_at=utcnow(),
        )
        tournament.players.append(player)
        return player

    async def remove_player(self, tournament: Tournament, player: Player) -> None:
        tournament.players.remove(player)
        await self.session.delete(player)

    # =========================================================================
    # Rounds
    # =========================================================================

    async def create_round(self, tournament: Tournament, round_number: int) -> Round:
        """
        Persist an empty round and return it with its database id.

        The round is flushed before any match exists so that matches can be
        linked to a durable round id while the strategy populates them.
        """
        round_ = Round(
            round_number=round_number,
            kind=RoundKind.REGULAR,
            is_completed=False,
            created_at=utcnow(),
            matches=[],
        )
        tournament.rounds.append(round_)
        await self.session.flush()
        return round_
