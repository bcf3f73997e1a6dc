"""
FastAPI adapter for the tournament engine.

Routes (all JSON):
    GET     /api/tournaments                    list (summaries)
    GET     /api/tournaments/{id}               full tournament
    POST    /api/tournaments                    create
    POST    /api/tournaments/players            add player
    DELETE  /api/tournaments/players            remove player
    POST    /api/tournaments/start              start
    POST    /api/tournaments/next-round         submit results, advance
    PUT     /api/tournaments                    rename
    DELETE  /api/tournaments                    delete
    POST    /api/tournaments/validate-password  check a secret
    WS      /ws/tournaments/{id}                live lifecycle events

Engine errors map to status codes by kind; every error body is
{"message": ...}.

The app is built by create_app(). Without an explicit service, the
lifespan wires one to the configured database on startup.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.engine import make_url
from starlette.requests import HTTPConnection

from tourney.cache import TournamentCache
from tourney.config import settings
from tourney.db.models import TournamentFormat
from tourney.db.session import dispose_engine, get_sessionmaker
from tourney.exceptions import NotFoundError, TournamentError
from tourney.notifications import (
    BroadcastHub,
    CompositeNotificationSink,
    EventKind,
    LifecycleEvent,
    LoggingNotificationSink,
)
from tourney.services import MatchResult, TournamentService
from tourney.snapshots import PlayerSnapshot, TournamentSnapshot, TournamentSummary

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "not_found": 404,
    "unauthorized": 401,
    "invalid_operation": 400,
    "validation": 400,
    "conflict": 409,
    "unexpected": 500,
}

WS_PING_SECONDS = 30.0


# =============================================================================
# Request bodies
# =============================================================================

class CreateTournamentRequest(BaseModel):
    name: str
    format: TournamentFormat
    password: Optional[str] = None


class SecretRequest(BaseModel):
    tournament_id: int
    password: str = ""


class AddPlayerRequest(SecretRequest):
    name: str


class RemovePlayerRequest(SecretRequest):
    player_id: int


class MatchResultBody(BaseModel):
    match_id: int
    winner_id: int


class NextRoundRequest(SecretRequest):
    match_results: list[MatchResultBody] = Field(default_factory=list)


class UpdateTournamentRequest(SecretRequest):
    name: str


# =============================================================================
# App factory
# =============================================================================

def build_default_service(hub: BroadcastHub) -> TournamentService:
    """Service on the configured database, publishing to the log and the hub."""
    cache = TournamentCache(
        sliding_seconds=settings.cache_sliding_seconds,
        absolute_seconds=settings.cache_absolute_seconds,
    )
    sink = CompositeNotificationSink(LoggingNotificationSink(), hub)
    return TournamentService(get_sessionmaker(), cache, sink=sink)


def create_app(
    service: Optional[TournamentService] = None,
    hub: Optional[BroadcastHub] = None,
) -> FastAPI:
    """
    Build the API.

    Args:
        service: Engine to serve; built from settings on startup when None
        hub: Broadcast hub backing the WebSocket endpoint. A supplied service
            should publish to the same hub for events to reach subscribers.
    """
    hub = hub or BroadcastHub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_service = app.state.service is None
        if owns_service:
            app.state.service = build_default_service(hub)
            logger.info("Tournament service started on %s", _safe_url(settings.database_url))
        yield
        if owns_service:
            await dispose_engine()

    app = FastAPI(title="Tourney", lifespan=lifespan)
    app.state.service = service
    app.state.hub = hub

    @app.exception_handler(TournamentError)
    async def tournament_error_handler(request: Request, exc: TournamentError):
        status_code = STATUS_BY_KIND.get(exc.kind, 500)
        return JSONResponse(status_code=status_code, content={"message": exc.message})

    def svc(conn: HTTPConnection) -> TournamentService:
        return conn.app.state.service

    @app.get("/api/tournaments", response_model=list[TournamentSummary])
    async def list_tournaments(request: Request):
        return await svc(request).list_tournaments()

    @app.get("/api/tournaments/{tournament_id}", response_model=TournamentSnapshot)
    async def get_tournament(tournament_id: int, request: Request):
        return await svc(request).get_tournament(tournament_id)

    @app.post("/api/tournaments", response_model=TournamentSnapshot, status_code=201)
    async def create_tournament(body: CreateTournamentRequest, request: Request):
        return await svc(request).create_tournament(body.name, body.format, body.password)

    @app.post("/api/tournaments/players", response_model=PlayerSnapshot)
    async def add_player(body: AddPlayerRequest, request: Request):
        return await svc(request).add_player(body.tournament_id, body.name, body.password)

    @app.delete("/api/tournaments/players")
    async def remove_player(body: RemovePlayerRequest, request: Request):
        removed_id = await svc(request).remove_player(
            body.tournament_id, body.player_id, body.password
        )
        return {"message": "Player removed successfully", "player_id": removed_id}

    @app.post("/api/tournaments/start", response_model=TournamentSnapshot)
    async def start_tournament(body: SecretRequest, request: Request):
        return await svc(request).start_tournament(body.tournament_id, body.password)

    @app.post("/api/tournaments/next-round", response_model=TournamentSnapshot)
    async def next_round(body: NextRoundRequest, request: Request):
        results = [MatchResult(r.match_id, r.winner_id) for r in body.match_results]
        return await svc(request).advance_round(body.tournament_id, body.password, results)

    @app.put("/api/tournaments", response_model=TournamentSnapshot)
    async def update_tournament(body: UpdateTournamentRequest, request: Request):
        return await svc(request).update_tournament_name(
            body.tournament_id, body.name, body.password
        )

    @app.delete("/api/tournaments", status_code=204)
    async def delete_tournament(body: SecretRequest, request: Request):
        await svc(request).delete_tournament(body.tournament_id, body.password)
        return Response(status_code=204)

    @app.post("/api/tournaments/validate-password")
    async def validate_password(body: SecretRequest, request: Request):
        if await svc(request).challenge_secret(body.tournament_id, body.password):
            return {"message": "Password is valid", "is_valid": True}
        return JSONResponse(
            status_code=401,
            content={"message": "Invalid tournament password", "is_valid": False},
        )

    @app.websocket("/ws/tournaments/{tournament_id}")
    async def tournament_events(websocket: WebSocket, tournament_id: int):
        """
        Stream one tournament's lifecycle events.

        Sends {"kind": "ping"} after WS_PING_SECONDS of silence; closes once
        the tournament is deleted.
        """
        try:
            await svc(websocket).get_tournament(tournament_id)
        except NotFoundError:
            await websocket.close(code=4004, reason="Tournament not found")
            return

        await websocket.accept()
        async with hub.subscribe(tournament_id) as queue:
            await stream_events(websocket, queue)
        logger.debug("Subscriber left tournament %s", tournament_id)

    return app


async def stream_events(
    websocket: WebSocket,
    queue: "asyncio.Queue[LifecycleEvent]",
    ping_seconds: float = WS_PING_SECONDS,
) -> None:
    """
    Forward queued events to an accepted WebSocket until either side is done.

    The client's disconnect is watched alongside the queue, so a client that
    leaves is noticed at once rather than on the next send.
    """
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            next_event = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {next_event, disconnected},
                timeout=ping_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if disconnected in done:
                next_event.cancel()
                disconnected.result()
                return
            if next_event not in done:
                next_event.cancel()
                await websocket.send_json({"kind": "ping"})
                continue

            event = next_event.result()
            await websocket.send_json(event.to_dict())
            if event.kind == EventKind.TOURNAMENT_DELETED:
                await websocket.close()
                return
    except WebSocketDisconnect:
        return
    finally:
        disconnected.cancel()


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Discard client messages until the client goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


def _safe_url(url: str) -> str:
    """Connection URL without the password, for logging."""
    return make_url(url).render_as_string(hide_password=True)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tourney.web.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
