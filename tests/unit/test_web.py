"""Tests for the FastAPI adapter (in-process, no server)."""

import asyncio

import httpx
import pytest

from tourney.notifications import BroadcastHub, EventKind, LifecycleEvent
from tourney.services import TournamentService
from tourney.web.main import create_app, stream_events


@pytest.fixture
def hub():
    return BroadcastHub()


@pytest.fixture
async def client(session_factory, cache, hub):
    service = TournamentService(session_factory, cache, sink=hub)
    app = create_app(service, hub)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _create(client, name="Cup", password="pw", players=()):
    response = await client.post(
        "/api/tournaments", json={"name": name, "format": 1, "password": password}
    )
    assert response.status_code == 201
    tournament = response.json()
    for player in players:
        added = await client.post(
            "/api/tournaments/players",
            json={"tournament_id": tournament["id"], "name": player, "password": password},
        )
        assert added.status_code == 200
    return tournament


async def test_create_and_get(client):
    created = await _create(client)

    assert created["name"] == "Cup"
    assert created["is_protected"] is True
    assert "secret_hash" not in created

    response = await client.get(f"/api/tournaments/{created['id']}")
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]

    listing = await client.get("/api/tournaments")
    assert [t["id"] for t in listing.json()] == [created["id"]]


async def test_missing_tournament_is_404(client):
    response = await client.get("/api/tournaments/999")
    assert response.status_code == 404
    assert "message" in response.json()


async def test_wrong_password_is_401(client):
    created = await _create(client)
    response = await client.post(
        "/api/tournaments/players",
        json={"tournament_id": created["id"], "name": "Alice", "password": "nope"},
    )
    assert response.status_code == 401


async def test_invalid_operation_is_400(client):
    created = await _create(client, players=["Alice", "Bob"])
    response = await client.post(
        "/api/tournaments/start", json={"tournament_id": created["id"], "password": "pw"}
    )
    assert response.status_code == 400
    assert "players" in response.json()["message"]


async def test_full_flow_over_http(client):
    created = await _create(client, players=["Alice", "Bob", "Cara"])
    tid = created["id"]

    started = await client.post("/api/tournaments/start", json={"tournament_id": tid, "password": "pw"})
    assert started.status_code == 200
    round_one = started.json()["rounds"][0]
    results = [
        {"match_id": m["id"], "winner_id": min(m["player_ids"])}
        for m in round_one["matches"]
        if m["winner_id"] is None
    ]

    advanced = await client.post(
        "/api/tournaments/next-round",
        json={"tournament_id": tid, "password": "pw", "match_results": results},
    )
    assert advanced.status_code == 200
    assert advanced.json()["current_round"] == 2

    repeat = await client.post(
        "/api/tournaments/next-round",
        json={"tournament_id": tid, "password": "pw", "match_results": results},
    )
    assert repeat.status_code == 400

    renamed = await client.put(
        "/api/tournaments", json={"tournament_id": tid, "password": "pw", "name": "Renamed"}
    )
    assert renamed.json()["name"] == "Renamed"

    deleted = await client.request(
        "DELETE", "/api/tournaments", json={"tournament_id": tid, "password": "pw"}
    )
    assert deleted.status_code == 204
    assert (await client.get(f"/api/tournaments/{tid}")).status_code == 404


async def test_remove_player(client):
    created = await _create(client, players=["Alice"])
    tournament = (await client.get(f"/api/tournaments/{created['id']}")).json()
    player_id = tournament["players"][0]["id"]

    response = await client.request(
        "DELETE",
        "/api/tournaments/players",
        json={"tournament_id": created["id"], "player_id": player_id, "password": "pw"},
    )

    assert response.status_code == 200
    assert response.json()["player_id"] == player_id


async def test_validate_password(client):
    created = await _create(client)

    ok = await client.post(
        "/api/tournaments/validate-password", json={"tournament_id": created["id"], "password": "pw"}
    )
    assert ok.status_code == 200
    assert ok.json()["is_valid"] is True

    bad = await client.post(
        "/api/tournaments/validate-password", json={"tournament_id": created["id"], "password": "x"}
    )
    assert bad.status_code == 401
    assert bad.json()["is_valid"] is False

    missing = await client.post(
        "/api/tournaments/validate-password", json={"tournament_id": 999, "password": "x"}
    )
    assert missing.status_code == 404


async def test_mutations_reach_hub_subscribers(client, hub):
    created = await _create(client)

    async with hub.subscribe(created["id"]) as queue:
        await client.post(
            "/api/tournaments/players",
            json={"tournament_id": created["id"], "name": "Alice", "password": "pw"},
        )
        event = queue.get_nowait()

    assert event.kind.value == "player_added"
    assert event.payload["name"] == "Alice"


class FakeWebSocket:
    """Accepted socket stand-in: records sends, disconnects on demand."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.gone = asyncio.Event()

    async def receive(self):
        await self.gone.wait()
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed = True


async def test_stream_forwards_events_and_closes_on_delete():
    websocket = FakeWebSocket()
    queue = asyncio.Queue()
    queue.put_nowait(LifecycleEvent(EventKind.PLAYER_ADDED, 7, {"name": "Alice"}))
    queue.put_nowait(LifecycleEvent(EventKind.TOURNAMENT_DELETED, 7))

    await asyncio.wait_for(stream_events(websocket, queue), timeout=1)

    assert [message["kind"] for message in websocket.sent] == ["player_added", "tournament_deleted"]
    assert websocket.sent[0]["payload"] == {"name": "Alice"}
    assert websocket.closed


async def test_stream_pings_when_idle():
    websocket = FakeWebSocket()

    stream = asyncio.create_task(stream_events(websocket, asyncio.Queue(), ping_seconds=0.01))
    await asyncio.sleep(0.05)
    websocket.gone.set()
    await asyncio.wait_for(stream, timeout=1)

    assert websocket.sent
    assert all(message == {"kind": "ping"} for message in websocket.sent)


async def test_stream_ends_as_soon_as_the_client_leaves():
    websocket = FakeWebSocket()

    stream = asyncio.create_task(stream_events(websocket, asyncio.Queue(), ping_seconds=30))
    await asyncio.sleep(0)
    websocket.gone.set()

    # Well before the first ping would be due
    await asyncio.wait_for(stream, timeout=1)
    assert websocket.sent == []
    assert not websocket.closed
