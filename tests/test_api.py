"""Tests for the FastAPI room and offline-game interface."""

from __future__ import annotations

from fastapi.testclient import TestClient

from tictactoe.api import create_app
from tictactoe.store import MemoryRoomStore


class LateWriteStore(MemoryRoomStore):
    """Runs ``after_read`` once, right after the next read has returned its row."""

    def __init__(self):
        super().__init__()
        self.after_read = None

    def get(self, room_code):
        row = super().get(room_code)
        if self.after_read is not None:
            after_read, self.after_read = self.after_read, None
            after_read()
        return row


def make_client():
    app = create_app(store=MemoryRoomStore())
    return TestClient(app)


def create_room(client, **overrides):
    payload = {"mode": "classic", "gridSize": 3, "winLength": 3, "playerName": "Ada"}
    payload.update(overrides)
    response = client.post("/api/room", json=payload)
    assert response.status_code == 200
    return response.json()


def seated(client):
    created = create_room(client)
    code = created["room"]["roomCode"]
    joined = client.post(f"/api/room/{code}/join", json={"playerName": "Bob"})
    assert joined.status_code == 200
    return code, created["clientId"], joined.json()["clientId"]


def test_create_room():
    client = make_client()
    payload = create_room(client)
    room = payload["room"]
    assert len(room["roomCode"]) == 5
    assert room["players"] == [{"name": "Ada", "status": "player", "symbol": "X"}]
    assert room["matchId"] == 0
    assert payload["clientId"]
    assert payload["state"]["currentSymbol"] == "X"
    assert payload["state"]["isMyTurn"] is True
    assert payload["state"]["me"]["client_id"] == payload["clientId"]


def test_create_room_validates_settings():
    client = make_client()
    response = client.post(
        "/api/room",
        json={"mode": "classic", "gridSize": 3, "winLength": 4, "playerName": "Ada"},
    )
    assert response.status_code == 422
    response = client.post("/api/room", json={"mode": "classic", "playerName": ""})
    assert response.status_code == 422


def test_ultimate_room_has_no_classic_settings():
    client = make_client()
    room = create_room(client, mode="ultimate")["room"]
    assert room["gridSize"] is None and room["winLength"] is None
    assert len(room["grid"]) == 9


def test_join_and_inspect():
    client = make_client()
    code, x_id, o_id = seated(client)
    third = client.post(f"/api/room/{code}/join", json={"playerName": "Cy"}).json()
    assert third["state"]["me"]["status"] == "viewer"

    as_o = client.get(f"/api/room/{code}", headers={"X-Client-Id": o_id}).json()
    assert as_o["state"]["me"]["symbol"] == "O"
    assert as_o["state"]["bothPlayersPresent"] is True
    assert [p["symbol"] for p in as_o["room"]["players"]] == ["X", "O", "none"]
    assert all("client_id" not in p for p in as_o["room"]["players"])

    rejoin = client.post(
        f"/api/room/{code}/join", json={"playerName": "Ada", "clientId": x_id}
    ).json()
    assert rejoin["clientId"] == x_id
    assert len(rejoin["room"]["players"]) == 3


def test_missing_room_returns_404():
    client = make_client()
    assert client.get("/api/room/FFFFF").status_code == 404
    response = client.post("/api/room/FFFFF/join", json={"playerName": "Bob"})
    assert response.status_code == 404


def test_moves_are_checked_on_the_server():
    client = make_client()
    code, x_id, o_id = seated(client)

    wrong_turn = client.post(
        f"/api/room/{code}/move", json={"row": 0, "col": 0}, headers={"X-Client-Id": o_id}
    )
    assert wrong_turn.status_code == 400

    ok = client.post(
        f"/api/room/{code}/move", json={"row": 0, "col": 0}, headers={"X-Client-Id": x_id}
    )
    assert ok.status_code == 200
    assert ok.json()["room"]["grid"][0][0] == "X"
    assert ok.json()["room"]["lastMove"] == [0, 0]

    taken = client.post(
        f"/api/room/{code}/move", json={"row": 0, "col": 0}, headers={"X-Client-Id": o_id}
    )
    assert taken.status_code == 400
    assert taken.json()["detail"]

    anonymous = client.post(f"/api/room/{code}/move", json={"row": 1, "col": 1})
    assert anonymous.status_code == 403


def test_win_then_vote_restart():
    client = make_client()
    code, x_id, o_id = seated(client)
    moves = [(x_id, 0, 0), (o_id, 1, 0), (x_id, 0, 1), (o_id, 1, 1), (x_id, 0, 2)]
    for client_id, row, col in moves:
        response = client.post(
            f"/api/room/{code}/move",
            json={"row": row, "col": col},
            headers={"X-Client-Id": client_id},
        )
        assert response.status_code == 200
    state = response.json()["state"]
    assert state["winner"] == "X"
    assert state["winningLine"] == [[0, 0], [0, 1], [0, 2]]
    assert state["lineKind"] == "cells"

    first = client.post(f"/api/room/{code}/vote", json={}, headers={"X-Client-Id": x_id})
    assert first.json()["room"]["restartVotes"] == {"X": True}
    second = client.post(f"/api/room/{code}/vote", json={}, headers={"X-Client-Id": o_id})
    room = second.json()["room"]
    assert room["matchId"] == 1
    assert room["restartVotes"] == {}
    assert all(cell == "" for row in room["grid"] for cell in row)


def test_stale_reset_is_ignored():
    client = make_client()
    code, x_id, o_id = seated(client)
    headers = {"X-Client-Id": x_id}
    first = client.post(f"/api/room/{code}/reset", json={"matchId": 0}, headers=headers)
    assert first.json()["reset"] is True
    again = client.post(f"/api/room/{code}/reset", json={"matchId": 0}, headers=headers)
    assert again.status_code == 200
    assert again.json()["reset"] is False
    assert again.json()["room"]["matchId"] == 1


def test_feed_streams_changes_and_deletion():
    app = create_app(store=MemoryRoomStore())
    client = TestClient(app)
    code, x_id, _ = seated(client)

    with client.websocket_connect(f"/ws/room/{code}?clientId={x_id}") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "snapshot"
        assert snapshot["state"]["isMyTurn"] is True

        client.post(
            f"/api/room/{code}/move",
            json={"row": 1, "col": 1},
            headers={"X-Client-Id": x_id},
        )
        update = ws.receive_json()
        assert update["type"] == "room"
        assert update["room"]["grid"][1][1] == "X"
        assert update["state"]["isMyTurn"] is False

        app.state.service.store.delete(code)
        assert ws.receive_json() == {"type": "room-deleted"}


def test_feed_for_missing_room():
    app = create_app(store=MemoryRoomStore())
    client = TestClient(app)
    with client.websocket_connect("/ws/room/FFFFF") as ws:
        message = ws.receive_json()
    assert message == {"type": "error", "message": "Room not found"}
    assert app.state.service.store.feed.listener_count("FFFFF") == 0


def test_feed_delivers_a_move_made_while_the_snapshot_is_read():
    store = LateWriteStore()
    app = create_app(store=store)
    client = TestClient(app)
    code, x_id, _ = seated(client)

    store.after_read = lambda: app.state.service.make_move(code, 1, 1, "X")
    with client.websocket_connect(f"/ws/room/{code}?clientId={x_id}") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "snapshot"
        assert snapshot["room"]["grid"][1][1] == ""
        update = ws.receive_json()
        assert update["type"] == "room"
        assert update["room"]["grid"][1][1] == "X"
        assert update["state"]["isMyTurn"] is False


def test_offline_classic_game():
    client = make_client()
    game = client.post("/api/offline", json={"mode": "classic", "gridSize": 4, "winLength": 3})
    assert game.status_code == 200
    game_id = game.json()["id"]
    assert len(game.json()["grid"]) == 4

    for row, col in [(0, 0), (1, 0), (0, 1), (1, 1), (0, 2)]:
        response = client.post(f"/api/offline/{game_id}/move", json={"row": row, "col": col})
        assert response.status_code == 200
    state = response.json()
    assert state["winner"] == "X"
    assert state["isGameOver"] is True

    after = client.post(f"/api/offline/{game_id}/move", json={"row": 3, "col": 3})
    assert after.status_code == 400

    restarted = client.post(f"/api/offline/{game_id}/restart").json()
    assert restarted["moveCount"] == 0
    assert restarted["winner"] is None
    assert client.get(f"/api/offline/{game_id}").json()["currentSymbol"] == "X"


def test_offline_ultimate_target_board():
    client = make_client()
    game_id = client.post("/api/offline", json={"mode": "ultimate"}).json()["id"]
    state = client.post(f"/api/offline/{game_id}/move", json={"row": 2, "col": 5}).json()
    assert state["targetBoard"] == 8
    blocked = client.post(f"/api/offline/{game_id}/move", json={"row": 0, "col": 0})
    assert blocked.status_code == 400


def test_unknown_offline_game():
    client = make_client()
    assert client.get("/api/offline/nope").status_code == 404
