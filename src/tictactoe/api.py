"""FastAPI surface for online rooms and single-device games."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Literal, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import (
    GameError,
    IllegalMoveError,
    InvalidRoomError,
    NotAPlayerError,
    RoomCodeAllocationError,
    RoomExistsError,
    RoomNotFoundError,
    StaleStateError,
)
from .offline import OfflineGame
from .rooms import CLASSIC, MAX_GRID_SIZE, MIN_GRID_SIZE, MIN_WIN_LENGTH, Room, derive_state
from .service import GameService
from .store import MemoryRoomStore

load_dotenv(dotenv_path=Path(".env.local"))

logger = logging.getLogger("uvicorn.error")

DEFAULT_ROOM_TTL_SECONDS = 60 * 60 * 24

ERROR_STATUS = (
    (RoomNotFoundError, 404),
    (NotAPlayerError, 403),
    (RoomExistsError, 409),
    (StaleStateError, 409),
    (RoomCodeAllocationError, 503),
    (IllegalMoveError, 400),
    (InvalidRoomError, 400),
)


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def choose_store():
    database_url = os.getenv("TICTACTOE_DATABASE_URL")
    if _env_flag("TICTACTOE_USE_INMEMORY") or not database_url:
        return MemoryRoomStore()
    from .sql_store import SQLRoomStore

    return SQLRoomStore(database_url)


def room_ttl_seconds() -> float:
    return float(os.getenv("TICTACTOE_ROOM_TTL_SECONDS", str(DEFAULT_ROOM_TTL_SECONDS)))


def _http_error(exc: GameError) -> HTTPException:
    for kind, status in ERROR_STATUS:
        if isinstance(exc, kind):
            return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ---------- Request payloads ----------


class GameSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: Literal["classic", "ultimate"] = CLASSIC
    grid_size: int = Field(default=3, alias="gridSize", ge=MIN_GRID_SIZE, le=MAX_GRID_SIZE)
    win_length: int = Field(default=3, alias="winLength", ge=MIN_WIN_LENGTH, le=MAX_GRID_SIZE)

    @model_validator(mode="after")
    def ensure_win_length_fits(self) -> "GameSettings":
        if self.mode == CLASSIC and self.win_length > self.grid_size:
            raise ValueError("winLength cannot be larger than gridSize")
        return self


class CreateRoomRequest(GameSettings):
    player_name: str = Field(alias="playerName", min_length=1, max_length=40)


class JoinRoomRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    player_name: str = Field(alias="playerName", min_length=1, max_length=40)
    client_id: Optional[str] = Field(default=None, alias="clientId")


class MoveRequest(BaseModel):
    row: int = Field(ge=0, lt=MAX_GRID_SIZE)
    col: int = Field(ge=0, lt=MAX_GRID_SIZE)


class VoteRequest(BaseModel):
    vote: bool = True


class ResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match_id: int = Field(alias="matchId", ge=0)


# ---------- Serialization ----------


def _serialize_room(room: Room, client_id: Optional[str] = None) -> Dict[str, object]:
    # client ids are ownership tokens: only ever hand out the caller's own
    players = [
        {"name": p.name, "status": p.status, "symbol": p.symbol} for p in room.players
    ]
    return {
        "room": {
            "roomCode": room.room_code,
            "mode": room.mode,
            "gridSize": room.grid_size,
            "winLength": room.win_length,
            "players": players,
            "grid": room.grid,
            "restartVotes": room.restart_votes,
            "matchId": room.match_id,
            "lastMove": list(room.last_move) if room.last_move else None,
            "createdAt": room.created_at.isoformat() if room.created_at else None,
            "updatedAt": room.updated_at.isoformat() if room.updated_at else None,
        },
        "state": derive_state(room, client_id).to_dict(),
    }


def _already_sent(changed: Room, snapshot: Room) -> bool:
    """True for feed events written no later than the snapshot."""
    if changed.updated_at is None or snapshot.updated_at is None:
        return False
    return changed.updated_at <= snapshot.updated_at


@dataclass
class OfflineSession:
    """A single-device game kept in server memory."""

    game: OfflineGame
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


def _serialize_offline(game_id: str, session: OfflineSession) -> Dict[str, object]:
    with session.lock:
        game = session.game
        line: Optional[List[object]] = None
        if game.winning_line:
            line = [list(p) if isinstance(p, tuple) else p for p in game.winning_line]
        return {
            "id": game_id,
            "mode": game.mode,
            "gridSize": game.grid_size,
            "winLength": game.win_length,
            "grid": game.grid,
            "currentSymbol": game.current_symbol,
            "winner": game.winner,
            "winningLine": line,
            "lineKind": game.line_kind,
            "isGameOver": game.is_game_over,
            "moveCount": game.move_count,
            "lastMove": list(game.last_move) if game.last_move else None,
            "targetBoard": game.target_board,
            "localWinners": game.local_winners,
        }


# ---------- Application ----------


def create_app(store=None, service: Optional[GameService] = None) -> FastAPI:
    app = FastAPI(title="Tic-Tac-Toe Rooms", version="0.1.0")
    app.state.service = service or GameService(store if store is not None else choose_store())
    app.state.offline_sessions = {}
    app.state.room_ttl_seconds = room_ttl_seconds()

    logger.info(
        f"[tictactoe] store={app.state.service.store.__class__.__name__} "
        f"room_ttl={int(app.state.room_ttl_seconds)}s"
    )

    def get_service() -> GameService:
        return app.state.service

    def get_offline(game_id: str) -> OfflineSession:
        try:
            return app.state.offline_sessions[game_id]
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Game not found") from exc

    # ---- online rooms ----

    @app.post("/api/room")
    def create_room(body: CreateRoomRequest) -> Dict[str, object]:
        service = get_service()
        purged = service.store.purge_stale(app.state.room_ttl_seconds)
        if purged:
            logger.info(f"[tictactoe] purged stale rooms {','.join(purged)}")
        try:
            room, client_id = service.create_room(
                body.mode, body.player_name, body.grid_size, body.win_length
            )
        except GameError as exc:
            raise _http_error(exc) from exc
        logger.info(f"[tictactoe] room {room.room_code} created mode={room.mode}")
        return _serialize_room(room, client_id) | {"clientId": client_id}

    @app.get("/api/room/{room_code}")
    def inspect_room(
        room_code: str, x_client_id: Optional[str] = Header(default=None)
    ) -> Dict[str, object]:
        try:
            room = get_service().get_room(room_code)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _serialize_room(room, x_client_id)

    @app.post("/api/room/{room_code}/join")
    def join_room(room_code: str, body: JoinRoomRequest) -> Dict[str, object]:
        try:
            room, client_id = get_service().join_room(
                room_code, body.player_name, body.client_id
            )
        except GameError as exc:
            raise _http_error(exc) from exc
        return _serialize_room(room, client_id) | {"clientId": client_id}

    @app.post("/api/room/{room_code}/move")
    def make_move(
        room_code: str,
        body: MoveRequest,
        x_client_id: Optional[str] = Header(default=None),
    ) -> Dict[str, object]:
        try:
            room = get_service().move_as(room_code, x_client_id, body.row, body.col)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _serialize_room(room, x_client_id)

    @app.post("/api/room/{room_code}/vote")
    def vote_restart(
        room_code: str,
        body: VoteRequest,
        x_client_id: Optional[str] = Header(default=None),
    ) -> Dict[str, object]:
        try:
            room = get_service().vote_restart(room_code, x_client_id, body.vote)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _serialize_room(room, x_client_id)

    @app.post("/api/room/{room_code}/reset")
    def reset_room(
        room_code: str,
        body: ResetRequest,
        x_client_id: Optional[str] = Header(default=None),
    ) -> Dict[str, object]:
        service = get_service()
        try:
            service.player_for(service.get_room(room_code), x_client_id)
            reset = service.reset_game(room_code, body.match_id)
            room = service.get_room(room_code)
        except GameError as exc:
            raise _http_error(exc) from exc
        return _serialize_room(room, x_client_id) | {"reset": reset}

    @app.websocket("/ws/room/{room_code}")
    async def room_feed(websocket: WebSocket, room_code: str) -> None:
        await websocket.accept()
        service = get_service()
        client_id = websocket.query_params.get("clientId")

        # Subscribe before reading the snapshot so no write falls in between
        loop = asyncio.get_running_loop()
        updates: asyncio.Queue = asyncio.Queue()
        subscription = service.subscribe_to_room(
            room_code,
            lambda changed: loop.call_soon_threadsafe(updates.put_nowait, changed),
        )
        try:
            room = service.get_room(room_code)
        except RoomNotFoundError:
            subscription.unsubscribe()
            await websocket.send_json({"type": "error", "message": "Room not found"})
            await websocket.close()
            return
        logger.info(f"[tictactoe] feed opened room={room.room_code}")

        async def forward() -> None:
            try:
                await websocket.send_json(
                    {"type": "snapshot"} | _serialize_room(room, client_id)
                )
                while True:
                    changed = await updates.get()
                    if changed is None:
                        await websocket.send_json({"type": "room-deleted"})
                        await websocket.close()
                        return
                    if _already_sent(changed, room):
                        continue
                    await websocket.send_json(
                        {"type": "room"} | _serialize_room(changed, client_id)
                    )
            except (WebSocketDisconnect, RuntimeError):
                # peer went away mid-send
                return

        async def drain() -> None:
            # Incoming messages are ignored; this only notices the disconnect
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return

        tasks = [asyncio.ensure_future(forward()), asyncio.ensure_future(drain())]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            for task in done:
                task.result()
        finally:
            subscription.unsubscribe()
            logger.info(f"[tictactoe] feed closed room={room.room_code}")

    # ---- single-device games ----

    @app.post("/api/offline")
    def create_offline_game(body: GameSettings) -> Dict[str, object]:
        try:
            game = OfflineGame.new(body.mode, body.grid_size, body.win_length)
        except GameError as exc:
            raise _http_error(exc) from exc
        game_id = uuid.uuid4().hex
        session = OfflineSession(game=game)
        app.state.offline_sessions[game_id] = session
        return _serialize_offline(game_id, session)

    @app.get("/api/offline/{game_id}")
    def get_offline_game(game_id: str) -> Dict[str, object]:
        return _serialize_offline(game_id, get_offline(game_id))

    @app.post("/api/offline/{game_id}/move")
    def offline_move(game_id: str, body: MoveRequest) -> Dict[str, object]:
        session = get_offline(game_id)
        with session.lock:
            try:
                session.game.play_move(body.row, body.col)
            except GameError as exc:
                raise _http_error(exc) from exc
        return _serialize_offline(game_id, session)

    @app.post("/api/offline/{game_id}/restart")
    def offline_restart(game_id: str) -> Dict[str, object]:
        session = get_offline(game_id)
        with session.lock:
            session.game.restart()
        return _serialize_offline(game_id, session)

    return app


app = create_app()
