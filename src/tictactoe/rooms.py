"""Room model, its storage row codec, and the per-snapshot state derivation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from . import game, ultimate
from .errors import InvalidRoomError
from .game import Grid, Player

CLASSIC = "classic"
ULTIMATE = "ultimate"
MODES: Tuple[str, ...] = (CLASSIC, ULTIMATE)

ROOM_CODE_ALPHABET = "0123456789ABCDEF"
ROOM_CODE_LENGTH = 5

MIN_GRID_SIZE = 3
MAX_GRID_SIZE = 10
MIN_WIN_LENGTH = 3

STATUS_PLAYER = "player"
STATUS_VIEWER = "viewer"
NO_SYMBOL = "none"


@dataclass
class RoomPlayer:
    name: str
    status: str = STATUS_VIEWER
    symbol: str = NO_SYMBOL
    client_id: str = ""

    @property
    def is_player(self) -> bool:
        return self.status == STATUS_PLAYER and self.symbol in game.SYMBOLS

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "status": self.status,
            "symbol": self.symbol,
            "client_id": self.client_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoomPlayer":
        return cls(
            name=str(data.get("name", "")),
            status=data.get("status", STATUS_VIEWER),
            symbol=data.get("symbol", NO_SYMBOL),
            client_id=str(data.get("client_id", "")),
        )


@dataclass
class Room:
    room_code: str
    mode: str
    grid: Grid
    grid_size: Optional[int] = None
    win_length: Optional[int] = None
    players: List[RoomPlayer] = field(default_factory=list)
    restart_votes: Dict[str, bool] = field(default_factory=dict)
    match_id: int = 0
    last_move: Optional[Tuple[int, int]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_player(self, client_id: Optional[str]) -> Optional[RoomPlayer]:
        if not client_id:
            return None
        for player in self.players:
            if player.client_id == client_id:
                return player
        return None


def board_size(mode: str, grid_size: Optional[int]) -> int:
    return ultimate.SIZE if mode == ULTIMATE else (grid_size or MIN_GRID_SIZE)


# ---------- Storage codec ----------


def encode_grid(grid: Grid) -> List[str]:
    """Storage form: a one-element list holding the JSON-encoded matrix."""
    return [json.dumps(grid)]


def decode_grid(value: Any) -> Grid:
    if isinstance(value, str):
        return json.loads(value)
    if isinstance(value, (list, tuple)) and value:
        return json.loads(value[0])
    return []


def validate_settings(
    mode: str, grid_size: Optional[int], win_length: Optional[int]
) -> None:
    if mode not in MODES:
        raise InvalidRoomError(f"Unknown mode {mode!r}")
    if mode == CLASSIC and (
        grid_size is None or win_length is None or win_length > grid_size
    ):
        raise InvalidRoomError(
            "Classic mode requires valid grid_size and win_length <= grid_size"
        )
    if mode == ULTIMATE and (grid_size is not None or win_length is not None):
        raise InvalidRoomError("Ultimate mode takes no grid_size or win_length")
    if grid_size is not None and not MIN_GRID_SIZE <= grid_size <= MAX_GRID_SIZE:
        raise InvalidRoomError(
            f"grid_size must be between {MIN_GRID_SIZE} and {MAX_GRID_SIZE}"
        )
    if win_length is not None and win_length < MIN_WIN_LENGTH:
        raise InvalidRoomError(f"win_length must be at least {MIN_WIN_LENGTH}")


def validate_row(row: Dict[str, Any]) -> None:
    """Checks the store applies to every inserted or updated row."""
    validate_settings(row.get("mode"), row.get("grid_size"), row.get("win_length"))
    match_id = row.get("match_id", 0)
    if not isinstance(match_id, int) or match_id < 0:
        raise InvalidRoomError("match_id must be a non-negative integer")


def room_to_row(room: Room) -> Dict[str, Any]:
    return {
        "room_code": room.room_code,
        "mode": room.mode,
        "grid_size": room.grid_size,
        "win_length": room.win_length,
        "players": [p.to_dict() for p in room.players],
        "grid": encode_grid(room.grid),
        "restart_votes": dict(room.restart_votes),
        "match_id": room.match_id,
        "last_move": list(room.last_move) if room.last_move else None,
        "created_at": room.created_at,
        "updated_at": room.updated_at,
    }


def room_from_row(row: Dict[str, Any]) -> Room:
    last_move = row.get("last_move")
    return Room(
        room_code=row["room_code"],
        mode=row["mode"],
        grid=decode_grid(row.get("grid")),
        grid_size=row.get("grid_size"),
        win_length=row.get("win_length"),
        players=[RoomPlayer.from_dict(p) for p in row.get("players") or []],
        restart_votes={k: bool(v) for k, v in (row.get("restart_votes") or {}).items()},
        match_id=int(row.get("match_id") or 0),
        last_move=(int(last_move[0]), int(last_move[1])) if last_move else None,
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


# ---------- Derived state ----------


@dataclass
class RoomState:
    move_count: int
    current_symbol: Player
    winner: Optional[str]
    winning_line: Optional[Tuple]
    line_kind: str
    is_draw: bool
    is_game_over: bool
    local_winners: List[Optional[Player]]
    target_board: Optional[int]
    me: Optional[RoomPlayer]
    is_my_turn: bool
    both_voted_restart: bool
    both_players_present: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "moveCount": self.move_count,
            "currentSymbol": self.current_symbol,
            "winner": self.winner,
            "winningLine": [list(p) if isinstance(p, tuple) else p for p in self.winning_line]
            if self.winning_line
            else None,
            "lineKind": self.line_kind,
            "isDraw": self.is_draw,
            "isGameOver": self.is_game_over,
            "localWinners": self.local_winners,
            "targetBoard": self.target_board,
            "me": self.me.to_dict() if self.me else None,
            "isMyTurn": self.is_my_turn,
            "bothVotedRestart": self.both_voted_restart,
            "bothPlayersPresent": self.both_players_present,
        }


def outcome(room: Room) -> Tuple[game.WinResult, bool, List[Optional[Player]]]:
    """Winner, draw flag and sub-board winners for a room snapshot."""
    if room.mode == ULTIMATE:
        winners = ultimate.local_winners(room.grid)
        result = ultimate.check_global_winner(winners)
        drawn = not result and ultimate.check_draw(room.grid, winners)
        return result, drawn, winners
    result = game.check_win(room.grid, room.win_length or len(room.grid))
    drawn = not result and game.check_draw(room.grid)
    return result, drawn, []


def next_target_board(room: Room, winners: List[Optional[Player]]) -> Optional[int]:
    if room.mode != ULTIMATE or room.last_move is None:
        return None
    row, col = room.last_move
    return ultimate.target_board(row, col, room.grid, winners)


def derive_state(room: Room, client_id: Optional[str] = None) -> RoomState:
    """Re-derive everything the client shows from one room snapshot."""
    result, drawn, winners = outcome(room)
    symbol = game.current_player(room.grid)
    over = bool(result) or drawn
    me = room.find_player(client_id)
    active = [p for p in room.players if p.status == STATUS_PLAYER]
    return RoomState(
        move_count=game.move_count(room.grid),
        current_symbol=symbol,
        winner=result.winner or ("draw" if drawn else None),
        winning_line=result.line,
        line_kind=result.kind,
        is_draw=drawn,
        is_game_over=over,
        local_winners=winners,
        target_board=next_target_board(room, winners),
        me=me,
        is_my_turn=bool(me and me.is_player and me.symbol == symbol and not over),
        both_voted_restart=bool(
            room.restart_votes.get("X") and room.restart_votes.get("O")
        ),
        both_players_present=len(active) == 2,
    )
