"""Room synchronization client.

Every room mutation goes through the store: the room row is the single source
of truth and clients re-derive their view from each change notification.
Writes are compare-and-swap against the row that was read, so a lost race is
reported (or retried) instead of silently overwriting another client's write.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from typing import Callable, Optional, Tuple

from . import game, ultimate
from .errors import (
    IllegalMoveError,
    NotAPlayerError,
    RoomCodeAllocationError,
    RoomExistsError,
    RoomNotFoundError,
    StaleStateError,
)
from .rooms import (
    CLASSIC,
    NO_SYMBOL,
    ROOM_CODE_ALPHABET,
    ROOM_CODE_LENGTH,
    STATUS_PLAYER,
    STATUS_VIEWER,
    ULTIMATE,
    Room,
    RoomPlayer,
    board_size,
    derive_state,
    encode_grid,
    room_from_row,
    room_to_row,
    validate_settings,
)
from .store import DELETE, RoomEvent, Subscription

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 10
MAX_WRITE_RETRIES = 5

RoomCallback = Callable[[Optional[Room]], None]


def generate_room_code() -> str:
    raw = secrets.token_bytes(ROOM_CODE_LENGTH)
    return "".join(ROOM_CODE_ALPHABET[b % len(ROOM_CODE_ALPHABET)] for b in raw)


def normalize_code(room_code: str) -> str:
    return room_code.strip().upper()


def check_move(room: Room, row: int, col: int, symbol: str) -> None:
    """Raise IllegalMoveError unless ``symbol`` may play (row, col) right now."""
    if symbol not in game.SYMBOLS:
        raise IllegalMoveError(f"Unknown symbol {symbol!r}")
    state = derive_state(room)
    if state.is_game_over:
        raise IllegalMoveError("Game already finished")
    if symbol != state.current_symbol:
        raise IllegalMoveError(f"It is {state.current_symbol}'s turn")
    if room.mode == ULTIMATE:
        valid = ultimate.is_valid_move(room.grid, row, col, state.target_board)
    else:
        valid = game.is_valid_move(room.grid, row, col)
    if not valid:
        raise IllegalMoveError("Move is not allowed on this turn")


class GameService:
    def __init__(
        self,
        store,
        identities=None,
        code_factory: Callable[[], str] = generate_room_code,
        max_code_attempts: int = MAX_CODE_ATTEMPTS,
    ) -> None:
        self.store = store
        # Client-side token storage; a shared server passes None
        self.identities = identities
        self.code_factory = code_factory
        self.max_code_attempts = max_code_attempts

    # ---- reads ----

    def _fetch(self, room_code: str):
        row = self.store.get(room_code)
        if row is None:
            raise RoomNotFoundError("Room not found")
        return row

    def get_room(self, room_code: str) -> Room:
        return room_from_row(self._fetch(normalize_code(room_code)))

    def client_id_for(self, room_code: str) -> Optional[str]:
        if self.identities is None:
            return None
        return self.identities.get(normalize_code(room_code))

    def _remember(self, room_code: str, client_id: str) -> None:
        if self.identities is not None:
            self.identities.set(room_code, client_id)

    def _forget(self, room_code: str) -> None:
        if self.identities is not None:
            self.identities.forget(room_code)

    def player_for(self, room: Room, client_id: Optional[str]) -> RoomPlayer:
        player = room.find_player(client_id)
        if player is None or not player.is_player:
            raise NotAPlayerError("Only seated players can do that")
        return player

    # ---- lifecycle ----

    def create_room(
        self,
        mode: str,
        player_name: str,
        grid_size: Optional[int] = None,
        win_length: Optional[int] = None,
    ) -> Tuple[Room, str]:
        if mode != CLASSIC:
            grid_size = win_length = None
        validate_settings(mode, grid_size, win_length)

        client_id = str(uuid.uuid4())
        host = RoomPlayer(
            name=player_name, status=STATUS_PLAYER, symbol="X", client_id=client_id
        )

        for _ in range(self.max_code_attempts):
            code = self.code_factory()
            if self.store.exists(code):
                continue
            room = Room(
                room_code=code,
                mode=mode,
                grid=game.empty_grid(board_size(mode, grid_size)),
                grid_size=grid_size,
                win_length=win_length,
                players=[host],
            )
            try:
                saved = self.store.insert(room_to_row(room))
            except RoomExistsError:
                continue
            break
        else:
            raise RoomCodeAllocationError("Failed to generate unique room code")

        self._remember(code, client_id)
        logger.info("room %s created (%s)", code, mode)
        return room_from_row(saved), client_id

    def join_room(
        self, room_code: str, player_name: str, client_id: Optional[str] = None
    ) -> Tuple[Room, str]:
        """Take a seat in the room, or re-claim the one ``client_id`` already holds.

        The second arrival sits as O when the only player is X; everyone after
        that watches. An unknown token is not reused: the caller gets a new one.
        """
        code = normalize_code(room_code)
        token = client_id or self.client_id_for(code)
        new_id = str(uuid.uuid4())

        for _ in range(MAX_WRITE_RETRIES):
            row = self._fetch(code)
            room = room_from_row(row)

            existing = room.find_player(token)
            if existing is not None:
                self._remember(code, existing.client_id)
                logger.info("room %s: %s re-claimed its slot", code, existing.symbol)
                return room, existing.client_id

            symbol, status = NO_SYMBOL, STATUS_VIEWER
            if len(room.players) == 1 and room.players[0].symbol == "X":
                symbol, status = "O", STATUS_PLAYER
            newcomer = RoomPlayer(
                name=player_name, status=status, symbol=symbol, client_id=new_id
            )
            players = list(row["players"]) + [newcomer.to_dict()]
            saved = self.store.update(
                code, {"players": players}, expect={"players": row["players"]}
            )
            if saved is None:
                continue
            self._remember(code, new_id)
            logger.info("room %s: %s joined as %s", code, player_name, status)
            return room_from_row(saved), new_id

        raise StaleStateError("Room changed while joining, try again")

    # ---- play ----

    def make_move(self, room_code: str, row: int, col: int, symbol: str) -> Room:
        code = normalize_code(room_code)
        stored = self._fetch(code)
        room = room_from_row(stored)
        check_move(room, row, col, symbol)

        grid = game.copy_grid(room.grid)
        grid[row][col] = symbol
        saved = self.store.update(
            code,
            {"grid": encode_grid(grid), "last_move": [row, col]},
            expect={"grid": stored["grid"], "match_id": stored["match_id"]},
        )
        if saved is None:
            raise StaleStateError("Board changed before the move was saved")
        return room_from_row(saved)

    def move_as(self, room_code: str, client_id: Optional[str], row: int, col: int) -> Room:
        room = self.get_room(room_code)
        player = self.player_for(room, client_id)
        return self.make_move(room.room_code, row, col, player.symbol)

    def set_restart_vote(self, room_code: str, symbol: str, vote: bool) -> Room:
        if symbol not in game.SYMBOLS:
            raise IllegalMoveError(f"Unknown symbol {symbol!r}")
        code = normalize_code(room_code)
        for _ in range(MAX_WRITE_RETRIES):
            stored = self._fetch(code)
            votes = dict(stored.get("restart_votes") or {})
            votes[symbol] = bool(vote)
            saved = self.store.update(
                code,
                {"restart_votes": votes},
                expect={"restart_votes": stored.get("restart_votes")},
            )
            if saved is not None:
                return room_from_row(saved)
        raise StaleStateError("Votes changed while voting, try again")

    def reset_game(self, room_code: str, current_match_id: int) -> bool:
        """Start the next match if ``current_match_id`` is still the room's.

        Returns False when another client already reset; that is not an error.
        """
        code = normalize_code(room_code)
        stored = self._fetch(code)
        if stored.get("match_id") != current_match_id:
            logger.debug("room %s: stale reset for match %s ignored", code, current_match_id)
            return False
        size = board_size(stored["mode"], stored.get("grid_size"))
        saved = self.store.update(
            code,
            {
                "grid": encode_grid(game.empty_grid(size)),
                "restart_votes": {},
                "last_move": None,
                "match_id": current_match_id + 1,
            },
            expect={"match_id": current_match_id},
        )
        if saved is None:
            return False
        logger.info("room %s: match %d started", code, current_match_id + 1)
        return True

    def vote_restart(self, room_code: str, client_id: Optional[str], vote: bool = True) -> Room:
        """Record the caller's vote and start the next match once both seats agree."""
        room = self.get_room(room_code)
        player = self.player_for(room, client_id)
        room = self.set_restart_vote(room.room_code, player.symbol, vote)
        state = derive_state(room, client_id)
        if state.both_voted_restart and state.both_players_present:
            self.reset_game(room.room_code, room.match_id)
            room = self.get_room(room.room_code)
        return room

    # ---- change feed ----

    def subscribe_to_room(self, room_code: str, callback: RoomCallback) -> Subscription:
        """Call ``callback`` with the new room on every write, or None once deleted.

        A deleted room also drops the token kept for it.
        """
        code = normalize_code(room_code)

        def on_event(event: RoomEvent) -> None:
            if event.type == DELETE:
                self._forget(code)
                callback(None)
            else:
                callback(room_from_row(event.row))

        return self.store.subscribe(code, on_event)
