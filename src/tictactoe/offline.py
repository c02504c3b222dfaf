"""Single-device game driver: the same rules as online play, no store round-trip."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from . import game, ultimate
from .errors import IllegalMoveError
from .game import Grid, Player
from .rooms import CLASSIC, ULTIMATE, board_size, validate_settings


@dataclass
class OfflineGame:
    mode: str = CLASSIC
    grid_size: Optional[int] = 3
    win_length: Optional[int] = 3
    grid: Grid = field(default_factory=list)
    current_symbol: Player = "X"
    # "X", "O", "draw" or None while in progress
    winner: Optional[str] = None
    winning_line: Optional[Tuple] = None
    line_kind: str = "cells"
    move_count: int = 0
    last_move: Optional[Tuple[int, int]] = None
    # Ultimate only; None means a free move
    target_board: Optional[int] = None
    # Ultimate only; empty in classic mode
    local_winners: List[Optional[Player]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.mode == ULTIMATE:
            self.grid_size = None
            self.win_length = None
        validate_settings(self.mode, self.grid_size, self.win_length)
        if not self.grid:
            self.grid = game.empty_grid(self.size)
        if self.mode == ULTIMATE and not self.local_winners:
            self.local_winners = [None] * ultimate.SIZE

    @classmethod
    def new(
        cls,
        mode: str = CLASSIC,
        grid_size: Optional[int] = 3,
        win_length: Optional[int] = 3,
    ) -> "OfflineGame":
        return cls(mode=mode, grid_size=grid_size, win_length=win_length)

    @property
    def size(self) -> int:
        return board_size(self.mode, self.grid_size)

    @property
    def is_game_over(self) -> bool:
        return self.winner is not None

    def is_valid_move(self, row: int, col: int) -> bool:
        if self.is_game_over:
            return False
        if self.mode == CLASSIC:
            return game.is_valid_move(self.grid, row, col)
        return ultimate.is_valid_move(self.grid, row, col, self.target_board)

    def play_move(self, row: int, col: int) -> None:
        """Place ``current_symbol`` at (row, col) and re-derive the outcome."""
        if self.is_game_over:
            raise IllegalMoveError("Game already finished")
        if not self.is_valid_move(row, col):
            raise IllegalMoveError("Move is not allowed on this turn")

        grid = game.copy_grid(self.grid)
        grid[row][col] = self.current_symbol

        if self.mode == CLASSIC:
            result = game.check_win(grid, self.win_length or self.size)
            drawn = not result and game.check_draw(grid)
        else:
            winners = ultimate.local_winners(grid)
            result = ultimate.check_global_winner(winners)
            drawn = not result and ultimate.check_draw(grid, winners)
            self.local_winners = winners
            self.target_board = ultimate.target_board(row, col, grid, winners)

        self.grid = grid
        self.move_count += 1
        self.last_move = (row, col)
        self.winner = result.winner or ("draw" if drawn else None)
        self.winning_line = result.line
        self.line_kind = result.kind
        self.current_symbol = game.other(self.current_symbol)

    def restart(self) -> None:
        self.grid = game.empty_grid(self.size)
        self.current_symbol = "X"
        self.winner = None
        self.winning_line = None
        self.line_kind = "cells"
        self.move_count = 0
        self.last_move = None
        self.target_board = None
        self.local_winners = [None] * ultimate.SIZE if self.mode == ULTIMATE else []
