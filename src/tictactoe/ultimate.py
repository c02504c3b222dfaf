"""Ultimate Tic-Tac-Toe rules built on the classic engine.

The 9×9 grid is split into nine 3×3 sub-boards numbered 0..8 row-major. A
sub-board is won with three in a row; the game is won with three sub-boards in
a row on the meta board.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from . import game
from .game import EMPTY, Grid, Player, WinResult

SIZE = 9
LOCAL_SIZE = 3
LOCAL_WIN_LENGTH = 3


def local_board_index(row: int, col: int) -> int:
    return (row // LOCAL_SIZE) * LOCAL_SIZE + col // LOCAL_SIZE


def local_cell_coords(row: int, col: int) -> Tuple[int, int]:
    return row % LOCAL_SIZE, col % LOCAL_SIZE


def local_board(grid: Grid, board_index: int) -> Grid:
    start_row = (board_index // LOCAL_SIZE) * LOCAL_SIZE
    start_col = (board_index % LOCAL_SIZE) * LOCAL_SIZE
    return [
        [grid[start_row + r][start_col + c] for c in range(LOCAL_SIZE)]
        for r in range(LOCAL_SIZE)
    ]


def is_local_board_full(grid: Grid, board_index: int) -> bool:
    return game.check_draw(local_board(grid, board_index))


def check_local_winner(grid: Grid, board_index: int) -> Optional[Player]:
    return game.check_win(local_board(grid, board_index), LOCAL_WIN_LENGTH).winner


def local_winners(grid: Grid) -> List[Optional[Player]]:
    return [check_local_winner(grid, i) for i in range(SIZE)]


def check_global_winner(winners: Sequence[Optional[Player]]) -> WinResult:
    """Classic win check over the meta board of sub-board winners.

    The returned line holds sub-board indices, not cell coordinates.
    """
    meta = [
        [winners[r * LOCAL_SIZE + c] or EMPTY for c in range(LOCAL_SIZE)]
        for r in range(LOCAL_SIZE)
    ]
    result = game.check_win(meta, LOCAL_WIN_LENGTH)
    if not result:
        return WinResult(kind="boards")
    boards = tuple(r * LOCAL_SIZE + c for r, c in result.line)
    return WinResult(winner=result.winner, line=boards, kind="boards")


def target_board(
    last_row: int,
    last_col: int,
    grid: Grid,
    winners: Sequence[Optional[Player]],
) -> Optional[int]:
    """Sub-board the next player is sent to, or None for a free move."""
    local_row, local_col = local_cell_coords(last_row, last_col)
    index = local_row * LOCAL_SIZE + local_col
    if winners[index] is not None or is_local_board_full(grid, index):
        return None
    return index


def is_valid_move(grid: Grid, row: int, col: int, target: Optional[int]) -> bool:
    if not game.is_valid_move(grid, row, col):
        return False
    if target is None:
        return True
    return local_board_index(row, col) == target


def check_draw(grid: Grid, winners: Sequence[Optional[Player]]) -> bool:
    # Only a completely filled grid is a draw, even if the outcome is settled earlier
    if check_global_winner(winners):
        return False
    return game.check_draw(grid)


def current_player(grid: Grid) -> Player:
    return game.current_player(grid)
