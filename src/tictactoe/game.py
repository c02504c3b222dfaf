"""Core rules for classic N×N Tic-Tac-Toe with a configurable win length."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

Player = str  # "X" or "O"
Grid = List[List[str]]

EMPTY = ""
SYMBOLS: Tuple[Player, Player] = ("X", "O")

# Scan directions in priority order: horizontal, vertical, diagonal ↘, diagonal ↙
DIRECTIONS: Tuple[Tuple[int, int], ...] = ((0, 1), (1, 0), (1, 1), (1, -1))


@dataclass(frozen=True)
class WinResult:
    """Outcome of a win check.

    ``kind`` tells how to read ``line``:
      - "cells": ``(row, col)`` pairs on the grid that was checked
      - "boards": sub-board indices 0..8 of an Ultimate meta board
    """

    winner: Optional[Player] = None
    line: Optional[Tuple] = None
    kind: str = "cells"

    def __bool__(self) -> bool:
        return self.winner is not None


NO_WIN = WinResult()


# ---------- Grid helpers ----------


def empty_grid(size: int) -> Grid:
    return [[EMPTY] * size for _ in range(size)]


def copy_grid(grid: Grid) -> Grid:
    return [list(row) for row in grid]


def move_count(grid: Grid) -> int:
    return sum(1 for row in grid for cell in row if cell != EMPTY)


def other(player: Player) -> Player:
    return "O" if player == "X" else "X"


# ---------- Rules ----------


def _run_from(grid: Grid, row: int, col: int, dr: int, dc: int, length: int):
    symbol = grid[row][col]
    line = []
    for i in range(length):
        r, c = row + dr * i, col + dc * i
        if grid[r][c] != symbol:
            return None
        line.append((r, c))
    return tuple(line)


def check_win(grid: Grid, win_length: int) -> WinResult:
    """Find the first run of ``win_length`` equal non-empty cells.

    Rows are scanned first (row-major), then columns, then ↘ and ↙ diagonals;
    the first run found in that order is returned.
    """
    size = len(grid)
    if win_length <= 0 or win_length > size:
        return NO_WIN

    for dr, dc in DIRECTIONS:
        # Columns are swept column by column, everything else row-major
        if (dr, dc) == (1, 0):
            starts = ((r, c) for c in range(size) for r in range(size))
        else:
            starts = ((r, c) for r in range(size) for c in range(size))
        for row, col in starts:
            end_r = row + dr * (win_length - 1)
            end_c = col + dc * (win_length - 1)
            if not (0 <= end_r < size and 0 <= end_c < size):
                continue
            if grid[row][col] == EMPTY:
                continue
            line = _run_from(grid, row, col, dr, dc, win_length)
            if line:
                return WinResult(winner=grid[row][col], line=line, kind="cells")
    return NO_WIN


def check_draw(grid: Grid) -> bool:
    """True when every cell is occupied. Callers rule out a win first."""
    return all(cell != EMPTY for row in grid for cell in row)


def current_player(grid: Grid) -> Player:
    return "X" if move_count(grid) % 2 == 0 else "O"


def is_valid_move(grid: Grid, row: int, col: int) -> bool:
    if not (0 <= row < len(grid)):
        return False
    if not (0 <= col < len(grid[row])):
        return False
    return grid[row][col] == EMPTY
