"""Unit tests for the classic rules engine."""

import random

from tictactoe import game
from tictactoe.game import check_draw, check_win, current_player, is_valid_move


def test_top_row_win():
    grid = [["X", "X", "X"], ["O", "O", ""], ["", "", ""]]
    result = check_win(grid, 3)
    assert result.winner == "X"
    assert result.line == ((0, 0), (0, 1), (0, 2))
    assert result.kind == "cells"


def test_no_win_on_empty_grid():
    result = check_win(game.empty_grid(5), 3)
    assert result.winner is None
    assert result.line is None
    assert not result


def test_column_and_diagonal_wins():
    column = [["", "O", ""], ["X", "O", ""], ["X", "O", "X"]]
    assert check_win(column, 3).line == ((0, 1), (1, 1), (2, 1))

    down_right = game.empty_grid(4)
    for i in range(3):
        down_right[i + 1][i] = "X"
    assert check_win(down_right, 3).line == ((1, 0), (2, 1), (3, 2))

    down_left = game.empty_grid(4)
    for i in range(3):
        down_left[i][3 - i] = "O"
    result = check_win(down_left, 3)
    assert result.winner == "O"
    assert result.line == ((0, 3), (1, 2), (2, 1))


def test_rows_are_found_before_columns():
    grid = [
        ["O", "", "", ""],
        ["O", "", "", ""],
        ["O", "", "", ""],
        ["", "X", "X", "X"],
    ]
    result = check_win(grid, 3)
    assert result.winner == "X"
    assert result.line == ((3, 1), (3, 2), (3, 3))


def test_short_run_is_not_a_win():
    grid = game.empty_grid(5)
    grid[2][0] = grid[2][1] = grid[2][2] = "X"
    assert check_win(grid, 4).winner is None


def test_long_run_reports_exactly_win_length_cells():
    grid = game.empty_grid(5)
    grid[0] = ["X"] * 5
    result = check_win(grid, 3)
    assert result.line == ((0, 0), (0, 1), (0, 2))


def test_random_boards_only_report_full_collinear_runs():
    rng = random.Random(1234)
    for _ in range(300):
        size = rng.randint(3, 7)
        k = rng.randint(3, size)
        grid = [[rng.choice(["X", "O", "", ""]) for _ in range(size)] for _ in range(size)]
        result = check_win(grid, k)
        if result.winner is None:
            continue
        assert len(result.line) == k
        assert all(grid[r][c] == result.winner for r, c in result.line)
        (r0, c0), (r1, c1) = result.line[0], result.line[1]
        step = (r1 - r0, c1 - c0)
        assert step in game.DIRECTIONS
        for i, (r, c) in enumerate(result.line):
            assert (r, c) == (r0 + step[0] * i, c0 + step[1] * i)


def test_draw_requires_full_grid():
    full = [["X", "O", "X"], ["X", "O", "O"], ["O", "X", "X"]]
    assert check_win(full, 3).winner is None
    assert check_draw(full)

    partial = [row[:] for row in full]
    partial[1][1] = ""
    assert not check_draw(partial)


def test_current_player_follows_move_parity():
    grid = game.empty_grid(3)
    assert current_player(grid) == "X"
    grid[0][0] = "X"
    assert current_player(grid) == "O"
    grid[1][1] = "O"
    assert current_player(grid) == "X"


def test_is_valid_move_checks_bounds_and_occupancy():
    grid = game.empty_grid(3)
    grid[1][1] = "X"
    assert is_valid_move(grid, 0, 0)
    assert not is_valid_move(grid, 1, 1)
    assert not is_valid_move(grid, -1, 0)
    assert not is_valid_move(grid, 3, 0)
    assert not is_valid_move(grid, 0, 3)
