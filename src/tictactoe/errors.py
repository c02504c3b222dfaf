"""Exceptions raised by the room store and the game service."""

from __future__ import annotations


class GameError(Exception):
    """Base class for every error surfaced by tictactoe."""


class RoomCodeAllocationError(GameError, RuntimeError):
    """No unused room code could be generated after the allowed number of attempts."""


class RoomNotFoundError(GameError, LookupError):
    pass


class RoomExistsError(GameError):
    pass


class InvalidRoomError(GameError, ValueError):
    """A row failed the storage-boundary settings check."""


class IllegalMoveError(GameError, ValueError):
    pass


class StaleStateError(GameError):
    """The row changed between read and write; refetch and try again."""


class NotAPlayerError(GameError, PermissionError):
    pass
