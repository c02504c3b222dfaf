"""Classic and Ultimate Tic-Tac-Toe: rules, shared rooms, and the web API."""

from .offline import OfflineGame
from .service import GameService
from .store import MemoryRoomStore
from .api import app

__all__ = ["GameService", "MemoryRoomStore", "OfflineGame", "app"]
