"""Room store: one mutable row per room plus a per-room change feed."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .errors import RoomExistsError, RoomNotFoundError
from .rooms import validate_row

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RoomEvent:
    type: str
    room_code: str
    row: Optional[Row] = None


Listener = Callable[[RoomEvent], None]


@dataclass
class Subscription:
    room_code: str
    listener: Listener = field(repr=False)
    _feed: Optional["RoomFeed"] = field(default=None, repr=False)

    def unsubscribe(self) -> None:
        if self._feed is not None:
            self._feed.remove(self)
            self._feed = None


class RoomFeed:
    """Fan-out of row changes to the listeners registered for that room code."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def add(self, room_code: str, listener: Listener) -> Subscription:
        sub = Subscription(room_code=room_code, listener=listener, _feed=self)
        with self._lock:
            self._listeners.setdefault(room_code, []).append(sub)
        return sub

    def remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._listeners.get(sub.room_code, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._listeners.pop(sub.room_code, None)

    def publish(self, event: RoomEvent) -> None:
        with self._lock:
            subs = list(self._listeners.get(event.room_code, []))
        for sub in subs:
            # Each listener gets its own copy so it cannot mutate another's view
            row = copy.deepcopy(event.row) if event.row is not None else None
            try:
                sub.listener(RoomEvent(event.type, event.room_code, row))
            except Exception:
                # Delivery continues past a failing listener
                logger.exception(
                    "listener for room %s failed on %s", event.room_code, event.type
                )

    def listener_count(self, room_code: str) -> int:
        with self._lock:
            return len(self._listeners.get(room_code, []))


class BaseRoomStore:
    """Shared write path: every write and its notification run under one lock,
    so listeners see changes in write order.

    Subclasses implement the ``_load``/``_insert``/``_swap``/``_remove``/``_scan``
    primitives. ``_swap`` must be atomic against every other writer of the row,
    including ones outside this process.
    """

    def __init__(self) -> None:
        self.feed = RoomFeed()
        self._lock = threading.RLock()

    # ---- primitives ----

    def _load(self, room_code: str) -> Optional[Row]:
        raise NotImplementedError

    def _insert(self, row: Row) -> Row:
        """Store a new row; raise RoomExistsError if the code is taken."""
        raise NotImplementedError

    def _swap(
        self, room_code: str, apply: Callable[[Optional[Row]], Optional[Row]]
    ) -> Optional[Row]:
        """Replace the row with ``apply(current)`` unless that returns None."""
        raise NotImplementedError

    def _remove(self, room_code: str) -> bool:
        raise NotImplementedError

    def _scan_updated_before(self, cutoff: datetime) -> List[str]:
        raise NotImplementedError

    # ---- public API ----

    def get(self, room_code: str) -> Optional[Row]:
        with self._lock:
            return self._load(room_code)

    def exists(self, room_code: str) -> bool:
        return self.get(room_code) is not None

    def insert(self, row: Row) -> Row:
        validate_row(row)
        now = _now()
        row = dict(row, created_at=now, updated_at=now)
        with self._lock:
            saved = self._insert(row)
            self.feed.publish(RoomEvent(INSERT, saved["room_code"], saved))
        return saved

    def _next_row(
        self,
        room_code: str,
        current: Optional[Row],
        changes: Row,
        expect: Optional[Row],
    ) -> Optional[Row]:
        if current is None:
            raise RoomNotFoundError(f"Room {room_code} not found")
        if expect:
            for key, value in expect.items():
                if current.get(key) != value:
                    logger.debug("update of %s skipped: %s changed", room_code, key)
                    return None
        row = dict(current, **changes)
        row["room_code"] = room_code
        row["created_at"] = current.get("created_at")
        row["updated_at"] = _now()
        validate_row(row)
        return row

    def update(
        self,
        room_code: str,
        changes: Row,
        expect: Optional[Row] = None,
    ) -> Optional[Row]:
        """Apply ``changes`` atomically.

        With ``expect``, the write only happens if every listed field still holds
        the expected value; otherwise nothing changes and None is returned.
        """
        with self._lock:
            saved = self._swap(
                room_code,
                lambda current: self._next_row(room_code, current, changes, expect),
            )
            if saved is not None:
                self.feed.publish(RoomEvent(UPDATE, room_code, saved))
        return saved

    def delete(self, room_code: str) -> bool:
        with self._lock:
            removed = self._remove(room_code)
            if removed:
                self.feed.publish(RoomEvent(DELETE, room_code, None))
        return removed

    def purge_stale(self, max_age_seconds: float) -> List[str]:
        """Delete rooms not written to within the last ``max_age_seconds``."""
        cutoff = _now() - timedelta(seconds=max_age_seconds)
        with self._lock:
            expired = self._scan_updated_before(cutoff)
        purged = [code for code in expired if self.delete(code)]
        if purged:
            logger.info("purged %d stale room(s)", len(purged))
        return purged

    def subscribe(self, room_code: str, listener: Listener) -> Subscription:
        return self.feed.add(room_code, listener)


class MemoryRoomStore(BaseRoomStore):
    """Dict-backed store for tests and local play."""

    def __init__(self) -> None:
        super().__init__()
        self.rows: Dict[str, Row] = {}

    def _load(self, room_code: str) -> Optional[Row]:
        row = self.rows.get(room_code)
        return copy.deepcopy(row) if row is not None else None

    def _insert(self, row: Row) -> Row:
        if row["room_code"] in self.rows:
            raise RoomExistsError(f"Room {row['room_code']} already exists")
        self.rows[row["room_code"]] = copy.deepcopy(row)
        return copy.deepcopy(row)

    def _swap(
        self, room_code: str, apply: Callable[[Optional[Row]], Optional[Row]]
    ) -> Optional[Row]:
        # Callers hold the store lock, which covers every writer of this dict
        row = apply(self._load(room_code))
        if row is None:
            return None
        self.rows[room_code] = copy.deepcopy(row)
        return copy.deepcopy(row)

    def _remove(self, room_code: str) -> bool:
        return self.rows.pop(room_code, None) is not None

    def _scan_updated_before(self, cutoff: datetime) -> List[str]:
        return [
            code
            for code, row in self.rows.items()
            if row.get("updated_at") is not None and row["updated_at"] <= cutoff
        ]
