"""SQL-backed room store: one ``rooms`` row per room, via SQLModel."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .errors import RoomExistsError
from .store import BaseRoomStore, Row

logger = logging.getLogger(__name__)


class RoomRow(SQLModel, table=True):
    __tablename__ = "rooms"
    __table_args__ = (
        CheckConstraint("mode IN ('classic', 'ultimate')", name="ck_rooms_mode"),
        CheckConstraint(
            "grid_size IS NULL OR (grid_size >= 3 AND grid_size <= 10)",
            name="ck_rooms_grid_size",
        ),
        CheckConstraint(
            "win_length IS NULL OR win_length >= 3", name="ck_rooms_win_length"
        ),
        CheckConstraint(
            "mode <> 'classic' OR (grid_size IS NOT NULL AND win_length IS NOT NULL"
            " AND win_length <= grid_size)",
            name="ck_rooms_classic_settings",
        ),
        CheckConstraint(
            "mode <> 'ultimate' OR (grid_size IS NULL AND win_length IS NULL)",
            name="ck_rooms_ultimate_settings",
        ),
        CheckConstraint("match_id >= 0", name="ck_rooms_match_id"),
    )

    room_code: str = Field(primary_key=True, max_length=5)
    mode: str
    grid_size: Optional[int] = Field(default=None)
    win_length: Optional[int] = Field(default=None)
    players: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    # One-element list holding the JSON-encoded matrix
    grid: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    restart_votes: Dict[str, bool] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    match_id: int = Field(default=0)
    # Bumped on every write; guards compare-and-swap across processes
    revision: int = Field(default=0)
    last_move: Optional[List[int]] = Field(default=None, sa_column=Column(JSON))
    created_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    updated_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), index=True)
    )


COLUMNS = (
    "room_code",
    "mode",
    "grid_size",
    "win_length",
    "players",
    "grid",
    "restart_votes",
    "match_id",
    "last_move",
    "created_at",
    "updated_at",
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_row(obj: RoomRow) -> Row:
    row = {name: getattr(obj, name) for name in COLUMNS}
    row["created_at"] = _aware(row["created_at"])
    row["updated_at"] = _aware(row["updated_at"])
    return row


def make_engine(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url)


class SQLRoomStore(BaseRoomStore):
    """Room store on any SQLAlchemy database.

    Several stores (or processes) may share one database. Writes are guarded by
    the row's ``revision``: a write lands only if nobody bumped it since the row
    was read, otherwise the expectation is checked again on the fresh row.
    """

    def __init__(self, database_url: str = "sqlite:///./tictactoe.db", engine=None) -> None:
        super().__init__()
        self.engine = engine if engine is not None else make_engine(database_url)
        SQLModel.metadata.create_all(self.engine)

    def _load(self, room_code: str) -> Optional[Row]:
        return self._load_revision(room_code)[0]

    def _load_revision(self, room_code: str) -> Tuple[Optional[Row], int]:
        with Session(self.engine) as session:
            obj = session.get(RoomRow, room_code)
            if obj is None:
                return None, 0
            return _to_row(obj), obj.revision

    def _write_revision(self, row: Row, revision: int) -> bool:
        values = {name: row.get(name) for name in COLUMNS if name != "room_code"}
        statement = (
            update(RoomRow)
            .where(RoomRow.room_code == row["room_code"], RoomRow.revision == revision)
            .values(revision=revision + 1, **values)
        )
        with self.engine.begin() as connection:
            result = connection.execute(statement)
        return result.rowcount == 1

    def _insert(self, row: Row) -> Row:
        obj = RoomRow(**{name: row.get(name) for name in COLUMNS})
        with Session(self.engine) as session:
            session.add(obj)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if self._load(row["room_code"]) is not None:
                    raise RoomExistsError(
                        f"Room {row['room_code']} already exists"
                    ) from exc
                raise
            session.refresh(obj)
            return _to_row(obj)

    def _swap(
        self, room_code: str, apply: Callable[[Optional[Row]], Optional[Row]]
    ) -> Optional[Row]:
        while True:
            current, revision = self._load_revision(room_code)
            row = apply(current)
            if row is None:
                return None
            if self._write_revision(row, revision):
                return row
            logger.debug("room %s written elsewhere, re-checking", room_code)

    def _remove(self, room_code: str) -> bool:
        with Session(self.engine) as session:
            obj = session.get(RoomRow, room_code)
            if obj is None:
                return False
            session.delete(obj)
            session.commit()
            return True

    def _scan_updated_before(self, cutoff: datetime) -> List[str]:
        with Session(self.engine) as session:
            statement = select(RoomRow.room_code).where(RoomRow.updated_at <= cutoff)
            return list(session.exec(statement).all())
