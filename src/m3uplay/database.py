from __future__ import annotations

import sqlite3
import time
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence
from uuid import uuid4

from .logging_utils import get_logger
from .playlist import Channel

log = get_logger(__name__)

CHANNEL_DATABASE_PATH = Path.home() / ".cache" / "m3uplay" / "channels.sqlite"

_CURRENT_LIST_KEY = "current_list_id"


@dataclass(frozen=True, slots=True)
class SavedListInfo:
    id: str
    name: str
    channel_count: int
    created_at: int
    updated_at: int


@dataclass(frozen=True, slots=True)
class SavedChannelList:
    id: str
    name: str
    channels: tuple[Channel, ...]
    created_at: int
    updated_at: int


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ensure_schema(connection: sqlite3.Connection) -> None:
    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS channel_lists (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL
        );
        CREATE TABLE IF NOT EXISTS channels (
            list_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            channel_id TEXT NOT NULL,
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            channel_group TEXT NOT NULL,
            logo TEXT,
            is_favorite INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (list_id, position)
        ) WITHOUT ROWID;
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT
        );
        """
    )


class ChannelListDatabase:
    """Saved channel lists keyed by list id, backed by sqlite."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else CHANNEL_DATABASE_PATH

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(self.path)
        _ensure_schema(connection)
        return connection

    def put(
        self,
        list_id: str,
        name: str,
        channels: Sequence[Channel],
        *,
        created_at: Optional[int] = None,
        updated_at: Optional[int] = None,
    ) -> None:
        """Insert or overwrite the list stored under *list_id*."""

        now = _now_ms()
        with closing(self._connect()) as connection, connection:
            row = connection.execute(
                "SELECT created_at FROM channel_lists WHERE id = ?", (list_id,)
            ).fetchone()
            if created_at is None:
                created_at = row[0] if row else now
            connection.execute(
                """
                INSERT INTO channel_lists(id, name, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at
                """,
                (list_id, name, created_at, updated_at if updated_at is not None else now),
            )
            connection.execute("DELETE FROM channels WHERE list_id = ?", (list_id,))
            connection.executemany(
                """
                INSERT INTO channels(
                    list_id, position, channel_id, name, url, channel_group, logo, is_favorite
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        list_id,
                        index,
                        channel.id,
                        channel.name,
                        channel.url,
                        channel.group,
                        channel.logo,
                        int(channel.is_favorite),
                    )
                    for index, channel in enumerate(channels)
                ],
            )
        log.debug("Stored list %s (%s) with %d channel(s)", list_id, name, len(channels))

    def save_new(self, name: str, channels: Sequence[Channel]) -> str:
        list_id = str(uuid4())
        self.put(list_id, name, channels)
        log.info("Saved channel list %s as %s", name, list_id)
        return list_id

    def update(self, list_id: str, channels: Sequence[Channel]) -> bool:
        """Replace the channels of an existing list; False if it is unknown."""

        existing = self.get(list_id)
        if existing is None:
            return False
        self.put(list_id, existing.name, channels, created_at=existing.created_at)
        return True

    def get(self, list_id: str) -> Optional[SavedChannelList]:
        with closing(self._connect()) as connection:
            row = connection.execute(
                "SELECT name, created_at, updated_at FROM channel_lists WHERE id = ?",
                (list_id,),
            ).fetchone()
            if row is None:
                return None
            cursor = connection.execute(
                """
                SELECT channel_id, name, url, channel_group, logo, is_favorite
                FROM channels WHERE list_id = ? ORDER BY position
                """,
                (list_id,),
            )
            channels = tuple(
                Channel(
                    id=channel_id,
                    name=name,
                    url=url,
                    group=group,
                    logo=logo,
                    is_favorite=bool(favorite),
                )
                for channel_id, name, url, group, logo, favorite in cursor
            )
        name, created_at, updated_at = row
        return SavedChannelList(list_id, name, channels, created_at, updated_at)

    def list(self) -> List[SavedListInfo]:
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                """
                SELECT l.id, l.name, COUNT(c.position), l.created_at, l.updated_at
                FROM channel_lists AS l
                LEFT JOIN channels AS c ON c.list_id = l.id
                GROUP BY l.id
                ORDER BY l.created_at, l.rowid
                """
            )
            return [SavedListInfo(*row) for row in cursor]

    def __iter__(self) -> Iterator[SavedListInfo]:
        return iter(self.list())

    def delete(self, list_id: str) -> bool:
        with closing(self._connect()) as connection, connection:
            removed = connection.execute(
                "DELETE FROM channel_lists WHERE id = ?", (list_id,)
            ).rowcount
            connection.execute("DELETE FROM channels WHERE list_id = ?", (list_id,))
            if removed:
                connection.execute(
                    "DELETE FROM settings WHERE key = ? AND value = ?",
                    (_CURRENT_LIST_KEY, list_id),
                )
        if removed:
            log.info("Deleted channel list %s", list_id)
        return bool(removed)

    def get_current_selection(self) -> Optional[str]:
        with closing(self._connect()) as connection:
            row = connection.execute(
                "SELECT value FROM settings WHERE key = ?", (_CURRENT_LIST_KEY,)
            ).fetchone()
        return row[0] if row else None

    def set_current_selection(self, list_id: Optional[str]) -> None:
        with closing(self._connect()) as connection, connection:
            if list_id is None:
                connection.execute("DELETE FROM settings WHERE key = ?", (_CURRENT_LIST_KEY,))
            else:
                connection.execute(
                    "INSERT OR REPLACE INTO settings(key, value) VALUES (?, ?)",
                    (_CURRENT_LIST_KEY, list_id),
                )

    def clear(self) -> None:
        """Remove the database file entirely."""

        if self.path.exists():
            try:
                self.path.unlink()
            except OSError as exc:  # pragma: no cover - best effort cleanup
                log.warning("Failed to remove channel database at %s: %s", self.path, exc)


__all__ = [
    "CHANNEL_DATABASE_PATH",
    "ChannelListDatabase",
    "SavedChannelList",
    "SavedListInfo",
]
