"""The operations a user interface drives, and the status it renders."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import DEFAULT_EXPORT_FILENAME
from .database import ChannelListDatabase, SavedListInfo
from .logging_utils import get_logger
from .playlist import ExportEmpty, ParsedPlaylist, parse_playlist
from .session import FaultKind, SessionState, StreamSession
from .store import ChannelStore

log = get_logger(__name__)

DownloadTrigger = Callable[[str, str], None]

FAULT_HINTS: dict[FaultKind, str] = {
    FaultKind.CAPABILITY_MISMATCH: "Install a player that supports HLS streams, such as mpv.",
    FaultKind.TRANSPORT: "Some streams may be offline, blocked or geo-restricted. Retry or pick another channel.",
    FaultKind.PLAYBACK_START: "The stream loaded but playback was refused. Press play or retry.",
}


@dataclass(frozen=True, slots=True)
class PlaybackStatus:
    """Snapshot of what the interface should show."""

    state: SessionState
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    channel_group: Optional[str] = None
    is_loading: bool = False
    is_playing: bool = False
    has_error: bool = False
    error_message: Optional[str] = None
    hint: Optional[str] = None
    is_muted: bool = False
    total_channels: int = 0
    favorite_count: int = 0


def save_download(payload: str, filename: str, directory: Path) -> Path:
    """Write an exported playlist to *directory* and return its path."""

    directory.mkdir(parents=True, exist_ok=True)
    target = directory / filename
    target.write_text(payload, encoding="utf8")
    log.info("Wrote %s", target)
    return target


class PlaybackFacade:
    def __init__(
        self,
        session: StreamSession,
        *,
        database: Optional[ChannelListDatabase] = None,
        download: Optional[DownloadTrigger] = None,
        export_filename: str = DEFAULT_EXPORT_FILENAME,
        autoplay_first_channel: bool = True,
    ) -> None:
        self.session = session
        self.store = ChannelStore()
        self.current_list_id: Optional[str] = None
        self.notice: Optional[str] = None
        self._database = database
        self._download = download
        self._export_filename = export_filename
        self._autoplay_first_channel = autoplay_first_channel

    # Playlist management

    def load_playlist(self, text: str, suggested_name: str) -> ParsedPlaylist:
        """Replace the loaded channels with those parsed from *text*."""

        parsed = parse_playlist(text)
        self.session.clear()
        self.store = self.store.replace_all(parsed.channels)
        self.current_list_id = None
        if not parsed.channels:
            self.notice = f"No channels found in {suggested_name}"
            log.warning("Playlist %s contained no playable channels", suggested_name)
            if self._database is not None:
                self._database.set_current_selection(None)
            return parsed
        self.notice = None
        if self._database is not None:
            self.current_list_id = self._database.save_new(suggested_name, parsed.channels)
            self._database.set_current_selection(self.current_list_id)
        if self._autoplay_first_channel:
            self.select(parsed.channels[0].id)
        return parsed

    def merge_playlist(self, text: str) -> int:
        """Add channels from *text* that are not loaded yet; returns how many."""

        before = len(self.store)
        self.store = self.store.merge(parse_playlist(text).channels)
        added = len(self.store) - before
        if added:
            self._persist()
        return added

    def clear(self) -> None:
        """Stop playback and forget the loaded playlist."""

        self.session.clear()
        self.store = self.store.clear()
        self.current_list_id = None
        self.notice = None
        if self._database is not None:
            self._database.set_current_selection(None)

    def saved_lists(self) -> list[SavedListInfo]:
        if self._database is None:
            return []
        return self._database.list()

    def open_saved_list(self, list_id: str) -> bool:
        if self._database is None:
            return False
        saved = self._database.get(list_id)
        if saved is None:
            log.warning("Saved list %s not found", list_id)
            return False
        self.session.clear()
        self.store = ChannelStore.from_channels(saved.channels)
        self.current_list_id = saved.id
        self.notice = None
        self._database.set_current_selection(saved.id)
        log.info("Opened saved list %s with %d channel(s)", saved.name, len(saved.channels))
        if self._autoplay_first_channel and saved.channels:
            self.select(saved.channels[0].id)
        return True

    def delete_saved_list(self, list_id: str) -> bool:
        if self._database is None:
            return False
        if list_id == self.current_list_id:
            self.clear()
        return self._database.delete(list_id)

    def restore_last_session(self) -> bool:
        """Reopen the list that was current when the application last ran."""

        if self._database is None:
            return False
        list_id = self._database.get_current_selection()
        if list_id is None:
            return False
        return self.open_saved_list(list_id)

    def _persist(self) -> None:
        if self._database is None or self.current_list_id is None:
            return
        if not self._database.update(self.current_list_id, self.store.channels):
            log.warning("Current list %s vanished from storage", self.current_list_id)

    # Channel operations

    def select(self, channel_id: Optional[str]) -> None:
        """Make *channel_id* the selected channel and start playing it.

        Selecting the channel that is already loading, playing or paused does
        nothing; after a fault (including the player going away) it restarts.
        """

        current = self.session.channel
        if (
            channel_id is not None
            and current is not None
            and current.id == channel_id
            and self.session.state not in (SessionState.IDLE, SessionState.ERRORED)
        ):
            return
        self.store = self.store.select(channel_id)
        self.session.select(self.store.selected)

    def toggle_favorite(self, channel_id: str) -> None:
        self.store = self.store.toggle_favorite(channel_id)
        self._persist()

    def delete(self, channel_id: str) -> None:
        previous = self.store.selected_id
        self.store = self.store.delete(channel_id)
        if previous == channel_id:
            self.session.select(self.store.selected)
        self._persist()

    def export_favorites(self) -> bool:
        """Hand the favorites playlist to the download collaborator."""

        try:
            payload = self.store.export_favorites()
        except ExportEmpty as exc:
            self.notice = str(exc)
            log.info("Export skipped: %s", exc)
            return False
        if self._download is None:
            self.notice = "Export is not available"
            log.warning("No download handler configured for export")
            return False
        self._download(payload, self._export_filename)
        count = len(self.store.favorites())
        self.notice = f"Exported {count} favorite channel(s) to {self._export_filename}"
        return True

    # Playback controls

    def play(self) -> bool:
        return self.session.resume()

    def pause(self) -> bool:
        return self.session.pause()

    def toggle_play(self) -> bool:
        return self.session.toggle_pause()

    def mute(self, muted: bool) -> None:
        self.session.set_muted(muted)

    def toggle_mute(self) -> None:
        self.session.set_muted(not self.session.muted)

    def retry(self) -> bool:
        return self.session.retry()

    def request_fullscreen(self) -> None:
        self.session.request_fullscreen()

    def close(self) -> None:
        self.session.close()

    def status(self) -> PlaybackStatus:
        session = self.session
        channel = session.channel
        fault = session.fault
        return PlaybackStatus(
            state=session.state,
            channel_id=channel.id if channel else None,
            channel_name=channel.name if channel else None,
            channel_group=channel.group if channel else None,
            is_loading=session.state is SessionState.INITIALIZING,
            is_playing=session.state is SessionState.PLAYING,
            has_error=session.state is SessionState.ERRORED,
            error_message=fault.reason if fault else None,
            hint=FAULT_HINTS.get(fault.kind) if fault else None,
            is_muted=session.muted,
            total_channels=len(self.store),
            favorite_count=len(self.store.favorites()),
        )


__all__ = ["DownloadTrigger", "FAULT_HINTS", "PlaybackFacade", "PlaybackStatus", "save_download"]
