"""Textual front end driving :class:`~m3uplay.facade.PlaybackFacade`."""
from __future__ import annotations

from typing import Optional

try:
    from textual import on
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.css.query import NoMatches
    from textual.reactive import reactive
    from textual.widgets import Footer, Header, Label, ListItem, ListView, Static
except ModuleNotFoundError as exc:  # pragma: no cover - dependency guard
    raise ModuleNotFoundError(
        "The 'textual' package is required to run the m3uplay interface. "
        "Install dependencies with 'pip install -e .[dev]' or 'pip install m3uplay'."
    ) from exc

from rich.markup import escape

from .facade import PlaybackFacade, PlaybackStatus
from .logging_utils import get_logger
from .playlist import Channel
from .session import SessionState, StreamSession

log = get_logger(__name__)

STATE_LABELS = {
    SessionState.IDLE: "No channel selected",
    SessionState.INITIALIZING: "Loading stream…",
    SessionState.PLAYING: "Playing",
    SessionState.PAUSED: "Paused",
    SessionState.ERRORED: "Stream error",
}


class GroupHeader(ListItem):
    def __init__(self, group: str, count: int) -> None:
        super().__init__(Label(f"[b]{escape(group)}[/b] ({count})"), disabled=True)
        self.group = group


class ChannelListItem(ListItem):
    """A selectable channel row."""

    def __init__(self, channel: Channel, *, selected: bool = False) -> None:
        self.channel = channel
        self._label = Label(self._render_label(channel, selected))
        super().__init__(self._label)

    @staticmethod
    def _render_label(channel: Channel, selected: bool) -> str:
        star = "★ " if channel.is_favorite else "  "
        marker = "▶ " if selected else ""
        return f"{star}{marker}{escape(channel.name)}"


class StatusBar(Static):
    status: reactive[str] = reactive("")

    def watch_status(self, status: str) -> None:
        self.update(status)


def format_status(status: PlaybackStatus, notice: Optional[str] = None) -> str:
    """Render *status* as a single status-bar line."""

    parts = [STATE_LABELS[status.state]]
    if status.channel_name:
        group = f" ({status.channel_group})" if status.channel_group else ""
        parts.append(f"{status.channel_name}{group}")
    if status.is_muted:
        parts.append("muted")
    if status.has_error and status.error_message:
        parts.append(status.error_message)
        if status.hint:
            parts.append(status.hint)
    parts.append(f"{status.total_channels} channels, {status.favorite_count} favorites")
    if notice:
        parts.append(notice)
    return " | ".join(parts)


class M3UPlayApp(App[None]):
    """Channel browser with a single playback session."""

    CSS = """
    #channel-list {
        height: 1fr;
    }
    #status {
        height: auto;
        padding: 0 1;
        background: $boost;
    }
    """
    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("f", "toggle_favorite", "Favorite"),
        Binding("delete", "delete_channel", "Delete"),
        Binding("e", "export_favorites", "Export favorites"),
        Binding("space", "toggle_play", "Play/Pause"),
        Binding("m", "toggle_mute", "Mute"),
        Binding("r", "retry", "Retry"),
        Binding("f11", "fullscreen", "Fullscreen"),
        Binding("ctrl+n", "clear_playlist", "Clear playlist"),
    ]

    def __init__(
        self,
        facade: PlaybackFacade,
        *,
        playlist_text: Optional[str] = None,
        playlist_name: Optional[str] = None,
    ) -> None:
        super().__init__()
        self.facade = facade
        self._playlist_text = playlist_text
        self._playlist_name = playlist_name or "playlist.m3u"
        self._remove_listener = facade.session.add_listener(self._on_session_change)

    def compose(self) -> ComposeResult:
        yield Header()
        yield ListView(id="channel-list")
        yield StatusBar(id="status")
        yield Footer()

    def on_mount(self) -> None:
        if self._playlist_text is not None:
            self.facade.load_playlist(self._playlist_text, self._playlist_name)
        elif not self.facade.restore_last_session():
            self.facade.notice = "Open a playlist with: m3uplay PLAYLIST.m3u"
        self._refresh_channels()
        self._refresh_status()
        self.query_one("#channel-list", ListView).focus()

    def on_unmount(self) -> None:
        self._remove_listener()
        self.facade.close()

    def _on_session_change(self, _session: StreamSession) -> None:
        self._refresh_status()

    def _refresh_status(self) -> None:
        try:
            bar = self.query_one(StatusBar)
        except NoMatches:
            log.debug("Dropping status update; status bar unavailable")
            return
        bar.status = format_status(self.facade.status(), self.facade.notice)

    def _refresh_channels(self) -> None:
        list_view = self.query_one("#channel-list", ListView)
        store = self.facade.store
        list_view.clear()
        for group, ids in store.groups().items():
            list_view.append(GroupHeader(group, len(ids)))
            for channel_id in ids:
                channel = store.get(channel_id)
                if channel is not None:
                    list_view.append(
                        ChannelListItem(channel, selected=channel_id == store.selected_id)
                    )
        self.title = f"m3uplay – {len(store)} channels"

    def _highlighted_channel(self) -> Optional[Channel]:
        item = self.query_one("#channel-list", ListView).highlighted_child
        if isinstance(item, ChannelListItem):
            return item.channel
        return None

    def _after_change(self) -> None:
        self._refresh_channels()
        self._refresh_status()

    @on(ListView.Selected, "#channel-list")
    def _on_channel_selected(self, event: ListView.Selected) -> None:
        if isinstance(event.item, ChannelListItem):
            self.facade.select(event.item.channel.id)
            self._after_change()

    def action_toggle_favorite(self) -> None:
        channel = self._highlighted_channel()
        if channel is not None:
            self.facade.toggle_favorite(channel.id)
            self._after_change()

    def action_delete_channel(self) -> None:
        channel = self._highlighted_channel()
        if channel is not None:
            self.facade.delete(channel.id)
            self._after_change()

    def action_export_favorites(self) -> None:
        self.facade.export_favorites()
        self._refresh_status()

    def action_toggle_play(self) -> None:
        self.facade.toggle_play()
        self._refresh_status()

    def action_toggle_mute(self) -> None:
        self.facade.toggle_mute()
        self._refresh_status()

    def action_retry(self) -> None:
        self.facade.retry()
        self._refresh_status()

    def action_fullscreen(self) -> None:
        self.facade.request_fullscreen()

    def action_clear_playlist(self) -> None:
        self.facade.clear()
        self._after_change()


__all__ = ["M3UPlayApp", "format_status"]
