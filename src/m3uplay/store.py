"""In-memory channel collection with selection and favorite bookkeeping."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Iterator, Optional

from .logging_utils import get_logger
from .playlist import Channel, ExportEmpty, serialize_playlist

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ChannelStore:
    """Immutable snapshot of the loaded channels.

    Every mutation returns a new store; callers swap their reference.
    """

    channels: tuple[Channel, ...] = ()
    selected_id: Optional[str] = None

    @classmethod
    def from_channels(
        cls, channels: Iterable[Channel], *, select_first: bool = False
    ) -> "ChannelStore":
        items = tuple(channels)
        selected = items[0].id if select_first and items else None
        return cls(items, selected)

    def __len__(self) -> int:
        return len(self.channels)

    def __iter__(self) -> Iterator[Channel]:
        return iter(self.channels)

    def __contains__(self, channel_id: object) -> bool:
        return self.get(channel_id) is not None  # type: ignore[arg-type]

    def get(self, channel_id: str) -> Optional[Channel]:
        for channel in self.channels:
            if channel.id == channel_id:
                return channel
        return None

    @property
    def selected(self) -> Optional[Channel]:
        if self.selected_id is None:
            return None
        return self.get(self.selected_id)

    def favorites(self) -> tuple[Channel, ...]:
        return tuple(channel for channel in self.channels if channel.is_favorite)

    def groups(self) -> dict[str, tuple[str, ...]]:
        """Return channel ids keyed by group, in order of first appearance."""

        grouped: dict[str, list[str]] = {}
        for channel in self.channels:
            grouped.setdefault(channel.group, []).append(channel.id)
        return {group: tuple(ids) for group, ids in grouped.items()}

    def replace_all(
        self, channels: Iterable[Channel], *, select_first: bool = False
    ) -> "ChannelStore":
        """Return a store holding only *channels*."""

        store = ChannelStore.from_channels(channels, select_first=select_first)
        log.info("Replaced channel store with %d channel(s)", len(store))
        return store

    def merge(self, channels: Iterable[Channel]) -> "ChannelStore":
        """Append *channels* whose stream URL is not already present."""

        known_urls = {channel.url for channel in self.channels}
        added: list[Channel] = []
        for channel in channels:
            if channel.url in known_urls:
                log.debug("Skipping duplicate channel %s (%s)", channel.name, channel.url)
                continue
            known_urls.add(channel.url)
            added.append(channel)
        log.info("Merged %d new channel(s) into store", len(added))
        return replace(self, channels=self.channels + tuple(added))

    def select(self, channel_id: Optional[str]) -> "ChannelStore":
        if channel_id is not None and self.get(channel_id) is None:
            raise KeyError(channel_id)
        return replace(self, selected_id=channel_id)

    def toggle_favorite(self, channel_id: str) -> "ChannelStore":
        """Flip the favorite flag of one channel; its id is unchanged."""

        updated: list[Channel] = []
        found = False
        for channel in self.channels:
            if channel.id == channel_id:
                channel = replace(channel, is_favorite=not channel.is_favorite)
                found = True
                log.debug("Channel %s favorite=%s", channel.name, channel.is_favorite)
            updated.append(channel)
        if not found:
            log.warning("Cannot toggle favorite for unknown channel id %s", channel_id)
            return self
        return replace(self, channels=tuple(updated))

    def delete(self, channel_id: str) -> "ChannelStore":
        """Remove a channel, moving the selection to the first remaining one if needed."""

        remaining = tuple(channel for channel in self.channels if channel.id != channel_id)
        if len(remaining) == len(self.channels):
            log.warning("Cannot delete unknown channel id %s", channel_id)
            return self
        selected_id = self.selected_id
        if selected_id == channel_id:
            selected_id = remaining[0].id if remaining else None
        return ChannelStore(remaining, selected_id)

    def clear(self) -> "ChannelStore":
        return ChannelStore()

    def export_favorites(self) -> str:
        """Return the favorites as playlist text.

        Raises :class:`ExportEmpty` when no channel is a favorite.
        """

        favorites = self.favorites()
        if not favorites:
            raise ExportEmpty("No favorite channels to export")
        return serialize_playlist(favorites)


__all__ = ["ChannelStore"]
