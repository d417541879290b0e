"""Parsing and writing of extended M3U playlists."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence
from urllib import request
from urllib.parse import unquote, urlparse
from uuid import uuid4

from .logging_utils import get_logger

log = get_logger(__name__)

PLAYLIST_HEADER = "#EXTM3U"
EXTINF_PREFIX = "#EXTINF:"
DEFAULT_GROUP = "Uncategorized"
UNKNOWN_CHANNEL_NAME = "Unknown Channel"
PLAYLIST_EXTENSION = ".m3u"
URL_SCHEMES = ("http://", "https://")

LOGO_ATTRIBUTE = "tvg-logo"
GROUP_ATTRIBUTE = "group-title"


def _new_channel_id() -> str:
    return str(uuid4())


@dataclass(frozen=True, slots=True)
class Channel:
    """A single playable entry of a playlist."""

    name: str
    url: str
    group: str = DEFAULT_GROUP
    logo: Optional[str] = None
    is_favorite: bool = False
    id: str = field(default_factory=_new_channel_id)

    def same_entry(self, other: "Channel") -> bool:
        """Return True if *other* describes the same entry, ignoring identity."""

        return (
            self.name == other.name
            and self.url == other.url
            and self.group == other.group
            and self.logo == other.logo
            and self.is_favorite == other.is_favorite
        )


@dataclass(frozen=True, slots=True)
class ParsedPlaylist:
    """Channels produced by one parse, in source order."""

    channels: tuple[Channel, ...] = ()

    @property
    def total(self) -> int:
        return len(self.channels)

    def __len__(self) -> int:
        return len(self.channels)

    def __iter__(self) -> Iterator[Channel]:
        return iter(self.channels)


class PlaylistError(RuntimeError):
    """Raised when a playlist cannot be acquired or exported."""


class ExportEmpty(PlaylistError):
    """Raised when an export is requested but no channel is a favorite."""


@dataclass(frozen=True, slots=True)
class ExtinfFields:
    """Fields extracted from one ``#EXTINF`` line."""

    name: Optional[str]
    attributes: str
    logo: Optional[str] = None
    group: str = DEFAULT_GROUP


def iter_attributes(segment: str) -> Iterator[tuple[str, str]]:
    """Yield ``(key, value)`` pairs for every ``key="value"`` in *segment*.

    Values run to the next double quote; escaped quotes are not recognised.
    An unterminated value ends the scan.
    """

    position = 0
    length = len(segment)
    while position < length:
        marker = segment.find('="', position)
        if marker == -1:
            return
        start = marker
        while start > position and not segment[start - 1].isspace():
            start -= 1
        closing = segment.find('"', marker + 2)
        if closing == -1:
            log.debug("Unterminated attribute value in %r", segment)
            return
        yield segment[start:marker], segment[marker + 2 : closing]
        position = closing + 1


def split_extinf(payload: str) -> tuple[str, Optional[str]]:
    """Split the text after ``#EXTINF:`` into attribute segment and name.

    The name is whatever follows the last comma. Without a comma the whole
    payload is the attribute segment and the name is ``None``.
    """

    attributes, comma, name = payload.rpartition(",")
    if not comma:
        return payload, None
    return attributes, name.strip()


def scan_extinf(line: str) -> ExtinfFields:
    """Extract name, logo and group from an ``#EXTINF`` line."""

    payload = line[len(EXTINF_PREFIX) :] if line.startswith(EXTINF_PREFIX) else line
    attributes, name = split_extinf(payload)
    if name is None:
        name = UNKNOWN_CHANNEL_NAME

    logo: Optional[str] = None
    group: Optional[str] = None
    for key, value in iter_attributes(attributes):
        if not value:
            continue
        if key == LOGO_ATTRIBUTE and logo is None:
            logo = value
        elif key == GROUP_ATTRIBUTE and group is None:
            group = value
    return ExtinfFields(
        name=name or None,
        attributes=attributes,
        logo=logo,
        group=group or DEFAULT_GROUP,
    )


def parse_playlist(content: str | Iterable[str]) -> ParsedPlaylist:
    """Parse playlist text into a :class:`ParsedPlaylist`.

    Incomplete entries are dropped; the parse itself never fails.
    """

    lines = content.split("\n") if isinstance(content, str) else content
    channels: List[Channel] = []
    pending: Optional[ExtinfFields] = None

    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(EXTINF_PREFIX):
            if pending is not None:
                log.debug("Dropping entry %r without a stream URL", pending.name)
            pending = scan_extinf(line)
            continue
        if line.startswith(URL_SCHEMES):
            if pending is None or not pending.name:
                log.debug("Ignoring stream URL without metadata: %s", line)
                pending = None
                continue
            channel = Channel(
                name=pending.name,
                url=line,
                group=pending.group,
                logo=pending.logo,
            )
            channels.append(channel)
            log.debug("Added channel %s (%s)", channel.name, channel.url)
            pending = None
    if pending is not None:
        log.debug("Dropping trailing entry %r without a stream URL", pending.name)

    log.info("Parsed %d channels from playlist", len(channels))
    return ParsedPlaylist(tuple(channels))


def _format_extinf(channel: Channel) -> str:
    parts = [f"{EXTINF_PREFIX}-1"]
    if channel.logo:
        parts.append(f' {LOGO_ATTRIBUTE}="{channel.logo}"')
    if channel.group and channel.group != DEFAULT_GROUP:
        parts.append(f' {GROUP_ATTRIBUTE}="{channel.group}"')
    parts.append(f",{channel.name}")
    return "".join(parts)


def serialize_playlist(channels: Sequence[Channel]) -> str:
    """Render *channels* as extended M3U text."""

    lines = [PLAYLIST_HEADER, ""]
    for channel in channels:
        lines.append(_format_extinf(channel))
        lines.append(channel.url)
        lines.append("")
    log.debug("Serialized %d channel(s)", len(channels))
    return "\n".join(lines) + "\n"


def _suggested_name_for_url(url: str) -> str:
    parsed = urlparse(url)
    tail = unquote(parsed.path.rstrip("/").rpartition("/")[2])
    return tail or parsed.netloc or url


def read_playlist_source(
    source: str | Path,
    *,
    progress: Optional[Callable[[int, Optional[int]], None]] = None,
    user_agent: Optional[str] = None,
) -> tuple[str, str]:
    """Read playlist text from a local path or URL.

    Returns the decoded text and a suggested display name for the list.
    """

    def report(loaded: int, total: Optional[int]) -> None:
        if progress is None:
            return
        try:
            progress(loaded, total)
        except Exception:  # pragma: no cover - diagnostic safeguard
            log.exception("Progress callback failed")

    source_str = str(source)
    log.info("Loading playlist from %s", source_str)
    chunk_size = 64_000
    data = bytearray()

    if source_str.startswith(URL_SCHEMES):
        req = request.Request(source_str)
        if user_agent:
            req.add_header("User-Agent", user_agent)
        try:
            with request.urlopen(req, timeout=30.0) as response:
                total = getattr(response, "length", None)
                if total is None:
                    length_header = response.headers.get("Content-Length")
                    if length_header:
                        try:
                            total = int(length_header)
                        except ValueError:
                            total = None
                while True:
                    chunk = response.read(chunk_size)
                    if not chunk:
                        break
                    data.extend(chunk)
                    report(len(data), total)
        except OSError as exc:
            raise PlaylistError(f"Failed to download playlist: {exc}") from exc
        report(len(data), total)
        log.debug("Downloaded playlist bytes: %d", len(data))
        return data.decode("utf8", errors="replace"), _suggested_name_for_url(source_str)

    path = Path(source)
    if path.suffix.lower() != PLAYLIST_EXTENSION:
        raise PlaylistError(f"Please select a valid {PLAYLIST_EXTENSION} file: {path.name}")
    if not path.exists():
        raise PlaylistError(f"Playlist path not found: {path}")
    total = path.stat().st_size
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            data.extend(chunk)
            report(len(data), total)
    report(len(data), total)
    log.debug("Read playlist file %s (%d bytes)", path, len(data))
    return data.decode("utf8", errors="replace"), path.name


__all__ = [
    "Channel",
    "DEFAULT_GROUP",
    "ExportEmpty",
    "ExtinfFields",
    "ParsedPlaylist",
    "PlaylistError",
    "UNKNOWN_CHANNEL_NAME",
    "iter_attributes",
    "parse_playlist",
    "read_playlist_source",
    "scan_extinf",
    "serialize_playlist",
    "split_extinf",
]
