"""Command line entry point for m3uplay."""
from __future__ import annotations

import argparse
from functools import partial
from pathlib import Path
from typing import Iterable, Optional

from . import __version__
from .app import M3UPlayApp
from .config import CONFIG_PATH, AppConfig, load_config
from .database import ChannelListDatabase
from .facade import PlaybackFacade, save_download
from .logging_utils import configure_logging, detach_stream_handler, get_log_file_path, get_logger
from .player import MpvSurface, probe_player
from .playlist import PlaylistError, parse_playlist, read_playlist_source
from .session import StreamSession
from .store import ChannelStore

log = get_logger(__name__)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Play channels from an M3U playlist")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "playlist",
        nargs="?",
        default=None,
        help="Path to a .m3u file or an http(s) playlist URL",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Path to configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override M3UPLAY_LOG_LEVEL for this invocation",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Write logs to this file instead of the default or M3UPLAY_LOG_FILE",
    )
    parser.add_argument(
        "--player",
        dest="preferred_player",
        default=None,
        help="Preferred media player executable (falls back to auto-detect)",
    )
    parser.add_argument(
        "--list-channels",
        action="store_true",
        help="Print the playlist's channels grouped by group and exit.",
    )
    parser.add_argument(
        "--list-saved",
        action="store_true",
        help="Print the saved channel lists and exit.",
    )
    parser.add_argument(
        "--favorite",
        dest="favorites",
        action="append",
        default=[],
        metavar="NAME",
        help="Mark the channel with this name as a favorite (repeatable).",
    )
    parser.add_argument(
        "--export-favorites",
        metavar="FILE",
        type=Path,
        default=None,
        help="Write the favorite channels of the playlist to FILE and exit.",
    )
    parser.add_argument(
        "--probe-player",
        action="store_true",
        help="Check that a supported media player can be executed and exit.",
    )
    parser.add_argument(
        "--channel-logs",
        metavar="NAME",
        default=None,
        help="Print log entries mentioning the given channel name and exit.",
    )
    return parser.parse_args(argv)


def _print_channel_logs(channel_name: str) -> None:
    """Write log entries that reference *channel_name* to stdout."""

    log_path = get_log_file_path()
    if log_path is None:
        print("File logging is not enabled; set --log-file or M3UPLAY_LOG_FILE.")
        return

    if not log_path.exists():
        print(f"No log file found at {log_path}")
        return

    token = channel_name.lower()
    matches = 0

    print(f"Log file: {log_path}")
    with log_path.open("r", encoding="utf8", errors="replace") as handle:
        for raw_line in handle:
            line = raw_line.rstrip("\n")
            if token in line.lower():
                print(line)
                matches += 1

    if matches == 0:
        print(f"No log entries mentioning '{channel_name}' were found.")


def _print_channels(store: ChannelStore) -> None:
    for group, ids in store.groups().items():
        print(f"{group} ({len(ids)})")
        for channel_id in ids:
            channel = store.get(channel_id)
            if channel is None:
                continue
            star = "*" if channel.is_favorite else " "
            print(f"  {star} {channel.name}  {channel.url}")


def _print_saved_lists(database: ChannelListDatabase) -> None:
    saved = database.list()
    if not saved:
        print("No saved channel lists.")
        return
    current = database.get_current_selection()
    for info in saved:
        marker = "*" if info.id == current else " "
        print(f"{marker} {info.id}  {info.name}  ({info.channel_count} channels)")


def _mark_favorites(store: ChannelStore, names: Iterable[str]) -> ChannelStore:
    wanted = {name.casefold() for name in names}
    for channel in store.channels:
        if channel.name.casefold() in wanted and not channel.is_favorite:
            store = store.toggle_favorite(channel.id)
    return store


def _export(store: ChannelStore, destination: Path) -> int:
    try:
        payload = store.export_favorites()
    except PlaylistError as exc:
        print(exc)
        return 1
    target = save_download(payload, destination.name, destination.parent)
    print(f"Exported {len(store.favorites())} favorite channel(s) to {target}")
    return 0


def build_facade(config: AppConfig, preferred_player: Optional[str] = None) -> PlaybackFacade:
    """Wire the session, surface and persistence described by *config*."""

    surface = MpvSurface(preferred_player or config.player)
    session = StreamSession(surface)
    if config.start_muted:
        session.set_muted(True)
    return PlaybackFacade(
        session,
        database=ChannelListDatabase(config.database_path),
        download=partial(_download_to, config.export_directory),
        export_filename=config.export_filename,
        autoplay_first_channel=config.autoplay_first_channel,
    )


def _download_to(directory: Path, payload: str, filename: str) -> None:
    save_download(payload, filename, directory)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(
        level=args.log_level,
        log_file=str(args.log_file) if args.log_file is not None else None,
    )
    if args.channel_logs:
        _print_channel_logs(args.channel_logs)
        return 0
    log.info("CLI invoked with config=%s", args.config)
    config = load_config(args.config)

    if args.probe_player:
        try:
            print(probe_player(args.preferred_player or config.player))
        except RuntimeError as exc:
            print(exc)
            return 1
        return 0

    if args.list_saved:
        _print_saved_lists(ChannelListDatabase(config.database_path))
        return 0

    text: Optional[str] = None
    name: Optional[str] = None
    if args.playlist is not None:
        try:
            text, name = read_playlist_source(args.playlist)
        except PlaylistError as exc:
            print(exc)
            return 1

    if args.list_channels or args.export_favorites is not None:
        if text is None:
            print("A playlist is required for --list-channels and --export-favorites.")
            return 2
        store = ChannelStore.from_channels(parse_playlist(text).channels)
        store = _mark_favorites(store, args.favorites)
        if args.list_channels:
            _print_channels(store)
        if args.export_favorites is not None:
            return _export(store, args.export_favorites)
        return 0

    app = M3UPlayApp(
        build_facade(config, args.preferred_player),
        playlist_text=text,
        playlist_name=name,
    )
    detach_stream_handler()
    log.info("Launching Textual application")
    try:
        app.run()
    except KeyboardInterrupt:
        log.info("Keyboard interrupt received; exiting application")
        if app.is_running:
            app.exit()
        raise SystemExit(130) from None
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
