"""Tests for :class:`m3uplay.facade.PlaybackFacade`."""
from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from m3uplay.database import ChannelListDatabase
from m3uplay.facade import FAULT_HINTS, PlaybackFacade, save_download
from m3uplay.playlist import parse_playlist
from m3uplay.session import FaultKind, SessionState, StreamSession

PLAYLIST = """#EXTM3U

#EXTINF:-1 tvg-logo="http://logo/cnn.png" group-title="News",CNN
http://example.com/cnn.m3u8

#EXTINF:-1 group-title="Sports",ESPN
http://example.com/espn.ts

#EXTINF:-1,Weather
http://example.com/weather.ts
"""


@pytest.fixture
def downloads() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def facade(surface, engine_factory, downloads, tmp_path: Path) -> PlaybackFacade:
    session = StreamSession(surface, engine_factory)
    return PlaybackFacade(
        session,
        database=ChannelListDatabase(tmp_path / "channels.sqlite"),
        download=lambda payload, filename: downloads.append((payload, filename)),
        export_filename="favs.m3u",
    )


def test_load_playlist_autoplays_first_channel(facade, engine_factory) -> None:
    parsed = facade.load_playlist(PLAYLIST, "tv.m3u")

    assert parsed.total == 3
    assert facade.store.selected.name == "CNN"
    assert facade.session.channel.name == "CNN"
    assert engine_factory.live[0].source == "http://example.com/cnn.m3u8"

    status = facade.status()
    assert status.is_loading
    assert status.channel_name == "CNN"
    assert status.channel_group == "News"
    assert status.total_channels == 3


def test_load_playlist_without_autoplay(surface, tmp_path) -> None:
    facade = PlaybackFacade(StreamSession(surface), autoplay_first_channel=False)

    facade.load_playlist(PLAYLIST, "tv.m3u")

    assert facade.store.selected is None
    assert facade.status().state is SessionState.IDLE


def test_empty_playlist_sets_notice(facade) -> None:
    facade.load_playlist("#EXTM3U\n#EXTINF:-1,Orphan\n", "empty.m3u")

    assert len(facade.store) == 0
    assert facade.notice == "No channels found in empty.m3u"
    assert facade.saved_lists() == []


def test_empty_playlist_replaces_the_remembered_list(facade, surface, tmp_path) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    facade.load_playlist("#EXTM3U\n", "empty.m3u")

    later = PlaybackFacade(
        StreamSession(surface),
        database=ChannelListDatabase(tmp_path / "channels.sqlite"),
    )

    assert later.restore_last_session() is False
    assert len(later.store) == 0
    assert [info.name for info in later.saved_lists()] == ["tv.m3u"]


def test_load_playlist_is_saved_and_restored(facade, surface, engine_factory, tmp_path) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    espn = facade.store.channels[1]
    facade.toggle_favorite(espn.id)

    restored = PlaybackFacade(
        StreamSession(surface, engine_factory),
        database=ChannelListDatabase(tmp_path / "channels.sqlite"),
    )
    assert restored.restore_last_session() is True

    assert [channel.name for channel in restored.store] == ["CNN", "ESPN", "Weather"]
    assert restored.store.get(espn.id).is_favorite
    assert restored.current_list_id == facade.current_list_id
    assert [info.name for info in restored.saved_lists()] == ["tv.m3u"]


def test_select_same_live_channel_is_a_no_op(facade, engine_factory) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    cnn = facade.store.channels[0]
    generation = facade.session.generation

    facade.select(cnn.id)

    assert facade.session.generation == generation
    assert len(engine_factory.created) == 1


def test_select_same_channel_after_fault_restarts_it(facade, engine_factory) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    cnn = facade.store.channels[0]
    engine_factory.live[0].events.engine_fault(True, "networkError")
    assert facade.status().has_error

    facade.select(cnn.id)

    assert facade.status().state is SessionState.INITIALIZING
    assert len(engine_factory.created) == 2
    assert len(engine_factory.live) == 1


def test_select_switches_playback(facade, surface, engine_factory) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    espn = facade.store.channels[1]

    facade.select(espn.id)

    assert facade.session.channel == espn
    assert engine_factory.live == []
    assert surface.loaded == [espn.url]


def test_deleting_selected_channel_plays_first_remaining(facade, surface, engine_factory) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    cnn, espn, _weather = facade.store.channels
    facade.select(espn.id)

    facade.delete(espn.id)

    assert facade.store.selected_id == cnn.id
    assert facade.session.channel == cnn
    assert len(engine_factory.live) == 1
    saved = ChannelListDatabase(facade._database.path).get(facade.current_list_id)
    assert [channel.name for channel in saved.channels] == ["CNN", "Weather"]


def test_deleting_last_channel_goes_idle(surface, tmp_path) -> None:
    facade = PlaybackFacade(StreamSession(surface))
    facade.load_playlist("#EXTINF:-1,Solo\nhttp://example.com/solo.ts\n", "solo.m3u")

    facade.delete(facade.store.channels[0].id)

    assert facade.store.selected_id is None
    assert facade.status().state is SessionState.IDLE


def test_export_without_favorites_does_not_download(facade, downloads) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")

    assert facade.export_favorites() is False

    assert downloads == []
    assert facade.notice == "No favorite channels to export"


def test_export_favorites_hands_payload_to_download(facade, downloads) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    facade.toggle_favorite(facade.store.channels[2].id)

    assert facade.export_favorites() is True

    (payload, filename), = downloads
    assert filename == "favs.m3u"
    assert [channel.name for channel in parse_playlist(payload)] == ["Weather"]
    assert facade.notice == "Exported 1 favorite channel(s) to favs.m3u"


def test_export_without_download_handler(surface) -> None:
    facade = PlaybackFacade(StreamSession(surface))
    facade.load_playlist(PLAYLIST, "tv.m3u")
    facade.toggle_favorite(facade.store.channels[0].id)

    assert facade.export_favorites() is False
    assert facade.notice == "Export is not available"


def test_status_reports_fault_with_hint(facade) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    facade.session.engine.events.engine_fault(True, "manifestLoadError")

    status = facade.status()

    assert status.has_error
    assert status.error_message == "Stream error: manifestLoadError"
    assert status.hint == FAULT_HINTS[FaultKind.TRANSPORT]

    assert facade.retry() is True
    assert facade.status().has_error is False


def test_playback_controls_delegate_to_session(facade, surface) -> None:
    async def scenario() -> None:
        facade.load_playlist(PLAYLIST, "tv.m3u")
        facade.select(facade.store.channels[1].id)
        surface.events.data_arrived()

        assert facade.pause() is True
        assert facade.status().state is SessionState.PAUSED
        assert facade.play() is True
        assert facade.toggle_play() is True
        assert facade.status().state is SessionState.PAUSED

    asyncio.run(scenario())

    facade.toggle_mute()
    assert facade.status().is_muted is True
    facade.mute(False)
    assert surface.muted is False
    facade.request_fullscreen()
    assert surface.fullscreen_requests == 1


def test_merge_playlist_adds_new_channels(facade) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")

    added = facade.merge_playlist(
        "#EXTINF:-1,CNN copy\nhttp://example.com/cnn.m3u8\n#EXTINF:-1,Music\nhttp://example.com/music.ts\n"
    )

    assert added == 1
    assert [channel.name for channel in facade.store][-1] == "Music"


def test_clear_and_saved_list_management(facade) -> None:
    facade.load_playlist(PLAYLIST, "tv.m3u")
    list_id = facade.current_list_id

    facade.clear()

    assert len(facade.store) == 0
    assert facade.status().state is SessionState.IDLE
    assert facade.restore_last_session() is False

    assert facade.open_saved_list(list_id) is True
    assert facade.store.selected.name == "CNN"

    assert facade.delete_saved_list(list_id) is True
    assert len(facade.store) == 0
    assert facade.saved_lists() == []
    assert facade.open_saved_list(list_id) is False


def test_save_download_creates_directory(tmp_path) -> None:
    target = save_download("#EXTM3U\n", "favs.m3u", tmp_path / "out")
    assert target.read_text(encoding="utf8") == "#EXTM3U\n"
