"""Tests for the command line interface helpers."""
from __future__ import annotations

from pathlib import Path

import pytest

from m3uplay import cli
from m3uplay.config import AppConfig
from m3uplay.database import ChannelListDatabase
from m3uplay.playlist import parse_playlist

PLAYLIST = """#EXTM3U
#EXTINF:-1 group-title="News",CNN
http://example.com/cnn.m3u8
#EXTINF:-1 group-title="Sports",ESPN
http://example.com/espn.ts
#EXTINF:-1,BBC One
http://example.com/bbc.ts
"""


@pytest.fixture
def playlist_file(tmp_path: Path) -> Path:
    path = tmp_path / "tv.m3u"
    path.write_text(PLAYLIST, encoding="utf8")
    return path


@pytest.fixture
def config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> AppConfig:
    config = AppConfig(database_path=tmp_path / "channels.sqlite", export_directory=tmp_path)
    monkeypatch.setattr(cli, "load_config", lambda path: config)
    return config


def _unexpected_app(*args, **kwargs):  # pragma: no cover - only used when failing
    raise AssertionError("M3UPlayApp should not be constructed")


def test_list_channels_short_circuits_main(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    playlist_file: Path,
    config: AppConfig,
) -> None:
    monkeypatch.setattr(cli, "M3UPlayApp", _unexpected_app)

    assert cli.main([str(playlist_file), "--list-channels", "--favorite", "espn"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "News (1)"
    assert lines[2] == "Sports (1)"
    assert lines[3].startswith("  * ESPN")
    assert lines[4] == "Uncategorized (1)"


def test_export_favorites_writes_file(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    playlist_file: Path,
    tmp_path: Path,
    config: AppConfig,
) -> None:
    monkeypatch.setattr(cli, "M3UPlayApp", _unexpected_app)
    target = tmp_path / "out" / "favs.m3u"

    code = cli.main(
        [str(playlist_file), "--favorite", "CNN", "--favorite", "BBC One", "--export-favorites", str(target)]
    )

    assert code == 0
    assert [channel.name for channel in parse_playlist(target.read_text())] == ["CNN", "BBC One"]
    assert f"Exported 2 favorite channel(s) to {target}" in capsys.readouterr().out


def test_export_without_favorites_fails(
    capsys: pytest.CaptureFixture[str], playlist_file: Path, tmp_path: Path, config: AppConfig
) -> None:
    target = tmp_path / "favs.m3u"

    assert cli.main([str(playlist_file), "--export-favorites", str(target)]) == 1

    assert not target.exists()
    assert "No favorite channels to export" in capsys.readouterr().out


def test_list_channels_requires_playlist(capsys: pytest.CaptureFixture[str], config: AppConfig) -> None:
    assert cli.main(["--list-channels"]) == 2


def test_unreadable_playlist_returns_error(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, config: AppConfig
) -> None:
    path = tmp_path / "tv.txt"
    path.write_text(PLAYLIST, encoding="utf8")

    assert cli.main([str(path)]) == 1

    assert "valid .m3u file" in capsys.readouterr().out


def test_list_saved_marks_current_list(
    capsys: pytest.CaptureFixture[str], config: AppConfig
) -> None:
    db = ChannelListDatabase(config.database_path)
    channels = parse_playlist(PLAYLIST).channels
    db.save_new("old.m3u", channels)
    current = db.save_new("tv.m3u", channels[:1])
    db.set_current_selection(current)

    assert cli.main(["--list-saved"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("  ") and lines[0].endswith("old.m3u  (3 channels)")
    assert lines[1] == f"* {current}  tv.m3u  (1 channels)"


def test_probe_player_reports_failure(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], config: AppConfig
) -> None:
    def failing_probe(preferred=None):
        raise RuntimeError("No supported media player found (mpv, vlc, ffplay)")

    monkeypatch.setattr(cli, "probe_player", failing_probe)

    assert cli.main(["--probe-player"]) == 1
    assert "No supported media player" in capsys.readouterr().out


def test_probe_player_passes_preferred(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], config: AppConfig
) -> None:
    seen: list[object] = []

    def fake_probe(preferred=None):
        seen.append(preferred)
        return "mpv 0.37.0"

    monkeypatch.setattr(cli, "probe_player", fake_probe)

    assert cli.main(["--probe-player", "--player", "mpv-custom"]) == 0
    assert seen == ["mpv-custom"]
    assert capsys.readouterr().out.strip() == "mpv 0.37.0"


def test_playlist_is_handed_to_app(
    monkeypatch: pytest.MonkeyPatch, playlist_file: Path, config: AppConfig
) -> None:
    created: list[object] = []

    class DummyApp:
        is_running = False

        def __init__(self, facade, *, playlist_text=None, playlist_name=None) -> None:
            self.facade = facade
            self.playlist_text = playlist_text
            self.playlist_name = playlist_name
            created.append(self)

        def run(self) -> None:
            pass

    monkeypatch.setattr(cli, "M3UPlayApp", DummyApp)
    config.start_muted = True

    assert cli.main([str(playlist_file), "--player", "vlc"]) == 0

    app = created[-1]
    assert app.playlist_text == PLAYLIST
    assert app.playlist_name == "tv.m3u"
    assert app.facade.session.muted is True
    assert app.facade.session.surface._preferred == "vlc"


def test_channel_logs_short_circuit(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """--channel-logs should print log lines without starting the TUI."""

    log_file = tmp_path / "m3uplay.log"
    log_file.write_text(
        "2024-01-01 10:00:00 [INFO] m3uplay.session: Playing CNN via adaptive-engine\n"
        "2024-01-01 10:00:01 [DEBUG] m3uplay.playlist: Added channel ESPN (http://x)\n"
        "2024-01-01 10:00:02 [WARNING] m3uplay.session: Session 3 fault (transport): cnn down\n",
        encoding="utf8",
    )
    monkeypatch.setattr(cli, "M3UPlayApp", _unexpected_app)

    assert cli.main(["--log-file", str(log_file), "--channel-logs", "CNN"]) == 0

    captured = capsys.readouterr().out.strip().splitlines()
    assert captured[0] == f"Log file: {log_file}"
    assert "Playing CNN" in captured[1]
    assert "cnn down" in captured[2]
    assert len(captured) == 3
