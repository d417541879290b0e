"""Shared fixtures: in-memory stand-ins for the playback surface and engine."""
from __future__ import annotations

from typing import Optional

import pytest

from m3uplay.session import EngineOptions, PlaybackRejected, SessionEvents


class FakeSurface:
    """Records every call a session makes on its playback surface."""

    def __init__(self, *, native_adaptive: bool = False, reject_play: bool = False) -> None:
        self.native_adaptive = native_adaptive
        self.reject_play = reject_play
        self.events: Optional[SessionEvents] = None
        self.loaded: list[str] = []
        self.play_calls = 0
        self.pause_calls = 0
        self.detach_calls = 0
        self.muted: Optional[bool] = None
        self.fullscreen_requests = 0

    def supports_native_adaptive(self) -> bool:
        return self.native_adaptive

    def attach(self, events: SessionEvents) -> None:
        assert self.events is None, "surface attached twice without detach"
        self.events = events

    def detach(self) -> None:
        self.events = None
        self.detach_calls += 1

    def load(self, url: str) -> None:
        self.loaded.append(url)

    async def play(self) -> None:
        self.play_calls += 1
        if self.reject_play:
            raise PlaybackRejected("autoplay blocked")

    def pause(self) -> None:
        self.pause_calls += 1

    def set_muted(self, muted: bool) -> None:
        self.muted = muted

    def request_fullscreen(self) -> None:
        self.fullscreen_requests += 1


class FakeEngine:
    def __init__(
        self, factory: "FakeEngineFactory", events: SessionEvents, options: EngineOptions
    ) -> None:
        self._factory = factory
        self.events = events
        self.options = options
        self.source: Optional[str] = None
        self.media: Optional[object] = None
        self.destroyed = False

    def load_source(self, url: str) -> None:
        self.source = url

    def attach_media(self, surface: object) -> None:
        self.media = surface

    def destroy(self) -> None:
        self.destroyed = True
        self._factory.live.remove(self)


class FakeEngineFactory:
    def __init__(self, *, supported: bool = True) -> None:
        self.supported = supported
        self.created: list[FakeEngine] = []
        self.live: list[FakeEngine] = []

    def is_supported(self) -> bool:
        return self.supported

    def create(self, events: SessionEvents, options: EngineOptions) -> FakeEngine:
        engine = FakeEngine(self, events, options)
        self.created.append(engine)
        self.live.append(engine)
        return engine


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest.fixture
def make_surface():
    return FakeSurface


@pytest.fixture
def make_engine_factory():
    return FakeEngineFactory


@pytest.fixture(autouse=True)
def _no_log_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("M3UPLAY_LOG_FILE", "")
