"""Playback session state machine.

A :class:`StreamSession` owns one playback attempt for one channel at a time.
It picks a transport strategy, drives an optional adaptive-streaming engine,
and reacts to events posted by the engine and the playback surface.

Collaborators never call back into the session directly. Each attempt gets a
:class:`SessionEvents` channel stamped with the attempt's generation number;
events whose generation no longer matches the session are discarded, so a
torn-down engine cannot influence the next channel.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Union

from .logging_utils import get_logger
from .playlist import Channel

log = get_logger(__name__)

ADAPTIVE_MARKER = "m3u8"

GENERIC_ENGINE_ERROR = "Unknown error"
SURFACE_FAULT_MESSAGE = "Failed to load video stream"
PLAYBACK_START_MESSAGE = "Failed to start playback"
CAPABILITY_MISMATCH_MESSAGE = "HLS streams not supported by this player"


class SessionState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    PLAYING = "playing"
    PAUSED = "paused"
    ERRORED = "errored"


class TransportStrategy(str, Enum):
    ADAPTIVE_ENGINE = "adaptive-engine"
    NATIVE_ADAPTIVE = "native-adaptive"
    DIRECT = "direct"


class FaultKind(str, Enum):
    CAPABILITY_MISMATCH = "capability-mismatch"
    TRANSPORT = "transport"
    PLAYBACK_START = "playback-start"


@dataclass(frozen=True, slots=True)
class SessionFault:
    kind: FaultKind
    reason: str


class PlaybackRejected(RuntimeError):
    """Raised by :meth:`PlaybackSurface.play` when playback cannot start."""


@dataclass(frozen=True, slots=True)
class EngineOptions:
    """Tuning passed to the adaptive-streaming engine on creation."""

    enable_worker: bool = True
    low_latency_mode: bool = True
    back_buffer_length: float = 90.0


@dataclass(frozen=True, slots=True)
class EngineFault:
    generation: int
    fatal: bool
    details: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ManifestParsed:
    generation: int


@dataclass(frozen=True, slots=True)
class SurfaceFault:
    generation: int
    message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DataArrived:
    generation: int


@dataclass(frozen=True, slots=True)
class PlayRejected:
    generation: int
    reason: Optional[str] = None


SessionEvent = Union[EngineFault, ManifestParsed, SurfaceFault, DataArrived, PlayRejected]


class SessionEvents:
    """Event channel handed to the engine and surface for one attempt."""

    __slots__ = ("_dispatch", "generation")

    def __init__(self, dispatch: Callable[[SessionEvent], bool], generation: int) -> None:
        self._dispatch = dispatch
        self.generation = generation

    def engine_fault(self, fatal: bool, details: Optional[str] = None) -> bool:
        return self._dispatch(EngineFault(self.generation, fatal, details))

    def manifest_parsed(self) -> bool:
        return self._dispatch(ManifestParsed(self.generation))

    def surface_fault(self, message: Optional[str] = None) -> bool:
        return self._dispatch(SurfaceFault(self.generation, message))

    def data_arrived(self) -> bool:
        return self._dispatch(DataArrived(self.generation))


class PlaybackSurface(Protocol):
    """The media sink a session plays into."""

    def supports_native_adaptive(self) -> bool: ...

    def attach(self, events: SessionEvents) -> None: ...

    def detach(self) -> None: ...

    def load(self, url: str) -> None: ...

    async def play(self) -> None: ...

    def pause(self) -> None: ...

    def set_muted(self, muted: bool) -> None: ...

    def request_fullscreen(self) -> None: ...


class AdaptiveEngine(Protocol):
    def load_source(self, url: str) -> None: ...

    def attach_media(self, surface: PlaybackSurface) -> None: ...

    def destroy(self) -> None: ...


class AdaptiveEngineFactory(Protocol):
    def is_supported(self) -> bool: ...

    def create(self, events: SessionEvents, options: EngineOptions) -> AdaptiveEngine: ...


def is_adaptive_url(url: str) -> bool:
    """Return True if *url* points at a segmented (HLS) manifest."""

    return ADAPTIVE_MARKER in url.lower()


def choose_strategy(
    url: str,
    surface: PlaybackSurface,
    engine_factory: Optional[AdaptiveEngineFactory] = None,
) -> Optional[TransportStrategy]:
    """Pick how *url* will be played, or ``None`` if it cannot be played."""

    if not is_adaptive_url(url):
        return TransportStrategy.DIRECT
    if engine_factory is not None and engine_factory.is_supported():
        return TransportStrategy.ADAPTIVE_ENGINE
    if surface.supports_native_adaptive():
        return TransportStrategy.NATIVE_ADAPTIVE
    return None


StateListener = Callable[["StreamSession"], None]


class StreamSession:
    """Lifecycle of playback for the currently selected channel."""

    def __init__(
        self,
        surface: PlaybackSurface,
        engine_factory: Optional[AdaptiveEngineFactory] = None,
        *,
        options: Optional[EngineOptions] = None,
    ) -> None:
        self._surface = surface
        self._engine_factory = engine_factory
        self._options = options or EngineOptions()
        self._engine: Optional[AdaptiveEngine] = None
        self._play_task: Optional[asyncio.Task[None]] = None
        self._listeners: list[StateListener] = []
        self.generation = 0
        self.state = SessionState.IDLE
        self.channel: Optional[Channel] = None
        self.strategy: Optional[TransportStrategy] = None
        self.fault: Optional[SessionFault] = None
        self.muted = False

    @property
    def engine(self) -> Optional[AdaptiveEngine]:
        return self._engine

    @property
    def surface(self) -> PlaybackSurface:
        return self._surface

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call *listener* after every state change; returns an unsubscribe hook."""

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:  # pragma: no cover - listener bugs must not break playback
                log.exception("Session listener failed")

    def _set_state(self, state: SessionState, *, force: bool = False) -> None:
        if state is self.state and not force:
            return
        log.info(
            "Session %d: %s -> %s (%s)",
            self.generation,
            self.state.value,
            state.value,
            self.channel.name if self.channel else "no channel",
        )
        self.state = state
        self._notify()

    def _fail(self, kind: FaultKind, reason: str) -> None:
        self.fault = SessionFault(kind, reason)
        log.warning("Session %d fault (%s): %s", self.generation, kind.value, reason)
        self._set_state(SessionState.ERRORED)

    def _teardown(self) -> None:
        """Destroy the engine and unsubscribe the surface of the current attempt."""

        self.generation += 1
        if self._play_task is not None:
            self._play_task.cancel()
            self._play_task = None
        if self._engine is not None:
            log.debug("Destroying adaptive engine for %s", self.channel.name if self.channel else "?")
            engine, self._engine = self._engine, None
            engine.destroy()
        self._surface.detach()
        self.strategy = None
        self.fault = None

    def _start(self) -> None:
        assert self.channel is not None
        url = self.channel.url
        events = SessionEvents(self.dispatch, self.generation)
        self._set_state(SessionState.INITIALIZING, force=True)
        self.strategy = choose_strategy(url, self._surface, self._engine_factory)
        if self.strategy is None:
            self._fail(FaultKind.CAPABILITY_MISMATCH, CAPABILITY_MISMATCH_MESSAGE)
            return
        log.info("Playing %s via %s", self.channel.name, self.strategy.value)
        self._surface.attach(events)
        if self.strategy is TransportStrategy.ADAPTIVE_ENGINE:
            assert self._engine_factory is not None
            engine = self._engine_factory.create(events, self._options)
            self._engine = engine
            engine.load_source(url)
            engine.attach_media(self._surface)
        else:
            self._surface.load(url)

    def select(self, channel: Optional[Channel]) -> None:
        """Switch playback to *channel*; ``None`` clears the selection."""

        self._teardown()
        self.channel = channel
        if channel is None:
            self._set_state(SessionState.IDLE)
            return
        self._start()

    def clear(self) -> None:
        self.select(None)

    def close(self) -> None:
        """Release everything held by the session."""

        self.select(None)
        self._listeners.clear()

    def retry(self) -> bool:
        """Start a fresh attempt for the same channel after a fault."""

        if self.state is not SessionState.ERRORED or self.channel is None:
            log.debug("Retry ignored in state %s", self.state.value)
            return False
        log.info("Retrying %s", self.channel.name)
        self._teardown()
        self._start()
        return True

    def pause(self) -> bool:
        if self.state is not SessionState.PLAYING:
            log.debug("Pause ignored in state %s", self.state.value)
            return False
        self._surface.pause()
        self._set_state(SessionState.PAUSED)
        return True

    def resume(self) -> bool:
        if self.state is not SessionState.PAUSED:
            log.debug("Resume ignored in state %s", self.state.value)
            return False
        self._set_state(SessionState.PLAYING)
        self._request_play()
        return True

    def toggle_pause(self) -> bool:
        if self.state is SessionState.PAUSED:
            return self.resume()
        return self.pause()

    def set_muted(self, muted: bool) -> None:
        self.muted = muted
        self._surface.set_muted(muted)

    def request_fullscreen(self) -> None:
        self._surface.request_fullscreen()

    def _request_play(self) -> None:
        generation = self.generation

        async def play() -> None:
            try:
                await self._surface.play()
            except PlaybackRejected as exc:
                self.dispatch(PlayRejected(generation, str(exc) or None))
            except Exception as exc:
                log.exception("Play request failed")
                self.dispatch(PlayRejected(generation, str(exc) or type(exc).__name__))

        if self._play_task is not None:
            self._play_task.cancel()
        self._play_task = asyncio.get_running_loop().create_task(play())

    def dispatch(self, event: SessionEvent) -> bool:
        """Apply *event*; returns False if it belonged to an earlier attempt."""

        if event.generation != self.generation:
            log.debug(
                "Discarding stale %s from session %d (current %d)",
                type(event).__name__,
                event.generation,
                self.generation,
            )
            return False

        if isinstance(event, EngineFault):
            if not event.fatal:
                log.debug("Non-fatal engine error: %s", event.details or GENERIC_ENGINE_ERROR)
                return True
            if self.state is not SessionState.ERRORED:
                self._fail(
                    FaultKind.TRANSPORT,
                    f"Stream error: {event.details or GENERIC_ENGINE_ERROR}",
                )
        elif isinstance(event, ManifestParsed):
            if self.state is SessionState.INITIALIZING:
                self._request_play()
        elif isinstance(event, SurfaceFault):
            if self.strategy is TransportStrategy.ADAPTIVE_ENGINE:
                log.debug("Surface fault left to the adaptive engine: %s", event.message)
            elif self.state not in (SessionState.IDLE, SessionState.ERRORED):
                self._fail(FaultKind.TRANSPORT, event.message or SURFACE_FAULT_MESSAGE)
        elif isinstance(event, DataArrived):
            if self.state is SessionState.INITIALIZING:
                self._set_state(SessionState.PLAYING)
        elif isinstance(event, PlayRejected):
            if self.state not in (SessionState.IDLE, SessionState.ERRORED):
                if event.reason:
                    log.debug("Play request rejected: %s", event.reason)
                self._fail(FaultKind.PLAYBACK_START, PLAYBACK_START_MESSAGE)
        return True


__all__ = [
    "AdaptiveEngine",
    "AdaptiveEngineFactory",
    "DataArrived",
    "EngineFault",
    "EngineOptions",
    "FaultKind",
    "ManifestParsed",
    "PlayRejected",
    "PlaybackRejected",
    "PlaybackSurface",
    "SessionEvent",
    "SessionEvents",
    "SessionFault",
    "SessionState",
    "StreamSession",
    "SurfaceFault",
    "TransportStrategy",
    "choose_strategy",
    "is_adaptive_url",
]
