"""External media players and the process-backed playback surface."""
from __future__ import annotations

import asyncio
import json
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Iterable, Mapping, Optional

from .logging_utils import get_logger
from .session import PlaybackRejected, SessionEvents

log = get_logger(__name__)

PLAYER_PROBE_TIMEOUT_ENV = "M3UPLAY_PLAYER_PROBE_TIMEOUT"
DEFAULT_PLAYER_PROBE_TIMEOUT = 10.0

IPC_CONNECT_ATTEMPTS = 50
IPC_CONNECT_DELAY = 0.1


@dataclass(frozen=True, slots=True)
class PlayerProfile:
    """Command line conventions of one supported player."""

    base_args: tuple[str, ...] = ()
    mute_args: tuple[str, ...] = ()
    controllable: bool = False


PLAYER_PROFILES: Mapping[str, PlayerProfile] = {
    "mpv": PlayerProfile(
        base_args=(
            "--force-window=immediate",
            "--player-operation-mode=pseudo-gui",
            "--no-terminal",
            "--hwdec=auto-safe",
        ),
        mute_args=("--mute=yes",),
        controllable=True,
    ),
    "vlc": PlayerProfile(mute_args=("--no-audio",)),
    "ffplay": PlayerProfile(mute_args=("-an",)),
}

PLAYER_CLOSED_MESSAGE = "Player exited"
NO_PLAYER_MESSAGE = "No supported media player found ({})".format(", ".join(PLAYER_PROFILES))


@dataclass(slots=True)
class PlayerCommand:
    """Argument vector for one player launch plus what to clean up afterwards."""

    executable: str
    args: list[str]
    ipc_path: Optional[str] = None
    cleanup_paths: tuple[Path, ...] = ()

    def as_sequence(self) -> list[str]:
        return [self.executable, *self.args]


@dataclass(slots=True)
class PlayerHandle:
    process: asyncio.subprocess.Process
    command: PlayerCommand


def detect_player(
    preferred: Optional[str] = None,
    *,
    candidates: Iterable[str] = PLAYER_PROFILES,
) -> Optional[str]:
    """Return the resolved path of *preferred*, or of the first installed candidate."""

    order = dict.fromkeys([str(preferred)] if preferred else [])
    order.update(dict.fromkeys(candidates))
    for name in order:
        resolved = shutil.which(name)
        if resolved is None:
            log.debug("Player %s is not on PATH", name)
            continue
        log.info("Using player %s (%s)", resolved, name)
        return resolved
    return None


def _require_player(preferred: Optional[str]) -> str:
    executable = detect_player(preferred)
    if executable is None:
        log.error("No media player available (preferred=%s)", preferred)
        raise RuntimeError(NO_PLAYER_MESSAGE)
    return executable


def _ipc_supported() -> bool:
    # The control connection uses unix domain sockets.
    return sys.platform != "win32"


def _mpv_ipc_endpoint() -> tuple[str, tuple[Path, ...]]:
    """Allocate a control socket path for mpv and the paths to remove later."""

    socket_dir = Path(tempfile.mkdtemp(prefix="m3uplay_mpv_"))
    return str(socket_dir / "control.sock"), (socket_dir,)


def probe_timeout() -> float:
    """Seconds to wait for ``--version``; overridable through the environment."""

    raw = os.getenv(PLAYER_PROBE_TIMEOUT_ENV)
    if raw is None:
        return DEFAULT_PLAYER_PROBE_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    if value > 0:
        return value
    log.warning(
        "Ignoring %s=%r; probing with %.1f seconds",
        PLAYER_PROBE_TIMEOUT_ENV,
        raw,
        DEFAULT_PLAYER_PROBE_TIMEOUT,
    )
    return DEFAULT_PLAYER_PROBE_TIMEOUT


def build_player_command(
    url: str,
    *,
    preferred: Optional[str] = None,
    muted: bool = False,
) -> PlayerCommand:
    """Build the command that plays *url* with the best available player."""

    executable = _require_player(preferred)
    profile = PLAYER_PROFILES.get(Path(executable).stem.lower(), PlayerProfile())
    args = list(profile.base_args)
    if muted:
        args.extend(profile.mute_args)
    command = PlayerCommand(executable, args)
    if profile.controllable and _ipc_supported():
        command.ipc_path, command.cleanup_paths = _mpv_ipc_endpoint()
        args.append(f"--input-ipc-server={command.ipc_path}")
    args.append(url)
    log.info("Player command: %s", command.as_sequence())
    return command


async def launch_player(
    url: str, *, preferred: Optional[str] = None, muted: bool = False
) -> PlayerHandle:
    """Start a detached player process for *url*."""

    command = build_player_command(url, preferred=preferred, muted=muted)
    process = await asyncio.create_subprocess_exec(
        *command.as_sequence(),
        env=dict(os.environ),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    log.debug("Player for %s running as PID %s", url, process.pid)
    return PlayerHandle(process, command)


def probe_player(preferred: Optional[str] = None) -> str:
    """Run the player with ``--version`` and return the first line it prints."""

    executable = _require_player(preferred)
    name = Path(executable).name
    timeout = probe_timeout()
    try:
        result = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(
            f"{name} --version timed out after {timeout:.1f} seconds; "
            f"set {PLAYER_PROBE_TIMEOUT_ENV} to wait longer"
        ) from exc
    except OSError as exc:
        raise RuntimeError(f"Could not run {executable}: {exc}") from exc

    stdout, stderr = result.stdout.strip(), result.stderr.strip()
    if result.returncode != 0:
        raise RuntimeError(f"{name} --version exited with {result.returncode}: {stderr or stdout}")
    lines = (stdout or stderr).splitlines()
    summary = lines[0] if lines else name
    log.info("Probed %s: %s", executable, summary)
    return summary


class MpvSurface:
    """Playback surface that renders through an external player process.

    mpv is driven over its JSON IPC socket. vlc, ffplay and mpv on Windows
    have no control channel; they count as playing once spawned and ignore
    pause, mute and fullscreen requests. Any exit of the player, including the
    user closing its window, is reported to the session as a fault.
    """

    def __init__(self, preferred: Optional[str] = None) -> None:
        self._preferred = preferred
        self._events: Optional[SessionEvents] = None
        self._handle: Optional[PlayerHandle] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._muted = False
        self._request_id = 0

    @property
    def handle(self) -> Optional[PlayerHandle]:
        return self._handle

    def supports_native_adaptive(self) -> bool:
        # All supported players demux HLS through ffmpeg.
        return True

    def attach(self, events: SessionEvents) -> None:
        self._events = events

    def detach(self) -> None:
        self._events = None
        self._shutdown()

    def load(self, url: str) -> None:
        events = self._events
        if events is None:
            log.warning("Surface is detached; not loading %s", url)
            return
        self._spawn(self._launch(url, events))

    async def play(self) -> None:
        handle = self._handle
        if handle is None or handle.process.returncode is not None:
            raise PlaybackRejected("No running player process")
        if handle.command.ipc_path is None:
            return
        if self._writer is None:
            raise PlaybackRejected("Player control socket is not connected")
        try:
            await self._send(["set_property", "pause", False])
        except (ConnectionError, OSError) as exc:
            raise PlaybackRejected(str(exc)) from exc

    def pause(self) -> None:
        self._send_later(["set_property", "pause", True])

    def set_muted(self, muted: bool) -> None:
        self._muted = muted
        self._send_later(["set_property", "mute", muted])

    def request_fullscreen(self) -> None:
        self._send_later(["set_property", "fullscreen", True])

    def _spawn(self, coroutine: Awaitable[Any]) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _send_later(self, command: list[Any]) -> None:
        if self._writer is None:
            log.debug("Player is not controllable right now; dropping %s", command)
            return
        self._spawn(self._send(command))

    async def _send(self, command: list[Any]) -> None:
        writer = self._writer
        if writer is None:
            return
        self._request_id += 1
        message = json.dumps({"command": command, "request_id": self._request_id})
        writer.write(message.encode("utf-8") + b"\n")
        await writer.drain()

    async def _launch(self, url: str, events: SessionEvents) -> None:
        try:
            handle = await launch_player(url, preferred=self._preferred, muted=self._muted)
        except (RuntimeError, OSError) as exc:
            log.error("Could not start a player for %s: %s", url, exc)
            events.surface_fault(str(exc))
            return
        if events is not self._events:
            log.debug("Surface was detached during launch; stopping PID %s", handle.process.pid)
            _stop_player(handle)
            return
        self._handle = handle
        self._spawn(self._watch_exit(handle, events))
        if handle.command.ipc_path is None:
            events.data_arrived()
        else:
            self._spawn(self._follow_ipc(handle.command.ipc_path, events))

    async def _watch_exit(self, handle: PlayerHandle, events: SessionEvents) -> None:
        status = await handle.process.wait()
        if events is not self._events:
            return
        if self._handle is handle:
            self._handle = None
        _stop_player(handle)
        if status == 0:
            log.info("Player closed by the user")
            events.surface_fault(PLAYER_CLOSED_MESSAGE)
        else:
            events.surface_fault(f"Player exited with status {status}")

    async def _open_ipc(
        self, ipc_path: str
    ) -> Optional[tuple[asyncio.StreamReader, asyncio.StreamWriter]]:
        last_error: Optional[OSError] = None
        # mpv creates the socket shortly after start-up.
        for _ in range(IPC_CONNECT_ATTEMPTS):
            try:
                return await asyncio.open_unix_connection(ipc_path)
            except OSError as exc:
                last_error = exc
            await asyncio.sleep(IPC_CONNECT_DELAY)
        log.warning("Gave up connecting to mpv at %s: %s", ipc_path, last_error)
        return None

    async def _follow_ipc(self, ipc_path: str, events: SessionEvents) -> None:
        connection = await self._open_ipc(ipc_path)
        if connection is None:
            events.surface_fault("Unable to control the player")
            return
        reader, writer = connection
        if events is not self._events:
            writer.close()
            return
        self._writer = writer
        try:
            async for line in reader:
                try:
                    message = json.loads(line)
                except ValueError:
                    log.debug("Skipping unreadable mpv message %r", line)
                    continue
                self.handle_ipc_message(message, events)
        finally:
            if self._writer is writer:
                self._writer = None
            writer.close()

    def handle_ipc_message(self, payload: dict[str, Any], events: SessionEvents) -> None:
        """Translate one mpv IPC message into a session event."""

        event = payload.get("event")
        if event in ("file-loaded", "playback-restart"):
            events.data_arrived()
        elif event == "end-file" and payload.get("reason") == "error":
            detail = payload.get("file_error")
            events.surface_fault(f"Failed to load video stream ({detail})" if detail else None)
        elif payload.get("error") not in (None, "success"):
            log.debug("mpv rejected request %s: %s", payload.get("request_id"), payload["error"])

    def _shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        handle, self._handle = self._handle, None
        if handle is not None:
            _stop_player(handle)


def _stop_player(handle: PlayerHandle) -> None:
    """Terminate the process if it is still running and remove its IPC files."""

    if handle.process.returncode is None:
        log.debug("Terminating player PID %s", handle.process.pid)
        try:
            handle.process.terminate()
        except ProcessLookupError:
            pass
    for path in handle.command.cleanup_paths:
        shutil.rmtree(path, ignore_errors=True)


__all__ = [
    "MpvSurface",
    "PLAYER_CLOSED_MESSAGE",
    "PLAYER_PROFILES",
    "PlayerCommand",
    "PlayerHandle",
    "PlayerProfile",
    "build_player_command",
    "detect_player",
    "launch_player",
    "probe_player",
    "probe_timeout",
]
