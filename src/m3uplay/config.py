"""Configuration management for m3uplay."""
from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from .database import CHANNEL_DATABASE_PATH
from .logging_utils import get_logger

CONFIG_PATH = Path.home() / ".config" / "m3uplay" / "config.yaml"
DEFAULT_EXPORT_FILENAME = "favorites.m3u"

log = get_logger(__name__)


@dataclass(slots=True)
class AppConfig:
    """Settings read from ``config.yaml``."""

    player: Optional[str] = None
    export_filename: str = DEFAULT_EXPORT_FILENAME
    export_directory: Path = field(default_factory=Path.cwd)
    database_path: Path = CHANNEL_DATABASE_PATH
    start_muted: bool = False
    autoplay_first_channel: bool = True


_BOOL_KEYS = {
    "start_muted",
    "autoplay_first_channel",
}
_PATH_KEYS = {"export_directory", "database_path"}


_BOOL_WORDS = {
    "true": True,
    "yes": True,
    "on": True,
    "1": True,
    "false": False,
    "no": False,
    "off": False,
    "0": False,
}


def _unquote(value: str) -> str:
    text = value.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    return text


def _as_bool(value: object, fallback: bool) -> bool:
    """Interpret *value* as a flag, keeping *fallback* for unrecognised input."""

    if isinstance(value, bool):
        return value
    return _BOOL_WORDS.get(str(value).strip().lower(), fallback)


def _read_mapping(raw: str) -> dict[str, object]:
    """Parse JSON, or flat ``key: value`` lines when the text is not JSON."""

    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        pass
    else:
        return data if isinstance(data, dict) else {}

    mapping: dict[str, object] = {}
    for number, line in enumerate(raw.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, separator, remainder = stripped.partition(":")
        if not separator:
            log.warning("Skipping config line %d without a colon: %s", number, stripped)
            continue
        value = remainder.strip()
        mapping[key.strip()] = None if value in ("", "null", "~") else _unquote(value)
    return mapping


def _render(config: AppConfig) -> str:
    entries: dict[str, object] = {}
    if config.player:
        entries["player"] = config.player
    entries["export_filename"] = config.export_filename
    entries["export_directory"] = config.export_directory
    entries["database_path"] = config.database_path
    for key in sorted(_BOOL_KEYS):
        entries[key] = "true" if getattr(config, key) else "false"
    return "".join(f"{key}: {value}\n" for key, value in entries.items())


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load configuration from *path* or return the defaults."""

    source = path or CONFIG_PATH
    config = AppConfig()
    if not source.is_file():
        log.info("No configuration at %s, using defaults", source)
        return config
    data = _read_mapping(source.read_text(encoding="utf8"))
    known = {item.name for item in fields(AppConfig)}
    for key, value in data.items():
        if key not in known:
            log.warning("Ignoring unknown configuration key %s", key)
            continue
        if value is None:
            continue
        if key in _BOOL_KEYS:
            setattr(config, key, _as_bool(value, getattr(config, key)))
        elif key in _PATH_KEYS:
            setattr(config, key, Path(str(value)).expanduser())
        else:
            text = str(value).strip()
            if key == "export_filename" and not text:
                continue
            setattr(config, key, text or None)
    log.info("Read configuration from %s", source)
    return config


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    """Write *config* to *path* in the ``key: value`` format."""

    target = path or CONFIG_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(_render(config), encoding="utf8")
    log.info("Wrote configuration to %s", target)


__all__ = [
    "AppConfig",
    "CONFIG_PATH",
    "DEFAULT_EXPORT_FILENAME",
    "load_config",
    "save_config",
]
