"""Play channels from extended M3U playlists."""

__version__ = "0.3.0"
