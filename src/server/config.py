"""Where the timer page is served from and which paths the server answers."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

WEBSOCKET_PATH = "/ws"
ROOT_PATH = "/"
INDEX_PATH = "/index.html"
HEALTHZ_PATH = "/healthz"

# Source checkout, or the unpack directory of a frozen build.
_BUNDLE_ROOT = Path(getattr(sys, "_MEIPASS", Path(__file__).resolve().parents[2]))
BUNDLED_INDEX_FILE = _BUNDLE_ROOT / "web_ui" / "index.html"


class ServerConfigurationError(Exception):
    """Raised when the timer page cannot be served with the given settings."""


@dataclass(frozen=True)
class UIServerConfig:
    host: str = "127.0.0.1"
    port: int = 8765
    index_file: str | Path = BUNDLED_INDEX_FILE
    websocket_path: str = WEBSOCKET_PATH

    def __post_init__(self) -> None:
        if not self.host.strip():
            raise ServerConfigurationError("ui_server.host cannot be empty")
        if not 0 < self.port < 65536:
            raise ServerConfigurationError(f"ui_server.port out of range: {self.port}")
        if not Path(self.index_file).is_file():
            raise ServerConfigurationError(f"Timer page not found: {self.index_file}")

    @property
    def static_root(self) -> Path:
        """Directory the page's assets are served from."""
        return Path(self.index_file).resolve().parent

    @classmethod
    def from_settings(cls, settings) -> Optional["UIServerConfig"]:
        """Build from `[ui_server]`; None when the page server is disabled."""
        if not settings.enabled:
            return None
        if settings.index_file.strip():
            return cls(settings.host, settings.port, Path(settings.index_file))
        return cls(settings.host, settings.port)
