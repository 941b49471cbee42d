"""Configuration defaults, env vars, and runtime options for agentorch."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass


VERSION = "0.3.0"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_OLLAMA_URL = "http://localhost:11434"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Config:
    """Runtime configuration, filled from CLI flags and environment."""

    # Server
    host: str = ""
    port: int = 0
    open_browser: bool | None = None

    # Prompt enhancement
    ollama_url: str = ""

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.host:
            self.host = os.environ.get("AGENTORCH_HOST") or DEFAULT_HOST
        if not self.port:
            self.port = _env_int("AGENTORCH_PORT", DEFAULT_PORT)
        if not self.ollama_url:
            self.ollama_url = os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_URL
        if not self.ollama_url.startswith(("http://", "https://")):
            self.ollama_url = f"http://{self.ollama_url}"
        self.ollama_url = self.ollama_url.rstrip("/")
        if self.open_browser is None:
            self.open_browser = is_macos()

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


def is_windows() -> bool:
    return sys.platform == "win32"


def is_macos() -> bool:
    return sys.platform == "darwin"


def is_linux() -> bool:
    return sys.platform.startswith("linux")
